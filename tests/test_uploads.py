import io
import os

import anyio
import pytest
from starlette.datastructures import Headers, UploadFile

import config
from errors import FileTooLarge, TooManyFiles, UnsupportedType, UploadRejected
from utils import (
    check_uploads,
    decode_nested_form,
    page_window,
    pagination,
    store_uploads,
    stored_uploads,
)


def make_upload(name: str, content_type: str, data: bytes = b"data", *, known_size: bool = True) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=name,
        size=len(data) if known_size else None,
        headers=Headers({"content-type": content_type}),
    )


# --- 巢狀表單 ---

def test_nested_keys_become_dicts():
    decoded = decode_nested_form([
        ("title", "Roof repair"),
        ("location[city]", "Tainan"),
        ("location[state]", "TN"),
        ("budget[min]", "100"),
    ])
    assert decoded == {
        "title": "Roof repair",
        "location": {"city": "Tainan", "state": "TN"},
        "budget": {"min": "100"},
    }


def test_repeated_keys_become_lists():
    decoded = decode_nested_form([
        ("specifications[requirements]", "scaffolding"),
        ("specifications[requirements]", "night work"),
        ("tag", "a"),
        ("tag", "b"),
        ("tag", "c"),
    ])
    assert decoded["specifications"]["requirements"] == ["scaffolding", "night work"]
    assert decoded["tag"] == ["a", "b", "c"]


# --- 上傳檢查 ---

def test_allowed_uploads_pass():
    check_uploads({
        "property_images": [make_upload("front.jpg", "image/jpeg")],
        "boq": [make_upload("boq.pdf", "application/pdf")],
    }, ("property_images", "boq"))


def test_unexpected_field_is_rejected():
    with pytest.raises(UploadRejected):
        check_uploads({"avatar": [make_upload("me.png", "image/png")]}, ("boq",))


def test_wrong_type_for_field():
    with pytest.raises(UnsupportedType):
        check_uploads({"property_images": [make_upload("plan.pdf", "application/pdf")]}, ("property_images",))


def test_drawings_accept_cad_types():
    check_uploads({"drawings": [make_upload("site.dxf", "application/dxf")]}, ("drawings",))


def test_per_field_limit():
    files = [make_upload(f"{i}.pdf", "application/pdf") for i in range(6)]
    with pytest.raises(TooManyFiles):
        check_uploads({"boq": files}, ("boq",))


def test_per_request_limit():
    uploads = {
        "property_images": [make_upload(f"{i}.png", "image/png") for i in range(6)],
        "drawings": [make_upload(f"{i}.pdf", "application/pdf") for i in range(5)],
    }
    with pytest.raises(TooManyFiles):
        check_uploads(uploads, ("property_images", "drawings"))


def test_declared_size_over_limit(monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE", 3)
    with pytest.raises(FileTooLarge):
        check_uploads({"boq": [make_upload("big.pdf", "application/pdf", b"12345")]}, ("boq",))


# --- 寫檔 ---

def test_store_uploads_writes_files_with_metadata(upload_root):
    uploads = {"bid_documents": [make_upload("quote v2.pdf", "application/pdf", b"%PDF-1.7")]}
    stored = anyio.run(store_uploads, uploads, ("bid_documents",))

    meta = stored["bid_documents"][0]
    assert meta["original_name"] == "quote_v2.pdf"
    assert meta["mime_type"] == "application/pdf"
    assert meta["size"] == 8
    assert meta["filename"].startswith("bid_documents-")
    assert meta["path"].endswith(meta["filename"])
    with open(meta["path"], "rb") as fh:
        assert fh.read() == b"%PDF-1.7"


def test_streamed_file_over_limit_is_removed(upload_root, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE", 4)
    uploads = {"boq": [
        make_upload("small.pdf", "application/pdf", b"ok"),
        make_upload("big.pdf", "application/pdf", b"way too big", known_size=False),
    ]}
    with pytest.raises(FileTooLarge):
        anyio.run(store_uploads, uploads, ("boq",))

    # 前一個已存好的檔案也要一起清掉
    assert os.listdir(upload_root / "boq") == []


def test_stored_uploads_discards_files_when_block_fails(upload_root):
    uploads = {"file": [make_upload("photo.png", "image/png", b"\x89PNG")]}
    saved = {}

    async def send_then_fail():
        async with stored_uploads(uploads, ("file",)) as stored:
            saved.update(stored)
            raise RuntimeError("database went away")

    with pytest.raises(RuntimeError):
        anyio.run(send_then_fail)

    assert not os.path.exists(saved["file"][0]["path"])


# --- 分頁 ---

def test_page_window_clamps_values():
    assert page_window(1, 10) == (1, 10, 0)
    assert page_window(3, 20) == (3, 20, 40)
    assert page_window(0, 500) == (1, 100, 0)


def test_pagination_summary():
    assert pagination(2, 10, 25) == {"current": 2, "total": 3, "count": 25}
    assert pagination(1, 10, 0) == {"current": 1, "total": 0, "count": 0}
