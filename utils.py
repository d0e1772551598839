import math
import os
import re
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import aiofiles  # 非同步檔案處理套件，避免上傳大檔案時卡住整個伺服器
from starlette.datastructures import UploadFile

import config
from errors import FileTooLarge, TooManyFiles, UnsupportedType, UploadRejected
from logging_config import get_logger

log = get_logger(__name__)

# --- 1. 上傳欄位設定 ---
# 每個上傳欄位對應一個子資料夾，以後要改路徑只要改這裡
FIELD_FOLDERS = {
    "property_images": "property-images",
    "boq": "boq",
    "drawings": "drawings",
    "other_documents": "documents",
    "bid_documents": "bid-documents",
    "file": "message-files",
    "avatar": "avatars",
}

IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")
DOCUMENT_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
)
DRAWING_TYPES = ("application/pdf", "image/dwg", "application/acad", "application/dxf", "application/dwg")

# 白名單：依欄位決定可以上傳哪些 MIME type
FIELD_ALLOWED_TYPES = {
    "property_images": IMAGE_TYPES,
    "boq": DOCUMENT_TYPES,
    "other_documents": DOCUMENT_TYPES,
    "bid_documents": DOCUMENT_TYPES,
    "drawings": DRAWING_TYPES,
    "file": IMAGE_TYPES + DOCUMENT_TYPES,
    "avatar": IMAGE_TYPES,
}

# 每個欄位最多幾個檔案
FIELD_MAX_COUNT = {
    "property_images": 10,
    "boq": 5,
    "drawings": 10,
    "other_documents": 5,
    "bid_documents": 5,
    "file": 1,
    "avatar": 1,
}

CHUNK_SIZE = 64 * 1024


def setup_upload_directories():
    """
    初始化資料夾結構：伺服器啟動時呼叫，確保資料夾都已經存在。
    exist_ok=True 表示資料夾已存在就跳過。
    """
    os.makedirs(config.UPLOAD_ROOT, exist_ok=True)
    for folder in FIELD_FOLDERS.values():
        os.makedirs(os.path.join(config.UPLOAD_ROOT, folder), exist_ok=True)


# =========================================================
# 表單解析
# =========================================================

_NESTED_KEY = re.compile(r"^(\w+)\[(\w+)\]$")


def decode_nested_form(items) -> dict:
    """
    把 `parent[child]` 形式的表單欄位攤平成巢狀 dict。

    例如 [("location[city]", "Taipei"), ("title", "A")]
    -> {"location": {"city": "Taipei"}, "title": "A"}

    同一個 key 出現多次時變成 list (例如多個 specifications[requirements])。
    """
    parsed: dict = {}
    for key, value in items:
        match = _NESTED_KEY.match(key)
        if match:
            parent, child = match.groups()
            target = parsed.setdefault(parent, {})
            if not isinstance(target, dict):
                # 同名的一般欄位已經存在，巢狀值覆蓋它
                target = parsed[parent] = {}
        else:
            target, child = parsed, key

        if child in target:
            current = target[child]
            target[child] = current + [value] if isinstance(current, list) else [current, value]
        else:
            target[child] = value
    return parsed


def split_form(form) -> tuple[dict, dict[str, list[UploadFile]]]:
    """把 multipart 表單拆成「一般欄位 (已解析巢狀)」與「上傳檔案」兩部分。"""
    fields = []
    uploads: dict[str, list[UploadFile]] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            # 瀏覽器送出空的 file input 時會帶一個沒有檔名的物件，直接略過
            if value.filename:
                uploads.setdefault(key, []).append(value)
        else:
            fields.append((key, value))
    return decode_nested_form(fields), uploads


# =========================================================
# 檔案上傳 (File Intake)
# =========================================================

def check_uploads(uploads: dict[str, list[UploadFile]], allowed_fields) -> None:
    """
    在寫入任何檔案之前先檢查：欄位、數量、類型、大小。
    任何一項不合格就整批拒絕。
    """
    total = sum(len(files) for files in uploads.values())
    if total > config.MAX_FILES_PER_REQUEST:
        raise TooManyFiles(f"Too many files. Maximum is {config.MAX_FILES_PER_REQUEST} files.")

    for field, files in uploads.items():
        if field not in allowed_fields:
            raise UploadRejected(f"Unexpected file field: {field}")
        if len(files) > FIELD_MAX_COUNT[field]:
            raise TooManyFiles(f"Too many files for {field}. Maximum is {FIELD_MAX_COUNT[field]}.")

        allowed_types = FIELD_ALLOWED_TYPES[field]
        for file in files:
            if file.content_type not in allowed_types:
                raise UnsupportedType(
                    f"Invalid file type for {field}. Allowed types: {', '.join(allowed_types)}"
                )
            # size 可能是 None (串流上傳)，寫檔時會再檢查一次
            if file.size is not None and file.size > config.MAX_UPLOAD_SIZE:
                raise FileTooLarge(_too_large_message())


def _too_large_message() -> str:
    return f"File too large. Maximum size is {config.MAX_UPLOAD_SIZE // (1024 * 1024)}MB."


def _safe_filename(name: str) -> str:
    # 把空白、斜線等可能造成路徑錯誤的符號換成底線
    return name.replace(" ", "_").replace("/", "_").replace("\\", "_")


async def save_upload_file(file: UploadFile, field: str) -> dict:
    """
    把單一上傳檔案寫入 uploads/{子資料夾}/ 並回傳檔案資訊 (準備存入資料庫)。

    檔名格式：{欄位}-{時間戳}-{隨機碼}{副檔名}，避免同名檔案互相覆蓋。
    寫入時一邊累計大小，超過上限就刪掉已寫入的部分並拒絕。
    """
    folder = FIELD_FOLDERS[field]
    target_dir = os.path.join(config.UPLOAD_ROOT, folder)
    os.makedirs(target_dir, exist_ok=True)

    ext = os.path.splitext(file.filename or "")[1]
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    new_filename = f"{field}-{timestamp}-{uuid.uuid4().hex[:12]}{ext}"
    file_path = os.path.join(target_dir, new_filename)

    size = 0
    async with aiofiles.open(file_path, "wb") as out_file:
        while content := await file.read(CHUNK_SIZE):
            size += len(content)
            if size > config.MAX_UPLOAD_SIZE:
                break
            await out_file.write(content)

    if size > config.MAX_UPLOAD_SIZE:
        os.remove(file_path)
        raise FileTooLarge(_too_large_message())

    # 回傳給資料庫的路徑格式 (使用 / 分隔，確保跨平台相容性)
    return {
        "filename": new_filename,
        "original_name": _safe_filename(file.filename or new_filename),
        "path": f"{config.UPLOAD_ROOT}/{folder}/{new_filename}",
        "size": size,
        "mime_type": file.content_type,
        "uploaded_at": datetime.now(timezone.utc).isoformat(),
    }


async def store_uploads(uploads: dict[str, list[UploadFile]], allowed_fields) -> dict[str, list[dict]]:
    """
    先整批檢查，再逐一寫檔。
    中途任何一個檔案失敗，已經寫入的檔案會被刪除，不留下半套結果。
    """
    check_uploads(uploads, allowed_fields)

    stored: dict[str, list[dict]] = {}
    try:
        for field, files in uploads.items():
            for file in files:
                stored.setdefault(field, []).append(await save_upload_file(file, field))
    except Exception:
        discard_stored_files(stored)
        raise
    return stored


def discard_stored_files(stored: dict[str, list[dict]]) -> None:
    """資料庫寫入失敗時，把這次請求已經存好的檔案刪掉。"""
    for files in stored.values():
        for meta in files:
            try:
                os.remove(meta["path"])
            except FileNotFoundError:
                continue
            log.info("upload_discarded", path=meta["path"])


@asynccontextmanager
async def stored_uploads(uploads: dict[str, list[UploadFile]], allowed_fields):
    """
    用法：
        async with stored_uploads(uploads, ("bid_documents",)) as stored:
            await bids.submit_bid(...)
    區塊內發生任何錯誤 (資料庫寫入失敗等)，這次存下的檔案都會被刪掉。
    """
    stored = await store_uploads(uploads, allowed_fields)
    try:
        yield stored
    except Exception:
        discard_stored_files(stored)
        raise


# =========================================================
# 分頁
# =========================================================

def page_window(page: int, limit: int) -> tuple[int, int, int]:
    """回傳修正後的 (page, limit, offset)；page 從 1 開始，limit 上限 100。"""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 10), 1), 100)
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict:
    return {"current": page, "total": math.ceil(total / limit) if limit else 0, "count": total}
