import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# 讓測試可以直接 `import main`、`import services.*`
ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

import config  # noqa: E402
from db import getDB  # noqa: E402
from main import create_app  # noqa: E402
from routes.auth import get_current_user  # noqa: E402


@pytest.fixture
def upload_root(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    monkeypatch.setattr(config, "UPLOAD_ROOT", str(root))
    return root


@pytest.fixture
def app(upload_root):
    application = create_app(use_lifespan=False)

    async def fake_db():
        # 路由只把連線往下傳給 service，測試裡 service 都被換掉了
        yield object()

    application.dependency_overrides[getDB] = fake_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client_as(app):
    """client_as(OWNER) 回傳一個以該使用者身分登入的 TestClient；client_as(None) 為匿名。"""

    def _client(user, **kwargs):
        async def current_user():
            return user

        app.dependency_overrides[get_current_user] = current_user
        return TestClient(app, **kwargs)

    return _client
