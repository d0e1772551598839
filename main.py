from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

import config
from db import close_pool, open_pool
from errors import register_exception_handlers
from init_db import init_database
from logging_config import configure_logging, get_logger
from middleware import AccessLogMiddleware, RequestContextMiddleware
from routes.auth import router as auth_router
from routes.bids import router as bids_router
from routes.messages import router as messages_router
from routes.projects import router as projects_router
from routes.ratings import router as ratings_router
from routes.users import router as users_router
from utils import setup_upload_directories

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 每次伺服器啟動時，自動檢查並建立資料表，這樣就不用手動去資料庫下 SQL 指令
    init_database()
    await open_pool()
    log.info("app_started", environment=config.ENVIRONMENT)
    yield
    await close_pool()
    log.info("app_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """
    組裝應用程式。測試時傳 use_lifespan=False，
    就不會在啟動時連資料庫。
    """
    # --- 1. 日誌 ---
    configure_logging(level=config.LOG_LEVEL)

    # --- 2. 建立應用程式 ---
    app = FastAPI(title="Construction Bidding Platform", lifespan=lifespan if use_lifespan else None)

    # --- 3. Middleware (後加的先執行) ---
    # Session 用來像餅乾(Cookie)一樣記住使用者的登入狀態
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.SECRET_KEY,
        max_age=config.SESSION_MAX_AGE,
        same_site="lax",  # 防止 CSRF 攻擊的設定
        https_only=config.HTTPS_ONLY,  # 正式上線有 HTTPS 時應設為 True
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        # 瀏覽器不允許 "*" 搭配 cookie
        allow_credentials="*" not in config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/api/status"})
    app.add_middleware(RequestContextMiddleware)

    # --- 4. 錯誤處理 ---
    register_exception_handlers(app)

    # --- 5. 註冊路由 ---
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(projects_router)
    app.include_router(bids_router)
    app.include_router(messages_router)
    app.include_router(ratings_router)

    @app.get("/api/status")
    async def status():
        return {"status": "ok"}

    # --- 6. 掛載上傳檔案目錄 ---
    # 例如：<img src="/uploads/avatars/..."> 會對應到 uploads 資料夾
    setup_upload_directories()
    app.mount("/uploads", StaticFiles(directory=config.UPLOAD_ROOT), name="uploads")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
