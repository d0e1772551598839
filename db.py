# db.py
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

import config
from logging_config import get_logger

log = get_logger(__name__)

# 宣告全域連線池變數，預設為 None
_pool: AsyncConnectionPool | None = None


async def open_pool(conninfo: str | None = None) -> AsyncConnectionPool:
    """
    建立並開啟連線池 (只會建立一次)。

    連線設定為 autocommit：單純查詢直接執行，
    所有寫入操作都必須自己包在 `async with conn.transaction():` 裡面，
    這樣交易邊界與列鎖 (FOR UPDATE) 的釋放時機都是明確的。
    """
    global _pool
    if _pool is not None:
        return _pool

    log.info("db_pool_opening")
    pool = AsyncConnectionPool(
        conninfo=conninfo or config.DATABASE_URL,
        min_size=config.DB_POOL_MIN_SIZE,
        max_size=config.DB_POOL_MAX_SIZE,
        kwargs={"row_factory": dict_row, "autocommit": True},  # 查詢結果變成 dict，例如 record['id']
        open=False,  # 先設定好參數，暫不開啟，由下方 open() 觸發
    )
    await pool.open()
    _pool = pool
    log.info("db_pool_opened")
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        log.info("db_pool_closed")


async def getDB():
    """
    FastAPI 的 Dependency (依賴項) 函式。

    第一次被呼叫時才建立連線池 (Lazy Loading)，
    每個請求借出一條連線，請求結束後自動歸還。
    """
    pool = await open_pool()
    async with pool.connection() as conn:
        yield conn


