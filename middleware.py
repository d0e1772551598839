import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import get_logger


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    每個請求一個 request id：沿用前端帶來的 X-Request-Id，沒有就產生一個。
    request id 綁在 structlog 的 contextvars 上，這個請求裡所有日誌都會帶著它，
    回應也會把同一個 X-Request-Id 帶回去。
    """

    header_name = "X-Request-Id"

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(self.header_name)
        request_id = (inbound.strip() if inbound else "") or str(uuid.uuid4())
        request.state.request_id = request_id

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """每個請求記一筆 JSON 存取日誌 (方法、路徑、狀態碼、耗時)。"""

    def __init__(self, app, *, exclude_paths: set[str] | None = None):
        super().__init__(app)
        self._exclude = exclude_paths or set()
        self._log = get_logger("access")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self._exclude:
            return await call_next(request)

        start = time.perf_counter()
        method = request.method.upper()
        client_host = request.client.host if request.client else None
        try:
            response = await call_next(request)
        except Exception:
            self._log.exception(
                "request_error",
                http_method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_ip=client_host,
            )
            raise

        self._log.info(
            "request",
            http_method=method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
            client_ip=client_host,
        )
        return response
