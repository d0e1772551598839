from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

import config
from logging_config import get_logger

log = get_logger(__name__)


# =========================================================
# 錯誤分類 (所有業務錯誤都繼承 DomainError)
# =========================================================

class DomainError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, *, errors: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class Unauthenticated(DomainError):
    status_code = 401
    code = "unauthenticated"


class AccessDenied(DomainError):
    status_code = 403
    code = "access_denied"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class InvalidInput(DomainError):
    """欄位驗證失敗；errors 一次列出全部違規欄位，而不是遇到第一個就停。"""

    status_code = 400
    code = "invalid_input"


class InvalidState(DomainError):
    status_code = 400
    code = "invalid_state"


class Conflict(DomainError):
    status_code = 409
    code = "conflict"


class DeadlinePassed(DomainError):
    status_code = 400
    code = "deadline_passed"


class UploadRejected(DomainError):
    status_code = 400
    code = "upload_rejected"


class FileTooLarge(UploadRejected):
    status_code = 413
    code = "file_too_large"


class TooManyFiles(UploadRejected):
    code = "too_many_files"


class UnsupportedType(UploadRejected):
    status_code = 415
    code = "unsupported_type"


# =========================================================
# 驗證錯誤轉換
# =========================================================

def _field_name(loc) -> str:
    # ("body", "location", "city") -> "location.city"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "form")]
    return ".".join(parts) or "__root__"


def invalid_input_from(exc: ValidationError | RequestValidationError) -> InvalidInput:
    errors = [
        {"field": _field_name(e.get("loc", ())), "message": e.get("msg", "Invalid value")}
        for e in exc.errors()
    ]
    return InvalidInput("Validation failed", errors=errors)


# =========================================================
# FastAPI exception handlers
# =========================================================

async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        log.error("domain_error", path=request.url.path, error=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = invalid_input_from(exc)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def pydantic_validation_handler(request: Request, exc: ValidationError):
    err = invalid_input_from(exc)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception):
    # 不把內部錯誤細節洩漏給前端 (開發環境除外)
    log.exception("unhandled_error", path=request.url.path, method=request.method)
    message = str(exc) if config.ENVIRONMENT == "development" else "Internal server error"
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, pydantic_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
