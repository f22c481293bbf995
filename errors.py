import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationFailed(AppError):
    status_code = 400
    message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFound(AppError):
    status_code = 404
    message = "Not found"


class Unauthorized(AppError):
    status_code = 401
    message = "Access token is required"


class InvalidToken(Unauthorized):
    message = "Invalid token"


class AccountInactive(Unauthorized):
    message = "Account is deactivated"


class Forbidden(AppError):
    status_code = 403
    message = "Access denied"


class Conflict(AppError):
    status_code = 400
    message = "Conflict"


class AmountMismatch(Conflict):
    message = "Total amount mismatch"


class Unavailable(AppError):
    status_code = 400
    message = "Product is not available"


class ProviderFailure(AppError):
    status_code = 500
    message = "Failed to send OTP email"


class InvalidCode(AppError):
    status_code = 400
    message = "Invalid OTP"


class CodeExpired(NotFound):
    status_code = 400
    message = "OTP has expired. Please request a new one."


class TooManyAttempts(AppError):
    status_code = 400
    message = "Too many failed attempts. Please request a new OTP."


class RateLimited(AppError):
    status_code = 429
    message = "Too many requests, please try again later"


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        content: Dict[str, Any] = {"error": exc.message}
        if isinstance(exc, ValidationFailed) and exc.errors:
            content["errors"] = exc.errors
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": _field_name(err.get("loc", ())), "message": err.get("msg", "Invalid value")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Server error"})
