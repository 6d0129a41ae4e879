"""Global error handler middleware."""
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dashvault.exceptions import AppError, ExternalServiceError
from dashvault.schemas.common import ErrorDetail

logger = structlog.get_logger()

RETRY_AFTER_SECONDS = "5"


def _problem(status: int, title: str, detail: str, code: str, **extra) -> JSONResponse:
    body = ErrorDetail(status=status, title=title, detail=detail, code=code, **extra)
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


def setup_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        extra = {"service": exc.service} if isinstance(exc, ExternalServiceError) else {}
        if exc.status_code >= 500:
            logger.warning("app_error", code=exc.code, path=request.url.path, error=exc.message)
        response = _problem(exc.status_code, exc.title, exc.message, exc.code, **extra)
        if exc.retryable:
            response.headers["Retry-After"] = RETRY_AFTER_SECONDS
        return response

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
        return _problem(400, "Bad Request", str(exc), "INVALID_INPUT")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=True)
        return _problem(500, "Internal Server Error", "An unexpected error occurred.", "INTERNAL_ERROR")
