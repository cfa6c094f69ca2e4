"""Middleware and exception handlers for the FastAPI application"""
import logging
import time

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from toolsblog.core.config import settings
from toolsblog.core.exceptions import AppError

logger = logging.getLogger(__name__)
api_access_logger = logging.getLogger("api_access")


def allowed_origins():
    origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    if settings.ENVIRONMENT == "development":
        origins += ["http://localhost:3000", "http://localhost:4321"]
    return origins


def setup_cors_middleware(app):
    # No cookies or sessions: the blog frontend calls the API anonymously
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type"],
    )


async def access_log_middleware(request: Request, call_next):
    """Log method, path, status and latency of every request"""
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        client = request.client.host if request.client else "-"
        api_access_logger.info(
            f"{client} {request.method} {request.url.path} {status_code} {elapsed_ms:.1f}ms"
        )


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    content = {"success": False, "error": exc.to_dict()}
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
    return error_response(400, "VALIDATION_ERROR", message)


async def global_exception_handler(request: Request, exc: Exception):
    """Collapse unexpected failures to a generic 500 without internal details"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(500, "SERVER_ERROR", "An unexpected error occurred")


def setup_exception_handlers(app):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
