from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import traceback
import uuid

from .core.cors import add_cors_headers_to_response
from .core.errors import UpstreamProviderError, UsageLimitError, VoxForgeError
from .core.logging import get_logger

USER_FRIENDLY_MESSAGES = {
    "internal_error": "We're experiencing technical difficulties. Please try again in a moment.",
    "request_validation_error": "Please check your input and try again.",
}

RETRYABLE_CODES = {
    "internal_error",
    "upstream_error",
}


def error_payload(code: str, message: str, details=None, request: Request | None = None, error_id: str | None = None):
    """Build the JSON error envelope shared by every error response."""
    user_message = USER_FRIENDLY_MESSAGES.get(code, message)
    out = {
        "error": {
            "code": code,
            "message": user_message,
            "technical_message": message if user_message != message else None,
            "details": details,
            "retryable": code in RETRYABLE_CODES,
        }
    }
    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        out["error"]["request_id"] = rid
    if error_id:
        out["error"]["error_id"] = error_id
    return out


def install_exception_handlers(app):
    log = get_logger("voxforge.exceptions")

    @app.exception_handler(VoxForgeError)
    async def domain_exc_handler(request: Request, exc: VoxForgeError):
        if isinstance(exc, UsageLimitError):
            # Quota rejections are expected traffic
            log.info("UsageLimit %s %s category=%s", request.method, request.url.path, exc.category)
        elif isinstance(exc, UpstreamProviderError):
            log.warning("Upstream %s %s provider=%s", request.method, request.url.path, exc.provider)
        else:
            log.warning("%s %s %s -> %s: %s", type(exc).__name__, request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(
            error_payload(exc.code, exc.message, exc.details, request),
            status_code=exc.status_code,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        log.warning(
            "HTTPException %s %s -> %s: %s",
            request.method, request.url.path, exc.status_code, exc.detail,
        )
        return JSONResponse(
            error_payload("http_error", exc.detail, {"status_code": exc.status_code}, request),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        log.info("RequestValidationError %s %s", request.method, request.url.path)
        return JSONResponse(
            error_payload("request_validation_error", "Validation failed", jsonable_errors(exc), request),
            status_code=422,
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        err_id = str(uuid.uuid4())
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        log.error(
            "Unhandled exception [%s] %s %s\nTraceback:\n%s",
            err_id, request.method, request.url.path, tb,
        )
        response = JSONResponse(
            error_payload("internal_error", "Something went wrong", None, request, error_id=err_id),
            status_code=500,
        )
        return add_cors_headers_to_response(response, request)


def jsonable_errors(exc: RequestValidationError):
    out = []
    for err in exc.errors():
        out.append({
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": str(err.get("msg", "")),
            "type": str(err.get("type", "")),
        })
    return out
