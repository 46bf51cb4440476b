# pensive/exception_handling.py
from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import ContentFetchError, NoContentError, NotFoundError
from .logging_setup import get_logger

# Keep a separate logger namespace for exceptions
logger = get_logger("pensive.exceptions")


async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(
        "HTTP_EXCEPTION",
        extra={"handled": True, "path": str(request.url.path), "status_code": exc.status_code},
    )
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Bad input is a 400 here, not FastAPI's default 422
    errors = jsonable_encoder(exc.errors())
    logger.info(
        "VALIDATION_ERROR",
        extra={"handled": True, "path": str(request.url.path), "errors": len(errors)},
    )
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ())[1:]) or 'body'}: {e.get('msg', 'invalid')}" for e in errors
    )
    return JSONResponse({"error": message or "Invalid request", "details": errors}, status_code=400)


async def value_error_handler(request: Request, exc: ValueError):
    logger.info("BAD_REQUEST", extra={"handled": True, "path": str(request.url.path), "error": str(exc)})
    return JSONResponse({"error": str(exc)}, status_code=400)


async def not_found_handler(request: Request, exc: Exception):
    logger.info("NOT_FOUND", extra={"handled": True, "path": str(request.url.path), "error": str(exc)})
    return JSONResponse({"error": str(exc)}, status_code=404)


async def content_fetch_handler(request: Request, exc: ContentFetchError):
    logger.warning(
        "CONTENT_FETCH_ERROR",
        extra={"handled": True, "path": str(request.url.path), "url": exc.url, "reason": exc.reason},
    )
    return JSONResponse({"error": str(exc)}, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "UNHANDLED_EXCEPTION",
        extra={"handled": False, "path": str(request.url.path)},
    )
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers in one place.
    Call from pensive/main.py after creating the FastAPI app.
    """
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(NoContentError, not_found_handler)
    app.add_exception_handler(ContentFetchError, content_fetch_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
