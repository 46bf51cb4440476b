# pensive/middleware.py
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .logging_setup import request_id_var, user_id_var, get_logger

logger = get_logger("pensive.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Correlation ids for every log line written while serving this request
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        token = request_id_var.set(req_id)
        user_token = user_id_var.set(request.headers.get("x-user-id") or "-")

        start = time.perf_counter()
        response: Optional[Response] = None

        try:
            logger.info(f"REQUEST START: {request.method} {request.url.path}")
            response = await call_next(request)
            response.headers["X-Request-Id"] = req_id
            return response
        except Exception:
            # Log and re-raise so the global exception handlers can respond
            logger.exception(f"REQUEST EXCEPTION: {request.method} {request.url.path}")
            raise
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            status = getattr(response, "status_code", 500)  # default to 500 if response never got set
            logger.info(f"REQUEST END: {request.method} {request.url.path} -> {status} ({elapsed_ms:.1f} ms)")
            user_id_var.reset(user_token)
            request_id_var.reset(token)
