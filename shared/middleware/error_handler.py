import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

Middleware = Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]


def error_envelope(
    request: Request,
    status_code: int,
    message: str,
    **extra: Any,
) -> JSONResponse:
    """Build the standard failure body: ``{success: false, message, ...}``."""
    content: dict[str, Any] = {"success": False, "message": message}
    content.update({k: v for k, v in extra.items() if v is not None})
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": request_id} if request_id else None,
    )


def build_error_envelope_middleware(*, expose_errors: bool = False) -> Middleware:
    """
    Return an HTTP middleware that turns any exception escaping the route
    handlers into a generic 500 envelope.

    Typed domain errors never reach this point; they are decoded by the
    exception handlers registered on the app.  ``expose_errors`` adds the
    exception text to the body and is meant for development only.
    """

    async def error_envelope_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception(
                "Unhandled exception on %s %s (request_id=%s)",
                request.method,
                request.url.path,
                getattr(request.state, "request_id", None),
            )
            return error_envelope(
                request,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal server error",
                error=f"{type(exc).__name__}: {exc}" if expose_errors else None,
            )

    return error_envelope_middleware
