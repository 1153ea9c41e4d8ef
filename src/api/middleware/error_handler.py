"""Global exception handling.

Pipeline errors carry their own status code. Builtins raised from request
parsing or policy validation map by type.
"""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.shared.exceptions import OrderRiskError

logger = structlog.get_logger()

_ERROR_NAMES = {
    400: "bad_request",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    503: "service_unavailable",
}


def status_for(exc: Exception) -> int:
    if isinstance(exc, OrderRiskError) and exc.status_code != 500:
        return exc.status_code
    if isinstance(exc, ValueError):
        return 400
    if isinstance(exc, PermissionError):
        return 403
    if isinstance(exc, LookupError):
        return 404
    return 500


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_for(exc)

    if status_code == 500:
        logger.exception(
            "unhandled_exception",
            request_id=request_id,
            path=request.url.path,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )

    error = _ERROR_NAMES.get(status_code, "error")
    logger.warning(error, request_id=request_id, path=request.url.path, error_message=str(exc))
    content = {"error": error, "message": str(exc), "request_id": request_id}
    fields = getattr(exc, "fields", None)
    if fields:
        content["fields"] = fields
    return JSONResponse(status_code=status_code, content=content)
