"""Global exception handling."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.turns.errors import (
    AlreadyAMember,
    TurnAlreadyActive,
    TurnDomainError,
    TurnNotActive,
)

logger = structlog.get_logger()

# Domain errors that describe a conflicting current state rather than bad input
_CONFLICTS = (TurnAlreadyActive, TurnNotActive, AlreadyAMember)


def domain_status_code(exc: TurnDomainError) -> int:
    if isinstance(exc, PermissionError):
        return 403
    if isinstance(exc, LookupError):
        return 404
    if isinstance(exc, _CONFLICTS):
        return 409
    return 422


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, TurnDomainError):
        status_code = domain_status_code(exc)
        logger.warning(
            "domain_error",
            request_id=request_id,
            error=exc.code,
            status_code=status_code,
            message=exc.message,
        )
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.code, "message": exc.message, "request_id": request_id},
        )

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=400,
            content={"error": "bad_request", "message": str(exc), "request_id": request_id},
        )

    if isinstance(exc, PermissionError):
        logger.warning("forbidden", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=403,
            content={"error": "forbidden", "message": str(exc), "request_id": request_id},
        )

    if isinstance(exc, LookupError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=404,
            content={"error": "not_found", "message": str(exc), "request_id": request_id},
        )

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
    )
