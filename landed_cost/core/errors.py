from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from landed_cost.core.logging import get_logger

logger = get_logger()


class LandedCostError(Exception):
    """Base for errors surfaced to callers with an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class InvalidRequest(LandedCostError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_request"


class NotFound(LandedCostError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Conflict(LandedCostError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class UpstreamUnavailable(LandedCostError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream_unavailable"


class ComputationError(LandedCostError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "computation_error"


async def landed_cost_error_handler(request: Request, exc: LandedCostError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=str(request.url.path), code=exc.code, message=exc.message, **exc.context)
    else:
        logger.info("request_rejected", path=str(request.url.path), code=exc.code, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LandedCostError, landed_cost_error_handler)
