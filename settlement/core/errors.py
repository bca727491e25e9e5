"""
Domain errors. Each carries a stable code and the HTTP status the API renders it with.
"""
import logging
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

logger = logging.getLogger(__name__)


class SettlementError(Exception):
    code = "settlement_error"
    status_code = 500

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(SettlementError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(SettlementError, LookupError):
    code = "not_found"
    status_code = 404


class ConflictError(SettlementError):
    """Transition attempted on a transaction that is already terminal."""
    code = "conflict"
    status_code = 409


class GatewayError(SettlementError):
    """Transport or processor failure while talking to the payment gateway."""
    code = "gateway_error"
    status_code = 502


class RateLimitError(SettlementError):
    code = "rate_limited"
    status_code = 429


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    logger.info(
        "request_rejected",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "error": exc.code,
        },
    )
    body: dict[str, Any] = {"code": exc.code, "message": exc.message}
    if exc.detail:
        body["detail"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content={"error": body})
