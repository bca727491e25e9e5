"""
Main FastAPI application for the Entitlement Settlement API.
Serves purchases, gateway callbacks, pricing, entitlement reads, admin and metrics.
"""
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from settlement.core.config import settings
from settlement.core.errors import SettlementError, settlement_error_handler
from settlement.core.logging import configure_logging
from settlement.api.routes import admin, entitlements, health, mock_payment, payments, pricing, purchases
from settlement.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger("settlement.access")

app = FastAPI(
    title="Entitlement Settlement API",
    description="Paid promotions and verification: pricing, payment settlement and entitlement grants",
    version="1.0.0",
)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(SettlementError, settlement_error_handler)


@app.middleware("http")
async def access_log(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid.uuid4().hex
    started = time.monotonic()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "latency_ms": round((time.monotonic() - started) * 1000, 1),
        },
    )
    return response


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(pricing.router)
app.include_router(purchases.router)
app.include_router(payments.router)
app.include_router(entitlements.router)
app.include_router(admin.router)
if settings.payment_gateway == "mock":
    app.include_router(mock_payment.router)
app.include_router(metrics_router)
