"""
Celery beat task: settle pending transactions the gateway never called back about.
completed -> verified + activated, failed -> failed, pending past
PENDING_TIMEOUT_HOURS -> failed("pending_timeout"). Gateway outages leave rows pending.
"""
import logging

from settlement.core.celery_app import celery_app
from settlement.db.session import SessionLocal
from settlement.services.payments.gateway import PaymentGatewayFactory
from settlement.services.payments.service import SettlementService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="settlement.workers.tasks.reconcile_payments.reconcile_pending_payments",
    time_limit=300,
    soft_time_limit=290,
)
def reconcile_pending_payments() -> dict:
    db = SessionLocal()
    try:
        gateway = PaymentGatewayFactory.create_from_settings()
        counts = SettlementService(db, gateway).reconcile_pending()
        return {"ok": True, **counts}
    except Exception:
        logger.exception("reconcile_pending_payments_failed")
        raise
    finally:
        db.close()
