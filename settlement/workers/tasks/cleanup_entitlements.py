"""
Celery beat task: clear is_active on grants whose expiry has passed.
Reads never depend on it; it only keeps "WHERE is_active" queries honest.
"""
import logging

from settlement.core.celery_app import celery_app
from settlement.db.session import SessionLocal
from settlement.services.entitlements.service import EntitlementService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="settlement.workers.tasks.cleanup_entitlements.clear_stale_entitlement_flags",
    time_limit=120,
    soft_time_limit=110,
)
def clear_stale_entitlement_flags() -> dict:
    db = SessionLocal()
    try:
        cleared = EntitlementService(db).clear_stale_flags()
        return {"ok": True, "cleared": cleared}
    except Exception:
        logger.exception("clear_stale_entitlement_flags_failed")
        db.rollback()
        raise
    finally:
        db.close()
