"""
Celery application: broker and result backend from settings.
Tasks are in settlement.workers.tasks (reconciliation, entitlement flag sweep).
"""
from celery import Celery
from celery.schedules import crontab

from settlement.core.config import settings

celery_app = Celery(
    "settlement",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "settlement.workers.tasks.reconcile_payments",
        "settlement.workers.tasks.cleanup_entitlements",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "reconcile-pending-payments": {
            "task": "settlement.workers.tasks.reconcile_payments.reconcile_pending_payments",
            "schedule": crontab(minute="*/15"),
        },
        "clear-stale-entitlement-flags": {
            "task": "settlement.workers.tasks.cleanup_entitlements.clear_stale_entitlement_flags",
            "schedule": crontab(minute=5),
        },
    },
)

celery_app.autodiscover_tasks(["settlement.workers.tasks"])
