"""
Celery application for the adslot workers.
Beat drives the refund payout sweep and the expiry of idle guarantee requests;
both run against the same database as the API.
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from adslot.core.config import settings
from adslot.core.logging import configure_logging

REFUND_TASKS = "adslot.workers.tasks.refunds"
NEGOTIATION_TASKS = "adslot.workers.tasks.negotiations"

celery_app = Celery(
    "adslot",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[REFUND_TASKS, NEGOTIATION_TASKS],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "process-scheduled-refunds": {
            "task": f"{REFUND_TASKS}.process_scheduled_refunds",
            "schedule": crontab(minute=f"*/{settings.refund_sweep_minutes}"),
        },
        "expire-guarantee-requests": {
            "task": f"{NEGOTIATION_TASKS}.expire_guarantee_requests",
            "schedule": crontab(minute=0),
        },
    },
)

# Workers for payouts consume only the refunds queue
celery_app.conf.task_routes = {
    f"{REFUND_TASKS}.process_scheduled_refunds": {"queue": "refunds"},
    f"{REFUND_TASKS}.process_single_refund": {"queue": "refunds"},
}


@setup_logging.connect
def _setup_worker_logging(**kwargs) -> None:
    configure_logging()
