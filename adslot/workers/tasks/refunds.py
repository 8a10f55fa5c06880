"""
Celery beat task: pay out approved refunds whose scheduled_at has passed.
Each refund is applied in its own savepoint, so one failure never blocks the rest of the batch.
"""
import logging

from adslot.core.celery_app import celery_app
from adslot.db.session import SessionLocal
from adslot.services.refunds.service import RefundService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="adslot.workers.tasks.refunds.process_scheduled_refunds",
    time_limit=600,
    soft_time_limit=570,
)
def process_scheduled_refunds() -> dict:
    db = SessionLocal()
    try:
        result = RefundService(db).process_scheduled_refunds()
        db.commit()
        return {"ok": True, **result}
    except Exception:
        db.rollback()
        logger.exception("process_scheduled_refunds_error")
        return {"ok": False, "error": "exception"}
    finally:
        db.close()


@celery_app.task(name="adslot.workers.tasks.refunds.process_single_refund", time_limit=60)
def process_single_refund(refund_id: str, ignore_schedule: bool = False) -> dict:
    """Admin-triggered payout of one refund, off the request thread."""
    db = SessionLocal()
    try:
        plan = RefundService(db).process_single_refund(refund_id, ignore_schedule=ignore_schedule)
        db.commit()
        return {"ok": True, "refund_id": refund_id, "total_amount": plan["total_amount"]}
    except Exception:
        db.rollback()
        logger.exception("process_single_refund_error", extra={"refund_id": refund_id})
        return {"ok": False, "refund_id": refund_id}
    finally:
        db.close()
