"""
Celery beat task: expire guarantee requests nobody has touched for guarantee_request_ttl_days.
"""
import logging

from adslot.core.celery_app import celery_app
from adslot.db.session import SessionLocal
from adslot.services.guarantee.service import GuaranteeService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="adslot.workers.tasks.negotiations.expire_guarantee_requests",
    time_limit=60,
    soft_time_limit=55,
)
def expire_guarantee_requests() -> dict:
    db = SessionLocal()
    try:
        expired = GuaranteeService(db).expire_stale()
        db.commit()
        if expired:
            logger.info("guarantee_requests_expired", extra={"processed_count": expired})
        return {"ok": True, "expired": expired}
    except Exception:
        db.rollback()
        logger.exception("expire_guarantee_requests_error")
        return {"ok": False}
    finally:
        db.close()
