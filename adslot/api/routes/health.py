from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adslot.core.config import settings
from adslot.db.session import get_db


router = APIRouter()


def _check_database(db: Session) -> str | None:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return str(e)
    return None


def _check_redis() -> str | None:
    """Redis backs the purchase guard and the Celery broker."""
    client = redis.Redis.from_url(settings.redis_url, socket_connect_timeout=settings.redis_health_timeout)
    try:
        client.ping()
    except redis.RedisError as e:
        return str(e)
    finally:
        client.close()
    return None


@router.get("/health")
def health() -> dict:
    """Liveness probe: 200 while the process serves requests."""
    return {"status": "ok", "service": settings.service_name}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness probe: 503 with the failing checks when the database or Redis is down."""
    errors = {name: err for name, err in (("database", _check_database(db)), ("redis", _check_redis())) if err}
    if errors:
        response.status_code = 503
        return {"status": "not_ready", "errors": errors}
    return {"status": "ready"}
