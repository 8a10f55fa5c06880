import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from adslot.core.config import settings

# Libraries that log every statement or request at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "celery.redirected")


class JsonFormatter(logging.Formatter):
    """One JSON object per line. The message is the event name; context travels in extra={}."""

    # Keys accepted from extra={...}; anything else passed there is dropped
    EXTRA_FIELDS = (
        # request
        "request_id", "path", "method", "status_code", "latency_ms", "error_code",
        # actors
        "user_id", "distributor_id",
        # entities
        "slot_id", "slot_ids", "keyword_count", "refund_id", "guarantee_request_id",
        "guarantee_slot_id", "inquiry_id", "message_id",
        # money and status
        "amount", "free_used", "paid_used", "transaction_type", "status", "old_status", "new_status",
        # batch jobs
        "processed_count", "success_count", "failed_count", "total_amount", "expired", "error",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "service": settings.service_name,
        }
        payload.update(
            (field, getattr(record, field))
            for field in self.EXTRA_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    formatter = JsonFormatter()
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
