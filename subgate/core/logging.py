"""
One JSON object per log line, for the API process and the Celery worker.
Domain context goes in `extra={...}`; only whitelisted keys are emitted.
"""
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from subgate.core.config import settings

# Third-party loggers that log every outbound request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """JSON log formatter; `extra` keys outside CONTEXT_FIELDS are dropped."""

    CONTEXT_FIELDS = frozenset({
        "request_id", "path", "method", "status_code", "error",
        "content_id", "creator_id", "viewer_user_id", "access", "reason",
        "subscription_id", "payment_id", "merchant_id", "reference_code",
        "channel", "recipient", "webhook_id", "event",
        "kind", "marked_past_due", "marked_expired", "reminders_sent",
        "notices_sent", "processed", "expired_count",
    })

    def __init__(self, process_name: str = "api") -> None:
        super().__init__()
        self.process_name = process_name

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "process": self.process_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key in self.CONTEXT_FIELDS and value is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        # Decimals and datetimes in extras are rendered with str().
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(process_name: str = "api") -> None:
    formatter = JsonFormatter(process_name)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream]
    if settings.log_file:
        rotating = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        rotating.setFormatter(formatter)
        handlers.append(rotating)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
