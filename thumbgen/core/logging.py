import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from thumbgen.core.config import settings


class JsonFormatter(logging.Formatter):
    """JSON log formatter with support for extra fields."""

    # Fields to extract from log record's extra dict
    EXTRA_FIELDS = (
        "account_id", "request_id", "artifact_id", "artifact_ids", "path", "method",
        "status_code", "latency_ms", "error", "token", "related_token",
        "amount", "kind", "failure_reason", "state", "variations", "timing",
        "succeeded", "failed", "attempt", "breaker_name", "old_state", "new_state",
        "count", "shortfall", "duplicate", "balance_after", "reason", "width",
        "source_artifact_id", "duration_seconds", "max_attempts", "delay_seconds",
        "model_version", "finish_reason", "block_reason", "attempt_number",
        "success_after_retry", "failure_type", "retry_allowed", "url", "checks",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    handlers = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    root.handlers = handlers
