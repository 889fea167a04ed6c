import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.context import get_actor_id, get_request_id, get_tenant_id
from app.core.settings import settings

AUDIT_LOGGER = "app.audit"

# Extras copied from ``logger.x(..., extra={...})`` onto the JSON line.
EXTRA_KEYS = ("event", "fields", "document_id")


class RequestContextFilter(logging.Filter):
    """Stamp every record with the tenant, request and actor of the current unit of work."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = get_tenant_id()
        record.request_id = get_request_id()
        record.actor_id = get_actor_id()
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, stream_label: str = "service") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": record.getMessage(),
            "tenant_id": getattr(record, "tenant_id", "-"),
            "request_id": getattr(record, "request_id", "-"),
            "actor_id": getattr(record, "actor_id", "-"),
        }
        for key in EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(tenant_id)s %(request_id)s] %(name)s: %(message)s"


def _handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Route service logs and the audit stream to stdout.

    ``LOG_FORMAT=text`` swaps the JSON lines for a readable single-line format
    during local runs. The audit stream is always JSON.
    """
    log_level = (level or settings.log_level).upper()
    service_formatter = "text" if (fmt or settings.log_format) == "text" else "json"
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "service"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
                "text": {"format": TEXT_FORMAT},
            },
            "handlers": {
                "default": _handler(service_formatter, log_level),
                "audit": _handler("audit_json", log_level),
            },
            "loggers": {
                "": {"handlers": ["default"], "level": log_level},
                AUDIT_LOGGER: {"handlers": ["audit"], "level": "INFO", "propagate": False},
                "sqlalchemy.engine": {"level": "INFO" if settings.sql_echo else "WARNING"},
                "uvicorn.access": {"handlers": ["default"], "level": log_level, "propagate": False},
            },
        }
    )
    logging.getLogger(__name__).debug(
        "Logging configured environment=%s level=%s format=%s",
        settings.environment,
        log_level,
        service_formatter,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
