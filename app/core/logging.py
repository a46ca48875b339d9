import json
import logging
import logging.config
import re
from datetime import datetime, timezone
from typing import Optional

from app.core.context import get_loan_id, get_request_id, get_tenant_id
from app.core.settings import settings


# Borrower data must never reach the log stream in clear text.
_SSN = re.compile(r"\b\d{3}-?\d{2}-?(\d{4})\b")
_PHONE = re.compile(r"(?<!\w)\+?1?\d{6}(\d{4})\b")
_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "tenant_id", "request_id", "loan_id"}


def redact(text: str) -> str:
    text = _SSN.sub(r"***-**-\1", text)
    return _PHONE.sub(r"******\1", text)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = get_tenant_id()
        record.request_id = get_request_id()
        record.loan_id = get_loan_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are carried through."""

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": redact(record.getMessage()),
            "request_id": getattr(record, "request_id", "-"),
            "tenant_id": getattr(record, "tenant_id", "-"),
        }
        if getattr(record, "loan_id", "-") != "-":
            payload["loan_id"] = record.loan_id
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    quiet = {"handlers": ["default"], "level": "WARNING", "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "app"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _handler("json", log_level),
                "audit": _handler("audit_json", log_level),
            },
            "loggers": {
                "": {"handlers": ["default"], "level": log_level},
                "app.audit": {"handlers": ["audit"], "level": log_level, "propagate": False},
                "httpx": quiet,
                "httpcore": quiet,
                "uvicorn.access": {"handlers": ["default"], "level": log_level, "propagate": False},
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"environment": settings.environment, "tenancy_mode": settings.tenancy_mode},
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger("app.audit")
