import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from leave_engine.core.config import settings

# HTTP correlation id, set by CorrelationIdMiddleware
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
# Set while a scheduled batch job (accrual, carry-forward, expiry) runs
job_id_var: ContextVar[str] = ContextVar("job_id", default="")

_CONTEXT_FIELDS = (("request_id", request_id_var), ("job_id", job_id_var))


class LeaveJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per line, tagged with whichever correlation ids are active."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        for key, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_record[key] = value
        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["env"] = settings.environment


def setup_logging():
    root = logging.getLogger()
    # Importing the app twice (tests, reload) must not stack handlers
    if any(isinstance(h.formatter, LeaveJsonFormatter) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(LeaveJsonFormatter("%(timestamp) %(level) %(name) %(message)"))
    root.addHandler(handler)
    root.setLevel(settings.log_level)

    for noisy in ("uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
