"""One-line JSON logging for the ERP backend."""
import json
import logging
import os
import sys
import threading
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

_LOGGER_PREFIX = "erp_backend"

_actor_id: ContextVar[str | None] = ContextVar("log_actor_id", default=None)
_request_id: ContextVar[str | None] = ContextVar("log_request_id", default=None)


def bind_context(actor_id: str | None = None, request_id: int | str | None = None) -> None:
    """Attach actor / approval request ids to every record logged in this context."""
    if actor_id is not None:
        _actor_id.set(str(actor_id))
    if request_id is not None:
        _request_id.set(str(request_id))


def clear_context() -> None:
    _actor_id.set(None)
    _request_id.set(None)


_STDLIB_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if _actor_id.get() is not None:
            payload["actor_id"] = _actor_id.get()
        if _request_id.get() is not None:
            payload["request_id"] = _request_id.get()

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


_configured = False
_lock = threading.Lock()


def configure_logging(level: str | None = None, stream: Any = None) -> None:
    """Install the JSON handler on the erp_backend logger tree (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(getattr(logging, lvl, logging.INFO))

    h = logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)
