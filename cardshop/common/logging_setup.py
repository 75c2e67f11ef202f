import json
import logging
import re
import sys
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from typing import Any, Dict, Optional
from cardshop.common.constants import request_id_ctx
from cardshop.config.admin_config import admin_config

ENV = getattr(admin_config, "ENV", "dev").lower()

# extras whose value is replaced wholesale: delivered codes and gateway credentials
REDACTED_FIELDS = frozenset({"cards", "delivered_cards", "content", "sign", "key", "secret", "password"})

# `name=value` / `"name": "value"` fragments inside free text
_TEXT_PATTERNS = [
    re.compile(rf'("{name}"\s*:\s*")[^"]*(")', re.IGNORECASE)
    for name in ("sign", "key", "secret", "password", "token")
] + [
    re.compile(rf"(\b{name}\s*[=:]\s*)[^\s&,;]+", re.IGNORECASE)
    for name in ("sign", "key", "secret", "password", "token")
]

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# third party loggers: (level outside dev, level in dev)
_NOISY_LOGGERS = {
    "uvicorn.access": (logging.WARNING, logging.INFO),
    "sqlalchemy.engine": (logging.WARNING, logging.WARNING),
    "httpx": (logging.WARNING, logging.INFO),
    "httpcore": (logging.WARNING, logging.WARNING),
    "aiosqlite": (logging.WARNING, logging.WARNING),
}


def redact_text(text: str) -> str:
    for pattern in _TEXT_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + "[REDACTED]" + (m.group(2) if m.lastindex == 2 else ""), text)
    return text


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras = {}
    for k, v in vars(record).items():
        if k in _STANDARD_ATTRS or k.startswith("_"):
            continue
        extras[k] = "[REDACTED]" if k in REDACTED_FIELDS else v
    return extras


class JSONFormatter(logging.Formatter):
    """One JSON object per line with the event name as `message` and extras flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_text(record.getMessage()),
            "service": getattr(admin_config, "SERVICE_NAME", "cardshop"),
            "env": ENV,
        }
        entry.update(_record_extras(record))
        entry.setdefault("request_id", request_id_ctx.get())
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class SecurityFilter(logging.Filter):
    """Scrubs credentials from rendered messages and redacted extras before any handler sees them."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_text(record.getMessage())
        record.args = ()
        for k in REDACTED_FIELDS:
            if k in record.__dict__:
                setattr(record, k, "[REDACTED]")
        return True


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if ENV == "dev":
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s | %(message)s", datefmt="%H:%M:%S"))
    else:
        handler.setFormatter(JSONFormatter())
    handler.addFilter(SecurityFilter())
    return handler


_queue_listener: Optional[QueueListener] = None


def setup_logging() -> logging.Logger:
    """Route every record through a queue so request handlers never block on the sink.

    Safe to call again: the previous listener is stopped and replaced.
    """
    global _queue_listener
    shutdown_logging()

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    log_queue: Queue = Queue(-1)
    root.addHandler(QueueHandler(log_queue))
    root.setLevel(logging.INFO if ENV in ("prod", "staging") else logging.DEBUG)

    _queue_listener = QueueListener(log_queue, _console_handler(), respect_handler_level=True)
    _queue_listener.start()

    for name, (level, dev_level) in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(dev_level if ENV == "dev" else level)

    return logging.getLogger("cardshop.app")


def shutdown_logging() -> None:
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


class ContextLogger(logging.LoggerAdapter):
    """Adds the current request id to every record's extras."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        rid = request_id_ctx.get()
        if rid:
            extra.setdefault("request_id", rid)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str = "cardshop.app") -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})
