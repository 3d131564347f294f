"""Structured logging configuration for the incident engine.

Engine modules log through stdlib ``logging``; the consolidation runner
and creation service emit keyword events through structlog. Both end up
in the same stdlib handlers, formatted as JSON lines or plain text.
"""

import functools
import json
import logging
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog


# Fields bound with log_context, per thread
_context = threading.local()

# LogRecord attributes that are not user supplied extras
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Consumed by render_to_log_kwargs as logging call arguments, not extras
_PASSTHROUGH_KEYS = frozenset({"exc_info", "stack_info"})


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    # Incident authorship identifies reporters, so it is redacted with credentials
    SENSITIVE_FIELDS = {
        "password", "token", "secret", "api_key", "authorization",
        "created_by", "updated_by", "user_id", "reviewer_id",
    }
    REDACTED = "[REDACTED]"

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        log_data.update(current_context())

        extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        log_data.update(self._redact(extras))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive_field(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)

    def _redact(self, value: Any) -> Any:
        """Redact sensitive keys at any depth of nested dicts and lists."""
        if isinstance(value, dict):
            return {
                key: self.REDACTED if self._is_sensitive_field(str(key)) else self._redact(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._redact(item) for item in value]
        return value


def current_context() -> Dict[str, Any]:
    """Fields bound with ``log_context`` on this thread."""
    return dict(getattr(_context, "data", {}))


@contextmanager
def log_context(**kwargs):
    """Add fields to every log line emitted on this thread inside the block.

    Example:
        with log_context(run_id=report.run_id):
            logger.info("merge_planned", canonical_id=canonical.id)
    """
    previous = current_context()
    _context.data = {**previous, **kwargs}
    try:
        yield
    finally:
        _context.data = previous


def with_current_context(fn: Callable) -> Callable:
    """Wrap ``fn`` so it runs under the caller's log context on any thread."""
    captured = current_context()

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        with log_context(**captured):
            return fn(*args, **kwargs)

    return wrapper


def _add_log_context(logger, method_name, event_dict):
    """structlog processor adding ``log_context`` fields."""
    for key, value in current_context().items():
        event_dict.setdefault(key, value)
    return event_dict


def _avoid_record_attrs(logger, method_name, event_dict):
    """structlog processor prefixing keys that would clash with LogRecord attributes."""
    for key in [k for k in event_dict if k in _RECORD_ATTRS and k not in _PASSTHROUGH_KEYS]:
        event_dict[f"event_{key}"] = event_dict.pop(key)
    return event_dict


def setup_logging(
    format: str = "json",
    level: str = "INFO",
    log_file: Optional[str] = None
) -> None:
    """Configure stdlib and structlog logging for the application.

    Args:
        format: Log format ("json" or "text")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path to also write logs to
    """
    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _add_log_context,
            _avoid_record_attrs,
            # event becomes the message, remaining keys become record extras
            structlog.stdlib.render_to_log_kwargs,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
