"""Structured logging for Topicdesk services.

Log records are emitted as single-line JSON so that events for one
user or one relay thread can be grepped out of a shared stream.

Usage:
    logger = get_logger(__name__)
    context = EventContext(update_id=update.update_id, user_id="42")
    logger.info("Message relayed", context=context, outcome="forwarded")
"""

import json
import logging
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# Logger instances by name
_loggers: dict[str, "StructuredLogger"] = {}

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "topicdesk"


class JsonFormatter(logging.Formatter):
    """Render log records as JSON objects.

    Every structured field passed through ``extra`` becomes a top-level
    key of the object. Values that cannot be serialized are stringified.
    """

    # LogRecord attributes that are never copied as extra fields
    RESERVED_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    }

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        """Initialize the formatter.

        Args:
            service_name: Value written to the ``service`` key, so the API
                and the worker can share one log sink.
        """
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """Serialize one record.

        Args:
            record: The record to render.

        Returns:
            One line of JSON. Non-ASCII text (user names, messages) is
            kept readable rather than escaped.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        # Source location only for warnings and above
        if record.levelno >= logging.WARNING:
            log_entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_entry["exception"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        for key, value in record.__dict__.items():
            if key in self.RESERVED_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry, ensure_ascii=False)


@dataclass
class EventContext:
    """Identifiers of the inbound event currently being handled.

    The dispatcher creates one per update and fills in the user and
    thread as they become known, so every line logged while handling
    the update can be correlated.
    """

    update_id: Optional[int] = None
    event_kind: Optional[str] = None
    user_id: Optional[str] = None
    thread_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Flatten the context into log fields.

        Returns:
            The fields that are set; unset identifiers are omitted.
        """
        result: dict[str, Any] = {}
        if self.update_id is not None:
            result["update_id"] = self.update_id
        if self.event_kind:
            result["event_kind"] = self.event_kind
        if self.user_id:
            result["user_id"] = self.user_id
        if self.thread_id:
            result["thread_id"] = self.thread_id
        result.update(self.extra)
        return result


class StructuredLogger:
    """Logger that accepts an event context and keyword fields.

    Wraps a standard library logger; records still go through the
    normal handler chain configured by ``configure_logging``.
    """

    def __init__(self, name: str):
        """Initialize the logger.

        Args:
            name: Logger name, normally the module's ``__name__``.
        """
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        msg: str,
        context: Optional[EventContext] = None,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        """Emit one record.

        Args:
            level: Numeric log level.
            msg: Human-readable message.
            context: Event identifiers merged into the fields.
            exc_info: Attach the active exception's traceback.
            **kwargs: Extra structured fields.
        """
        if context:
            kwargs.update(context.to_dict())
        self._logger.log(level, msg, exc_info=exc_info, extra=dict(kwargs))

    def debug(self, msg: str, context: Optional[EventContext] = None, **kwargs: Any) -> None:
        """Log at DEBUG."""
        self._log(logging.DEBUG, msg, context, **kwargs)

    def info(self, msg: str, context: Optional[EventContext] = None, **kwargs: Any) -> None:
        """Log at INFO."""
        self._log(logging.INFO, msg, context, **kwargs)

    def warning(self, msg: str, context: Optional[EventContext] = None, **kwargs: Any) -> None:
        """Log at WARNING."""
        self._log(logging.WARNING, msg, context, **kwargs)

    def error(
        self,
        msg: str,
        context: Optional[EventContext] = None,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        """Log at ERROR, optionally with the current traceback."""
        self._log(logging.ERROR, msg, context, exc_info=exc_info, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger.

    Args:
        name: Logger name, normally the module's ``__name__``.

    Returns:
        The cached StructuredLogger for ``name``.
    """
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Install a single stdout handler on the root logger.

    Called once by the API lifespan and once when the worker's Celery
    app is imported. Any handlers already on the root logger are removed.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines instead of plain text
        service_name: Value of the ``service`` field in JSON output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )

    root_logger.addHandler(handler)

    # httpx logs every request URL at INFO, which would leak the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)
