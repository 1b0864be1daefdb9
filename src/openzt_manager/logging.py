"""Logging setup for the manager.

Two output formats, selected by LoggingConfig.format:
- text: one line per record, for a terminal
- json: python-json-logger records for log aggregation

Structured fields travel in `extra` (see logging_schema.LogEvent).
"""

import logging
import sys
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, TextIO

from pythonjsonlogger import json as jsonlogger

from openzt_manager import __version__
from openzt_manager.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Libraries whose INFO output is one line per Docker API call
_NOISY_LOGGERS = ("httpx", "httpcore")


class RateLimitFilter(logging.Filter):
    """Drop repeats of the same warning within a window.

    While the container runtime is down every reconciliation and every
    cleanup attempt fails with an identical message. Records are keyed by
    logger, event, instance and rendered message; ERROR and above are
    never dropped. The first record let through after a quiet window
    carries a `suppressed` count of the repeats that were dropped.
    """

    def __init__(
        self,
        window_seconds: float = 5.0,
        max_keys: int = 1000,
        clock=time.monotonic,
    ) -> None:
        super().__init__()
        self._window = window_seconds
        self._max_keys = max_keys
        self._clock = clock
        # key -> (last emitted at, repeats dropped since)
        self._seen: OrderedDict[tuple, tuple[float, int]] = OrderedDict()

    def _key(self, record: logging.LogRecord) -> tuple:
        return (
            record.name,
            getattr(record, "event", None),
            getattr(record, "instance_id", None),
            record.getMessage(),
        )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = self._key(record)
        now = self._clock()
        seen = self._seen.get(key)

        if seen is not None:
            emitted_at, dropped = seen
            if now - emitted_at < self._window:
                self._seen[key] = (emitted_at, dropped + 1)
                return False
            if dropped:
                record.suppressed = dropped

        self._seen[key] = (now, 0)
        self._seen.move_to_end(key)
        while len(self._seen) > self._max_keys:
            self._seen.popitem(last=False)
        return True


class ManagerJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per record.

    Always present: timestamp (UTC, ISO 8601), level, logger, service,
    version, message. `event` is rendered as its plain string value and
    `extra` fields that are None are left out.
    """

    def __init__(self, config: LoggingConfig, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._service = config.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        for key in [k for k, v in log_record.items() if v is None]:
            del log_record[key]

        event = log_record.get("event")
        if event is not None:
            log_record["event"] = str(event)

        log_record.update(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            service=self._service,
            version=__version__,
            source=f"{record.module}:{record.lineno}",
        )
        if record.exc_info and "exc_info" not in log_record:
            log_record["exception"] = self.formatException(record.exc_info)


def setup_logging(config: LoggingConfig, stream: TextIO | None = None) -> logging.Handler:
    """Install a single rate-limited handler on the root logger.

    uvicorn's own loggers are routed to the same handler and its access
    log is turned off.

    Returns:
        The installed handler.
    """
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    if config.format == "json":
        handler.setFormatter(ManagerJsonFormatter(config))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    handler.addFilter(RateLimitFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False
    logging.getLogger("uvicorn.access").disabled = True

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
