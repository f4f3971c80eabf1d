"""
Structured JSON Logger
=====================

Bounded Context: Observability Infrastructure

Wraps Python's logging module and emits one JSON document per record, so
bridge logs can be queried by event name in a log aggregator.

Example:
    >>> logger = StructuredLogger(component="bridge")
    >>> logger.info(
    ...     event=LogEvent.BRIDGE_PUBLISH,
    ...     message="Published staged value",
    ...     metadata={'topic': 'lights/set', 'payload': 'on'}
    ... )

Output:
    {"timestamp": "2025-10-24T15:30:45.123456+00:00", "level": "INFO",
     "component": "bridge", "event": "bridge.publish.success",
     "message": "Published staged value",
     "metadata": {"topic": "lights/set", "payload": "on"}}
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .events import LogEvent


Metadata = Optional[Dict[str, Any]]


def render_entry(
    level: int,
    component: str,
    event: LogEvent,
    message: str,
    metadata: Metadata = None,
    exc_info: Optional[BaseException] = None,
) -> str:
    """One log line as JSON. Non-serializable metadata values go through str()."""
    entry: Dict[str, Any] = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'level': logging.getLevelName(level),
        'component': component,
        'event': event.value,
        'message': message,
    }
    if metadata:
        entry['metadata'] = metadata
    if exc_info is not None:
        entry['exception'] = {
            'type': type(exc_info).__name__,
            'message': str(exc_info),
        }
    return json.dumps(entry, default=str)


class StructuredLogger:
    """
    JSON structured logger bound to one component.

    Every call takes a typed LogEvent, a human-readable message and an
    optional metadata mapping. Records below the logger's level are not
    rendered at all.
    """

    def __init__(
        self,
        component: str,
        level: int = logging.INFO,
        logger_name: Optional[str] = None
    ):
        """
        Args:
            component: Component identifier (e.g., "bridge", "connection")
            level: Logging level (default: INFO)
            logger_name: Custom logger name (default: semaphore.<component>)
        """
        self.component = component
        self.logger = logging.getLogger(logger_name or f"semaphore.{component}")
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)

    def _emit(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Metadata = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(
            level,
            render_entry(level, self.component, event, message, metadata, exc_info),
            exc_info=exc_info,
        )

    def debug(self, event: LogEvent, message: str, metadata: Metadata = None) -> None:
        """Per-frame traffic and dropped events."""
        self._emit(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Metadata = None) -> None:
        self._emit(logging.INFO, event, message, metadata)

    def warning(self, event: LogEvent, message: str, metadata: Metadata = None) -> None:
        """
        Example:
            >>> logger.warning(
            ...     event=LogEvent.MQTT_RECONNECTING,
            ...     message="Lost connection to broker",
            ...     metadata={'broker': 'ws://localhost:9001/mqtt'}
            ... )
        """
        self._emit(logging.WARNING, event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Metadata = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Args:
            exc_info: Exception instance; its traceback is attached to the record
        """
        self._emit(logging.ERROR, event, message, metadata, exc_info)


class JSONFormatter(logging.Formatter):
    """Pass-through formatter: StructuredLogger already renders JSON."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def create_logger(component: str, level: int = logging.INFO) -> StructuredLogger:
    """
    Factory function to create configured StructuredLogger.

    Example:
        >>> logger = create_logger("connection", level=logging.DEBUG)
    """
    return StructuredLogger(component=component, level=level)
