"""
Structured JSON Logger
======================

One JSON object per record, keyed by a LogEvent name, so broker session
and outlet pipeline activity can be filtered by event in any log store.

Output (single line in practice):
    {"timestamp": "2026-10-18T15:30:45.123456+00:00", "level": "INFO",
     "component": "connection", "event": "mqtt.connected",
     "message": "Connected to MQTT broker",
     "metadata": {"broker": "broker.local:1883"}}

Records go to the stdlib logger "powerctl.<component>", so the host
application still decides where they end up.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .events import LogEvent

Metadata = Optional[Dict[str, Any]]


class _PassThroughFormatter(logging.Formatter):
    # StructuredLogger already rendered the JSON body
    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


class StructuredLogger:
    """
    JSON logger for one component.

    Shared across the paho network thread, the dispatch thread and caller
    threads; the stdlib logging module serializes the writes.

    Example:
        >>> log = StructuredLogger("service")
        >>> log.info(LogEvent.COMMAND_SENT, "Outlet command sent",
        ...          {'device': 'office-strip', 'outlet': '1', 'payload': '1'})
    """

    def __init__(self, component: str, level: int = logging.INFO):
        self.component = component
        self.logger = logging.getLogger(f"powerctl.{component}")
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(_PassThroughFormatter())
            self.logger.addHandler(handler)

    def _emit(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Metadata,
        exc: Optional[BaseException] = None,
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        body: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': logging.getLevelName(level),
            'component': self.component,
            'event': event.value,
            'message': message,
        }
        if metadata:
            body['metadata'] = metadata
        if exc is not None:
            body['exception'] = {'type': type(exc).__name__, 'message': str(exc)}

        # Tracebacks only for errors
        self.logger.log(
            level,
            json.dumps(body, default=str),
            exc_info=exc if level >= logging.ERROR else None,
        )

    def debug(self, event: LogEvent, message: str, metadata: Metadata = None) -> None:
        self._emit(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Metadata = None) -> None:
        self._emit(logging.INFO, event, message, metadata)

    def warning(
        self,
        event: LogEvent,
        message: str,
        metadata: Metadata = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """exc_info, if given, is summarized in the body without a traceback."""
        self._emit(logging.WARNING, event, message, metadata, exc_info)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Metadata = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """exc_info, if given, is summarized in the body and its traceback logged."""
        self._emit(logging.ERROR, event, message, metadata, exc_info)


def create_logger(component: str, level: int = logging.INFO) -> StructuredLogger:
    return StructuredLogger(component=component, level=level)
