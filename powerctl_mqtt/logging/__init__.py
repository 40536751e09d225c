"""
Structured Logging for powerctl
===============================

Bounded Context: Observability

JSON-structured logging shared by the MQTT session, the outlet pipeline and
the command-line shell.

Public API
----------
    LogEvent: Typed event names (enum)
    StructuredLogger: JSON logger implementation
    create_logger: Factory function

Example:
    >>> from powerctl_mqtt.logging import StructuredLogger, LogEvent
    >>> logger = StructuredLogger(component="service")
    >>> logger.info(
    ...     event=LogEvent.COMMAND_SENT,
    ...     message="Command published",
    ...     metadata={'topic': 'power/office-strip/outlets/1/set', 'payload': '1'}
    ... )
"""

from .events import LogEvent
from .structured import StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
