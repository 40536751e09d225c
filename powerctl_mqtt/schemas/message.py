"""
Message Log Schema
==================

Bounded Context: Audit Trail Data Structures

LogEntry records one observed MQTT exchange (inbound status or outbound
command) for troubleshooting display.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from .common import Timestamp


class Direction(str, Enum):
    """Message direction as shown in the log view."""
    SENT = "Send"
    RECEIVED = "Recv"


@dataclass(frozen=True)
class LogEntry:
    """
    Immutable log entry.

    Attributes:
        direction: SENT or RECEIVED
        topic: MQTT topic, verbatim
        payload: Payload text, verbatim
        timestamp: When the entry was appended
    """
    direction: Direction
    topic: str
    payload: str
    timestamp: Timestamp

    def to_dict(self) -> Dict[str, str]:
        """Serialize to JSON-compatible dict."""
        return {
            'direction': self.direction.value,
            'topic': self.topic,
            'payload': self.payload,
            'timestamp': self.timestamp.to_dict(),
        }
