"""
Error Taxonomy
==============

Bounded Context: Failure Reporting

Every failure the core can report to a caller. Inbound decoding errors
(MalformedTopicError) are contained by the service; everything else is
raised to the immediate caller, who surfaces it to the user.

Connection, subscribe and publish errors carry a ``reason`` enum so callers
can branch without string matching:

    >>> try:
    ...     manager.publish(topic, "1")
    ... except PublishError as e:
    ...     if e.reason is PublishFailure.NOT_CONNECTED:
    ...         print("Connect first")
"""

from enum import Enum
from typing import Optional


class PowerControlError(Exception):
    """Base class for all powerctl errors."""
    pass


class MalformedTopicError(PowerControlError, ValueError):
    """Inbound topic does not match power/<device>/outlets/<outlet>."""

    def __init__(self, topic: str, detail: str):
        self.topic = topic
        self.detail = detail
        super().__init__(f"Malformed topic '{topic}': {detail}")


class ConnectFailure(str, Enum):
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"
    UNREACHABLE = "unreachable"
    REFUSED = "refused"


class SubscribeFailure(str, Enum):
    TIMEOUT = "timeout"
    NOT_CONNECTED = "not_connected"
    REJECTED = "rejected"


class PublishFailure(str, Enum):
    NOT_CONNECTED = "not_connected"
    TIMEOUT = "timeout"


class ConnectError(PowerControlError):
    """
    Connection attempt failed.

    Attributes:
        reason: TIMEOUT, AUTH_FAILED, UNREACHABLE or REFUSED
        broker: "host:port" that was attempted
    """

    def __init__(self, reason: ConnectFailure, broker: str, detail: Optional[str] = None):
        self.reason = reason
        self.broker = broker
        self.detail = detail
        message = f"Connection to {broker} failed: {reason.value}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class SubscribeError(PowerControlError):
    """
    Subscription failed.

    Attributes:
        reason: TIMEOUT, NOT_CONNECTED or REJECTED
        topic_filter: Filter that was requested
    """

    def __init__(self, reason: SubscribeFailure, topic_filter: str):
        self.reason = reason
        self.topic_filter = topic_filter
        super().__init__(f"Subscribe to '{topic_filter}' failed: {reason.value}")


class PublishError(PowerControlError):
    """
    Publish failed. Publishes are never queued while disconnected.

    Attributes:
        reason: NOT_CONNECTED or TIMEOUT
        topic: Topic that was targeted
    """

    def __init__(self, reason: PublishFailure, topic: str):
        self.reason = reason
        self.topic = topic
        super().__init__(f"Publish to '{topic}' failed: {reason.value}")


class DecryptError(PowerControlError):
    """Stored broker password cannot be recovered on this machine."""
    pass


class ConfigError(PowerControlError, ValueError):
    """Configuration is missing or invalid."""
    pass
