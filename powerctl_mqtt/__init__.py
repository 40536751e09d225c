"""
powerctl MQTT Communication Package
===================================

Bounded Context: Broker Session and Wire Format for Power Strips

This package owns everything that touches the broker: the single MQTT
session, the topic/payload codec, the typed errors callers branch on, and
the structured JSON logging shared by the rest of the project.

Architecture:
- connection: ConnectionManager (connect, subscribe, publish, auto-reconnect)
- topics: Status/command topic and payload codec
- errors: Typed failures with reason enums
- schemas/: Immutable data structures with type safety
- logging/: Structured JSON logging for observability

Design Philosophy:
- Cohesion > Location: Each module has one reason to change
- Type Safety: Leverage Python typing for correctness
- Immutability: Use frozen dataclasses for values handed across threads
- Observability: Structured logs (JSON) for production queries

Public API
----------
Session:
    ConnectionManager, ConnectionState

Topic Codec:
    decode_status_topic, encode_status_topic, encode_command_topic
    decode_payload, encode_payload, DEFAULT_SUBSCRIBE_FILTER

Errors:
    PowerControlError, MalformedTopicError, ConnectError, SubscribeError,
    PublishError, DecryptError, ConfigError
    ConnectFailure, SubscribeFailure, PublishFailure

Schemas:
    Timestamp, OutletIdentity, OutletState, OutletRecord
    Direction, LogEntry

Logging:
    LogEvent, StructuredLogger, create_logger

Example:
    >>> from powerctl_mqtt import ConnectionManager, decode_status_topic
    >>>
    >>> manager = ConnectionManager()
    >>> manager.set_message_callback(
    ...     lambda topic, payload: print(decode_status_topic(topic), payload)
    ... )
    >>> manager.connect("broker.local", 1883, "panel", "secret")
    >>> manager.subscribe("power/#")
"""

# Version
__version__ = "1.0.0"

# Schemas
from .schemas import (
    Timestamp,
    OutletIdentity,
    OutletState,
    OutletRecord,
    StateValue,
    Direction,
    LogEntry,
)

# Errors
from .errors import (
    PowerControlError,
    MalformedTopicError,
    ConnectError,
    ConnectFailure,
    SubscribeError,
    SubscribeFailure,
    PublishError,
    PublishFailure,
    DecryptError,
    ConfigError,
)

# Topic codec
from .topics import (
    DEFAULT_SUBSCRIBE_FILTER,
    decode_status_topic,
    encode_status_topic,
    encode_command_topic,
    decode_payload,
    encode_payload,
)

# Session
from .connection import ConnectionManager, ConnectionState

# Logging
from .logging import (
    LogEvent,
    StructuredLogger,
    create_logger,
)

__all__ = [
    # Version
    '__version__',
    # Schemas
    'Timestamp',
    'OutletIdentity',
    'OutletState',
    'OutletRecord',
    'StateValue',
    'Direction',
    'LogEntry',
    # Errors
    'PowerControlError',
    'MalformedTopicError',
    'ConnectError',
    'ConnectFailure',
    'SubscribeError',
    'SubscribeFailure',
    'PublishError',
    'PublishFailure',
    'DecryptError',
    'ConfigError',
    # Topic codec
    'DEFAULT_SUBSCRIBE_FILTER',
    'decode_status_topic',
    'encode_status_topic',
    'encode_command_topic',
    'decode_payload',
    'encode_payload',
    # Session
    'ConnectionManager',
    'ConnectionState',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
