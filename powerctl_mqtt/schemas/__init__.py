"""
powerctl MQTT Schemas
=====================

Bounded Context: Data Structures

Immutable, typed values that flow from the broker session into the stores
and out to the UI layer.

Design:
- Frozen dataclasses (immutability, safe to hand across threads)
- to_dict() for the UI/JSON boundary

Public API
----------
Common Types:
    Timestamp: Aware UTC timestamp wrapper

Outlet Types:
    OutletIdentity, OutletState, OutletRecord
    state_text, parse_state

Message Log Types:
    Direction: Enum (SENT, RECEIVED)
    LogEntry: One logged exchange
"""

from .common import Timestamp
from .outlet import (
    OutletIdentity,
    OutletState,
    OutletRecord,
    StateValue,
    state_text,
    parse_state,
)
from .message import Direction, LogEntry

__all__ = [
    'Timestamp',
    'OutletIdentity',
    'OutletState',
    'OutletRecord',
    'StateValue',
    'state_text',
    'parse_state',
    'Direction',
    'LogEntry',
]
