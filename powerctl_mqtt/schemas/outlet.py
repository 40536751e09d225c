"""
Outlet Schema
=============

Bounded Context: Outlet State Data Structures

Design:
- OutletIdentity: (device name, outlet number) key, ordered for display
- OutletState: known ON/OFF values; unknown payloads stay raw strings
- OutletRecord: immutable snapshot of the latest observed state

Message Flow:
    power/<device>/outlets/<outlet> → OutletIdentity + OutletState
        → DeviceStore.upsert() → OutletRecord → UI
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from .common import Timestamp


class OutletState(str, Enum):
    """Known outlet states. Anything else arrives as a raw string."""
    ON = "ON"
    OFF = "OFF"


StateValue = Union[OutletState, str]


def state_text(state: StateValue) -> str:
    """Plain string form of a state (``OutletState.ON`` -> ``"ON"``)."""
    if isinstance(state, OutletState):
        return state.value
    return str(state)


def parse_state(text: str) -> StateValue:
    """Inverse of state_text: known values become OutletState members."""
    try:
        return OutletState(text)
    except ValueError:
        return text


@dataclass(frozen=True, order=True)
class OutletIdentity:
    """
    Stable outlet key.

    Case-sensitive; no normalization beyond what arrives on the wire.
    Ordering is lexicographic on (device_name, outlet_number).

    Example:
        >>> OutletIdentity("office-strip", "1") < OutletIdentity("office-strip", "2")
        True
    """
    device_name: str
    outlet_number: str

    def __str__(self) -> str:
        return f"{self.device_name}:{self.outlet_number}"


@dataclass(frozen=True)
class OutletRecord:
    """
    Latest observed state of one outlet.

    Attributes:
        identity: Outlet key
        status: State as text ("ON", "OFF" or the raw payload)
        last_update: When the record was last written

    Invariants:
        - At most one record per identity lives in a DeviceStore
    """
    identity: OutletIdentity
    status: str
    last_update: Timestamp

    @property
    def device_name(self) -> str:
        return self.identity.device_name

    @property
    def outlet_number(self) -> str:
        return self.identity.outlet_number

    @property
    def state(self) -> StateValue:
        return parse_state(self.status)

    @property
    def is_on(self) -> bool:
        return self.status == OutletState.ON.value

    def matches(self, needle: str) -> bool:
        """Case-insensitive substring match on device, outlet or status.

        Args:
            needle: Already lower-cased search text
        """
        return (
            needle in self.device_name.lower()
            or needle in self.outlet_number.lower()
            or needle in self.status.lower()
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the shape the UI layer consumes."""
        return {
            'deviceName': self.device_name,
            'outletNumber': self.outlet_number,
            'status': self.status,
            'lastUpdate': self.last_update.to_dict(),
        }
