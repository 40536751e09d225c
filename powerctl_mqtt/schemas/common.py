"""
Common Schema Types
==================

Bounded Context: Shared Data Structures

Types:
- Timestamp: timezone-aware ISO 8601 timestamp wrapper
"""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True, order=True)
class Timestamp:
    """
    Immutable UTC timestamp.

    Attributes:
        value: Aware datetime in UTC

    Example:
        >>> ts = Timestamp.now()
        >>> ts.to_dict()
        '2026-10-18T15:30:45.123456+00:00'
    """
    value: datetime

    def __post_init__(self):
        """Reject naive datetimes."""
        if self.value.tzinfo is None:
            raise ValueError("Timestamp requires a timezone-aware datetime")

    @classmethod
    def now(cls) -> 'Timestamp':
        """Create timestamp from current time."""
        return cls(value=datetime.now(timezone.utc))

    @classmethod
    def from_iso(cls, text: str) -> 'Timestamp':
        """Parse an ISO 8601 string.

        Raises:
            ValueError: If timestamp format invalid or naive
        """
        try:
            return cls(value=datetime.fromisoformat(text))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid ISO timestamp: {text}") from e

    def to_datetime(self) -> datetime:
        return self.value

    def to_dict(self) -> str:
        """Serialize to JSON (as string)."""
        return self.value.isoformat()
