"""
MessageLog - Bounded newest-first audit trail

Bounded Context: Troubleshooting history of MQTT exchanges
Responsibilities:
  - Record every inbound message and every successful publish
  - Keep only the newest `capacity` entries (oldest evicted first)
  - Hand out newest-first snapshots

Threading:
  - One lock guards the deque
  - get_all() returns a new list, later appends never affect it

Capacity is fixed at construction. The log is historical: it is not cleared
when the broker session changes, only by an explicit clear().
"""

import threading
from collections import deque
from typing import Deque, List

from powerctl_mqtt.schemas import Direction, LogEntry, Timestamp

DEFAULT_CAPACITY = 1000


class MessageLog:
    """
    Fixed-capacity FIFO of LogEntry, read newest-first.

    Example:
        log = MessageLog(capacity=500)
        log.append(Direction.RECEIVED, "power/office-strip/outlets/1", "1")
        latest = log.get_all()[0]
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        """
        Args:
            capacity: Maximum entries kept; non-positive values fall back
                to DEFAULT_CAPACITY
        """
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        self._capacity = capacity
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, direction: Direction, topic: str, payload: str) -> LogEntry:
        """
        Stamp and insert a new head entry, evicting the oldest past capacity.

        Returns:
            The appended entry
        """
        entry = LogEntry(
            direction=direction,
            topic=topic,
            payload=payload,
            timestamp=Timestamp.now(),
        )
        with self._lock:
            # deque(maxlen) drops from the right when appending on the left
            self._entries.appendleft(entry)
        return entry

    def get_all(self) -> List[LogEntry]:
        """Newest-first snapshot."""
        with self._lock:
            return list(self._entries)

    def get_recent(self, n: int) -> List[LogEntry]:
        """
        The n newest entries.

        n <= 0 or n larger than the log returns every entry.
        """
        with self._lock:
            if n <= 0 or n >= len(self._entries):
                return list(self._entries)
            return [self._entries[i] for i in range(n)]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count()
