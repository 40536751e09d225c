"""
DeviceStore - Thread-safe outlet state map

Bounded Context: Latest observed outlet state
Responsibilities:
  - Keep one OutletRecord per OutletIdentity (last write wins)
  - Sorted snapshots for display, optionally filtered by search text
  - Wholesale clear when switching brokers

Threading:
  - Written by the service's dispatch thread
  - Read by foreground callers (UI refresh, CLI)
  - One lock guards the dict; records are immutable, so snapshots are
    plain lists that later writes never touch

Ordering:
  Sorted by (device_name, outlet_number) on every read. The dict is the
  source of truth; at tens to low hundreds of outlets re-sorting is cheap.
"""

import threading
from typing import Dict, List, Optional

from powerctl_mqtt.schemas import (
    OutletIdentity,
    OutletRecord,
    StateValue,
    Timestamp,
    state_text,
)


class DeviceStore:
    """
    Concurrent map of outlet identity to latest observed state.

    Example:
        store = DeviceStore()
        store.upsert(OutletIdentity("office-strip", "1"), OutletState.ON)

        for record in store.filter("office"):
            print(record.device_name, record.outlet_number, record.status)
    """

    def __init__(self):
        self._records: Dict[OutletIdentity, OutletRecord] = {}
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        """Bumped by every clear(); tags writes made against older contents."""
        with self._lock:
            return self._generation

    def upsert(
        self,
        identity: OutletIdentity,
        state: StateValue,
        generation: Optional[int] = None,
    ) -> Optional[OutletRecord]:
        """
        Insert or replace the record for an identity.

        Stamps last_update with the current time.

        Args:
            identity: Outlet to update
            state: Observed state
            generation: Store generation the update was observed under;
                None skips the check

        Returns:
            The stored record, or None if a clear() happened after the
            update's generation was taken (nothing stored)
        """
        record = OutletRecord(
            identity=identity,
            status=state_text(state),
            last_update=Timestamp.now(),
        )
        with self._lock:
            if generation is not None and generation != self._generation:
                return None
            self._records[identity] = record
        return record

    def get(self, identity: OutletIdentity) -> Optional[OutletRecord]:
        with self._lock:
            return self._records.get(identity)

    def get_all(self) -> List[OutletRecord]:
        """All records sorted by (device_name, outlet_number)."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.identity)

    def filter(self, search_text: str) -> List[OutletRecord]:
        """
        Records whose device, outlet or status contains search_text.

        Case-insensitive. An empty search returns get_all(). Same order as
        get_all().
        """
        if not search_text:
            return self.get_all()

        needle = search_text.lower()
        with self._lock:
            records = [r for r in self._records.values() if r.matches(needle)]
        return sorted(records, key=lambda r: r.identity)

    def clear(self) -> None:
        with self._lock:
            self._records = {}
            self._generation += 1

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.count()
