"""
UI Event Channel
================

Notifications the core pushes to whatever presents it (window, CLI, test).

The core does not own the UI transport: it emits (UIEvent, data) pairs into
a bounded queue and a single consumer drains them. Emitting never blocks the
dispatch thread; when the consumer falls behind, the oldest pending event is
dropped.

Events:
    message:new         LogEntry.to_dict()
    device:update       OutletRecord.to_dict()
    connection:status   bool
    log:cleared         None
"""

import logging
import queue
import threading
from enum import Enum
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_SIZE = 1024


class UIEvent(str, Enum):
    MESSAGE_NEW = "message:new"
    DEVICE_UPDATE = "device:update"
    CONNECTION_STATUS = "connection:status"
    LOG_CLEARED = "log:cleared"


Notification = Tuple[UIEvent, Any]


class EventChannel:
    """
    Bounded single-consumer queue of UI notifications.

    Example:
        channel = EventChannel()
        service = PowerControlService(..., events=channel)

        while True:
            item = channel.get(timeout=0.5)
            if item is None:
                continue
            event, data = item
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE):
        self._queue: "queue.Queue[Notification]" = queue.Queue(maxsize=maxsize)
        self._emit_lock = threading.Lock()
        self.dropped = 0

    def emit(self, event: UIEvent, data: Any = None) -> None:
        """Enqueue without blocking; drops the oldest event when full."""
        with self._emit_lock:
            while True:
                try:
                    self._queue.put_nowait((event, data))
                    return
                except queue.Full:
                    try:
                        dropped_event, _ = self._queue.get_nowait()
                    except queue.Empty:
                        continue
                    self.dropped += 1
                    logger.warning(
                        f"UI event channel full, dropped oldest {dropped_event.value} event"
                    )

    def get(self, timeout: Optional[float] = None) -> Optional[Notification]:
        """
        Next notification, or None if none arrives within timeout.

        timeout=None blocks until an event is available.
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list:
        """Everything currently pending, oldest first."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def pending(self) -> int:
        return self._queue.qsize()
