"""
powerctl_store - Concurrent state shared with the UI layer

Bounded Context: Observed outlet state and message history
Responsibilities:
  - DeviceStore: latest state per outlet, sorted and filterable
  - MessageLog: bounded newest-first history of sent/received messages

Threading:
  - Each store owns its lock; callers never lock externally
  - Single writer (service dispatch thread), many readers
"""

from .devices import DeviceStore
from .message_log import MessageLog, DEFAULT_CAPACITY

__all__ = [
    "DeviceStore",
    "MessageLog",
    "DEFAULT_CAPACITY",
]
