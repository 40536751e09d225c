"""
powerctl_app - Power Strip Control Application Core

This package wires the broker session to the outlet state store, the message
log and the UI notification channel.

Architecture:
- PowerControlService: Main coordinator
- EventChannel: Bounded queue of UI notifications
- AppConfig / SettingsStore: Configuration management
- MachineKeyCipher: Machine-bound password protection

Threading Model:
- paho-mqtt Network Thread (ConnectionManager internal)
- Dispatch Thread (our thread for inbound processing)
- Caller threads (UI/CLI commands and queries)
"""

from powerctl_app.config import AppConfig, BrokerSettings, SettingsStore, default_config_path
from powerctl_app.crypto import MachineKeyCipher
from powerctl_app.events import EventChannel, UIEvent
from powerctl_app.service import PowerControlService

__all__ = [
    "AppConfig",
    "BrokerSettings",
    "SettingsStore",
    "default_config_path",
    "MachineKeyCipher",
    "EventChannel",
    "UIEvent",
    "PowerControlService",
]
