"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

This module defines typed event names for structured logging.

Design:
- Enum-based (prevents typos, enables autocomplete)
- Hierarchical naming (namespace.category.action)
- Searchable in log aggregators

Event Naming Convention:
    <component>.<category>.<action>

    component: mqtt, device, message, command, settings, error
    category: connected, publish, resubscribe
    action: success, failed

Example Log Query:
    fields @timestamp, event, message, metadata.topic
    | filter event = "mqtt.publish.failed"
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: Broker session lifecycle
    - device.* / message.* / command.*: Outlet state pipeline
    - settings.* / log.*: User-driven actions
    - error.*: Error conditions
    """

    # ========== MQTT Events ==========
    MQTT_CONNECTING = "mqtt.connecting"
    """Connection attempt started."""

    MQTT_CONNECTED = "mqtt.connected"
    """MQTT broker connection established (initial or restored)."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """MQTT broker connection lost or closed."""

    MQTT_RECONNECTING = "mqtt.reconnecting"
    """Link restored, re-issuing the active subscription."""

    MQTT_SUBSCRIBED = "mqtt.subscribed"
    """Subscription acknowledged by the broker."""

    MQTT_RESUBSCRIBE_FAILED = "mqtt.resubscribe.failed"
    """Resubscribe after reconnect was refused or timed out."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message successfully handed to the broker."""

    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"
    """Message publication failed."""

    # ========== Outlet Pipeline Events ==========
    STALE_MESSAGE = "message.stale"
    """Status message from before a device store clear, not applied."""

    DEVICE_UPDATED = "device.updated"
    """Outlet record added or updated in the device store."""

    COMMAND_SENT = "command.sent"
    """Outlet command published."""

    # ========== User Actions ==========
    SETTINGS_SAVED = "settings.saved"
    """Broker settings persisted."""

    LOG_CLEARED = "log.cleared"
    """Message log emptied by the user."""

    # ========== Error Events ==========
    MALFORMED_TOPIC = "error.malformed_topic"
    """Inbound topic does not match power/<device>/outlets/<outlet>."""

    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    """Failed to connect to MQTT broker."""

    CALLBACK_ERROR = "error.callback"
    """A registered callback raised on the delivery thread."""

    DECRYPT_ERROR = "error.decrypt"
    """Stored password could not be decrypted."""
