"""
Power Control Service - Application coordinator.

This module provides the PowerControlService class which wires the broker
session, the outlet state store, the message log and the UI event channel
together.

Architecture:
- ConnectionManager owns the single MQTT session (paho network thread)
- Inbound messages are only enqueued on the paho thread
- A dedicated dispatch thread decodes, stores and notifies in delivery order
- Foreground callers read stores and publish commands directly

Threading Model:
- paho-mqtt Network Thread (ConnectionManager internal, enqueues messages)
- Dispatch Thread (our thread, runs process_message)
- Auto-connect Thread (our thread, short-lived, only at start)
- Caller threads (UI/CLI: send_command, save_settings, queries)
"""

import logging
import queue
import threading
from typing import Any, Dict, List, Optional

from powerctl_mqtt import ConnectionManager
from powerctl_mqtt.errors import ConfigError, DecryptError, MalformedTopicError, PowerControlError
from powerctl_mqtt.logging import LogEvent, StructuredLogger, create_logger
from powerctl_mqtt.schemas import Direction, LogEntry, OutletRecord, StateValue
from powerctl_mqtt.topics import (
    decode_payload,
    decode_status_topic,
    encode_command_topic,
    encode_payload,
)
from powerctl_store import DeviceStore, MessageLog
from powerctl_app.config import AppConfig, BrokerSettings, SettingsStore
from powerctl_app.crypto import MachineKeyCipher
from powerctl_app.events import EventChannel, UIEvent

logger = logging.getLogger(__name__)


class PowerControlService:
    """
    Main power control service.

    Inbound pipeline (per status message):
    1. paho thread: ConnectionManager hands (topic, payload) to _enqueue_message
    2. Dispatch thread: process_message decodes the topic and payload
    3. DeviceStore upsert, MessageLog append
    4. UI notification: message:new, then device:update

    Outbound pipeline (send_command):
    1. Encode command topic and payload
    2. Publish (blocks up to publish_timeout)
    3. MessageLog append and message:new, only on success

    Thread Safety:
    - devices, message_log: Protected by their own locks
    - inbound_queue: Thread-safe queue.Queue
    - config: Replaced atomically under _config_lock

    Usage:
        service = PowerControlService()
        service.start()                  # auto-connects if configured

        service.send_command("office-strip", "1", "ON")
        for record in service.get_devices("office"):
            print(record.device_name, record.outlet_number, record.status)

        service.stop()
    """

    def __init__(
        self,
        connection: Optional[ConnectionManager] = None,
        devices: Optional[DeviceStore] = None,
        message_log: Optional[MessageLog] = None,
        events: Optional[EventChannel] = None,
        settings_store: Optional[SettingsStore] = None,
        cipher=None,
        config: Optional[AppConfig] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ):
        """
        Initialize the service (no network activity, no threads).

        Args:
            connection: Broker session (default: built from config)
            devices: Outlet state store
            message_log: Message history (default capacity from config)
            events: UI notification channel
            settings_store: Configuration persistence
            cipher: Password cipher exposing encrypt()/decrypt()
            config: Initial configuration (default: loaded from settings_store)
            structured_logger: Structured logger (default: component "service")
        """
        self.settings_store = settings_store or SettingsStore()
        self.cipher = cipher or MachineKeyCipher()
        self.logger = structured_logger or create_logger("service")

        if config is None:
            config = self.settings_store.load_or_default()
        self._config = config
        self._config_lock = threading.Lock()

        self.connection = connection or ConnectionManager(
            client_id_prefix=config.client_id_prefix,
            subscribe_timeout=config.subscribe_timeout,
        )
        self.devices = devices or DeviceStore()
        self.message_log = message_log or MessageLog(config.message_log_capacity)
        self.events = events or EventChannel()

        # Inbound dispatch (unbounded: delivery order must be kept, nothing dropped)
        self.inbound_queue: "queue.Queue[tuple]" = queue.Queue()
        self.dispatch_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()

        self._connect_thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def config(self) -> AppConfig:
        with self._config_lock:
            return self._config

    # ===== Lifecycle =====

    def start(self, auto_connect: bool = True) -> None:
        """
        Start the service (non-blocking).

        Lifecycle:
        1. Register connection callbacks
        2. Start dispatch thread
        3. Auto-connect in the background if the configuration is complete

        A failed auto-connect is logged and leaves the service disconnected;
        there is no retry loop.
        """
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting power control service")

        self.connection.set_message_callback(self._enqueue_message)
        self.connection.set_status_callback(self._on_connection_status)

        self.stop_event.clear()
        self.dispatch_thread = threading.Thread(
            target=self._dispatch_loop,
            name="DispatchThread",
            daemon=True
        )
        self.dispatch_thread.start()
        self._running = True

        if auto_connect and not self.is_config_empty():
            self._connect_thread = threading.Thread(
                target=self._auto_connect,
                name="AutoConnectThread",
                daemon=True
            )
            self._connect_thread.start()

        logger.info("✅ Power control service started")

    def stop(self) -> None:
        """
        Stop the service.

        Lifecycle:
        1. Disconnect (joins the paho network thread)
        2. Stop and join the dispatch thread (pending messages are dropped)
        """
        if not self._running:
            logger.warning("Service not running")
            return

        logger.info("Stopping power control service")

        self.connection.disconnect()

        self.stop_event.set()
        if self.dispatch_thread:
            self.dispatch_thread.join(timeout=5.0)
            logger.info("Dispatch thread stopped")

        self._running = False
        logger.info("✅ Power control service stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def _auto_connect(self) -> None:
        try:
            self.connect()
        except PowerControlError as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Auto-connect failed",
                metadata={'broker': f"{self.config.broker.server}:{self.config.broker.port}"},
                exc_info=e
            )

    # ===== Inbound pipeline =====

    def _enqueue_message(self, topic: str, payload: str) -> None:
        """
        Message callback (paho network thread).

        Only enqueues; processing happens on the dispatch thread so the
        network loop is never delayed. Each message carries the device store
        generation it arrived under, so a settings change discards updates
        still queued from the previous broker.
        """
        self.inbound_queue.put((topic, payload, self.devices.generation))

    def _on_connection_status(self, connected: bool) -> None:
        """Status callback (paho network thread or disconnect() caller)."""
        self.events.emit(UIEvent.CONNECTION_STATUS, connected)

    def _dispatch_loop(self) -> None:
        """
        Dispatch thread loop.

        Reads inbound messages in delivery order and processes them one at
        a time.

        Thread: Dispatch Thread (our thread)
        """
        logger.info("Dispatch loop started")

        while not self.stop_event.is_set():
            try:
                topic, payload, generation = self.inbound_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                self.process_message(topic, payload, generation=generation)
            except Exception as e:
                logger.error(f"Error processing message on {topic}: {e}", exc_info=True)

        logger.info("Dispatch loop stopped")

    def process_message(
        self,
        topic: str,
        payload: str,
        generation: Optional[int] = None,
    ) -> Optional[OutletRecord]:
        """
        Handle one inbound message.

        The raw message is always logged for audit. A topic that is not an
        outlet status topic leaves the device store untouched, and so does a
        message whose generation predates the last device store clear.

        Returns:
            The upserted record, or None for a malformed topic or a stale
            message

        Thread: Dispatch Thread
        """
        entry = self.message_log.append(Direction.RECEIVED, topic, payload)
        self.events.emit(UIEvent.MESSAGE_NEW, entry.to_dict())

        try:
            identity = decode_status_topic(topic)
        except MalformedTopicError as e:
            self.logger.warning(
                event=LogEvent.MALFORMED_TOPIC,
                message="Ignoring message on non-status topic",
                metadata={'topic': topic, 'detail': e.detail}
            )
            return None

        state = decode_payload(payload)
        record = self.devices.upsert(identity, state, generation=generation)
        if record is None:
            self.logger.debug(
                event=LogEvent.STALE_MESSAGE,
                message="Dropping update from a previous broker session",
                metadata={'topic': topic, 'generation': generation}
            )
            return None

        self.logger.debug(
            event=LogEvent.DEVICE_UPDATED,
            message="Outlet updated",
            metadata={
                'device': record.device_name,
                'outlet': record.outlet_number,
                'status': record.status,
            }
        )
        self.events.emit(UIEvent.DEVICE_UPDATE, record.to_dict())
        return record

    # ===== Commands =====

    def send_command(self, device_name: str, outlet_number: str, desired_state: StateValue) -> LogEntry:
        """
        Publish an on/off command for one outlet.

        Args:
            device_name: Power strip name
            outlet_number: Outlet on that strip
            desired_state: "ON"/"OFF" (any case) or OutletState

        Returns:
            The Sent log entry

        Raises:
            PublishError: Not connected or publish timed out (nothing logged)
        """
        topic = encode_command_topic(device_name, outlet_number)
        payload = encode_payload(desired_state)

        self.connection.publish(topic, payload, timeout=self.config.publish_timeout)

        entry = self.message_log.append(Direction.SENT, topic, payload)
        self.logger.info(
            event=LogEvent.COMMAND_SENT,
            message="Outlet command sent",
            metadata={'device': device_name, 'outlet': outlet_number, 'payload': payload}
        )
        self.events.emit(UIEvent.MESSAGE_NEW, entry.to_dict())
        return entry

    def save_settings(
        self,
        username: str,
        password: str,
        server: str,
        port: int,
        subscribe_filter: str,
    ) -> None:
        """
        Persist new broker settings and reconnect with them.

        The device store is cleared (its records belong to the old broker);
        the message log is kept.

        Raises:
            ConfigError: Invalid settings (nothing saved, session untouched)
            ConnectError / SubscribeError: Saved, but the new session failed
        """
        broker = BrokerSettings.create(
            username=username,
            password=password,
            server=server,
            port=port,
            subscribe_filter=subscribe_filter,
            cipher=self.cipher,
        )
        if broker.is_empty():
            raise ConfigError("server and username are required")

        with self._config_lock:
            new_config = self._config.with_broker(broker)
            self.settings_store.save(new_config)
            self._config = new_config

        self.logger.info(
            event=LogEvent.SETTINGS_SAVED,
            message="Broker settings saved",
            metadata=broker.to_public_dict()
        )

        self.connection.disconnect()
        self.devices.clear()
        self.connect()

    def connect(self) -> None:
        """
        Connect and subscribe with the current settings.

        Raises:
            ConfigError: No broker configured
            DecryptError: Stored password cannot be recovered on this machine
            ConnectError / SubscribeError: From the connection manager
        """
        config = self.config
        broker = config.broker
        if broker.is_empty():
            raise ConfigError("Broker settings are not configured")

        try:
            password = broker.get_password(self.cipher)
        except DecryptError as e:
            self.logger.error(
                event=LogEvent.DECRYPT_ERROR,
                message="Stored password cannot be decrypted, reconfigure the broker",
                metadata={'server': broker.server},
                exc_info=e
            )
            raise

        self.connection.connect(
            broker.server,
            broker.port,
            username=broker.username,
            password=password,
            client_id_hint=config.client_id_prefix,
            timeout=config.connect_timeout,
        )
        self.connection.subscribe(broker.subscribe_filter, timeout=config.subscribe_timeout)

    def disconnect(self) -> None:
        self.connection.disconnect()

    def clear_log(self) -> None:
        self.message_log.clear()
        self.logger.info(event=LogEvent.LOG_CLEARED, message="Message log cleared")
        self.events.emit(UIEvent.LOG_CLEARED, None)

    # ===== Queries =====

    def get_devices(self, search_text: str = "") -> List[OutletRecord]:
        """All outlets, or those whose device/outlet/status contains search_text."""
        return self.devices.filter(search_text)

    def get_messages(self) -> List[LogEntry]:
        """Message history, newest first."""
        return self.message_log.get_all()

    def get_connection_status(self) -> bool:
        return self.connection.is_connected()

    def get_config(self) -> Dict[str, Any]:
        """Current broker settings without the password."""
        return self.config.broker.to_public_dict()

    def is_config_empty(self) -> bool:
        return self.config.broker.is_empty()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.connection.get_stats()
        stats['devices'] = self.devices.count()
        stats['log_entries'] = self.message_log.count()
        stats['pending_messages'] = self.inbound_queue.qsize()
        return stats
