"""
MQTT Connection Manager
=======================

Bounded Context: MQTT Session Lifecycle

Owns the single broker session: connect, subscribe, publish, disconnect,
and the transparent reconnect that paho-mqtt performs after a link loss.

State Machine:
    DISCONNECTED --connect()--> CONNECTING --CONNACK ok--> CONNECTED
    CONNECTING --timeout / refused / socket error--> DISCONNECTED
    CONNECTED --link lost--> DISCONNECTED --paho restores link--> CONNECTED
    any --disconnect()--> DISCONNECTED

Threading:
    - paho's network loop (loop_start) is the only delivery thread
    - _on_connect/_on_disconnect/_on_message/_on_subscribe run there
    - connect/subscribe/publish block the caller up to their timeout
    - Resubscribe retries run on short-lived threading.Timer threads

Resubscribe on Reconnect:
    The broker session is clean, so a reconnect silently drops prior
    subscriptions. The active filter is re-issued from _on_connect, before
    paho reads any further packet from the socket. A refused or
    unacknowledged resubscribe is retried with exponential back-off up to
    resubscribe_max_attempts; after that the next link restore starts over.

Example:
    >>> manager = ConnectionManager()
    >>> manager.set_message_callback(lambda topic, payload: print(topic, payload))
    >>> manager.set_status_callback(lambda connected: print("connected:", connected))
    >>> manager.connect("broker.local", 1883, "user", "secret")
    >>> manager.subscribe("power/#")
    >>> manager.publish("power/office-strip/outlets/1/set", "1")
    >>> manager.disconnect()
"""

import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from .errors import (
    ConnectError,
    ConnectFailure,
    PublishError,
    PublishFailure,
    SubscribeError,
    SubscribeFailure,
)
from .logging import LogEvent, StructuredLogger, create_logger

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], None]
StatusCallback = Callable[[bool], None]
ClientFactory = Callable[[str], mqtt.Client]

# CONNACK "Bad user name or password" and "Not authorized"
AUTH_REASON_CODES = frozenset({134, 135})


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def default_client_factory(client_id: str) -> mqtt.Client:
    """Build a clean-session MQTT 3.1.1 paho client."""
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
        protocol=mqtt.MQTTv311,
    )


class _SubackWaiter:
    """Rendezvous between a blocking subscribe() and _on_subscribe."""

    def __init__(self):
        self.event = threading.Event()
        self.reason_codes: List[Any] = []
        self.link_lost = False


class ConnectionManager:
    """
    Single MQTT session with auto-reconnect and resubscribe.

    Attributes:
        client: Current paho client (None when disconnected)
        broker: "host:port" of the current or last session
        logger: Structured logger instance

    Observers:
        Exactly one message callback and one status callback; registering
        again replaces the previous one. Both run on the paho thread, so
        they must return quickly.

    Thread Safety:
        All state is guarded by one lock. Callbacks are invoked outside it.
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        client_factory: Optional[ClientFactory] = None,
        client_id_prefix: str = "powerctl",
        keepalive: int = 5,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 10,
        subscribe_timeout: float = 10.0,
        resubscribe_max_attempts: int = 5,
        resubscribe_base_delay: float = 1.0,
        resubscribe_max_delay: float = 30.0,
    ):
        """
        Initialize the connection manager (no network activity).

        Args:
            logger: Structured logger (default: component "connection")
            client_factory: Builds a paho client from a client id
            client_id_prefix: Used when connect() gets no identity hint
            keepalive: MQTT keepalive in seconds
            reconnect_min_delay: paho reconnect back-off floor (seconds)
            reconnect_max_delay: paho reconnect back-off ceiling (seconds)
            subscribe_timeout: SUBACK wait used for resubscribe attempts
            resubscribe_max_attempts: Attempts per link-restore event
            resubscribe_base_delay: First resubscribe retry delay (seconds)
            resubscribe_max_delay: Retry delay ceiling (seconds)
        """
        self.logger = logger or create_logger("connection")
        self._client_factory = client_factory or default_client_factory
        self.client_id_prefix = client_id_prefix
        self.keepalive = keepalive
        self.reconnect_min_delay = reconnect_min_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.subscribe_timeout = subscribe_timeout
        self.resubscribe_max_attempts = resubscribe_max_attempts
        self.resubscribe_base_delay = resubscribe_base_delay
        self.resubscribe_max_delay = resubscribe_max_delay

        self.client: Optional[mqtt.Client] = None
        self.broker: Optional[str] = None
        self.client_id: Optional[str] = None

        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._connack = threading.Event()
        self._connack_reason: Any = None

        self._active_filter: Optional[str] = None
        self._waiters: Dict[int, _SubackWaiter] = {}
        self._resubscribe_mid: Optional[int] = None
        self._resubscribe_attempt = 0
        self._resubscribe_timer: Optional[threading.Timer] = None

        self._message_callback: Optional[MessageCallback] = None
        self._status_callback: Optional[StatusCallback] = None

        self._received_count = 0
        self._published_count = 0
        self._reconnect_count = 0

    # ===== Observers =====

    def set_message_callback(self, callback: Optional[MessageCallback]) -> None:
        """Register the (topic, payload) callback. Last registration wins."""
        with self._lock:
            self._message_callback = callback

    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        """Register the connected/disconnected callback. Last registration wins."""
        with self._lock:
            self._status_callback = callback

    # ===== Queries =====

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def active_subscription(self) -> Optional[str]:
        with self._lock:
            return self._active_filter

    def is_connected(self) -> bool:
        """Check if currently connected to broker."""
        with self._lock:
            return self._state is ConnectionState.CONNECTED

    def get_stats(self) -> Dict[str, Any]:
        """
        Get session statistics.

        Returns:
            Dictionary with message counts, broker and state
        """
        with self._lock:
            return {
                'broker': self.broker,
                'client_id': self.client_id,
                'state': self._state.value,
                'active_subscription': self._active_filter,
                'messages_received': self._received_count,
                'messages_published': self._published_count,
                'reconnects': self._reconnect_count,
            }

    # ===== Session Lifecycle =====

    def connect(
        self,
        server: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id_hint: Optional[str] = None,
        timeout: float = 20.0,
    ) -> None:
        """
        Open a new session and wait for the broker's CONNACK.

        Any previous session is released first. Once this returns, paho
        keeps the session alive and reconnects on its own.

        Args:
            server: Broker hostname or address
            port: Broker TCP port
            username: MQTT username (optional)
            password: Plaintext password (optional)
            client_id_hint: Client id prefix; a uuid4 is appended
            timeout: Seconds to wait for CONNACK

        Raises:
            ConnectError: TIMEOUT, AUTH_FAILED, UNREACHABLE or REFUSED.
                The manager is DISCONNECTED afterwards.
        """
        broker = f"{server}:{port}"
        if not server:
            raise ConnectError(ConnectFailure.UNREACHABLE, broker, "server not configured")

        self.disconnect()

        client_id = f"{client_id_hint or self.client_id_prefix}-{uuid.uuid4()}"
        client = self._client_factory(client_id)
        if username:
            client.username_pw_set(username, password or None)
        client.reconnect_delay_set(
            min_delay=self.reconnect_min_delay,
            max_delay=self.reconnect_max_delay,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe

        with self._lock:
            self.client = client
            self.broker = broker
            self.client_id = client_id
            self._closing = False
            self._connack.clear()
            self._connack_reason = None
            self._state = ConnectionState.CONNECTING

        self.logger.info(
            event=LogEvent.MQTT_CONNECTING,
            message="Connecting to MQTT broker",
            metadata={'broker': broker, 'client_id': client_id, 'timeout': timeout}
        )

        try:
            client.connect(server, port, keepalive=self.keepalive)
        except (OSError, ValueError) as e:
            self._abort_session(client)
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Broker unreachable",
                exc_info=e,
                metadata={'broker': broker}
            )
            raise ConnectError(ConnectFailure.UNREACHABLE, broker, str(e)) from e

        client.loop_start()

        if not self._connack.wait(timeout=timeout):
            self._abort_session(client)
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Connection timeout",
                metadata={'broker': broker, 'timeout': timeout}
            )
            raise ConnectError(ConnectFailure.TIMEOUT, broker)

        reason_code = self._connack_reason
        if reason_code is not None and reason_code.is_failure:
            self._abort_session(client)
            failure = (
                ConnectFailure.AUTH_FAILED
                if reason_code.value in AUTH_REASON_CODES
                else ConnectFailure.REFUSED
            )
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection ({reason_code})",
                metadata={'broker': broker, 'reason': failure.value}
            )
            raise ConnectError(failure, broker, str(reason_code))

    def subscribe(self, topic_filter: str, timeout: float = 10.0) -> None:
        """
        Subscribe and wait for the broker's SUBACK.

        On success the filter becomes the active subscription, re-issued
        automatically after every reconnect.

        Raises:
            SubscribeError: NOT_CONNECTED, TIMEOUT or REJECTED
        """
        with self._lock:
            client = self.client
            if client is None or self._state is not ConnectionState.CONNECTED:
                raise SubscribeError(SubscribeFailure.NOT_CONNECTED, topic_filter)

            result, mid = client.subscribe(topic_filter, qos=0)
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise SubscribeError(SubscribeFailure.NOT_CONNECTED, topic_filter)

            waiter = _SubackWaiter()
            self._waiters[mid] = waiter

        if not waiter.event.wait(timeout=timeout):
            with self._lock:
                self._waiters.pop(mid, None)
            raise SubscribeError(SubscribeFailure.TIMEOUT, topic_filter)

        if waiter.link_lost:
            raise SubscribeError(SubscribeFailure.NOT_CONNECTED, topic_filter)

        if any(code.is_failure for code in waiter.reason_codes):
            raise SubscribeError(SubscribeFailure.REJECTED, topic_filter)

        with self._lock:
            self._active_filter = topic_filter

        self.logger.info(
            event=LogEvent.MQTT_SUBSCRIBED,
            message="Subscribed",
            metadata={'topic_filter': topic_filter, 'broker': self.broker}
        )

    def publish(self, topic: str, payload: str, timeout: float = 10.0) -> None:
        """
        Publish a message (QoS 0, not retained).

        Nothing is queued while disconnected: the call fails immediately.

        Raises:
            PublishError: NOT_CONNECTED or TIMEOUT
        """
        with self._lock:
            client = self.client
            connected = self._state is ConnectionState.CONNECTED

        if client is None or not connected:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Cannot publish: not connected to broker",
                metadata={'topic': topic}
            )
            raise PublishError(PublishFailure.NOT_CONNECTED, topic)

        info = client.publish(topic, payload, qos=0, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message=f"Publish failed (rc={info.rc})",
                metadata={'topic': topic}
            )
            raise PublishError(PublishFailure.NOT_CONNECTED, topic)

        try:
            info.wait_for_publish(timeout=timeout)
        except (RuntimeError, ValueError) as e:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Publish aborted",
                exc_info=e,
                metadata={'topic': topic}
            )
            raise PublishError(PublishFailure.NOT_CONNECTED, topic) from e

        if not info.is_published():
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Publish timeout",
                metadata={'topic': topic, 'timeout': timeout}
            )
            raise PublishError(PublishFailure.TIMEOUT, topic)

        with self._lock:
            self._published_count += 1

        self.logger.info(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message="Published message",
            metadata={'topic': topic, 'payload': payload}
        )

    def disconnect(self) -> None:
        """
        Close the session and stop the network thread.

        Idempotent and safe from any state. Forgets the active subscription
        and cancels pending resubscribe retries. Reports a status change
        only if the manager was connected.
        """
        with self._lock:
            client = self.client
            self._closing = True
            self._active_filter = None
            self._cancel_resubscribe_locked()

        if client is None:
            return

        client.disconnect()
        client.loop_stop()

        with self._lock:
            if self.client is client:
                self.client = None
            was_connected = self._state is ConnectionState.CONNECTED
            self._state = ConnectionState.DISCONNECTED
            self._release_waiters_locked()

        if was_connected:
            self._notify_status(False)

        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Disconnected from broker",
            metadata={'broker': self.broker}
        )

    def _abort_session(self, client: mqtt.Client) -> None:
        """
        Tear down a session whose connect() failed.

        A CONNACK that lands between the wait timing out and this teardown
        has already reported True; report False once the network thread is
        joined so the two arrive in order.
        """
        with self._lock:
            self._closing = True
            if self.client is client:
                self.client = None
            was_connected = self._state is ConnectionState.CONNECTED
            self._state = ConnectionState.DISCONNECTED

        client.loop_stop()
        client.disconnect()

        if was_connected:
            self._notify_status(False)

    # ===== Resubscribe (lock held by caller) =====

    def _resubscribe_locked(self, topic_filter: str, attempt: int) -> None:
        client = self.client
        if client is None or self._state is not ConnectionState.CONNECTED:
            return

        self.logger.info(
            event=LogEvent.MQTT_RECONNECTING,
            message="Re-issuing subscription after reconnect",
            metadata={'topic_filter': topic_filter, 'attempt': attempt}
        )

        self._resubscribe_attempt = attempt
        result, mid = client.subscribe(topic_filter, qos=0)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._schedule_resubscribe_retry_locked(topic_filter, attempt, f"rc={result}")
            return

        self._resubscribe_mid = mid
        self._start_timer_locked(
            self.subscribe_timeout,
            self._on_resubscribe_timeout,
            (topic_filter, mid, attempt),
        )

    def _schedule_resubscribe_retry_locked(self, topic_filter: str, attempt: int, detail: str) -> None:
        self._resubscribe_mid = None

        if attempt >= self.resubscribe_max_attempts:
            self.logger.error(
                event=LogEvent.MQTT_RESUBSCRIBE_FAILED,
                message="Resubscribe attempts exhausted, waiting for next reconnect",
                metadata={'topic_filter': topic_filter, 'attempts': attempt, 'detail': detail}
            )
            return

        delay = min(
            self.resubscribe_base_delay * (2 ** (attempt - 1)),
            self.resubscribe_max_delay,
        )
        self.logger.warning(
            event=LogEvent.MQTT_RESUBSCRIBE_FAILED,
            message="Resubscribe failed, retrying",
            metadata={'topic_filter': topic_filter, 'attempt': attempt, 'retry_in': delay, 'detail': detail}
        )
        self._start_timer_locked(delay, self._retry_resubscribe, (topic_filter, attempt + 1))

    def _start_timer_locked(self, delay: float, target: Callable, args: tuple) -> None:
        if self._resubscribe_timer is not None:
            self._resubscribe_timer.cancel()
        timer = threading.Timer(delay, target, args=args)
        timer.daemon = True
        timer.name = "ResubscribeTimer"
        self._resubscribe_timer = timer
        timer.start()

    def _cancel_resubscribe_locked(self) -> None:
        if self._resubscribe_timer is not None:
            self._resubscribe_timer.cancel()
            self._resubscribe_timer = None
        self._resubscribe_mid = None

    def _release_waiters_locked(self) -> None:
        for waiter in self._waiters.values():
            waiter.link_lost = True
            waiter.event.set()
        self._waiters.clear()

    def _retry_resubscribe(self, topic_filter: str, attempt: int) -> None:
        with self._lock:
            if self._active_filter != topic_filter:
                return
            self._resubscribe_locked(topic_filter, attempt)

    def _on_resubscribe_timeout(self, topic_filter: str, mid: int, attempt: int) -> None:
        with self._lock:
            if self._resubscribe_mid != mid:
                return
            self._schedule_resubscribe_retry_locked(topic_filter, attempt, "SUBACK timeout")

    # ===== MQTT Callbacks (run in paho network thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """
        CONNACK received, for the initial connect or a paho reconnect.

        Reports CONNECTED, then re-issues the active subscription before
        returning to paho's read loop.
        """
        if client is not self.client:
            return

        if reason_code.is_failure:
            with self._lock:
                self._connack_reason = reason_code
            self._connack.set()
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Connection refused ({reason_code})",
                metadata={'broker': self.broker}
            )
            return

        with self._lock:
            reconnect = self._connack.is_set()
            self._connack_reason = reason_code
            changed = self._state is not ConnectionState.CONNECTED
            self._state = ConnectionState.CONNECTED
            topic_filter = self._active_filter
            if reconnect:
                self._reconnect_count += 1

        self._connack.set()

        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Connection restored" if reconnect else "Connected to MQTT broker",
            metadata={'broker': self.broker, 'client_id': self.client_id}
        )

        if changed:
            self._notify_status(True)

        if topic_filter:
            with self._lock:
                if self._active_filter == topic_filter:
                    self._cancel_resubscribe_locked()
                    self._resubscribe_locked(topic_filter, attempt=1)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if client is not self.client:
            return

        with self._lock:
            changed = self._state is ConnectionState.CONNECTED
            self._state = ConnectionState.DISCONNECTED
            closing = self._closing
            self._cancel_resubscribe_locked()
            self._release_waiters_locked()

        if closing:
            logger.debug("Session closed (%s)", reason_code)
        else:
            self.logger.warning(
                event=LogEvent.MQTT_DISCONNECTED,
                message="Lost connection to broker, paho will reconnect",
                metadata={'broker': self.broker, 'reason_code': str(reason_code)}
            )

        if changed:
            self._notify_status(False)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        if client is not self.client:
            return

        with self._lock:
            waiter = self._waiters.pop(mid, None)
            if waiter is not None:
                waiter.reason_codes = list(reason_code_list)
                waiter.event.set()
                return

            if mid != self._resubscribe_mid:
                return

            topic_filter = self._active_filter
            if self._resubscribe_timer is not None:
                self._resubscribe_timer.cancel()
                self._resubscribe_timer = None
            self._resubscribe_mid = None

            if any(code.is_failure for code in reason_code_list):
                if topic_filter:
                    self._schedule_resubscribe_retry_locked(
                        topic_filter, self._resubscribe_attempt, "SUBACK refused"
                    )
                return

        self.logger.info(
            event=LogEvent.MQTT_SUBSCRIBED,
            message="Subscription restored",
            metadata={'topic_filter': topic_filter, 'broker': self.broker}
        )

    def _on_message(self, client, userdata, msg):
        """
        Inbound message: forward (topic, payload text) to the callback.

        Keep the callback fast, it delays delivery of the next message.
        """
        if client is not self.client:
            return

        payload = msg.payload.decode('utf-8', errors='replace')

        with self._lock:
            self._received_count += 1
            callback = self._message_callback

        if callback is None:
            return

        try:
            callback(msg.topic, payload)
        except Exception as e:
            self.logger.error(
                event=LogEvent.CALLBACK_ERROR,
                message="Message callback raised",
                exc_info=e,
                metadata={'topic': msg.topic}
            )

    def _notify_status(self, connected: bool) -> None:
        with self._lock:
            callback = self._status_callback

        if callback is None:
            return

        try:
            callback(connected)
        except Exception as e:
            self.logger.error(
                event=LogEvent.CALLBACK_ERROR,
                message="Status callback raised",
                exc_info=e,
                metadata={'connected': connected}
            )
