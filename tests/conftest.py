"""Shared fixtures for powerctl tests.

Provides a fake paho client factory that drives ConnectionManager's
callbacks the way paho's network thread would, using real ReasonCode
objects, so no broker is needed.
"""

import threading
import time
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from powerctl_mqtt import ConnectionManager, create_logger
from powerctl_app import AppConfig, BrokerSettings, EventChannel, MachineKeyCipher, SettingsStore


def connack(name: str = "Success") -> ReasonCode:
    return ReasonCode(PacketTypes.CONNACK, name)


def suback(name: str = "Granted QoS 0") -> ReasonCode:
    return ReasonCode(PacketTypes.SUBACK, name)


def link_lost() -> ReasonCode:
    return ReasonCode(PacketTypes.DISCONNECT, "Unspecified error")


def wait_until(predicate, timeout: float = 2.0) -> bool:
    """Poll predicate until true or timeout; returns the last result."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_message(topic: str, payload: bytes) -> MagicMock:
    msg = MagicMock()
    msg.topic = topic
    msg.payload = payload
    return msg


class FakeClientFactory:
    """
    Builds MagicMock paho clients.

    Behaviour knobs (set before connect/subscribe):
        connack_code: CONNACK delivered synchronously from client.connect()
            (None: no CONNACK, the connect times out)
        connect_error: Exception raised by client.connect()
        suback_code: SUBACK delivered asynchronously after client.subscribe()
            (None: no SUBACK)
        subscribe_rc: Return code of client.subscribe()
        publish_rc / published: Outcome of client.publish()
    """

    def __init__(self):
        self.clients = []
        self.connack_code = connack()
        self.connect_error = None
        self.suback_code = suback()
        self.subscribe_rc = mqtt.MQTT_ERR_SUCCESS
        self.publish_rc = mqtt.MQTT_ERR_SUCCESS
        self.published = True
        self._mid = 0
        self._ack_threads = []

    @property
    def client(self) -> MagicMock:
        """Most recently built client."""
        return self.clients[-1]

    def __call__(self, client_id: str) -> MagicMock:
        client = MagicMock(name=client_id)
        client.client_id = client_id
        client.connect.side_effect = lambda host, port, keepalive=60: self._connect(client)
        client.subscribe.side_effect = lambda topic, qos=0: self._subscribe(client)
        client.publish.side_effect = lambda topic, payload, qos=0, retain=False: self._publish()
        self.clients.append(client)
        return client

    def _connect(self, client):
        if self.connect_error is not None:
            raise self.connect_error
        if self.connack_code is not None:
            client.on_connect(client, None, MagicMock(session_present=False), self.connack_code, None)
        return mqtt.MQTT_ERR_SUCCESS

    def _subscribe(self, client):
        self._mid += 1
        mid = self._mid
        if self.subscribe_rc != mqtt.MQTT_ERR_SUCCESS:
            return self.subscribe_rc, None
        if self.suback_code is not None:
            # subscribe() is called under the manager's lock; ack from another thread
            code = self.suback_code
            thread = threading.Thread(
                target=lambda: client.on_subscribe(client, None, mid, [code], None),
                daemon=True,
            )
            self._ack_threads.append(thread)
            thread.start()
        return mqtt.MQTT_ERR_SUCCESS, mid

    def _publish(self):
        info = MagicMock()
        info.rc = self.publish_rc
        info.is_published.return_value = self.published
        return info

    def wait_for_acks(self, timeout: float = 2.0):
        for thread in list(self._ack_threads):
            thread.join(timeout)

    # ----- Simulated network events -----

    def drop_link(self, client=None):
        client = client or self.client
        client.on_disconnect(client, None, MagicMock(), link_lost(), None)

    def restore_link(self, client=None):
        client = client or self.client
        client.on_connect(client, None, MagicMock(session_present=False), connack(), None)

    def deliver(self, topic: str, payload: bytes, client=None):
        client = client or self.client
        client.on_message(client, None, make_message(topic, payload))


@pytest.fixture
def fake_factory():
    return FakeClientFactory()


@pytest.fixture
def manager(fake_factory):
    """ConnectionManager wired to the fake factory with short resubscribe timings."""
    mgr = ConnectionManager(
        logger=create_logger("test.connection"),
        client_factory=fake_factory,
        subscribe_timeout=0.5,
        resubscribe_base_delay=0.05,
        resubscribe_max_delay=0.2,
    )
    yield mgr
    mgr.disconnect()


@pytest.fixture
def cipher():
    return MachineKeyCipher(identity=b"test-host|0242ac110002")


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(tmp_path / "powerctl" / "config.yaml")


@pytest.fixture
def configured(cipher):
    """AppConfig with a complete broker section and short timeouts."""
    broker = BrokerSettings.create(
        username="panel",
        password="s3cret",
        server="broker.local",
        port=1883,
        subscribe_filter="power/#",
        cipher=cipher,
    )
    return AppConfig(
        broker=broker,
        connect_timeout=1.0,
        subscribe_timeout=1.0,
        publish_timeout=1.0,
    )


@pytest.fixture
def events():
    return EventChannel()
