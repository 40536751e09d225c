"""Tests for PowerControlService.

A real ConnectionManager runs against FakeClientFactory, so the whole
inbound path (paho callback -> queue -> dispatch thread -> stores -> UI
events) is exercised.
"""

import threading
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from conftest import wait_until
from powerctl_mqtt import ConnectionManager, create_logger
from powerctl_mqtt.errors import (
    ConfigError,
    ConnectError,
    DecryptError,
    PublishError,
    PublishFailure,
)
from powerctl_mqtt.schemas import Direction, OutletIdentity, OutletState
from powerctl_app import AppConfig, BrokerSettings, PowerControlService, UIEvent


@pytest.fixture
def service(manager, settings_store, cipher, configured, events):
    svc = PowerControlService(
        connection=manager,
        settings_store=settings_store,
        cipher=cipher,
        config=configured,
        events=events,
        structured_logger=create_logger("test.service"),
    )
    yield svc
    if svc.is_running:
        svc.stop()


def _event_names(events):
    return [event for event, _ in events.drain()]


class TestProcessMessage:
    def test_status_then_update_same_record(self, service):
        service.process_message("power/office-strip/outlets/1", "1")

        record = service.devices.get(OutletIdentity("office-strip", "1"))
        assert record.state is OutletState.ON

        service.process_message("power/office-strip/outlets/1", "0")

        assert service.devices.count() == 1
        assert service.devices.get(OutletIdentity("office-strip", "1")).state is OutletState.OFF
        assert [e.payload for e in service.get_messages()] == ["0", "1"]

    def test_malformed_topic_logged_not_stored(self, service, events):
        result = service.process_message("power/office-strip/1", "1")

        assert result is None
        assert service.devices.count() == 0
        entries = service.get_messages()
        assert len(entries) == 1
        assert entries[0].direction is Direction.RECEIVED
        assert entries[0].topic == "power/office-strip/1"
        assert _event_names(events) == [UIEvent.MESSAGE_NEW]

    def test_events_order(self, service, events):
        service.process_message("power/office-strip/outlets/2", " 1 ")

        drained = events.drain()
        assert [event for event, _ in drained] == [UIEvent.MESSAGE_NEW, UIEvent.DEVICE_UPDATE]
        assert drained[0][1]["direction"] == "Recv"
        assert drained[0][1]["payload"] == " 1 "
        assert drained[1][1]["deviceName"] == "office-strip"
        assert drained[1][1]["status"] == "ON"

    def test_unknown_payload_kept(self, service):
        record = service.process_message("power/rack/outlets/4", "fault")
        assert record.status == "fault"


class TestSendCommand:
    def test_publish_while_disconnected(self, service):
        with pytest.raises(PublishError) as exc_info:
            service.send_command("office-strip", "1", "ON")

        assert exc_info.value.reason is PublishFailure.NOT_CONNECTED
        assert service.get_messages() == []

    def test_publish_success_logs_sent_entry(self, service, fake_factory, events):
        service.connect()
        events.drain()

        entry = service.send_command("office-strip", "1", "on")

        fake_factory.client.publish.assert_called_once_with(
            "power/office-strip/outlets/1/set", "1", qos=0, retain=False
        )
        assert entry.direction is Direction.SENT
        assert service.get_messages() == [entry]
        assert _event_names(events) == [UIEvent.MESSAGE_NEW]

    def test_publish_timeout_not_logged(self, service, fake_factory):
        service.connect()
        fake_factory.published = False

        with pytest.raises(PublishError) as exc_info:
            service.send_command("office-strip", "1", OutletState.OFF)

        assert exc_info.value.reason is PublishFailure.TIMEOUT
        assert service.get_messages() == []


class TestConnect:
    def test_connect_uses_settings(self, service, fake_factory):
        service.connect()

        client = fake_factory.client
        client.username_pw_set.assert_called_once_with("panel", "s3cret")
        client.connect.assert_called_once_with("broker.local", 1883, keepalive=5)
        client.subscribe.assert_called_once_with("power/#", qos=0)
        assert service.get_connection_status()
        assert service.connection.client_id.startswith("powerctl-")

    def test_empty_config(self, manager, settings_store, cipher):
        svc = PowerControlService(
            connection=manager, settings_store=settings_store, cipher=cipher, config=AppConfig()
        )
        assert svc.is_config_empty()
        with pytest.raises(ConfigError):
            svc.connect()

    def test_undecryptable_password(self, manager, settings_store, cipher, fake_factory):
        broker = BrokerSettings(username="panel", password_blob="bm90IGEgYmxvYg==", server="broker.local")
        svc = PowerControlService(
            connection=manager, settings_store=settings_store, cipher=cipher,
            config=AppConfig(broker=broker),
        )
        with pytest.raises(DecryptError):
            svc.connect()
        assert fake_factory.clients == []
        assert not svc.get_connection_status()

    def test_connection_status_events(self, service, fake_factory, events):
        service.start(auto_connect=False)
        service.connect()
        fake_factory.drop_link()
        fake_factory.restore_link()
        service.disconnect()

        statuses = [data for event, data in events.drain() if event is UIEvent.CONNECTION_STATUS]
        assert statuses == [True, False, True, False]


class TestLifecycle:
    def test_dispatch_thread_processes_in_order(self, service, fake_factory):
        service.start(auto_connect=False)
        service.connect()

        for payload in (b"1", b"0", b"1", b"0"):
            fake_factory.deliver("power/office-strip/outlets/1", payload)
        fake_factory.deliver("power/office-strip/outlets/2", b"1")

        assert wait_until(lambda: len(service.get_messages()) == 5)
        devices = service.get_devices()
        assert [(d.outlet_number, d.status) for d in devices] == [("1", "OFF"), ("2", "ON")]
        assert [e.payload for e in service.get_messages()] == ["1", "0", "1", "0", "1"]

    def test_auto_connect(self, service, fake_factory):
        service.start()
        assert wait_until(lambda: service.connection.active_subscription == "power/#")
        assert service.get_connection_status()

    def test_auto_connect_failure_leaves_disconnected(self, service, fake_factory):
        fake_factory.connect_error = OSError("no route to host")

        service.start()

        assert wait_until(lambda: len(fake_factory.clients) == 1)
        service._connect_thread.join(timeout=2.0)
        assert not service.get_connection_status()
        assert len(fake_factory.clients) == 1

    def test_auto_connect_skipped_when_unconfigured(self, manager, settings_store, cipher, fake_factory):
        svc = PowerControlService(
            connection=manager, settings_store=settings_store, cipher=cipher, config=AppConfig()
        )
        svc.start()
        try:
            assert svc._connect_thread is None
            assert fake_factory.clients == []
        finally:
            svc.stop()

    def test_stop_joins_dispatcher(self, service):
        service.start(auto_connect=False)
        thread = service.dispatch_thread
        service.stop()
        assert not thread.is_alive()
        assert not service.is_running

    def test_processing_errors_do_not_stop_dispatch(self, service, fake_factory, monkeypatch):
        service.start(auto_connect=False)
        service.connect()

        original = service.devices.upsert
        calls = []

        def flaky_upsert(identity, state, **kwargs):
            calls.append(identity)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return original(identity, state, **kwargs)

        monkeypatch.setattr(service.devices, "upsert", flaky_upsert)

        fake_factory.deliver("power/a/outlets/1", b"1")
        fake_factory.deliver("power/a/outlets/2", b"1")

        assert wait_until(lambda: service.devices.count() == 1)
        assert service.devices.get(OutletIdentity("a", "2")) is not None


class TestSettings:
    def test_save_settings_persists_and_reconnects(self, service, fake_factory, settings_store, cipher):
        service.connect()
        service.process_message("power/old-strip/outlets/1", "1")
        first_client = fake_factory.client

        service.save_settings("admin", "n3w", "broker2.local", 8883, "power/lab/#")

        first_client.disconnect.assert_called_once()
        assert service.devices.count() == 0
        assert len(service.get_messages()) == 1

        client = fake_factory.client
        client.username_pw_set.assert_called_once_with("admin", "n3w")
        client.connect.assert_called_once_with("broker2.local", 8883, keepalive=5)
        client.subscribe.assert_called_once_with("power/lab/#", qos=0)

        saved = settings_store.load()
        assert saved.broker.server == "broker2.local"
        assert saved.broker.port == 8883
        assert saved.broker.password_blob != "n3w"
        assert saved.broker.get_password(cipher) == "n3w"

    def test_settings_change_discards_in_flight_updates(self, service, fake_factory, monkeypatch):
        service.start(auto_connect=False)
        service.connect()

        entered, release = threading.Event(), threading.Event()
        original = service.devices.upsert

        def held_upsert(identity, state, **kwargs):
            if identity == OutletIdentity("old-strip", "1"):
                entered.set()
                release.wait(2.0)
            return original(identity, state, **kwargs)

        monkeypatch.setattr(service.devices, "upsert", held_upsert)

        fake_factory.deliver("power/old-strip/outlets/1", b"1")
        fake_factory.deliver("power/old-strip/outlets/2", b"1")
        assert entered.wait(2.0)

        service.save_settings("admin", "pw", "broker2.local", 1883, "power/#")
        release.set()
        fake_factory.deliver("power/new-strip/outlets/1", b"0")

        assert wait_until(lambda: service.devices.get(OutletIdentity("new-strip", "1")) is not None)
        assert [(d.device_name, d.outlet_number) for d in service.get_devices()] == [("new-strip", "1")]
        assert len(service.get_messages()) == 3

    def test_empty_filter_defaults(self, service, fake_factory):
        service.save_settings("admin", "pw", "broker.local", 1883, "  ")
        fake_factory.client.subscribe.assert_called_once_with("power/#", qos=0)
        assert service.get_config()["subscribe_filter"] == "power/#"

    def test_invalid_port_rejected_before_saving(self, service, settings_store, fake_factory):
        with pytest.raises(ConfigError):
            service.save_settings("admin", "pw", "broker.local", 70000, "power/#")

        assert not settings_store.exists()
        assert fake_factory.clients == []

    def test_missing_server_rejected(self, service, settings_store):
        with pytest.raises(ConfigError):
            service.save_settings("admin", "pw", " ", 1883, "power/#")
        assert not settings_store.exists()

    def test_connect_failure_after_save_is_raised(self, service, fake_factory, settings_store):
        fake_factory.connack_code = None
        service._config = replace(service.config, connect_timeout=0.1)

        with pytest.raises(ConnectError):
            service.save_settings("admin", "pw", "broker.local", 1883, "power/#")

        assert settings_store.exists()
        assert not service.get_connection_status()

    def test_get_config_hides_password(self, service):
        config = service.get_config()
        assert config == {
            "username": "panel",
            "server": "broker.local",
            "port": 1883,
            "subscribe_filter": "power/#",
        }

    def test_config_loaded_from_store(self, manager, settings_store, cipher, configured):
        settings_store.save(configured)

        svc = PowerControlService(connection=manager, settings_store=settings_store, cipher=cipher)

        assert svc.config == configured

    def test_corrupt_config_falls_back_to_defaults(self, manager, settings_store, cipher):
        settings_store.path.parent.mkdir(parents=True)
        settings_store.path.write_text("broker: [unclosed\n")

        svc = PowerControlService(connection=manager, settings_store=settings_store, cipher=cipher)

        assert svc.is_config_empty()


class TestClearLog:
    def test_clear_log_emits_once(self, service, events):
        service.process_message("power/a/outlets/1", "1")
        events.drain()

        service.clear_log()

        assert service.get_messages() == []
        assert service.devices.count() == 1
        assert events.drain() == [(UIEvent.LOG_CLEARED, None)]


def test_default_connection_built_from_config(settings_store, cipher, configured):
    svc = PowerControlService(settings_store=settings_store, cipher=cipher, config=configured)
    assert isinstance(svc.connection, ConnectionManager)
    assert svc.connection.subscribe_timeout == configured.subscribe_timeout
    assert svc.message_log.capacity == configured.message_log_capacity


def test_send_command_with_mock_connection(settings_store, cipher, configured):
    connection = MagicMock(spec=ConnectionManager)
    svc = PowerControlService(
        connection=connection, settings_store=settings_store, cipher=cipher, config=configured
    )

    svc.send_command("rack", "7", "OFF")

    connection.publish.assert_called_once_with("power/rack/outlets/7/set", "0", timeout=1.0)


def test_non_utf8_config_falls_back_to_defaults(manager, settings_store, cipher):
    settings_store.path.parent.mkdir(parents=True)
    settings_store.path.write_bytes(b"broker:\n  username: \xff\n")

    svc = PowerControlService(connection=manager, settings_store=settings_store, cipher=cipher)

    assert svc.is_config_empty()
