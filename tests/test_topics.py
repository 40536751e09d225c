"""Unit tests for the topic and payload codec."""

import pytest

from powerctl_mqtt.errors import MalformedTopicError
from powerctl_mqtt.schemas import OutletIdentity, OutletState
from powerctl_mqtt.topics import (
    DEFAULT_SUBSCRIBE_FILTER,
    decode_payload,
    decode_status_topic,
    encode_command_topic,
    encode_payload,
    encode_status_topic,
)


class TestDecodeStatusTopic:
    def test_valid_topic(self):
        identity = decode_status_topic("power/office-strip/outlets/1")
        assert identity == OutletIdentity("office-strip", "1")

    def test_identity_is_case_sensitive(self):
        assert decode_status_topic("power/Lab/outlets/A") != decode_status_topic("power/lab/outlets/a")

    @pytest.mark.parametrize(
        "topic",
        [
            "power/office-strip/1",               # missing "outlets"
            "power/office-strip/outlets/1/set",   # command topic
            "power/office-strip/sockets/1",
            "lights/office-strip/outlets/1",
            "power//outlets/1",
            "power/office-strip/outlets/",
            "",
        ],
    )
    def test_malformed_topics_rejected(self, topic):
        with pytest.raises(MalformedTopicError) as exc_info:
            decode_status_topic(topic)
        assert exc_info.value.topic == topic

    def test_malformed_topic_is_value_error(self):
        with pytest.raises(ValueError):
            decode_status_topic("power/x")

    def test_roundtrip_with_status_encoder(self):
        for device, outlet in [("office-strip", "1"), ("Rack 4", "12"), ("a", "b")]:
            assert decode_status_topic(encode_status_topic(device, outlet)) == OutletIdentity(device, outlet)


class TestEncodeTopics:
    def test_command_topic(self):
        assert encode_command_topic("office-strip", "1") == "power/office-strip/outlets/1/set"

    def test_status_topic(self):
        assert encode_status_topic("office-strip", "3") == "power/office-strip/outlets/3"

    def test_default_filter(self):
        assert DEFAULT_SUBSCRIBE_FILTER == "power/#"


class TestPayloads:
    def test_decode_known_values(self):
        assert decode_payload("1") is OutletState.ON
        assert decode_payload("0") is OutletState.OFF
        assert decode_payload(" 1\n") is OutletState.ON

    def test_decode_unknown_value_is_trimmed_verbatim(self):
        assert decode_payload("  standby ") == "standby"

    @pytest.mark.parametrize("payload", ["0", "1"])
    def test_known_payloads_roundtrip(self, payload):
        assert encode_payload(decode_payload(payload)) == payload

    @pytest.mark.parametrize("state, expected", [("on", "1"), (" OFF ", "0"), ("On", "1")])
    def test_encode_is_case_insensitive(self, state, expected):
        assert encode_payload(state) == expected

    def test_encode_enum_members(self):
        assert encode_payload(OutletState.ON) == "1"
        assert encode_payload(OutletState.OFF) == "0"

    def test_encode_unknown_is_upper_trimmed(self):
        assert encode_payload(" toggle ") == "TOGGLE"

    def test_state_equals_plain_string(self):
        assert OutletState.ON == "ON"
        assert OutletState.OFF == "OFF"
