"""
Topic Codec
===========

Bounded Context: Wire Format

Pure functions mapping MQTT topics and payloads to outlet values and back.

Wire Protocol:
    Status  (inbound):  power/<device>/outlets/<outlet>       payload "0" | "1"
    Command (outbound): power/<device>/outlets/<outlet>/set   payload "0" | "1"

Device and outlet names are not escaped: callers must not use "/" in them.

Example:
    >>> decode_status_topic("power/office-strip/outlets/1")
    OutletIdentity(device_name='office-strip', outlet_number='1')
    >>> encode_command_topic("office-strip", "1")
    'power/office-strip/outlets/1/set'
    >>> decode_payload(" 1 ")
    <OutletState.ON: 'ON'>
    >>> encode_payload("off")
    '0'
"""

from .errors import MalformedTopicError
from .schemas import OutletIdentity, OutletState, StateValue, state_text

TOPIC_ROOT = "power"
OUTLETS_SEGMENT = "outlets"
COMMAND_SUFFIX = "set"
DEFAULT_SUBSCRIBE_FILTER = f"{TOPIC_ROOT}/#"

PAYLOAD_ON = "1"
PAYLOAD_OFF = "0"


def decode_status_topic(topic: str) -> OutletIdentity:
    """
    Parse a status topic into an outlet identity.

    Args:
        topic: Topic exactly of the form power/<device>/outlets/<outlet>

    Returns:
        OutletIdentity for the topic

    Raises:
        MalformedTopicError: Wrong segment count, wrong literal segments,
            or empty device/outlet. Command topics (trailing /set) are
            rejected since they are never expected inbound.
    """
    parts = topic.split("/")

    if len(parts) != 4:
        raise MalformedTopicError(topic, f"expected 4 segments, got {len(parts)}")

    root, device, outlets, outlet = parts

    if root != TOPIC_ROOT:
        raise MalformedTopicError(topic, f"does not start with '{TOPIC_ROOT}'")

    if outlets != OUTLETS_SEGMENT:
        raise MalformedTopicError(topic, f"third segment must be '{OUTLETS_SEGMENT}'")

    if not device or not outlet:
        raise MalformedTopicError(topic, "empty device or outlet")

    return OutletIdentity(device_name=device, outlet_number=outlet)


def encode_status_topic(device_name: str, outlet_number: str) -> str:
    """Build power/<device>/outlets/<outlet>."""
    return f"{TOPIC_ROOT}/{device_name}/{OUTLETS_SEGMENT}/{outlet_number}"


def encode_command_topic(device_name: str, outlet_number: str) -> str:
    """Build power/<device>/outlets/<outlet>/set."""
    return f"{encode_status_topic(device_name, outlet_number)}/{COMMAND_SUFFIX}"


def decode_payload(payload: str) -> StateValue:
    """
    Convert a status payload to an outlet state.

    "0" -> OFF, "1" -> ON after trimming whitespace. Any other payload is
    returned trimmed and otherwise verbatim; this is not an error.
    """
    payload = payload.strip()
    if payload == PAYLOAD_OFF:
        return OutletState.OFF
    if payload == PAYLOAD_ON:
        return OutletState.ON
    return payload


def encode_payload(state: StateValue) -> str:
    """
    Convert a desired state to a command payload.

    Case-insensitive: "on" -> "1", "OFF" -> "0". Anything else is returned
    upper-cased and trimmed.
    """
    text = state_text(state).strip().upper()
    if text == OutletState.ON.value:
        return PAYLOAD_ON
    if text == OutletState.OFF.value:
        return PAYLOAD_OFF
    return text
