# server/app/codec.py

import  json
from    typing      import Optional, Tuple, Union
from    pydantic    import ValidationError
from    sqlmodel    import SQLModel

from    config      import constants
from    .errors     import DecodeFailure


class StatusMessage(SQLModel):
    device_id:                      str
    relay_state:                    Optional[bool] = None
    wifi_rssi:                      Optional[int] = None
    uptime:                         Optional[int] = None
    free_heap:                      Optional[int] = None
    confirmation_code:              Optional[str] = None

    def telemetry(self) -> dict:
        """Telemetry fields only, as stored in presence and history."""
        return self.model_dump(exclude={"device_id", "confirmation_code"})


class PresenceMessage(SQLModel):
    device_id:                      str
    online:                         bool


class UnknownMessage(SQLModel):
    device_id:                      str
    kind:                           str


DecodedMessage = Union[StatusMessage, PresenceMessage, UnknownMessage]

# wire name -> attribute name
STATUS_FIELDS = {
    "relayState":       "relay_state",
    "wifiRSSI":         "wifi_rssi",
    "uptime":           "uptime",
    "freeHeap":         "free_heap",
    "confirmationCode": "confirmation_code",
}


def status_topic(device_id: str) -> str:
    return f"{constants.TOPIC_NAMESPACE}/{device_id}/{constants.DEVICE_STATUS_KIND}"


def online_topic(device_id: str) -> str:
    return f"{constants.TOPIC_NAMESPACE}/{device_id}/{constants.DEVICE_ONLINE_KIND}"


def command_topic(device_id: str) -> str:
    return f"{constants.TOPIC_NAMESPACE}/{device_id}/{constants.DEVICE_COMMAND_KIND}"


def split_topic(topic: str) -> Tuple[str, str]:
    """Returns (device_id, kind) for a `solar/<deviceId>/<kind>` topic."""
    parts = topic.split("/")
    if len(parts) != 3 or parts[0] != constants.TOPIC_NAMESPACE or not parts[1] or not parts[2]:
        raise DecodeFailure(f"Unexpected topic format: {topic}")
    return parts[1], parts[2]


def _text(payload) -> str:
    if isinstance(payload, (bytes, bytearray)):
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeFailure(f"Payload is not valid UTF-8: {e}") from e
    return payload


def decode(topic: str, payload) -> DecodedMessage:
    device_id, kind = split_topic(topic)
    text = _text(payload)

    if kind == constants.DEVICE_STATUS_KIND:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecodeFailure(f"Malformed status JSON from {device_id}: {e}") from e
        if not isinstance(data, dict):
            raise DecodeFailure(f"Status payload from {device_id} is not an object")

        fields = {attr: data[wire] for wire, attr in STATUS_FIELDS.items() if data.get(wire) is not None}
        code = fields.get("confirmation_code")
        if isinstance(code, (int, float)) and not isinstance(code, bool):
            fields["confirmation_code"] = str(int(code))
        try:
            return StatusMessage.model_validate({"device_id": device_id, **fields})
        except ValidationError as e:
            raise DecodeFailure(f"Invalid status fields from {device_id}: {e}") from e

    if kind == constants.DEVICE_ONLINE_KIND:
        value = text.strip().lower()
        if value not in ("true", "false"):
            raise DecodeFailure(f"Invalid online payload from {device_id}: {text!r}")
        return PresenceMessage(device_id=device_id, online=(value == "true"))

    return UnknownMessage(device_id=device_id, kind=kind)


def encode_command(device_id: str, command: str, state: Optional[bool] = None) -> Tuple[str, str]:
    """Builds the downlink (topic, payload); command semantics are the device's concern."""
    message = {"command": command}
    if state is not None:
        message["state"] = state
    return command_topic(device_id), json.dumps(message)
