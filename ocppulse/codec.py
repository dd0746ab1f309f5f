"""OCPP-J envelope codec.

Every frame on the wire is a JSON array whose first element is the message
type id:

    [2, "<uniqueId>", "<Action>", {payload}]                       CALL
    [3, "<uniqueId>", {payload}]                                   CALLRESULT
    [4, "<uniqueId>", "<errorCode>", "<description>", {details}]   CALLERROR

``decode`` never raises: anything that is not a well formed envelope comes
back as a :class:`MalformedFrame` carrying the original text.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Union

from ocpp.messages import MessageType

BOOT_NOTIFICATION = "BootNotification"
START_TRANSACTION = "StartTransaction"
STOP_TRANSACTION = "StopTransaction"
METER_VALUES = "MeterValues"


@dataclass
class Call:
    unique_id: str
    action: str
    payload: Any = field(default_factory=dict)


@dataclass
class CallResult:
    unique_id: str
    payload: Any = field(default_factory=dict)


@dataclass
class CallError:
    unique_id: str
    error_code: str
    error_description: str = ""
    details: Any = field(default_factory=dict)


Envelope = Union[Call, CallResult, CallError]


@dataclass
class MalformedFrame:
    raw: str
    reason: str


# number of array elements per message type id
_FRAME_LENGTH = {
    MessageType.Call: 4,
    MessageType.CallResult: 3,
    MessageType.CallError: 5,
}


def encode(envelope: Envelope) -> str:
    if isinstance(envelope, Call):
        frame = [MessageType.Call, envelope.unique_id, envelope.action, envelope.payload]
    elif isinstance(envelope, CallResult):
        frame = [MessageType.CallResult, envelope.unique_id, envelope.payload]
    elif isinstance(envelope, CallError):
        frame = [
            MessageType.CallError,
            envelope.unique_id,
            envelope.error_code,
            envelope.error_description,
            envelope.details,
        ]
    else:
        raise TypeError(f"not an OCPP envelope: {envelope!r}")
    return json.dumps(frame, separators=(",", ":"))


def decode(text: str) -> Union[Envelope, MalformedFrame]:
    try:
        frame = json.loads(text)
    except (TypeError, ValueError, RecursionError) as exc:
        return MalformedFrame(text, f"invalid JSON: {exc}")

    if not isinstance(frame, list) or not frame:
        return MalformedFrame(text, "frame is not a non-empty JSON array")

    type_id = frame[0]
    # bool is an int subclass; true/false are never valid type ids
    if not isinstance(type_id, int) or isinstance(type_id, bool) or type_id not in _FRAME_LENGTH:
        return MalformedFrame(text, f"unknown message type id {type_id!r}")
    if len(frame) != _FRAME_LENGTH[type_id]:
        return MalformedFrame(
            text, f"message type {type_id} expects {_FRAME_LENGTH[type_id]} elements, got {len(frame)}"
        )

    unique_id = frame[1]
    if not isinstance(unique_id, str) or not unique_id:
        return MalformedFrame(text, "uniqueId must be a non-empty string")

    if type_id == MessageType.Call:
        if not isinstance(frame[2], str):
            return MalformedFrame(text, "action must be a string")
        return Call(unique_id, frame[2], frame[3])
    if type_id == MessageType.CallResult:
        return CallResult(unique_id, frame[2])
    if not isinstance(frame[2], str) or not isinstance(frame[3], str):
        return MalformedFrame(text, "errorCode and errorDescription must be strings")
    return CallError(unique_id, frame[2], frame[3], frame[4])
