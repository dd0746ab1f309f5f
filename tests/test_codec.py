import json

import pytest

from ocppulse.codec import Call, CallError, CallResult, MalformedFrame, decode, encode


@pytest.mark.parametrize(
    "envelope",
    [
        Call("a1", "BootNotification", {"chargePointVendor": "V", "chargePointModel": "M"}),
        Call("a2", "MeterValues", {"connectorId": 1, "meterValue": [{"sampledValue": [{"value": "1.5"}]}]}),
        CallResult("a3", {"transactionId": 42, "idTagInfo": {"status": "Accepted"}}),
        CallResult("a4", {}),
        CallError("a5", "NotImplemented", "no such action", {"hint": None}),
    ],
)
def test_decode_inverts_encode(envelope):
    assert decode(encode(envelope)) == envelope


def test_wire_layout():
    assert json.loads(encode(Call("x", "StartTransaction", {"connectorId": 1}))) == [
        2, "x", "StartTransaction", {"connectorId": 1},
    ]
    assert json.loads(encode(CallResult("x", {"status": "Accepted"}))) == [3, "x", {"status": "Accepted"}]
    assert json.loads(encode(CallError("x", "GenericError", "bad", {}))) == [4, "x", "GenericError", "bad", {}]


def test_encode_rejects_non_envelopes():
    with pytest.raises(TypeError):
        encode({"not": "an envelope"})


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        "",
        '{"messageTypeId": 3}',
        "[]",
        '"a string"',
        '[5, "id", {}]',
        '[true, "id", {}]',
        '[2.0, "id", "Heartbeat", {}]',
        '["3", "id", {}]',
        '[[3], "id", {}]',
        '[2, "id", "Heartbeat"]',
        '[2, "id", "Heartbeat", {}, {}]',
        '[3, "id"]',
        '[3, "id", {}, {}]',
        '[4, "id", "GenericError", "bad"]',
        '[3, 17, {}]',
        '[3, null, {}]',
        '[3, "", {}]',
        '[2, "id", 7, {}]',
        '[4, "id", 500, "bad", {}]',
    ],
)
def test_malformed_frames_are_returned_not_raised(text):
    result = decode(text)
    assert isinstance(result, MalformedFrame)
    assert result.raw == text
    assert result.reason


def test_deeply_nested_frame_is_malformed():
    text = "[" * 200000 + "]" * 200000
    result = decode(text)
    assert isinstance(result, MalformedFrame)
    assert result.reason.startswith("invalid JSON")


def test_payload_contents_are_not_validated():
    # missing or odd payload fields are the session's business, not the codec's
    assert decode('[3, "id", null]') == CallResult("id", None)
    assert decode('[2, "id", "StartTransaction", []]') == Call("id", "StartTransaction", [])
