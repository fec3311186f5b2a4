"""Tests for the JSON wire codec."""

import json

import pytest

from tickfeed.errors import DecodeError, EncodeError
from tickfeed.protocol.codec import WireCodec
from tickfeed.protocol.messages import (
    CloseNotification,
    CloseSignal,
    RawFrame,
    Request,
    Response,
)


@pytest.fixture
def codec():
    return WireCodec()


class TestEncode:
    """Request encoding."""

    def test_auth_request_omits_method(self, codec):
        encoded = codec.encode(Request(id=1, params={"token": "secret"}))
        assert json.loads(encoded) == {"params": {"token": "secret"}, "id": 1}

    def test_heartbeat_request_omits_params(self, codec):
        encoded = codec.encode(Request(id=3, method=7))
        assert json.loads(encoded) == {"method": 7, "id": 3}

    def test_subscribe_request(self, codec):
        encoded = codec.encode(Request(id=2, method=1, params={"channel": "chart:tick-btcidr"}))
        assert json.loads(encoded) == {
            "method": 1,
            "params": {"channel": "chart:tick-btcidr"},
            "id": 2,
        }

    def test_non_object_params_rejected(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(Request(id=1, params=["token"]))

    def test_unserializable_params_rejected(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(Request(id=1, params={"token": object()}))

    def test_non_integer_id_rejected(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(Request(id="1"))


class TestDecode:
    """Incoming frame decoding."""

    def test_response_with_unknown_fields(self, codec):
        frame = json.dumps({
            "id": 1,
            "result": {"client": "abc", "version": "1", "expires": False, "ttl": 0},
            "extra": {"future": True},
        })

        message = codec.decode(frame)

        assert isinstance(message, Response)
        assert message.id == 1
        assert message.result["client"] == "abc"
        assert message.error is None

    def test_response_error_member(self, codec):
        message = codec.decode('{"id": 2, "error": {"code": 103, "message": "bad channel"}}')
        assert isinstance(message, Response)
        assert message.error == {"code": 103, "message": "bad channel"}

    def test_channel_push_is_raw_frame(self, codec):
        payload = {"result": {"channel": "chart:tick-btcidr", "data": {"data": []}}}
        message = codec.decode(json.dumps(payload))
        assert message == RawFrame(payload=payload)

    def test_boolean_id_is_not_a_response(self, codec):
        message = codec.decode('{"id": true, "result": {}}')
        assert isinstance(message, RawFrame)

    def test_bytes_frame(self, codec):
        message = codec.decode(b'{"id": 3, "result": {}}')
        assert message == Response(id=3, result={})

    @pytest.mark.parametrize("frame", ["not json", "[1, 2, 3]", "42", b"\xff\xfe"])
    def test_malformed_frames(self, codec, frame):
        with pytest.raises(DecodeError):
            codec.decode(frame)

    def test_deeply_nested_frame(self, codec):
        frame = "[" * 100000 + "]" * 100000
        with pytest.raises(DecodeError):
            codec.decode(frame)


class TestDecodeClose:
    """Close frame decoding."""

    def test_structured_close(self, codec):
        signal = CloseSignal(code=4000, reason='{"reason":"bad channel","reconnect":true}')
        assert codec.decode(signal) == CloseNotification(reason="bad channel", reconnect=True)

    def test_structured_close_without_reconnect(self, codec):
        notification = codec.decode_close('{"reason":"token expired","reconnect":false}')
        assert notification == CloseNotification(reason="token expired", reconnect=False)

    def test_bare_close_is_transport_closed(self, codec):
        notification = codec.decode(CloseSignal(code=1006))
        assert notification == CloseNotification(reason="transport closed", reconnect=False)

    def test_plain_text_close_never_reconnects(self, codec):
        notification = codec.decode_close("going away")
        assert notification == CloseNotification(reason="going away", reconnect=False)

    def test_reconnect_must_be_boolean_true(self, codec):
        notification = codec.decode_close('{"reason":"maintenance","reconnect":"yes"}')
        assert notification.reconnect is False
