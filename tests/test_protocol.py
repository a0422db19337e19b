"""Tests for the WebSocket wire protocol."""

from __future__ import annotations

import json

import pytest

from sixerr_plugin.errors import ProtocolError
from sixerr_plugin.protocol import (
    PROTOCOL_VERSION,
    AuthMessage,
    AuthOkMessage,
    ErrorMessage,
    JwtRefreshMessage,
    PingMessage,
    PongMessage,
    PriceUpdateAckMessage,
    RequestMessage,
    StreamEndMessage,
    Usage,
    encode_message,
    parse_client_message,
    parse_server_message,
)


# ============================================================
#  Server -> Plugin
# ============================================================


def test_parse_request() -> None:
    msg = parse_server_message(
        json.dumps({"type": "request", "id": "r1", "body": {"model": "x", "input": "hi"}})
    )
    assert isinstance(msg, RequestMessage)
    assert msg.id == "r1"
    assert msg.body == {"model": "x", "input": "hi"}


def test_parse_ping() -> None:
    msg = parse_server_message('{"type": "ping", "ts": 1700000000000}')
    assert isinstance(msg, PingMessage)
    assert msg.ts == 1700000000000


def test_ping_accepts_integral_float_timestamp() -> None:
    msg = parse_server_message('{"type": "ping", "ts": 1700000000123.0}')
    assert isinstance(msg, PingMessage)
    assert msg.ts == 1700000000123
    assert isinstance(msg.ts, int)
    assert json.loads(encode_message(PongMessage(ts=msg.ts))) == {
        "type": "pong",
        "ts": 1700000000123,
    }


def test_parse_auth_ok_uses_wire_names() -> None:
    msg = parse_server_message(
        json.dumps({"type": "auth_ok", "pluginId": "p-42", "protocol": PROTOCOL_VERSION})
    )
    assert isinstance(msg, AuthOkMessage)
    assert msg.connection_id == "p-42"


def test_parse_jwt_refresh_and_price_ack() -> None:
    refresh = parse_server_message('{"type": "jwt_refresh", "jwt": "new-token"}')
    assert isinstance(refresh, JwtRefreshMessage)
    assert refresh.token == "new-token"

    ack = parse_server_message(
        '{"type": "price_update_ack", "inputTokenPrice": "5", "outputTokenPrice": "9"}'
    )
    assert isinstance(ack, PriceUpdateAckMessage)
    assert (ack.input_token_price, ack.output_token_price) == ("5", "9")


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        '{"type": "mystery"}',
        '{"id": "r1"}',
        '{"type": "ping"}',
        '{"type": "ping", "ts": "123"}',
        '{"type": "ping", "ts": 1.5}',
        '{"type": "ping", "ts": true}',
        '{"type": "ping", "ts": 1, "extra": true}',
        '{"type": "request", "id": ""}',
        '{"type": "auth_ok", "pluginId": "p", "protocol": 1}',
        '{"type": "auth_ok", "pluginId": "p", "protocol": "2"}',
        '{"type": "jwt_refresh", "token": "python-name-not-accepted"}',
    ],
)
def test_rejects_invalid_server_frames(raw: str) -> None:
    with pytest.raises(ProtocolError):
        parse_server_message(raw)


# ============================================================
#  Plugin -> Server
# ============================================================


def test_auth_message_encoding() -> None:
    msg = AuthMessage(token="eyJ", input_token_price="1", output_token_price="2", agent_name="Bot")
    data = json.loads(encode_message(msg))
    assert data == {
        "type": "auth",
        "jwt": "eyJ",
        "protocol": PROTOCOL_VERSION,
        "inputTokenPrice": "1",
        "outputTokenPrice": "2",
        "agentName": "Bot",
    }


def test_auth_message_omits_unset_optionals() -> None:
    data = json.loads(encode_message(AuthMessage(token="eyJ")))
    assert data == {"type": "auth", "jwt": "eyJ", "protocol": PROTOCOL_VERSION}


def test_auth_message_rejects_wrong_protocol() -> None:
    with pytest.raises(ValueError):
        AuthMessage(token="eyJ", protocol=1)


def test_stream_end_usage_shape() -> None:
    msg = StreamEndMessage(id="r1", usage=Usage(input_tokens=3, output_tokens=4, total_tokens=7))
    data = json.loads(encode_message(msg))
    assert data["usage"] == {"input_tokens": 3, "output_tokens": 4, "total_tokens": 7}


def test_usage_rejects_negative_counts() -> None:
    with pytest.raises(ValueError):
        Usage(input_tokens=-1)


def test_encoded_frames_parse_on_the_server_side() -> None:
    for msg in (
        ErrorMessage(id="r1", code="plugin_error", message="boom"),
        StreamEndMessage(id="r2", usage=Usage()),
        AuthMessage(token="t"),
    ):
        assert parse_client_message(encode_message(msg)) == msg


def test_client_parser_rejects_unknown_type() -> None:
    with pytest.raises(ProtocolError):
        parse_client_message('{"type": "auth_ok", "pluginId": "p", "protocol": 2}')
