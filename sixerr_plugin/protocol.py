"""
Wire protocol between the plugin and the Sixerr server.

Every frame is a JSON object tagged by ``type``. All models are strict:
unknown fields, unknown ``type`` values, coerced scalars and protocol
version mismatches fail validation. Callers on the receive side drop
frames that fail, so new server message types never crash old plugins.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, Field, TypeAdapter, ValidationError

from sixerr_plugin.errors import ProtocolError

PROTOCOL_VERSION = 2

_NonEmpty = Annotated[str, Field(min_length=1)]


def _integral(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# Epoch millis; JSON encoders may emit 1700000000000.0
_Timestamp = Annotated[int, BeforeValidator(_integral)]


class _ServerFrame(BaseModel):
    # Validated by wire name only
    model_config = {"extra": "forbid", "strict": True, "frozen": True}


class _PluginFrame(BaseModel):
    model_config = {
        "extra": "forbid",
        "strict": True,
        "frozen": True,
        "populate_by_name": True,
    }


# ============================================================
#  Server -> Plugin
# ============================================================


class RequestMessage(_ServerFrame):
    """Inference request to relay to the local backend."""

    type: Literal["request"]
    id: _NonEmpty
    body: Any = None


class PingMessage(_ServerFrame):
    type: Literal["ping"]
    ts: _Timestamp


class AuthOkMessage(_ServerFrame):
    """Handshake accepted; carries the server-assigned connection id."""

    type: Literal["auth_ok"]
    connection_id: _NonEmpty = Field(alias="pluginId")
    protocol: Literal[PROTOCOL_VERSION]


class AuthErrorMessage(_ServerFrame):
    type: Literal["auth_error"]
    message: str


class JwtRefreshMessage(_ServerFrame):
    type: Literal["jwt_refresh"]
    token: _NonEmpty = Field(alias="jwt")


class PriceUpdateAckMessage(_ServerFrame):
    type: Literal["price_update_ack"]
    input_token_price: _NonEmpty = Field(alias="inputTokenPrice")
    output_token_price: _NonEmpty = Field(alias="outputTokenPrice")


ServerMessage = Annotated[
    Union[
        RequestMessage,
        PingMessage,
        AuthOkMessage,
        AuthErrorMessage,
        JwtRefreshMessage,
        PriceUpdateAckMessage,
    ],
    Field(discriminator="type"),
]


# ============================================================
#  Plugin -> Server
# ============================================================


class AuthMessage(_PluginFrame):
    """First frame on every socket: credential plus optional identity card."""

    type: Literal["auth"] = "auth"
    token: _NonEmpty = Field(alias="jwt")
    protocol: Literal[PROTOCOL_VERSION] = PROTOCOL_VERSION
    input_token_price: str | None = Field(None, alias="inputTokenPrice")
    output_token_price: str | None = Field(None, alias="outputTokenPrice")
    agent_name: str | None = Field(None, alias="agentName")
    agent_description: str | None = Field(None, alias="agentDescription")


class ResponseMessage(_PluginFrame):
    type: Literal["response"] = "response"
    id: _NonEmpty
    body: Any = None


class StreamEventMessage(_PluginFrame):
    type: Literal["stream_event"] = "stream_event"
    id: _NonEmpty
    event: Any = None


class Usage(BaseModel):
    """Token counters reported with ``stream_end``."""

    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)

    model_config = {"extra": "forbid", "strict": True, "frozen": True}


class StreamEndMessage(_PluginFrame):
    type: Literal["stream_end"] = "stream_end"
    id: _NonEmpty
    usage: Usage


class ErrorMessage(_PluginFrame):
    type: Literal["error"] = "error"
    id: _NonEmpty
    code: str
    message: str


class PongMessage(_PluginFrame):
    type: Literal["pong"] = "pong"
    ts: _Timestamp


class PriceUpdateMessage(_PluginFrame):
    type: Literal["price_update"] = "price_update"
    input_token_price: _NonEmpty = Field(alias="inputTokenPrice")
    output_token_price: _NonEmpty = Field(alias="outputTokenPrice")


ClientMessage = Annotated[
    Union[
        AuthMessage,
        ResponseMessage,
        StreamEventMessage,
        StreamEndMessage,
        ErrorMessage,
        PongMessage,
        PriceUpdateMessage,
    ],
    Field(discriminator="type"),
]


# ============================================================
#  Marketplace HTTP error envelope
# ============================================================


class MarketplaceErrorDetail(BaseModel):
    message: str
    type: str
    code: str | None = None

    model_config = {"extra": "forbid"}


class MarketplaceErrorBody(BaseModel):
    """``{"error": {"message", "type", "code"?}}`` returned on HTTP errors."""

    error: MarketplaceErrorDetail

    model_config = {"extra": "forbid"}


# ============================================================
#  Codec
# ============================================================


_server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)
_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Decode one server frame.

    Raises:
        ProtocolError: If ``raw`` is not JSON or matches no known message.
    """
    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Invalid server message: {e.error_count()} error(s)") from e


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one plugin frame (the server side of the same contract)."""
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Invalid plugin message: {e.error_count()} error(s)") from e


def encode_message(message: BaseModel) -> str:
    """Serialize a frame with wire field names, omitting unset optionals."""
    return message.model_dump_json(by_alias=True, exclude_none=True)
