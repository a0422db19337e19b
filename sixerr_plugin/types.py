"""
Pydantic models for the Sixerr plugin.

Field names are snake_case; wire shapes keep the server's camelCase
through aliases.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from sixerr_plugin.protocol import PROTOCOL_VERSION
from sixerr_plugin.reconnect import DEFAULT_RECONNECT_POLICY, BackoffPolicy


# ============================================================
#  Connection
# ============================================================


class ConnectionState(str, Enum):
    """Lifecycle of a :class:`~sixerr_plugin.client.PluginClient`."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class Pricing(BaseModel):
    """Per-token price declaration in atomic USDC (strings, no floats)."""

    input_token_price: str = Field(alias="inputTokenPrice")
    output_token_price: str = Field(alias="outputTokenPrice")

    model_config = {"populate_by_name": True, "frozen": True}


class Credential(BaseModel):
    """Snapshot sent in the ``auth`` handshake.

    Frozen: refreshes build a new snapshot with ``model_copy`` and swap
    the reference, so a concurrent send never sees a half-updated value.
    """

    token: str = Field(min_length=1)
    protocol: Literal[PROTOCOL_VERSION] = PROTOCOL_VERSION
    pricing: Pricing | None = None
    agent_name: str | None = None
    agent_description: str | None = None

    model_config = {"frozen": True}


class ClientEvent(BaseModel):
    """Observer notification emitted by the plugin client.

    Event types:
    - status: ``data`` has ``status``, ``connectionId``, ``requestCount``
    - jwt_refresh: ``data`` has ``jwt``
    - price_update_ack: ``data`` has ``inputTokenPrice``, ``outputTokenPrice``
    """

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


# ============================================================
#  Configuration
# ============================================================


class BackendConfig(BaseModel):
    """Local inference gateway the relay forwards to."""

    gateway_url: str = Field("http://localhost:18789", alias="gatewayUrl")
    gateway_token: str = Field(alias="gatewayToken")
    agent_id: str = Field("sixerr-default", alias="agentId")
    timeout_ms: int = Field(120_000, gt=0, alias="timeoutMs")
    default_model: str = Field("kimi-coding/k2p5", alias="defaultModel")

    model_config = {"populate_by_name": True}


class PluginConfig(BaseModel):
    """Everything needed to run a provider connection."""

    server_url: str = Field(alias="serverUrl")
    jwt: str
    backend: BackendConfig
    pricing: Pricing | None = None
    agent_name: str | None = Field(None, alias="agentName")
    agent_description: str | None = Field(None, alias="agentDescription")
    reconnect: BackoffPolicy = DEFAULT_RECONNECT_POLICY
    proxy_port: int = Field(6166, ge=0, le=65535, alias="proxyPort")

    model_config = {"populate_by_name": True}

    @field_validator("server_url", "jwt")
    @classmethod
    def _non_empty(cls, value: str, info: ValidationInfo) -> str:
        if not value or not value.strip():
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return value

    def credential(self) -> Credential:
        return Credential(
            token=self.jwt,
            pricing=self.pricing,
            agent_name=self.agent_name,
            agent_description=self.agent_description,
        )


class ConsumerConfig(BaseModel):
    """Options for :class:`~sixerr_plugin.consumer.SixerrClient`."""

    server_url: str = Field("https://sixerr.ai", alias="serverUrl")
    # Atomic USDC ceiling per request; falls back to the quoted maxCost
    max_amount: str | None = Field(None, alias="maxAmount")
    timeout_ms: int = Field(120_000, gt=0, alias="timeoutMs")

    model_config = {"populate_by_name": True}


# ============================================================
#  Payments
# ============================================================


class PaymentRequirement(BaseModel):
    """Permit2 entry from a 402 ``accepts`` list."""

    scheme: Literal["permit2"]
    network: str
    asset: str
    pay_to: str = Field(alias="payTo")
    terminal_address: str = Field(alias="permit2Terminal")
    max_cost: str = Field(alias="maxCost")
    timeout_seconds: int = Field(alias="maxTimeoutSeconds", ge=0)
    input_token_price: str | None = Field(None, alias="inputTokenPrice")
    output_token_price: str | None = Field(None, alias="outputTokenPrice")
    platform_fee_bps: int | None = Field(None, alias="platformFeeBps")

    model_config = {"populate_by_name": True}


class PaymentRequired(BaseModel):
    """Body of an HTTP 402 response."""

    x402_version: int | None = Field(None, alias="x402Version")
    error: str | None = None
    accepts: list[dict[str, Any]] = []

    model_config = {"populate_by_name": True}


class TokenPermissions(BaseModel):
    token: str
    amount: str


class Permit(BaseModel):
    permitted: TokenPermissions
    nonce: str
    deadline: int


class PaymentAuthorization(BaseModel):
    """Decoded ``X-PAYMENT`` header value."""

    sender: str
    permit: Permit
    signature: str


# ============================================================
#  Provider discovery
# ============================================================


class DiscoveredProvider(BaseModel):
    """Connected provider as listed by ``GET /v1/providers``."""

    agent_id: str = Field(alias="agentId")
    available: bool = True
    pricing: Pricing | None = None

    model_config = {"populate_by_name": True}


class ModelEntry(BaseModel):
    id: str
    name: str


class ProviderModels(BaseModel):
    base_url: str = Field(alias="baseUrl")
    api_key: str = Field(alias="apiKey")
    api: str = "openai-responses"
    models: list[ModelEntry] = []

    model_config = {"populate_by_name": True}


class ProviderDescriptor(BaseModel):
    """What a host application receives from ``register_provider``."""

    id: str
    label: str
    models: ProviderModels
    auth: list[Any] = []
