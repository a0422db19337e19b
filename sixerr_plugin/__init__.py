"""
Sixerr plugin SDK for Python.

Two halves share one package:

- **Provider**: keep an authenticated WebSocket to the Sixerr marketplace
  and relay inference requests to a local OpenResponses gateway.
- **Consumer**: call the marketplace over HTTP, paying per request with
  signed Permit2 authorizations when the server answers 402.

Example::

    from sixerr_plugin import PluginConfig, LocalPaymentSigner, start_plugin

    config = PluginConfig(
        server_url="wss://sixerr.ai",
        jwt="eyJ...",
        backend={"gateway_token": "oc_..."},
    )
    handle = await start_plugin(config, signer=LocalPaymentSigner("0x..."))

    # ... serve until shutdown
    await handle.stop()
"""

from sixerr_plugin.client import PluginClient
from sixerr_plugin.consumer import SixerrClient
from sixerr_plugin.discovery import (
    ProviderHost,
    build_model_list,
    fetch_provider_catalog,
    register,
)
from sixerr_plugin.display import StatusDisplay, format_status
from sixerr_plugin.errors import (
    BackendError,
    MarketplaceError,
    PaymentError,
    ProtocolError,
    SixerrError,
)
from sixerr_plugin.events import EventManager
from sixerr_plugin.permit2 import PaymentAuthorizer
from sixerr_plugin.plugin import PluginHandle, start_plugin, to_http_url, to_ws_url
from sixerr_plugin.protocol import (
    PROTOCOL_VERSION,
    encode_message,
    parse_client_message,
    parse_server_message,
)
from sixerr_plugin.proxy import SigningProxy
from sixerr_plugin.reconnect import BackoffPolicy, compute_backoff
from sixerr_plugin.relay import BackendClient, RequestRelay
from sixerr_plugin.signers import LocalPaymentSigner, PaymentSigner
from sixerr_plugin.types import (
    BackendConfig,
    ClientEvent,
    ConnectionState,
    ConsumerConfig,
    Credential,
    PluginConfig,
    Pricing,
)

__all__ = [
    "PluginClient",
    "RequestRelay",
    "BackendClient",
    "SixerrClient",
    "SigningProxy",
    "PaymentAuthorizer",
    "PaymentSigner",
    "LocalPaymentSigner",
    "EventManager",
    "StatusDisplay",
    "format_status",
    "start_plugin",
    "PluginHandle",
    "to_ws_url",
    "to_http_url",
    "ProviderHost",
    "register",
    "fetch_provider_catalog",
    "build_model_list",
    "PROTOCOL_VERSION",
    "parse_server_message",
    "parse_client_message",
    "encode_message",
    "BackoffPolicy",
    "compute_backoff",
    "ConnectionState",
    "ClientEvent",
    "Credential",
    "Pricing",
    "BackendConfig",
    "PluginConfig",
    "ConsumerConfig",
    "SixerrError",
    "ProtocolError",
    "BackendError",
    "PaymentError",
    "MarketplaceError",
]

__version__ = "0.1.0"
