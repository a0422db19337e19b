"""
Signing capability for Permit2 payments.

The authorizer only ever sees a :class:`PaymentSigner`. Key custody
(a local key, a remote wallet service) lives behind that interface.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data


@runtime_checkable
class PaymentSigner(Protocol):
    """Wallet that can sign EIP-712 typed data."""

    @property
    def address(self) -> str: ...

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str:
        """Sign a full EIP-712 message and return a ``0x``-prefixed signature."""
        ...


class LocalPaymentSigner:
    """Signs with a raw private key held in memory."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str:
        signable = encode_typed_data(full_message=typed_data)
        signed = self._account.sign_message(signable)

        sig_hex = signed.signature.hex()
        if not sig_hex.startswith("0x"):
            sig_hex = "0x" + sig_hex
        return sig_hex
