"""
Permit2 payment authorization for the x402 "pay on 402" flow.

Turns a 402 body into a signed ``PermitTransferFrom`` and encodes it as
the base64 ``X-PAYMENT`` header value the Sixerr server expects.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Any, Callable

from eth_utils import to_checksum_address
from pydantic import ValidationError

from sixerr_plugin.errors import PaymentError
from sixerr_plugin.signers import PaymentSigner
from sixerr_plugin.types import (
    PaymentAuthorization,
    PaymentRequired,
    PaymentRequirement,
    Permit,
    TokenPermissions,
)

# Canonical Permit2 contract, same address on every EVM chain
PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"
PAYMENT_SCHEME = "permit2"
PAYMENT_HEADER = "X-PAYMENT"

PERMIT_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "PermitTransferFrom": [
        {"name": "permitted", "type": "TokenPermissions"},
        {"name": "spender", "type": "address"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
    "TokenPermissions": [
        {"name": "token", "type": "address"},
        {"name": "amount", "type": "uint256"},
    ],
}


def select_requirement(body: Any) -> PaymentRequirement:
    """Pick the Permit2 entry from a 402 body's ``accepts`` list.

    Raises:
        PaymentError: If the body is malformed or offers no Permit2 scheme.
            There is no fallback to other schemes.
    """
    try:
        required = PaymentRequired.model_validate(body)
    except ValidationError as e:
        raise PaymentError("Malformed 402 response body") from e

    for entry in required.accepts:
        if entry.get("scheme") != PAYMENT_SCHEME:
            continue
        try:
            return PaymentRequirement.model_validate(entry)
        except ValidationError as e:
            raise PaymentError(
                f"Malformed Permit2 payment requirement: {e.error_count()} error(s)"
            ) from e

    raise PaymentError("Server returned 402 but no Permit2 payment scheme found")


def parse_chain_id(network: str) -> int:
    """Chain id from ``"eip155:8453"`` or ``"8453"``."""
    segment = network.rsplit(":", 1)[-1].strip()
    try:
        return int(segment)
    except ValueError:
        raise PaymentError(f"Cannot parse chain ID from network: {network}")


def build_permit_typed_data(
    requirement: PaymentRequirement,
    amount: int,
    nonce: int,
    deadline: int,
    chain_id: int,
) -> dict[str, Any]:
    """Full EIP-712 message for a Permit2 ``PermitTransferFrom``.

    The spender is the Sixerr terminal contract, not ``payTo``: the
    terminal pulls funds and splits them between provider and platform.
    """
    return {
        "types": PERMIT_TYPES,
        "primaryType": "PermitTransferFrom",
        "domain": {
            "name": "Permit2",
            "chainId": chain_id,
            "verifyingContract": PERMIT2_ADDRESS,
        },
        "message": {
            "permitted": {
                "token": to_checksum_address(requirement.asset),
                "amount": amount,
            },
            "spender": to_checksum_address(requirement.terminal_address),
            "nonce": nonce,
            "deadline": deadline,
        },
    }


def encode_authorization(authorization: PaymentAuthorization) -> str:
    payload = json.dumps(authorization.model_dump(), separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_authorization(header_value: str) -> PaymentAuthorization:
    """Inverse of :func:`encode_authorization`, for inspection and tests."""
    try:
        raw = base64.b64decode(header_value, validate=True)
        return PaymentAuthorization.model_validate_json(raw)
    except (binascii.Error, ValidationError) as e:
        raise PaymentError("Malformed payment header") from e


class PaymentAuthorizer:
    """Builds single-use signed Permit2 authorizations.

    Args:
        signer: Signing capability; raw key material never reaches here.
        max_amount: Ceiling in atomic units used when a call passes no
            override. Defaults to the server's quoted ``maxCost``.
        clock: Seconds since the epoch, injectable for tests.
    """

    def __init__(
        self,
        signer: PaymentSigner,
        max_amount: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._signer = signer
        self._max_amount = max_amount
        self._clock = clock

    @property
    def address(self) -> str:
        return self._signer.address

    async def authorize(self, payment_required: Any, amount: str | None = None) -> str:
        """Sign a payment for a 402 body and return the ``X-PAYMENT`` value.

        Raises:
            PaymentError: For any failure; the caller must not retry.
        """
        requirement = select_requirement(payment_required)
        chain_id = parse_chain_id(requirement.network)

        if amount is not None:
            chosen = amount
        elif self._max_amount is not None:
            chosen = self._max_amount
        else:
            chosen = requirement.max_cost
        try:
            amount_units = int(chosen)
        except ValueError:
            raise PaymentError(f"Invalid payment amount: {chosen!r}")

        # Nonce is the current time in ms, not a counter
        now = self._clock()
        nonce = int(now * 1000)
        deadline = int(now) + requirement.timeout_seconds

        try:
            typed_data = build_permit_typed_data(
                requirement, amount_units, nonce, deadline, chain_id
            )
        except ValueError as e:
            raise PaymentError(f"Invalid address in payment requirement: {e}") from e

        try:
            signature = await self._signer.sign_typed_data(typed_data)
        except Exception as e:
            raise PaymentError(f"Payment signing failed: {e}") from e

        authorization = PaymentAuthorization(
            sender=self._signer.address,
            permit=Permit(
                permitted=TokenPermissions(token=requirement.asset, amount=str(amount_units)),
                nonce=str(nonce),
                deadline=deadline,
            ),
            signature=signature,
        )
        return encode_authorization(authorization)
