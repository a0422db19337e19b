"""
Reconnect backoff for the provider WebSocket.

Exponential growth with additive jitter, capped. The attempt counter
lives in :class:`~sixerr_plugin.client.PluginClient`; everything here
is a pure function of its inputs.
"""

from __future__ import annotations

import random
from typing import Callable

from pydantic import BaseModel, Field


class BackoffPolicy(BaseModel):
    """Reconnect delay settings (milliseconds)."""

    initial_ms: int = Field(1000, ge=0, alias="initialMs")
    max_ms: int = Field(30000, ge=0, alias="maxMs")
    factor: float = Field(2.0, ge=1.0)
    jitter: float = Field(0.25, ge=0.0, le=1.0)

    model_config = {"populate_by_name": True, "frozen": True}


DEFAULT_RECONNECT_POLICY = BackoffPolicy()


def compute_backoff(
    policy: BackoffPolicy,
    attempt: int,
    rand: Callable[[], float] = random.random,
) -> int:
    """Delay in ms before reconnect attempt ``attempt`` (1-based).

    Attempt 0 is treated as attempt 1. ``rand`` must return a float in
    ``[0, 1)``; tests pass a constant to pin the jitter.
    """
    try:
        base = policy.initial_ms * policy.factor ** max(attempt - 1, 0)
    except OverflowError:
        # Long outages push the exponent past float range
        base = policy.max_ms
    base = min(base, policy.max_ms)
    jitter = base * policy.jitter * rand()
    return min(policy.max_ms, round(base + jitter))
