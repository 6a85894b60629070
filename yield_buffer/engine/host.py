#!/usr/bin/env python3
"""
Host engine interface

What the controller consumes from the pool/market engine that drives it.
"""

from typing import Protocol, runtime_checkable

from ..core.boundary import PriceState


@runtime_checkable
class HostEngine(Protocol):
    """Pool/market engine collaborator"""

    def on_hand_balance(self, pool_id: str, asset: str) -> int:
        """Gross amount of `asset` the pool holds, before any pending delta"""
        ...

    def price_state(self, pool_id: str) -> PriceState:
        """Current price, active liquidity and active interval bounds"""
        ...

    def donate(self, pool_id: str, amount_a: int, amount_b: int) -> None:
        """Credit amounts to liquidity active at the current price"""
        ...

    def take(self, pool_id: str, asset: str, amount: int) -> None:
        """Move `amount` from pool custody into controller idle custody"""
        ...

    def settle(self, pool_id: str, asset: str, amount: int) -> None:
        """Move `amount` from controller idle custody back to pool custody"""
        ...
