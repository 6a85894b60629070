#!/usr/bin/env python3
"""
Pool Yield State

Per-pool record of idle balances, vault shares, tracked principal and vault
bindings, plus the store that owns every record. Only the distribution engine,
the rebalancer and the sweeper mutate a record, and only inside a pool
operation.
"""

import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import ArithmeticFault, PoolAlreadyInitializedError, UnknownPoolError
from .uniswap_v3_math import MAX_UINT256
from .vaults import VaultHandle, vault_value_of


@dataclass
class AssetPosition:
    """Controller holdings for one side of a pool's pair"""
    asset: str
    vault: Optional[VaultHandle] = None
    idle_balance: int = 0
    share_balance: int = 0
    tracked_principal: int = 0

    @property
    def has_vault(self) -> bool:
        return self.vault is not None

    def vault_value(self) -> int:
        """Current asset value of the held shares (0 without a vault)"""
        if self.vault is None:
            return 0
        return vault_value_of(self.vault, self.asset, self.share_balance)

    def holdings(self) -> int:
        """idle + value of shares"""
        return self.idle_balance + self.vault_value()

    def validate(self):
        """Raise ArithmeticFault if a balance left the uint256 range or I3 broke"""
        for label in ("idle_balance", "share_balance", "tracked_principal"):
            value = getattr(self, label)
            if not isinstance(value, int) or value < 0 or value > MAX_UINT256:
                raise ArithmeticFault(f"{self.asset} {label} invalid: {value!r}")
        if self.vault is None and (self.idle_balance or self.share_balance or self.tracked_principal):
            raise ArithmeticFault(f"{self.asset} has balances but no vault binding")


@dataclass(frozen=True)
class AssetSnapshot:
    """Read-only copy of an AssetPosition"""
    asset: str
    has_vault: bool
    idle_balance: int
    share_balance: int
    tracked_principal: int


@dataclass(frozen=True)
class PoolStateSnapshot:
    """Read-only copy of a PoolYieldState"""
    pool_id: str
    asset_a: AssetSnapshot
    asset_b: AssetSnapshot


@dataclass
class PoolYieldState:
    """Yield state of one pool, created once at pool creation"""
    pool_id: str
    asset_a: AssetPosition
    asset_b: AssetPosition

    def positions(self) -> Tuple[AssetPosition, AssetPosition]:
        return self.asset_a, self.asset_b

    def position(self, asset: str) -> AssetPosition:
        for position in self.positions():
            if position.asset == asset:
                return position
        raise KeyError(f"Asset {asset} is not part of pool {self.pool_id}")

    def copy(self) -> "PoolYieldState":
        """Balance copy sharing the same vault handles"""
        return PoolYieldState(self.pool_id, replace(self.asset_a), replace(self.asset_b))

    def restore(self, other: "PoolYieldState"):
        """Overwrite balances in place from a copy taken earlier"""
        for mine, theirs in zip(self.positions(), other.positions()):
            mine.idle_balance = theirs.idle_balance
            mine.share_balance = theirs.share_balance
            mine.tracked_principal = theirs.tracked_principal

    def snapshot(self) -> PoolStateSnapshot:
        def freeze(p: AssetPosition) -> AssetSnapshot:
            return AssetSnapshot(p.asset, p.has_vault, p.idle_balance, p.share_balance, p.tracked_principal)
        return PoolStateSnapshot(self.pool_id, freeze(self.asset_a), freeze(self.asset_b))


class PoolStateStore:
    """All PoolYieldState records keyed by pool id. Pools are never deleted."""

    def __init__(self):
        self._states: Dict[str, PoolYieldState] = {}
        self._lock = threading.Lock()

    def create(
        self,
        pool_id: str,
        asset_a: str,
        asset_b: str,
        vault_a: Optional[VaultHandle],
        vault_b: Optional[VaultHandle]
    ) -> PoolYieldState:
        with self._lock:
            if pool_id in self._states:
                raise PoolAlreadyInitializedError(f"Pool {pool_id} already initialized")
            state = PoolYieldState(
                pool_id=pool_id,
                asset_a=AssetPosition(asset_a, vault_a),
                asset_b=AssetPosition(asset_b, vault_b),
            )
            self._states[pool_id] = state
            return state

    def get(self, pool_id: str) -> PoolYieldState:
        try:
            return self._states[pool_id]
        except KeyError:
            raise UnknownPoolError(pool_id) from None

    def __contains__(self, pool_id: str) -> bool:
        return pool_id in self._states

    def __iter__(self) -> Iterator[PoolYieldState]:
        return iter(list(self._states.values()))

    def pool_ids(self) -> List[str]:
        return list(self._states)
