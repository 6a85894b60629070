#!/usr/bin/env python3
"""
Buffer Rebalancer

Keeps the idle share of each bound asset inside [min, max] of the pool's
on-hand balance and restores it to target when a rebalance triggers. Between
the watermarks nothing touches the vault, so small trades never cost a vault
round-trip.

The rebalancer also settles the pending balance change itself: funds are
withdrawn from the vault first when needed, then the delta moves between pool
custody and idle, then any surplus is deposited.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.errors import InsufficientLiquidityError
from ..core.math import BufferMath
from ..core.state import AssetPosition
from ..core.vaults import is_dust
from .config import BufferConfig
from .host import HostEngine
from .transaction import PoolOperation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebalancePlan:
    """What the rebalancer intends to do for one asset"""
    asset: str
    delta: int
    post_total: int
    post_idle: int
    ratio_wad: Optional[int]
    triggered: bool
    withdraw_amount: int = 0
    deposit_amount: int = 0
    reason: str = ""


@dataclass(frozen=True)
class AssetRebalance:
    asset: str
    delta: int = 0
    triggered: bool = False
    reason: str = ""
    withdrawn: int = 0
    deposited: int = 0
    shares_redeemed: int = 0
    shares_minted: int = 0
    idle_after: int = 0


@dataclass(frozen=True)
class RebalanceResult:
    pool_id: str
    asset_a: AssetRebalance
    asset_b: AssetRebalance

    @property
    def triggered(self) -> bool:
        return self.asset_a.triggered or self.asset_b.triggered


class BufferRebalancer:
    """Watermark policy between idle custody and the bound vault"""

    def __init__(self, host: HostEngine, config: BufferConfig):
        self.host = host
        self.config = config

    def plan(self, pool_id: str, position: AssetPosition, delta: int) -> RebalancePlan:
        """Decide the vault movement for `delta` without side effects"""
        on_hand = self.host.on_hand_balance(pool_id, position.asset)
        post_total = on_hand + delta
        if post_total < 0:
            raise InsufficientLiquidityError(
                f"Pool {pool_id}: outflow of {-delta} {position.asset} exceeds on-hand balance {on_hand}"
            )

        post_idle = position.idle_balance + delta
        ratio_wad = BufferMath.buffer_ratio_wad(post_idle, post_total)
        config = self.config

        if post_idle < 0:
            reason = "outflow exceeds idle"
        elif ratio_wad is None:
            reason = ""
        elif BufferMath.below_ratio(post_idle, post_total, config.min_wad):
            reason = "below min"
        elif BufferMath.above_ratio(post_idle, post_total, config.max_wad):
            reason = "above max"
        else:
            reason = ""

        if not reason:
            return RebalancePlan(position.asset, delta, post_total, post_idle, ratio_wad, False)

        target_idle = BufferMath.target_idle(post_total, config.target_wad)
        withdraw_amount = 0
        deposit_amount = 0
        if post_idle < target_idle:
            available = position.vault_value()
            withdraw_amount = min(target_idle - post_idle, available)
            if post_idle + withdraw_amount < 0:
                raise InsufficientLiquidityError(
                    f"Pool {pool_id}: outflow of {-delta} {position.asset} needs "
                    f"{-post_idle} from the vault, only {available} available"
                )
        elif post_idle > target_idle:
            deposit_amount = post_idle - target_idle
            if is_dust(position.vault, position.asset, deposit_amount):
                # too small to mint a share; stays idle
                deposit_amount = 0

        return RebalancePlan(
            position.asset, delta, post_total, post_idle, ratio_wad, True,
            withdraw_amount, deposit_amount, reason
        )

    def rebalance(self, operation: PoolOperation, delta_a: int, delta_b: int) -> RebalanceResult:
        """Settle the pending deltas and enforce the watermarks"""
        state = operation.state
        return RebalanceResult(
            state.pool_id,
            self._rebalance_asset(operation, state.asset_a, delta_a),
            self._rebalance_asset(operation, state.asset_b, delta_b),
        )

    def _rebalance_asset(self, operation: PoolOperation, position: AssetPosition, delta: int) -> AssetRebalance:
        pool_id = operation.pool_id
        if not position.has_vault:
            # pass-through: the delta never leaves host custody
            return AssetRebalance(position.asset, delta)

        plan = self.plan(pool_id, position, delta)
        if plan.triggered:
            logger.debug(
                "Pool %s: rebalancing %s (%s), post idle %d of %d",
                pool_id, position.asset, plan.reason, plan.post_idle, plan.post_total
            )

        shares_redeemed = 0
        if plan.withdraw_amount > 0:
            shares_redeemed = operation.withdraw(position, plan.withdraw_amount)
            position.share_balance = BufferMath.checked_add(
                position.share_balance, -shares_redeemed, f"{position.asset} share balance"
            )
            position.idle_balance = BufferMath.checked_add(
                position.idle_balance, plan.withdraw_amount, f"{position.asset} idle balance"
            )
            logger.info("Pool %s: withdrew %d %s from vault", pool_id, plan.withdraw_amount, position.asset)

        self._settle_delta(operation, position, delta)

        shares_minted = 0
        if plan.deposit_amount > 0:
            position.idle_balance = BufferMath.checked_add(
                position.idle_balance, -plan.deposit_amount, f"{position.asset} idle balance"
            )
            shares_minted = operation.deposit(position, plan.deposit_amount)
            position.share_balance = BufferMath.checked_add(
                position.share_balance, shares_minted, f"{position.asset} share balance"
            )
            logger.info("Pool %s: deposited %d %s into vault", pool_id, plan.deposit_amount, position.asset)

        return AssetRebalance(
            position.asset, delta, plan.triggered, plan.reason,
            plan.withdraw_amount, plan.deposit_amount,
            shares_redeemed, shares_minted, position.idle_balance
        )

    def _settle_delta(self, operation: PoolOperation, position: AssetPosition, delta: int):
        if delta > 0:
            operation.take(position.asset, delta)
        elif delta < 0:
            operation.settle(position.asset, -delta)
        position.idle_balance = BufferMath.checked_add(
            position.idle_balance, delta, f"{position.asset} idle balance"
        )
        # outflow beyond the baseline consumes undistributed yield first
        position.tracked_principal = BufferMath.checked_add(
            position.tracked_principal, max(delta, -position.tracked_principal),
            f"{position.asset} principal"
        )
