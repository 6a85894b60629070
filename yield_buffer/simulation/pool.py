#!/usr/bin/env python3
"""
Simulated Pool Host

In-memory concentrated-liquidity market engine that drives a
YieldBufferController through its lifecycle hooks:
- Tick-based liquidity with net liquidity changes at initialized ticks
- Cross-tick swaps built from compute_swap_step
- Custody balances the controller takes from and settles back into
- Donations split across positions active at the current tick

Fee growth, oracles and hooks other than the controller are left out.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from ..core.boundary import PriceState, TradeDescriptor
from ..core.errors import InsufficientLiquidityError, UnknownPoolError
from ..core.uniswap_v3_math import (
    MAX_SQRT_RATIO, MAX_TICK, MIN_SQRT_RATIO, MIN_TICK, Q96,
    compute_swap_step, get_amounts_for_liquidity,
    sqrt_price_x96_to_price, sqrt_price_x96_to_tick, tick_to_sqrt_price_x96
)

logger = logging.getLogger(__name__)


@dataclass
class TickInfo:
    """Information stored for each initialized tick"""
    liquidity_gross: int = 0  # Total liquidity referencing this tick
    liquidity_net: int = 0    # Net liquidity change when crossed upwards


@dataclass
class Position:
    """Liquidity position with fees credited from donations"""
    owner: str
    tick_lower: int
    tick_upper: int
    liquidity: int = 0
    fees_owed: Dict[str, int] = field(default_factory=dict)


@dataclass
class SimulatedPool:
    """Market state of one pool"""
    pool_id: str
    asset_a: str  # token0
    asset_b: str  # token1
    sqrt_price_x96: int
    tick: int
    tick_spacing: int
    fee_pips: int
    liquidity: int = 0
    ticks: Dict[int, TickInfo] = field(default_factory=dict)
    positions: Dict[Tuple[str, int, int], Position] = field(default_factory=dict)
    balances: Dict[str, int] = field(default_factory=dict)   # LP reserves
    custody: Dict[str, int] = field(default_factory=dict)    # tokens physically held by the host
    donations: List[Dict] = field(default_factory=list)
    unclaimed_donations: Dict[str, int] = field(default_factory=dict)

    def get_price(self) -> float:
        return sqrt_price_x96_to_price(self.sqrt_price_x96)

    def next_initialized_tick(self, zero_for_one: bool) -> int:
        """Next initialized tick in the swap direction, or the tick bound"""
        if zero_for_one:
            below = [t for t in self.ticks if t <= self.tick]
            return max(below) if below else MIN_TICK
        above = [t for t in self.ticks if t > self.tick]
        return min(above) if above else MAX_TICK

    def active_interval(self) -> Tuple[int, int]:
        below = [t for t in self.ticks if t <= self.tick]
        above = [t for t in self.ticks if t > self.tick]
        return (max(below) if below else MIN_TICK, min(above) if above else MAX_TICK)

    def active_positions(self) -> Dict[Tuple[str, int, int], Position]:
        return {
            key: p for key, p in self.positions.items()
            if p.liquidity > 0 and p.tick_lower <= self.tick < p.tick_upper
        }


class SimulatedPoolHost:
    """HostEngine implementation backed by SimulatedPool records"""

    def __init__(self, controller=None):
        self.pools: Dict[str, SimulatedPool] = {}
        self.controller = controller
        self.hook_results: List[Tuple[str, str, Any]] = []

    def attach(self, controller):
        self.controller = controller

    def drain_hook_results(self) -> List[Tuple[str, str, Any]]:
        """Return and clear (pool_id, hook, result) records of completed controller calls"""
        results, self.hook_results = self.hook_results, []
        return results

    def pool(self, pool_id: str) -> SimulatedPool:
        try:
            return self.pools[pool_id]
        except KeyError:
            raise UnknownPoolError(pool_id) from None

    # Pool lifecycle
    def create_pool(
        self,
        pool_id: str,
        asset_a: str,
        asset_b: str,
        initial_price: float = 1.0,
        tick_spacing: int = 60,
        fee_pips: int = 3000
    ) -> SimulatedPool:
        if pool_id in self.pools:
            raise ValueError(f"Pool {pool_id} already exists")
        sqrt_price_x96 = int((initial_price ** 0.5) * Q96)
        sqrt_price_x96 = max(MIN_SQRT_RATIO, min(MAX_SQRT_RATIO - 1, sqrt_price_x96))
        pool = SimulatedPool(
            pool_id=pool_id,
            asset_a=asset_a,
            asset_b=asset_b,
            sqrt_price_x96=sqrt_price_x96,
            tick=sqrt_price_x96_to_tick(sqrt_price_x96),
            tick_spacing=tick_spacing,
            fee_pips=fee_pips,
            balances={asset_a: 0, asset_b: 0},
            custody={asset_a: 0, asset_b: 0},
            unclaimed_donations={asset_a: 0, asset_b: 0},
        )
        self.pools[pool_id] = pool
        if self.controller is not None:
            try:
                self.controller.on_pool_created(pool_id, asset_a, asset_b)
            except Exception:
                del self.pools[pool_id]
                raise
        return pool

    def modify_liquidity(
        self,
        pool_id: str,
        owner: str,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int
    ) -> Tuple[int, int]:
        """
        Add (positive) or remove (negative) liquidity for a position

        Returns the signed token deltas from the pool's point of view
        (positive: paid in by the LP).
        """
        pool = self.pool(pool_id)
        self._validate_range(pool, tick_lower, tick_upper)
        key = (owner, tick_lower, tick_upper)
        position = pool.positions.get(key)
        if liquidity_delta < 0 and (position is None or position.liquidity < -liquidity_delta):
            raise InsufficientLiquidityError(f"Position {key} cannot remove {-liquidity_delta}")

        saved = self.checkpoint(pool_id)
        mark = len(self.hook_results)
        try:
            self._notify("before_liquidity_change", pool_id, tick_lower, tick_upper)

            amount0, amount1 = get_amounts_for_liquidity(
                pool.sqrt_price_x96, tick_lower, tick_upper, abs(liquidity_delta), liquidity_delta > 0
            )
            sign = 1 if liquidity_delta > 0 else -1
            delta_a, delta_b = sign * amount0, sign * amount1

            self._update_ticks(pool, tick_lower, tick_upper, liquidity_delta)
            if position is None:
                position = pool.positions.setdefault(key, Position(owner, tick_lower, tick_upper))
            position.liquidity += liquidity_delta
            if tick_lower <= pool.tick < tick_upper:
                pool.liquidity += liquidity_delta

            for asset, delta in ((pool.asset_a, delta_a), (pool.asset_b, delta_b)):
                if delta > 0:
                    pool.custody[asset] += delta

            self._notify("after_liquidity_change", pool_id, delta_a, delta_b)

            for asset, delta in ((pool.asset_a, delta_a), (pool.asset_b, delta_b)):
                if delta < 0:
                    self._pay_out(pool, asset, -delta)
                pool.balances[asset] += delta

            if liquidity_delta < 0:
                self._collect_fees(pool, position)
        except Exception:
            self.rollback(saved)
            del self.hook_results[mark:]
            raise

        logger.debug("Pool %s: %s liquidity %d on [%d, %d)", pool_id, owner, liquidity_delta, tick_lower, tick_upper)
        return delta_a, delta_b

    def swap(self, pool_id: str, trade: TradeDescriptor) -> Tuple[int, int]:
        """
        Execute a trade across as many ticks as needed

        Returns the signed token deltas from the pool's point of view
        (positive: paid in by the trader, negative: paid out).
        """
        pool = self.pool(pool_id)
        if trade.amount == 0:
            return 0, 0

        saved = self.checkpoint(pool_id)
        mark = len(self.hook_results)
        try:
            self._notify("before_trade", pool_id, trade)

            amount_in, amount_out = self._execute_swap(pool, trade)
            asset_in, asset_out = (pool.asset_a, pool.asset_b) if trade.zero_for_one else (pool.asset_b, pool.asset_a)
            deltas = {asset_in: amount_in, asset_out: -amount_out}
            delta_a, delta_b = deltas[pool.asset_a], deltas[pool.asset_b]

            pool.custody[asset_in] += amount_in
            self._notify("after_trade", pool_id, delta_a, delta_b)
            self._pay_out(pool, asset_out, amount_out)

            pool.balances[pool.asset_a] += delta_a
            pool.balances[pool.asset_b] += delta_b
        except Exception:
            self.rollback(saved)
            del self.hook_results[mark:]
            raise

        return delta_a, delta_b

    # HostEngine interface
    def on_hand_balance(self, pool_id: str, asset: str) -> int:
        return self.pool(pool_id).balances[asset]

    def price_state(self, pool_id: str) -> PriceState:
        pool = self.pool(pool_id)
        tick_lower, tick_upper = pool.active_interval()
        return PriceState(
            sqrt_price_x96=pool.sqrt_price_x96,
            tick=pool.tick,
            liquidity=pool.liquidity,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            fee_pips=pool.fee_pips,
        )

    def donate(self, pool_id: str, amount_a: int, amount_b: int) -> None:
        """Credit donated amounts to positions active at the current tick"""
        pool = self.pool(pool_id)
        active = pool.active_positions()
        total_liquidity = sum(p.liquidity for p in active.values())

        credits: Dict[Tuple[str, int, int], Dict[str, int]] = {}

        for asset, amount in ((pool.asset_a, amount_a), (pool.asset_b, amount_b)):
            if amount <= 0:
                continue
            pool.custody[asset] += amount
            if total_liquidity == 0:
                # nobody in range: held until liquidity shows up
                pool.unclaimed_donations[asset] += amount
                continue
            shares = {
                key: amount * position.liquidity // total_liquidity
                for key, position in active.items()
            }
            # rounding dust goes to the largest position
            largest = max(shares, key=lambda k: active[k].liquidity)
            shares[largest] += amount - sum(shares.values())
            for key, share in shares.items():
                position = pool.positions[key]
                position.fees_owed[asset] = position.fees_owed.get(asset, 0) + share
                credits.setdefault(key, {})[asset] = share

        pool.donations.append({
            "tick": pool.tick, pool.asset_a: amount_a, pool.asset_b: amount_b, "credits": credits
        })

    def revert_donation(self, pool_id: str, amount_a: int, amount_b: int) -> None:
        """Take back the most recent donation of exactly these amounts"""
        pool = self.pool(pool_id)
        for index in range(len(pool.donations) - 1, -1, -1):
            donation = pool.donations[index]
            if donation[pool.asset_a] == amount_a and donation[pool.asset_b] == amount_b:
                break
        else:
            raise ValueError(f"Pool {pool_id}: no donation of {amount_a}/{amount_b} to revert")

        pool.donations.pop(index)
        for key, owed in donation["credits"].items():
            position = pool.positions[key]
            for asset, share in owed.items():
                position.fees_owed[asset] -= share
        for asset, amount in ((pool.asset_a, amount_a), (pool.asset_b, amount_b)):
            if amount <= 0:
                continue
            credited = sum(owed.get(asset, 0) for owed in donation["credits"].values())
            pool.unclaimed_donations[asset] -= amount - credited
            pool.custody[asset] -= amount

    def take(self, pool_id: str, asset: str, amount: int) -> None:
        pool = self.pool(pool_id)
        if amount > pool.custody[asset]:
            raise InsufficientLiquidityError(
                f"Pool {pool_id}: take of {amount} {asset} exceeds custody {pool.custody[asset]}"
            )
        pool.custody[asset] -= amount

    def settle(self, pool_id: str, asset: str, amount: int) -> None:
        self.pool(pool_id).custody[asset] += amount

    # Rollback of a failed swap or liquidity change; other pools are untouched
    def checkpoint(self, pool_id: str) -> SimulatedPool:
        return copy.deepcopy(self.pool(pool_id))

    def rollback(self, checkpoint: SimulatedPool):
        # restore in place so references held by callers stay valid
        self.pools[checkpoint.pool_id].__dict__.update(copy.deepcopy(checkpoint).__dict__)

    # Internals
    def _notify(self, hook: str, pool_id: str, *args):
        if self.controller is None:
            return None
        result = getattr(self.controller, hook)(pool_id, *args)
        self.hook_results.append((pool_id, hook, result))
        return result

    def _validate_range(self, pool: SimulatedPool, tick_lower: int, tick_upper: int):
        if tick_lower >= tick_upper:
            raise ValueError(f"Invalid range [{tick_lower}, {tick_upper})")
        if tick_lower < MIN_TICK or tick_upper > MAX_TICK:
            raise ValueError(f"Range [{tick_lower}, {tick_upper}) out of tick bounds")
        if tick_lower % pool.tick_spacing or tick_upper % pool.tick_spacing:
            raise ValueError(f"Range [{tick_lower}, {tick_upper}) not aligned to spacing {pool.tick_spacing}")

    def _update_ticks(self, pool: SimulatedPool, tick_lower: int, tick_upper: int, liquidity_delta: int):
        for tick, net_sign in ((tick_lower, 1), (tick_upper, -1)):
            info = pool.ticks.setdefault(tick, TickInfo())
            info.liquidity_gross += liquidity_delta
            info.liquidity_net += net_sign * liquidity_delta
            if info.liquidity_gross == 0:
                del pool.ticks[tick]

    def _pay_out(self, pool: SimulatedPool, asset: str, amount: int):
        if amount > pool.custody[asset]:
            raise InsufficientLiquidityError(
                f"Pool {pool.pool_id}: payout of {amount} {asset} exceeds custody {pool.custody[asset]}"
            )
        pool.custody[asset] -= amount

    def _collect_fees(self, pool: SimulatedPool, position: Position):
        for asset, owed in list(position.fees_owed.items()):
            if owed > 0:
                self._pay_out(pool, asset, owed)
        position.fees_owed.clear()

    def _execute_swap(self, pool: SimulatedPool, trade: TradeDescriptor) -> Tuple[int, int]:
        zero_for_one = trade.zero_for_one
        limit = trade.sqrt_price_limit_x96
        if limit is None:
            limit = MIN_SQRT_RATIO + 1 if zero_for_one else MAX_SQRT_RATIO - 1
        if not MIN_SQRT_RATIO < limit < MAX_SQRT_RATIO:
            raise ValueError(f"Price limit {limit} out of bounds")
        if zero_for_one and limit >= pool.sqrt_price_x96:
            raise ValueError("Price limit too high for zero_for_one swap")
        if not zero_for_one and limit <= pool.sqrt_price_x96:
            raise ValueError("Price limit too low for one_for_zero swap")

        remaining = trade.amount_specified
        amount_in_total = 0
        amount_out_total = 0

        while remaining != 0 and pool.sqrt_price_x96 != limit:
            tick_next = pool.next_initialized_tick(zero_for_one)
            sqrt_price_next_tick = tick_to_sqrt_price_x96(tick_next)
            if zero_for_one:
                target = max(sqrt_price_next_tick, limit)
            else:
                target = min(sqrt_price_next_tick, limit)

            sqrt_price_after, amount_in, amount_out, fee_amount = compute_swap_step(
                pool.sqrt_price_x96, target, pool.liquidity, remaining, pool.fee_pips
            )

            if trade.exact_input:
                remaining -= amount_in + fee_amount
            else:
                remaining += amount_out
            amount_in_total += amount_in + fee_amount
            amount_out_total += amount_out
            pool.sqrt_price_x96 = sqrt_price_after

            if sqrt_price_after == sqrt_price_next_tick:
                if tick_next in (MIN_TICK, MAX_TICK):
                    break
                net = pool.ticks[tick_next].liquidity_net
                if zero_for_one:
                    pool.liquidity -= net
                    pool.tick = tick_next - 1
                else:
                    pool.liquidity += net
                    pool.tick = tick_next
            else:
                pool.tick = sqrt_price_x96_to_tick(sqrt_price_after)

        return amount_in_total, amount_out_total
