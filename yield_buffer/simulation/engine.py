#!/usr/bin/env python3
"""
Buffer Simulation Engine

Runs a single pool through random trades and liquidity changes while its
vaults accrue yield, recording the controller's buffer state every step.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..core.boundary import TradeDescriptor
from ..core.errors import YieldBufferError
from ..core.math import BufferMath
from ..core.uniswap_v3_math import tick_to_sqrt_price_x96
from ..core.vaults import VaultRegistry
from ..core.yield_vault import YieldVault
from ..engine.config import ControllerSettings, SimulationConfig
from ..engine.controller import YieldBufferController
from ..engine.distribution import DistributionResult
from ..engine.rebalancer import RebalanceResult
from .pool import SimulatedPoolHost

logger = logging.getLogger(__name__)

BASE_LP = "lp_base"


class BufferSimulationEngine:
    """Random-walk market driving one controller-managed pool"""

    def __init__(self, config: SimulationConfig):
        self.config = config
        self.rng = np.random.default_rng(config.random_seed)
        self.current_step = 0

        self.vaults: Dict[str, YieldVault] = {}
        for asset, apr in ((config.asset_a, config.vault_apr_a), (config.asset_b, config.vault_apr_b)):
            if apr is not None:
                self.vaults[asset] = YieldVault(asset, apr)
        self.registry = VaultRegistry(self.vaults)

        self.host = SimulatedPoolHost()
        self.controller = YieldBufferController(
            self.host, self.registry, ControllerSettings("simulation_manager", config.buffer)
        )
        self.host.attach(self.controller)
        self.pool = self.host.create_pool(
            config.pool_id, config.asset_a, config.asset_b,
            config.initial_price, config.tick_spacing, config.fee_pips
        )

        # Metrics history
        self.snapshots: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []
        self.lp_positions: List[Tuple[str, int, int, int]] = []
        self.failed_operations = 0

        self.base_range = self._seed_liquidity()

    def _seed_liquidity(self) -> Tuple[int, int]:
        """Add the base LP position centred on the initial tick"""
        spacing = self.config.tick_spacing
        center = (self.pool.tick // spacing) * spacing
        tick_lower = center - self.config.range_width_ticks
        tick_upper = center + self.config.range_width_ticks
        self.host.modify_liquidity(
            self.config.pool_id, BASE_LP, tick_lower, tick_upper, self.config.initial_liquidity
        )
        self._collect_hook_events("seed")
        return tick_lower, tick_upper

    def run_simulation(self, steps: Optional[int] = None) -> Dict[str, Any]:
        """Run simulation for specified number of steps"""
        steps = steps if steps is not None else self.config.simulation_steps

        for step in range(steps):
            self.current_step = step

            for vault in self.vaults.values():
                vault.accrue(self.config.minutes_per_step)

            if self.rng.random() < self.config.trade_probability:
                self._execute_random_trade()

            if self.rng.random() < self.config.liquidity_change_probability:
                self._execute_random_liquidity_change()

            interval = self.config.sweep_interval_steps
            if interval and step > 0 and step % interval == 0:
                self._sweep()

            self._record_snapshot()

            if step % 100 == 0:
                logger.info("Simulation step %d/%d", step, steps)

        return self._generate_results()

    # Market actions
    def _execute_random_trade(self):
        pool_id = self.config.pool_id
        zero_for_one = bool(self.rng.random() < 0.5)
        tick_lower, tick_upper = self.base_range

        # traders never push the price past the base range
        if zero_for_one and self.pool.tick < tick_lower:
            zero_for_one = False
        elif not zero_for_one and self.pool.tick >= tick_upper:
            zero_for_one = True
        limit = tick_to_sqrt_price_x96(tick_lower if zero_for_one else tick_upper)
        if (zero_for_one and limit >= self.pool.sqrt_price_x96) or \
                (not zero_for_one and limit <= self.pool.sqrt_price_x96):
            zero_for_one = not zero_for_one
            limit = tick_to_sqrt_price_x96(tick_lower if zero_for_one else tick_upper)

        asset_in = self.config.asset_a if zero_for_one else self.config.asset_b
        balance = self.host.on_hand_balance(pool_id, asset_in)
        amount = int(balance * self.rng.uniform(0, self.config.max_trade_fraction))
        if amount == 0:
            return

        trade = TradeDescriptor(zero_for_one, amount, True, limit)
        try:
            delta_a, delta_b = self.host.swap(pool_id, trade)
        except (YieldBufferError, ValueError) as e:
            self._record_failure("trade", e)
            return

        self.events.append({
            "step": self.current_step,
            "type": "trade",
            "zero_for_one": zero_for_one,
            "delta_a": delta_a,
            "delta_b": delta_b,
            "tick_after": self.pool.tick,
        })
        self._collect_hook_events("trade")

    def _execute_random_liquidity_change(self):
        pool_id = self.config.pool_id
        spacing = self.config.tick_spacing

        if self.lp_positions and self.rng.random() < 0.5:
            index = int(self.rng.integers(len(self.lp_positions)))
            owner, tick_lower, tick_upper, liquidity = self.lp_positions[index]
            liquidity_delta = -liquidity
        else:
            owner = f"lp_{len(self.events)}"
            center = (self.pool.tick // spacing) * spacing
            half_width = spacing * int(self.rng.integers(1, 6))
            tick_lower, tick_upper = center - half_width, center + half_width
            liquidity_delta = int(self.config.initial_liquidity * self.rng.uniform(0.05, 0.25))

        try:
            delta_a, delta_b = self.host.modify_liquidity(
                pool_id, owner, tick_lower, tick_upper, liquidity_delta
            )
        except (YieldBufferError, ValueError) as e:
            self._record_failure("liquidity_change", e)
            return

        if liquidity_delta > 0:
            self.lp_positions.append((owner, tick_lower, tick_upper, liquidity_delta))
        else:
            self.lp_positions.pop(index)

        self.events.append({
            "step": self.current_step,
            "type": "liquidity_change",
            "owner": owner,
            "liquidity_delta": liquidity_delta,
            "delta_a": delta_a,
            "delta_b": delta_b,
        })
        self._collect_hook_events("liquidity_change")

    def _sweep(self):
        try:
            result = self.controller.request_sweep(self.config.pool_id)
        except YieldBufferError as e:
            self._record_failure("sweep", e)
            return
        if result.swept:
            self.events.append({
                "step": self.current_step,
                "type": "sweep",
                **{f"swept_{asset}": amount for asset, amount in result.deposited.items()},
            })

    def _record_failure(self, action: str, error: Exception):
        self.failed_operations += 1
        self.host.drain_hook_results()
        logger.warning("Step %d: %s aborted: %s", self.current_step, action, error)
        self.events.append({
            "step": self.current_step,
            "type": f"{action}_failed",
            "error": str(error),
        })

    def _collect_hook_events(self, cause: str):
        for pool_id, hook, result in self.host.drain_hook_results():
            if isinstance(result, DistributionResult) and result.distributed:
                amount_a, amount_b = result.amounts
                self.events.append({
                    "step": self.current_step,
                    "type": "distribution",
                    "cause": cause,
                    "amount_a": amount_a,
                    "amount_b": amount_b,
                })
            elif isinstance(result, RebalanceResult):
                for rebalance in (result.asset_a, result.asset_b):
                    if rebalance.triggered:
                        self.events.append({
                            "step": self.current_step,
                            "type": "rebalance",
                            "asset": rebalance.asset,
                            "reason": rebalance.reason,
                            "withdrawn": rebalance.withdrawn,
                            "deposited": rebalance.deposited,
                        })

    # Metrics
    def _record_snapshot(self):
        pool_id = self.config.pool_id
        state = self.controller.store.get(pool_id)
        pending_a, pending_b = self.controller.pending_yield(pool_id)

        snapshot = {
            "step": self.current_step,
            "minute": (self.current_step + 1) * self.config.minutes_per_step,
            "price": self.pool.get_price(),
            "tick": self.pool.tick,
            "active_liquidity": self.pool.liquidity,
        }
        for label, position, pending in (("a", state.asset_a, pending_a), ("b", state.asset_b, pending_b)):
            on_hand = self.host.on_hand_balance(pool_id, position.asset)
            ratio_wad = BufferMath.buffer_ratio_wad(position.idle_balance, on_hand)
            snapshot.update({
                f"{label}_idle": position.idle_balance,
                f"{label}_shares": position.share_balance,
                f"{label}_vault_value": position.vault_value(),
                f"{label}_principal": position.tracked_principal,
                f"{label}_on_hand": on_hand,
                f"{label}_buffer_ratio": None if ratio_wad is None else ratio_wad / BufferMath.WAD,
                f"{label}_pending_yield": pending,
                f"{label}_has_vault": position.has_vault,
            })
        self.snapshots.append(snapshot)

    def _generate_results(self) -> Dict[str, Any]:
        pool_state = self.controller.pool_state(self.config.pool_id)
        return {
            "config": self.config.to_dict(),
            "snapshots": self.snapshots,
            "events": self.events,
            "final_state": {
                "asset_a": vars(pool_state.asset_a),
                "asset_b": vars(pool_state.asset_b),
                "price": self.pool.get_price(),
                "tick": self.pool.tick,
            },
            "unclaimed_donations": dict(self.pool.unclaimed_donations),
            "failed_operations": self.failed_operations,
            "steps": len(self.snapshots),
        }
