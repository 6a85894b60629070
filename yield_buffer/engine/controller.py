#!/usr/bin/env python3
"""
Yield Buffer Controller

The host-facing side of the system. A host engine calls these methods at its
fixed lifecycle points; each call runs to completion inside one PoolOperation
or aborts with every change undone.

Lifecycle:
- on_pool_created: resolve vault bindings, create zeroed yield state
- before_trade: distribute yield if the trade is predicted to cross the interval
- before_liquidity_change: distribute yield if the range covers the active tick
- after_trade / after_liquidity_change: settle deltas and rebalance
- request_sweep: anyone, any time; deposit all idle funds
"""

import logging
from typing import Optional, Tuple

from ..core.boundary import TradeDescriptor, forecast_trade
from ..core.errors import UnauthorizedError
from ..core.math import BufferMath
from ..core.state import PoolStateSnapshot, PoolStateStore, PoolYieldState
from ..core.vaults import VaultRegistry
from .config import BufferConfig, ControllerSettings
from .distribution import DistributionResult, YieldDistributionEngine
from .host import HostEngine
from .rebalancer import BufferRebalancer, RebalanceResult
from .sweeper import DepositOrchestrator, SweepResult
from .transaction import OperationLocks, PoolOperation

logger = logging.getLogger(__name__)


class YieldBufferController:
    """Idle/vault buffer and yield controller for a set of pools"""

    def __init__(
        self,
        host: HostEngine,
        registry: VaultRegistry,
        settings: ControllerSettings,
        store: Optional[PoolStateStore] = None
    ):
        self.host = host
        self.registry = registry
        self.settings = settings
        self.store = store or PoolStateStore()

        self.distributor = YieldDistributionEngine()
        self.rebalancer = BufferRebalancer(host, settings.config)
        self.sweeper = DepositOrchestrator()
        self._locks = OperationLocks()

    @property
    def config(self) -> BufferConfig:
        return self.settings.config

    # Configuration (manager only)
    def update_config(self, caller: str, **changes) -> BufferConfig:
        """Replace watermarks; the new set is validated before it takes effect"""
        self._require_manager(caller)
        new_config = self.settings.config.with_changes(**changes)
        self.settings.config = new_config
        self.rebalancer.config = new_config
        logger.info("Buffer config updated by %s: %s", caller, new_config.model_dump())
        return new_config

    def transfer_manager(self, caller: str, new_manager: str):
        self._require_manager(caller)
        if not new_manager:
            raise ValueError("New manager cannot be empty")
        self.settings.manager = new_manager
        logger.info("Manager transferred from %s to %s", caller, new_manager)

    def _require_manager(self, caller: str):
        if caller != self.settings.manager:
            raise UnauthorizedError(f"{caller} is not the manager")

    # Lifecycle hooks
    def on_pool_created(self, pool_id: str, asset_a: str, asset_b: str) -> PoolStateSnapshot:
        if asset_a == asset_b:
            raise ValueError(f"Pool {pool_id} pairs {asset_a} with itself")
        vault_a = self.registry.resolve(asset_a)
        vault_b = self.registry.resolve(asset_b)
        state = self.store.create(pool_id, asset_a, asset_b, vault_a, vault_b)
        logger.info(
            "Pool %s created: %s vault=%s, %s vault=%s",
            pool_id, asset_a, vault_a is not None, asset_b, vault_b is not None
        )
        return state.snapshot()

    def before_trade(self, pool_id: str, trade: TradeDescriptor) -> Optional[DistributionResult]:
        """Distribute accrued yield if `trade` will leave the active interval"""
        state = self.store.get(pool_id)
        with self._operation(state, "before_trade") as operation:
            # forecast before anything is mutated
            forecast = forecast_trade(self.host.price_state(pool_id), trade)
            if not forecast.crosses:
                return None
            logger.debug("Pool %s: trade crosses interval boundary, distributing", pool_id)
            return self.distributor.distribute(operation)

    def before_liquidity_change(self, pool_id: str, tick_lower: int, tick_upper: int) -> Optional[DistributionResult]:
        """Distribute accrued yield if the range being changed covers the active tick"""
        if tick_lower >= tick_upper:
            raise ValueError(f"Invalid range [{tick_lower}, {tick_upper})")
        state = self.store.get(pool_id)
        with self._operation(state, "before_liquidity_change") as operation:
            if not self.host.price_state(pool_id).is_active_in(tick_lower, tick_upper):
                return None
            return self.distributor.distribute(operation)

    def after_liquidity_change(self, pool_id: str, delta_a: int, delta_b: int) -> RebalanceResult:
        return self._settle(pool_id, delta_a, delta_b, "after_liquidity_change")

    def after_trade(self, pool_id: str, delta_a: int, delta_b: int) -> RebalanceResult:
        return self._settle(pool_id, delta_a, delta_b, "after_trade")

    def request_sweep(self, pool_id: str) -> SweepResult:
        """Permissionless: deposit every idle balance of the pool into its vault"""
        state = self.store.get(pool_id)
        with self._operation(state, "request_sweep") as operation:
            return self.sweeper.sweep(operation)

    def _settle(self, pool_id: str, delta_a: int, delta_b: int, name: str) -> RebalanceResult:
        state = self.store.get(pool_id)
        with self._operation(state, name) as operation:
            return self.rebalancer.rebalance(operation, delta_a, delta_b)

    def _operation(self, state: PoolYieldState, name: str) -> PoolOperation:
        return PoolOperation(self._locks, state, self.host, name)

    # Views
    def pool_state(self, pool_id: str) -> PoolStateSnapshot:
        return self.store.get(pool_id).snapshot()

    def buffer_ratio(self, pool_id: str, asset: str) -> Optional[float]:
        """
        Idle balance over the host's on-hand balance, the ratio the rebalancer
        acts on. None for a pass-through asset or an empty pool.
        """
        position = self.store.get(pool_id).position(asset)
        if not position.has_vault:
            return None
        ratio_wad = BufferMath.buffer_ratio_wad(position.idle_balance, self.host.on_hand_balance(pool_id, asset))
        return None if ratio_wad is None else ratio_wad / BufferMath.WAD

    def pending_yield(self, pool_id: str) -> Tuple[int, int]:
        """Yield a distribution would hand out now, per asset"""
        return self.distributor.preview(self.store.get(pool_id))
