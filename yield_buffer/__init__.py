"""
Yield Buffer Controller

Idle/vault liquidity buffer for two-asset concentrated-liquidity pools:
watermark rebalancing between idle custody and yield vaults, yield donation
to active liquidity at interval crossings, and a permissionless deposit sweep.
"""

__version__ = "1.0.0"

# Core components
from .core.boundary import CrossingForecast, PriceState, TradeDescriptor, will_cross_boundary
from .core.errors import (
    ArithmeticFault, ConfigurationError, InsufficientLiquidityError, PoolAlreadyInitializedError,
    ReentrantOperationError, UnauthorizedError, UnknownPoolError, VaultCallError, YieldBufferError
)
from .core.state import PoolStateStore, PoolYieldState
from .core.vaults import VaultHandle, VaultRegistry
from .core.yield_vault import YieldVault

# Engine
from .engine.config import BufferConfig, ControllerSettings, SimulationConfig
from .engine.controller import YieldBufferController
from .engine.host import HostEngine

# Simulation
from .simulation.engine import BufferSimulationEngine
from .simulation.pool import SimulatedPoolHost

__all__ = [
    # Core
    "CrossingForecast", "PriceState", "TradeDescriptor", "will_cross_boundary",
    "ArithmeticFault", "ConfigurationError", "InsufficientLiquidityError", "PoolAlreadyInitializedError",
    "ReentrantOperationError", "UnauthorizedError", "UnknownPoolError", "VaultCallError", "YieldBufferError",
    "PoolStateStore", "PoolYieldState", "VaultHandle", "VaultRegistry", "YieldVault",

    # Engine
    "BufferConfig", "ControllerSettings", "SimulationConfig", "YieldBufferController", "HostEngine",

    # Simulation
    "BufferSimulationEngine", "SimulatedPoolHost",
]
