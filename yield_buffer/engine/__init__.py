"""Controller engine: configuration, scoped operations, distribution, rebalancing, sweeping"""

from .config import BufferConfig, ControllerSettings
from .controller import YieldBufferController
from .distribution import YieldDistributionEngine
from .rebalancer import BufferRebalancer
from .sweeper import DepositOrchestrator

__all__ = [
    "BufferConfig", "ControllerSettings", "YieldBufferController",
    "YieldDistributionEngine", "BufferRebalancer", "DepositOrchestrator"
]
