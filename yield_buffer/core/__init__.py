"""Core buffer components: math, vault bindings, pool yield state, boundary prediction"""

from .boundary import PriceState, TradeDescriptor, forecast_trade, will_cross_boundary
from .math import BufferMath
from .state import AssetPosition, PoolStateStore, PoolYieldState
from .vaults import VaultHandle, VaultRegistry

__all__ = [
    "PriceState", "TradeDescriptor", "forecast_trade", "will_cross_boundary",
    "BufferMath", "AssetPosition", "PoolStateStore", "PoolYieldState",
    "VaultHandle", "VaultRegistry"
]
