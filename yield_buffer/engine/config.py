#!/usr/bin/env python3
"""
Buffer configuration and simulation parameters

Watermarks are validated with Pydantic when a configuration is built, so an
invalid threshold set never reaches a running controller.
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..core.errors import ConfigurationError
from ..core.math import BufferMath

# =============================================================================
# DEFAULT BUFFER WATERMARKS (fractions of on-hand capital kept idle)
# =============================================================================

DEFAULT_MIN_BUFFER_RATIO = 0.20
DEFAULT_TARGET_BUFFER_RATIO = 0.40
DEFAULT_MAX_BUFFER_RATIO = 0.50


class BufferConfig(BaseModel):
    """Idle-ratio watermarks: 0 <= min <= target <= max <= 1"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_buffer_ratio: float = Field(DEFAULT_MIN_BUFFER_RATIO, ge=0, le=1, description="Rebalance when idle ratio falls below")
    target_buffer_ratio: float = Field(DEFAULT_TARGET_BUFFER_RATIO, ge=0, le=1, description="Idle ratio restored by a rebalance")
    max_buffer_ratio: float = Field(DEFAULT_MAX_BUFFER_RATIO, ge=0, le=1, description="Rebalance when idle ratio rises above")

    @model_validator(mode="after")
    def validate_ordering(self):
        """Thresholds must be ordered min <= target <= max"""
        if not self.min_buffer_ratio <= self.target_buffer_ratio <= self.max_buffer_ratio:
            raise ValueError(
                f"Buffer ratios must satisfy min <= target <= max, got "
                f"{self.min_buffer_ratio} / {self.target_buffer_ratio} / {self.max_buffer_ratio}"
            )
        return self

    @property
    def min_wad(self) -> int:
        return BufferMath.to_wad(self.min_buffer_ratio)

    @property
    def target_wad(self) -> int:
        return BufferMath.to_wad(self.target_buffer_ratio)

    @property
    def max_wad(self) -> int:
        return BufferMath.to_wad(self.max_buffer_ratio)

    @classmethod
    def build(cls, **values: Any) -> "BufferConfig":
        """Construct, translating validation failures into ConfigurationError"""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "BufferConfig":
        """Load watermarks from a JSON file"""
        data = json.loads(Path(path).read_text())
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")
        return cls.build(**data)

    def with_changes(self, **changes: Any) -> "BufferConfig":
        values = self.model_dump()
        values.update(changes)
        return BufferConfig.build(**values)


class ControllerSettings:
    """Active watermarks plus the principal allowed to change them"""

    def __init__(self, manager: str, config: BufferConfig = None):
        if not manager:
            raise ConfigurationError("A manager principal is required")
        self.manager = manager
        self.config = config or BufferConfig()


class SimulationConfig:
    """Simple simulation configuration"""

    def __init__(self):
        # Pool setup
        self.pool_id = "USDC:WETH"
        self.asset_a = "USDC"
        self.asset_b = "WETH"
        self.initial_price = 1.0  # token1 per token0
        self.tick_spacing = 60
        self.fee_pips = 3000
        self.initial_liquidity = 10 ** 15
        self.range_width_ticks = 600  # base LP position spans +-600 ticks

        # Vaults (None disables a side, leaving it pass-through)
        self.vault_apr_a = 0.08
        self.vault_apr_b = 0.04

        # Simulation parameters
        self.simulation_steps = 1000
        self.minutes_per_step = 60
        self.trade_probability = 0.85
        self.max_trade_fraction = 0.05  # max trade as fraction of on-hand token balance
        self.liquidity_change_probability = 0.05
        self.sweep_interval_steps = 48
        self.random_seed = 42

        # Watermarks
        self.buffer = BufferConfig()

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in vars(self).items() if k != "buffer"}
        data["buffer"] = self.buffer.model_dump()
        return data
