#!/usr/bin/env python3
"""
Yield Vault System

Reference yield-bearing vault used by the simulation and the tests. Assets
appreciate continuously at a fixed APR (simple interest, like the yield token
price curve), and share accounting follows ERC-4626 conventions:
deposits mint shares rounding down, withdrawals burn shares rounding up, and
conversions use one virtual share/asset so an empty vault cannot be inflated.
"""

import logging
from typing import Optional

from .errors import ArithmeticFault
from .uniswap_v3_math import mul_div, mul_div_rounding_up

logger = logging.getLogger(__name__)

MINUTES_PER_YEAR = 365 * 24 * 60  # 525,600 minutes per year


def calculate_vault_growth_factor(elapsed_minutes: int, apr: float = 0.10) -> float:
    """
    Growth of one unit of assets after `elapsed_minutes` at `apr`

    Uses linear interest (simple APR): Factor = 1 + APR * t
    """
    if elapsed_minutes <= 0:
        return 1.0
    return 1.0 + apr * (elapsed_minutes / MINUTES_PER_YEAR)


class YieldVault:
    """ERC-4626 style vault whose assets accrue at a fixed APR"""

    def __init__(self, asset: str, apr: float = 0.10, name: Optional[str] = None):
        if apr < 0:
            raise ValueError(f"APR cannot be negative, got {apr}")
        self.asset = asset
        self.apr = apr
        self.name = name or f"{asset} Yield Vault"
        self.total_assets = 0
        self.total_shares = 0
        self.current_minute = 0
        self.paused = False

    # Share conversion
    def convert_to_shares(self, assets: int) -> int:
        return mul_div(assets, self.total_shares + 1, self.total_assets + 1)

    def convert_to_assets(self, shares: int) -> int:
        return mul_div(shares, self.total_assets + 1, self.total_shares + 1)

    def preview_withdraw(self, assets: int) -> int:
        return mul_div_rounding_up(assets, self.total_shares + 1, self.total_assets + 1)

    # VaultHandle interface
    def deposit(self, amount: int) -> int:
        self._require_active()
        if amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {amount}")
        shares = self.convert_to_shares(amount)
        if shares == 0:
            raise ArithmeticFault(f"Deposit of {amount} would mint zero shares")
        self.total_assets += amount
        self.total_shares += shares
        logger.debug("%s: deposit %d -> %d shares", self.name, amount, shares)
        return shares

    def withdraw(self, amount: int) -> int:
        self._require_active()
        if amount <= 0:
            raise ValueError(f"Withdraw amount must be positive, got {amount}")
        if amount > self.total_assets:
            raise ValueError(f"Withdraw {amount} exceeds vault assets {self.total_assets}")
        shares = self.preview_withdraw(amount)
        if shares > self.total_shares:
            raise ValueError(f"Withdraw {amount} needs {shares} shares, vault has {self.total_shares}")
        self.total_assets -= amount
        self.total_shares -= shares
        logger.debug("%s: withdraw %d <- %d shares", self.name, amount, shares)
        return shares

    def value_of(self, shares: int) -> int:
        return self.convert_to_assets(shares)

    # Market dynamics
    def accrue(self, minutes: int) -> int:
        """Grow total assets by `minutes` of APR interest; returns the interest"""
        if minutes <= 0 or self.total_assets == 0:
            self.current_minute += max(minutes, 0)
            return 0
        growth = calculate_vault_growth_factor(minutes, self.apr)
        interest = int(self.total_assets * (growth - 1.0))
        self.total_assets += interest
        self.current_minute += minutes
        return interest

    def apply_loss(self, fraction: float) -> int:
        """Write down a fraction of the vault's assets (bad debt, exploit)"""
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Loss fraction must be in [0, 1], got {fraction}")
        loss = int(self.total_assets * fraction)
        self.total_assets -= loss
        logger.info("%s: wrote down %d of assets", self.name, loss)
        return loss

    def set_paused(self, paused: bool):
        self.paused = paused

    def share_price(self) -> float:
        return (self.total_assets + 1) / (self.total_shares + 1)

    # Reversal of a single call, for aborted operations. Only the call's own
    # assets and shares are taken back, so other depositors are untouched.
    def revert_deposit(self, amount: int, shares: int):
        if amount > self.total_assets or shares > self.total_shares:
            raise ArithmeticFault(f"{self.name}: cannot revert deposit of {amount} ({shares} shares)")
        self.total_assets -= amount
        self.total_shares -= shares
        logger.debug("%s: reverted deposit %d (%d shares)", self.name, amount, shares)

    def revert_withdraw(self, amount: int, shares: int):
        self.total_assets += amount
        self.total_shares += shares
        logger.debug("%s: reverted withdraw %d (%d shares)", self.name, amount, shares)

    def _require_active(self):
        if self.paused:
            raise RuntimeError(f"{self.name} is paused")
