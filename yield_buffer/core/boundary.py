#!/usr/bin/env python3
"""
Boundary-Cross Predictor

Decides, before anything is mutated, whether a proposed trade will move the
market out of its current active price interval. The decision runs the same
swap-step math the host runs, bounded by the interval edge, so predictor and
host can never disagree about a crossing.
"""

from dataclasses import dataclass
from typing import Optional

from .uniswap_v3_math import (
    FEE_DENOMINATOR, MAX_SQRT_RATIO, MAX_UINT128, MIN_SQRT_RATIO,
    compute_swap_step, get_amount0_delta, get_amount1_delta, tick_to_sqrt_price_x96
)


@dataclass(frozen=True)
class PriceState:
    """Current price and the active interval it sits in"""
    sqrt_price_x96: int
    tick: int
    liquidity: int
    tick_lower: int
    tick_upper: int
    fee_pips: int = 0

    def __post_init__(self):
        if not self.tick_lower <= self.tick < self.tick_upper:
            raise ValueError(
                f"Tick {self.tick} outside active interval [{self.tick_lower}, {self.tick_upper})"
            )
        if not MIN_SQRT_RATIO <= self.sqrt_price_x96 < MAX_SQRT_RATIO:
            raise ValueError(f"sqrt_price_x96 {self.sqrt_price_x96} out of bounds")
        if not 0 <= self.liquidity <= MAX_UINT128:
            raise ValueError(f"Liquidity {self.liquidity} out of bounds")
        if not 0 <= self.fee_pips < FEE_DENOMINATOR:
            raise ValueError(f"Fee {self.fee_pips} out of bounds")

    @property
    def sqrt_price_lower_x96(self) -> int:
        return tick_to_sqrt_price_x96(self.tick_lower)

    @property
    def sqrt_price_upper_x96(self) -> int:
        return tick_to_sqrt_price_x96(self.tick_upper)

    def is_active_in(self, tick_lower: int, tick_upper: int) -> bool:
        """True if a position over [tick_lower, tick_upper) covers the current tick"""
        return tick_lower <= self.tick < tick_upper


@dataclass(frozen=True)
class TradeDescriptor:
    """
    A proposed trade.

    zero_for_one: selling token0 (price moves down) or token1 (price moves up)
    amount: magnitude, interpreted as input or output per exact_input
    sqrt_price_limit_x96: optional price the trade must not pass
    """
    zero_for_one: bool
    amount: int
    exact_input: bool = True
    sqrt_price_limit_x96: Optional[int] = None

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("Trade amount is a magnitude and cannot be negative")

    @property
    def amount_specified(self) -> int:
        """Signed swap amount: positive exact input, negative exact output"""
        return self.amount if self.exact_input else -self.amount


@dataclass(frozen=True)
class CrossingForecast:
    crosses: bool
    sqrt_price_boundary_x96: int
    sqrt_price_next_x96: int
    amount_to_boundary: int


def _boundary_for(price: PriceState, zero_for_one: bool) -> int:
    return price.sqrt_price_lower_x96 if zero_for_one else price.sqrt_price_upper_x96


def amount_to_boundary(price: PriceState, zero_for_one: bool, exact_input: bool) -> int:
    """
    Trade size that takes the price exactly to the interval edge.

    Exact input is the amount in (before fee) rounded up; exact output is the
    amount out available rounded down, matching the host's swap step.
    """
    boundary = _boundary_for(price, zero_for_one)
    current = price.sqrt_price_x96
    if exact_input:
        if zero_for_one:
            needed = get_amount0_delta(boundary, current, price.liquidity, True)
        else:
            needed = get_amount1_delta(current, boundary, price.liquidity, True)
        # gross up for the fee the host takes before moving the price
        return -((-needed * FEE_DENOMINATOR) // (FEE_DENOMINATOR - price.fee_pips))
    if zero_for_one:
        return get_amount1_delta(boundary, current, price.liquidity, False)
    return get_amount0_delta(current, boundary, price.liquidity, False)


def forecast_trade(price: PriceState, trade: TradeDescriptor) -> CrossingForecast:
    """Project where `trade` leaves the price and whether it exits the interval"""
    boundary = _boundary_for(price, trade.zero_for_one)
    to_boundary = amount_to_boundary(price, trade.zero_for_one, trade.exact_input)

    if trade.amount == 0:
        return CrossingForecast(False, boundary, price.sqrt_price_x96, to_boundary)

    target = boundary
    limit = trade.sqrt_price_limit_x96
    if limit is not None:
        if trade.zero_for_one:
            target = max(boundary, limit)
        else:
            target = min(boundary, limit)
        # a limit on the wrong side of the price stops the trade before it starts
        if (trade.zero_for_one and limit >= price.sqrt_price_x96) or \
                (not trade.zero_for_one and limit <= price.sqrt_price_x96):
            return CrossingForecast(False, boundary, price.sqrt_price_x96, to_boundary)

    sqrt_price_next, _, _, _ = compute_swap_step(
        price.sqrt_price_x96,
        target,
        price.liquidity,
        trade.amount_specified,
        price.fee_pips
    )
    return CrossingForecast(sqrt_price_next == boundary, boundary, sqrt_price_next, to_boundary)


def will_cross_boundary(price: PriceState, trade: TradeDescriptor) -> bool:
    """True if `trade` moves the price out of the active interval"""
    return forecast_trade(price, trade).crosses
