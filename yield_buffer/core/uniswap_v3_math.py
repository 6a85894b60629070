#!/usr/bin/env python3
"""
Concentrated Liquidity Math

Exact integer implementation of the tick and sqrt-price math used by the host
market engine:
- Tick <-> sqrt price conversion in Q64.96 fixed point
- Token amount deltas between two sqrt prices with explicit rounding
- Next sqrt price from an input or output amount (the inverse formulas)
- A single swap step bounded by a target price

The boundary-cross predictor and the simulated host both sit on top of these
functions, so a crossing forecast and the swap that follows always round the
same way.
"""

from typing import Tuple

from .errors import ArithmeticFault

# Uniswap V3 Constants
MIN_TICK = -887272
MAX_TICK = 887272
Q96 = 2 ** 96
MIN_SQRT_RATIO = 4295128739  # sqrt(1.0001^-887272) * 2^96
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342  # sqrt(1.0001^887272) * 2^96
MAX_UINT128 = 2 ** 128 - 1
MAX_UINT160 = 2 ** 160 - 1
MAX_UINT256 = 2 ** 256 - 1
FEE_DENOMINATOR = 1_000_000

# Uniswap V3 Fee Tiers and Tick Spacings (Official Values)
TICK_SPACING_0_0_5_PERCENT = 10   # 0.05% fee tier
TICK_SPACING_0_3_PERCENT = 60     # 0.3% fee tier
TICK_SPACING_1_PERCENT = 200      # 1% fee tier

# Per-bit multipliers for sqrt(1.0001)^-(2^i) in Q128.128
_TICK_RATIO_FACTORS = (
    (0x2, 0xfff97272373d413259a46990580e213a),
    (0x4, 0xfff2e50f5f656932ef12357cf3c7fdcc),
    (0x8, 0xffe5caca7e10e4e61c3624eaa0941cd0),
    (0x10, 0xffcb9843d60f6159c9db58835c926644),
    (0x20, 0xff973b41fa98c081472e6896dfb254c0),
    (0x40, 0xff2ea16466c96a3843ec78b326b52861),
    (0x80, 0xfe5dee046a99a2a811c461f1969c3053),
    (0x100, 0xfcbe86c7900a88aedcffc83b479aa3a4),
    (0x200, 0xf987a7253ac413176f2b074cf7815e54),
    (0x400, 0xf3392b0822b70005940c7a398e4b70f3),
    (0x800, 0xe7159475a2c29b7443b29c7fa6e889d9),
    (0x1000, 0xd097f3bdfd2022b8845ad8f792aa5825),
    (0x2000, 0xa9f746462d870fdf8a65dc1f90e061e5),
    (0x4000, 0x70d869a156d2a1b890bb3df62baf32f7),
    (0x8000, 0x31be135f97d08fd981231505542fcfa6),
    (0x10000, 0x9aa508b5b7a84e1c677de54f3e99bc9),
    (0x20000, 0x5d6af8dedb81196699c329225ee604),
    (0x40000, 0x2216e584f5fa1ea926041bedfe98),
    (0x80000, 0x48a170391f7dc42444e8fa2),
)


# Safe math helpers
def _check_uint(value: int, bound: int, label: str) -> int:
    if value < 0 or value > bound:
        raise ArithmeticFault(f"{label} {value} outside [0, {bound}]")
    return value


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator), faulting instead of wrapping"""
    if denominator == 0:
        raise ArithmeticFault("Division by zero")
    _check_uint(a, MAX_UINT256, "mul_div operand")
    _check_uint(b, MAX_UINT256, "mul_div operand")
    return _check_uint((a * b) // denominator, MAX_UINT256, "mul_div result")


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator), faulting instead of wrapping"""
    if denominator == 0:
        raise ArithmeticFault("Division by zero")
    _check_uint(a, MAX_UINT256, "mul_div operand")
    _check_uint(b, MAX_UINT256, "mul_div operand")
    return _check_uint(-((-a * b) // denominator), MAX_UINT256, "mul_div result")


def div_rounding_up(a: int, denominator: int) -> int:
    if denominator == 0:
        raise ArithmeticFault("Division by zero")
    return -(-a // denominator)


def tick_to_sqrt_price_x96(tick: int) -> int:
    """Convert tick to sqrt price in Q64.96 format, rounding up like TickMath"""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"Tick {tick} out of bounds [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = abs(tick)
    if abs_tick & 0x1:
        ratio = 0xfffcb933bd6fad37aa2d162d1a594001
    else:
        ratio = 0x100000000000000000000000000000000
    for bit, factor in _TICK_RATIO_FACTORS:
        if abs_tick & bit:
            ratio = (ratio * factor) >> 128

    if tick > 0:
        ratio = MAX_UINT256 // ratio

    # Q128.128 -> Q64.96, rounding up so the result never underestimates
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def sqrt_price_x96_to_tick(sqrt_price_x96: int) -> int:
    """Greatest tick whose sqrt price is <= sqrt_price_x96"""
    if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
        raise ValueError(f"sqrt_price_x96 {sqrt_price_x96} out of bounds")

    # Binary search over the exact tick function
    tick_low = MIN_TICK
    tick_high = MAX_TICK

    while tick_high - tick_low > 1:
        tick_mid = (tick_low + tick_high) // 2
        if tick_to_sqrt_price_x96(tick_mid) <= sqrt_price_x96:
            tick_low = tick_mid
        else:
            tick_high = tick_mid

    return tick_low


def sqrt_price_x96_to_price(sqrt_price_x96: int) -> float:
    """Human readable token1/token0 price for reporting"""
    return (sqrt_price_x96 / Q96) ** 2


def get_amount0_delta(
    sqrt_price_a_x96: int,
    sqrt_price_b_x96: int,
    liquidity: int,
    round_up: bool = False
) -> int:
    """Amount of token0 between two sqrt prices: L * (sqrtB - sqrtA) / (sqrtA * sqrtB)"""
    if sqrt_price_a_x96 > sqrt_price_b_x96:
        sqrt_price_a_x96, sqrt_price_b_x96 = sqrt_price_b_x96, sqrt_price_a_x96

    if sqrt_price_a_x96 <= 0:
        raise ArithmeticFault("sqrt price must be positive")

    numerator1 = liquidity << 96
    numerator2 = sqrt_price_b_x96 - sqrt_price_a_x96

    if round_up:
        return div_rounding_up(
            mul_div_rounding_up(numerator1, numerator2, sqrt_price_b_x96),
            sqrt_price_a_x96
        )
    return mul_div(numerator1, numerator2, sqrt_price_b_x96) // sqrt_price_a_x96


def get_amount1_delta(
    sqrt_price_a_x96: int,
    sqrt_price_b_x96: int,
    liquidity: int,
    round_up: bool = False
) -> int:
    """Amount of token1 between two sqrt prices: L * (sqrtB - sqrtA)"""
    if sqrt_price_a_x96 > sqrt_price_b_x96:
        sqrt_price_a_x96, sqrt_price_b_x96 = sqrt_price_b_x96, sqrt_price_a_x96

    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_price_b_x96 - sqrt_price_a_x96, Q96)
    return mul_div(liquidity, sqrt_price_b_x96 - sqrt_price_a_x96, Q96)


def get_next_sqrt_price_from_amount0_rounding_up(
    sqrt_price_x96: int,
    liquidity: int,
    amount: int,
    add: bool
) -> int:
    """Next sqrt price after adding/removing token0, always rounding up"""
    if amount == 0:
        return sqrt_price_x96

    if liquidity == 0:
        raise ArithmeticFault("Liquidity cannot be zero")

    numerator1 = liquidity << 96
    product = amount * sqrt_price_x96

    if add:
        # L * sqrtP / (L + amount0 * sqrtP)
        denominator = numerator1 + product
        if denominator <= MAX_UINT256:
            return mul_div_rounding_up(numerator1, sqrt_price_x96, denominator)
        return div_rounding_up(numerator1, numerator1 // sqrt_price_x96 + amount)

    # L * sqrtP / (L - amount0 * sqrtP)
    if numerator1 <= product:
        raise ArithmeticFault("Amount too large for available liquidity")
    result = mul_div_rounding_up(numerator1, sqrt_price_x96, numerator1 - product)
    return _check_uint(result, MAX_UINT160, "sqrt price")


def get_next_sqrt_price_from_amount1_rounding_down(
    sqrt_price_x96: int,
    liquidity: int,
    amount: int,
    add: bool
) -> int:
    """Next sqrt price after adding/removing token1, always rounding down"""
    if amount == 0:
        return sqrt_price_x96

    if liquidity == 0:
        raise ArithmeticFault("Liquidity cannot be zero")

    if add:
        # sqrtP + amount1 / L
        quotient = mul_div(amount, Q96, liquidity)
        return _check_uint(sqrt_price_x96 + quotient, MAX_UINT160, "sqrt price")

    # sqrtP - amount1 / L
    quotient = mul_div_rounding_up(amount, Q96, liquidity)
    if sqrt_price_x96 <= quotient:
        raise ArithmeticFault("Amount too large for available liquidity")
    return sqrt_price_x96 - quotient


def get_next_sqrt_price_from_input(
    sqrt_price_x96: int,
    liquidity: int,
    amount_in: int,
    zero_for_one: bool
) -> int:
    """Calculate next sqrt price from input amount"""
    if zero_for_one:
        return get_next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96, liquidity, amount_in, True)
    return get_next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96, liquidity, amount_in, True)


def get_next_sqrt_price_from_output(
    sqrt_price_x96: int,
    liquidity: int,
    amount_out: int,
    zero_for_one: bool
) -> int:
    """Calculate next sqrt price from output amount"""
    if zero_for_one:
        return get_next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96, liquidity, amount_out, False)
    return get_next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96, liquidity, amount_out, False)


def get_amounts_for_liquidity(
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    liquidity: int,
    round_up: bool
) -> Tuple[int, int]:
    """Token amounts backing `liquidity` over [tick_lower, tick_upper) at the current price"""
    sqrt_lower = tick_to_sqrt_price_x96(tick_lower)
    sqrt_upper = tick_to_sqrt_price_x96(tick_upper)

    if sqrt_price_x96 <= sqrt_lower:
        return get_amount0_delta(sqrt_lower, sqrt_upper, liquidity, round_up), 0
    if sqrt_price_x96 < sqrt_upper:
        return (
            get_amount0_delta(sqrt_price_x96, sqrt_upper, liquidity, round_up),
            get_amount1_delta(sqrt_lower, sqrt_price_x96, liquidity, round_up),
        )
    return 0, get_amount1_delta(sqrt_lower, sqrt_upper, liquidity, round_up)


def compute_swap_step(
    sqrt_price_current_x96: int,
    sqrt_price_target_x96: int,
    liquidity: int,
    amount_remaining: int,
    fee_pips: int
) -> Tuple[int, int, int, int]:
    """
    One swap step inside a single liquidity range

    A non-negative amount_remaining means exact input, a negative one exact
    output. The step either reaches the target price or stops where the amount
    runs out.

    Returns: (sqrt_price_next_x96, amount_in, amount_out, fee_amount)
    """
    if fee_pips >= FEE_DENOMINATOR:
        raise ValueError("Fee too high")

    zero_for_one = sqrt_price_current_x96 >= sqrt_price_target_x96
    exact_in = amount_remaining >= 0

    if exact_in:
        amount_remaining_less_fee = mul_div(amount_remaining, FEE_DENOMINATOR - fee_pips, FEE_DENOMINATOR)
        if zero_for_one:
            amount_in = get_amount0_delta(sqrt_price_target_x96, sqrt_price_current_x96, liquidity, True)
        else:
            amount_in = get_amount1_delta(sqrt_price_current_x96, sqrt_price_target_x96, liquidity, True)
        if amount_remaining_less_fee >= amount_in:
            sqrt_price_next_x96 = sqrt_price_target_x96
        else:
            sqrt_price_next_x96 = get_next_sqrt_price_from_input(
                sqrt_price_current_x96, liquidity, amount_remaining_less_fee, zero_for_one
            )
    else:
        if zero_for_one:
            amount_out = get_amount1_delta(sqrt_price_target_x96, sqrt_price_current_x96, liquidity, False)
        else:
            amount_out = get_amount0_delta(sqrt_price_current_x96, sqrt_price_target_x96, liquidity, False)
        if -amount_remaining >= amount_out:
            sqrt_price_next_x96 = sqrt_price_target_x96
        else:
            sqrt_price_next_x96 = get_next_sqrt_price_from_output(
                sqrt_price_current_x96, liquidity, -amount_remaining, zero_for_one
            )

    max_price_reached = sqrt_price_target_x96 == sqrt_price_next_x96

    if zero_for_one:
        if not (max_price_reached and exact_in):
            amount_in = get_amount0_delta(sqrt_price_next_x96, sqrt_price_current_x96, liquidity, True)
        if not (max_price_reached and not exact_in):
            amount_out = get_amount1_delta(sqrt_price_next_x96, sqrt_price_current_x96, liquidity, False)
    else:
        if not (max_price_reached and exact_in):
            amount_in = get_amount1_delta(sqrt_price_current_x96, sqrt_price_next_x96, liquidity, True)
        if not (max_price_reached and not exact_in):
            amount_out = get_amount0_delta(sqrt_price_current_x96, sqrt_price_next_x96, liquidity, False)

    # Cap output amount for exact output swaps
    if not exact_in and amount_out > -amount_remaining:
        amount_out = -amount_remaining

    if exact_in and sqrt_price_next_x96 != sqrt_price_target_x96:
        # Didn't reach the target, the remainder is all fee
        fee_amount = amount_remaining - amount_in
    else:
        fee_amount = mul_div_rounding_up(amount_in, fee_pips, FEE_DENOMINATOR - fee_pips)

    return sqrt_price_next_x96, amount_in, amount_out, fee_amount
