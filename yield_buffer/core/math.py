#!/usr/bin/env python3
"""
Buffer Mathematical Functions

Pure integer functions for buffer-ratio and yield calculations. Ratios are
carried as 1e18-scaled integers so every threshold comparison is exact.
"""

from decimal import Decimal
from typing import Optional

from .errors import ArithmeticFault
from .uniswap_v3_math import MAX_UINT256, mul_div


class BufferMath:
    """Pure mathematical functions for the idle/vault buffer"""

    WAD = 10 ** 18

    @staticmethod
    def to_wad(fraction: float) -> int:
        """Convert a fraction in [0, 1] to a WAD integer without binary float drift"""
        return int(Decimal(str(fraction)) * BufferMath.WAD)

    @staticmethod
    def checked_add(a: int, b: int, label: str = "amount") -> int:
        """a + b for signed b, faulting if the result leaves [0, 2^256)"""
        result = a + b
        if result < 0:
            raise ArithmeticFault(f"{label} underflow: {a} + {b}")
        if result > MAX_UINT256:
            raise ArithmeticFault(f"{label} overflow: {a} + {b}")
        return result

    @staticmethod
    def buffer_ratio_wad(idle: int, total: int) -> Optional[int]:
        """idle / total in WAD; None when total is zero (ratio undefined)"""
        if total == 0:
            return None
        if total < 0:
            raise ArithmeticFault(f"Negative total balance {total}")
        return mul_div(max(idle, 0), BufferMath.WAD, total)

    @staticmethod
    def below_ratio(idle: int, total: int, ratio_wad: int) -> bool:
        """idle / total < ratio, cross-multiplied"""
        return idle * BufferMath.WAD < ratio_wad * total

    @staticmethod
    def above_ratio(idle: int, total: int, ratio_wad: int) -> bool:
        """idle / total > ratio, cross-multiplied"""
        return idle * BufferMath.WAD > ratio_wad * total

    @staticmethod
    def target_idle(total: int, target_ratio_wad: int) -> int:
        """Idle amount that puts the buffer exactly at target (rounded down)"""
        return mul_div(total, target_ratio_wad, BufferMath.WAD)

    @staticmethod
    def accrued_yield(idle: int, vault_value: int, tracked_principal: int) -> int:
        """Holdings above the tracked principal; never negative"""
        return max(0, idle + vault_value - tracked_principal)
