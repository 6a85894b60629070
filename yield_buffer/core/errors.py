#!/usr/bin/env python3
"""
Yield Buffer Exceptions

Every fault raised inside the controller aborts the enclosing host operation.
Missing vault bindings are not represented here: they are a valid idle-only
configuration, never an error.
"""


class YieldBufferError(Exception):
    """Base class for all controller faults"""


class ConfigurationError(YieldBufferError, ValueError):
    """Buffer thresholds violate 0 <= min <= target <= max <= 1"""


class ArithmeticFault(YieldBufferError, ArithmeticError):
    """Overflow, underflow or division by zero in fixed-point math"""


class VaultCallError(YieldBufferError):
    """A vault deposit/withdraw/value_of call failed or returned garbage"""

    def __init__(self, asset: str, operation: str, reason: str):
        self.asset = asset
        self.operation = operation
        super().__init__(f"Vault {operation} failed for {asset}: {reason}")


class InsufficientLiquidityError(YieldBufferError):
    """Idle plus vault holdings cannot fund a pending outflow"""


class PoolAlreadyInitializedError(YieldBufferError):
    """Host notified pool creation twice for the same pool"""


class UnknownPoolError(YieldBufferError, KeyError):
    """No yield state exists for the pool"""


class UnauthorizedError(YieldBufferError, PermissionError):
    """Caller is not the configuration manager"""


class ReentrantOperationError(YieldBufferError, RuntimeError):
    """An operation on a pool was started from inside another one on that pool"""
