#!/usr/bin/env python3
"""
Yield Distribution Engine

Recognises yield accrued in each bound vault and hands it to the host's
donate primitive, which credits whoever provides liquidity at the active
price. The controller runs this only when the active interval is about to
change hands: before a crossing trade and before a liquidity change that
touches the active tick.

Accounting: yield is holdings (idle + vault value) above tracked principal.
The distributed amount leaves the controller, and principal is re-anchored to
the holdings left afterwards, so each distribution covers exactly the yield
accrued since the previous one. A vault that lost value distributes nothing
and keeps its principal, so a later recovery is not paid out as yield.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from ..core.errors import ArithmeticFault
from ..core.math import BufferMath
from ..core.state import AssetPosition, PoolYieldState
from .transaction import PoolOperation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetDistribution:
    asset: str
    amount: int = 0
    withdrawn_from_vault: int = 0
    shares_redeemed: int = 0


@dataclass(frozen=True)
class DistributionResult:
    pool_id: str
    asset_a: AssetDistribution
    asset_b: AssetDistribution

    @property
    def amounts(self) -> Tuple[int, int]:
        return self.asset_a.amount, self.asset_b.amount

    @property
    def distributed(self) -> bool:
        return self.asset_a.amount > 0 or self.asset_b.amount > 0


class YieldDistributionEngine:
    """Computes accrued yield per asset and donates it to active liquidity"""

    def accrued_yield(self, position: AssetPosition) -> int:
        """Distributable yield for one asset; 0 for pass-through assets"""
        if not position.has_vault:
            return 0
        return BufferMath.accrued_yield(
            position.idle_balance, position.vault_value(), position.tracked_principal
        )

    def preview(self, state: PoolYieldState) -> Tuple[int, int]:
        """Yield that a distribution would hand out right now, without mutating"""
        return self.accrued_yield(state.asset_a), self.accrued_yield(state.asset_b)

    def distribute(self, operation: PoolOperation) -> DistributionResult:
        """Withdraw and donate accrued yield of the operation's pool"""
        state = operation.state
        result_a = self._collect(operation, state.asset_a)
        result_b = self._collect(operation, state.asset_b)
        result = DistributionResult(state.pool_id, result_a, result_b)

        if result.distributed:
            operation.donate(result_a.amount, result_b.amount)
            logger.info(
                "Pool %s: distributed yield %s=%d %s=%d",
                state.pool_id, result_a.asset, result_a.amount, result_b.asset, result_b.amount
            )
        return result

    def _collect(self, operation: PoolOperation, position: AssetPosition) -> AssetDistribution:
        if not position.has_vault:
            return AssetDistribution(position.asset)

        vault_value = position.vault_value()
        accrued = position.idle_balance + vault_value - position.tracked_principal
        if accrued <= 0:
            logger.debug(
                "Pool %s: no yield on %s (holdings %d, principal %d)",
                operation.pool_id, position.asset, position.idle_balance + vault_value, position.tracked_principal
            )
            return AssetDistribution(position.asset)

        withdrawn = 0
        shares = 0
        if accrued > position.idle_balance:
            withdrawn = accrued - position.idle_balance
            shares = operation.withdraw(position, withdrawn)
            if shares > position.share_balance:
                raise ArithmeticFault(
                    f"{position.asset}: vault redeemed {shares} shares, pool holds {position.share_balance}"
                )
            position.share_balance -= shares
            position.idle_balance = 0
        else:
            position.idle_balance -= accrued

        position.tracked_principal = position.holdings()
        return AssetDistribution(position.asset, accrued, withdrawn, shares)
