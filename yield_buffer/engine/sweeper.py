#!/usr/bin/env python3
"""
Deposit Orchestrator

Permissionless sweep of every idle balance into its bound vault. Capital that
piles up idle through many small inflows, none of which crossed the max
watermark, eventually gets deployed this way. Balances not worth a single
share stay idle.
"""

import logging
from dataclasses import dataclass
from typing import Dict

from ..core.math import BufferMath
from ..core.vaults import is_dust
from .transaction import PoolOperation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    pool_id: str
    deposited: Dict[str, int]
    shares_minted: Dict[str, int]

    @property
    def swept(self) -> bool:
        return any(self.deposited.values())


class DepositOrchestrator:
    """Moves all idle funds of a pool into its vaults"""

    def sweep(self, operation: PoolOperation) -> SweepResult:
        """Deposit each bound asset's full idle balance"""
        state = operation.state
        deposited: Dict[str, int] = {}
        minted: Dict[str, int] = {}

        for position in state.positions():
            if not position.has_vault or position.idle_balance == 0:
                continue
            amount = position.idle_balance
            if is_dust(position.vault, position.asset, amount):
                logger.debug("Pool %s: leaving dust %d %s idle", state.pool_id, amount, position.asset)
                continue
            shares = operation.deposit(position, amount)
            position.share_balance = BufferMath.checked_add(
                position.share_balance, shares, f"{position.asset} share balance"
            )
            position.idle_balance = 0
            deposited[position.asset] = amount
            minted[position.asset] = shares
            logger.info("Pool %s: swept %d %s into vault (%d shares)", state.pool_id, amount, position.asset, shares)

        return SweepResult(state.pool_id, deposited, minted)
