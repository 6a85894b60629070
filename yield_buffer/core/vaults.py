#!/usr/bin/env python3
"""
Vault Bindings

The VaultHandle protocol the controller needs from an external yield vault,
checked wrappers around each call, and the registry that resolves an asset to
its approved vault.
"""

import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .errors import VaultCallError
from .uniswap_v3_math import MAX_UINT256

logger = logging.getLogger(__name__)


@runtime_checkable
class VaultHandle(Protocol):
    """External yield vault. Calls are atomic and fail cleanly."""

    def deposit(self, amount: int) -> int:
        """Deposit assets, returning shares minted"""
        ...

    def withdraw(self, amount: int) -> int:
        """Withdraw exactly `amount` assets, returning shares redeemed"""
        ...

    def value_of(self, shares: int) -> int:
        """Asset value of `shares` at the current exchange rate"""
        ...


def _checked_result(asset: str, operation: str, result) -> int:
    if not isinstance(result, int) or isinstance(result, bool):
        raise VaultCallError(asset, operation, f"non-integer result {result!r}")
    if result < 0 or result > MAX_UINT256:
        raise VaultCallError(asset, operation, f"result {result} out of range")
    return result


def vault_deposit(vault: VaultHandle, asset: str, amount: int) -> int:
    """Deposit into `vault`, translating any failure into VaultCallError"""
    try:
        shares = vault.deposit(amount)
    except VaultCallError:
        raise
    except Exception as e:
        raise VaultCallError(asset, "deposit", str(e)) from e
    return _checked_result(asset, "deposit", shares)


def vault_withdraw(vault: VaultHandle, asset: str, amount: int) -> int:
    """Withdraw from `vault`, translating any failure into VaultCallError"""
    try:
        shares = vault.withdraw(amount)
    except VaultCallError:
        raise
    except Exception as e:
        raise VaultCallError(asset, "withdraw", str(e)) from e
    return _checked_result(asset, "withdraw", shares)


def vault_value_of(vault: VaultHandle, asset: str, shares: int) -> int:
    """Value `shares` in `vault`, translating any failure into VaultCallError"""
    if shares == 0:
        return 0
    try:
        value = vault.value_of(shares)
    except VaultCallError:
        raise
    except Exception as e:
        raise VaultCallError(asset, "value_of", str(e)) from e
    return _checked_result(asset, "value_of", value)


def is_dust(vault: VaultHandle, asset: str, amount: int) -> bool:
    """True if `amount` is not worth more than one share and may mint nothing"""
    return amount <= vault_value_of(vault, asset, 1)


@runtime_checkable
class ReversibleVault(Protocol):
    """Vault that can take back one deposit or withdrawal exactly"""

    def revert_deposit(self, amount: int, shares: int) -> None:
        ...

    def revert_withdraw(self, amount: int, shares: int) -> None:
        ...


class VaultRegistry:
    """Asset -> approved vault lookup"""

    def __init__(self, approvals: Optional[Dict[str, VaultHandle]] = None):
        self._vaults: Dict[str, VaultHandle] = {}
        for asset, vault in (approvals or {}).items():
            self.approve(asset, vault)

    def approve(self, asset: str, vault: VaultHandle):
        if not isinstance(vault, VaultHandle):
            raise TypeError(f"{vault!r} does not implement deposit/withdraw/value_of")
        self._vaults[asset] = vault
        logger.info("Approved vault %s for %s", type(vault).__name__, asset)

    def revoke(self, asset: str):
        if self._vaults.pop(asset, None) is not None:
            logger.info("Revoked vault for %s", asset)

    def resolve(self, asset: str) -> Optional[VaultHandle]:
        """Approved vault for `asset`, or None for an idle-only asset"""
        return self._vaults.get(asset)

    def approved_assets(self) -> List[str]:
        return sorted(self._vaults)
