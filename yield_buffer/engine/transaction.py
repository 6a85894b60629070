#!/usr/bin/env python3
"""
Scoped pool operations

Every host-triggered call and every sweep runs inside exactly one
PoolOperation. The scope holds the pool's lock for its whole duration and
takes a copy of the pool's yield state on entry. Every external effect (vault
deposit or withdrawal, host take, settle or donate) goes through the scope,
which logs how to take it back. If anything raises, the copy is put back and
the log is unwound in reverse, before re-raising.

Vaults and the host are shared between pools, so an abort only ever reverses
the calls its own operation made; it never restores a collaborator
wholesale. Operations on other pools that ran in between keep their effects.
"""

import logging
import threading
from typing import Callable, Dict, List, Protocol, Tuple, runtime_checkable

from ..core.errors import ReentrantOperationError
from ..core.state import AssetPosition, PoolYieldState
from ..core.vaults import ReversibleVault, vault_deposit, vault_withdraw
from .host import HostEngine

logger = logging.getLogger(__name__)


@runtime_checkable
class ReversibleDonations(Protocol):
    """Host that can recall a donation made by an aborted operation"""

    def revert_donation(self, pool_id: str, amount_a: int, amount_b: int) -> None:
        ...


class OperationLocks:
    """One lock per pool, created on first use"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._owners: Dict[str, int] = {}
        self._guard = threading.Lock()

    def lock_for(self, pool_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(pool_id, threading.Lock())

    def owner(self, pool_id: str):
        return self._owners.get(pool_id)

    def set_owner(self, pool_id: str, thread_id):
        if thread_id is None:
            self._owners.pop(pool_id, None)
        else:
            self._owners[pool_id] = thread_id


class PoolOperation:
    """
    Context manager: begin, complete or abort, always release.

    Args:
        locks: shared per-pool lock table
        state: the pool record this operation may mutate
        host: the host engine external custody calls go to
        name: label for logs
    """

    def __init__(self, locks: OperationLocks, state: PoolYieldState, host: HostEngine, name: str):
        self.locks = locks
        self.state = state
        self.host = host
        self.name = name
        self._saved_state = None
        self._undo: List[Tuple[str, Callable[[], None]]] = []
        self._lock = locks.lock_for(state.pool_id)

    @property
    def pool_id(self) -> str:
        return self.state.pool_id

    def __enter__(self) -> "PoolOperation":
        me = threading.get_ident()
        if self.locks.owner(self.pool_id) == me:
            raise ReentrantOperationError(
                f"{self.name} started inside another operation on pool {self.pool_id}"
            )
        self._lock.acquire()
        self.locks.set_owner(self.pool_id, me)
        self._saved_state = self.state.copy()
        self._undo = []
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is not None:
                self._abort(exc)
            else:
                try:
                    for position in self.state.positions():
                        position.validate()
                except Exception as e:
                    self._abort(e)
                    raise
        finally:
            self._saved_state = None
            self._undo = []
            self.locks.set_owner(self.pool_id, None)
            self._lock.release()
        return False

    # External effects
    def deposit(self, position: AssetPosition, amount: int) -> int:
        """Deposit into the position's vault; returns shares minted"""
        vault, asset = position.vault, position.asset
        shares = vault_deposit(vault, asset, amount)
        if isinstance(vault, ReversibleVault):
            self._record(f"deposit {amount} {asset}", lambda: vault.revert_deposit(amount, shares))
        else:
            self._record(f"deposit {amount} {asset}", lambda: vault_withdraw(vault, asset, amount))
        return shares

    def withdraw(self, position: AssetPosition, amount: int) -> int:
        """Withdraw from the position's vault; returns shares redeemed"""
        vault, asset = position.vault, position.asset
        shares = vault_withdraw(vault, asset, amount)
        if isinstance(vault, ReversibleVault):
            self._record(f"withdraw {amount} {asset}", lambda: vault.revert_withdraw(amount, shares))
        else:
            self._record(f"withdraw {amount} {asset}", lambda: vault_deposit(vault, asset, amount))
        return shares

    def take(self, asset: str, amount: int):
        pool_id = self.pool_id
        self.host.take(pool_id, asset, amount)
        self._record(f"take {amount} {asset}", lambda: self.host.settle(pool_id, asset, amount))

    def settle(self, asset: str, amount: int):
        pool_id = self.pool_id
        self.host.settle(pool_id, asset, amount)
        self._record(f"settle {amount} {asset}", lambda: self.host.take(pool_id, asset, amount))

    def donate(self, amount_a: int, amount_b: int):
        pool_id = self.pool_id
        self.host.donate(pool_id, amount_a, amount_b)
        # hosts without recall revert the donation along with the failed hook call
        if isinstance(self.host, ReversibleDonations):
            self._record(
                f"donate {amount_a}/{amount_b}",
                lambda: self.host.revert_donation(pool_id, amount_a, amount_b)
            )

    def _record(self, description: str, undo: Callable[[], None]):
        self._undo.append((description, undo))

    def _abort(self, exc: BaseException):
        self.state.restore(self._saved_state)
        for description, undo in reversed(self._undo):
            logger.debug("%s on pool %s: undoing %s", self.name, self.pool_id, description)
            undo()
        logger.warning(
            "%s on pool %s aborted, %d external calls reverted: %s",
            self.name, self.pool_id, len(self._undo), exc
        )
