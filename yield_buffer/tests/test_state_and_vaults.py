#!/usr/bin/env python3
"""
Pool state store, vault registry and reference vault tests
"""

import pytest

from yield_buffer.core.errors import ArithmeticFault, PoolAlreadyInitializedError, UnknownPoolError, VaultCallError
from yield_buffer.core.math import BufferMath
from yield_buffer.core.state import AssetPosition, PoolStateStore
from yield_buffer.core.vaults import VaultRegistry, is_dust, vault_value_of, vault_withdraw
from yield_buffer.core.yield_vault import YieldVault, calculate_vault_growth_factor


class TestPoolStateStore:

    def setup_method(self):
        self.store = PoolStateStore()
        self.vault = YieldVault("USDC")

    def test_create_and_get(self):
        created = self.store.create("p1", "USDC", "WETH", self.vault, None)
        assert self.store.get("p1") is created
        assert "p1" in self.store
        assert self.store.pool_ids() == ["p1"]
        assert created.asset_a.has_vault and not created.asset_b.has_vault

    def test_create_twice_rejected(self):
        self.store.create("p1", "USDC", "WETH", None, None)
        with pytest.raises(PoolAlreadyInitializedError):
            self.store.create("p1", "USDC", "WETH", None, None)

    def test_unknown_pool(self):
        with pytest.raises(UnknownPoolError):
            self.store.get("nope")

    def test_copy_and_restore(self):
        state = self.store.create("p1", "USDC", "WETH", self.vault, None)
        saved = state.copy()
        state.asset_a.idle_balance = 123
        state.restore(saved)
        assert state.asset_a.idle_balance == 0
        assert state.asset_a.vault is self.vault

    def test_position_lookup(self):
        state = self.store.create("p1", "USDC", "WETH", None, None)
        assert state.position("WETH") is state.asset_b
        with pytest.raises(KeyError):
            state.position("DAI")


class TestPositionValidation:

    def test_balances_without_vault_fault(self):
        with pytest.raises(ArithmeticFault):
            AssetPosition("WETH", None, idle_balance=1).validate()

    def test_negative_balance_faults(self):
        with pytest.raises(ArithmeticFault):
            AssetPosition("USDC", YieldVault("USDC"), idle_balance=-1).validate()


class TestVaultRegistry:

    def test_resolve_missing_is_none(self):
        assert VaultRegistry().resolve("USDC") is None

    def test_approve_and_revoke(self):
        registry = VaultRegistry()
        vault = YieldVault("USDC")
        registry.approve("USDC", vault)
        assert registry.resolve("USDC") is vault
        assert registry.approved_assets() == ["USDC"]
        registry.revoke("USDC")
        assert registry.resolve("USDC") is None

    def test_non_vault_rejected(self):
        with pytest.raises(TypeError):
            VaultRegistry().approve("USDC", object())

    def test_value_of_zero_shares_skips_call(self):
        vault = YieldVault("USDC")
        vault.value_of = None  # would fail if called
        assert vault_value_of(vault, "USDC", 0) == 0

    def test_vault_errors_wrapped(self):
        vault = YieldVault("USDC")
        with pytest.raises(VaultCallError) as exc_info:
            vault_withdraw(vault, "USDC", 10)
        assert exc_info.value.asset == "USDC"
        assert isinstance(exc_info.value.__cause__, ValueError)


class TestYieldVault:
    """ERC-4626 style accounting"""

    def setup_method(self):
        self.vault = YieldVault("USDC", apr=0.10)

    def test_deposit_withdraw_round_trip(self):
        shares = self.vault.deposit(1_000_000)
        assert self.vault.value_of(shares) == 1_000_000
        assert self.vault.withdraw(1_000_000) == shares
        assert self.vault.total_assets == 0 and self.vault.total_shares == 0

    def test_accrue_grows_share_value(self):
        shares = self.vault.deposit(1_000_000)
        interest = self.vault.accrue(525_600)
        assert 99_000 <= interest <= 100_000
        assert self.vault.value_of(shares) > 1_000_000

    def test_withdraw_rounds_shares_up(self):
        self.vault.deposit(1_000_000)
        self.vault.total_assets += 333_333
        shares = self.vault.withdraw(1)
        assert shares == 1

    def test_withdraw_more_than_assets_rejected(self):
        self.vault.deposit(100)
        with pytest.raises(ValueError):
            self.vault.withdraw(101)

    def test_paused_vault_rejects_calls(self):
        self.vault.set_paused(True)
        with pytest.raises(RuntimeError):
            self.vault.deposit(1)

    def test_revert_deposit_keeps_other_depositors(self):
        other = self.vault.deposit(1_000_000)
        shares = self.vault.deposit(500)
        self.vault.revert_deposit(500, shares)
        assert (self.vault.total_assets, self.vault.total_shares) == (1_000_000, other)

    def test_revert_withdraw_restores_totals(self):
        self.vault.deposit(1_000_000)
        shares = self.vault.withdraw(400_000)
        self.vault.revert_withdraw(400_000, shares)
        assert (self.vault.total_assets, self.vault.total_shares) == (1_000_000, 1_000_000)

    def test_revert_beyond_totals_rejected(self):
        self.vault.deposit(100)
        with pytest.raises(ArithmeticFault):
            self.vault.revert_deposit(101, 100)

    def test_dust_threshold_tracks_share_price(self):
        assert not is_dust(self.vault, "USDC", 2)
        self.vault.deposit(1_000_000)
        self.vault.total_assets += 1_500_000
        # one share is worth two units now
        assert is_dust(self.vault, "USDC", 2)
        assert self.vault.deposit(3) == 1

    def test_growth_factor(self):
        assert calculate_vault_growth_factor(0) == 1.0
        assert calculate_vault_growth_factor(525_600, 0.10) == pytest.approx(1.10)


class TestBufferMath:

    def test_to_wad_is_exact(self):
        assert BufferMath.to_wad(0.2) == 2 * 10 ** 17
        assert BufferMath.to_wad(0.1) == 10 ** 17

    def test_ratio_undefined_for_zero_total(self):
        assert BufferMath.buffer_ratio_wad(0, 0) is None

    def test_checked_add_faults(self):
        with pytest.raises(ArithmeticFault):
            BufferMath.checked_add(1, -2)

    def test_accrued_yield_never_negative(self):
        assert BufferMath.accrued_yield(10, 20, 100) == 0
        assert BufferMath.accrued_yield(10, 100, 100) == 10
