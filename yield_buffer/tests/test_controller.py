#!/usr/bin/env python3
"""
Controller Lifecycle Tests

Pool creation, manager-only configuration, the sweep, and the all-or-nothing
behaviour of every host-triggered operation.
"""

import json
import threading

import pytest

from yield_buffer.core.errors import (
    ConfigurationError, PoolAlreadyInitializedError, ReentrantOperationError,
    UnauthorizedError, UnknownPoolError, VaultCallError
)
from yield_buffer.core.vaults import VaultRegistry
from yield_buffer.engine.config import BufferConfig, ControllerSettings
from yield_buffer.engine.controller import YieldBufferController

from conftest import StubHost

POOL_ID = "USDC:WETH"


class TestPoolCreation:

    def test_initial_state_is_zeroed(self, controller):
        snapshot = controller.pool_state(POOL_ID)
        for side in (snapshot.asset_a, snapshot.asset_b):
            assert side.has_vault
            assert (side.idle_balance, side.share_balance, side.tracked_principal) == (0, 0, 0)

    def test_double_initialization_rejected(self, controller):
        with pytest.raises(PoolAlreadyInitializedError):
            controller.on_pool_created(POOL_ID, "USDC", "WETH")

    def test_missing_vault_is_pass_through(self, host, usdc_vault):
        ctrl = YieldBufferController(host, VaultRegistry({"USDC": usdc_vault}), ControllerSettings("m"))
        snapshot = ctrl.on_pool_created("USDC:DAI", "USDC", "DAI")
        assert snapshot.asset_a.has_vault
        assert not snapshot.asset_b.has_vault

    def test_identical_assets_rejected(self, controller):
        with pytest.raises(ValueError):
            controller.on_pool_created("USDC:USDC", "USDC", "USDC")

    def test_unknown_pool(self, controller):
        with pytest.raises(UnknownPoolError):
            controller.after_trade("missing", 1, 1)


class TestConfiguration:

    def test_manager_updates_watermarks(self, controller):
        config = controller.update_config("manager", min_buffer_ratio=0.1, max_buffer_ratio=0.9)
        assert config.min_buffer_ratio == 0.1
        assert controller.rebalancer.config is config

    def test_non_manager_rejected(self, controller):
        with pytest.raises(UnauthorizedError):
            controller.update_config("mallory", min_buffer_ratio=0.1)

    @pytest.mark.parametrize("changes", [
        {"min_buffer_ratio": 0.45},
        {"max_buffer_ratio": 1.5},
        {"target_buffer_ratio": -0.1},
        {"unknown_ratio": 0.3},
    ])
    def test_invalid_config_rejected_and_previous_kept(self, controller, changes):
        before = controller.config
        with pytest.raises(ConfigurationError):
            controller.update_config("manager", **changes)
        assert controller.config == before

    def test_transfer_manager(self, controller):
        controller.transfer_manager("manager", "new_manager")
        with pytest.raises(UnauthorizedError):
            controller.update_config("manager", min_buffer_ratio=0.1)
        controller.update_config("new_manager", min_buffer_ratio=0.1)

    def test_degenerate_band_allowed(self):
        config = BufferConfig.build(min_buffer_ratio=0.3, target_buffer_ratio=0.3, max_buffer_ratio=0.3)
        assert config.min_wad == config.target_wad == config.max_wad

    def test_from_file(self, tmp_path):
        path = tmp_path / "buffer.json"
        path.write_text(json.dumps({"min_buffer_ratio": 0.1, "target_buffer_ratio": 0.2, "max_buffer_ratio": 0.3}))
        assert BufferConfig.from_file(path).target_buffer_ratio == 0.2

    def test_settings_require_manager(self):
        with pytest.raises(ConfigurationError):
            ControllerSettings("")


class TestSweep:

    def test_sweep_moves_all_idle_into_vault(self, controller, state, usdc_vault, fund):
        fund(state.asset_a, 400_000, 600_000)

        result = controller.request_sweep(POOL_ID)

        assert result.swept
        assert result.deposited == {"USDC": 400_000}
        assert state.asset_a.idle_balance == 0
        assert state.asset_a.vault_value() == 1_000_000
        assert state.asset_a.tracked_principal == 1_000_000

    def test_sweep_with_nothing_idle_is_noop(self, controller, usdc_vault):
        result = controller.request_sweep(POOL_ID)
        assert not result.swept
        assert usdc_vault.total_assets == 0

    def test_ratio_after_sweep_is_zero(self, controller, host, state, fund):
        fund(state.asset_a, 400_000, 600_000)
        controller.request_sweep(POOL_ID)
        host.balances["USDC"] = 1_000_000
        assert controller.buffer_ratio(POOL_ID, "USDC") == 0.0
        assert controller.buffer_ratio(POOL_ID, "WETH") is None

    def test_ratio_is_measured_against_on_hand_balance(self, controller, host, state, fund):
        fund(state.asset_a, 400_000, 600_000)
        # fees and unswept trade output count towards on-hand
        host.balances["USDC"] = 2_000_000
        assert controller.buffer_ratio(POOL_ID, "USDC") == pytest.approx(0.2)

    def test_ratio_of_pass_through_asset_is_none(self, host, usdc_vault):
        ctrl = YieldBufferController(host, VaultRegistry({"USDC": usdc_vault}), ControllerSettings("m"))
        ctrl.on_pool_created(POOL_ID, "USDC", "WETH")
        host.balances["WETH"] = 1_000_000
        assert ctrl.buffer_ratio(POOL_ID, "WETH") is None

    def test_sweep_leaves_dust_idle(self, controller, state, usdc_vault, fund):
        fund(state.asset_a, 1, 1_000_000)
        usdc_vault.total_assets += 60_000  # one share now worth one unit, one unit mints nothing
        fund(state.asset_b, 500_000, 0)

        result = controller.request_sweep(POOL_ID)

        assert result.deposited == {"WETH": 500_000}
        assert state.asset_a.idle_balance == 1
        assert state.asset_b.idle_balance == 0


class TestAtomicity:
    """A failing operation leaves no trace"""

    def test_vault_failure_rolls_back_everything(self, controller, host, state, usdc_vault):
        usdc_vault.set_paused(True)
        before = state.snapshot()

        with pytest.raises(VaultCallError) as exc_info:
            controller.after_liquidity_change(POOL_ID, 1_000_000, 500_000)

        assert exc_info.value.operation == "deposit"
        assert state.snapshot() == before
        assert host.transfers == [("take", "USDC", 1_000_000), ("settle", "USDC", 1_000_000)]
        assert host.net_custody() == {}

    def test_failure_on_second_asset_undoes_first(self, controller, host, state, usdc_vault, weth_vault):
        weth_vault.set_paused(True)

        with pytest.raises(VaultCallError):
            controller.after_liquidity_change(POOL_ID, 1_000_000, 500_000)

        assert state.asset_a.idle_balance == 0
        assert usdc_vault.total_assets == 0
        assert usdc_vault.total_shares == 0
        assert host.net_custody() == {}

    def test_garbage_vault_result_rejected(self, controller, state, usdc_vault, fund):
        fund(state.asset_a, 400_000, 0)
        usdc_vault.deposit = lambda amount: -1

        with pytest.raises(VaultCallError):
            controller.request_sweep(POOL_ID)
        assert state.asset_a.idle_balance == 400_000

    def test_reentrant_call_rejected(self, controller, host):
        def reentrant_take(pool_id, asset, amount):
            controller.request_sweep(pool_id)

        host.take = reentrant_take
        with pytest.raises(ReentrantOperationError):
            controller.after_trade(POOL_ID, 1_000, 0)

        # the pool lock was released by the aborted operation
        assert not controller.request_sweep(POOL_ID).swept


class TestPassThrough:
    """An asset without a vault is never touched"""

    def test_unbound_deltas_are_ignored(self, host, usdc_vault):
        ctrl = YieldBufferController(host, VaultRegistry({"USDC": usdc_vault}), ControllerSettings("m"))
        ctrl.on_pool_created(POOL_ID, "USDC", "WETH")

        result = ctrl.after_trade(POOL_ID, 1_000_000, -250_000)

        weth = ctrl.pool_state(POOL_ID).asset_b
        assert not result.asset_b.triggered
        assert (weth.idle_balance, weth.share_balance, weth.tracked_principal) == (0, 0, 0)
        assert all(asset != "WETH" for _, asset, _ in host.transfers)
        assert ctrl.pending_yield(POOL_ID)[1] == 0


class GatedHost(StubHost):
    """Holds the first on-hand query for one (pool, asset) until released, optionally failing it"""

    def __init__(self, pool_id, asset, fail=False):
        super().__init__()
        self.gate = (pool_id, asset)
        self.fail = fail
        self.entered = threading.Event()
        self.release = threading.Event()

    def on_hand_balance(self, pool_id, asset):
        if (pool_id, asset) == self.gate and not self.entered.is_set():
            self.entered.set()
            self.release.wait(5)
            if self.fail:
                raise RuntimeError("host unavailable")
        return super().on_hand_balance(pool_id, asset)


def gated_controller(host, usdc_vault, weth_vault, *pool_ids):
    registry = VaultRegistry({"USDC": usdc_vault, "WETH": weth_vault})
    ctrl = YieldBufferController(host, registry, ControllerSettings("m"))
    for pool_id in pool_ids:
        ctrl.on_pool_created(pool_id, "USDC", "WETH")
    return ctrl


class TestConcurrency:
    """Operations on one pool serialize; operations on different pools never undo each other"""

    def test_abort_leaves_other_pool_deposit_in_shared_vault(self, usdc_vault, weth_vault):
        host = GatedHost("P1", "WETH", fail=True)
        ctrl = gated_controller(host, usdc_vault, weth_vault, "P1", "P2")
        errors = []

        def run_p1():
            try:
                ctrl.after_liquidity_change("P1", 1_000_000, 1_000)
            except RuntimeError as e:
                errors.append(e)

        worker = threading.Thread(target=run_p1)
        worker.start()
        # P1 has deposited 600k USDC and is stuck on its WETH leg
        assert host.entered.wait(5)
        ctrl.after_liquidity_change("P2", 1_000_000, 0)
        host.release.set()
        worker.join(5)

        p1 = ctrl.store.get("P1").asset_a
        p2 = ctrl.store.get("P2").asset_a
        assert len(errors) == 1
        assert (p1.idle_balance, p1.share_balance, p1.tracked_principal) == (0, 0, 0)
        assert usdc_vault.total_assets == p2.vault_value() == 600_000
        assert usdc_vault.total_shares == p2.share_balance

    def test_sweep_waits_for_running_trade(self, usdc_vault, weth_vault, fund):
        host = GatedHost(POOL_ID, "USDC")
        ctrl = gated_controller(host, usdc_vault, weth_vault, POOL_ID)
        state = ctrl.store.get(POOL_ID)
        fund(state.asset_a, 800_000, 1_200_000)
        host.balances["USDC"] = 2_000_000
        sweeps = []

        trade = threading.Thread(target=ctrl.after_trade, args=(POOL_ID, 100_000, 0))
        sweep = threading.Thread(target=lambda: sweeps.append(ctrl.request_sweep(POOL_ID)))
        trade.start()
        assert host.entered.wait(5)
        sweep.start()
        sweep.join(0.2)

        # blocked on the pool lock, nothing moved yet
        assert sweep.is_alive()
        assert state.asset_a.idle_balance == 800_000

        host.release.set()
        trade.join(5)
        sweep.join(5)

        # same outcome as the trade followed by the sweep
        assert not trade.is_alive()
        assert sweeps[0].deposited == {"USDC": 900_000}
        assert state.asset_a.idle_balance == 0
        assert state.asset_a.vault_value() == 2_100_000
        assert state.asset_a.tracked_principal == 2_100_000


class TestRoundTrip:

    def test_inflow_then_equal_outflow_restores_position(self, controller, host, state):
        controller.after_liquidity_change(POOL_ID, 1_000_000, 0)
        host.balances["USDC"] = 1_000_000
        before = (state.asset_a.idle_balance, state.asset_a.share_balance)
        assert before == (400_000, 600_000)

        inflow = controller.after_trade(POOL_ID, 1_000_000, 0)
        assert inflow.asset_a.deposited == 600_000
        host.balances["USDC"] = 2_000_000

        outflow = controller.after_trade(POOL_ID, -1_000_000, 0)
        assert outflow.asset_a.withdrawn == 600_000

        assert abs(state.asset_a.idle_balance - before[0]) <= 1
        assert abs(state.asset_a.share_balance - before[1]) <= 1
