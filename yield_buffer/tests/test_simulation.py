#!/usr/bin/env python3
"""
Simulated Host and Simulation Engine Tests

Runs the controller against the in-memory concentrated-liquidity host: the
controller's holdings must track the pool's reserves, crossings must donate
yield to in-range positions, and an aborted hook must revert the whole swap.
"""

import pytest

from yield_buffer.analysis.charts import BufferChartGenerator
from yield_buffer.analysis.metrics import BufferMetricsCalculator
from yield_buffer.analysis.results_manager import ResultsManager, RunMetadata
from yield_buffer.core.boundary import TradeDescriptor, amount_to_boundary
from yield_buffer.core.errors import InsufficientLiquidityError, VaultCallError
from yield_buffer.core.uniswap_v3_math import get_amounts_for_liquidity, tick_to_sqrt_price_x96
from yield_buffer.core.vaults import VaultRegistry
from yield_buffer.core.yield_vault import YieldVault
from yield_buffer.engine.config import ControllerSettings, SimulationConfig
from yield_buffer.engine.controller import YieldBufferController
from yield_buffer.main import main
from yield_buffer.simulation.engine import BufferSimulationEngine
from yield_buffer.simulation.pool import SimulatedPoolHost

POOL_ID = "USDC:WETH"
LIQUIDITY = 10 ** 15


class TestSimulatedPoolHost:
    """Controller driven through real swap and liquidity lifecycles"""

    def setup_method(self):
        self.usdc_vault = YieldVault("USDC", apr=0.0)
        self.weth_vault = YieldVault("WETH", apr=0.0)
        self.host = SimulatedPoolHost()
        self.controller = YieldBufferController(
            self.host,
            VaultRegistry({"USDC": self.usdc_vault, "WETH": self.weth_vault}),
            ControllerSettings("manager")
        )
        self.host.attach(self.controller)
        self.pool = self.host.create_pool(POOL_ID, "USDC", "WETH", 1.0, 60, 3000)
        self.host.modify_liquidity(POOL_ID, "lp", -600, 600, LIQUIDITY)
        self.host.drain_hook_results()

    def holdings(self, asset):
        return self.controller.store.get(POOL_ID).position(asset).holdings()

    def assert_holdings_track_reserves(self):
        for asset in ("USDC", "WETH"):
            assert self.holdings(asset) == self.pool.balances[asset]
            assert self.pool.custody[asset] >= 0

    def test_seeding_moves_reserves_to_controller(self):
        amount0, amount1 = get_amounts_for_liquidity(self.pool.sqrt_price_x96, -600, 600, LIQUIDITY, True)
        assert self.pool.balances == {"USDC": amount0, "WETH": amount1}
        assert self.pool.custody == {"USDC": 0, "WETH": 0}
        assert self.controller.buffer_ratio(POOL_ID, "USDC") == pytest.approx(0.4, abs=1e-9)
        self.assert_holdings_track_reserves()

    def test_swap_within_interval(self):
        price_before = self.pool.sqrt_price_x96
        delta_a, delta_b = self.host.swap(POOL_ID, TradeDescriptor(True, 10 ** 9))

        assert delta_a == 10 ** 9
        assert delta_b < 0
        assert self.pool.sqrt_price_x96 < price_before
        assert self.pool.donations == []
        self.assert_holdings_track_reserves()

    def test_crossing_swap_donates_to_active_positions(self):
        self.host.modify_liquidity(POOL_ID, "inner", -60, 60, LIQUIDITY)
        self.usdc_vault.total_assets += 10 ** 9
        pending_usdc, _ = self.controller.pending_yield(POOL_ID)
        assert pending_usdc > 0

        price = self.host.price_state(POOL_ID)
        assert (price.tick_lower, price.tick_upper) == (-60, 60)
        threshold = amount_to_boundary(price, True, True)
        trade = TradeDescriptor(True, threshold, True, tick_to_sqrt_price_x96(-120))
        self.host.swap(POOL_ID, trade)

        assert self.pool.tick < 0
        assert len(self.pool.donations) == 1
        credited = sum(p.fees_owed.get("USDC", 0) for p in self.pool.positions.values())
        assert credited == pending_usdc
        # at most share rounding dust is left behind
        assert self.controller.pending_yield(POOL_ID)[0] <= 1

    def test_vault_failure_reverts_the_swap(self):
        self.weth_vault.set_paused(True)
        price_before = self.pool.sqrt_price_x96
        balances_before = dict(self.pool.balances)
        custody_before = dict(self.pool.custody)
        state_before = self.controller.pool_state(POOL_ID)
        usdc_assets = self.usdc_vault.total_assets

        trade = TradeDescriptor(True, 10 ** 15, True, tick_to_sqrt_price_x96(-540))
        with pytest.raises(VaultCallError):
            self.host.swap(POOL_ID, trade)

        assert self.pool.sqrt_price_x96 == price_before
        assert self.pool.balances == balances_before
        assert self.pool.custody == custody_before
        assert self.controller.pool_state(POOL_ID) == state_before
        assert self.usdc_vault.total_assets == usdc_assets
        assert self.host.drain_hook_results() == []

    def test_failed_swap_keeps_other_pool_changes(self):
        other = self.host.create_pool("DAI:USDT", "DAI", "USDT", 1.0, 60, 3000)

        def fail_after_other_pool_moves(amount):
            self.host.modify_liquidity("DAI:USDT", "lp", -600, 600, LIQUIDITY)
            raise RuntimeError("vault down")

        self.weth_vault.deposit = fail_after_other_pool_moves
        self.weth_vault.withdraw = fail_after_other_pool_moves
        trade = TradeDescriptor(True, 10 ** 15, True, tick_to_sqrt_price_x96(-540))
        with pytest.raises(VaultCallError):
            self.host.swap(POOL_ID, trade)

        assert ("lp", -600, 600) in other.positions
        assert other.liquidity == LIQUIDITY
        assert other.balances["DAI"] > 0

    def test_revert_donation_takes_back_credits(self):
        self.host.modify_liquidity(POOL_ID, "inner", -60, 60, LIQUIDITY)
        donations = len(self.pool.donations)
        custody_before = dict(self.pool.custody)

        self.host.donate(POOL_ID, 1_001, 0)
        assert sum(p.fees_owed.get("USDC", 0) for p in self.pool.positions.values()) >= 1_001
        self.host.revert_donation(POOL_ID, 1_001, 0)

        assert len(self.pool.donations) == donations
        assert self.pool.custody == custody_before
        assert sum(p.fees_owed.get("USDC", 0) for p in self.pool.positions.values()) == 0

        with pytest.raises(ValueError):
            self.host.revert_donation(POOL_ID, 1_001, 0)

    def test_remove_liquidity_returns_funds(self):
        self.host.swap(POOL_ID, TradeDescriptor(False, 10 ** 10))
        delta_a, delta_b = self.host.modify_liquidity(POOL_ID, "lp", -600, 600, -LIQUIDITY)

        assert delta_a < 0 and delta_b < 0
        assert self.pool.liquidity == 0
        assert self.pool.ticks == {}
        self.assert_holdings_track_reserves()

    def test_remove_more_than_owned_rejected(self):
        with pytest.raises(InsufficientLiquidityError):
            self.host.modify_liquidity(POOL_ID, "lp", -600, 600, -LIQUIDITY - 1)

    def test_unaligned_range_rejected(self):
        with pytest.raises(ValueError):
            self.host.modify_liquidity(POOL_ID, "lp2", -610, 600, LIQUIDITY)

    def test_exact_output_swap(self):
        delta_a, delta_b = self.host.swap(POOL_ID, TradeDescriptor(False, 10 ** 9, exact_input=False))
        assert delta_a == -10 ** 9
        assert delta_b > 10 ** 9
        self.assert_holdings_track_reserves()


class TestSimulationEngine:

    def setup_method(self):
        self.config = SimulationConfig()
        self.config.simulation_steps = 150
        self.config.sweep_interval_steps = 25
        self.config.random_seed = 7

    def test_run_records_every_step(self):
        results = BufferSimulationEngine(self.config).run_simulation()
        assert results["steps"] == 150
        assert len(results["snapshots"]) == 150
        assert {"asset_a", "asset_b"} <= set(results["final_state"])

    def test_same_seed_same_run(self):
        first = BufferSimulationEngine(self.config).run_simulation(50)
        second = BufferSimulationEngine(self.config).run_simulation(50)
        assert first["snapshots"] == second["snapshots"]

    def test_metrics_summary(self):
        results = BufferSimulationEngine(self.config).run_simulation()
        summary = BufferMetricsCalculator(results).generate_summary()
        assert summary["invariant_violations"] == []
        assert summary["key_metrics"]["steps"] == 150
        assert summary["key_metrics"]["trades"] > 0

    def test_pass_through_side(self):
        self.config.vault_apr_b = None
        results = BufferSimulationEngine(self.config).run_simulation(60)
        final_b = results["final_state"]["asset_b"]
        assert not final_b["has_vault"]
        assert final_b["idle_balance"] == 0


def test_results_manager_round_trip(tmp_path):
    config = SimulationConfig()
    results = BufferSimulationEngine(config).run_simulation(20)
    manager = ResultsManager(str(tmp_path))
    run_dir = manager.create_run_directory("smoke")
    metadata = RunMetadata(run_dir.name, "smoke", "now", config.to_dict(), 0.1)

    manager.save_results(run_dir, results, metadata)
    summary = BufferMetricsCalculator(results).generate_summary()
    manager.save_summary_report(run_dir, summary, metadata)

    assert run_dir.name.startswith("run_001_")
    assert (run_dir / "snapshots.csv").exists()
    assert (run_dir / "summary.md").exists()
    assert manager.load_results(run_dir)["steps"] == 20
    assert manager.list_scenario_runs("smoke")[0]["run_id"] == run_dir.name


def test_cli_runs_without_saving(capsys):
    assert main(["--steps", "30", "--no-save"]) == 0
    assert "Key Metrics" in capsys.readouterr().out


def test_cli_rejects_invalid_watermarks(capsys):
    assert main(["--min", "0.9", "--no-save"]) == 2


def test_charts_written(tmp_path):
    results = BufferSimulationEngine(SimulationConfig()).run_simulation(40)
    paths = BufferChartGenerator().generate_charts(results, tmp_path / "charts")
    names = {p.name for p in paths}
    assert {"buffer_ratio.png", "holdings.png"} <= names
    assert all(p.exists() for p in paths)
