#!/usr/bin/env python3
"""
Yield Buffer Simulation - Main Entry Point

Runs a controller-managed pool through a random market and saves results,
CSV exports, a summary report and charts.
"""

import argparse
import logging
import sys
import time
from datetime import datetime

from .analysis.charts import BufferChartGenerator
from .analysis.metrics import BufferMetricsCalculator
from .analysis.results_manager import ResultsManager, RunMetadata
from .core.errors import ConfigurationError
from .engine.config import BufferConfig, SimulationConfig
from .simulation.engine import BufferSimulationEngine

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Idle/vault liquidity buffer simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_buffer_simulation.py --steps 2000
  python run_buffer_simulation.py --min 0.1 --target 0.3 --max 0.6 --apr-a 0.12
  python run_buffer_simulation.py --buffer-config buffer.json --no-vault-b
  python run_buffer_simulation.py --list-results default
        """
    )

    parser.add_argument('--scenario', type=str, default='default',
                        help='Scenario name used for the results directory (default: default)')
    parser.add_argument('--steps', type=int, default=1000,
                        help='Number of simulation steps (default: 1000)')
    parser.add_argument('--seed', type=int, default=42,
                        help='Random seed (default: 42)')

    # Watermarks
    parser.add_argument('--buffer-config', type=str, metavar='PATH',
                        help='JSON file with min/target/max buffer ratios')
    parser.add_argument('--min', type=float, dest='min_ratio', help='Minimum idle ratio')
    parser.add_argument('--target', type=float, dest='target_ratio', help='Target idle ratio')
    parser.add_argument('--max', type=float, dest='max_ratio', help='Maximum idle ratio')

    # Vaults
    parser.add_argument('--apr-a', type=float, default=0.08, help='Vault APR for token0 (default: 0.08)')
    parser.add_argument('--apr-b', type=float, default=0.04, help='Vault APR for token1 (default: 0.04)')
    parser.add_argument('--no-vault-a', action='store_true', help='Leave token0 idle-only')
    parser.add_argument('--no-vault-b', action='store_true', help='Leave token1 idle-only')

    # Output
    parser.add_argument('--results-dir', type=str, default='results', help='Results root directory')
    parser.add_argument('--no-save', action='store_true', help='Do not write results to disk')
    parser.add_argument('--no-charts', action='store_true', help='Skip chart generation')
    parser.add_argument('--list-results', type=str, metavar='SCENARIO',
                        help='List all saved results for a scenario')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    return parser


def create_simulation_config(args) -> SimulationConfig:
    config = SimulationConfig()
    config.simulation_steps = args.steps
    config.random_seed = args.seed
    config.vault_apr_a = None if args.no_vault_a else args.apr_a
    config.vault_apr_b = None if args.no_vault_b else args.apr_b

    buffer = BufferConfig.from_file(args.buffer_config) if args.buffer_config else BufferConfig()
    overrides = {
        'min_buffer_ratio': args.min_ratio,
        'target_buffer_ratio': args.target_ratio,
        'max_buffer_ratio': args.max_ratio,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        buffer = buffer.with_changes(**overrides)
    config.buffer = buffer
    return config


def list_results(results_dir: str, scenario_name: str):
    runs = ResultsManager(results_dir).list_scenario_runs(scenario_name)
    if not runs:
        print(f"No saved runs for {scenario_name}")
        return
    print(f"Saved runs for {scenario_name}:")
    for run in runs:
        print(f"  {run['run_id']}  ({run.get('execution_time', 0):.2f}s)")


def run_simulation(args, config: SimulationConfig) -> int:
    print(f"Running buffer simulation: {args.steps} steps, seed {args.seed}")
    print("=" * 50)

    start = time.time()
    engine = BufferSimulationEngine(config)
    results = engine.run_simulation()
    execution_time = time.time() - start

    summary = BufferMetricsCalculator(results).generate_summary()
    print_summary(summary)

    if not args.no_save:
        manager = ResultsManager(args.results_dir)
        run_dir = manager.create_run_directory(args.scenario)
        metadata = RunMetadata(
            run_id=run_dir.name,
            scenario_name=args.scenario,
            timestamp=datetime.now().isoformat(),
            parameters=config.to_dict(),
            execution_time=execution_time,
        )
        manager.save_results(run_dir, results, metadata)
        manager.save_summary_report(run_dir, summary, metadata)
        if not args.no_charts:
            BufferChartGenerator().generate_charts(results, run_dir / "charts")
        print(f"\nResults saved to {run_dir}")

    return 1 if summary["invariant_violations"] else 0


def print_summary(summary):
    print("\nKey Metrics")
    print("-" * 30)
    for key, value in summary["key_metrics"].items():
        if isinstance(value, float):
            print(f"  {key}: {value:.2%}")
        else:
            print(f"  {key}: {value:,}")

    violations = summary["invariant_violations"]
    print(f"\nAccounting checks: {'FAILED' if violations else 'passed'}")
    for violation in violations:
        print(f"  - {violation}")


def main(argv=None) -> int:
    """Main entry point with command-line interface"""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if args.list_results:
        list_results(args.results_dir, args.list_results)
        return 0

    try:
        config = create_simulation_config(args)
    except ConfigurationError as e:
        print(f"Invalid buffer configuration: {e}")
        return 2

    return run_simulation(args, config)


if __name__ == "__main__":
    sys.exit(main())
