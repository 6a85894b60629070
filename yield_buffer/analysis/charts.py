#!/usr/bin/env python3
"""
Buffer Chart Generator

Time-series charts of a simulation run: idle ratio against the watermark
band, idle/vault split of holdings, and yield handed to liquidity providers.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from .metrics import BufferMetricsCalculator

logger = logging.getLogger(__name__)


class BufferChartGenerator:
    """Generates the buffer time-series charts for one run"""

    def __init__(self):
        self._setup_styling()

    def _setup_styling(self):
        plt.style.use('default')
        plt.rcParams.update({
            'figure.figsize': (12, 8),
            'font.size': 11,
            'axes.titlesize': 14,
            'axes.labelsize': 12,
            'legend.fontsize': 10,
        })

    def generate_charts(self, results: Dict[str, Any], charts_dir: Path) -> List[Path]:
        """Write all charts into `charts_dir` and return their paths"""
        charts_dir.mkdir(parents=True, exist_ok=True)
        calculator = BufferMetricsCalculator(results)
        snapshots = calculator.snapshots_frame()
        if snapshots.empty:
            logger.warning("No snapshots recorded, skipping charts")
            return []

        config = results.get("config", {})
        names = {"a": config.get("asset_a", "asset A"), "b": config.get("asset_b", "asset B")}
        paths = [
            self._plot_buffer_ratios(calculator, snapshots, names, charts_dir),
            self._plot_holdings(snapshots, names, charts_dir),
            self._plot_distributions(calculator, names, charts_dir),
        ]
        return [p for p in paths if p is not None]

    def _plot_buffer_ratios(self, calculator, snapshots: pd.DataFrame, names: Dict[str, str], charts_dir: Path) -> Path:
        fig, axes = plt.subplots(2, 1, figsize=(14, 9), sharex=True)

        for ax, label in zip(axes, ("a", "b")):
            ratios = pd.to_numeric(snapshots[f"{label}_buffer_ratio"], errors="coerce")
            ax.axhspan(calculator.min_ratio, calculator.max_ratio, color='green', alpha=0.1, label='Watermark band')
            ax.axhline(calculator.target_ratio, color='green', linestyle='--', linewidth=1, label='Target')
            ax.plot(snapshots.index, ratios, color='navy', linewidth=1.5, label='Idle ratio')
            ax.set_ylabel('Idle / on-hand')
            ax.set_ylim(0, max(1.0, float(ratios.max(skipna=True) or 0) * 1.05))
            ax.set_title(f"{names[label]} buffer ratio", fontweight='bold')
            ax.grid(True, alpha=0.3)
            ax.legend(loc='upper right')

        axes[-1].set_xlabel('Step')
        return self._save(fig, charts_dir / "buffer_ratio.png")

    def _plot_holdings(self, snapshots: pd.DataFrame, names: Dict[str, str], charts_dir: Path) -> Path:
        fig, axes = plt.subplots(2, 1, figsize=(14, 9), sharex=True)

        for ax, label in zip(axes, ("a", "b")):
            idle = snapshots[f"{label}_idle"].astype(float)
            vault = snapshots[f"{label}_vault_value"].astype(float)
            ax.stackplot(snapshots.index, idle, vault, labels=['Idle', 'Vault'], colors=['#f4a261', '#2a9d8f'], alpha=0.8)
            ax.plot(snapshots.index, snapshots[f"{label}_principal"].astype(float), color='black', linewidth=1, label='Principal')
            ax.set_ylabel('Amount')
            ax.set_title(f"{names[label]} holdings", fontweight='bold')
            ax.grid(True, alpha=0.3)
            ax.legend(loc='upper left')

        axes[-1].set_xlabel('Step')
        return self._save(fig, charts_dir / "holdings.png")

    def _plot_distributions(self, calculator, names: Dict[str, str], charts_dir: Path):
        events = calculator.events_frame()
        if events.empty or "amount_a" not in events:
            return None
        distributions = events[events["type"] == "distribution"]
        if distributions.empty:
            return None

        fig, ax = plt.subplots(figsize=(14, 6))
        for label in ("a", "b"):
            cumulative = distributions[f"amount_{label}"].fillna(0).astype(float).cumsum()
            ax.step(distributions["step"], cumulative, where='post', linewidth=2, label=names[label])
        ax.set_xlabel('Step')
        ax.set_ylabel('Cumulative yield distributed')
        ax.set_title('Yield donated to active liquidity', fontweight='bold')
        ax.grid(True, alpha=0.3)
        ax.legend()
        return self._save(fig, charts_dir / "yield_distributions.png")

    def _save(self, fig, path: Path) -> Path:
        plt.tight_layout()
        fig.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        logger.info("Saved chart %s", path)
        return path
