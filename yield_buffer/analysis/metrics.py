#!/usr/bin/env python3
"""
Buffer Metrics

Turns simulation results into pandas frames and summary statistics: how much
of the time each buffer stayed inside its watermarks, how often the vault was
touched, how much yield reached liquidity providers, and whether the
controller's accounting held up at every step.
"""

from typing import Any, Dict, List

import numpy as np
import pandas as pd

# smallest units a run may lose to vault share rounding
VAULT_ROUNDING_TOLERANCE = 100


class BufferMetricsCalculator:
    """Buffer and yield metrics calculator"""

    def __init__(self, results: Dict[str, Any]):
        self.results = results
        self.config = results.get("config", {})
        buffer = self.config.get("buffer", {})
        self.min_ratio = buffer.get("min_buffer_ratio", 0.0)
        self.target_ratio = buffer.get("target_buffer_ratio", 0.0)
        self.max_ratio = buffer.get("max_buffer_ratio", 1.0)

    def snapshots_frame(self) -> pd.DataFrame:
        """Per-step controller state, indexed by step"""
        frame = pd.DataFrame(self.results.get("snapshots", []))
        if frame.empty:
            return frame
        return frame.set_index("step")

    def events_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(self.results.get("events", []))
        if frame.empty:
            return pd.DataFrame(columns=["step", "type"])
        return frame

    def calculate_ratio_metrics(self, label: str) -> Dict[str, float]:
        """Ratio statistics for one side ("a" or "b"); empty steps are ignored"""
        frame = self.snapshots_frame()
        column = f"{label}_buffer_ratio"
        if frame.empty or column not in frame:
            return {}
        ratios = pd.to_numeric(frame[column], errors="coerce").dropna().to_numpy(dtype=float)
        if len(ratios) == 0:
            return {}

        within_band = (ratios >= self.min_ratio) & (ratios <= self.max_ratio)
        return {
            "mean_ratio": float(np.mean(ratios)),
            "min_ratio": float(np.min(ratios)),
            "max_ratio": float(np.max(ratios)),
            "std_ratio": float(np.std(ratios)),
            "time_within_band_rate": float(np.mean(within_band)),
            "mean_distance_from_target": float(np.mean(np.abs(ratios - self.target_ratio))),
        }

    def calculate_activity_metrics(self) -> Dict[str, Any]:
        """Counts of trades, vault movements, distributions and sweeps"""
        events = self.events_frame()
        counts = events["type"].value_counts().to_dict() if not events.empty else {}

        rebalances = events[events["type"] == "rebalance"] if not events.empty else events
        reasons = rebalances["reason"].value_counts().to_dict() if "reason" in rebalances else {}

        return {
            "trades": int(counts.get("trade", 0)),
            "liquidity_changes": int(counts.get("liquidity_change", 0)),
            "rebalances": int(counts.get("rebalance", 0)),
            "rebalance_reasons": {k: int(v) for k, v in reasons.items()},
            "distributions": int(counts.get("distribution", 0)),
            "sweeps": int(counts.get("sweep", 0)),
            "failed_operations": int(self.results.get("failed_operations", 0)),
        }

    def calculate_yield_metrics(self) -> Dict[str, int]:
        """Total yield handed to liquidity providers per side"""
        events = self.events_frame()
        if events.empty or "amount_a" not in events:
            return {"distributed_a": 0, "distributed_b": 0}
        distributions = events[events["type"] == "distribution"]
        return {
            "distributed_a": int(distributions["amount_a"].fillna(0).sum()),
            "distributed_b": int(distributions["amount_b"].fillna(0).sum()),
        }

    def check_invariants(self) -> List[str]:
        """Accounting violations found in the snapshots; empty when all held"""
        frame = self.snapshots_frame()
        violations = []
        if frame.empty:
            return violations

        for label in ("a", "b"):
            for column in (f"{label}_idle", f"{label}_shares", f"{label}_principal"):
                negative = frame[frame[column] < 0]
                if not negative.empty:
                    violations.append(f"{column} negative at steps {list(negative.index[:5])}")

            bound = frame[frame[f"{label}_has_vault"]]
            shortfall = bound[f"{label}_principal"] - bound[f"{label}_idle"] - bound[f"{label}_vault_value"]
            short = bound[shortfall > VAULT_ROUNDING_TOLERANCE]
            if not short.empty:
                violations.append(f"side {label} holdings below principal at steps {list(short.index[:5])}")

            unbound = frame[~frame[f"{label}_has_vault"]]
            held = unbound[(unbound[f"{label}_idle"] != 0) | (unbound[f"{label}_shares"] != 0)]
            if not held.empty:
                violations.append(f"side {label} holds balances without a vault at steps {list(held.index[:5])}")

        return violations

    def generate_summary(self) -> Dict[str, Any]:
        """Key metrics for the run summary report"""
        activity = self.calculate_activity_metrics()
        yields = self.calculate_yield_metrics()
        ratio_a = self.calculate_ratio_metrics("a")
        ratio_b = self.calculate_ratio_metrics("b")

        key_metrics = {
            "steps": self.results.get("steps", 0),
            "trades": activity["trades"],
            "rebalances": activity["rebalances"],
            "distributions": activity["distributions"],
            "sweeps": activity["sweeps"],
            "failed_operations": activity["failed_operations"],
            "distributed_amount_a": yields["distributed_a"],
            "distributed_amount_b": yields["distributed_b"],
        }
        if ratio_a:
            key_metrics["within_band_percentage_a"] = ratio_a["time_within_band_rate"]
        if ratio_b:
            key_metrics["within_band_percentage_b"] = ratio_b["time_within_band_rate"]

        return {
            "key_metrics": key_metrics,
            "ratio_metrics": {"a": ratio_a, "b": ratio_b},
            "rebalance_reasons": activity["rebalance_reasons"],
            "invariant_violations": self.check_invariants(),
        }
