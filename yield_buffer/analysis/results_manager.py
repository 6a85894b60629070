#!/usr/bin/env python3
"""
Results Management System

Numbered run directories holding results JSON, metadata, CSV exports, a
markdown summary and the run's charts.
"""

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd


@dataclass
class RunMetadata:
    """Metadata for a single simulation run"""
    run_id: str
    scenario_name: str
    timestamp: str
    parameters: Dict[str, Any]
    execution_time: float
    status: str = "completed"


class ResultsManager:
    """Handles results storage and run numbering"""

    def __init__(self, base_results_dir: str = "results"):
        self.base_results_dir = Path(base_results_dir)
        self._lock = threading.Lock()
        self.base_results_dir.mkdir(parents=True, exist_ok=True)

    def create_run_directory(self, scenario_name: str) -> Path:
        """
        Create a new run directory with sequential numbering

        Args:
            scenario_name: Name of the simulated scenario

        Returns:
            Path to the created run directory
        """
        with self._lock:
            scenario_dir = self.base_results_dir / scenario_name
            scenario_dir.mkdir(exist_ok=True)

            run_number = self._get_next_run_number(scenario_dir)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

            run_dir = scenario_dir / f"run_{run_number:03d}_{timestamp}"
            run_dir.mkdir(exist_ok=True)
            (run_dir / "charts").mkdir(exist_ok=True)
            return run_dir

    def _get_next_run_number(self, scenario_dir: Path) -> int:
        run_numbers = []
        for run_dir in scenario_dir.iterdir():
            if not run_dir.is_dir() or not run_dir.name.startswith("run_"):
                continue
            try:
                # Parse run_XXX_timestamp format
                run_numbers.append(int(run_dir.name.split("_")[1]))
            except (ValueError, IndexError):
                continue
        return max(run_numbers) + 1 if run_numbers else 1

    def save_results(self, run_dir: Path, results: Dict[str, Any], metadata: RunMetadata) -> Path:
        """
        Save simulation results, metadata and CSV exports to the run directory

        Returns:
            Path to the saved results file
        """
        results_file = run_dir / "results.json"
        with open(results_file, 'w') as f:
            json.dump(self._make_serializable(results), f, indent=2)

        with open(run_dir / "metadata.json", 'w') as f:
            json.dump(asdict(metadata), f, indent=2)

        for name in ("snapshots", "events"):
            rows = results.get(name)
            if rows:
                pd.DataFrame(rows).to_csv(run_dir / f"{name}.csv", index=False)

        return results_file

    def save_summary_report(self, run_dir: Path, summary: Dict[str, Any], metadata: RunMetadata) -> Path:
        """Save a markdown summary report"""
        summary_file = run_dir / "summary.md"
        with open(summary_file, 'w') as f:
            f.write(self._generate_markdown_summary(summary, metadata))
        return summary_file

    def _generate_markdown_summary(self, summary: Dict[str, Any], metadata: RunMetadata) -> str:
        md_content = ["# Buffer Simulation Run Summary\n"]

        md_content.append("## Run Information")
        md_content.append(f"- **Scenario**: {metadata.scenario_name}")
        md_content.append(f"- **Timestamp**: {metadata.timestamp}")
        md_content.append(f"- **Execution Time**: {metadata.execution_time:.2f}s")
        md_content.append("")

        md_content.append("## Key Metrics")
        for key, value in summary.get("key_metrics", {}).items():
            title = key.replace('_', ' ').title()
            if isinstance(value, float) and "percentage" in key:
                md_content.append(f"- **{title}**: {value:.2%}")
            elif isinstance(value, int):
                md_content.append(f"- **{title}**: {value:,}")
            else:
                md_content.append(f"- **{title}**: {value}")
        md_content.append("")

        reasons = summary.get("rebalance_reasons", {})
        if reasons:
            md_content.append("## Rebalance Triggers")
            for reason, count in reasons.items():
                md_content.append(f"- {reason}: {count}")
            md_content.append("")

        md_content.append("## Accounting Checks")
        violations = summary.get("invariant_violations", [])
        if violations:
            for violation in violations:
                md_content.append(f"- {violation}")
        else:
            md_content.append("- All checks passed")
        md_content.append("")

        md_content.append("## Generated Charts")
        md_content.append("- Buffer Ratio: `charts/buffer_ratio.png`")
        md_content.append("- Holdings: `charts/holdings.png`")
        md_content.append("- Yield Distributions: `charts/yield_distributions.png`")

        return "\n".join(md_content)

    def list_scenario_runs(self, scenario_name: str) -> List[Dict[str, Any]]:
        """List all runs for a specific scenario"""
        scenario_dir = self.base_results_dir / scenario_name
        if not scenario_dir.exists():
            return []

        runs = []
        for run_dir in scenario_dir.iterdir():
            if not run_dir.is_dir() or not run_dir.name.startswith("run_"):
                continue
            metadata = self.load_metadata(run_dir)
            entry = {"run_id": run_dir.name, "path": str(run_dir)}
            if metadata is not None:
                entry.update(asdict(metadata))
                entry["run_id"] = run_dir.name
            runs.append(entry)

        runs.sort(key=lambda x: x["run_id"])
        return runs

    def load_results(self, run_path: Path) -> Optional[Dict[str, Any]]:
        """Load results from a run directory"""
        results_file = run_path / "results.json"
        if not results_file.exists():
            return None
        try:
            with open(results_file, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError:
            return None

    def load_metadata(self, run_path: Path) -> Optional[RunMetadata]:
        metadata_file = run_path / "metadata.json"
        if not metadata_file.exists():
            return None
        try:
            with open(metadata_file, 'r') as f:
                return RunMetadata(**json.load(f))
        except (json.JSONDecodeError, TypeError):
            return None

    def _make_serializable(self, obj: Any) -> Any:
        """Convert objects to JSON-serializable format"""
        if isinstance(obj, bool) or obj is None or isinstance(obj, (str, float)):
            return obj
        if isinstance(obj, int):
            # amounts can exceed what JSON readers hold exactly
            return obj if abs(obj) < 2 ** 53 else str(obj)
        if hasattr(obj, 'tolist'):  # numpy arrays
            return obj.tolist()
        if hasattr(obj, 'item'):  # numpy scalars
            return obj.item()
        if isinstance(obj, dict):
            return {str(k): self._make_serializable(v) for k, v in obj.items()}
        if isinstance(obj, (list, tuple, set, frozenset)):
            return [self._make_serializable(item) for item in obj]
        if hasattr(obj, '__dict__'):
            return self._make_serializable(vars(obj))
        return str(obj)
