"""Report generation for trial verdicts.

Serializes Verdicts into plain dicts and writes them as YAML or JSON
reports, one entry per trial, with a summary of how many trials passed.
"""

from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any

import yaml

from probtest.lifecycle.verdict import Verdict


def verdict_to_dict(verdict: Verdict) -> dict[str, Any]:
    """Convert a Verdict into a JSON/YAML-serializable dict.

    Optional sections (estimate, budget behavior, failure details, criteria,
    explanation) are only included when present.

    Args:
        verdict: The verdict to serialize.

    Returns:
        Dict with status, rates, counts and termination details.
    """
    entry: dict[str, Any] = {
        "name": verdict.test_name,
        "status": "passed" if verdict.passed else "failed",
        "observed_rate": round(verdict.observed_rate, 6),
        "required_rate": verdict.required_rate,
        "samples_planned": verdict.samples_planned,
        "samples_executed": verdict.samples_executed,
        "successes": verdict.successes,
        "failures": verdict.failures,
        "required_successes": verdict.required_successes,
        "termination_reason": verdict.termination_reason.value,
        "elapsed_ms": round(verdict.elapsed_ms, 3),
    }

    if verdict.termination_details:
        entry["termination_details"] = verdict.termination_details
    if verdict.budget_behavior is not None:
        entry["budget_behavior"] = verdict.budget_behavior.value
    if verdict.ignored:
        entry["ignored_errors"] = verdict.ignored

    if verdict.estimate is not None:
        entry["confidence_interval"] = {
            "confidence_level": verdict.estimate.confidence_level,
            "lower": round(verdict.estimate.lower_bound, 6),
            "upper": round(verdict.estimate.upper_bound, 6),
        }

    if verdict.failure_distribution:
        entry["failure_distribution"] = dict(verdict.failure_distribution)
    if verdict.example_failures:
        entry["example_failures"] = [
            {"sample": example.sample_index, "reason": example.reason}
            for example in verdict.example_failures
        ]
    if verdict.criteria:
        entry["criteria"] = {
            name: {
                "passed": stats.passed,
                "failed": stats.failed,
                "pass_rate": round(stats.pass_rate, 6),
            }
            for name, stats in verdict.criteria.items()
        }

    if verdict.explanation is not None:
        entry["explanation"] = verdict.explanation.to_dict()

    return entry


class Reporter:
    """Collects trial verdicts and writes them as a report."""

    def __init__(self) -> None:
        self.verdicts: list[Verdict] = []

    def add_verdict(self, verdict: Verdict) -> None:
        self.verdicts.append(verdict)

    def add_verdicts(self, verdicts: list[Verdict]) -> None:
        self.verdicts.extend(verdicts)

    def generate_report(self) -> dict[str, Any]:
        """Generate the report data structure.

        Returns:
            Dictionary with a generation timestamp, a summary and one entry
            per verdict in the order they were added.
        """
        now = datetime.datetime.now(tz=datetime.timezone.utc).isoformat()
        return {
            "generated_at": now,
            "summary": self._compute_summary(),
            "trials": [verdict_to_dict(v) for v in self.verdicts],
        }

    def _compute_summary(self) -> dict[str, Any]:
        total = len(self.verdicts)
        passed = sum(1 for v in self.verdicts if v.passed)
        early = sum(1 for v in self.verdicts if v.termination_reason.is_early)
        return {
            "total": total,
            "passed": passed,
            "failed": total - passed,
            "terminated_early": early,
            "samples_executed": sum(v.samples_executed for v in self.verdicts),
            "total_duration_seconds": round(
                sum(v.elapsed_ms for v in self.verdicts) / 1000.0, 3
            ),
        }

    def write_report(self, path: Path) -> None:
        """Write the report as a JSON file.

        Args:
            path: File path to write the JSON report to.
        """
        report = self.generate_report()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(report, f, indent=2)

    def write_yaml(self, path: Path) -> None:
        """Write the report as a YAML file.

        Args:
            path: File path to write the YAML report to.
        """
        report = self.generate_report()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(
                report,
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

    def write(self, path: Path) -> None:
        """Write JSON for .json paths and YAML otherwise."""
        if path.suffix == ".json":
            self.write_report(path)
        else:
            self.write_yaml(path)
