"""Sequential probabilistic trials with statistically sound verdicts.

Run a sample executor many times, stop as soon as the verdict can no longer
change or a budget runs out, and decide pass/fail against a minimum pass
rate::

    import probtest

    config = probtest.TrialConfig(samples=100, min_pass_rate=0.95)
    verdict = probtest.run(config, call_service)
    assert verdict.passed, verdict.failure_message()
"""

from probtest.errors import (
    ConfigurationError,
    ProbtestError,
    SampleExecutionError,
    StatisticalInputError,
)
from probtest.execution.aggregator import Errored, Failure, SampleOutcome, Success
from probtest.execution.budget import BudgetExhaustedBehavior, BudgetScope, BudgetTracker, CostMode
from probtest.execution.early_termination import TerminationReason
from probtest.execution.pacing import PacingConstraints
from probtest.execution.runner import RunPhase, RunProgress, SequentialTestRunner, run
from probtest.lifecycle.config import ExceptionPolicy, TrialConfig, TrialSettings, resolve_config
from probtest.lifecycle.verdict import Verdict
from probtest.stats.thresholds import Baseline, ThresholdOrigin

__all__ = [
    "Baseline",
    "BudgetExhaustedBehavior",
    "BudgetScope",
    "BudgetTracker",
    "ConfigurationError",
    "CostMode",
    "Errored",
    "ExceptionPolicy",
    "Failure",
    "PacingConstraints",
    "ProbtestError",
    "RunPhase",
    "RunProgress",
    "SampleExecutionError",
    "SampleOutcome",
    "SequentialTestRunner",
    "StatisticalInputError",
    "Success",
    "TerminationReason",
    "ThresholdOrigin",
    "TrialConfig",
    "TrialSettings",
    "Verdict",
    "resolve_config",
    "run",
]
