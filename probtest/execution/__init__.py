"""Trial execution: pacing, budgets, early termination, and outcome aggregation.

The runner itself lives in probtest.execution.runner and is re-exported from
the top-level package.
"""

from probtest.execution.aggregator import Errored, Failure, SampleOutcome, SampleResultAggregator, Success
from probtest.execution.budget import BudgetExhaustedBehavior, BudgetScope, BudgetSnapshot, BudgetTracker, CostMode
from probtest.execution.early_termination import EarlyTerminationEvaluator, TerminationReason
from probtest.execution.pacing import PacingConstraints, PacingPlan, plan_pacing

__all__ = [
    "BudgetExhaustedBehavior",
    "BudgetScope",
    "BudgetSnapshot",
    "BudgetTracker",
    "CostMode",
    "EarlyTerminationEvaluator",
    "Errored",
    "Failure",
    "PacingConstraints",
    "PacingPlan",
    "SampleOutcome",
    "SampleResultAggregator",
    "Success",
    "TerminationReason",
    "plan_pacing",
]
