"""Statistics: proportion inference, baseline thresholds, and verdict explanations."""

from probtest.stats.explanation import CovariateMisalignment, StatisticalExplanation, build_explanation
from probtest.stats.inference import (
    CIMethod,
    OneSidedTestResult,
    ProportionEstimate,
    SampleSizeRequirement,
    achieved_power,
    one_sided_test,
    proportion_estimate,
    required_successes,
    sample_size_for_power,
    standard_error,
    wilson_lower_bound,
)
from probtest.stats.thresholds import (
    Baseline,
    DerivedThreshold,
    FeasibilityResult,
    ThresholdOrigin,
    derive_threshold_sample_size_first,
    derive_threshold_threshold_first,
    evaluate_feasibility,
    is_undersized,
)

__all__ = [
    "Baseline",
    "CIMethod",
    "CovariateMisalignment",
    "DerivedThreshold",
    "FeasibilityResult",
    "OneSidedTestResult",
    "ProportionEstimate",
    "SampleSizeRequirement",
    "StatisticalExplanation",
    "ThresholdOrigin",
    "achieved_power",
    "build_explanation",
    "derive_threshold_sample_size_first",
    "derive_threshold_threshold_first",
    "evaluate_feasibility",
    "is_undersized",
    "one_sided_test",
    "proportion_estimate",
    "required_successes",
    "sample_size_for_power",
    "standard_error",
    "wilson_lower_bound",
]
