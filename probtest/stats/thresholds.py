"""Baseline-derived pass thresholds and sample size feasibility.

A hand-picked pass rate ignores sampling noise: a baseline that observed
951/1000 successes does not justify a 95.1% threshold for a 100-sample test,
which would fail about half the time on an unchanged system. The helpers
here derive thresholds from a prior baseline measurement instead, and check
whether a configured sample size can ever produce verification-grade
evidence for a target rate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from probtest.errors import StatisticalInputError
from probtest.stats.inference import wilson_lower_bound, z_score_one_sided

# Thresholds whose implied confidence falls below this are flagged unsound.
SOUND_CONFIDENCE = 0.80

# Significance level used to judge compliance-style targets (SLA/SLO/POLICY).
COMPLIANCE_ALPHA = 0.001

_BISECTION_TOLERANCE = 1e-4
_BISECTION_MAX_ITERATIONS = 100


class ThresholdOrigin(str, Enum):
    """Where a minimum pass rate came from."""

    SLA = "sla"
    SLO = "slo"
    POLICY = "policy"
    EMPIRICAL = "empirical"
    UNSPECIFIED = "unspecified"

    @property
    def is_compliance(self) -> bool:
        return self in (ThresholdOrigin.SLA, ThresholdOrigin.SLO, ThresholdOrigin.POLICY)


class DerivationApproach(str, Enum):
    """How a threshold was obtained from a baseline."""

    SAMPLE_SIZE_FIRST = "sample_size_first"
    THRESHOLD_FIRST = "threshold_first"


@dataclass(frozen=True)
class Baseline:
    """A prior empirical measurement of the procedure under test."""

    samples: int
    successes: int
    generated_at: str | None = None
    source: str = "(inline)"

    def __post_init__(self) -> None:
        if self.samples <= 0:
            raise StatisticalInputError(
                f"Baseline samples must be positive, got: {self.samples}"
            )
        if not 0 <= self.successes <= self.samples:
            raise StatisticalInputError(
                f"Baseline successes must be in [0, {self.samples}], "
                f"got: {self.successes}"
            )

    @property
    def rate(self) -> float:
        return self.successes / self.samples


@dataclass(frozen=True)
class DerivedThreshold:
    """A minimum pass rate derived from a baseline.

    Attributes:
        value: The threshold itself, in [0, 1].
        approach: Which derivation produced it.
        baseline_rate: Observed baseline success rate.
        baseline_samples: Baseline sample count.
        test_samples: Sample count of the test the threshold is meant for.
        confidence: Requested confidence (sample-size-first) or implied
            confidence (threshold-first).
        is_statistically_sound: False when the implied confidence is
            below SOUND_CONFIDENCE.
    """

    value: float
    approach: DerivationApproach
    baseline_rate: float
    baseline_samples: int
    test_samples: int
    confidence: float
    is_statistically_sound: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.value <= 1.0:
            raise StatisticalInputError(
                f"Threshold value must be in [0, 1], got: {self.value}"
            )

    @property
    def gap_from_baseline(self) -> float:
        """baseline_rate - value; positive when the threshold sits below."""
        return self.baseline_rate - self.value


@dataclass(frozen=True)
class FeasibilityResult:
    """Whether a sample size can verify a target pass rate."""

    feasible: bool
    minimum_samples: int
    configured_samples: int
    target: float
    alpha: float
    criterion: str = "Wilson score one-sided lower bound"


def _check_test_inputs(test_samples: int, confidence: float) -> None:
    if test_samples <= 0:
        raise StatisticalInputError(
            f"Test samples must be positive, got: {test_samples}"
        )
    if not 0.0 < confidence < 1.0:
        raise StatisticalInputError(f"Confidence must be in (0, 1), got: {confidence}")


def derive_threshold_sample_size_first(
    baseline: Baseline, test_samples: int, confidence: float = 0.95
) -> DerivedThreshold:
    """Derive a threshold for a fixed test size and confidence.

    The threshold is the one-sided Wilson lower bound of the baseline rate,
    so an undegraded system fails the test with probability at most
    1 - confidence. For 951/1000 at 95% this gives roughly 0.938.

    Args:
        baseline: Prior measurement.
        test_samples: Planned sample count of the test.
        confidence: Desired confidence (1 - alpha).

    Returns:
        DerivedThreshold flagged as statistically sound.
    """
    _check_test_inputs(test_samples, confidence)
    value = wilson_lower_bound(baseline.successes, baseline.samples, confidence)
    return DerivedThreshold(
        value=value,
        approach=DerivationApproach.SAMPLE_SIZE_FIRST,
        baseline_rate=baseline.rate,
        baseline_samples=baseline.samples,
        test_samples=test_samples,
        confidence=confidence,
        is_statistically_sound=True,
    )


def derive_threshold_threshold_first(
    baseline: Baseline, test_samples: int, explicit_threshold: float
) -> DerivedThreshold:
    """Keep an explicit threshold and compute the confidence it implies.

    A threshold at or above the baseline rate implies a confidence of 50% or
    less and is flagged unsound.
    """
    if not 0.0 <= explicit_threshold <= 1.0:
        raise StatisticalInputError(
            f"Explicit threshold must be in [0, 1], got: {explicit_threshold}"
        )
    if test_samples <= 0:
        raise StatisticalInputError(
            f"Test samples must be positive, got: {test_samples}"
        )

    if explicit_threshold >= baseline.rate:
        implied = _bisect_confidence(baseline, explicit_threshold, 0.01, 0.5)
    else:
        implied = _bisect_confidence(baseline, explicit_threshold, 0.5, 0.9999999)

    return DerivedThreshold(
        value=explicit_threshold,
        approach=DerivationApproach.THRESHOLD_FIRST,
        baseline_rate=baseline.rate,
        baseline_samples=baseline.samples,
        test_samples=test_samples,
        confidence=implied,
        is_statistically_sound=implied >= SOUND_CONFIDENCE,
    )


def _bisect_confidence(
    baseline: Baseline, target: float, low: float, high: float
) -> float:
    # The Wilson lower bound decreases as confidence rises.
    for _ in range(_BISECTION_MAX_ITERATIONS):
        mid = (low + high) / 2.0
        bound = wilson_lower_bound(baseline.successes, baseline.samples, mid)
        if abs(bound - target) < _BISECTION_TOLERANCE:
            return mid
        if bound > target:
            low = mid
        else:
            high = mid
    return (low + high) / 2.0


def minimum_samples_for(target: float, confidence: float) -> int:
    """Smallest n whose perfect record has a Wilson lower bound >= target.

    A perfect record's bound is n / (n + z^2), which gives
    n = ceil(target * z^2 / (1 - target)). A target of 1.0 can never be
    verified; its minimum is reported as UNREACHABLE-style sys.maxsize.
    """
    if not 0.0 <= target <= 1.0:
        raise StatisticalInputError(f"Target must be in [0, 1], got: {target}")
    if target >= 1.0:
        return 2**63 - 1
    if target <= 0.0:
        return 1
    z = z_score_one_sided(confidence)
    minimum = math.ceil(target * z * z / (1.0 - target))
    # The closed form can be off by one through float rounding
    while minimum > 1 and wilson_lower_bound(minimum - 1, minimum - 1, confidence) >= target:
        minimum -= 1
    while wilson_lower_bound(minimum, minimum, confidence) < target:
        minimum += 1
    return max(1, minimum)


def evaluate_feasibility(
    samples: int, target: float, confidence: float = 0.95
) -> FeasibilityResult:
    """Check whether `samples` can verify `target` at `confidence`.

    Feasible iff even a perfect run's one-sided Wilson lower bound reaches
    the target.
    """
    _check_test_inputs(samples, confidence)
    minimum = minimum_samples_for(target, confidence)
    return FeasibilityResult(
        feasible=samples >= minimum,
        minimum_samples=minimum,
        configured_samples=samples,
        target=target,
        alpha=1.0 - confidence,
    )


def is_undersized(samples: int, target: float, alpha: float = COMPLIANCE_ALPHA) -> bool:
    """True when a perfect run of `samples` cannot give compliance evidence."""
    if not 0.0 < alpha < 1.0:
        raise StatisticalInputError(f"Alpha must be in (0, 1), got: {alpha}")
    return not evaluate_feasibility(samples, target, 1.0 - alpha).feasible
