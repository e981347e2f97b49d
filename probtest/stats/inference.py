"""Binomial proportion inference for pass/fail verdicts.

Provides point estimates, confidence intervals (Wilson score or normal
approximation), the one-sided z-test used by statistical explanations, and
the power-based sample size calculation. Normal quantiles come from
scipy.stats.norm; everything else is plain math.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from scipy.stats import norm

from probtest.errors import StatisticalInputError

# Sentinel returned by required_successes() when the pass rate is NaN.
UNREACHABLE = 2**63 - 1


class CIMethod(str, Enum):
    """Confidence interval construction method."""

    WILSON = "wilson"
    NORMAL = "normal"


@dataclass(frozen=True)
class ProportionEstimate:
    """Point estimate and two-sided confidence interval for a proportion."""

    point_estimate: float
    sample_size: int
    lower_bound: float
    upper_bound: float
    confidence_level: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.point_estimate <= 1.0:
            raise StatisticalInputError(
                f"Point estimate must be in [0, 1], got: {self.point_estimate}"
            )
        if self.sample_size <= 0:
            raise StatisticalInputError(
                f"Sample size must be positive, got: {self.sample_size}"
            )
        if not 0.0 <= self.lower_bound <= self.upper_bound <= 1.0:
            raise StatisticalInputError(
                "Bounds must satisfy 0 <= lower <= upper <= 1, got: "
                f"[{self.lower_bound}, {self.upper_bound}]"
            )
        if not 0.0 < self.confidence_level < 1.0:
            raise StatisticalInputError(
                f"Confidence level must be in (0, 1), got: {self.confidence_level}"
            )

    @property
    def interval_width(self) -> float:
        return self.upper_bound - self.lower_bound

    @property
    def margin_of_error(self) -> float:
        return self.interval_width / 2.0


@dataclass(frozen=True)
class OneSidedTestResult:
    """Result of the one-sided test H0: p >= p0 against H1: p < p0."""

    z_statistic: float
    p_value: float


@dataclass(frozen=True)
class SampleSizeRequirement:
    """Samples needed to detect a drop from null_rate to alternative_rate."""

    required_samples: int
    confidence: float
    power: float
    min_detectable_effect: float
    null_rate: float
    alternative_rate: float

    def __post_init__(self) -> None:
        if self.required_samples < 1:
            raise StatisticalInputError(
                f"Required samples must be positive, got: {self.required_samples}"
            )
        for name in ("confidence", "power", "min_detectable_effect"):
            value = getattr(self, name)
            if not 0.0 < value < 1.0:
                raise StatisticalInputError(f"{name} must be in (0, 1), got: {value}")
        for name in ("null_rate", "alternative_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise StatisticalInputError(f"{name} must be in [0, 1], got: {value}")


def _validate_counts(successes: int, n: int) -> None:
    if n <= 0:
        raise StatisticalInputError(f"Trials must be positive, got: {n}")
    if successes < 0:
        raise StatisticalInputError(f"Successes must be non-negative, got: {successes}")
    if successes > n:
        raise StatisticalInputError(
            f"Successes ({successes}) cannot exceed trials ({n})"
        )


def _validate_confidence(confidence_level: float) -> None:
    if not 0.0 < confidence_level < 1.0:
        raise StatisticalInputError(
            f"Confidence level must be in (0, 1), got: {confidence_level}"
        )


def z_score_one_sided(confidence_level: float) -> float:
    """Return z such that P(Z <= z) = confidence_level."""
    _validate_confidence(confidence_level)
    return float(norm.ppf(confidence_level))


def z_score_two_sided(confidence_level: float) -> float:
    """Return z such that P(|Z| <= z) = confidence_level."""
    _validate_confidence(confidence_level)
    alpha = 1.0 - confidence_level
    return float(norm.ppf(1.0 - alpha / 2.0))


def standard_error(successes: int, n: int) -> float:
    """Standard error of the proportion estimate, sqrt(p(1-p)/n).

    Collapses to 0 when every trial passed or every trial failed.
    """
    _validate_counts(successes, n)
    p_hat = successes / n
    return math.sqrt(p_hat * (1.0 - p_hat) / n)


def _wilson_bounds(successes: int, n: int, z: float) -> tuple[float, float]:
    p_hat = successes / n
    z_squared = z * z
    denominator = 1.0 + z_squared / n
    center = (p_hat + z_squared / (2.0 * n)) / denominator
    margin = (
        z * math.sqrt(p_hat * (1.0 - p_hat) / n + z_squared / (4.0 * n * n))
        / denominator
    )
    return max(0.0, center - margin), min(1.0, center + margin)


def proportion_estimate(
    successes: int,
    n: int,
    confidence_level: float = 0.95,
    method: CIMethod = CIMethod.WILSON,
) -> ProportionEstimate:
    """Compute the point estimate and a two-sided confidence interval.

    Args:
        successes: Number of successful trials.
        n: Number of trials (must be positive).
        confidence_level: Two-sided confidence level in (0, 1).
        method: WILSON (default) or NORMAL (p_hat +/- z * SE).

    Returns:
        ProportionEstimate with bounds clamped to [0, 1].

    Raises:
        StatisticalInputError: If n <= 0, successes is outside [0, n] or
            confidence_level is outside (0, 1).
    """
    _validate_counts(successes, n)
    _validate_confidence(confidence_level)

    p_hat = successes / n
    z = z_score_two_sided(confidence_level)

    if CIMethod(method) is CIMethod.NORMAL:
        margin = z * math.sqrt(p_hat * (1.0 - p_hat) / n)
        lower = max(0.0, p_hat - margin)
        upper = min(1.0, p_hat + margin)
    else:
        lower, upper = _wilson_bounds(successes, n, z)

    # Wilson bounds can drift past p_hat by float noise at the extremes
    lower = min(lower, p_hat)
    upper = max(upper, p_hat)

    return ProportionEstimate(
        point_estimate=p_hat,
        sample_size=n,
        lower_bound=lower,
        upper_bound=upper,
        confidence_level=confidence_level,
    )


def wilson_lower_bound(successes: int, n: int, confidence_level: float) -> float:
    """One-sided Wilson score lower bound for the true proportion.

    Uses z at 1 - alpha (1.645 for 95%), not 1 - alpha/2. Stays below 1.0
    for a perfect record, which keeps thresholds derived from a perfect
    baseline attainable.
    """
    _validate_counts(successes, n)
    z = z_score_one_sided(confidence_level)
    lower, _ = _wilson_bounds(successes, n, z)
    return lower


def required_successes(n: int, min_pass_rate: float) -> int:
    """Minimum number of successes out of n that meets min_pass_rate.

    Always rounds up: ceil(n * min_pass_rate). Float noise in the product is
    removed first so that e.g. 10 * 0.7 requires 7, not 8. A NaN rate yields
    UNREACHABLE so that nothing can be reported as already passed.
    """
    if math.isnan(min_pass_rate):
        return UNREACHABLE
    return math.ceil(round(n * min_pass_rate, 9))


def z_test_statistic(observed_rate: float, hypothesized_rate: float, n: int) -> float:
    """z = (p_hat - p0) / sqrt(p0(1-p0)/n), or 0 when the SE is zero."""
    if n <= 0:
        return 0.0
    se = math.sqrt(hypothesized_rate * (1.0 - hypothesized_rate) / n)
    if se <= 0:
        return 0.0
    return (observed_rate - hypothesized_rate) / se


def one_sided_p_value(z: float) -> float:
    """Upper-tail probability P(Z > z)."""
    return float(norm.sf(z))


def one_sided_test(
    observed_successes: int, n: int, null_rate: float
) -> OneSidedTestResult:
    """One-sided binomial proportion z-test against null_rate.

    Raises:
        StatisticalInputError: If the counts are invalid or null_rate is
            outside [0, 1].
    """
    _validate_counts(observed_successes, n)
    if not 0.0 <= null_rate <= 1.0:
        raise StatisticalInputError(f"Null rate must be in [0, 1], got: {null_rate}")
    z = z_test_statistic(observed_successes / n, null_rate, n)
    return OneSidedTestResult(z_statistic=z, p_value=one_sided_p_value(z))


def _validate_power_inputs(
    baseline_rate: float, min_detectable_effect: float, confidence: float, power: float
) -> float:
    if not 0.0 < baseline_rate < 1.0:
        raise StatisticalInputError(
            f"Baseline rate must be in (0, 1), got: {baseline_rate}"
        )
    if not 0.0 < min_detectable_effect < 1.0:
        raise StatisticalInputError(
            f"Minimum detectable effect must be in (0, 1), got: {min_detectable_effect}"
        )
    if not 0.0 < confidence < 1.0:
        raise StatisticalInputError(f"Confidence must be in (0, 1), got: {confidence}")
    if not 0.0 < power < 1.0:
        raise StatisticalInputError(f"Power must be in (0, 1), got: {power}")
    alternative = baseline_rate - min_detectable_effect
    if alternative < 0.0:
        raise StatisticalInputError(
            f"Effect size {min_detectable_effect} exceeds baseline rate {baseline_rate}"
        )
    return alternative


def sample_size_for_power(
    baseline_rate: float,
    min_detectable_effect: float,
    confidence: float = 0.95,
    power: float = 0.80,
) -> SampleSizeRequirement:
    """Samples needed to detect a degradation of min_detectable_effect.

    One-sided test of p0 = baseline_rate against p1 = p0 - effect:
    n = ((z_alpha * sigma0 + z_beta * sigma1) / effect)^2, rounded up.

    Args:
        baseline_rate: Null-hypothesis success rate, in (0, 1).
        min_detectable_effect: Absolute drop to detect, in (0, 1).
        confidence: 1 - alpha, in (0, 1).
        power: 1 - beta, in (0, 1).

    Returns:
        SampleSizeRequirement with at least one required sample.
    """
    p1 = _validate_power_inputs(baseline_rate, min_detectable_effect, confidence, power)
    p0 = baseline_rate

    sigma0 = math.sqrt(p0 * (1.0 - p0))
    sigma1 = math.sqrt(p1 * (1.0 - p1))
    z_alpha = float(norm.ppf(confidence))
    z_beta = float(norm.ppf(power))

    n = ((z_alpha * sigma0 + z_beta * sigma1) / min_detectable_effect) ** 2

    return SampleSizeRequirement(
        required_samples=max(1, math.ceil(n)),
        confidence=confidence,
        power=power,
        min_detectable_effect=min_detectable_effect,
        null_rate=p0,
        alternative_rate=p1,
    )


def achieved_power(
    n: int,
    baseline_rate: float,
    min_detectable_effect: float,
    confidence: float = 0.95,
) -> float:
    """Power achieved by n samples for the given effect and confidence."""
    if n <= 0:
        raise StatisticalInputError(f"Sample size must be positive, got: {n}")
    p1 = _validate_power_inputs(baseline_rate, min_detectable_effect, confidence, 0.5)
    p0 = baseline_rate
    sigma0 = math.sqrt(p0 * (1.0 - p0))
    sigma1 = math.sqrt(p1 * (1.0 - p1))
    if sigma1 == 0.0:
        return 1.0
    z_alpha = float(norm.ppf(confidence))
    z_beta = (min_detectable_effect * math.sqrt(n) - z_alpha * sigma0) / sigma1
    return float(norm.cdf(z_beta))
