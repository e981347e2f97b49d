"""Human-readable statistical explanations of a verdict.

An explanation records the hypothesis that was tested, the observed data,
where the threshold came from, the inference numbers and a plain-language
interpretation with caveats. It is built once, after a verdict has been
decided, and only when transparent statistics are requested.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from probtest.stats.inference import (
    one_sided_p_value,
    proportion_estimate,
    standard_error,
    wilson_lower_bound,
    z_test_statistic,
)
from probtest.stats.thresholds import (
    COMPLIANCE_ALPHA,
    Baseline,
    ThresholdOrigin,
    evaluate_feasibility,
    is_undersized,
)

SMALL_SAMPLE = 30
LIMITED_SENSITIVITY_SAMPLE = 100
NEAR_THRESHOLD_MARGIN = 0.05

# (null hypothesis framing, alternative framing, pass sentence, fail sentence)
_FRAMING: dict[ThresholdOrigin, tuple[str, str, str, str]] = {
    ThresholdOrigin.SLA: (
        "system meets SLA requirement",
        "system violates SLA",
        "The system meets its SLA requirement.",
        "This indicates the system is not meeting its SLA obligation.",
    ),
    ThresholdOrigin.SLO: (
        "system meets SLO target",
        "system falls short of SLO",
        "The system meets its SLO target.",
        "This indicates the system is falling short of its SLO target.",
    ),
    ThresholdOrigin.POLICY: (
        "system meets policy requirement",
        "system violates policy",
        "The system meets the policy requirement.",
        "This indicates a policy violation.",
    ),
    ThresholdOrigin.EMPIRICAL: (
        "no degradation from baseline",
        "degradation from baseline",
        "No degradation from baseline detected.",
        "This suggests potential degradation from the established baseline.",
    ),
    ThresholdOrigin.UNSPECIFIED: (
        "success rate meets threshold",
        "success rate below threshold",
        "The test passes.",
        "This suggests the system is not meeting its expected performance level.",
    ),
}


def format_rate(rate: float) -> str:
    """Format a rate in [0, 1] as a percentage, e.g. 0.951 -> '95.1%'."""
    return f"{rate * 100:.1f}%"


@dataclass(frozen=True)
class CovariateMisalignment:
    """A condition that differs between the baseline run and this run."""

    key: str
    baseline_value: str
    test_value: str


@dataclass(frozen=True)
class HypothesisStatement:
    null_hypothesis: str
    alternative_hypothesis: str
    test_type: str = "One-sided binomial proportion test"


@dataclass(frozen=True)
class ObservedData:
    samples: int
    successes: int

    @property
    def observed_rate(self) -> float:
        return self.successes / self.samples if self.samples else 0.0


@dataclass(frozen=True)
class BaselineReference:
    source: str
    generated_at: str | None
    baseline_samples: int
    baseline_successes: int
    baseline_rate: float
    derivation: str
    threshold: float


@dataclass(frozen=True)
class InferenceNumbers:
    """SE, confidence interval and z-test; all None when nothing ran."""

    confidence_level: float
    standard_error: float | None = None
    ci_lower: float | None = None
    ci_upper: float | None = None
    z_statistic: float | None = None
    p_value: float | None = None


@dataclass(frozen=True)
class VerdictInterpretation:
    passed: bool
    technical_result: str
    plain_language: str
    caveats: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StatisticalExplanation:
    test_name: str
    hypothesis: HypothesisStatement
    observed: ObservedData
    baseline: BaselineReference
    inference: InferenceNumbers
    verdict: VerdictInterpretation
    threshold_origin: ThresholdOrigin = ThresholdOrigin.UNSPECIFIED
    contract_ref: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["threshold_origin"] = self.threshold_origin.value
        data["observed"]["observed_rate"] = self.observed.observed_rate
        return data

    def render(self) -> str:
        """Plain-text rendering for terminals and failure messages."""
        obs = self.observed
        inf = self.inference
        lines = [
            f"Statistical analysis: {self.test_name}",
            f"  H0: {self.hypothesis.null_hypothesis}",
            f"  H1: {self.hypothesis.alternative_hypothesis}",
            f"  Test: {self.hypothesis.test_type}",
            f"  Observed: {obs.successes}/{obs.samples} ({format_rate(obs.observed_rate)})",
            f"  Threshold: {format_rate(self.baseline.threshold)} "
            f"[{self.baseline.source}] {self.baseline.derivation}",
        ]
        if inf.ci_lower is not None and inf.ci_upper is not None:
            lines.append(
                f"  {int(round(inf.confidence_level * 100))}% CI: "
                f"[{format_rate(inf.ci_lower)}, {format_rate(inf.ci_upper)}]"
                f", SE={inf.standard_error:.4f}"
            )
        if inf.z_statistic is not None and inf.p_value is not None:
            lines.append(f"  z={inf.z_statistic:.3f}, p={inf.p_value:.4f}")
        lines.append(f"  Verdict: {self.verdict.technical_result}")
        lines.append(f"  {self.verdict.plain_language}")
        for caveat in self.verdict.caveats:
            lines.append(f"  - {caveat}")
        return "\n".join(lines)


def build_explanation(
    test_name: str,
    samples: int,
    successes: int,
    threshold: float,
    passed: bool,
    confidence_level: float = 0.95,
    baseline: Baseline | None = None,
    threshold_origin: ThresholdOrigin = ThresholdOrigin.UNSPECIFIED,
    contract_ref: str = "",
    misalignments: list[CovariateMisalignment] | None = None,
    termination_note: str | None = None,
) -> StatisticalExplanation:
    """Build the explanation for a decided verdict.

    Args:
        test_name: Name shown in the explanation header.
        samples: Samples that counted towards the verdict.
        successes: Successful samples among them.
        threshold: Minimum pass rate that was applied.
        passed: The decided outcome; never recomputed here.
        confidence_level: Confidence for the interval and derivation text.
        baseline: Prior measurement the threshold came from, if any.
        threshold_origin: Frames the hypotheses and verdict sentence.
        contract_ref: Reference to the document that set the threshold.
        misalignments: Covariates that differ from the baseline run.
        termination_note: Why the run stopped early, if it did.

    Returns:
        A StatisticalExplanation.
    """
    origin = ThresholdOrigin(threshold_origin)
    h0_text, h1_text, pass_text, fail_text = _FRAMING[origin]

    hypothesis = HypothesisStatement(
        null_hypothesis=f"True success rate π ≥ {format_rate(threshold)} ({h0_text})",
        alternative_hypothesis=f"True success rate π < {format_rate(threshold)} ({h1_text})",
    )
    observed = ObservedData(samples=samples, successes=successes)
    observed_rate = observed.observed_rate

    if baseline is None:
        reference = BaselineReference(
            source="(inline threshold)",
            generated_at=None,
            baseline_samples=0,
            baseline_successes=0,
            baseline_rate=0.0,
            derivation="Threshold specified directly in the trial configuration",
            threshold=threshold,
        )
    else:
        lower = wilson_lower_bound(baseline.successes, baseline.samples, confidence_level)
        reference = BaselineReference(
            source=baseline.source,
            generated_at=baseline.generated_at,
            baseline_samples=baseline.samples,
            baseline_successes=baseline.successes,
            baseline_rate=baseline.rate,
            derivation=(
                f"Lower bound of {int(confidence_level * 100)}% CI = "
                f"{format_rate(lower)}, min pass rate = {format_rate(threshold)}"
            ),
            threshold=threshold,
        )

    inference = _build_inference(samples, successes, confidence_level, threshold)

    if passed and baseline is not None:
        plain = (
            f"The observed success rate of {format_rate(observed_rate)} is consistent "
            f"with the baseline expectation of {format_rate(baseline.rate)}. {pass_text}"
        )
    elif passed:
        plain = (
            f"The observed success rate of {format_rate(observed_rate)} meets the "
            f"required threshold of {format_rate(threshold)}. {pass_text}"
        )
    else:
        plain = (
            f"The observed success rate of {format_rate(observed_rate)} falls below "
            f"the required threshold of {format_rate(threshold)}. {fail_text}"
        )

    caveats = _build_caveats(samples, observed_rate, threshold, misalignments or [])
    if baseline is None and origin in (ThresholdOrigin.UNSPECIFIED, ThresholdOrigin.EMPIRICAL):
        caveats.append(
            "Using inline threshold (no baseline). For statistically-derived "
            "thresholds with confidence intervals, measure a baseline first."
        )
    if (origin.is_compliance or contract_ref) and samples > 0:
        if 0.0 < threshold < 1.0 and is_undersized(samples, threshold):
            needed = evaluate_feasibility(samples, threshold, 1.0 - COMPLIANCE_ALPHA)
            caveats.append(
                f"Warning: sample not sized for compliance evidence (need "
                f"{needed.minimum_samples}). With n={samples} and target of "
                f"{format_rate(threshold)}, even zero failures would not provide "
                f"sufficient statistical evidence of compliance "
                f"(α={COMPLIANCE_ALPHA:.3f}). A PASS at this sample size is a "
                f"smoke-test-level observation; a FAIL remains a reliable "
                f"indication of non-conformance."
            )
    if termination_note:
        caveats.append(termination_note)

    return StatisticalExplanation(
        test_name=test_name,
        hypothesis=hypothesis,
        observed=observed,
        baseline=reference,
        inference=inference,
        verdict=VerdictInterpretation(
            passed=passed,
            technical_result="PASS" if passed else "FAIL",
            plain_language=plain,
            caveats=caveats,
        ),
        threshold_origin=origin,
        contract_ref=contract_ref,
    )


def _build_inference(
    samples: int, successes: int, confidence_level: float, threshold: float
) -> InferenceNumbers:
    if samples <= 0:
        return InferenceNumbers(confidence_level=confidence_level)
    estimate = proportion_estimate(successes, samples, confidence_level)
    z = z_test_statistic(estimate.point_estimate, threshold, samples)
    return InferenceNumbers(
        confidence_level=confidence_level,
        standard_error=standard_error(successes, samples),
        ci_lower=estimate.lower_bound,
        ci_upper=estimate.upper_bound,
        z_statistic=z,
        p_value=one_sided_p_value(z),
    )


def _build_caveats(
    samples: int,
    observed_rate: float,
    threshold: float,
    misalignments: list[CovariateMisalignment],
) -> list[str]:
    caveats: list[str] = []

    # Misalignment undermines the baseline itself, so it goes first
    if misalignments:
        details = ", ".join(
            f"{m.key} (baseline={m.baseline_value}, test={m.test_value})"
            for m in misalignments
        )
        caveats.append(
            "Covariate misalignment detected: the test conditions differ from the "
            f"baseline. Misaligned covariates: {details}. Statistical comparison "
            "may be less reliable."
        )

    if samples < SMALL_SAMPLE:
        caveats.append(
            f"Small sample size (n={samples}). Statistical conclusions should be "
            "interpreted with caution. Consider increasing sample size for more "
            "reliable results."
        )
    elif samples < LIMITED_SENSITIVITY_SAMPLE:
        caveats.append(
            f"With n={samples} samples, subtle performance changes may not be "
            "detectable. For higher sensitivity, consider increasing sample size."
        )
    else:
        margin = observed_rate - threshold
        if 0 < margin < NEAR_THRESHOLD_MARGIN:
            caveats.append(
                f"The observed rate ({format_rate(observed_rate)}) is close to the "
                f"min pass rate ({format_rate(threshold)}). Small fluctuations in "
                "future runs may cause different verdicts."
            )

    if samples > 0 and observed_rate == 1.0:
        caveats.append(
            "Perfect success rate observed. This may indicate insufficient test "
            "coverage or a test that doesn't adequately challenge the system."
        )
    elif samples > 0 and observed_rate == 0.0:
        caveats.append(
            "Zero success rate observed. This indicates a fundamental failure "
            "that may warrant investigation before further testing."
        )

    return caveats
