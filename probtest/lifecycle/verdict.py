"""Final verdicts for trial runs.

The VerdictDecider turns the aggregated outcomes and the termination reason
into a Verdict. Early-terminated runs keep the outcome their reason implies
(SUCCESS_GUARANTEED passes, IMPOSSIBILITY fails), which keeps early
termination lossless. Completed runs compare successes against
required_successes() on the executed count.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from probtest.execution.aggregator import CriterionStats, ExampleFailure, SampleResultAggregator
from probtest.execution.budget import BudgetExhaustedBehavior
from probtest.execution.early_termination import TerminationReason
from probtest.lifecycle.config import TrialConfig
from probtest.stats.explanation import StatisticalExplanation, build_explanation
from probtest.stats.inference import ProportionEstimate, proportion_estimate, required_successes

MAX_EXAMPLE_MESSAGE = 80


@dataclass(frozen=True)
class Verdict:
    """Pass/fail decision for one trial run and the evidence behind it."""

    passed: bool
    observed_rate: float
    required_rate: float
    termination_reason: TerminationReason
    samples_planned: int
    samples_executed: int
    successes: int
    failures: int
    required_successes: int
    test_name: str = "probabilistic-trial"
    termination_details: str = ""
    budget_behavior: BudgetExhaustedBehavior | None = None
    confidence: float = 0.95
    estimate: ProportionEstimate | None = None
    ignored: int = 0
    elapsed_ms: float = 0.0
    failure_distribution: dict[str, int] = field(default_factory=dict)
    example_failures: list[ExampleFailure] = field(default_factory=list)
    criteria: dict[str, CriterionStats] = field(default_factory=dict)
    explanation: StatisticalExplanation | None = None

    def summary(self) -> str:
        """One-line account of the verdict."""
        status = "passed" if self.passed else "failed"
        comparison = ">=" if self.passed else "<"
        line = (
            f"Probabilistic test {status}: {self.observed_rate * 100:.2f}% "
            f"{comparison} {self.required_rate * 100:.2f}% "
            f"({self.successes}/{self.samples_executed} samples succeeded"
        )
        if self.samples_executed != self.samples_planned:
            line += f", {self.samples_planned} planned"
        line += ")"
        if self.termination_reason is not TerminationReason.COMPLETED:
            line += f" [{self.termination_reason.value}]"
        return line

    def failure_message(self) -> str:
        """Multi-line message with execution details and example failures."""
        lines = [
            f"Probabilistic test failed. Observed pass rate="
            f"{self.observed_rate * 100:.1f}% ({self.successes}/{self.samples_executed})"
            f" < min pass rate={self.required_rate * 100:.1f}%",
            "",
            f"  Samples executed: {self.samples_executed} of {self.samples_planned}",
            f"  Successes: {self.successes}",
            f"  Failures: {self.failures}",
        ]
        if self.ignored:
            lines.append(f"  Ignored errors: {self.ignored}")
        if self.termination_reason is not TerminationReason.COMPLETED:
            lines.append(f"  Termination: {self.termination_reason.name}")
            if self.termination_details:
                lines.append(f"  Reason: {self.termination_details}")
        lines.append(f"  Elapsed: {int(self.elapsed_ms)}ms")
        if self.example_failures:
            lines.append("")
            lines.append(
                f"  Example failures (showing {len(self.example_failures)} of {self.failures}):"
            )
            for example in self.example_failures:
                message = example.reason
                if len(message) > MAX_EXAMPLE_MESSAGE:
                    message = message[: MAX_EXAMPLE_MESSAGE - 3] + "..."
                lines.append(f"    [Sample {example.sample_index + 1}] {message}")
        return "\n".join(lines)


class VerdictDecider:
    """Decides the final verdict of a run."""

    def is_passing(
        self,
        successes: int,
        executed: int,
        min_pass_rate: float,
        reason: TerminationReason,
        budget_behavior: BudgetExhaustedBehavior = BudgetExhaustedBehavior.FAIL,
    ) -> bool:
        """Pass/fail from counts and the termination reason.

        Args:
            successes: Recorded successes.
            executed: Recorded samples.
            min_pass_rate: Required pass rate.
            reason: Why the run ended.
            budget_behavior: Applies only when reason is BUDGET_EXHAUSTED.

        Returns:
            True if the run passes.
        """
        if executed <= 0:
            return False
        if reason is TerminationReason.SUCCESS_GUARANTEED:
            return True
        if reason is TerminationReason.IMPOSSIBILITY:
            return False
        if (
            reason is TerminationReason.BUDGET_EXHAUSTED
            and budget_behavior is BudgetExhaustedBehavior.FAIL
        ):
            return False
        return successes >= required_successes(executed, min_pass_rate)

    def decide(
        self,
        aggregator: SampleResultAggregator,
        config: TrialConfig,
        reason: TerminationReason = TerminationReason.COMPLETED,
        budget_behavior: BudgetExhaustedBehavior | None = None,
        termination_details: str = "",
    ) -> Verdict:
        """Build the Verdict for a finished run.

        Args:
            aggregator: Outcomes of the run; read after all workers joined.
            config: The run's configuration.
            reason: Why the run ended.
            budget_behavior: Exhaustion behavior of the exhausted scope;
                defaults to config.on_budget_exhausted.
            termination_details: Human-readable reason, used in messages and
                as an explanation caveat.

        Returns:
            The Verdict, with a StatisticalExplanation when
            config.transparent_stats is set.
        """
        behavior = budget_behavior or config.on_budget_exhausted
        successes = aggregator.successes
        failures = aggregator.failures
        executed = successes + failures

        passed = self.is_passing(successes, executed, config.min_pass_rate, reason, behavior)
        estimate = (
            proportion_estimate(successes, executed, config.confidence) if executed else None
        )

        explanation = None
        if config.transparent_stats:
            explanation = build_explanation(
                test_name=config.test_name,
                samples=executed,
                successes=successes,
                threshold=config.min_pass_rate,
                passed=passed,
                confidence_level=config.confidence,
                baseline=config.baseline,
                threshold_origin=config.threshold_origin,
                contract_ref=config.contract_ref,
                termination_note=termination_details or None,
            )

        return Verdict(
            passed=passed,
            observed_rate=aggregator.observed_pass_rate,
            required_rate=config.min_pass_rate,
            termination_reason=reason,
            samples_planned=config.samples,
            samples_executed=executed,
            successes=successes,
            failures=failures,
            required_successes=required_successes(config.samples, config.min_pass_rate),
            test_name=config.test_name,
            termination_details=termination_details,
            budget_behavior=behavior if reason is TerminationReason.BUDGET_EXHAUSTED else None,
            confidence=config.confidence,
            estimate=estimate,
            ignored=aggregator.ignored,
            elapsed_ms=aggregator.elapsed_ms,
            failure_distribution=dict(aggregator.failure_distribution),
            example_failures=aggregator.example_failures,
            criteria=aggregator.criteria,
            explanation=explanation,
        )
