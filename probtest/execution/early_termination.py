"""Early termination: stop sampling once the verdict can no longer change.

Both rules are lossless. IMPOSSIBILITY fires only when even an unbroken run
of successes could not reach the required count; SUCCESS_GUARANTEED fires
only when the required count has already been reached.
"""

from __future__ import annotations

from enum import Enum

from probtest.stats.inference import required_successes


class TerminationReason(str, Enum):
    NONE = "none"
    COMPLETED = "completed"
    IMPOSSIBILITY = "impossibility"
    SUCCESS_GUARANTEED = "success_guaranteed"
    BUDGET_EXHAUSTED = "budget_exhausted"

    @property
    def is_early(self) -> bool:
        return self in (TerminationReason.IMPOSSIBILITY, TerminationReason.SUCCESS_GUARANTEED)


class EarlyTerminationEvaluator:
    """Decides whether continuing to sample is pointless.

    Attributes:
        total_samples: Planned sample count.
        required: Successes needed out of total_samples.
    """

    def __init__(self, total_samples: int, min_pass_rate: float) -> None:
        self.total_samples = total_samples
        self.min_pass_rate = min_pass_rate
        self.required = required_successes(total_samples, min_pass_rate)

    def evaluate(self, successes: int, executed: int) -> TerminationReason | None:
        """Return the reason to stop now, or None to keep sampling.

        Args:
            successes: Successes recorded so far.
            executed: Samples recorded so far (successes plus failures).
        """
        remaining = self.total_samples - executed
        if successes >= self.required and remaining > 0:
            return TerminationReason.SUCCESS_GUARANTEED
        if successes + remaining < self.required:
            return TerminationReason.IMPOSSIBILITY
        return None

    def failures_until_impossibility(self, successes: int, executed: int) -> int:
        """How many more failures the run can absorb before it cannot pass."""
        remaining = self.total_samples - executed
        return max(0, successes + remaining - self.required + 1)

    def explain(self, reason: TerminationReason, successes: int, executed: int) -> str:
        """One-sentence account of why the run stopped."""
        remaining = self.total_samples - executed
        if reason is TerminationReason.IMPOSSIBILITY:
            return (
                f"Early termination: cannot reach required pass rate. After {executed} "
                f"samples with {successes} successes, maximum possible successes "
                f"({successes} + {remaining} remaining) = {successes + remaining} "
                f"< {self.required} required."
            )
        if reason is TerminationReason.SUCCESS_GUARANTEED:
            return (
                f"Early termination: required pass rate already achieved. After "
                f"{executed} samples with {successes} successes "
                f"(>= {self.required} required), skipping {remaining} remaining samples."
            )
        return f"Run ended: {reason.value}."
