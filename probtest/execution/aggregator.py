"""Sample outcomes and their aggregation.

A sample executor's result is normalized into one of three outcome kinds:
Success, Failure (business logic said no) or Errored (the executor raised).
The aggregator accepts outcomes in completion order, which under concurrency
is not issue order, and keeps counts, the failure-reason distribution, a few
example failures and per-criterion tallies.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable


class SampleOutcome:
    """Base class for the outcome of one executed sample."""

    cost: float
    criteria: dict[str, bool]

    @property
    def passed(self) -> bool:
        return False

    @property
    def reason(self) -> str:
        return ""


@dataclass(frozen=True)
class Success(SampleOutcome):
    cost: float = 0.0
    criteria: dict[str, bool] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure(SampleOutcome):
    message: str = "sample failed"
    cost: float = 0.0
    criteria: dict[str, bool] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return False

    @property
    def reason(self) -> str:
        return self.message


@dataclass(frozen=True)
class Errored(SampleOutcome):
    cause: BaseException | None = None
    cost: float = 0.0
    criteria: dict[str, bool] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return False

    @property
    def reason(self) -> str:
        if self.cause is None:
            return "error"
        return f"{type(self.cause).__name__}: {self.cause}"


@dataclass(frozen=True)
class ExampleFailure:
    sample_index: int
    reason: str


@dataclass
class CriterionStats:
    passed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total else 0.0


class SampleResultAggregator:
    """Accumulates outcomes. Safe to share between worker threads.

    Attributes:
        max_example_failures: How many failure examples to retain.
    """

    def __init__(
        self, max_example_failures: int = 5, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.max_example_failures = max_example_failures
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._successes = 0
        self._failures = 0
        self._errored = 0
        self._ignored = 0
        self._distribution: Counter[str] = Counter()
        self._examples: list[ExampleFailure] = []
        self._criteria: dict[str, CriterionStats] = {}
        self._completion_order: list[int] = []

    def record(self, outcome: SampleOutcome, sample_index: int | None = None) -> None:
        """Record one outcome.

        Args:
            outcome: The normalized outcome.
            sample_index: 0-based issue index; defaults to completion position.
        """
        with self._lock:
            index = sample_index if sample_index is not None else len(self._completion_order)
            self._completion_order.append(index)
            if outcome.passed:
                self._successes += 1
            else:
                self._failures += 1
                if isinstance(outcome, Errored):
                    self._errored += 1
                reason = outcome.reason or "unspecified"
                self._distribution[reason] += 1
                if len(self._examples) < self.max_example_failures:
                    self._examples.append(ExampleFailure(index, reason))
            for name, ok in outcome.criteria.items():
                stats = self._criteria.setdefault(name, CriterionStats())
                if ok:
                    stats.passed += 1
                else:
                    stats.failed += 1

    def record_ignored(self) -> None:
        """Count an errored sample discarded under the IGNORE policy."""
        with self._lock:
            self._ignored += 1

    @property
    def successes(self) -> int:
        with self._lock:
            return self._successes

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def errored(self) -> int:
        """Failures that came from an executor exception."""
        with self._lock:
            return self._errored

    @property
    def ignored(self) -> int:
        with self._lock:
            return self._ignored

    @property
    def samples_executed(self) -> int:
        with self._lock:
            return self._successes + self._failures

    @property
    def observed_pass_rate(self) -> float:
        with self._lock:
            total = self._successes + self._failures
            return self._successes / total if total else 0.0

    @property
    def failure_distribution(self) -> Counter[str]:
        with self._lock:
            return Counter(self._distribution)

    @property
    def example_failures(self) -> list[ExampleFailure]:
        with self._lock:
            return list(self._examples)

    @property
    def criteria(self) -> dict[str, CriterionStats]:
        """Per-criterion tallies in first-seen order."""
        with self._lock:
            return {
                name: CriterionStats(s.passed, s.failed) for name, s in self._criteria.items()
            }

    @property
    def completion_order(self) -> list[int]:
        with self._lock:
            return list(self._completion_order)

    @property
    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000.0
