"""Sequential trial runner: the sampling loop behind probtest.run().

For each planned sample the runner checks the budget, waits for its pacing
slot, invokes the caller's executor, records the outcome, charges the
budget and asks the early termination evaluator whether to stop. With
max_concurrency > 1 the same steps run on a bounded asyncio worker window,
with each executor call on a thread pool; recording and the stop decision
stay on the event loop thread under the runner's lock, so counters only ever
move forward.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from probtest.errors import SampleExecutionError
from probtest.execution.aggregator import (
    Errored,
    Failure,
    SampleOutcome,
    SampleResultAggregator,
    Success,
)
from probtest.execution.budget import BudgetScope, BudgetSnapshot, BudgetTracker, CostMode
from probtest.execution.early_termination import EarlyTerminationEvaluator, TerminationReason
from probtest.execution.pacing import DispatchGate, PacingPlan, plan_pacing
from probtest.lifecycle.config import ExceptionPolicy, TrialConfig
from probtest.lifecycle.verdict import Verdict, VerdictDecider

logger = logging.getLogger(__name__)

SampleExecutor = Callable[[], Any]


class RunPhase(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TERMINATED_EARLY = "terminated_early"
    BUDGET_EXHAUSTED = "budget_exhausted"
    VERDICT_READY = "verdict_ready"
    ABORTED = "aborted"


_PHASE_FOR_REASON = {
    TerminationReason.COMPLETED: RunPhase.COMPLETED,
    TerminationReason.SUCCESS_GUARANTEED: RunPhase.TERMINATED_EARLY,
    TerminationReason.IMPOSSIBILITY: RunPhase.TERMINATED_EARLY,
    TerminationReason.BUDGET_EXHAUSTED: RunPhase.BUDGET_EXHAUSTED,
}


@dataclass(frozen=True)
class RunProgress:
    """Point-in-time view of a run for reporting layers."""

    samples_executed: int
    successes: int
    failures: int
    planned: int
    elapsed_ms: float
    termination_reason: TerminationReason
    phase: RunPhase
    ignored: int = 0


def to_outcome(result: Any) -> SampleOutcome:
    """Normalize an executor's return value.

    None and True are successes, False is a failure, SampleOutcome values
    pass through. Anything else is a TypeError.
    """
    if isinstance(result, SampleOutcome):
        return result
    if result is None or result is True:
        return Success()
    if result is False:
        return Failure("executor returned False")
    raise TypeError(
        f"Sample executor returned unsupported value of type {type(result).__name__}"
    )


class SequentialTestRunner:
    """Runs one trial: samples, budgets, pacing, early termination, verdict.

    A runner is single use. Call run() once; progress() may be called from
    any thread at any time.
    """

    def __init__(
        self,
        config: TrialConfig,
        executor: SampleExecutor,
        parent_budget: BudgetTracker | None = None,
        on_progress: Callable[[RunProgress], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.executor = executor
        self.on_progress = on_progress
        self._clock = clock
        self._sleep = sleep

        self.plan: PacingPlan = plan_pacing(config.pacing, config.samples, config.max_concurrency)
        self.budget = BudgetTracker(
            time_budget_ms=config.time_budget_ms,
            cost_budget=config.cost_budget,
            scope=BudgetScope.METHOD,
            parent=parent_budget,
            on_budget_exhausted=config.on_budget_exhausted,
        )
        self.aggregator = SampleResultAggregator(config.max_example_failures, clock=clock)
        self.evaluator = EarlyTerminationEvaluator(config.samples, config.min_pass_rate)
        self.cost_mode = config.effective_cost_mode
        self._gate = DispatchGate(self.plan.dispatch_interval_ms, clock=clock)

        # Run state, guarded by _lock
        self._lock = threading.Lock()
        self._phase = RunPhase.NOT_STARTED
        self._reason = TerminationReason.NONE
        self._details = ""
        self._issued = 0
        self._in_flight = 0
        self._recorded = 0
        self._ignored = 0
        self._last_charge = clock()

    @property
    def phase(self) -> RunPhase:
        with self._lock:
            return self._phase

    def progress(self) -> RunProgress:
        with self._lock:
            return self._progress_locked()

    def _progress_locked(self) -> RunProgress:
        successes = self.aggregator.successes
        return RunProgress(
            samples_executed=self._recorded,
            successes=successes,
            failures=self._recorded - successes,
            planned=self.config.samples,
            elapsed_ms=self.aggregator.elapsed_ms,
            termination_reason=self._reason,
            phase=self._phase,
            ignored=self._ignored,
        )

    def run(self) -> Verdict:
        """Execute the trial and decide its verdict.

        Returns:
            The Verdict.

        Raises:
            SampleExecutionError: If the executor raised under PROPAGATE.
            RuntimeError: If the runner was already used.
        """
        with self._lock:
            if self._phase is not RunPhase.NOT_STARTED:
                raise RuntimeError("A SequentialTestRunner can only run once")
            self._phase = RunPhase.RUNNING
            self._last_charge = self._clock()

        logger.info("Running %s: %s", self.config.test_name, self.plan.describe())

        if self.plan.concurrency > 1:
            asyncio.run(self._run_concurrent())
        else:
            self._run_sequential()

        return self._finish()

    # Sequential path

    def _run_sequential(self) -> None:
        while self._next_dispatch():
            wait = self._gate.wait_seconds()
            if wait > 0:
                self._sleep(wait)
                if not self._admit_after_wait():
                    break
            self._gate.mark()
            index = self._claim_index()
            outcome, error, duration_ms = self._invoke()
            self._complete(index, outcome, error, duration_ms)

    # Concurrent path

    async def _run_concurrent(self) -> None:
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.plan.concurrency)
        wake = asyncio.Event()
        stop = asyncio.Event()
        aborted: list[SampleExecutionError] = []
        tasks: set[asyncio.Task[None]] = set()
        pool = ThreadPoolExecutor(
            max_workers=self.plan.concurrency, thread_name_prefix="probtest-sample"
        )

        async def run_sample(index: int) -> None:
            try:
                outcome, error, duration_ms = await loop.run_in_executor(pool, self._invoke)
                self._complete(index, outcome, error, duration_ms)
            except SampleExecutionError as e:
                aborted.append(e)
                stop.set()
            finally:
                semaphore.release()
                wake.set()

        try:
            while not stop.is_set():
                await semaphore.acquire()
                if stop.is_set():
                    semaphore.release()
                    break
                decision = self._dispatch_decision()
                if decision == "stop":
                    semaphore.release()
                    break
                if decision == "wait":
                    # Every remaining slot is in flight; an IGNOREd error may
                    # still need a replacement sample.
                    semaphore.release()
                    wake.clear()
                    await wake.wait()
                    continue

                wait = self._gate.wait_seconds()
                if wait > 0:
                    await asyncio.sleep(wait)
                    if stop.is_set() or not self._admit_after_wait():
                        semaphore.release()
                        break
                self._gate.mark()
                index = self._claim_index()
                task = asyncio.create_task(run_sample(index))
                tasks.add(task)
                task.add_done_callback(tasks.discard)

            if aborted:
                for task in list(tasks):
                    task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=bool(aborted))
        finally:
            pool.shutdown(wait=not aborted, cancel_futures=True)

        if aborted:
            raise aborted[0]

    # Shared steps

    def _next_dispatch(self) -> bool:
        return self._dispatch_decision() == "go"

    def _dispatch_decision(self) -> str:
        """'go', 'wait' (slots all in flight) or 'stop'."""
        with self._lock:
            if self._reason is not TerminationReason.NONE:
                return "stop"
            if self._recorded + self._in_flight >= self.config.samples:
                return "wait" if self._in_flight else "stop"
            self._charge_elapsed_locked()
            if self._budget_blocks_locked():
                self._terminate_locked(
                    TerminationReason.BUDGET_EXHAUSTED, self._budget_details()
                )
                return "stop"
            self._in_flight += 1
            return "go"

    def _admit_after_wait(self) -> bool:
        """Re-check termination and budget once a pacing wait has elapsed."""
        with self._lock:
            self._charge_elapsed_locked()
            if self._reason is TerminationReason.NONE and not self.budget.is_exhausted():
                return True
            self._in_flight -= 1
            if self.budget.is_exhausted():
                self._terminate_locked(
                    TerminationReason.BUDGET_EXHAUSTED, self._budget_details()
                )
            return False

    def _charge_elapsed_locked(self, cost: float = 0.0) -> BudgetSnapshot:
        """Charge the wall-clock time since the previous charge, plus cost.

        Pacing waits count towards the time budget, and overlapping samples
        are charged once.
        """
        now = self._clock()
        elapsed_ms = max(0.0, (now - self._last_charge) * 1000.0)
        self._last_charge = now
        return self.budget.charge(elapsed_ms, cost)

    def _budget_blocks_locked(self) -> bool:
        if self.budget.is_exhausted():
            return True
        if self.cost_mode is CostMode.STATIC:
            pending = self.config.cost_per_sample * (self._in_flight + 1)
            return self.budget.would_exceed(pending)
        return False

    def _budget_details(self) -> str:
        tracker = self.budget.exhausted_tracker()
        if tracker is None:
            return (
                f"Cost budget would be exceeded by the next sample "
                f"({self.budget.cost_used:g} used of {self.config.cost_budget:g}, "
                f"{self.config.cost_per_sample:g} per sample)."
            )
        snapshot = tracker.snapshot()
        return (
            f"{tracker.scope.value.capitalize()} {snapshot.exhausted_dimension} budget "
            f"exhausted after {self._recorded} of {self.config.samples} samples."
        )

    def _claim_index(self) -> int:
        with self._lock:
            index = self._issued
            self._issued += 1
            return index

    def _invoke(self) -> tuple[SampleOutcome | None, Exception | None, float]:
        start = self._clock()
        try:
            outcome = to_outcome(self.executor())
            error = None
        except AssertionError as e:
            outcome, error = Failure(str(e) or "AssertionError"), None
        except Exception as e:
            outcome, error = None, e
        duration_ms = max(0.0, (self._clock() - start) * 1000.0)
        return outcome, error, duration_ms

    def _sample_cost(self, outcome: SampleOutcome | None) -> float:
        if self.cost_mode is CostMode.STATIC:
            return self.config.cost_per_sample
        if self.cost_mode is CostMode.DYNAMIC and outcome is not None:
            return outcome.cost
        return 0.0

    def _complete(
        self,
        index: int,
        outcome: SampleOutcome | None,
        error: Exception | None,
        duration_ms: float,
    ) -> None:
        """Record one finished sample and decide whether to stop."""
        policy = self.config.on_exception
        with self._lock:
            self._in_flight -= 1

            if error is not None and policy is ExceptionPolicy.PROPAGATE:
                self._phase = RunPhase.ABORTED
                partial = self._progress_locked()
                logger.error("Sample %d raised %r; aborting run", index, error)
                raise SampleExecutionError(
                    f"Sample {index} raised {type(error).__name__}: {error}",
                    sample_index=index,
                    partial=partial,
                ) from error

            if error is not None and policy is ExceptionPolicy.IGNORE:
                self._ignored += 1
                self.aggregator.record_ignored()
                self._charge_elapsed_locked(self._sample_cost(None))
                logger.warning(
                    "Ignoring error from sample %d (%d ignored): %r", index, self._ignored, error
                )
                if self._ignored >= self.config.ignored_error_limit:
                    self._terminate_locked(
                        TerminationReason.COMPLETED,
                        f"Stopped after {self._ignored} ignored errors.",
                    )
                elif self.budget.is_exhausted():
                    self._terminate_locked(
                        TerminationReason.BUDGET_EXHAUSTED, self._budget_details()
                    )
                self._emit_locked()
                return

            if error is not None or outcome is None:
                outcome = Errored(error)

            self.aggregator.record(outcome, index)
            self._recorded += 1
            snapshot = self._charge_elapsed_locked(self._sample_cost(outcome))
            logger.debug(
                "Sample %d: %s (%.1fms)",
                index,
                "pass" if outcome.passed else f"fail: {outcome.reason}",
                duration_ms,
            )

            if self._reason is TerminationReason.NONE:
                successes = self.aggregator.successes
                if self._recorded >= self.config.samples:
                    self._terminate_locked(TerminationReason.COMPLETED, "")
                    self._emit_locked()
                    return
                reason = None
                if self.config.early_termination:
                    reason = self.evaluator.evaluate(successes, self._recorded)
                if reason is not None:
                    self._terminate_locked(
                        reason, self.evaluator.explain(reason, successes, self._recorded)
                    )
                elif snapshot.exhausted:
                    self._terminate_locked(
                        TerminationReason.BUDGET_EXHAUSTED, self._budget_details()
                    )
            self._emit_locked()

    def _terminate_locked(self, reason: TerminationReason, details: str) -> None:
        if self._reason is not TerminationReason.NONE:
            return
        self._reason = reason
        self._details = details
        if details:
            logger.info("%s: %s", self.config.test_name, details)

    def _emit_locked(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self._progress_locked())

    def _finish(self) -> Verdict:
        with self._lock:
            if self._reason is TerminationReason.NONE:
                self._reason = TerminationReason.COMPLETED
            reason = self._reason
            details = self._details
            self._phase = _PHASE_FOR_REASON[reason]

        behavior = (
            self.budget.behavior(self.config.on_budget_exhausted)
            if reason is TerminationReason.BUDGET_EXHAUSTED
            else None
        )
        verdict = VerdictDecider().decide(
            self.aggregator,
            self.config,
            reason,
            budget_behavior=behavior,
            termination_details=details,
        )

        with self._lock:
            self._phase = RunPhase.VERDICT_READY

        logger.info("%s", verdict.summary())
        return verdict


def run(
    config: TrialConfig,
    executor: SampleExecutor,
    on_progress: Callable[[RunProgress], None] | None = None,
    parent_budget: BudgetTracker | None = None,
) -> Verdict:
    """Run a probabilistic trial and return its verdict.

    Args:
        config: The trial configuration.
        executor: No-argument callable invoked once per sample. Returning
            None or True is a success, False a failure; it may also return
            a SampleOutcome. Raising AssertionError is a failure; any other
            exception is handled per config.on_exception.
        on_progress: Called with a RunProgress after every recorded sample.
        parent_budget: Enclosing (class or suite) budget to charge as well.

    Returns:
        The Verdict.

    Raises:
        SampleExecutionError: If the executor raised under PROPAGATE.
    """
    runner = SequentialTestRunner(
        config, executor, parent_budget=parent_budget, on_progress=on_progress
    )
    return runner.run()
