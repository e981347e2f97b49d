"""Time and cost budgets shared across samples and nested scopes.

A BudgetTracker accumulates time and cost charges under a lock. Trackers can
be nested (method inside class inside suite): a charge against a tracker
also charges every ancestor, and exhaustion anywhere in the chain exhausts
the sample. Exhaustion is latched, so is_exhausted() never flips back to
False once it has been observed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from probtest.errors import ConfigurationError

logger = logging.getLogger(__name__)


class BudgetScope(str, Enum):
    METHOD = "method"
    CLASS = "class"
    SUITE = "suite"


class CostMode(str, Enum):
    """How sample cost is charged.

    STATIC charges a fixed cost_per_sample and checks before dispatch whether
    the next charge would overrun. DYNAMIC charges the cost each outcome
    reports and checks after the sample.
    """

    NONE = "none"
    STATIC = "static"
    DYNAMIC = "dynamic"


class BudgetExhaustedBehavior(str, Enum):
    FAIL = "fail"
    EVALUATE_PARTIAL = "evaluate_partial"


@dataclass(frozen=True)
class BudgetSnapshot:
    """State of a tracker right after a charge."""

    scope: BudgetScope
    time_used_ms: float
    cost_used: float
    remaining_time_ms: float | None
    remaining_cost: float | None
    exhausted: bool
    exhausted_scope: BudgetScope | None = None
    exhausted_dimension: str | None = None


class BudgetTracker:
    """Thread-safe accumulator for one budget scope.

    Zero budgets mean unlimited. A budget is exhausted once usage reaches it.
    """

    def __init__(
        self,
        time_budget_ms: float = 0,
        cost_budget: float = 0,
        scope: BudgetScope = BudgetScope.METHOD,
        parent: BudgetTracker | None = None,
        on_budget_exhausted: BudgetExhaustedBehavior | None = None,
    ) -> None:
        if time_budget_ms < 0:
            raise ConfigurationError(f"Time budget must be >= 0, got: {time_budget_ms}")
        if cost_budget < 0:
            raise ConfigurationError(f"Cost budget must be >= 0, got: {cost_budget}")
        self.time_budget_ms = time_budget_ms
        self.cost_budget = cost_budget
        self.scope = BudgetScope(scope)
        self.parent = parent
        self.on_budget_exhausted = on_budget_exhausted
        self._lock = threading.Lock()
        self._time_used_ms = 0.0
        self._cost_used = 0.0
        self._charges = 0
        self._exhausted_dimension: str | None = None

    @property
    def time_used_ms(self) -> float:
        with self._lock:
            return self._time_used_ms

    @property
    def cost_used(self) -> float:
        with self._lock:
            return self._cost_used

    @property
    def charge_count(self) -> int:
        with self._lock:
            return self._charges

    def chain(self) -> list[BudgetTracker]:
        """This tracker and its ancestors, outermost first."""
        trackers: list[BudgetTracker] = []
        node: BudgetTracker | None = self
        while node is not None:
            trackers.append(node)
            node = node.parent
        trackers.reverse()
        return trackers

    def charge(self, time_ms: float = 0.0, cost: float = 0.0) -> BudgetSnapshot:
        """Add consumption to this scope and every enclosing scope.

        Args:
            time_ms: Time spent by the sample.
            cost: Cost incurred by the sample.

        Returns:
            Snapshot of this tracker, with exhaustion evaluated over the
            whole chain.
        """
        if time_ms < 0 or cost < 0:
            raise ValueError(f"Charges must be >= 0, got time={time_ms}, cost={cost}")
        with self._lock:
            self._time_used_ms += time_ms
            self._cost_used += cost
            self._charges += 1
            tripped = self._check_locked()
            time_used, cost_used = self._time_used_ms, self._cost_used
        if tripped:
            logger.warning(
                "%s %s budget exhausted (time %.0fms of %s, cost %s of %s)",
                self.scope.value.capitalize(),
                tripped,
                time_used,
                self.time_budget_ms or "unlimited",
                cost_used,
                self.cost_budget or "unlimited",
            )
        if self.parent is not None:
            self.parent.charge(time_ms, cost)
        return self.snapshot()

    def _check_locked(self) -> str | None:
        """Latch exhaustion; return the dimension if this call tripped it."""
        if self._exhausted_dimension is not None:
            return None
        if self.time_budget_ms > 0 and self._time_used_ms >= self.time_budget_ms:
            self._exhausted_dimension = "time"
        elif self.cost_budget > 0 and self._cost_used >= self.cost_budget:
            self._exhausted_dimension = "cost"
        return self._exhausted_dimension

    def _own_exhausted(self) -> bool:
        with self._lock:
            return self._exhausted_dimension is not None

    def is_exhausted(self) -> bool:
        """True if this scope or any enclosing scope is exhausted."""
        return self.exhausted_tracker() is not None

    def exhausted_tracker(self) -> BudgetTracker | None:
        """The outermost exhausted tracker in the chain, if any."""
        for tracker in self.chain():
            if tracker._own_exhausted():
                return tracker
        return None

    def would_exceed(self, cost: float) -> bool:
        """Pre-dispatch check: would charging `cost` overrun any cost budget?"""
        for tracker in self.chain():
            with tracker._lock:
                if tracker.cost_budget > 0 and tracker._cost_used + cost > tracker.cost_budget:
                    return True
        return False

    def behavior(self, default: BudgetExhaustedBehavior) -> BudgetExhaustedBehavior:
        """Exhaustion behavior of the exhausted scope, else `default`."""
        tracker = self.exhausted_tracker()
        if tracker is not None and tracker.on_budget_exhausted is not None:
            return BudgetExhaustedBehavior(tracker.on_budget_exhausted)
        return default

    def snapshot(self) -> BudgetSnapshot:
        exhausted_by = self.exhausted_tracker()
        with self._lock:
            remaining_time = (
                max(0.0, self.time_budget_ms - self._time_used_ms)
                if self.time_budget_ms > 0
                else None
            )
            remaining_cost = (
                max(0.0, self.cost_budget - self._cost_used) if self.cost_budget > 0 else None
            )
            time_used = self._time_used_ms
            cost_used = self._cost_used
        return BudgetSnapshot(
            scope=self.scope,
            time_used_ms=time_used,
            cost_used=cost_used,
            remaining_time_ms=remaining_time,
            remaining_cost=remaining_cost,
            exhausted=exhausted_by is not None,
            exhausted_scope=exhausted_by.scope if exhausted_by else None,
            exhausted_dimension=exhausted_by._exhausted_dimension if exhausted_by else None,
        )
