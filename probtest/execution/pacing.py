"""Pacing: turning rate limits into an executable dispatch plan.

A PacingPlan is computed once, before the first sample, from the configured
rate caps. The runner then spaces dispatches by plan.dispatch_interval_ms so
that aggregate throughput stays under the tightest cap, and admits at most
plan.concurrency samples in flight.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from probtest.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PacingConstraints:
    """Rate caps and scheduling hints. Zero means "no cap"."""

    max_per_second: float = 0.0
    max_per_minute: float = 0.0
    max_per_hour: float = 0.0
    min_delay_ms: int = 0
    estimated_latency_ms: int | None = None

    def __post_init__(self) -> None:
        for name in ("max_per_second", "max_per_minute", "max_per_hour", "min_delay_ms"):
            value = getattr(self, name)
            if value < 0 or math.isnan(value):
                raise ConfigurationError(f"Pacing {name} must be >= 0, got: {value}")
        if self.estimated_latency_ms is not None and self.estimated_latency_ms < 0:
            raise ConfigurationError(
                f"Estimated latency must be >= 0, got: {self.estimated_latency_ms}"
            )

    @property
    def has_rate_caps(self) -> bool:
        return self.max_per_second > 0 or self.max_per_minute > 0 or self.max_per_hour > 0

    @property
    def has_pacing(self) -> bool:
        return self.has_rate_caps or self.min_delay_ms > 0

    @property
    def tightest_rate_per_second(self) -> float:
        """Most restrictive cap expressed per second, or inf when uncapped."""
        rates = []
        if self.max_per_second > 0:
            rates.append(self.max_per_second)
        if self.max_per_minute > 0:
            rates.append(self.max_per_minute / 60.0)
        if self.max_per_hour > 0:
            rates.append(self.max_per_hour / 3600.0)
        return min(rates) if rates else math.inf


@dataclass(frozen=True)
class PacingPlan:
    """Derived schedule. Estimates inform reporting and never block execution."""

    delay_ms: int
    concurrency: int
    effective_rps: float
    estimated_duration_ms: int
    samples: int
    has_pacing: bool = False

    @property
    def dispatch_interval_ms(self) -> float:
        """Minimum spacing between consecutive dispatches across all workers."""
        if math.isinf(self.effective_rps) or self.effective_rps <= 0:
            return 0.0
        return 1000.0 / self.effective_rps

    def describe(self) -> str:
        rps = "unbounded" if math.isinf(self.effective_rps) else f"{self.effective_rps:.2f}/s"
        duration = (
            f"~{self.estimated_duration_ms / 1000:.1f}s"
            if self.estimated_duration_ms
            else "unknown"
        )
        return (
            f"{self.samples} samples, delay {self.delay_ms}ms, "
            f"concurrency {self.concurrency}, rate {rps}, duration {duration}"
        )


def effective_delay_ms(constraints: PacingConstraints) -> int:
    """The most restrictive delay implied by any single constraint."""
    delays = [constraints.min_delay_ms]
    if constraints.max_per_second > 0:
        delays.append(math.ceil(1000.0 / constraints.max_per_second))
    if constraints.max_per_minute > 0:
        delays.append(math.ceil(60_000.0 / constraints.max_per_minute))
    if constraints.max_per_hour > 0:
        delays.append(math.ceil(3_600_000.0 / constraints.max_per_hour))
    return max(delays)


def effective_concurrency(constraints: PacingConstraints, requested: int) -> int:
    """Concurrency sustainable under the rate caps.

    Without a latency estimate the caps cannot bound concurrency, so the
    requested value passes through unchanged.
    """
    if requested <= 1:
        return 1
    if not constraints.has_rate_caps:
        return requested
    latency = constraints.estimated_latency_ms
    if not latency:
        return requested
    sustainable = int(constraints.tightest_rate_per_second * latency / 1000.0)
    return min(requested, max(1, sustainable))


def plan_pacing(
    constraints: PacingConstraints, samples: int, requested_concurrency: int = 1
) -> PacingPlan:
    """Compute the pacing plan for a run.

    Args:
        constraints: Rate caps and delay hints.
        samples: Planned sample count.
        requested_concurrency: Desired in-flight samples.

    Returns:
        PacingPlan whose effective_rps never exceeds any configured cap and
        whose delay is at least every constraint's implied delay.
    """
    delay = effective_delay_ms(constraints)
    concurrency = effective_concurrency(constraints, requested_concurrency)

    if (
        requested_concurrency > 1
        and constraints.has_rate_caps
        and not constraints.estimated_latency_ms
    ):
        logger.warning(
            "Rate caps are set but per-sample latency is unknown; running with "
            "requested concurrency %d, which may exceed the caps",
            requested_concurrency,
        )

    rps = concurrency * 1000.0 / delay if delay > 0 else math.inf
    rps = min(rps, constraints.tightest_rate_per_second)

    if not math.isinf(rps) and rps > 0:
        duration = int(samples / rps * 1000.0)
    elif constraints.estimated_latency_ms:
        duration = samples * constraints.estimated_latency_ms
    else:
        duration = 0

    return PacingPlan(
        delay_ms=delay,
        concurrency=concurrency,
        effective_rps=rps,
        estimated_duration_ms=duration,
        samples=samples,
        has_pacing=constraints.has_pacing,
    )


class DispatchGate:
    """Spaces dispatches at least interval_ms apart.

    The gate only computes waits; callers sleep (time.sleep or asyncio.sleep)
    and then call mark(). The clock is injectable for tests.
    """

    def __init__(
        self, interval_ms: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.interval_ms = interval_ms
        self.clock = clock
        self._last_dispatch: float | None = None

    def wait_seconds(self) -> float:
        """Seconds to wait before the next dispatch may proceed."""
        if self.interval_ms <= 0 or self._last_dispatch is None:
            return 0.0
        due = self._last_dispatch + self.interval_ms / 1000.0
        return max(0.0, due - self.clock())

    def mark(self) -> None:
        """Record a dispatch at the current clock time."""
        self._last_dispatch = self.clock()
