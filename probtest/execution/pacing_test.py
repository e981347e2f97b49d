"""Unit tests for the pacing planner."""

from __future__ import annotations

import itertools
import logging
import math

import pytest

from probtest.errors import ConfigurationError
from probtest.execution.pacing import (
    DispatchGate,
    PacingConstraints,
    effective_concurrency,
    effective_delay_ms,
    plan_pacing,
)


class TestEffectiveDelay:
    """Tests for delay derivation."""

    def test_no_constraints(self):
        assert effective_delay_ms(PacingConstraints()) == 0

    def test_per_second(self):
        assert effective_delay_ms(PacingConstraints(max_per_second=3)) == 334

    def test_per_minute(self):
        assert effective_delay_ms(PacingConstraints(max_per_minute=60)) == 1000

    def test_per_hour(self):
        assert effective_delay_ms(PacingConstraints(max_per_hour=3600)) == 1000

    def test_most_restrictive_wins(self):
        """10/s implies 100ms but 30/min implies 2000ms."""
        constraints = PacingConstraints(max_per_second=10, max_per_minute=30, min_delay_ms=50)
        assert effective_delay_ms(constraints) == 2000

    def test_explicit_delay_wins_when_larger(self):
        constraints = PacingConstraints(max_per_second=10, min_delay_ms=500)
        assert effective_delay_ms(constraints) == 500


class TestEffectiveConcurrency:
    """Tests for concurrency clamping."""

    def test_single_worker(self):
        assert effective_concurrency(PacingConstraints(max_per_second=1), 0) == 1
        assert effective_concurrency(PacingConstraints(), 1) == 1

    def test_no_caps_passes_through(self):
        assert effective_concurrency(PacingConstraints(min_delay_ms=100), 8) == 8

    def test_unknown_latency_passes_through(self):
        """Caps cannot bound concurrency without a latency estimate."""
        assert effective_concurrency(PacingConstraints(max_per_second=2), 8) == 8

    def test_clamped_by_latency(self):
        """5/s with 400ms latency sustains 2 in flight."""
        constraints = PacingConstraints(max_per_second=5, estimated_latency_ms=400)
        assert effective_concurrency(constraints, 8) == 2

    def test_clamped_to_at_least_one(self):
        constraints = PacingConstraints(max_per_minute=1, estimated_latency_ms=100)
        assert effective_concurrency(constraints, 4) == 1

    def test_never_above_requested(self):
        constraints = PacingConstraints(max_per_second=100, estimated_latency_ms=1000)
        assert effective_concurrency(constraints, 3) == 3


class TestPlan:
    """Tests for the full pacing plan."""

    def test_unpaced_plan(self):
        plan = plan_pacing(PacingConstraints(), samples=50)
        assert plan.delay_ms == 0
        assert math.isinf(plan.effective_rps)
        assert plan.estimated_duration_ms == 0
        assert plan.dispatch_interval_ms == 0.0
        assert not plan.has_pacing

    def test_unpaced_duration_from_latency(self):
        plan = plan_pacing(PacingConstraints(estimated_latency_ms=20), samples=50)
        assert plan.estimated_duration_ms == 1000

    def test_rps_clamped_to_cap(self):
        """4 workers at 100ms would be 40/s but the cap is 10/s."""
        plan = plan_pacing(PacingConstraints(max_per_second=10), samples=100, requested_concurrency=4)
        assert plan.delay_ms == 100
        assert plan.effective_rps == pytest.approx(10.0)
        assert plan.estimated_duration_ms == 10_000
        assert plan.dispatch_interval_ms == pytest.approx(100.0)

    def test_min_delay_staggers_workers(self):
        """Without caps, 4 workers with a 100ms delay dispatch every 25ms."""
        plan = plan_pacing(PacingConstraints(min_delay_ms=100), samples=40, requested_concurrency=4)
        assert plan.effective_rps == pytest.approx(40.0)
        assert plan.dispatch_interval_ms == pytest.approx(25.0)
        assert plan.estimated_duration_ms == 1000

    def test_warns_on_unbounded_concurrency(self, caplog):
        with caplog.at_level(logging.WARNING, logger="probtest.execution.pacing"):
            plan = plan_pacing(PacingConstraints(max_per_second=2), samples=10, requested_concurrency=4)
        assert plan.concurrency == 4
        assert "latency is unknown" in caplog.text

    def test_describe(self):
        text = plan_pacing(PacingConstraints(max_per_second=10), samples=20).describe()
        assert "20 samples" in text
        assert "10.00/s" in text

    @pytest.mark.parametrize(
        "rps, rpm, rph, delay, conc",
        list(itertools.product([0, 0.5, 3, 20], [0, 1, 45, 600], [0, 100, 7200], [0, 10, 250], [1, 3])),
    )
    def test_plan_respects_every_constraint(self, rps, rpm, rph, delay, conc):
        """Delay covers every implied delay and throughput never exceeds a cap."""
        constraints = PacingConstraints(
            max_per_second=rps, max_per_minute=rpm, max_per_hour=rph, min_delay_ms=delay
        )
        plan = plan_pacing(constraints, samples=10, requested_concurrency=conc)
        assert plan.delay_ms >= delay
        if rps:
            assert plan.delay_ms >= math.ceil(1000 / rps)
            assert plan.effective_rps <= rps + 1e-9
        if rpm:
            assert plan.delay_ms >= math.ceil(60_000 / rpm)
            assert plan.effective_rps * 60 <= rpm + 1e-9
        if rph:
            assert plan.delay_ms >= math.ceil(3_600_000 / rph)
            assert plan.effective_rps * 3600 <= rph + 1e-6


class TestConstraintsValidation:
    """Tests for constraint validation."""

    def test_negative_rate_rejected(self):
        with pytest.raises(ConfigurationError):
            PacingConstraints(max_per_second=-1)

    def test_negative_latency_rejected(self):
        with pytest.raises(ConfigurationError):
            PacingConstraints(estimated_latency_ms=-5)


class TestDispatchGate:
    """Tests for dispatch spacing."""

    def test_first_dispatch_is_immediate(self):
        gate = DispatchGate(100, clock=lambda: 5.0)
        assert gate.wait_seconds() == 0.0

    def test_waits_remaining_interval(self):
        now = [10.0]
        gate = DispatchGate(100, clock=lambda: now[0])
        gate.mark()
        now[0] = 10.04
        assert gate.wait_seconds() == pytest.approx(0.06)
        now[0] = 10.2
        assert gate.wait_seconds() == 0.0

    def test_zero_interval_never_waits(self):
        gate = DispatchGate(0, clock=lambda: 1.0)
        gate.mark()
        assert gate.wait_seconds() == 0.0
