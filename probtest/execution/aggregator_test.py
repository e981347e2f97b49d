"""Unit tests for sample outcomes and the result aggregator."""

from __future__ import annotations

import random
import threading

import pytest

from probtest.execution.aggregator import (
    Errored,
    Failure,
    SampleResultAggregator,
    Success,
)


class TestOutcomes:
    """Tests for the outcome variants."""

    def test_success(self):
        assert Success().passed
        assert Success().reason == ""

    def test_failure_reason(self):
        outcome = Failure("wrong total")
        assert not outcome.passed
        assert outcome.reason == "wrong total"

    def test_errored_reason(self):
        outcome = Errored(TimeoutError("slow backend"))
        assert not outcome.passed
        assert outcome.reason == "TimeoutError: slow backend"

    def test_cost_and_criteria(self):
        outcome = Success(cost=12.5, criteria={"json": True})
        assert outcome.cost == 12.5
        assert outcome.criteria == {"json": True}


class TestCounts:
    """Tests for tallies."""

    def test_counts_and_rate(self):
        agg = SampleResultAggregator()
        for _ in range(3):
            agg.record(Success())
        agg.record(Failure("bad"))
        assert agg.samples_executed == 4
        assert agg.successes == 3
        assert agg.failures == 1
        assert agg.observed_pass_rate == pytest.approx(0.75)

    def test_empty_rate(self):
        assert SampleResultAggregator().observed_pass_rate == 0.0

    def test_errored_counts_as_failure(self):
        agg = SampleResultAggregator()
        agg.record(Errored(RuntimeError("boom")))
        assert agg.failures == 1
        assert agg.errored == 1

    def test_ignored_not_in_tallies(self):
        agg = SampleResultAggregator()
        agg.record_ignored()
        assert agg.ignored == 1
        assert agg.samples_executed == 0


class TestFailureDetails:
    """Tests for distribution and examples."""

    def test_distribution(self):
        agg = SampleResultAggregator()
        for reason in ["a", "b", "a", "a"]:
            agg.record(Failure(reason))
        assert agg.failure_distribution == {"a": 3, "b": 1}
        assert agg.failure_distribution.most_common(1) == [("a", 3)]

    def test_examples_capped(self):
        agg = SampleResultAggregator(max_example_failures=2)
        for i in range(5):
            agg.record(Failure(f"f{i}"), sample_index=i)
        examples = agg.example_failures
        assert [e.sample_index for e in examples] == [0, 1]
        assert examples[1].reason == "f1"

    def test_zero_examples(self):
        agg = SampleResultAggregator(max_example_failures=0)
        agg.record(Failure("x"))
        assert agg.example_failures == []


class TestCriteria:
    """Tests for per-criterion tallies."""

    def test_per_criterion_rates(self):
        agg = SampleResultAggregator()
        agg.record(Success(criteria={"format": True, "tone": True}))
        agg.record(Failure("x", criteria={"format": True, "tone": False}))
        agg.record(Failure("y", criteria={"format": False}))
        criteria = agg.criteria
        assert list(criteria) == ["format", "tone"]
        assert criteria["format"].passed == 2
        assert criteria["format"].pass_rate == pytest.approx(2 / 3)
        assert criteria["tone"].total == 2


class TestOrdering:
    """Out-of-order completions are accepted."""

    def test_completion_order_kept(self):
        agg = SampleResultAggregator()
        for index in [2, 0, 3, 1]:
            agg.record(Success(), sample_index=index)
        assert agg.completion_order == [2, 0, 3, 1]
        assert agg.samples_executed == 4

    def test_concurrent_records(self):
        agg = SampleResultAggregator()
        indices = list(range(400))
        random.Random(7).shuffle(indices)
        chunks = [indices[i::4] for i in range(4)]

        def worker(chunk):
            for i in chunk:
                agg.record(Success() if i % 2 else Failure("odd"), sample_index=i)

        threads = [threading.Thread(target=worker, args=(c,)) for c in chunks]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert agg.samples_executed == 400
        assert agg.successes == 200
        assert sorted(agg.completion_order) == list(range(400))


def test_elapsed_uses_clock():
    now = [100.0]
    agg = SampleResultAggregator(clock=lambda: now[0])
    now[0] = 100.25
    assert agg.elapsed_ms == pytest.approx(250.0)
