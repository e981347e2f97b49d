"""Unit tests for statistical explanations."""

from __future__ import annotations

import pytest

from probtest.stats.explanation import CovariateMisalignment, build_explanation, format_rate
from probtest.stats.thresholds import Baseline, ThresholdOrigin


class TestHypothesisFraming:
    """Tests for origin-dependent hypothesis wording."""

    @pytest.mark.parametrize(
        "origin, fragment",
        [
            (ThresholdOrigin.SLA, "system meets SLA requirement"),
            (ThresholdOrigin.SLO, "system meets SLO target"),
            (ThresholdOrigin.POLICY, "system meets policy requirement"),
            (ThresholdOrigin.EMPIRICAL, "no degradation from baseline"),
            (ThresholdOrigin.UNSPECIFIED, "success rate meets threshold"),
        ],
    )
    def test_null_hypothesis_framing(self, origin, fragment):
        exp = build_explanation("t", 100, 96, 0.95, True, threshold_origin=origin)
        assert fragment in exp.hypothesis.null_hypothesis
        assert "95.0%" in exp.hypothesis.null_hypothesis

    def test_origin_accepts_string_value(self):
        exp = build_explanation("t", 100, 96, 0.95, True, threshold_origin="sla")
        assert exp.threshold_origin is ThresholdOrigin.SLA


class TestVerdictInterpretation:
    """Tests for the plain-language verdict."""

    def test_pass_with_inline_threshold(self):
        exp = build_explanation("t", 100, 96, 0.95, True)
        assert exp.verdict.technical_result == "PASS"
        assert "meets the required threshold of 95.0%" in exp.verdict.plain_language

    def test_pass_with_baseline(self):
        exp = build_explanation("t", 100, 96, 0.93, True, baseline=Baseline(1000, 951))
        assert "consistent with the baseline expectation of 95.1%" in exp.verdict.plain_language
        assert exp.baseline.baseline_samples == 1000
        assert "Lower bound of 95% CI" in exp.baseline.derivation

    def test_fail_framing(self):
        exp = build_explanation("t", 100, 80, 0.95, False, threshold_origin=ThresholdOrigin.SLO)
        assert exp.verdict.technical_result == "FAIL"
        assert "falls below" in exp.verdict.plain_language
        assert "SLO target" in exp.verdict.plain_language

    def test_passed_flag_is_not_recomputed(self):
        """The decided outcome is reported as given."""
        exp = build_explanation("t", 10, 2, 0.95, True)
        assert exp.verdict.passed


class TestCaveats:
    """Tests for caveat selection."""

    def test_small_sample(self):
        exp = build_explanation("t", 20, 19, 0.9, True)
        assert any("Small sample size (n=20)" in c for c in exp.verdict.caveats)

    def test_limited_sensitivity(self):
        exp = build_explanation("t", 50, 48, 0.9, True)
        assert any("With n=50 samples" in c for c in exp.verdict.caveats)

    def test_near_threshold(self):
        exp = build_explanation("t", 200, 194, 0.95, True)
        assert any("close to the min pass rate" in c for c in exp.verdict.caveats)

    def test_no_near_threshold_when_margin_wide(self):
        exp = build_explanation("t", 200, 199, 0.80, True)
        assert not any("close to" in c for c in exp.verdict.caveats)

    def test_perfect_and_zero_rates(self):
        perfect = build_explanation("t", 100, 100, 0.9, True)
        zero = build_explanation("t", 100, 0, 0.9, False)
        assert any("Perfect success rate" in c for c in perfect.verdict.caveats)
        assert any("Zero success rate" in c for c in zero.verdict.caveats)

    def test_misalignment_listed_first(self):
        exp = build_explanation(
            "t",
            20,
            19,
            0.9,
            True,
            baseline=Baseline(100, 95),
            misalignments=[CovariateMisalignment("model", "gpt-a", "gpt-b")],
        )
        assert exp.verdict.caveats[0].startswith("Covariate misalignment detected")
        assert "model (baseline=gpt-a, test=gpt-b)" in exp.verdict.caveats[0]

    def test_inline_threshold_notice(self):
        exp = build_explanation("t", 100, 96, 0.95, True)
        assert any("Using inline threshold" in c for c in exp.verdict.caveats)

    def test_no_inline_notice_with_baseline(self):
        exp = build_explanation("t", 100, 96, 0.93, True, baseline=Baseline(1000, 951))
        assert not any("Using inline threshold" in c for c in exp.verdict.caveats)

    def test_compliance_undersizing(self):
        exp = build_explanation("t", 100, 100, 0.999, True, threshold_origin=ThresholdOrigin.SLA)
        assert any("not sized for compliance" in c for c in exp.verdict.caveats)

    def test_termination_note_appended(self):
        exp = build_explanation("t", 8, 8, 0.8, True, termination_note="Stopped early.")
        assert exp.verdict.caveats[-1] == "Stopped early."


class TestInferenceNumbers:
    """Tests for the numeric section."""

    def test_numbers_present(self):
        exp = build_explanation("t", 100, 85, 0.9, False)
        assert exp.inference.standard_error == pytest.approx(0.0357, abs=1e-3)
        assert exp.inference.ci_lower < 0.85 < exp.inference.ci_upper
        assert exp.inference.z_statistic < 0

    def test_zero_samples(self):
        exp = build_explanation("t", 0, 0, 0.9, False)
        assert exp.inference.standard_error is None
        assert exp.observed.observed_rate == 0.0

    def test_render_and_dict(self):
        exp = build_explanation("checkout", 100, 85, 0.9, False)
        text = exp.render()
        assert "Statistical analysis: checkout" in text
        assert "Verdict: FAIL" in text
        data = exp.to_dict()
        assert data["threshold_origin"] == "unspecified"
        assert data["observed"]["observed_rate"] == pytest.approx(0.85)


def test_format_rate():
    assert format_rate(0.951) == "95.1%"
    assert format_rate(1.0) == "100.0%"
