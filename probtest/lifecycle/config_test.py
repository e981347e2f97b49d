"""Unit tests for the config module."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from probtest.errors import ConfigurationError
from probtest.execution.budget import BudgetExhaustedBehavior, CostMode
from probtest.lifecycle.config import (
    DEFAULT_CONFIG,
    ExceptionPolicy,
    TrialConfig,
    TrialSettings,
    env_values,
    resolve_config,
)
from probtest.stats.thresholds import Baseline, ThresholdOrigin


class TestTrialConfig:
    """Tests for TrialConfig construction and validation."""

    def test_defaults(self):
        """Framework defaults match DEFAULT_CONFIG."""
        cfg = TrialConfig()
        assert cfg.samples == DEFAULT_CONFIG["samples"]
        assert cfg.min_pass_rate == 0.95
        assert cfg.max_example_failures == 5
        assert cfg.on_exception is ExceptionPolicy.FAIL_SAMPLE
        assert cfg.on_budget_exhausted is BudgetExhaustedBehavior.FAIL
        assert cfg.effective_cost_mode is CostMode.NONE

    def test_string_enums_coerced(self):
        """Enum fields accept their string values."""
        cfg = TrialConfig(on_exception="ignore", threshold_origin="sla")
        assert cfg.on_exception is ExceptionPolicy.IGNORE
        assert cfg.threshold_origin is ThresholdOrigin.SLA

    def test_unknown_enum_value(self):
        """An unknown policy name is a configuration error."""
        with pytest.raises(ConfigurationError):
            TrialConfig(on_exception="retry")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"samples": 0},
            {"samples": True},
            {"min_pass_rate": 1.5},
            {"min_pass_rate": -0.1},
            {"confidence": 1.0},
            {"time_budget_ms": -1},
            {"cost_budget": float("nan")},
            {"max_concurrency": 0},
            {"max_example_failures": -1},
            {"max_ignored_errors": -1},
            {"cost_mode": "static"},
        ],
    )
    def test_invalid_values(self, kwargs):
        """Out-of-range values are rejected at construction."""
        with pytest.raises(ConfigurationError):
            TrialConfig(**kwargs)

    def test_cost_per_sample_implies_static(self):
        """A positive cost_per_sample without a mode means STATIC."""
        assert TrialConfig(cost_per_sample=2).effective_cost_mode is CostMode.STATIC

    def test_explicit_dynamic_mode(self):
        """An explicit mode wins over the implied one."""
        cfg = TrialConfig(cost_per_sample=2, cost_mode="dynamic")
        assert cfg.effective_cost_mode is CostMode.DYNAMIC

    def test_ignored_error_limit(self):
        """The IGNORE cap defaults to the sample count."""
        assert TrialConfig(samples=40).ignored_error_limit == 40
        assert TrialConfig(samples=40, max_ignored_errors=3).ignored_error_limit == 3

    def test_immutable(self):
        """TrialConfig cannot be changed after construction."""
        cfg = TrialConfig()
        with pytest.raises(AttributeError):
            cfg.samples = 5


class TestEnvValues:
    """Tests for reading PROBTEST_* variables."""

    def test_parses_known_keys(self):
        """Values are parsed to their key's type."""
        values = env_values({
            "PROBTEST_SAMPLES": "250",
            "PROBTEST_MIN_PASS_RATE": "0.9",
            "PROBTEST_TRANSPARENT_STATS": "yes",
            "PROBTEST_MAX_IGNORED_ERRORS": "none",
            "UNRELATED": "x",
        })
        assert values == {
            "samples": 250,
            "min_pass_rate": 0.9,
            "transparent_stats": True,
            "max_ignored_errors": None,
        }

    def test_unparseable_value_names_source(self):
        """A bad value reports the key and the environment."""
        with pytest.raises(ConfigurationError, match="samples.*environment"):
            env_values({"PROBTEST_SAMPLES": "lots"})

    def test_bad_boolean(self):
        """Only recognised boolean spellings are accepted."""
        with pytest.raises(ConfigurationError):
            env_values({"PROBTEST_EARLY_TERMINATION": "maybe"})


class TestTrialSettings:
    """Tests for the settings file layer."""

    def test_no_path(self):
        """No path gives no values."""
        assert TrialSettings(None).values == {}

    def test_missing_file(self):
        """A missing file gives no values."""
        with tempfile.TemporaryDirectory() as tmpdir:
            assert TrialSettings(Path(tmpdir) / "missing.yaml").values == {}

    def test_load_yaml(self):
        """YAML settings are parsed."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "probtest.yaml"
            path.write_text("samples: 30\nmin_pass_rate: 0.8\non_exception: propagate\n")
            settings = TrialSettings(path)
            assert settings.get("samples") == 30
            assert settings.get("on_exception") == "propagate"
            assert settings.get("confidence") is None

    def test_load_json(self):
        """Files ending in .json are read as JSON."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "probtest.json"
            path.write_text(json.dumps({"max_concurrency": 4}))
            assert TrialSettings(path).values == {"max_concurrency": 4}

    def test_corrupted_file(self):
        """An unreadable file is a configuration error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "probtest.json"
            path.write_text("{ invalid json }")
            with pytest.raises(ConfigurationError, match="Cannot read"):
                TrialSettings(path)

    def test_non_mapping(self):
        """The file must hold a mapping."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "probtest.yaml"
            path.write_text("- 1\n- 2\n")
            with pytest.raises(ConfigurationError, match="mapping"):
                TrialSettings(path)

    def test_unknown_key(self):
        """Unknown keys are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "probtest.yaml"
            path.write_text("sample: 30\n")
            with pytest.raises(ConfigurationError, match="Unknown configuration key"):
                TrialSettings(path)

    def test_save_round_trip(self):
        """Saved YAML settings load back."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "probtest.yaml"
            settings = TrialSettings(path)
            settings.set("samples", "75")
            settings.set("samples_multiplier", 2)
            settings.save()

            assert yaml.safe_load(path.read_text()) == {
                "samples": 75,
                "samples_multiplier": 2.0,
            }
            assert TrialSettings(path).get("samples") == 75

    def test_save_without_path(self):
        """Saving needs a path."""
        with pytest.raises(ValueError):
            TrialSettings(None).save()


class TestResolveConfig:
    """Tests for layered resolution."""

    def test_defaults_only(self):
        """With no layers the defaults apply."""
        cfg = resolve_config(environ={})
        assert cfg.samples == 100
        assert cfg.min_pass_rate == 0.95

    def test_precedence(self):
        """Overrides beat env, env beats settings, settings beat declared."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "probtest.yaml"
            path.write_text("samples: 30\nmin_pass_rate: 0.8\nconfidence: 0.9\n")
            cfg = resolve_config(
                overrides={"samples": 10},
                declared={"samples": 5, "min_pass_rate": 0.5, "confidence": 0.5, "test_name": "t"},
                settings=TrialSettings(path),
                environ={"PROBTEST_SAMPLES": "20", "PROBTEST_MIN_PASS_RATE": "0.7"},
            )
        assert cfg.samples == 10
        assert cfg.min_pass_rate == 0.7
        assert cfg.confidence == 0.9
        assert cfg.test_name == "t"

    def test_none_override_is_unset(self):
        """An override of None leaves lower layers in charge."""
        cfg = resolve_config(
            overrides={"samples": None}, environ={"PROBTEST_SAMPLES": "12"}
        )
        assert cfg.samples == 12

    def test_multiplier(self):
        """The multiplier scales and rounds the sample count."""
        cfg = resolve_config(
            declared={"samples": 50},
            environ={"PROBTEST_SAMPLES_MULTIPLIER": "0.25"},
        )
        assert cfg.samples == 12

    def test_multiplier_never_below_one(self):
        """A tiny multiplier still leaves one sample."""
        cfg = resolve_config(
            declared={"samples": 3},
            environ={"PROBTEST_SAMPLES_MULTIPLIER": "0.01"},
        )
        assert cfg.samples == 1

    def test_multiplier_not_an_override(self):
        """The multiplier is only honoured from env or settings."""
        with pytest.raises(ConfigurationError, match="samples_multiplier"):
            resolve_config(overrides={"samples_multiplier": 2}, environ={})

    def test_non_positive_multiplier(self):
        """A zero multiplier is rejected."""
        with pytest.raises(ConfigurationError):
            resolve_config(environ={"PROBTEST_SAMPLES_MULTIPLIER": "0"})

    def test_pacing_keys(self):
        """Flat pacing keys become PacingConstraints."""
        cfg = resolve_config(
            declared={"pacing_max_rpm": 120},
            environ={"PROBTEST_PACING_MIN_DELAY_MS": "250"},
        )
        assert cfg.pacing.max_per_minute == 120
        assert cfg.pacing.min_delay_ms == 250
        assert cfg.pacing.estimated_latency_ms is None

    def test_invalid_merged_value(self):
        """Validation runs on the merged configuration."""
        with pytest.raises(ConfigurationError):
            resolve_config(environ={"PROBTEST_MIN_PASS_RATE": "1.2"})


class TestBaselineThreshold:
    """Tests for deriving min_pass_rate from a baseline."""

    def test_derived_when_unset(self):
        """Without an explicit rate the Wilson lower bound is used."""
        baseline = Baseline(samples=1000, successes=951)
        cfg = resolve_config(environ={}, baseline=baseline)
        assert cfg.min_pass_rate == pytest.approx(0.938, abs=0.002)
        assert cfg.threshold_origin is ThresholdOrigin.EMPIRICAL
        assert cfg.baseline is baseline

    def test_explicit_rate_wins(self):
        """A rate from any layer beats the derived one."""
        cfg = resolve_config(
            environ={"PROBTEST_MIN_PASS_RATE": "0.9"},
            baseline=Baseline(samples=1000, successes=951),
        )
        assert cfg.min_pass_rate == 0.9
        assert cfg.threshold_origin is ThresholdOrigin.UNSPECIFIED

    def test_declared_origin_kept(self):
        """A declared origin is not replaced by EMPIRICAL."""
        cfg = resolve_config(
            declared={"threshold_origin": "slo"},
            environ={},
            baseline=Baseline(samples=200, successes=190),
        )
        assert cfg.threshold_origin is ThresholdOrigin.SLO
