"""Trial configuration and its resolution.

TrialConfig is the immutable description of one probabilistic trial run.
resolve_config() assembles it from layered sources, highest priority first:

1. explicit overrides (keyword arguments, CLI flags)
2. environment variables named PROBTEST_<KEY>
3. a settings file (YAML or JSON) loaded by TrialSettings
4. values declared by the caller for this particular test
5. a minimum pass rate derived from a prior baseline
6. DEFAULT_CONFIG

Every layer uses the same flat key space (see CONFIG_KEYS). A
samples_multiplier from the environment or settings file scales the
resolved sample count.
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from probtest.errors import ConfigurationError
from probtest.execution.budget import BudgetExhaustedBehavior, CostMode
from probtest.execution.pacing import PacingConstraints
from probtest.stats.thresholds import Baseline, ThresholdOrigin, derive_threshold_sample_size_first

ENV_PREFIX = "PROBTEST_"

DEFAULT_CONFIG: dict[str, Any] = {
    "samples": 100,
    "min_pass_rate": 0.95,
    "confidence": 0.95,
    "time_budget_ms": 0,
    "cost_budget": 0,
    "cost_per_sample": 0,
    "cost_mode": None,
    "max_concurrency": 1,
    "on_exception": "fail_sample",
    "on_budget_exhausted": "fail",
    "max_example_failures": 5,
    "max_ignored_errors": None,
    "transparent_stats": False,
    "early_termination": True,
    "threshold_origin": "unspecified",
    "contract_ref": "",
    "test_name": "probabilistic-trial",
    "pacing_max_rps": 0,
    "pacing_max_rpm": 0,
    "pacing_max_rph": 0,
    "pacing_min_delay_ms": 0,
    "pacing_latency_ms": None,
}


class ExceptionPolicy(str, Enum):
    """What to do when a sample executor raises.

    FAIL_SAMPLE records the sample as a failure. PROPAGATE aborts the run
    and re-raises. IGNORE discards the sample and runs another in its place.
    """

    FAIL_SAMPLE = "fail_sample"
    PROPAGATE = "propagate"
    IGNORE = "ignore"


@dataclass(frozen=True)
class TrialConfig:
    """Immutable configuration of one trial run.

    Zero budgets are unlimited. A positive cost_per_sample with cost_mode
    left as None implies CostMode.STATIC.
    """

    samples: int = 100
    min_pass_rate: float = 0.95
    confidence: float = 0.95
    time_budget_ms: float = 0
    cost_budget: float = 0
    cost_per_sample: float = 0
    cost_mode: CostMode | None = None
    max_concurrency: int = 1
    pacing: PacingConstraints = field(default_factory=PacingConstraints)
    on_exception: ExceptionPolicy = ExceptionPolicy.FAIL_SAMPLE
    on_budget_exhausted: BudgetExhaustedBehavior = BudgetExhaustedBehavior.FAIL
    max_example_failures: int = 5
    max_ignored_errors: int | None = None
    transparent_stats: bool = False
    early_termination: bool = True
    baseline: Baseline | None = None
    threshold_origin: ThresholdOrigin = ThresholdOrigin.UNSPECIFIED
    contract_ref: str = ""
    test_name: str = "probabilistic-trial"

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "on_exception", ExceptionPolicy(self.on_exception))
            object.__setattr__(
                self, "on_budget_exhausted", BudgetExhaustedBehavior(self.on_budget_exhausted)
            )
            object.__setattr__(self, "threshold_origin", ThresholdOrigin(self.threshold_origin))
            if self.cost_mode is not None:
                object.__setattr__(self, "cost_mode", CostMode(self.cost_mode))
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if isinstance(self.samples, bool) or not isinstance(self.samples, int) or self.samples < 1:
            raise ConfigurationError(f"samples must be an integer >= 1, got: {self.samples!r}")
        if not 0.0 <= self.min_pass_rate <= 1.0:
            raise ConfigurationError(
                f"min_pass_rate must be in [0, 1], got: {self.min_pass_rate}"
            )
        if not 0.0 < self.confidence < 1.0:
            raise ConfigurationError(f"confidence must be in (0, 1), got: {self.confidence}")
        for name in ("time_budget_ms", "cost_budget", "cost_per_sample"):
            value = getattr(self, name)
            if math.isnan(value) or value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got: {value}")
        if self.max_concurrency < 1:
            raise ConfigurationError(
                f"max_concurrency must be >= 1, got: {self.max_concurrency}"
            )
        if self.max_example_failures < 0:
            raise ConfigurationError(
                f"max_example_failures must be >= 0, got: {self.max_example_failures}"
            )
        if self.max_ignored_errors is not None and self.max_ignored_errors < 0:
            raise ConfigurationError(
                f"max_ignored_errors must be >= 0, got: {self.max_ignored_errors}"
            )
        if self.cost_mode is CostMode.STATIC and self.cost_per_sample <= 0:
            raise ConfigurationError("STATIC cost mode requires a positive cost_per_sample")

    @property
    def effective_cost_mode(self) -> CostMode:
        if self.cost_mode is not None:
            return self.cost_mode
        return CostMode.STATIC if self.cost_per_sample > 0 else CostMode.NONE

    @property
    def ignored_error_limit(self) -> int:
        """Maximum IGNOREd errors before the run stops retrying."""
        if self.max_ignored_errors is not None:
            return self.max_ignored_errors
        return self.samples


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    return int(str(value).strip())


def _parse_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    return float(str(value).strip()) if isinstance(value, str) else float(value)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _optional(parser: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def parse(value: Any) -> Any:
        if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none")):
            return None
        return parser(value)

    return parse


def _lower(value: Any) -> str:
    return str(value).strip().lower()


# Key -> parser. The environment variable for a key is ENV_PREFIX + KEY.upper().
CONFIG_KEYS: dict[str, Callable[[Any], Any]] = {
    "samples": _parse_int,
    "min_pass_rate": _parse_float,
    "confidence": _parse_float,
    "time_budget_ms": _parse_float,
    "cost_budget": _parse_float,
    "cost_per_sample": _parse_float,
    "cost_mode": _optional(_lower),
    "max_concurrency": _parse_int,
    "on_exception": _lower,
    "on_budget_exhausted": _lower,
    "max_example_failures": _parse_int,
    "max_ignored_errors": _optional(_parse_int),
    "transparent_stats": _parse_bool,
    "early_termination": _parse_bool,
    "threshold_origin": _lower,
    "contract_ref": str,
    "test_name": str,
    "pacing_max_rps": _parse_float,
    "pacing_max_rpm": _parse_float,
    "pacing_max_rph": _parse_float,
    "pacing_min_delay_ms": _parse_int,
    "pacing_latency_ms": _optional(_parse_int),
}

# Keys honoured only from the environment and the settings file.
MULTIPLIER_KEY = "samples_multiplier"


def _parse_layer(values: Mapping[str, Any], source: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    for key, raw in values.items():
        parser = CONFIG_KEYS.get(key)
        if key == MULTIPLIER_KEY:
            parser = _parse_float
        if parser is None:
            raise ConfigurationError(f"Unknown configuration key {key!r} in {source}")
        try:
            parsed[key] = parser(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {key!r} in {source}: {e}") from e
    return parsed


def env_values(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read PROBTEST_* variables into parsed configuration values."""
    environ = os.environ if environ is None else environ
    raw: dict[str, Any] = {}
    for key in list(CONFIG_KEYS) + [MULTIPLIER_KEY]:
        name = ENV_PREFIX + key.upper()
        if name in environ:
            raw[key] = environ[name]
    return _parse_layer(raw, "environment")


class TrialSettings:
    """A YAML or JSON settings file holding configuration values.

    Files ending in .json are read as JSON; anything else as YAML. A missing
    file yields no values. Only keys present in the file are reported, so
    lower-priority layers still apply to the rest.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._data: dict[str, Any] = {}
        if path is not None and path.exists():
            self._load(path)

    def _load(self, path: Path) -> None:
        try:
            text = path.read_text()
            if path.suffix == ".json":
                data = json.loads(text) if text.strip() else {}
            else:
                data = yaml.safe_load(text) or {}
        except (json.JSONDecodeError, yaml.YAMLError, OSError) as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")
        self._data = _parse_layer(data, str(path))

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data.update(_parse_layer({key: value}, "settings"))

    def save(self) -> None:
        """Write the settings back in the file's own format."""
        if self.path is None:
            raise ValueError("No settings file path specified")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            if self.path.suffix == ".json":
                json.dump(self._data, f, indent=2)
                f.write("\n")
            else:
                yaml.dump(self._data, f, default_flow_style=False, sort_keys=False)


def resolve_config(
    overrides: Mapping[str, Any] | None = None,
    declared: Mapping[str, Any] | None = None,
    settings: TrialSettings | None = None,
    environ: Mapping[str, str] | None = None,
    baseline: Baseline | None = None,
) -> TrialConfig:
    """Build a TrialConfig from layered sources.

    Args:
        overrides: Explicit values; highest priority.
        declared: Values the caller declares for this test.
        settings: Settings file layer.
        environ: Environment mapping; defaults to os.environ.
        baseline: Prior measurement. When no layer sets min_pass_rate, the
            threshold is its one-sided Wilson lower bound at the resolved
            confidence and the origin defaults to EMPIRICAL.

    Returns:
        The resolved TrialConfig.

    Raises:
        ConfigurationError: If any layer holds an unparseable value or the
            merged configuration is invalid.
    """
    explicit = _parse_layer(
        {k: v for k, v in (overrides or {}).items() if v is not None}, "overrides"
    )
    from_env = env_values(environ)
    from_file = settings.values if settings is not None else {}
    from_declared = _parse_layer(declared or {}, "declared defaults")

    for layer, name in ((explicit, "overrides"), (from_declared, "declared defaults")):
        if MULTIPLIER_KEY in layer:
            raise ConfigurationError(
                f"{MULTIPLIER_KEY} may only be set in the environment or a settings file ({name})"
            )

    merged: dict[str, Any] = dict(DEFAULT_CONFIG)
    rate_is_set = False
    for layer in (from_declared, from_file, from_env, explicit):
        merged.update(layer)
        rate_is_set = rate_is_set or "min_pass_rate" in layer

    multiplier = merged.pop(MULTIPLIER_KEY, None)
    if multiplier is not None:
        if multiplier <= 0 or math.isnan(multiplier):
            raise ConfigurationError(f"{MULTIPLIER_KEY} must be > 0, got: {multiplier}")
        merged["samples"] = max(1, round(merged["samples"] * multiplier))

    if baseline is not None and not rate_is_set:
        if not 0.0 < merged["confidence"] < 1.0:
            raise ConfigurationError(
                f"confidence must be in (0, 1), got: {merged['confidence']}"
            )
        derived = derive_threshold_sample_size_first(
            baseline, merged["samples"], merged["confidence"]
        )
        merged["min_pass_rate"] = derived.value
        origin_is_set = any(
            "threshold_origin" in layer
            for layer in (from_declared, from_file, from_env, explicit)
        )
        if not origin_is_set:
            merged["threshold_origin"] = ThresholdOrigin.EMPIRICAL.value

    pacing = PacingConstraints(
        max_per_second=merged.pop("pacing_max_rps"),
        max_per_minute=merged.pop("pacing_max_rpm"),
        max_per_hour=merged.pop("pacing_max_rph"),
        min_delay_ms=merged.pop("pacing_min_delay_ms"),
        estimated_latency_ms=merged.pop("pacing_latency_ms"),
    )
    return TrialConfig(pacing=pacing, baseline=baseline, **merged)
