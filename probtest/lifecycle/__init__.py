"""Trial lifecycle: configuration resolution and final verdicts."""

from probtest.lifecycle.config import ExceptionPolicy, TrialConfig, TrialSettings, resolve_config
from probtest.lifecycle.verdict import Verdict, VerdictDecider

__all__ = [
    "ExceptionPolicy",
    "TrialConfig",
    "TrialSettings",
    "Verdict",
    "VerdictDecider",
    "resolve_config",
]
