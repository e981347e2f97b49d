"""Trial reporting: verdict serialization and YAML/JSON reports."""

from probtest.reporting.reporter import Reporter, verdict_to_dict

__all__ = [
    "Reporter",
    "verdict_to_dict",
]
