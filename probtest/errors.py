"""Error taxonomy for probabilistic trial runs.

Only three kinds of error ever cross the public API:

- ConfigurationError: the trial configuration is invalid. Raised before any
  sample executes.
- StatisticalInputError: an inference function received inputs it cannot
  work with (e.g. zero trials). Always a programming error.
- SampleExecutionError: a sample executor raised while the exception policy
  is PROPAGATE. The original exception is chained as ``__cause__``.

Sample failures and budget exhaustion are not errors; they are resolved into
a Verdict.
"""

from __future__ import annotations

from typing import Any


class ProbtestError(Exception):
    """Base class for all probtest errors."""


class ConfigurationError(ProbtestError, ValueError):
    """Raised when a trial configuration is invalid or cannot be resolved."""


class StatisticalInputError(ProbtestError, ValueError):
    """Raised when inference functions receive invalid inputs."""


class SampleExecutionError(ProbtestError):
    """Raised when a sample executor throws under the PROPAGATE policy.

    Attributes:
        sample_index: 0-based issue index of the sample that raised.
        partial: Progress snapshot at the moment of abort (a RunProgress).
    """

    def __init__(self, message: str, sample_index: int, partial: Any = None) -> None:
        super().__init__(message)
        self.sample_index = sample_index
        self.partial = partial
