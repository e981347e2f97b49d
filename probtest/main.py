"""Command-line entry point for running a probabilistic trial.

Imports a sample executor given as module:callable, resolves the trial
configuration from flags, PROBTEST_* environment variables and an optional
settings file, runs the trial and reports the verdict. Exit status is 0 on
pass, 1 on fail and 2 when the configuration or target is invalid.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from probtest.errors import ConfigurationError, SampleExecutionError
from probtest.execution.runner import run
from probtest.lifecycle.config import TrialSettings, resolve_config
from probtest.reporting.reporter import Reporter

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a probabilistic trial against a sample executor"
    )
    parser.add_argument(
        "--target",
        required=True,
        help="Sample executor as module:callable (called once per sample)",
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=None,
        help="Number of samples to plan (default: 100)",
    )
    parser.add_argument(
        "--min-pass-rate",
        type=float,
        default=None,
        help="Minimum pass rate in [0, 1] (default: 0.95)",
    )
    parser.add_argument(
        "--time-budget-ms",
        type=float,
        default=None,
        help="Time budget in milliseconds; 0 is unlimited",
    )
    parser.add_argument(
        "--cost-budget",
        type=float,
        default=None,
        help="Cost budget; 0 is unlimited",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        help="Maximum samples in flight (default: 1)",
    )
    parser.add_argument(
        "--on-exception",
        choices=["fail_sample", "propagate", "ignore"],
        default=None,
        help="What to do when the executor raises (default: fail_sample)",
    )
    parser.add_argument(
        "--test-name",
        default=None,
        help="Name used in messages and reports (default: the target)",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=None,
        help="Path to a YAML or JSON settings file",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the verdict report here (.json for JSON, YAML otherwise)",
    )
    parser.add_argument(
        "--explain",
        action="store_true",
        default=False,
        help="Print the statistical explanation of the verdict",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Log the run at INFO level",
    )
    return parser.parse_args(argv)


def load_executor(target: str) -> Callable[[], Any]:
    """Import the callable named by a module:callable target.

    Args:
        target: e.g. "mypkg.checks:call_llm". Dotted attribute paths after
            the colon are followed.

    Returns:
        The callable.

    Raises:
        ConfigurationError: If the target is malformed, cannot be imported
            or is not callable.
    """
    module_name, sep, attr_path = target.partition(":")
    if not sep or not module_name or not attr_path:
        raise ConfigurationError(f"Target must be module:callable, got: {target!r}")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import {module_name!r}: {e}") from e
    for attr in attr_path.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError as e:
            raise ConfigurationError(
                f"{module_name!r} has no attribute {attr_path!r}"
            ) from e
    if not callable(obj):
        raise ConfigurationError(f"Target {target!r} is not callable")
    return obj


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        "samples": args.samples,
        "min_pass_rate": args.min_pass_rate,
        "time_budget_ms": args.time_budget_ms,
        "cost_budget": args.cost_budget,
        "max_concurrency": args.max_concurrency,
        "on_exception": args.on_exception,
        "test_name": args.test_name,
        "transparent_stats": True if args.explain else None,
    }

    try:
        settings = TrialSettings(args.config_file)
        config = resolve_config(
            overrides=overrides,
            declared={"test_name": args.target},
            settings=settings,
        )
        executor = load_executor(args.target)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        verdict = run(config, executor)
    except SampleExecutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.partial is not None:
            print(
                f"  Aborted after {e.partial.samples_executed} of "
                f"{e.partial.planned} samples",
                file=sys.stderr,
            )
        return EXIT_FAILED

    print(verdict.summary())
    if not verdict.passed:
        print()
        print(verdict.failure_message())
    if args.explain and verdict.explanation is not None:
        print()
        print(verdict.explanation.render())

    if args.output:
        reporter = Reporter()
        reporter.add_verdict(verdict)
        reporter.write(args.output)
        print(f"Report written to: {args.output}")

    return EXIT_PASSED if verdict.passed else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
