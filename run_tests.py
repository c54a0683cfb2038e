"""
Run the Screen Solver test suite with coverage reporting.

Tests run on Qt's offscreen platform, so no display is needed.
"""

import subprocess
import sys
from pathlib import Path


def run_tests(args=None):
    """
    Run pytest with coverage for screen_solver

    Args:
        args: Additional arguments to pass to pytest

    Returns:
        pytest's exit code
    """
    cmd = [
        sys.executable,
        "-m",
        "pytest",
        "-v",
        "--cov=screen_solver",
        "--cov-report=term-missing",
        "--cov-report=html",
    ] + list(args or [])

    return subprocess.run(cmd, cwd=Path(__file__).parent).returncode


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run Screen Solver tests with coverage")
    parser.add_argument(
        "--fast",
        action="store_true",
        help="Skip tests that start a submission worker thread or wait the real 200 ms hide delay"
    )
    parser.add_argument(
        "--only-dispatcher",
        action="store_true",
        help="Run only the capture/accumulate/submit/reset state machine tests"
    )
    parser.add_argument(
        "--no-coverage",
        action="store_true",
        help="Run tests without coverage reporting"
    )
    parser.add_argument(
        "pytest_args",
        nargs="*",
        help="Additional arguments to pass to pytest"
    )

    args = parser.parse_args()

    markers = []
    if args.fast:
        markers.append("not slow")
    if args.only_dispatcher:
        markers.append("dispatcher")

    cmd_args = ["--no-cov"] if args.no_coverage else []
    if markers:
        cmd_args += ["-m", " and ".join(markers)]
    cmd_args.extend(args.pytest_args)

    sys.exit(run_tests(cmd_args))
