"""Console output and subprocess helpers shared by every command."""

import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

PREFIX = "[cppx]"
VERBOSE_ENV_VAR = "CPPX_VERBOSE"

_verbose = os.environ.get(VERBOSE_ENV_VAR, "") not in {"", "0"}


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def info(message: str) -> None:
    """Print a standard informational message."""
    print(f"{PREFIX} {message}")


def verbose(message: str) -> None:
    """Print a message only when verbose output is enabled."""
    if _verbose:
        print(f"{PREFIX} [verbose] {message}")


def warn(message: str) -> None:
    """Print a non-fatal warning to stderr."""
    print(f"warning: {message}", file=sys.stderr)


def error(message: str) -> None:
    """Print a standardized error message to stderr."""
    print(f"error: {message}", file=sys.stderr)


def format_cmd(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in cmd)


def run_cmd(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> int:
    """Run a subprocess command and return the exit code."""
    print("+", format_cmd(cmd))
    try:
        subprocess.run(
            [str(part) for part in cmd],
            cwd=str(cwd) if cwd else None,
            check=True,
            env=env,
        )
    except subprocess.CalledProcessError as exc:
        error(f"command failed with exit code {exc.returncode}")
        return exc.returncode
    except FileNotFoundError as exc:
        error(f"command not found: {exc.filename or cmd[0]}")
        return 127
    return 0


def capture_cmd(cmd: Sequence[str]) -> Optional[str]:
    """Run a command and return its stdout, or None when it fails."""
    try:
        result = subprocess.run(
            [str(part) for part in cmd],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout
