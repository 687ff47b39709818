"""Compiler discovery for ``cppx profile``."""

import shutil
from typing import Iterable, Optional

from cppx.config import Toolchain
from cppx.output import capture_cmd, verbose

KNOWN_COMPILERS = ("gcc", "g++", "clang", "clang++")


def compiler_version(path: str) -> str:
    """First line of ``<compiler> --version``, or an empty string."""
    output = capture_cmd([path, "--version"])
    if not output:
        return ""
    return output.splitlines()[0].strip()


def discover_compilers(names: Iterable[str] = KNOWN_COMPILERS) -> list[Toolchain]:
    found = []
    for name in names:
        path: Optional[str] = shutil.which(name)
        if not path:
            verbose(f"compiler {name} not found on PATH")
            continue
        version = compiler_version(path) or "unknown"
        found.append(Toolchain(name, path, version))
    return found
