"""Exception types raised by cppx operations.

Library code raises these; ``cppx.cli.main`` turns them into a single error
line and a nonzero exit status.
"""

from typing import Optional


class CppxError(Exception):
    """Base class for all cppx failures."""


class NotConfigured(CppxError):
    """No current project, toolchain, or project document is available."""


class ParseError(CppxError):
    """A configuration document is not valid JSON."""


class SchemaError(CppxError):
    """A configuration document is missing a key or has the wrong type."""

    def __init__(self, key: str, message: str):
        super().__init__(f"config {key} {message}")
        self.key = key


class UnknownConfig(CppxError):
    """A named build configuration does not exist. Only ever reported as a warning."""

    def __init__(self, name: str):
        super().__init__(f"configuration '{name}' not found; using defaults")
        self.name = name


class UnsupportedBuildType(CppxError):
    def __init__(self, build_type: str):
        super().__init__(f"unsupported build type '{build_type}'")
        self.build_type = build_type


class BuildError(CppxError):
    """An external build tool exited with a nonzero status."""

    stage = "build"

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class CompileError(BuildError):
    stage = "compile"

    def __init__(self, source: str, returncode: Optional[int] = None):
        super().__init__(f"compilation of {source} failed", returncode)
        self.source = source


class LinkError(BuildError):
    """A single compile-and-link invocation failed."""

    stage = "compile+link"


class ArchiveError(BuildError):
    stage = "archive"


class InstallToolError(CppxError):
    """The dependency installer failed or produced no report."""


class RemoveToolError(CppxError):
    """The dependency installer failed to remove a package."""


class GithubError(CppxError):
    """Repository metadata could not be fetched."""
