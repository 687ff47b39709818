"""Dependency installation through Conan and install-report parsing.

Conan writes a JSON report (``graph.nodes``) describing every resolved
package. Each node may carry compiled package metadata (``cpp_info``) in two
shapes: a pre-normalized ``_fmt`` shorthand and a detailed ``root`` form. The
shorthand wins when both are present.
"""

import json
import shutil
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence, TypeAlias, TypedDict

from cppx.config import (
    INCLUDE_DIRS_KEY,
    SECTION_SOURCE,
    STATIC_LINKED_DIRS_KEY,
    STATIC_LINKED_KEY,
    ProjectStore,
)
from cppx.errors import CppxError, InstallToolError, RemoveToolError
from cppx.output import info, run_cmd, verbose

INSTALLER = "conan"
INSTALL_REPORT_NAME = "install_log.json"
CPP_INFO_SHORTHAND = "_fmt"
CPP_INFO_DETAILED = "root"
REF_BOUNDARY_CHARS = "/#@"


class PackageInfo(TypedDict):
    package_ref: str
    libs: list[str]
    include_paths: list[str]
    lib_paths: list[str]


class ReportNode(TypedDict):
    ref: str
    libs: list[str]
    include_paths: list[str]
    lib_paths: list[str]


Runner: TypeAlias = Callable[[Sequence[str]], int]


def ref_matches(ref: str, requested: str) -> bool:
    """Match an installed reference against a requested one.

    ``zlib/1.3.1#abc`` matches ``zlib/1.3.1`` and ``zlib`` but not
    ``zlib/1.3``: a prefix only counts when it ends on a reference boundary.
    """
    if not requested:
        return False
    if ref == requested:
        return True
    if not ref.startswith(requested):
        return False
    return ref[len(requested)] in REF_BOUNDARY_CHARS


def _string_list(value: Any) -> Optional[list[str]]:
    if not isinstance(value, list):
        return None
    return [entry for entry in value if isinstance(entry, str)]


def _pick_field(cpp_info: dict[str, Any], key: str) -> list[str]:
    for variant in (CPP_INFO_SHORTHAND, CPP_INFO_DETAILED):
        table = cpp_info.get(variant)
        if not isinstance(table, dict):
            continue
        values = _string_list(table.get(key))
        if values is not None:
            return values
    return []


def _absolute_dirs(paths: list[str], base_dir: Path) -> list[str]:
    resolved = []
    for entry in paths:
        candidate = Path(entry)
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        resolved.append(str(candidate.absolute()))
    return resolved


def _parse_node(node: dict[str, Any], base_dir: Path) -> Optional[ReportNode]:
    ref = node.get("ref")
    if not isinstance(ref, str) or not ref:
        return None
    cpp_info = node.get("cpp_info")
    if not isinstance(cpp_info, dict):
        cpp_info = {}
    return {
        "ref": ref,
        "libs": _pick_field(cpp_info, "libs"),
        "include_paths": _absolute_dirs(_pick_field(cpp_info, "includedirs"), base_dir),
        "lib_paths": _absolute_dirs(_pick_field(cpp_info, "libdirs"), base_dir),
    }


class InstallReport:
    """Normalized view of a Conan install report."""

    def __init__(self, nodes: list[ReportNode]):
        self._nodes = nodes

    @property
    def nodes(self) -> list[ReportNode]:
        return self._nodes

    @classmethod
    def from_dict(cls, data: Any, base_dir: Path) -> "InstallReport":
        nodes: list[ReportNode] = []
        graph = data.get("graph") if isinstance(data, dict) else None
        raw_nodes = graph.get("nodes") if isinstance(graph, dict) else None
        if isinstance(raw_nodes, dict):
            entries = raw_nodes.values()
        elif isinstance(raw_nodes, list):
            entries = raw_nodes
        else:
            entries = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            parsed = _parse_node(entry, base_dir)
            if parsed is not None:
                nodes.append(parsed)
        return cls(nodes)

    @classmethod
    def load(cls, path: Path, base_dir: Path) -> "InstallReport":
        if not path.exists():
            raise CppxError(f"{path.name} not found; install a package first")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CppxError(f"failed to read install report {path}: {exc}") from exc
        return cls.from_dict(data, base_dir)

    def matching(self, package_ref: str) -> Iterator[ReportNode]:
        for node in self._nodes:
            if ref_matches(node["ref"], package_ref):
                yield node

    def find(self, package_ref: str) -> Optional[ReportNode]:
        return next(self.matching(package_ref), None)


class PackageManager:
    """Installs and removes packages into a project's vendor directory."""

    def __init__(
        self,
        vendor_dir: Path,
        runner: Optional[Runner] = None,
        base_dir: Optional[Path] = None,
    ):
        self._vendor_dir = Path(vendor_dir)
        self._runner = runner
        self._base_dir = Path(base_dir) if base_dir is not None else self._vendor_dir.parent

    @property
    def vendor_dir(self) -> Path:
        return self._vendor_dir

    @property
    def report_path(self) -> Path:
        return self._vendor_dir / INSTALL_REPORT_NAME

    def _run(self, cmd: Sequence[str]) -> int:
        if self._runner is not None:
            return self._runner(cmd)
        return run_cmd(cmd, cwd=self._base_dir)

    def install(self, package_ref: str) -> None:
        """Install a package and require the install report to exist afterwards."""
        try:
            self._vendor_dir.mkdir(parents=True, exist_ok=True)
            self.report_path.unlink(missing_ok=True)
        except OSError as exc:
            raise InstallToolError(f"failed to prepare {self._vendor_dir}: {exc}") from exc
        cmd = [
            INSTALLER,
            "install",
            "--requires",
            package_ref,
            "--build",
            "missing",
            "-of",
            str(self._vendor_dir),
            "-f",
            "json",
            "--out-file",
            str(self.report_path),
        ]
        info(f"installing {package_ref}")
        returncode = self._run(cmd)
        if returncode != 0:
            raise InstallToolError(f"failed to install package '{package_ref}'")
        if not self.report_path.exists():
            raise InstallToolError(
                f"installer did not write {self.report_path} for '{package_ref}'"
            )

    def load_report(self) -> InstallReport:
        return InstallReport.load(self.report_path, self._base_dir)

    def info(self, package_ref: str) -> PackageInfo:
        node = self.load_report().find(package_ref)
        if node is None:
            return {
                "package_ref": package_ref,
                "libs": [],
                "include_paths": [],
                "lib_paths": [],
            }
        return {
            "package_ref": package_ref,
            "libs": list(node["libs"]),
            "include_paths": list(node["include_paths"]),
            "lib_paths": list(node["lib_paths"]),
        }

    def is_installed(self, package_ref: str) -> bool:
        if not self.report_path.exists():
            return False
        try:
            return self.load_report().find(package_ref) is not None
        except CppxError:
            return False

    def remove(self, package_ref: str) -> Optional[PackageInfo]:
        """Remove a package; returns the captured info, or None if not installed."""
        if not self.is_installed(package_ref):
            return None
        package = self.info(package_ref)

        returncode = self._run([INSTALLER, "remove", package_ref, "-c"])
        if returncode != 0:
            raise RemoveToolError(f"failed to remove package '{package_ref}' from Conan cache")
        info(f"removed {package_ref} from Conan cache")

        local_dir = self._vendor_dir / package_ref
        if local_dir.exists() and _path_is_within(local_dir, self._vendor_dir):
            try:
                shutil.rmtree(local_dir)
            except OSError as exc:
                raise RemoveToolError(f"failed to remove {local_dir}: {exc}") from exc
            verbose(f"removed local package directory {local_dir}")
        return package


def _path_is_within(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
    except ValueError:
        return False
    return child.resolve() != parent.resolve()


def register_package(
    store: ProjectStore, name: str, version: str, package: PackageInfo
) -> None:
    """Record a dependency and fold its paths into the source section."""
    store.set_dependency(name, version)
    store.add_values(
        SECTION_SOURCE, INCLUDE_DIRS_KEY, package["include_paths"], "include directory"
    )
    store.add_values(SECTION_SOURCE, STATIC_LINKED_KEY, package["libs"], "library")
    store.add_values(
        SECTION_SOURCE, STATIC_LINKED_DIRS_KEY, package["lib_paths"], "library directory"
    )


def unregister_package(store: ProjectStore, name: str, package: PackageInfo) -> None:
    """Undo ``register_package`` for a removed dependency."""
    store.remove_dependency(name)
    store.remove_values(
        SECTION_SOURCE, INCLUDE_DIRS_KEY, package["include_paths"], "include directory"
    )
    store.remove_values(SECTION_SOURCE, STATIC_LINKED_KEY, package["libs"], "library")
    store.remove_values(
        SECTION_SOURCE, STATIC_LINKED_DIRS_KEY, package["lib_paths"], "library directory"
    )
