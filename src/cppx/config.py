"""Configuration store for cppx projects.

Two documents are managed here. The global document (``~/.cppxglobal.json``)
records which project is current and which toolchain builds it. The project
document (``<project>/config.json``) describes sources, link settings,
dependencies, metadata and build settings.

Every read parses the whole document and every write replaces the whole
document; nothing is cached between operations.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeAlias, TypedDict, TypeVar

from cppx.errors import CppxError, NotConfigured, ParseError, SchemaError
from cppx.output import verbose

PROJECT_DOCUMENT_NAME = "config.json"
GLOBAL_DOCUMENT_NAME = ".cppxglobal.json"
GLOBAL_CONFIG_ENV_VAR = "CPPX_GLOBAL_CONFIG"
DEFAULT_BUILD_DIR = "build"
DEFAULT_VENDOR_DIR = "vendor"
DEFAULT_OUTPUT_NAME = "_default"

BUILD_EXECUTABLE = "executable"
BUILD_STATIC = "static"
BUILD_SHARED = "shared"
BUILD_TYPES = (BUILD_EXECUTABLE, BUILD_STATIC, BUILD_SHARED)
BUILD_TYPE_ALIASES = {
    DEFAULT_OUTPUT_NAME: BUILD_EXECUTABLE,
    BUILD_EXECUTABLE: BUILD_EXECUTABLE,
    BUILD_STATIC: BUILD_STATIC,
    BUILD_SHARED: BUILD_SHARED,
    "dynamic": BUILD_SHARED,
}

SECTION_SOURCE = "source"
SECTION_IGNORE = "ignore"
SECTION_DEPENDENCIES = "dependencies"
SECTION_EXTRA = "extra"
SECTION_METADATA = "metadata"
SECTION_DEFINES = "defines"
SECTION_BUILD = "build"
SECTION_CONFIGURATIONS = "configurations"
SECTIONS = (
    SECTION_SOURCE,
    SECTION_IGNORE,
    SECTION_DEPENDENCIES,
    SECTION_EXTRA,
    SECTION_METADATA,
    SECTION_DEFINES,
    SECTION_BUILD,
    SECTION_CONFIGURATIONS,
)

SRC_FILES_KEY = "src files"
INCLUDE_FILES_KEY = "include files"
INCLUDE_DIRS_KEY = "include directories"
STATIC_LINKED_KEY = "static_linked"
STATIC_LINKED_DIRS_KEY = "static_linked_dirs"
SOURCE_ARRAY_KEYS = (
    SRC_FILES_KEY,
    INCLUDE_FILES_KEY,
    INCLUDE_DIRS_KEY,
    STATIC_LINKED_KEY,
    STATIC_LINKED_DIRS_KEY,
)
IGNORE_FILES_KEY = "files"
IGNORE_DIRS_KEY = "dirs"
METADATA_STRING_KEYS = (
    "version",
    "description",
    "license",
    "github_username",
    "github_repo",
)
EXTRA_COMPILER_KEY = "compiler"


class BuildSettings(TypedDict):
    output_name: str
    build_type: str


class Metadata(TypedDict):
    version: str
    authors: list[str]
    description: str
    license: str
    github_username: str
    github_repo: str


class NamedConfiguration(TypedDict):
    flags: list[str]
    output: Optional[str]


class ProjectSettings(TypedDict):
    name: str
    src_files: list[str]
    include_files: list[str]
    include_dirs: list[str]
    ignored_dirs: list[str]
    ignored_files: list[str]
    static_linked: list[str]
    static_linked_dirs: list[str]
    dependencies: dict[str, str]
    extra: dict[str, str]
    build: BuildSettings
    metadata: Metadata
    defines: dict[str, str]
    configurations: dict[str, NamedConfiguration]


T = TypeVar("T")
Document: TypeAlias = dict[str, Any]
SectionMutator: TypeAlias = Callable[[dict[str, Any]], T]


class Toolchain:
    """Compiler identity discovered by ``cppx profile``."""

    def __init__(self, compiler_name: str, compiler_path: str, compiler_version: str):
        self._compiler_name = compiler_name
        self._compiler_path = compiler_path
        self._compiler_version = compiler_version

    @property
    def compiler_name(self) -> str:
        return self._compiler_name

    @property
    def compiler_path(self) -> str:
        return self._compiler_path

    @property
    def compiler_version(self) -> str:
        return self._compiler_version

    def to_dict(self) -> dict[str, str]:
        return {
            "compiler": self._compiler_name,
            "path": self._compiler_path,
            "version": self._compiler_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Toolchain":
        values = []
        for key in ("compiler", "path", "version"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise NotConfigured("no toolchain set; run 'cppx profile'")
            values.append(value)
        return cls(*values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Toolchain):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"Toolchain({self._compiler_name!r}, {self._compiler_path!r}, "
            f"{self._compiler_version!r})"
        )


class ProjectConfig:
    """The project an operation works on: its root, name and toolchain."""

    def __init__(self, path: Path, name: str, toolchain: Toolchain):
        self._path = Path(path)
        self._name = name
        self._toolchain = toolchain

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return self._name

    @property
    def toolchain(self) -> Toolchain:
        return self._toolchain

    @property
    def document_path(self) -> Path:
        return self._path / PROJECT_DOCUMENT_NAME

    @property
    def build_dir(self) -> Path:
        return self._path / DEFAULT_BUILD_DIR

    @property
    def vendor_dir(self) -> Path:
        return self._path / DEFAULT_VENDOR_DIR

    def __repr__(self) -> str:
        return f"ProjectConfig({str(self._path)!r}, {self._name!r})"


def resolve_project_path(project: ProjectConfig, value: str) -> Path:
    """Resolve a configured path against the project root unless absolute."""
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return candidate
    return project.path / candidate


def pick_compiler(project: ProjectConfig, settings: ProjectSettings) -> str:
    """Return the per-project compiler override or the toolchain compiler."""
    override = settings["extra"].get(EXTRA_COMPILER_KEY)
    if override:
        return override
    return project.toolchain.compiler_path


# Document storage.
class DocumentStorage:
    """Whole-document read/write backend used by the stores."""

    def exists(self) -> bool:
        raise NotImplementedError

    def read(self) -> Document:
        raise NotImplementedError

    def write(self, data: Document) -> None:
        raise NotImplementedError


class JsonDocumentStorage(DocumentStorage):
    """Stores a document as a JSON file, replaced atomically on write."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self) -> Document:
        if not self._path.exists():
            raise NotConfigured(f"configuration file not found: {self._path}")
        try:
            contents = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CppxError(f"failed to read {self._path}: {exc}") from exc
        try:
            data = json.loads(contents)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON in {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"{self._path} must contain a JSON object")
        return data

    def write(self, data: Document) -> None:
        contents = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(contents)
                os.replace(tmp_name, self._path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise CppxError(f"failed to write {self._path}: {exc}") from exc


# Validation.
def _require_table(value: Any, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SchemaError(field_name, "must be an object")
    return value


def _validate_string_list(value: Any, field_name: str) -> list[str]:
    if not isinstance(value, list):
        raise SchemaError(field_name, "must be a list of strings")
    for entry in value:
        if not isinstance(entry, str):
            raise SchemaError(field_name, "must be a list of strings")
    return list(value)


def _validate_string_map(value: Any, field_name: str) -> dict[str, str]:
    table = _require_table(value, field_name)
    normalized = {}
    for key, entry in table.items():
        if not isinstance(entry, str):
            raise SchemaError(f"{field_name}.{key}", "must be a string")
        normalized[key] = entry
    return normalized


def _optional_string(table: dict[str, Any], key: str, field_name: str) -> str:
    value = table.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise SchemaError(f"{field_name}.{key}", "must be a string")
    return value


def _parse_source(data: Document) -> dict[str, list[str]]:
    source = data.get(SECTION_SOURCE)
    if source is None:
        raise SchemaError(SECTION_SOURCE, "section is required")
    source = _require_table(source, SECTION_SOURCE)
    arrays = {}
    for key in SOURCE_ARRAY_KEYS:
        field_name = f"{SECTION_SOURCE}.{key}"
        if key not in source:
            raise SchemaError(field_name, "is required")
        arrays[key] = _validate_string_list(source[key], field_name)
    return arrays


def _parse_ignore(data: Document) -> tuple[list[str], list[str]]:
    ignore = data.get(SECTION_IGNORE)
    if ignore is None:
        return [], []
    ignore = _require_table(ignore, SECTION_IGNORE)
    files: list[str] = []
    dirs: list[str] = []
    if IGNORE_FILES_KEY in ignore:
        files = _validate_string_list(
            ignore[IGNORE_FILES_KEY], f"{SECTION_IGNORE}.{IGNORE_FILES_KEY}"
        )
    if IGNORE_DIRS_KEY in ignore:
        dirs = _validate_string_list(
            ignore[IGNORE_DIRS_KEY], f"{SECTION_IGNORE}.{IGNORE_DIRS_KEY}"
        )
    return files, dirs


def _parse_optional_map(data: Document, section: str) -> dict[str, str]:
    value = data.get(section)
    if value is None:
        return {}
    return _validate_string_map(value, section)


def _parse_metadata(data: Document) -> Metadata:
    metadata = data.get(SECTION_METADATA)
    table = {} if metadata is None else _require_table(metadata, SECTION_METADATA)
    authors_value = table.get("authors")
    if authors_value is None:
        authors = []
    elif isinstance(authors_value, str):
        authors = [authors_value] if authors_value else []
    else:
        authors = _validate_string_list(authors_value, f"{SECTION_METADATA}.authors")
    return {
        "version": _optional_string(table, "version", SECTION_METADATA),
        "authors": authors,
        "description": _optional_string(table, "description", SECTION_METADATA),
        "license": _optional_string(table, "license", SECTION_METADATA),
        "github_username": _optional_string(
            table, "github_username", SECTION_METADATA
        ),
        "github_repo": _optional_string(table, "github_repo", SECTION_METADATA),
    }


def _parse_build(data: Document, project_name: str) -> BuildSettings:
    build = data.get(SECTION_BUILD)
    table = {} if build is None else _require_table(build, SECTION_BUILD)
    output_name = table.get("build_name", DEFAULT_OUTPUT_NAME)
    if not isinstance(output_name, str) or not output_name.strip():
        raise SchemaError(f"{SECTION_BUILD}.build_name", "must be a non-empty string")
    build_type = table.get("build_type", DEFAULT_OUTPUT_NAME)
    if not isinstance(build_type, str) or build_type not in BUILD_TYPE_ALIASES:
        raise SchemaError(
            f"{SECTION_BUILD}.build_type",
            f"must be one of {', '.join(BUILD_TYPES)}",
        )
    if output_name == DEFAULT_OUTPUT_NAME:
        output_name = project_name
    return {"output_name": output_name, "build_type": BUILD_TYPE_ALIASES[build_type]}


def _parse_configurations(data: Document) -> dict[str, NamedConfiguration]:
    value = data.get(SECTION_CONFIGURATIONS)
    if value is None:
        return {}
    table = _require_table(value, SECTION_CONFIGURATIONS)
    configurations: dict[str, NamedConfiguration] = {}
    for name, entry in table.items():
        field_name = f"{SECTION_CONFIGURATIONS}.{name}"
        entry = _require_table(entry, field_name)
        flags: list[str] = []
        if "flags" in entry:
            flags = _validate_string_list(entry["flags"], f"{field_name}.flags")
        output = entry.get("output")
        if output is not None and (not isinstance(output, str) or not output.strip()):
            raise SchemaError(f"{field_name}.output", "must be a non-empty string")
        configurations[name] = {"flags": flags, "output": output}
    return configurations


def parse_settings(data: Document, project_name: str) -> ProjectSettings:
    """Validate a raw project document and project it into settings.

    Raises SchemaError naming the offending key; nothing is returned for a
    partially valid document.
    """
    source = _parse_source(data)
    ignored_files, ignored_dirs = _parse_ignore(data)
    return {
        "name": project_name,
        "src_files": source[SRC_FILES_KEY],
        "include_files": source[INCLUDE_FILES_KEY],
        "include_dirs": source[INCLUDE_DIRS_KEY],
        "ignored_dirs": ignored_dirs,
        "ignored_files": ignored_files,
        "static_linked": source[STATIC_LINKED_KEY],
        "static_linked_dirs": source[STATIC_LINKED_DIRS_KEY],
        "dependencies": _parse_optional_map(data, SECTION_DEPENDENCIES),
        "extra": _parse_optional_map(data, SECTION_EXTRA),
        "build": _parse_build(data, project_name),
        "metadata": _parse_metadata(data),
        "defines": _parse_optional_map(data, SECTION_DEFINES),
        "configurations": _parse_configurations(data),
    }


def render_document(settings: ProjectSettings) -> Document:
    """Render settings back into the on-disk document layout."""
    configurations: dict[str, dict[str, Any]] = {}
    for name, entry in settings["configurations"].items():
        rendered: dict[str, Any] = {"flags": list(entry["flags"])}
        if entry["output"] is not None:
            rendered["output"] = entry["output"]
        configurations[name] = rendered
    metadata = settings["metadata"]
    document: Document = {
        "name": settings["name"],
        SECTION_SOURCE: {
            SRC_FILES_KEY: list(settings["src_files"]),
            INCLUDE_FILES_KEY: list(settings["include_files"]),
            INCLUDE_DIRS_KEY: list(settings["include_dirs"]),
            STATIC_LINKED_KEY: list(settings["static_linked"]),
            STATIC_LINKED_DIRS_KEY: list(settings["static_linked_dirs"]),
        },
        SECTION_IGNORE: {
            IGNORE_FILES_KEY: list(settings["ignored_files"]),
            IGNORE_DIRS_KEY: list(settings["ignored_dirs"]),
        },
        SECTION_DEPENDENCIES: dict(settings["dependencies"]),
        SECTION_EXTRA: dict(settings["extra"]),
        SECTION_BUILD: {
            "build_name": settings["build"]["output_name"],
            "build_type": settings["build"]["build_type"],
        },
        SECTION_METADATA: {
            "version": metadata["version"],
            "authors": list(metadata["authors"]),
            "description": metadata["description"],
            "license": metadata["license"],
            "github_username": metadata["github_username"],
            "github_repo": metadata["github_repo"],
        },
        SECTION_DEFINES: dict(settings["defines"]),
    }
    if configurations:
        document[SECTION_CONFIGURATIONS] = configurations
    return document


def default_document(name: str) -> Document:
    """Document written for a freshly scaffolded project."""
    return {
        "name": name,
        SECTION_SOURCE: {
            SRC_FILES_KEY: ["src/main.cpp"],
            INCLUDE_FILES_KEY: ["include/main.hpp"],
            INCLUDE_DIRS_KEY: ["include"],
            STATIC_LINKED_KEY: [],
            STATIC_LINKED_DIRS_KEY: [],
        },
        SECTION_DEPENDENCIES: {},
        SECTION_IGNORE: {IGNORE_FILES_KEY: [], IGNORE_DIRS_KEY: []},
        SECTION_BUILD: {"build_name": name, "build_type": BUILD_EXECUTABLE},
    }


# Set-with-insertion-order helpers.
def add_unique(items: list[Any], value: str) -> bool:
    """Append value unless an equal string is already present."""
    if any(isinstance(item, str) and item == value for item in items):
        return False
    items.append(value)
    return True


def remove_all(items: Iterable[Any], values: Iterable[str]) -> list[Any]:
    """Return items without any string equal to one of values, order kept."""
    to_remove = set(values)
    return [item for item in items if not (isinstance(item, str) and item in to_remove)]


class ProjectStore:
    """Typed access to one project's configuration document."""

    def __init__(self, project: ProjectConfig, storage: Optional[DocumentStorage] = None):
        self._project = project
        self._storage = (
            storage if storage is not None else JsonDocumentStorage(project.document_path)
        )

    @property
    def project(self) -> ProjectConfig:
        return self._project

    @property
    def storage(self) -> DocumentStorage:
        return self._storage

    def load(self) -> ProjectSettings:
        """Parse the project document into settings."""
        return parse_settings(self._storage.read(), self._project.name)

    def mutate(self, section: str, fn: SectionMutator[T]) -> T:
        """Apply fn to one section and rewrite the whole document."""
        if section not in SECTIONS:
            raise ValueError(f"unknown configuration section '{section}'")
        data = self._storage.read()
        table = data.get(section)
        if table is None:
            table = {}
        table = _require_table(table, section)
        result = fn(table)
        data[section] = table
        self._storage.write(data)
        return result

    def add_values(
        self, section: str, key: str, values: Iterable[str], label: str = "entry"
    ) -> list[str]:
        """Add each value to an array unless present; return what was added."""
        values = list(values)

        def apply(table: dict[str, Any]) -> list[str]:
            items = table.get(key)
            if items is None:
                items = []
            elif not isinstance(items, list):
                raise SchemaError(f"{section}.{key}", "must be a list of strings")
            added = []
            for value in values:
                if add_unique(items, value):
                    verbose(f"adding new {label}: {value}")
                    added.append(value)
                else:
                    verbose(f"{label} already present: {value}")
            table[key] = items
            return added

        return self.mutate(section, apply)

    def remove_values(
        self, section: str, key: str, values: Iterable[str], label: str = "entry"
    ) -> list[str]:
        """Remove every element equal to any of values; return what was removed."""
        values = list(values)

        def apply(table: dict[str, Any]) -> list[str]:
            items = table.get(key)
            if items is None:
                return []
            if not isinstance(items, list):
                raise SchemaError(f"{section}.{key}", "must be a list of strings")
            kept = remove_all(items, values)
            removed = [
                item for item in items if isinstance(item, str) and item in values
            ]
            for value in removed:
                verbose(f"removed {label}: {value}")
            table[key] = kept
            return removed

        return self.mutate(section, apply)

    def set_dependency(self, name: str, version: str) -> None:
        def apply(table: dict[str, Any]) -> None:
            table[name] = version

        self.mutate(SECTION_DEPENDENCIES, apply)

    def remove_dependency(self, name: str) -> bool:
        def apply(table: dict[str, Any]) -> bool:
            return table.pop(name, None) is not None

        return self.mutate(SECTION_DEPENDENCIES, apply)

    def set_extra(self, name: str, value: str) -> None:
        def apply(table: dict[str, Any]) -> None:
            table[name] = value

        self.mutate(SECTION_EXTRA, apply)

    def set_metadata(self, key: str, value: str | list[str]) -> None:
        def apply(table: dict[str, Any]) -> None:
            table[key] = list(value) if isinstance(value, list) else value

        self.mutate(SECTION_METADATA, apply)


def default_global_config_path() -> Path:
    override = os.environ.get(GLOBAL_CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / GLOBAL_DOCUMENT_NAME


class GlobalConfig:
    """Per-user document naming the current project and toolchain."""

    def __init__(
        self, path: Optional[Path] = None, storage: Optional[DocumentStorage] = None
    ):
        if storage is None:
            storage = JsonDocumentStorage(
                path if path is not None else default_global_config_path()
            )
        self._storage = storage

    @property
    def storage(self) -> DocumentStorage:
        return self._storage

    def _read(self) -> Document:
        if not self._storage.exists():
            return {}
        return self._storage.read()

    def current_project(self) -> ProjectConfig:
        """Return the current project context or raise NotConfigured."""
        data = self._read()
        project = data.get("project")
        if not isinstance(project, dict):
            raise NotConfigured("no project set; run 'cppx project set'")
        name = project.get("name")
        path = project.get("path")
        if not isinstance(name, str) or not name or not isinstance(path, str) or not path:
            raise NotConfigured("no project set; run 'cppx project set'")
        toolchain = data.get("toolchain")
        if not isinstance(toolchain, dict):
            raise NotConfigured("toolchain not configured; run 'cppx profile'")
        return ProjectConfig(Path(path), name, Toolchain.from_dict(toolchain))

    def toolchain(self) -> Optional[Toolchain]:
        data = self._read().get("toolchain")
        if not isinstance(data, dict):
            return None
        try:
            return Toolchain.from_dict(data)
        except NotConfigured:
            return None

    def set_project(self, name: str, path: Path) -> Path:
        """Record the current project; returns the canonical project path."""
        candidate = Path(path).expanduser()
        if not candidate.is_dir():
            raise CppxError(f"project path does not exist: {candidate}")
        resolved = candidate.resolve()
        data = self._read()
        project = data.get("project")
        if not isinstance(project, dict):
            project = {}
        project["path"] = str(resolved)
        project["name"] = name
        data["project"] = project
        self._storage.write(data)
        return resolved

    def set_toolchain(self, toolchain: Toolchain) -> None:
        data = self._read()
        data["toolchain"] = toolchain.to_dict()
        self._storage.write(data)
