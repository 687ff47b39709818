"""File templates: new-project skeleton, CMake export and default Doxyfile."""

import json
import re
from pathlib import Path

from cppx.config import (
    PROJECT_DOCUMENT_NAME,
    ProjectConfig,
    ProjectSettings,
    default_document,
)
from cppx.errors import CppxError
from cppx.output import info

DEFAULT_MIN_CMAKE = "3.10"
DOXYFILE_NAME = "Doxyfile"
CMAKELISTS_NAME = "CMakeLists.txt"

MAIN_SOURCE = """#include <main.hpp>

int main()
{
    printhelloworld();
    return 0;
}
"""

MAIN_HEADER = """#pragma once
#include <iostream>

/**
 * @brief Prints "Hello, world!" to the console.
 */
inline void printhelloworld()
{
    std::cout << "Hello, world!\\n";
}
"""

MAIN_TEST = """#include <cassert>
#include <main.hpp>

int main() {
    printhelloworld();
    assert(true);
    return 0;
}
"""

GITIGNORE = """# Build artifacts
build/
*.o
*.a
*.so
*.dll
*.exe

# Doxygen docs
docs/

# Vendor folder for dependencies
vendor/

# IDE files
.vscode/
.idea/
"""


def write_text_file(path: Path, contents: str) -> None:
    """Write UTF-8 text to a file, creating parent dirs as needed."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf-8")
    except OSError as exc:
        raise CppxError(f"failed to write {path}: {exc}") from exc


def create_project(base_dir: Path, name: str) -> Path:
    """Create a starter project at base_dir/name; refuses to overwrite."""
    root = base_dir / name
    if (root / PROJECT_DOCUMENT_NAME).exists():
        raise CppxError(f"project already exists at {root}")
    files = {
        root / "src" / "main.cpp": MAIN_SOURCE,
        root / "include" / "main.hpp": MAIN_HEADER,
        root / "tests" / "main.test.cpp": MAIN_TEST,
        root / ".gitignore": GITIGNORE,
        root / PROJECT_DOCUMENT_NAME: json.dumps(default_document(name), indent=2) + "\n",
    }
    for path, contents in files.items():
        if path.exists():
            continue
        write_text_file(path, contents)
        info(f"created {path}")
    return root


def _cmake_target_name(name: str) -> str:
    return re.sub(r"\s", "_", name.strip()) or "Project"


def render_cmakelists(settings: ProjectSettings) -> str:
    name = _cmake_target_name(settings["name"])
    lines = [
        f"cmake_minimum_required(VERSION {DEFAULT_MIN_CMAKE})",
        f"project({name})",
        "",
        f"add_executable({name}",
    ]
    for source in settings["src_files"]:
        lines.append(f"  {source}")
    lines.append(")")

    include_dirs = [
        entry if Path(entry).is_absolute() else f"${{CMAKE_CURRENT_SOURCE_DIR}}/{entry}"
        for entry in settings["include_dirs"]
    ]
    if include_dirs:
        lines.append(f"target_include_directories({name} PRIVATE {' '.join(include_dirs)})")
    if settings["static_linked_dirs"]:
        lines.append(
            f"target_link_directories({name} PRIVATE {' '.join(settings['static_linked_dirs'])})"
        )
    if settings["static_linked"]:
        lines.append(
            f"target_link_libraries({name} PRIVATE {' '.join(settings['static_linked'])})"
        )
    if settings["defines"]:
        definitions = " ".join(
            f"{macro}={value}" for macro, value in settings["defines"].items()
        )
        lines.append(f"target_compile_definitions({name} PRIVATE {definitions})")
    if settings["dependencies"]:
        lines.append("")
        lines.append("# Dependencies:")
        for dep_name, version in settings["dependencies"].items():
            lines.append(f"# {dep_name} {version}")
    return "\n".join(lines) + "\n"


def export_cmake(project: ProjectConfig, settings: ProjectSettings) -> Path:
    path = project.path / CMAKELISTS_NAME
    write_text_file(path, render_cmakelists(settings))
    return path


def render_doxyfile(settings: ProjectSettings) -> str:
    project_name = settings["name"].replace('"', '\\"')
    return (
        f'PROJECT_NAME           = "{project_name}"\n'
        "OUTPUT_DIRECTORY       = docs\n"
        "INPUT                  = ./src ./include\n"
        "RECURSIVE              = YES\n"
        "GENERATE_LATEX         = NO\n"
        "EXTRACT_ALL            = YES\n"
        "EXTRACT_PRIVATE        = YES\n"
        "EXTRACT_STATIC         = YES\n"
    )


def ensure_doxyfile(project: ProjectConfig, settings: ProjectSettings) -> Path:
    path = project.path / DOXYFILE_NAME
    if not path.exists():
        info("Doxyfile does not exist; creating default")
        write_text_file(path, render_doxyfile(settings))
    return path
