import json
import sys
from pathlib import Path

import pytest  # type: ignore[import-not-found]

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cppx import output  # noqa: E402
from cppx.config import (  # noqa: E402
    GLOBAL_CONFIG_ENV_VAR,
    ProjectConfig,
    ProjectStore,
    Toolchain,
    default_document,
)


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path, monkeypatch):
    """Point the global document at a temp file and reset verbosity."""
    path = tmp_path / "global" / ".cppxglobal.json"
    monkeypatch.setenv(GLOBAL_CONFIG_ENV_VAR, str(path))
    original = output.is_verbose()
    output.set_verbose(False)
    yield path
    output.set_verbose(original)


@pytest.fixture
def toolchain():
    return Toolchain("g++", "/usr/bin/g++", "g++ (GCC) 13.2.0")


@pytest.fixture
def project(tmp_path, toolchain):
    root = tmp_path / "demo"
    (root / "src").mkdir(parents=True)
    (root / "include").mkdir()
    (root / "src" / "main.cpp").write_text("int main() { return 0; }\n", encoding="utf-8")
    (root / "config.json").write_text(
        json.dumps(default_document("demo"), indent=2), encoding="utf-8"
    )
    return ProjectConfig(root, "demo", toolchain)


@pytest.fixture
def store(project):
    return ProjectStore(project)


@pytest.fixture
def current_project(isolated_global_config, project, toolchain):
    """Register ``project`` as the current project in the global document."""
    isolated_global_config.parent.mkdir(parents=True, exist_ok=True)
    isolated_global_config.write_text(
        json.dumps(
            {
                "project": {"name": project.name, "path": str(project.path)},
                "toolchain": toolchain.to_dict(),
            }
        ),
        encoding="utf-8",
    )
    return project


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--type",
        action="store",
        default="all",
        choices=("unit", "integration", "all"),
        help="Select which tests to run: unit, integration, or all.",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    selected = config.getoption("--type")
    if selected == "all":
        return

    skip_integration = pytest.mark.skip(reason="skipped by --type unit")
    skip_unit = pytest.mark.skip(reason="skipped by --type integration")

    for item in items:
        is_integration = item.get_closest_marker("integration") is not None
        if selected == "unit" and is_integration:
            item.add_marker(skip_integration)
        elif selected == "integration" and not is_integration:
            item.add_marker(skip_unit)
