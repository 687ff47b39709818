"""Turn project settings into compiler invocations and run them."""

import os
import sys
import sysconfig
import time
from pathlib import Path
from typing import Callable, Optional, Sequence, TypeAlias, TypedDict

from cppx.config import (
    BUILD_EXECUTABLE,
    BUILD_SHARED,
    BUILD_TYPES,
    ProjectConfig,
    ProjectSettings,
    pick_compiler,
    resolve_project_path,
)
from cppx.errors import (
    ArchiveError,
    CompileError,
    CppxError,
    LinkError,
    UnknownConfig,
    UnsupportedBuildType,
)
from cppx.output import format_cmd, info, run_cmd, verbose, warn

DEFAULT_ARCHIVER = "ar"
DEFAULT_EXECUTABLE_SUFFIX = ".exe"
OBJECT_SUFFIX = ".o"
NATIVE_LIBRARY_EXTENSIONS = {".a", ".so", ".lib", ".dylib", ".dll"}
TEST_SOURCE_EXTENSIONS = {".cpp", ".cc", ".cxx", ".c"}
TESTS_DIR_NAME = "tests"
MAIN_SOURCE_NAME = "main.cpp"

STAGE_COMPILE = "compile"
STAGE_COMPILE_LINK = "compile+link"
STAGE_ARCHIVE = "archive"


class BuildStep(TypedDict):
    stage: str
    command: list[str]
    source: Optional[str]


class BuildPlan(TypedDict):
    build_type: str
    compiler: str
    output_dir: Path
    output_name: str
    artifact: Path
    objects: list[Path]
    steps: list[BuildStep]


class BuildResult(TypedDict):
    artifact: Path
    objects: list[Path]
    elapsed_ms: int


Runner: TypeAlias = Callable[[Sequence[str]], int]


def is_windows() -> bool:
    return os.name == "nt"


def is_macos() -> bool:
    return sys.platform == "darwin"


def exe_suffix() -> str:
    suffix = sysconfig.get_config_var("EXE_SUFFIX")
    if suffix:
        return suffix
    return DEFAULT_EXECUTABLE_SUFFIX if is_windows() else ""


def exe_name(target: str) -> str:
    suffix = exe_suffix()
    return f"{target}{suffix}" if suffix else target


def shared_library_name(target: str) -> str:
    if is_windows():
        return f"{target}.dll"
    if is_macos():
        return f"lib{target}.dylib"
    return f"lib{target}.so"


def static_library_name(target: str) -> str:
    if is_windows():
        return f"{target}.lib"
    return f"lib{target}.a"


def select_configuration(
    settings: ProjectSettings, named_config: Optional[str]
) -> tuple[list[str], Optional[str]]:
    """Return extra flags and output-name override for a named configuration.

    An unknown name is reported as a warning and the defaults are used.
    """
    if not named_config:
        return [], None
    entry = settings["configurations"].get(named_config)
    if entry is None:
        warn(str(UnknownConfig(named_config)))
        return [], None
    verbose(f"using configuration '{named_config}'")
    return list(entry["flags"]), entry["output"]


def include_flags(project: ProjectConfig, settings: ProjectSettings) -> list[str]:
    return [
        f"-I{resolve_project_path(project, entry)}" for entry in settings["include_dirs"]
    ]


def source_paths(project: ProjectConfig, settings: ProjectSettings) -> list[Path]:
    return [resolve_project_path(project, entry) for entry in settings["src_files"]]


def link_flags(project: ProjectConfig, settings: ProjectSettings) -> list[str]:
    """Render static-link entries and link directories as compiler arguments."""
    flags = []
    for entry in settings["static_linked"]:
        if Path(entry).suffix in NATIVE_LIBRARY_EXTENSIONS:
            flags.append(str(resolve_project_path(project, entry)))
        else:
            flags.append(f"-l{entry}")
    for entry in settings["static_linked_dirs"]:
        flags.append(f"-L{resolve_project_path(project, entry)}")
    return flags


def define_flags(settings: ProjectSettings) -> list[str]:
    return [f"-D{name}={value}" for name, value in settings["defines"].items()]


def plan(
    project: ProjectConfig,
    settings: ProjectSettings,
    debug: bool = False,
    named_config: Optional[str] = None,
) -> BuildPlan:
    """Build the ordered list of tool invocations for the configured build type."""
    build_type = settings["build"]["build_type"]
    if build_type not in BUILD_TYPES:
        raise UnsupportedBuildType(build_type)

    compiler = pick_compiler(project, settings)
    extra_flags, output_override = select_configuration(settings, named_config)
    output_name = output_override or settings["build"]["output_name"]
    output_dir = project.build_dir
    includes = include_flags(project, settings)
    sources = source_paths(project, settings)
    links = link_flags(project, settings)
    defines = define_flags(settings)

    steps: list[BuildStep] = []
    objects: list[Path] = []
    if build_type == BUILD_EXECUTABLE:
        artifact = output_dir / exe_name(output_name)
        command = [compiler, *extra_flags, *includes]
        command.extend(str(source) for source in sources)
        command.extend([*links, *defines, "-o", str(artifact)])
        if debug:
            command.append("-g")
        steps.append({"stage": STAGE_COMPILE_LINK, "command": command, "source": None})
    elif build_type == BUILD_SHARED:
        artifact = output_dir / shared_library_name(output_name)
        command = [compiler, *extra_flags, "-shared", "-fPIC", *includes]
        command.extend(str(source) for source in sources)
        command.extend([*links, *defines, "-o", str(artifact)])
        steps.append({"stage": STAGE_COMPILE_LINK, "command": command, "source": None})
    else:
        artifact = output_dir / static_library_name(output_name)
        owners: dict[Path, Path] = {}
        for source in sources:
            obj_path = output_dir / f"{source.stem}{OBJECT_SUFFIX}"
            if obj_path in owners:
                raise CppxError(
                    f"{owners[obj_path]} and {source} both compile to {obj_path}; "
                    "rename one of them"
                )
            owners[obj_path] = source
            command = [
                compiler,
                *extra_flags,
                *includes,
                *defines,
                "-c",
                str(source),
                "-o",
                str(obj_path),
            ]
            steps.append({"stage": STAGE_COMPILE, "command": command, "source": str(source)})
            objects.append(obj_path)
        archive = [DEFAULT_ARCHIVER, "rcs", str(artifact)]
        archive.extend(str(obj_path) for obj_path in objects)
        steps.append({"stage": STAGE_ARCHIVE, "command": archive, "source": None})

    return {
        "build_type": build_type,
        "compiler": compiler,
        "output_dir": output_dir,
        "output_name": output_name,
        "artifact": artifact,
        "objects": objects,
        "steps": steps,
    }


def _raise_for_step(step: BuildStep, artifact: Path, returncode: int) -> None:
    if step["stage"] == STAGE_COMPILE:
        raise CompileError(step["source"] or "source", returncode)
    if step["stage"] == STAGE_ARCHIVE:
        raise ArchiveError(f"static archive creation of {artifact} failed", returncode)
    raise LinkError(f"compiling and linking {artifact} failed", returncode)


def execute(build_plan: BuildPlan, runner: Optional[Runner] = None) -> BuildResult:
    """Run every step in order, stopping at the first failure."""
    run = runner if runner is not None else run_cmd
    start = time.perf_counter()
    output_dir = build_plan["output_dir"]
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CppxError(f"failed to create {output_dir}: {exc}") from exc

    info(f"building {build_plan['output_name']} ({build_plan['build_type']})")
    for step in build_plan["steps"]:
        if step["stage"] == STAGE_COMPILE:
            info(f"compiling {step['source']}")
        elif step["stage"] == STAGE_ARCHIVE:
            info(f"creating static library {build_plan['artifact']}")
        verbose(f"executing: {format_cmd(step['command'])}")
        returncode = run(step["command"])
        if returncode != 0:
            _raise_for_step(step, build_plan["artifact"], returncode)

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    info(f"successfully built {build_plan['artifact']} in {elapsed_ms}ms")
    return {
        "artifact": build_plan["artifact"],
        "objects": list(build_plan["objects"]),
        "elapsed_ms": elapsed_ms,
    }


def build(
    project: ProjectConfig,
    settings: ProjectSettings,
    debug: bool = False,
    named_config: Optional[str] = None,
    runner: Optional[Runner] = None,
) -> BuildResult:
    return execute(plan(project, settings, debug, named_config), runner)


def executable_path(project: ProjectConfig, settings: ProjectSettings) -> Path:
    return project.build_dir / exe_name(settings["build"]["output_name"])


def plan_tests(project: ProjectConfig, settings: ProjectSettings) -> list[BuildStep]:
    """One debug compile step per test source in ``tests/``.

    Test binaries link every project source except ``main.cpp``.
    """
    test_dir = project.path / TESTS_DIR_NAME
    if not test_dir.is_dir() or not any(test_dir.iterdir()):
        raise CppxError(f"no tests to run; {test_dir} does not exist or is empty")
    compiler = pick_compiler(project, settings)
    includes = include_flags(project, settings)
    sources = [
        str(source)
        for source in source_paths(project, settings)
        if source.name != MAIN_SOURCE_NAME
    ]
    steps: list[BuildStep] = []
    for test_file in sorted(test_dir.iterdir()):
        if not test_file.is_file() or test_file.suffix not in TEST_SOURCE_EXTENSIONS:
            continue
        binary = project.build_dir / exe_name(test_file.stem)
        command = [compiler, str(test_file), *includes, *sources, "-o", str(binary), "-g"]
        steps.append({"stage": STAGE_COMPILE, "command": command, "source": str(test_file)})
    return steps
