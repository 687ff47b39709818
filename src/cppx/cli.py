#!/usr/bin/env python3
"""Command-line entry point for cppx, a project manager for C/C++."""

import importlib.metadata
import os
import shutil
import sys
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence, TypeAlias

from cppx import github, packages, planner, scaffold, toolchain
from cppx.config import (
    EXTRA_COMPILER_KEY,
    IGNORE_DIRS_KEY,
    IGNORE_FILES_KEY,
    SECTION_IGNORE,
    GlobalConfig,
    ProjectConfig,
    ProjectStore,
    pick_compiler,
)
from cppx.errors import CppxError
from cppx.output import error, info, run_cmd, set_verbose, verbose, warn
from cppx.watcher import (
    DEFAULT_POLL_INTERVAL,
    DirectoryWatcher,
    SourceSync,
    install_interrupt_handler,
)

DEFAULT_WATCH_DIR = "src"
DOCS_DIR_NAME = "docs"
SUPPORTED_COMPILERS = {"gcc", "g++", "clang", "clang++"}
DEFAULT_FORMAT_STYLE = "Microsoft"
EXTRA_FORMAT_STYLE_KEY = "format_style"
GLOB_CHARS = set("*?[")

Handler: TypeAlias = Callable[[list[str]], int]


class _UsageError(Exception):
    """Bad command-line arguments; reported with exit status 2."""


def _load_context() -> tuple[ProjectConfig, ProjectStore]:
    project = GlobalConfig().current_project()
    return project, ProjectStore(project)


def _take_option(args: list[str], names: Sequence[str]) -> tuple[Optional[str], list[str]]:
    """Remove ``--name value`` or ``--name=value`` from args."""
    value = None
    remaining = []
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--":
            remaining.extend(args[index:])
            break
        matched = next((name for name in names if arg.startswith(f"{name}=")), None)
        if matched:
            value = arg.split("=", 1)[1]
            index += 1
            continue
        if arg in names:
            if index + 1 >= len(args):
                raise _UsageError(f"usage: {arg} <value>")
            value = args[index + 1]
            index += 2
            continue
        remaining.append(arg)
        index += 1
    return value, remaining


def _take_flag(args: list[str], names: Sequence[str]) -> tuple[bool, list[str]]:
    if "--" in args:
        split = args.index("--")
        head, tail = args[:split], args[split:]
    else:
        head, tail = args, []
    present = any(arg in names for arg in head)
    return present, [arg for arg in head if arg not in names] + tail


def _prompt(label: str) -> str:
    try:
        return input(f"[{label}] >> ").strip()
    except EOFError as exc:
        raise CppxError(f"no input for {label}") from exc


def _confirm(message: str) -> bool:
    try:
        response = input(f"{message} [Y/n]: ").strip()
    except EOFError:
        return False
    return response in {"Y", "y"}


# project new / project set
def cmd_project(args: list[str]) -> int:
    if not args:
        raise _UsageError("usage: cppx project new <name> | project set <name> <path>")
    action, rest = args[0], args[1:]
    if action == "new":
        name, rest = _take_option(rest, ["-n", "--name"])
        if name is None and len(rest) == 1:
            name = rest[0]
        elif rest:
            raise _UsageError("usage: cppx project new <name>")
        if not name or not name.strip():
            raise _UsageError("usage: cppx project new <name>")
        root = scaffold.create_project(Path.cwd(), name.strip())
        info(f"project '{name}' created at {root}")
        return 0
    if action == "set":
        name, rest = _take_option(rest, ["-n", "--name"])
        path, rest = _take_option(rest, ["-p", "--path"])
        positional = [arg for arg in rest if arg != "--"]
        if name is None and positional:
            name = positional.pop(0)
        if path is None and positional:
            path = positional.pop(0)
        if not name or not path or positional:
            raise _UsageError("usage: cppx project set <name> <path>")
        global_config = GlobalConfig()
        resolved = global_config.set_project(name, Path(path))
        info(f"current project set to '{name}' ({resolved})")
        return 0
    raise _UsageError(f"unknown project command '{action}'")


def cmd_profile(args: list[str]) -> int:
    found = toolchain.discover_compilers()
    if not found:
        raise CppxError("no compilers found")
    info("found compilers:")
    for index, candidate in enumerate(found, start=1):
        print(f"  [{index}] {candidate.compiler_name} ({candidate.compiler_version})")
    chosen = found[0]
    if len(found) > 1:
        answer = _prompt(f"choose compiler 1-{len(found)}")
        try:
            selection = int(answer)
        except ValueError:
            selection = 0
        if selection < 1 or selection > len(found):
            raise CppxError("invalid selection")
        chosen = found[selection - 1]
    global_config = GlobalConfig()
    global_config.set_toolchain(chosen)
    info(f"toolchain set to {chosen.compiler_name} ({chosen.compiler_path})")
    return 0


def cmd_build(args: list[str]) -> int:
    debug, args = _take_flag(args, ["-d", "--debug"])
    named_config, args = _take_option(args, ["-c", "--config"])
    if args:
        raise _UsageError("usage: cppx build [--debug] [--config <name>]")
    project, store = _load_context()
    planner.build(project, store.load(), debug=debug, named_config=named_config)
    return 0


def cmd_run(args: list[str]) -> int:
    if args and args[0] == "--":
        args = args[1:]
    project, store = _load_context()
    settings = store.load()
    if settings["build"]["build_type"] != "executable":
        raise CppxError("only executable projects can be run")
    exe_path = planner.executable_path(project, settings)
    if not exe_path.exists():
        warn("executable does not exist; building first")
        planner.build(project, settings)
    info(f"running {exe_path}")
    return run_cmd([str(exe_path), *args])


def _is_foreground() -> bool:
    try:
        return os.tcgetpgrp(sys.stdin.fileno()) == os.getpgrp()
    except (AttributeError, OSError, ValueError):
        return False


def cmd_watch(args: list[str]) -> int:
    force, args = _take_flag(args, ["-f", "--force"])
    directory, args = _take_option(args, ["-d", "--dir"])
    interval_value, args = _take_option(args, ["-i", "--interval"])
    if args:
        raise _UsageError("usage: cppx watch [--dir src] [--interval seconds] [--force]")
    if _is_foreground() and not force:
        raise CppxError(
            "the watch command must run in the background (with &); "
            "use --force to run it in the foreground"
        )
    interval = DEFAULT_POLL_INTERVAL
    if interval_value is not None:
        try:
            interval = float(interval_value)
        except ValueError:
            raise _UsageError("usage: --interval <seconds>")
        if interval <= 0:
            raise _UsageError("usage: --interval must be positive")

    project, store = _load_context()
    watch_dir = project.path / (directory or DEFAULT_WATCH_DIR)
    if not watch_dir.is_dir():
        raise CppxError(f"directory does not exist: {watch_dir}")

    stop_event = threading.Event()
    install_interrupt_handler(stop_event)
    watcher = DirectoryWatcher(
        watch_dir, SourceSync(store, project, watch_dir), interval, stop_event
    )
    info(f"monitoring directory {watch_dir}")
    thread = watcher.start()
    while thread.is_alive():
        thread.join(0.5)
    info("watcher stopped")
    return 0


def cmd_ignore(args: list[str]) -> int:
    if not args:
        raise _UsageError("usage: cppx ignore <path> [path...]")
    _, store = _load_context()
    files = []
    dirs = []
    for entry in args:
        path = Path(entry)
        if not path.exists():
            error(f"path does not exist: {entry}")
            continue
        info(f"ignoring {entry}")
        if path.is_dir():
            dirs.append(entry)
        else:
            files.append(entry)
    if files:
        store.add_values(SECTION_IGNORE, IGNORE_FILES_KEY, files, "ignored file")
    if dirs:
        store.add_values(SECTION_IGNORE, IGNORE_DIRS_KEY, dirs, "ignored directory")
    info("updated ignore lists")
    return 0


def cmd_pkg(args: list[str]) -> int:
    if not args:
        raise _UsageError("usage: cppx pkg install <name> --version <v> | pkg remove <name>")
    action, rest = args[0], args[1:]
    project, store = _load_context()
    manager = packages.PackageManager(project.vendor_dir)

    if action == "install":
        version, rest = _take_option(rest, ["-v", "--version"])
        if len(rest) != 1 or not version:
            raise _UsageError("usage: cppx pkg install <name> --version <version>")
        name = rest[0]
        package_ref = f"{name}/{version}"
        manager.install(package_ref)
        package = manager.info(package_ref)
        verbose(f"retrieved include paths: {package['include_paths']}")
        verbose(f"retrieved library paths: {package['lib_paths']}")
        verbose(f"retrieved libraries: {package['libs']}")
        packages.register_package(store, name, version, package)
        info(f"added {package_ref} to {project.document_path}")
        return 0

    if action == "remove":
        assume_yes, rest = _take_flag(rest, ["-y", "--yes"])
        if len(rest) != 1:
            raise _UsageError("usage: cppx pkg remove <name> [--yes]")
        name = rest[0]
        version = store.load()["dependencies"].get(name)
        package_ref = f"{name}/{version}" if version else name
        if not manager.is_installed(package_ref):
            raise CppxError(f"package '{name}' is not installed")
        if not assume_yes and not _confirm(f"remove package '{package_ref}'?"):
            info("package removal cancelled")
            return 1
        package = manager.remove(package_ref)
        if package is None:
            raise CppxError(f"could not get package info for '{package_ref}'")
        packages.unregister_package(store, name, package)
        info("removed package and updated configuration")
        return 0

    raise _UsageError(f"unknown pkg command '{action}'")


def cmd_export(args: list[str]) -> int:
    if args != ["cmake"]:
        raise CppxError(f"unsupported export format: {' '.join(args) or '(none)'}")
    project, store = _load_context()
    path = scaffold.export_cmake(project, store.load())
    info(f"generated {path}")
    return 0


def cmd_config(args: list[str]) -> int:
    if len(args) != 1 or "=" not in args[0]:
        raise _UsageError("usage: cppx config <setting>=<value>")
    key, value = args[0].split("=", 1)
    if key != EXTRA_COMPILER_KEY:
        raise CppxError(f"unknown setting: {key}")
    if value not in SUPPORTED_COMPILERS:
        raise CppxError(
            f"unsupported compiler '{value}'; use one of {', '.join(sorted(SUPPORTED_COMPILERS))}"
        )
    _, store = _load_context()
    store.set_extra(key, value)
    info(f"set {key}={value}")
    return 0


def cmd_doc(args: list[str]) -> int:
    project, store = _load_context()
    scaffold.ensure_doxyfile(project, store.load())
    info("generating Doxygen documentation")
    result = run_cmd(["doxygen", scaffold.DOXYFILE_NAME], cwd=project.path)
    if result != 0:
        raise CppxError("an error occurred while generating Doxygen documentation")
    info(f"documentation generated in {project.path / DOCS_DIR_NAME}")
    return 0


def _remove_project_dir(project: ProjectConfig, path: Path) -> None:
    resolved = path.resolve()
    root = project.path.resolve()
    if resolved == root or root not in resolved.parents:
        raise CppxError(f"refusing to remove directory outside project root: {path}")
    if not path.exists():
        warn(f"nothing to clean at {path}")
        return
    info(f"removing {path}")
    shutil.rmtree(path)


def cmd_clean(args: list[str]) -> int:
    project, _ = _load_context()
    _remove_project_dir(project, project.build_dir)
    _remove_project_dir(project, project.path / DOCS_DIR_NAME)
    return 0


def cmd_test(args: list[str]) -> int:
    project, store = _load_context()
    steps = planner.plan_tests(project, store.load())
    project.build_dir.mkdir(parents=True, exist_ok=True)
    failures = 0
    for step in steps:
        binary = step["command"][step["command"].index("-o") + 1]
        info(f"compiling test {step['source']}")
        if run_cmd(step["command"]) != 0:
            error(f"compilation of test {step['source']} failed")
            failures += 1
            continue
        info(f"running test {binary}")
        if run_cmd([binary]) != 0:
            error(f"test {binary} failed")
            failures += 1
        else:
            info(f"test {binary} completed successfully")
    return 1 if failures else 0


def cmd_metadata(args: list[str]) -> int:
    _, store = _load_context()
    info("setting metadata")
    version = _prompt("project version")
    if not version:
        raise CppxError("version cannot be empty")
    author = _prompt("author")
    if not author:
        raise CppxError("author cannot be empty")
    authors = [author]
    if _prompt("more than one author? (y/n)").lower() == "y":
        extra_authors = _prompt("authors (comma separated)")
        authors = [entry.strip() for entry in extra_authors.split(",") if entry.strip()]
    description = _prompt("description")
    if not description:
        raise CppxError("description cannot be empty")
    license_name = _prompt("license")
    if not license_name:
        raise CppxError("license cannot be empty")
    github_username = _prompt("github username")
    github_repo = _prompt("github repository (name only, not URL)")
    if github_repo and not github_username:
        raise CppxError("GitHub username cannot be empty if repository is provided")

    store.set_metadata("version", version)
    store.set_metadata("description", description)
    store.set_metadata("license", license_name)
    store.set_metadata("github_username", github_username)
    store.set_metadata("github_repo", github_repo)
    store.set_metadata("authors", authors)
    info("metadata saved")
    return 0


def _print_items(items: list[tuple[str, str]]) -> None:
    width = max(len(label) for label, _ in items) + 2
    for label, value in items:
        print(f"  * {label:<{width}}: {value}")


def cmd_info(args: list[str]) -> int:
    project, store = _load_context()
    settings = store.load()
    metadata = settings["metadata"]
    print("Project information")
    _print_items(
        [
            ("Project Name", settings["name"]),
            ("Version", metadata["version"]),
            ("Authors", ", ".join(metadata["authors"])),
            ("Description", metadata["description"]),
            ("License", metadata["license"]),
            ("Project Path", str(project.path)),
            ("Build Type", settings["build"]["build_type"]),
            ("Compiler", pick_compiler(project, settings)),
            ("Build Dir", str(project.build_dir)),
            ("Vendor Dir", str(project.vendor_dir)),
        ]
    )
    print("")
    print("Dependencies")
    if settings["dependencies"]:
        _print_items(list(settings["dependencies"].items()))
    else:
        print("  No dependencies found.")
    print("")
    print("GitHub Repository")
    if metadata["github_username"] and metadata["github_repo"]:
        try:
            repo = github.get_repo_info(metadata["github_username"], metadata["github_repo"])
        except CppxError as exc:
            error(f"error fetching GitHub info: {exc}")
        else:
            _print_items(
                [
                    ("Name", repo["name"]),
                    ("Description", repo["description"]),
                    ("Stars", str(repo["stars"])),
                    ("Forks", str(repo["forks"])),
                    ("Open Issues", str(repo["open_issues"])),
                    ("Last Commit", repo["last_commit_date"]),
                    ("URL", repo["html_url"]),
                ]
            )
    else:
        print("  No GitHub repository information available.")
    return 0


def cmd_format(args: list[str]) -> int:
    if not args:
        raise _UsageError("usage: cppx format <file|glob> [...]")
    project, store = _load_context()
    style = store.load()["extra"].get(EXTRA_FORMAT_STYLE_KEY, DEFAULT_FORMAT_STYLE)
    files: list[Path] = []
    for entry in args:
        if GLOB_CHARS & set(entry):
            matches = [path for path in sorted(project.path.glob(entry)) if path.is_file()]
            if not matches:
                warn(f"pattern '{entry}' matched no files")
            files.extend(matches)
            continue
        path = project.path / entry
        if path.is_file():
            files.append(path)
        elif path.is_dir():
            warn(f"skipping directory {path}; only files can be formatted")
        else:
            error(f"file not found: {path}")
    if not files:
        warn("no valid files found to format")
        return 0
    failures = 0
    for path in files:
        info(f"formatting {path}")
        if run_cmd(["clang-format", f"-style={style}", "-i", str(path)]) != 0:
            failures += 1
    return 1 if failures else 0


COMMANDS: dict[str, Handler] = {
    "project": cmd_project,
    "profile": cmd_profile,
    "build": cmd_build,
    "run": cmd_run,
    "watch": cmd_watch,
    "ignore": cmd_ignore,
    "pkg": cmd_pkg,
    "export": cmd_export,
    "config": cmd_config,
    "doc": cmd_doc,
    "clean": cmd_clean,
    "test": cmd_test,
    "metadata": cmd_metadata,
    "info": cmd_info,
    "format": cmd_format,
}

ALIASES = {
    "b": "build",
    "r": "run",
    "w": "watch",
    "t": "test",
    "cl": "clean",
    "fmt": "format",
    "h": "help",
}


def usage() -> None:
    print("usage: cppx [--verbose] <command> [args...]")
    print("")
    print("commands:")
    print("  project new <name>         create a new project in ./<name>")
    print("  project set <name> <path>  make <path> the current project")
    print("  profile                    detect compilers and store the toolchain")
    print("  build (b) [-d] [-c name]   build the project (debug / named configuration)")
    print("  run (r) [-- args]          build if needed and run the executable")
    print("  watch (w) [-d dir] [-f]    keep src files in config.json in sync")
    print("  ignore <path...>           add files/directories to the ignore lists")
    print("  pkg install <name> -v <v>  install a Conan package and record it")
    print("  pkg remove <name> [-y]     remove a Conan package and its paths")
    print("  export cmake               write a CMakeLists.txt for the project")
    print("  config compiler=<name>     override the compiler for this project")
    print("  doc                        generate Doxygen documentation")
    print("  clean (cl)                 remove build and docs directories")
    print("  test (t)                   compile and run tests/*.cpp")
    print("  metadata                   set version, authors and license")
    print("  info                       show project information")
    print("  format (fmt) <files...>    run clang-format on files or globs")
    print("  help (h)                   show this help text")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    verbose_flag, args = _take_flag(args, ["--verbose"])
    if verbose_flag:
        set_verbose(True)
    if not args:
        usage()
        return 2

    command = args[0]
    if command == "--version":
        try:
            version = importlib.metadata.version("cppx")
        except importlib.metadata.PackageNotFoundError:
            version = "0.1.0"
        print(f"cppx {version}")
        return 0
    command = ALIASES.get(command, command)
    if command in {"help", "-h", "--help"}:
        usage()
        return 0
    handler = COMMANDS.get(command)
    if handler is None:
        error(f"unknown command '{command}'")
        usage()
        return 2

    try:
        return handler(args[1:])
    except _UsageError as exc:
        error(str(exc))
        return 2
    except CppxError as exc:
        error(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
