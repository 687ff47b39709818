import json
from pathlib import Path

import pytest

from cppx import planner
from cppx.config import default_document
from cppx.errors import ArchiveError, CompileError, CppxError, LinkError


def _settings(store, project, **overrides):
    data = default_document("demo")
    data["source"].update(overrides.pop("source", {}))
    data.update(overrides)
    project.document_path.write_text(json.dumps(data), encoding="utf-8")
    return store.load()


class Recorder:
    def __init__(self, fail_on=None):
        self.commands = []
        self._fail_on = fail_on

    def __call__(self, cmd):
        self.commands.append(list(cmd))
        if self._fail_on and any(str(part).endswith(self._fail_on) for part in cmd):
            return 1
        return 0


def test_executable_plan_single_invocation(project, store):
    settings = _settings(store, project, defines={"DEBUG": "1"})

    build_plan = planner.plan(project, settings)

    assert build_plan["build_type"] == "executable"
    assert build_plan["artifact"] == project.build_dir / planner.exe_name("demo")
    [step] = build_plan["steps"]
    command = step["command"]
    assert command[0] == "/usr/bin/g++"
    assert f"-I{project.path / 'include'}" in command
    assert str(project.path / "src" / "main.cpp") in command
    assert "-DDEBUG=1" in command
    assert command[-2:] == ["-o", str(build_plan["artifact"])]
    assert "-g" not in command


def test_debug_appends_g_flag(project, store):
    settings = store.load()

    [step] = planner.plan(project, settings, debug=True)["steps"]

    assert step["command"][-1] == "-g"


def test_shared_plan_uses_pic(project, store):
    settings = _settings(
        store, project, build={"build_name": "demo", "build_type": "dynamic"}
    )

    build_plan = planner.plan(project, settings)

    [step] = build_plan["steps"]
    assert step["command"][1:3] == ["-shared", "-fPIC"]
    assert build_plan["artifact"].name == planner.shared_library_name("demo")


def test_static_plan_compiles_each_source_then_archives(project, store):
    settings = _settings(
        store,
        project,
        source={"src files": ["src/a.cpp", "src/b.cpp"]},
        build={"build_name": "demo", "build_type": "static"},
    )

    build_plan = planner.plan(project, settings)

    stages = [step["stage"] for step in build_plan["steps"]]
    assert stages == ["compile", "compile", "archive"]
    assert build_plan["objects"] == [
        project.build_dir / "a.o",
        project.build_dir / "b.o",
    ]
    archive = build_plan["steps"][-1]["command"]
    assert archive[:3] == ["ar", "rcs", str(build_plan["artifact"])]
    assert archive[3:] == [str(path) for path in build_plan["objects"]]


def test_link_flags_libraries_and_dirs(project, store):
    settings = _settings(
        store,
        project,
        source={
            "static_linked": ["z", "libs/libfoo.a"],
            "static_linked_dirs": ["libs", "/opt/lib"],
        },
    )

    flags = planner.link_flags(project, settings)

    assert flags == [
        "-lz",
        str(project.path / "libs" / "libfoo.a"),
        f"-L{project.path / 'libs'}",
        "-L/opt/lib",
    ]


def test_named_configuration_flags_and_output(project, store):
    settings = _settings(
        store,
        project,
        configurations={"release": {"flags": ["-O2"], "output": "demo-release"}},
    )

    build_plan = planner.plan(project, settings, named_config="release")

    assert build_plan["output_name"] == "demo-release"
    assert build_plan["steps"][0]["command"][1] == "-O2"


def test_unknown_configuration_warns_and_uses_defaults(project, store, capsys):
    settings = store.load()

    build_plan = planner.plan(project, settings, named_config="missing")

    assert build_plan["output_name"] == "demo"
    assert "configuration 'missing' not found" in capsys.readouterr().err


def test_execute_runs_steps_and_reports(project, store, capsys):
    runner = Recorder()

    result = planner.build(project, store.load(), runner=runner)

    assert len(runner.commands) == 1
    assert project.build_dir.is_dir()
    assert result["artifact"] == project.build_dir / planner.exe_name("demo")
    assert "successfully built" in capsys.readouterr().out


def test_static_build_stops_at_first_failing_source(project, store):
    settings = _settings(
        store,
        project,
        source={"src files": ["src/a.cpp", "src/b.cpp", "src/c.cpp"]},
        build={"build_name": "demo", "build_type": "static"},
    )
    runner = Recorder(fail_on="b.cpp")

    with pytest.raises(CompileError) as excinfo:
        planner.build(project, settings, runner=runner)

    assert excinfo.value.source.endswith("b.cpp")
    assert len(runner.commands) == 2
    assert all(cmd[0] != "ar" for cmd in runner.commands)


def test_archive_failure_raises_archive_error(project, store):
    settings = _settings(
        store, project, build={"build_name": "demo", "build_type": "static"}
    )

    with pytest.raises(ArchiveError):
        planner.build(project, settings, runner=lambda cmd: 1 if cmd[0] == "ar" else 0)


def test_link_failure_raises_link_error(project, store):
    with pytest.raises(LinkError) as excinfo:
        planner.build(project, store.load(), runner=lambda cmd: 2)

    assert excinfo.value.returncode == 2
    assert excinfo.value.stage == "compile+link"
    assert "compiling and linking" in str(excinfo.value)


def test_static_plan_rejects_colliding_object_names(project, store):
    settings = _settings(
        store,
        project,
        source={"src files": ["src/a/util.cpp", "src/b/util.cpp"]},
        build={"build_name": "demo", "build_type": "static"},
    )

    with pytest.raises(CppxError) as excinfo:
        planner.plan(project, settings)

    message = str(excinfo.value)
    assert str(project.path / "src" / "a" / "util.cpp") in message
    assert str(project.path / "src" / "b" / "util.cpp") in message
    assert str(project.build_dir / "util.o") in message


def test_static_build_with_colliding_objects_runs_nothing(project, store):
    settings = _settings(
        store,
        project,
        source={"src files": ["src/a/util.cpp", "src/b/util.cpp"]},
        build={"build_name": "demo", "build_type": "static"},
    )
    runner = Recorder()

    with pytest.raises(CppxError):
        planner.build(project, settings, runner=runner)

    assert runner.commands == []


def test_plan_tests_excludes_main_source(project, store):
    tests_dir = project.path / "tests"
    tests_dir.mkdir()
    (tests_dir / "math.test.cpp").write_text("int main() {}\n", encoding="utf-8")
    (tests_dir / "notes.txt").write_text("skip\n", encoding="utf-8")
    settings = _settings(
        store, project, source={"src files": ["src/main.cpp", "src/math.cpp"]}
    )

    [step] = planner.plan_tests(project, settings)

    command = step["command"]
    assert str(project.path / "src" / "math.cpp") in command
    assert str(project.path / "src" / "main.cpp") not in command
    assert command[-3:] == ["-o", str(project.build_dir / planner.exe_name("math.test")), "-g"]


def test_plan_tests_requires_tests_dir(project, store):
    with pytest.raises(CppxError):
        planner.plan_tests(project, store.load())


def test_library_names_follow_platform(monkeypatch):
    monkeypatch.setattr(planner, "is_windows", lambda: False)
    monkeypatch.setattr(planner, "is_macos", lambda: False)
    assert planner.shared_library_name("demo") == "libdemo.so"
    assert planner.static_library_name("demo") == "libdemo.a"

    monkeypatch.setattr(planner, "is_macos", lambda: True)
    assert planner.shared_library_name("demo") == "libdemo.dylib"

    monkeypatch.setattr(planner, "is_windows", lambda: True)
    assert planner.shared_library_name("demo") == "demo.dll"
    assert planner.static_library_name("demo") == "demo.lib"


def test_static_build_end_to_end_with_fake_tools(project, store, monkeypatch):
    monkeypatch.setattr(planner, "is_windows", lambda: False)
    settings = _settings(
        store,
        project,
        source={"src files": ["src/a.cpp", "src/b.cpp"]},
        build={"build_name": "demo", "build_type": "static"},
    )

    def fake_tools(cmd):
        if cmd[0] == "ar":
            Path(cmd[2]).write_bytes(b"!<arch>\n")
        else:
            Path(cmd[cmd.index("-o") + 1]).write_bytes(b"\x7fELF")
        return 0

    result = planner.build(project, settings, runner=fake_tools)

    assert project.build_dir.is_dir()
    assert sorted(path.name for path in project.build_dir.iterdir()) == [
        "a.o",
        "b.o",
        "libdemo.a",
    ]
    assert result["artifact"] == project.build_dir / "libdemo.a"
    assert result["objects"] == [project.build_dir / "a.o", project.build_dir / "b.o"]
