import json
from pathlib import Path

import pytest

from cppx.config import (
    INCLUDE_DIRS_KEY,
    SECTION_SOURCE,
    SRC_FILES_KEY,
    GlobalConfig,
    JsonDocumentStorage,
    ProjectConfig,
    ProjectStore,
    Toolchain,
    add_unique,
    default_document,
    parse_settings,
    pick_compiler,
    remove_all,
    render_document,
    resolve_project_path,
)
from cppx.errors import CppxError, NotConfigured, ParseError, SchemaError


def _write(project, data):
    project.document_path.write_text(json.dumps(data), encoding="utf-8")


def test_load_default_document(store):
    settings = store.load()

    assert settings["name"] == "demo"
    assert settings["src_files"] == ["src/main.cpp"]
    assert settings["include_dirs"] == ["include"]
    assert settings["build"] == {"output_name": "demo", "build_type": "executable"}
    assert settings["dependencies"] == {}
    assert settings["metadata"]["authors"] == []


def test_add_values_is_idempotent(store):
    first = store.add_values(SECTION_SOURCE, SRC_FILES_KEY, ["src/a.cpp"])
    second = store.add_values(SECTION_SOURCE, SRC_FILES_KEY, ["src/a.cpp"])

    assert first == ["src/a.cpp"]
    assert second == []
    assert store.load()["src_files"] == ["src/main.cpp", "src/a.cpp"]


def test_add_values_keeps_insertion_order(store):
    store.add_values(SECTION_SOURCE, SRC_FILES_KEY, ["src/z.cpp", "src/b.cpp", "src/z.cpp"])

    assert store.load()["src_files"] == ["src/main.cpp", "src/z.cpp", "src/b.cpp"]


def test_remove_values_removes_every_occurrence(project, store):
    data = default_document("demo")
    data[SECTION_SOURCE][SRC_FILES_KEY] = ["a.cpp", "b.cpp", "a.cpp"]
    _write(project, data)

    removed = store.remove_values(SECTION_SOURCE, SRC_FILES_KEY, ["a.cpp"])

    assert removed == ["a.cpp", "a.cpp"]
    assert store.load()["src_files"] == ["b.cpp"]


def test_remove_values_absent_is_noop(store):
    removed = store.remove_values(SECTION_SOURCE, SRC_FILES_KEY, ["nope.cpp"])

    assert removed == []
    assert store.load()["src_files"] == ["src/main.cpp"]


def test_add_then_remove_restores_original(store):
    before = store.load()
    store.add_values(SECTION_SOURCE, INCLUDE_DIRS_KEY, ["/opt/zlib/include"])
    store.remove_values(SECTION_SOURCE, INCLUDE_DIRS_KEY, ["/opt/zlib/include"])

    assert store.load() == before


def test_mutate_rejects_unknown_section(store):
    with pytest.raises(ValueError):
        store.mutate("bogus", lambda table: None)


def test_mutate_preserves_unknown_keys(project, store):
    data = default_document("demo")
    data["custom"] = {"keep": True}
    _write(project, data)

    store.set_dependency("zlib", "1.3.1")

    raw = json.loads(project.document_path.read_text(encoding="utf-8"))
    assert raw["custom"] == {"keep": True}
    assert raw["dependencies"] == {"zlib": "1.3.1"}


def test_dependency_set_and_remove(store):
    store.set_dependency("fmt", "10.2.1")
    assert store.load()["dependencies"] == {"fmt": "10.2.1"}

    assert store.remove_dependency("fmt") is True
    assert store.remove_dependency("fmt") is False
    assert store.load()["dependencies"] == {}


def test_set_metadata_authors_list(store):
    store.set_metadata("authors", ["Ada", "Linus"])
    store.set_metadata("version", "1.0.0")

    metadata = store.load()["metadata"]
    assert metadata["authors"] == ["Ada", "Linus"]
    assert metadata["version"] == "1.0.0"


def test_metadata_authors_accepts_string():
    data = default_document("demo")
    data["metadata"] = {"authors": "Ada"}

    assert parse_settings(data, "demo")["metadata"]["authors"] == ["Ada"]


def test_render_document_round_trips():
    data = default_document("demo")
    data["defines"] = {"DEBUG": "1"}
    data["configurations"] = {"release": {"flags": ["-O2"], "output": "demo-rel"}}
    settings = parse_settings(data, "demo")

    assert parse_settings(render_document(settings), "demo") == settings


def test_missing_source_section_names_key():
    with pytest.raises(SchemaError) as excinfo:
        parse_settings({"name": "demo"}, "demo")

    assert excinfo.value.key == "source"


def test_missing_source_array_names_key():
    data = default_document("demo")
    del data[SECTION_SOURCE]["static_linked_dirs"]

    with pytest.raises(SchemaError) as excinfo:
        parse_settings(data, "demo")

    assert excinfo.value.key == "source.static_linked_dirs"


def test_non_string_entry_rejected():
    data = default_document("demo")
    data[SECTION_SOURCE][SRC_FILES_KEY] = ["ok.cpp", 3]

    with pytest.raises(SchemaError) as excinfo:
        parse_settings(data, "demo")

    assert excinfo.value.key == "source.src files"


def test_invalid_build_type_rejected():
    data = default_document("demo")
    data["build"]["build_type"] = "plugin"

    with pytest.raises(SchemaError) as excinfo:
        parse_settings(data, "demo")

    assert excinfo.value.key == "build.build_type"


@pytest.mark.parametrize(
    ("section", "value", "key"),
    [
        ("dependencies", {"zlib": 1}, "dependencies.zlib"),
        ("defines", {"X": 2}, "defines.X"),
        ("extra", {"compiler": ["g++"]}, "extra.compiler"),
        ("ignore", {"files": "x"}, "ignore.files"),
        ("ignore", [], "ignore"),
        ("source", [], "source"),
        ("dependencies", ["zlib"], "dependencies"),
    ],
)
def test_wrong_value_types_name_the_key(section, value, key):
    data = default_document("demo")
    data[section] = value

    with pytest.raises(SchemaError) as excinfo:
        parse_settings(data, "demo")

    assert excinfo.value.key == key
    assert str(excinfo.value).startswith(f"config {key} ")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("_default", "executable"), ("dynamic", "shared"), ("static", "static")],
)
def test_build_type_aliases(raw, expected):
    data = default_document("demo")
    data["build"] = {"build_name": "_default", "build_type": raw}

    build = parse_settings(data, "demo")["build"]

    assert build == {"output_name": "demo", "build_type": expected}


def test_missing_document_raises_not_configured(tmp_path, toolchain):
    project = ProjectConfig(tmp_path / "nowhere", "nowhere", toolchain)

    with pytest.raises(NotConfigured):
        ProjectStore(project).load()


def test_invalid_json_raises_parse_error(project, store):
    project.document_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ParseError):
        store.load()


def test_json_storage_write_leaves_no_temp_files(tmp_path):
    storage = JsonDocumentStorage(tmp_path / "doc.json")
    storage.write({"a": 1})
    storage.write({"a": 2})

    assert storage.read() == {"a": 2}
    assert [path.name for path in tmp_path.iterdir()] == ["doc.json"]


def test_add_unique_and_remove_all():
    items = ["a"]
    assert add_unique(items, "b") is True
    assert add_unique(items, "a") is False
    assert items == ["a", "b"]
    assert remove_all(["a", "b", "a", "c"], ["a", "c"]) == ["b"]


def test_resolve_project_path(project):
    assert resolve_project_path(project, "include") == project.path / "include"
    assert resolve_project_path(project, "/usr/include") == Path("/usr/include")


def test_pick_compiler_prefers_extra_override(project, store):
    settings = store.load()
    assert pick_compiler(project, settings) == "/usr/bin/g++"

    store.set_extra("compiler", "clang++")
    assert pick_compiler(project, store.load()) == "clang++"


def test_global_config_without_project(isolated_global_config):
    with pytest.raises(NotConfigured):
        GlobalConfig().current_project()


def test_global_config_project_without_toolchain(tmp_path):
    config = GlobalConfig()
    config.set_project("demo", tmp_path)

    with pytest.raises(NotConfigured):
        config.current_project()


def test_global_config_round_trip(isolated_global_config, tmp_path, toolchain):
    config = GlobalConfig()
    resolved = config.set_project("demo", tmp_path)
    config.set_toolchain(toolchain)

    project = config.current_project()

    assert resolved == tmp_path.resolve()
    assert project.path == tmp_path.resolve()
    assert project.name == "demo"
    assert project.toolchain == toolchain
    assert isolated_global_config.exists()


def test_global_config_rejects_missing_path(tmp_path):
    with pytest.raises(CppxError):
        GlobalConfig().set_project("demo", tmp_path / "missing")


def test_toolchain_from_dict_requires_fields():
    with pytest.raises(NotConfigured):
        Toolchain.from_dict({"compiler": "gcc", "path": "/usr/bin/gcc"})
