import hashlib
import os
import stat
from pathlib import Path

import pytest

from ggg.install import Conflicts, execute_install, plan_install
from ggg.models import Dependency, GggError, MapEntry, ResolvedDependency
from ggg.state import InstalledFile, LocalState, StateEntry

METADATA_FILE = ".ggg_dep_info.toml"


def make_dep(name, map_entries=None):
    dep = Dependency.new_git(name, "https://example.com/repo.git", "main")
    dep.map = map_entries
    return ResolvedDependency(dep=dep, sha="a" * 40)


def make_archive_dep(name, strip, map_entries=None):
    dep = Dependency.new_archive(name, "https://example.com/archive.zip")
    dep.strip_components = None if strip == 0 else strip
    dep.map = map_entries
    return ResolvedDependency(dep=dep, sha="abc123")


def write(root: Path, rel: str, content: bytes) -> None:
    path = root.joinpath(*rel.split("/"))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def read(root: Path, rel: str) -> bytes:
    return root.joinpath(*rel.split("/")).read_bytes()


def exists(root: Path, rel: str) -> bool:
    return root.joinpath(*rel.split("/")).exists()


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def state_owns(dep, path, content):
    state = LocalState()
    state.upsert_entry(
        StateEntry(name=dep, files=[InstalledFile(path=path, hash=content_hash(content))])
    )
    return state


def inst(dep, cache, project, state, force):
    plan = plan_install(dep, cache, project, state, force, [])
    assert plan.conflicts.is_empty()
    execute_install(plan, project)
    return plan.entry


@pytest.fixture
def dirs(tmp_path):
    cache = tmp_path / "cache"
    project = tmp_path / "project"
    cache.mkdir()
    project.mkdir()
    return cache, project


# --- conflicts ---------------------------------------------------------------


def test_conflicts_is_empty():
    assert Conflicts().is_empty() is True
    assert Conflicts(modified=["a"]).is_empty() is False
    assert Conflicts(unmanaged=["b"]).is_empty() is False


# --- file enumeration --------------------------------------------------------


def test_no_map_installs_full_tree(dirs):
    cache, project = dirs
    write(cache, "addons/gut/gut.gd", b"# gut")
    write(cache, "addons/gut/sub/util.gd", b"# util")

    entry = inst(make_dep("gut"), cache, project, LocalState(), False)

    assert len(entry.files) == 2
    assert read(project, "addons/gut/gut.gd") == b"# gut"
    assert read(project, "addons/gut/sub/util.gd") == b"# util"


def test_map_from_only_installs_subtree_at_same_path(dirs):
    cache, project = dirs
    write(cache, "addons/gut/gut.gd", b"# gut")
    write(cache, "other/ignored.gd", b"# ignored")

    entry = inst(
        make_dep("gut", [MapEntry(from_path="addons/gut")]),
        cache, project, LocalState(), False,
    )

    assert len(entry.files) == 1
    assert exists(project, "addons/gut/gut.gd")
    assert not exists(project, "other/ignored.gd")


def test_map_from_to_installs_at_renamed_destination(dirs):
    cache, project = dirs
    write(cache, "src/plugin.gd", b"# plugin")

    inst(
        make_dep("plugin", [MapEntry(from_path="src", to="addons/myplugin")]),
        cache, project, LocalState(), False,
    )

    assert exists(project, "addons/myplugin/plugin.gd")
    assert not exists(project, "src/plugin.gd")


def test_metadata_file_is_excluded_from_install(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# plugin")
    write(cache, METADATA_FILE, b"name = 'test'")

    entry = inst(make_dep("dep"), cache, project, LocalState(), False)

    assert len(entry.files) == 1
    assert not exists(project, METADATA_FILE)


def test_map_missing_from_path_returns_error(dirs):
    cache, project = dirs
    with pytest.raises(GggError):
        plan_install(
            make_dep("dep", [MapEntry(from_path="nonexistent")]),
            cache, project, LocalState(), False, [],
        )


# --- install correctness -----------------------------------------------------


def test_installed_files_are_writable(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# content")
    cache_file = cache / "plugin.gd"
    os.chmod(cache_file, stat.S_IMODE(cache_file.stat().st_mode) & ~0o222)

    inst(make_dep("dep"), cache, project, LocalState(), False)

    assert (project / "plugin.gd").stat().st_mode & stat.S_IWUSR


def test_state_entry_hashes_match_installed_content(dirs):
    cache, project = dirs
    content = b"# hello"
    write(cache, "plugin.gd", content)

    entry = inst(make_dep("dep"), cache, project, LocalState(), False)

    assert len(entry.files) == 1
    assert entry.files[0].path == "plugin.gd"
    assert entry.files[0].hash == content_hash(content)


def test_state_entry_paths_use_forward_slashes(dirs):
    cache, project = dirs
    write(cache, "addons/gut/gut.gd", b"# gut")

    entry = inst(make_dep("gut"), cache, project, LocalState(), False)

    assert entry.files[0].path == "addons/gut/gut.gd"


def test_staging_directory_is_removed(dirs):
    cache, project = dirs
    write(cache, "addons/gut/gut.gd", b"# gut")

    inst(make_dep("gut"), cache, project, LocalState(), False)

    assert sorted(p.name for p in project.iterdir()) == ["addons"]


# --- conflict detection ------------------------------------------------------


def test_no_conflict_when_target_absent(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# content")

    plan = plan_install(make_dep("dep"), cache, project, LocalState(), False, [])

    assert plan.conflicts.is_empty()


def test_no_conflict_when_content_matches_regardless_of_state(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# same")
    write(project, "plugin.gd", b"# same")

    plan = plan_install(make_dep("dep"), cache, project, LocalState(), False, [])

    assert plan.conflicts.is_empty()


def test_no_conflict_when_ggg_owns_file_and_dep_updated_content(dirs):
    cache, project = dirs
    old = b"# old"
    new = b"# new (dep updated)"
    write(cache, "plugin.gd", new)
    write(project, "plugin.gd", old)

    inst(make_dep("dep"), cache, project, state_owns("dep", "plugin.gd", old), False)

    assert read(project, "plugin.gd") == new


def test_conflict_when_user_file_exists_with_different_content(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# dep content")
    write(project, "plugin.gd", b"# user content")

    plan = plan_install(make_dep("dep"), cache, project, LocalState(), False, [])

    assert plan.conflicts.unmanaged == ["plugin.gd"]
    assert plan.conflicts.modified == []


def test_conflict_message_flags_user_modified_ggg_file(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# new dep content")
    write(project, "plugin.gd", b"# user modified")
    state = state_owns("dep", "plugin.gd", b"# original ggg content")

    plan = plan_install(make_dep("dep"), cache, project, state, False, [])

    assert plan.conflicts.modified == ["plugin.gd"]
    assert plan.conflicts.unmanaged == []


def test_force_overwrites_conflicting_user_file(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# dep content")
    write(project, "plugin.gd", b"# user content")

    inst(make_dep("dep"), cache, project, LocalState(), True)

    assert read(project, "plugin.gd") == b"# dep content"


# --- force_overwrite ---------------------------------------------------------


def test_force_overwrite_pattern_bypasses_conflict(dirs):
    cache, project = dirs
    write(cache, "addons/gut/gut.import", b"# dep import")
    write(project, "addons/gut/gut.import", b"# godot-modified import")

    plan = plan_install(
        make_dep("dep"), cache, project, LocalState(), False, ["**/*.import"]
    )

    assert plan.conflicts.is_empty()
    assert len(plan.to_write) == 1

    execute_install(plan, project)
    assert read(project, "addons/gut/gut.import") == b"# dep import"


def test_force_overwrite_does_not_affect_non_matching_files(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# dep")
    write(cache, "plugin.import", b"# dep import")
    write(project, "plugin.gd", b"# user modified")
    write(project, "plugin.import", b"# godot modified")

    plan = plan_install(
        make_dep("dep"), cache, project, LocalState(), False, ["**/*.import"]
    )

    assert "plugin.gd" in plan.conflicts.unmanaged
    assert "plugin.import" not in plan.conflicts.unmanaged


def test_force_overwrite_invalid_pattern_returns_error(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# content")

    with pytest.raises(GggError):
        plan_install(make_dep("dep"), cache, project, LocalState(), False, ["[invalid"])


# --- idempotency -------------------------------------------------------------


def test_second_install_writes_nothing_when_content_unchanged(dirs):
    cache, project = dirs
    write(cache, "addons/gut/gut.gd", b"# gut")
    write(cache, "addons/gut/util.gd", b"# util")

    first = plan_install(make_dep("gut"), cache, project, LocalState(), False, [])
    assert len(first.to_write) == 2
    execute_install(first, project)

    second = plan_install(make_dep("gut"), cache, project, LocalState(), False, [])
    assert len(second.to_write) == 0
    assert len(second.entry.files) == 2


def test_second_install_writes_only_changed_files(dirs):
    cache, project = dirs
    write(cache, "a.gd", b"# a")
    write(cache, "b.gd", b"# b")

    first = plan_install(make_dep("dep"), cache, project, LocalState(), False, [])
    execute_install(first, project)
    state = LocalState()
    state.upsert_entry(first.entry)

    write(cache, "b.gd", b"# b updated")

    second = plan_install(make_dep("dep"), cache, project, state, False, [])
    assert len(second.to_write) == 1
    execute_install(second, project)
    assert read(project, "b.gd") == b"# b updated"


# --- plan only ---------------------------------------------------------------


def test_plan_only_writes_no_files(dirs):
    cache, project = dirs
    write(cache, "plugin.gd", b"# content")

    plan = plan_install(make_dep("dep"), cache, project, LocalState(), False, [])

    assert len(plan.to_write) == 1
    assert not exists(project, "plugin.gd")


def test_plan_returns_correct_entry(dirs):
    cache, project = dirs
    content = b"# content"
    write(cache, "addons/gut/gut.gd", content)

    plan = plan_install(make_dep("gut"), cache, project, LocalState(), False, [])

    assert plan.entry.name == "gut"
    assert len(plan.entry.files) == 1
    assert plan.entry.files[0].path == "addons/gut/gut.gd"
    assert plan.entry.files[0].hash == content_hash(content)


# --- strip_components at install time ----------------------------------------


def test_strip_components_one_strips_wrapper_dir(dirs):
    cache, project = dirs
    write(cache, "wrapper/addons/gut/gut.gd", b"# gut")
    write(cache, "wrapper/addons/gut/util.gd", b"# util")

    entry = inst(make_archive_dep("gut", 1), cache, project, LocalState(), False)

    assert len(entry.files) == 2
    assert exists(project, "addons/gut/gut.gd")
    assert exists(project, "addons/gut/util.gd")
    assert not exists(project, "wrapper")


def test_strip_components_keeps_entries_one_level_inside_wrapper(dirs):
    cache, project = dirs
    write(cache, "wrapper/README.md", b"# readme")
    write(cache, "wrapper/addons/gut/gut.gd", b"# gut")

    inst(make_archive_dep("gut", 1), cache, project, LocalState(), False)

    assert exists(project, "README.md")
    assert exists(project, "addons/gut/gut.gd")


def test_strip_then_map_uses_post_strip_paths(dirs):
    cache, project = dirs
    write(cache, "wrapper/addons/gut/gut.gd", b"# gut")
    write(cache, "wrapper/other/ignored.gd", b"# ignored")

    map_entries = [MapEntry(from_path="addons/gut", to="addons/my_gut")]
    inst(make_archive_dep("gut", 1, map_entries), cache, project, LocalState(), False)

    assert exists(project, "addons/my_gut/gut.gd")
    assert not exists(project, "addons/gut/gut.gd")
    assert not exists(project, "wrapper")
    assert not exists(project, "other/ignored.gd")


def test_asset_lib_strips_root_folder_by_default(dirs):
    cache, project = dirs
    write(cache, "root/addons/thing/plugin.gd", b"# thing")
    dep = ResolvedDependency(
        dep=Dependency.new_asset_lib("thing", 42),
        sha="f" * 64,
        resolved_url="https://example.com/thing.zip",
    )

    entry = inst(dep, cache, project, LocalState(), False)

    assert [f.path for f in entry.files] == ["addons/thing/plugin.gd"]
    assert read(project, "addons/thing/plugin.gd") == b"# thing"
    assert not exists(project, "root")