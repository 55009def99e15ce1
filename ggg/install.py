"""Planning and carrying out the installation of a cached dependency.

:func:`plan_install` works out which files would be written and which
existing files stand in the way, without touching the disk.
:func:`execute_install` writes the files of a plan that has no conflicts.

An existing target file may be overwritten when its content already equals
what would be installed, or when the state file records it with its current
hash. Any other existing file is a conflict. Files are copied into a staging
directory inside the project root first and then renamed into place, so each
file appears atomically.
"""

from __future__ import annotations

import os
import shutil
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from ggg.fileset import GlobSet, collect_file_pairs, hash_file, path_key
from ggg.models import GggError, ResolvedDependency
from ggg.state import InstalledFile, LocalState, StateEntry

_STAGING_PREFIX = ".ggg-install-"


@dataclass
class Conflicts:
    """Existing files that block an install.

    ``modified`` holds installed files the user has since changed;
    ``unmanaged`` holds files that were never installed by the tool.
    """

    modified: list[str] = field(default_factory=list)
    unmanaged: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        """True when nothing blocks the install."""
        return not self.modified and not self.unmanaged


@dataclass
class InstallPlan:
    """Everything needed to install one dependency.

    ``entry`` lists every file the dependency owns, ``to_write`` the
    ``(cache source, project-relative destination)`` pairs that must be
    written, and ``conflicts`` what blocks the install.
    """

    entry: StateEntry
    to_write: list[tuple[Path, Path]]
    conflicts: Conflicts


def _hash_or_none(path: Path) -> str | None:
    try:
        return hash_file(path)
    except GggError:
        return None


def _needs_write(src: Path, dest: Path) -> bool:
    if not dest.exists():
        return True
    src_hash = _hash_or_none(src)
    dest_hash = _hash_or_none(dest)
    if src_hash is None or dest_hash is None:
        return True
    return src_hash != dest_hash


def _collect_conflicts(
    pairs: list[tuple[Path, Path]],
    project_root: Path,
    state: LocalState,
    overwrite_set: GlobSet,
) -> Conflicts:
    conflicts = Conflicts()
    for src, rel_dest in pairs:
        dest = project_root / rel_dest
        if not dest.exists():
            continue
        key = path_key(rel_dest)
        if overwrite_set.is_match(key):
            continue
        on_disk = hash_file(dest)
        if on_disk == hash_file(src):
            continue
        if state.is_owned(key, on_disk):
            continue
        if state.is_managed_path(key):
            conflicts.modified.append(key)
        else:
            conflicts.unmanaged.append(key)
    return conflicts


def plan_install(
    dep: ResolvedDependency,
    cache_dir,
    project_root,
    state: LocalState,
    force: bool,
    force_overwrite,
) -> InstallPlan:
    """Work out what installing ``dep`` would do, without writing anything.

    With ``force`` no conflicts are reported. Files whose project-relative
    path matches one of the ``force_overwrite`` glob patterns are never
    conflicts.
    """
    cache_dir = Path(cache_dir)
    project_root = Path(project_root)
    pairs = collect_file_pairs(dep, cache_dir)
    overwrite_set = GlobSet(force_overwrite)

    conflicts = (
        Conflicts()
        if force
        else _collect_conflicts(pairs, project_root, state, overwrite_set)
    )

    all_files = [
        InstalledFile(path=path_key(rel), hash=_hash_or_none(src) or "")
        for src, rel in pairs
    ]
    to_write = [
        (src, rel) for src, rel in pairs if _needs_write(src, project_root / rel)
    ]
    return InstallPlan(
        entry=StateEntry(name=dep.dep.name, files=all_files),
        to_write=to_write,
        conflicts=conflicts,
    )


def _make_writable(path: Path) -> None:
    os.chmod(path, stat.S_IMODE(os.stat(path).st_mode) | stat.S_IWUSR)


def _stage_and_install(
    pairs: list[tuple[Path, Path]], project_root: Path
) -> list[InstalledFile]:
    try:
        staging = Path(tempfile.mkdtemp(prefix=_STAGING_PREFIX, dir=project_root))
    except OSError as exc:
        raise GggError(
            f"failed to create staging directory in project root: {exc}"
        ) from exc

    try:
        staged: list[tuple[Path, Path, str]] = []
        for src, rel_dest in pairs:
            staged_path = staging / rel_dest
            try:
                staged_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(src, staged_path)
                # Project copies stay writable; only cache copies are read-only.
                _make_writable(staged_path)
            except OSError as exc:
                raise GggError(f"failed to stage {src}: {exc}") from exc
            staged.append((staged_path, project_root / rel_dest, hash_file(staged_path)))

        installed: list[InstalledFile] = []
        for staged_path, final_path, digest in staged:
            try:
                final_path.parent.mkdir(parents=True, exist_ok=True)
                os.replace(staged_path, final_path)
            except OSError as exc:
                raise GggError(f"failed to install {final_path}: {exc}") from exc
            installed.append(
                InstalledFile(
                    path=path_key(final_path.relative_to(project_root)), hash=digest
                )
            )
        return installed
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def execute_install(plan: InstallPlan, project_root) -> None:
    """Write the files of ``plan``; call only when it has no conflicts."""
    if plan.to_write:
        _stage_and_install(plan.to_write, Path(project_root))