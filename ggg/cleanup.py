"""Removing files left behind by dependencies that were removed or remapped.

:func:`plan_cleanup` finds files that the previous state records as installed
but that no current dependency installs any more. Files that still carry the
recorded content can be deleted. Files the user has changed block the
cleanup unless it is forced. :func:`execute_cleanup` deletes the planned files
and prunes directories left empty.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path

from ggg.fileset import hash_file
from ggg.models import GggError
from ggg.state import LocalState, StateEntry


@dataclass
class CleanupPlan:
    """Stale files to delete and stale files that block deletion.

    ``to_remove`` holds ``(absolute path, display key)`` pairs; ``modified``
    holds the keys of stale files the user has changed.
    """

    to_remove: list[tuple[Path, str]] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)


def plan_cleanup(
    old_state: LocalState,
    new_entries: list[StateEntry],
    project_root,
    state_present: bool,
    force: bool,
) -> CleanupPlan:
    """Work out which stale files to delete, without touching the disk.

    A stale file is recorded in ``old_state`` but absent from every entry in
    ``new_entries``. When ``state_present`` is false nothing can be known to be
    stale and the plan is empty. With ``force`` modified stale files are
    deleted as well.
    """
    project_root = Path(project_root)
    if not state_present:
        if old_state.entries:
            print(
                "warning: .ggg.state was not found; stale files from previous "
                "installs cannot be identified and will not be removed. "
                "Run `ggg sync` again to restore the state file.",
                file=sys.stderr,
            )
        return CleanupPlan()

    new_paths = {f.path for entry in new_entries for f in entry.files}
    plan = CleanupPlan()

    for entry in old_state.entries:
        for installed in entry.files:
            if installed.path in new_paths:
                continue
            abs_path = project_root.joinpath(*installed.path.split("/"))
            if not abs_path.exists():
                continue
            try:
                on_disk = hash_file(abs_path)
            except GggError as exc:
                raise GggError(f"failed to hash {abs_path}: {exc}") from exc
            if on_disk != installed.hash and not force:
                plan.modified.append(installed.path)
            else:
                plan.to_remove.append((abs_path, installed.path))

    return plan


def execute_cleanup(plan: CleanupPlan, project_root) -> None:
    """Delete the files in ``plan.to_remove`` and prune emptied directories."""
    project_root = Path(project_root)
    parents: list[Path] = []
    for abs_path, display in plan.to_remove:
        try:
            abs_path.unlink()
        except OSError as exc:
            raise GggError(f"failed to remove {display}: {exc}") from exc
        print(f"  Removed {display}")
        parents.append(abs_path.parent)
    _prune_empty_dirs(parents, project_root)


def _is_empty_dir(path: Path) -> bool:
    try:
        return not any(path.iterdir())
    except OSError:
        return False


def _prune_empty_dirs(dirs: list[Path], project_root: Path) -> None:
    """Remove directories emptied by deletion, walking up to the project root.

    Errors are ignored: a leftover empty directory is harmless.
    """
    deepest_first = sorted(set(dirs), key=lambda p: len(p.parts), reverse=True)
    for current in deepest_first:
        while current != project_root and _is_empty_dir(current):
            try:
                current.rmdir()
            except OSError:
                pass
            parent = current.parent
            if parent == current:
                break
            current = parent