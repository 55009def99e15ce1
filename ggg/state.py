"""The local, untracked state file recording which files were installed.

A file is owned by the tool when its path appears in the state file and its
on-disk content hash matches the hash recorded at install time.
"""

from __future__ import annotations

import os
import stat
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

from ggg.models import GggError

STATE_FILE = ".ggg.state"


@dataclass
class InstalledFile:
    """A single installed file: forward-slash relative path and SHA-256."""

    path: str
    hash: str


@dataclass
class StateEntry:
    """All files installed for one dependency."""

    name: str
    files: list[InstalledFile] = field(default_factory=list)


def _is_readonly(path: Path) -> bool:
    return os.stat(path).st_mode & 0o222 == 0


def _set_readonly(path: Path, readonly: bool) -> None:
    mode = stat.S_IMODE(os.stat(path).st_mode)
    mode = mode & ~0o222 if readonly else mode | stat.S_IWUSR
    os.chmod(path, mode)


@dataclass
class LocalState:
    """Contents of the state file."""

    entries: list[StateEntry] = field(default_factory=list)

    @classmethod
    def load_or_empty(cls, path: str | os.PathLike[str]) -> tuple[LocalState, bool]:
        """Load the state file; return ``(state, present)``.

        An absent file yields an empty state and ``False``.
        """
        path = Path(path)
        if not path.exists():
            return cls(), False
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise GggError(f"failed to read {path}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise GggError(f"failed to parse {path}: {exc}") from exc
        try:
            entries = [
                StateEntry(
                    name=str(raw["name"]),
                    files=[
                        InstalledFile(path=str(f["path"]), hash=str(f["hash"]))
                        for f in raw.get("files", [])
                    ],
                )
                for raw in data.get("dependency", [])
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            raise GggError(f"failed to parse {path}: malformed entry") from exc
        return cls(entries=entries), True

    def save(self, path: str | os.PathLike[str]) -> None:
        """Write the state file and leave it read-only."""
        path = Path(path)
        document = {
            "dependency": [
                {
                    "name": entry.name,
                    "files": [{"path": f.path, "hash": f.hash} for f in entry.files],
                }
                for entry in self.entries
            ]
        }
        try:
            if path.exists() and _is_readonly(path):
                _set_readonly(path, False)
            path.write_text(tomli_w.dumps(document), encoding="utf-8")
            _set_readonly(path, True)
        except OSError as exc:
            raise GggError(f"failed to write {path}") from exc

    def is_owned(self, rel_path: str, hash: str) -> bool:
        """True if ``rel_path`` is recorded with exactly this content hash."""
        return any(
            f.path == rel_path and f.hash == hash
            for entry in self.entries
            for f in entry.files
        )

    def is_managed_path(self, rel_path: str) -> bool:
        """True if ``rel_path`` is recorded for any dependency, whatever its hash."""
        return any(f.path == rel_path for entry in self.entries for f in entry.files)

    def upsert_entry(self, entry: StateEntry) -> None:
        """Insert or replace the entry with the same name."""
        for index, existing in enumerate(self.entries):
            if existing.name == entry.name:
                self.entries[index] = entry
                return
        self.entries.append(entry)

    def remove_entry(self, name: str) -> None:
        """Remove the entry with this name, if present."""
        self.entries = [e for e in self.entries if e.name != name]