"""The committed lock file recording the resolved version of each dependency.

It lets any checkout install exactly the same dependency versions without
resolving revisions over the network again. Files installed into a working
tree are tracked separately in the local state file.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli_w

from ggg.models import ArchiveKind, AssetLibKind, GggError, GitKind, ResolvedDependency


@dataclass
class LockEntry:
    """One dependency record.

    Git entries set ``git``, ``rev`` and ``sha``. Archive entries set ``url``
    and ``archive_sha``. Asset library entries set ``asset_id``,
    ``asset_version``, ``url`` and ``archive_sha``.
    """

    name: str
    git: str | None = None
    rev: str | None = None
    sha: str | None = None
    url: str | None = None
    archive_sha: str | None = None
    asset_id: int | None = None
    asset_version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """The TOML table for this entry, leaving out unset fields."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    @classmethod
    def from_dict(cls, raw: Any) -> LockEntry:
        """Build an entry from a parsed TOML table; unknown keys are ignored."""
        if not isinstance(raw, dict):
            raise GggError("lock entry is not a table")
        name = raw.get("name")
        if not isinstance(name, str):
            raise GggError("lock entry is missing a string `name`")
        values: dict[str, Any] = {"name": name}
        for key in ("git", "rev", "sha", "url", "archive_sha"):
            value = raw.get(key)
            if value is not None and not isinstance(value, str):
                raise GggError(f"lock entry {name!r}: `{key}` must be a string")
            values[key] = value
        for key in ("asset_id", "asset_version"):
            value = raw.get(key)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int) or value < 0
            ):
                raise GggError(
                    f"lock entry {name!r}: `{key}` must be a non-negative integer"
                )
            values[key] = value
        return cls(**values)


@dataclass
class LockFile:
    """Contents of the lock file, one entry per dependency in config order."""

    entries: list[LockEntry] = field(default_factory=list)

    @classmethod
    def load_or_empty(cls, path: str | os.PathLike[str]) -> LockFile:
        """Load the lock file, or return an empty one if it does not exist."""
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise GggError(f"failed to read {path}: {exc}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise GggError(f"failed to parse {path}: {exc}") from exc
        raw_entries = data.get("dependency", [])
        if not isinstance(raw_entries, list):
            raise GggError(f"failed to parse {path}: `dependency` must be an array")
        try:
            entries = [LockEntry.from_dict(raw) for raw in raw_entries]
        except GggError as exc:
            raise GggError(f"failed to parse {path}: {exc}") from exc
        return cls(entries=entries)

    def save(self, path: str | os.PathLike[str]) -> None:
        """Serialise and write the lock file to ``path``."""
        path = Path(path)
        content = tomli_w.dumps({"dependency": [e.to_dict() for e in self.entries]})
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise GggError(f"failed to write {path}: {exc}") from exc

    def upsert(self, dep: ResolvedDependency) -> None:
        """Insert or replace the entry for ``dep``, keyed by name."""
        name = dep.dep.name
        kind = dep.dep.kind()
        match kind:
            case GitKind(git=git, rev=rev):
                entry = LockEntry(name=name, git=git, rev=rev, sha=dep.sha)
            case ArchiveKind(url=url):
                entry = LockEntry(name=name, url=url, archive_sha=dep.sha)
            case AssetLibKind(asset_id=asset_id):
                entry = LockEntry(
                    name=name,
                    url=dep.resolved_url,
                    archive_sha=dep.sha,
                    asset_id=asset_id,
                    asset_version=dep.asset_version,
                )
        for index, existing in enumerate(self.entries):
            if existing.name == name:
                self.entries[index] = entry
                return
        self.entries.append(entry)

    def locked_sha(self, name: str, git: str, rev: str) -> str | None:
        """The locked commit SHA, only if name, git URL and rev all match."""
        entry = next(
            (e for e in self.entries if e.name == name and e.git == git and e.rev == rev),
            None,
        )
        return entry.sha if entry is not None else None

    def locked_archive_sha(self, name: str, url: str) -> str | None:
        """The locked archive SHA-256, only if name and URL both match."""
        entry = next(
            (e for e in self.entries if e.name == name and e.url == url), None
        )
        return entry.archive_sha if entry is not None else None

    def locked_asset_lib(self, name: str, asset_id: int) -> LockEntry | None:
        """The entry for an asset library dependency with this name and id."""
        return next(
            (e for e in self.entries if e.name == name and e.asset_id == asset_id),
            None,
        )

    def remove(self, name: str) -> None:
        """Remove the entry with this name, if present."""
        self.entries = [e for e in self.entries if e.name != name]