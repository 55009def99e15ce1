"""Dependency descriptions shared by every stage of the install pipeline."""

from __future__ import annotations

from dataclasses import dataclass


class GggError(Exception):
    """Raised when a dependency operation cannot be completed."""


@dataclass
class MapEntry:
    """Maps a path in the dependency tree to a path in the project.

    ``to`` defaults to ``from_path`` when absent.
    """

    from_path: str
    to: str | None = None


@dataclass(frozen=True)
class GitKind:
    """A dependency fetched from a git repository at a revision."""

    git: str
    rev: str


@dataclass(frozen=True)
class ArchiveKind:
    """A dependency downloaded as a zip or tar.gz archive."""

    url: str
    sha256: str | None = None
    strip_components: int = 0


@dataclass(frozen=True)
class AssetLibKind:
    """A dependency taken from the Godot Asset Library."""

    asset_id: int


DepKind = GitKind | ArchiveKind | AssetLibKind


@dataclass
class Dependency:
    """One dependency entry as configured in the project file."""

    name: str
    git: str | None = None
    rev: str | None = None
    url: str | None = None
    sha256: str | None = None
    asset_id: int | None = None
    strip_components: int | None = None
    map: list[MapEntry] | None = None

    @classmethod
    def new_git(cls, name: str, git: str, rev: str) -> Dependency:
        """Create a git dependency."""
        return cls(name=name, git=git, rev=rev)

    @classmethod
    def new_archive(cls, name: str, url: str) -> Dependency:
        """Create an archive dependency."""
        return cls(name=name, url=url)

    @classmethod
    def new_asset_lib(cls, name: str, asset_id: int) -> Dependency:
        """Create an asset library dependency."""
        return cls(name=name, asset_id=asset_id)

    def kind(self) -> DepKind:
        """Return the kind of this dependency with its kind-specific fields."""
        if self.git is not None:
            return GitKind(git=self.git, rev=self.rev or "")
        if self.url is not None:
            return ArchiveKind(
                url=self.url,
                sha256=self.sha256,
                strip_components=self.strip_components or 0,
            )
        if self.asset_id is not None:
            return AssetLibKind(asset_id=self.asset_id)
        raise GggError(
            f"dependency {self.name!r} has none of `git`, `url` or `asset_id` set"
        )


@dataclass
class ResolvedDependency:
    """A dependency paired with its resolved version identity.

    ``sha`` is the commit SHA for git dependencies and the archive SHA-256
    for archive and asset library dependencies.
    """

    dep: Dependency
    sha: str
    resolved_url: str | None = None
    asset_version: int | None = None