"""On-disk cache of downloaded dependency snapshots.

Each dependency version lives at::

    <cache root>/deps/<sha256(url)>/<version sha>/

For git dependencies the URL is normalised first (lowercased, protocol,
trailing ``.git`` and trailing slashes removed) so that the same repository
reached over different protocols shares one cache directory. Hashing keeps
directory names short and filesystem-safe.

The cache root is taken from the ``GGG_CACHE_DIR`` environment variable when
set, otherwise from the platform's user data directory.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import stat
import tempfile
from pathlib import Path

import platformdirs

from ggg.archive import download_and_extract_url
from ggg.models import (
    ArchiveKind,
    AssetLibKind,
    Dependency,
    GggError,
    GitKind,
    ResolvedDependency,
)

CACHE_DIR_ENV_VAR = "GGG_CACHE_DIR"
_APP_NAME = "ggg"
_INSTALL_PREFIX = ".install-"


def normalize_url(url: str) -> str:
    """Normalise a git URL for stable hashing.

    The URL is lowercased, its protocol prefix (or ``git@host:`` form) is
    removed, and a trailing ``.git`` and trailing slashes are stripped.
    """
    s = url.lower()
    scheme_end = s.find("://")
    if scheme_end != -1:
        s = s[scheme_end + 3:]
    elif s.startswith("git@"):
        s = s[len("git@"):].replace(":", "/", 1)
    s = s.removesuffix(".git")
    return s.rstrip("/")


def url_hash(normalized: str) -> str:
    """SHA-256 hex digest (64 lowercase characters) of ``normalized``."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def resolve_cache_root() -> Path:
    """The cache root: ``GGG_CACHE_DIR`` if set, else the platform default."""
    override = os.environ.get(CACHE_DIR_ENV_VAR)
    if override:
        return Path(override)
    try:
        return Path(platformdirs.user_data_dir(_APP_NAME, appauthor=False, roaming=True))
    except Exception as exc:  # platformdirs may fail without a home directory
        raise GggError(f"could not determine the cache directory: {exc}") from exc


def _make_writable_and_retry(func, path, _exc_info) -> None:
    os.chmod(path, stat.S_IMODE(os.stat(path).st_mode) | stat.S_IWUSR)
    func(path)


def _remove_tree(path: Path) -> None:
    """Remove a directory tree, including read-only files; errors are ignored."""
    if not path.exists():
        return
    try:
        shutil.rmtree(path, onerror=_make_writable_and_retry)
    except OSError:
        pass


class DependencyCache:
    """Manages the on-disk cache of dependency snapshots rooted at ``base``."""

    def __init__(self, base: str | os.PathLike[str]) -> None:
        self.base = Path(base)

    @classmethod
    def from_env(cls) -> DependencyCache:
        """A cache rooted at ``<cache root>/deps``."""
        return cls(resolve_cache_root() / "deps")

    def contains(self, dep: ResolvedDependency) -> bool:
        """True if the dependency's cache entry exists and is not empty."""
        directory = self._dep_dir(dep)
        if not directory.is_dir():
            return False
        try:
            return any(directory.iterdir())
        except OSError:
            return False

    def install_archive(self, dep: Dependency) -> str:
        """Download and cache an archive dependency; return the archive SHA-256."""
        kind = dep.kind()
        if not isinstance(kind, ArchiveKind):
            raise GggError(
                f"install_archive() called on non-archive dependency {dep.name!r}"
            )
        return self._install_from_url(dep.name, kind.url, kind.sha256)

    def install_asset_lib(
        self, dep_name: str, url: str, sha256_hint: str | None
    ) -> str:
        """Download and cache an asset library archive; return its SHA-256."""
        return self._install_from_url(dep_name, url, sha256_hint)

    def entry_path(self, dep: ResolvedDependency) -> Path:
        """Where the dependency's files are cached; it may not exist yet."""
        return self._dep_dir(dep)

    def _install_from_url(
        self, dep_name: str, url: str, sha256_hint: str | None
    ) -> str:
        hash_dir = self.base / url_hash(url)
        try:
            hash_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise GggError(f"failed to create cache directory {hash_dir}: {exc}") from exc
        try:
            tmp_dir = Path(tempfile.mkdtemp(prefix=_INSTALL_PREFIX, dir=hash_dir))
        except OSError as exc:
            raise GggError(f"failed to create temporary install directory: {exc}") from exc

        try:
            try:
                archive_sha = download_and_extract_url(dep_name, url, sha256_hint, tmp_dir)
            except GggError as exc:
                raise GggError(f"failed to download/extract {dep_name!r}: {exc}") from exc

            dest = hash_dir / archive_sha
            if dest.is_dir():
                # Another process installed the same version first.
                return archive_sha
            try:
                tmp_dir.rename(dest)
            except OSError as exc:
                raise GggError(
                    f"failed to move archive install into cache at {dest}: {exc}"
                ) from exc
            return archive_sha
        finally:
            _remove_tree(tmp_dir)

    def _dep_dir(self, dep: ResolvedDependency) -> Path:
        match dep.dep.kind():
            case GitKind(git=git):
                key = url_hash(normalize_url(git))
            case ArchiveKind(url=url):
                key = url_hash(url)
            case AssetLibKind():
                if dep.resolved_url is None:
                    raise GggError(
                        f"asset library dependency {dep.dep.name!r} has no resolved URL"
                    )
                key = url_hash(dep.resolved_url)
        return self.base / key / dep.sha