"""Downloading and extracting zip and tar.gz dependencies.

An archive is downloaded to a temporary file while its SHA-256 is computed,
checked against an optional expected hash, scanned for unsafe paths (the
whole archive is rejected on any hit) and then extracted as-is. Leading path
components are stripped later, at install time, so changing that setting
takes effect without downloading again.
"""

from __future__ import annotations

import hashlib
import os
import posixpath
import re
import shutil
import stat
import tarfile
import tempfile
import zipfile
from enum import Enum
from pathlib import Path
from typing import BinaryIO

import requests
import tomli_w

from ggg.models import ArchiveKind, Dependency, GggError

METADATA_FILE = ".ggg_dep_info.toml"

_CHUNK_SIZE = 65536
_TIMEOUT = 60
_DRIVE_RE = re.compile(r"^[A-Za-z]:")


class UnsafeArchiveError(GggError):
    """Raised when an archive holds an entry that would escape the target."""


class _Format(Enum):
    ZIP = "zip"
    TAR_GZ = "tar.gz"


def download_and_extract(dep: Dependency, dest_dir: str | os.PathLike[str]) -> str:
    """Download, verify and extract an archive dependency into ``dest_dir``.

    Returns the SHA-256 hex digest of the downloaded archive.
    """
    kind = dep.kind()
    if not isinstance(kind, ArchiveKind):
        raise GggError(f"download_and_extract called on non-archive dependency {dep.name!r}")
    return download_and_extract_url(dep.name, kind.url, kind.sha256, dest_dir)


def download_and_extract_url(
    dep_name: str,
    url: str,
    sha256_hint: str | None,
    dest_dir: str | os.PathLike[str],
) -> str:
    """Download ``url``, verify it, scan it and extract it into ``dest_dir``.

    URLs ending in ``.tar.gz`` or ``.tgz`` are read as gzipped tar archives;
    everything else as zip. Extracted files are made read-only and a metadata
    file is written next to them. Returns the archive's SHA-256 hex digest.
    """
    fmt = _Format.TAR_GZ if url.endswith((".tar.gz", ".tgz")) else _Format.ZIP
    dest = Path(dest_dir)

    archive_sha, archive_path = _download_to_temp(dep_name, url)
    try:
        if sha256_hint is not None and archive_sha != sha256_hint:
            raise GggError(
                f"SHA-256 mismatch for {dep_name!r}:\n"
                f"  expected: {sha256_hint}\n"
                f"  got:      {archive_sha}"
            )
        try:
            if fmt is _Format.TAR_GZ:
                _scan_tar_gz(archive_path)
            else:
                _scan_zip(archive_path)
        except UnsafeArchiveError as exc:
            raise UnsafeArchiveError(
                f"archive {dep_name!r} contains unsafe paths - refusing to extract: {exc}"
            ) from exc
        try:
            if fmt is _Format.TAR_GZ:
                _extract_tar_gz(archive_path, dest)
            else:
                _extract_zip(archive_path, dest)
        except (OSError, zipfile.BadZipFile, tarfile.TarError) as exc:
            raise GggError(f"failed to extract {dep_name!r}: {exc}") from exc
        _write_metadata(dep_name, url, archive_sha, dest)
    finally:
        archive_path.unlink(missing_ok=True)
    return archive_sha


def _download_to_temp(dep_name: str, url: str) -> tuple[str, Path]:
    """Stream ``url`` into a temporary file; return ``(sha256_hex, path)``."""
    hasher = hashlib.sha256()
    handle = tempfile.NamedTemporaryFile(prefix="ggg-archive-", delete=False)
    path = Path(handle.name)
    try:
        with handle, requests.get(url, stream=True, timeout=_TIMEOUT) as response:
            response.raise_for_status()
            for chunk in response.iter_content(_CHUNK_SIZE):
                hasher.update(chunk)
                handle.write(chunk)
    except (requests.RequestException, OSError) as exc:
        path.unlink(missing_ok=True)
        raise GggError(f"failed to download {dep_name!r} from {url!r}: {exc}") from exc
    return hasher.hexdigest(), path


def _unsafe_reason(name: str) -> str | None:
    """Why ``name`` is not a safe relative archive path, or None if it is."""
    if not name:
        return "empty entry name"
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_RE.match(normalized):
        return f"absolute path {name!r}"
    if ".." in normalized.split("/"):
        return f"path traversal in {name!r}"
    return None


def _check(name: str) -> None:
    reason = _unsafe_reason(name)
    if reason is not None:
        raise UnsafeArchiveError(reason)


def _open_zip(path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as exc:
        raise GggError(f"failed to open zip archive: {exc}") from exc


def _open_tar_gz(path: Path) -> tarfile.TarFile:
    try:
        return tarfile.open(path, "r:gz")
    except (tarfile.TarError, OSError) as exc:
        raise GggError(f"failed to open tar.gz archive: {exc}") from exc


def _scan_zip(path: Path) -> None:
    with _open_zip(path) as archive:
        for name in archive.namelist():
            _check(name)


def _scan_tar_gz(path: Path) -> None:
    with _open_tar_gz(path) as archive:
        try:
            members = archive.getmembers()
        except tarfile.TarError as exc:
            raise GggError(f"failed to read tar.gz archive: {exc}") from exc
        for member in members:
            _check(member.name)
            if member.issym():
                target = posixpath.normpath(
                    posixpath.join(posixpath.dirname(member.name), member.linkname)
                )
                if member.linkname.startswith("/") or target.split("/")[0] == "..":
                    raise UnsafeArchiveError(
                        f"symlink {member.name!r} points outside the archive"
                    )
            elif member.islnk():
                _check(member.linkname)


def _target_path(dest: Path, name: str) -> Path | None:
    parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".")]
    return dest.joinpath(*parts) if parts else None


def _write_readonly(target: Path, source: BinaryIO) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        os.chmod(target, stat.S_IMODE(os.stat(target).st_mode) | stat.S_IWUSR)
    with open(target, "wb") as out:
        shutil.copyfileobj(source, out)
    os.chmod(target, stat.S_IMODE(os.stat(target).st_mode) & ~0o222)


def _extract_zip(path: Path, dest: Path) -> None:
    with _open_zip(path) as archive:
        for info in archive.infolist():
            target = _target_path(dest, info.filename)
            if target is None:
                continue
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            with archive.open(info) as source:
                _write_readonly(target, source)


def _extract_tar_gz(path: Path, dest: Path) -> None:
    with _open_tar_gz(path) as archive:
        for member in archive.getmembers():
            target = _target_path(dest, member.name)
            if target is None:
                continue
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            if not (member.isfile() or member.issym() or member.islnk()):
                continue
            try:
                source = archive.extractfile(member)
            except KeyError:
                continue
            if source is None:
                continue
            with source:
                _write_readonly(target, source)


def _write_metadata(name: str, url: str, archive_sha: str, dest: Path) -> None:
    content = tomli_w.dumps({"name": name, "url": url, "archive_sha": archive_sha})
    path = dest / METADATA_FILE
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise GggError(f"failed to write {path}: {exc}") from exc