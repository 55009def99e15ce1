"""Enumerating the files of a cached dependency and mapping them into a project.

Archive and asset library caches may wrap their content in leading
directories that are stripped here, at install time. A dependency's ``map``
entries are then matched against the stripped paths to pick subtrees and
choose where they land in the project.
"""

from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path, PurePath

from ggg.models import (
    ArchiveKind,
    AssetLibKind,
    GggError,
    GitKind,
    ResolvedDependency,
)

METADATA_FILE = ".ggg_dep_info.toml"

_HASH_CHUNK = 65536


def _parse_class(pattern: str, start: int) -> tuple[str, int]:
    """Translate the ``[...]`` class at ``start``; return ``(regex, next index)``."""
    i = start + 1
    negate = False
    if i < len(pattern) and pattern[i] in "!^":
        negate = True
        i += 1
    items: list[str] = []
    first = True
    while True:
        if i >= len(pattern):
            raise GggError(f"invalid glob pattern {pattern!r}: unclosed character class")
        char = pattern[i]
        if char == "]" and not first:
            i += 1
            break
        first = False
        if i + 2 < len(pattern) and pattern[i + 1] == "-" and pattern[i + 2] != "]":
            low, high = char, pattern[i + 2]
            if low > high:
                raise GggError(
                    f"invalid glob pattern {pattern!r}: invalid range {low}-{high}"
                )
            items.append(f"{re.escape(low)}-{re.escape(high)}")
            i += 3
        else:
            items.append(re.escape(char))
            i += 1
    body = "".join(items)
    return (f"[^{body}]" if negate else f"[{body}]"), i


def _translate(pattern: str) -> str:
    """Translate a glob into a regular expression.

    ``*`` and ``?`` also match ``/``; ``**/`` at the start matches any number
    of leading directories, ``/**`` at the end everything below, and
    ``/**/`` in the middle one or more separators with anything between.
    """
    if pattern == "**":
        return ".*"
    out: list[str] = []
    in_alternates = False
    i = 0
    if pattern.startswith("**/"):
        out.append("(?:.*/)?")
        i = 3
    while i < len(pattern):
        char = pattern[i]
        if char == "/":
            if pattern.startswith("/**/", i):
                out.append("(?:/|/.*/)")
                i += 4
                continue
            if pattern[i:] == "/**":
                out.append("/.*")
                i += 3
                continue
            out.append("/")
            i += 1
        elif char == "*":
            while i < len(pattern) and pattern[i] == "*":
                i += 1
            out.append(".*")
        elif char == "?":
            out.append(".")
            i += 1
        elif char == "[":
            regex, i = _parse_class(pattern, i)
            out.append(regex)
        elif char == "{":
            if in_alternates:
                raise GggError(f"invalid glob pattern {pattern!r}: nested alternates")
            in_alternates = True
            out.append("(?:")
            i += 1
        elif char == "}":
            if not in_alternates:
                raise GggError(f"invalid glob pattern {pattern!r}: unopened alternates")
            in_alternates = False
            out.append(")")
            i += 1
        elif char == "," and in_alternates:
            out.append("|")
            i += 1
        elif char == "\\":
            if i + 1 >= len(pattern):
                raise GggError(f"invalid glob pattern {pattern!r}: dangling escape")
            out.append(re.escape(pattern[i + 1]))
            i += 2
        else:
            out.append(re.escape(char))
            i += 1
    if in_alternates:
        raise GggError(f"invalid glob pattern {pattern!r}: unclosed alternates")
    return "".join(out)


class GlobSet:
    """A set of glob patterns matched against forward-slash relative paths.

    An empty set matches nothing. Invalid patterns raise :class:`GggError`.
    """

    def __init__(self, patterns) -> None:
        self.patterns = list(patterns)
        self._regexes = [
            re.compile(_translate(p), re.DOTALL) for p in self.patterns
        ]

    def is_match(self, path) -> bool:
        """True if any pattern matches the whole of ``path``."""
        text = os.fspath(path)
        return any(regex.fullmatch(text) for regex in self._regexes)


def strip_rel_path(path, n: int) -> Path | None:
    """Strip ``n`` leading components from ``path``.

    Returns None when the path has ``n`` or fewer components.
    """
    path = Path(path)
    if n == 0:
        return path
    parts = path.parts
    if len(parts) <= n:
        return None
    return Path(*parts[n:])


def path_key(rel) -> str:
    """A relative path as a forward-slash string of its normal components."""
    pure = PurePath(rel)
    return "/".join(
        part for part in pure.parts if part not in (pure.anchor, ".", "..") and part
    )


def hash_file(path) -> str:
    """Lowercase hex SHA-256 of the file's contents."""
    hasher = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise GggError(f"failed to read {path}: {exc}") from exc
    return hasher.hexdigest()


def _walk(directory: Path, rel: Path):
    """Yield ``(absolute, relative)`` for every file below ``directory``."""
    try:
        children = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        raise GggError(f"failed to read directory {directory}: {exc}") from exc
    for child in children:
        if child.name == METADATA_FILE:
            continue
        child_rel = rel / child.name
        if child.is_dir():
            yield from _walk(child, child_rel)
        elif child.is_file():
            yield child, child_rel


def _strip_count(dep: ResolvedDependency) -> int:
    match dep.dep.kind():
        case ArchiveKind(strip_components=strip):
            return strip
        case GitKind():
            return dep.dep.strip_components or 0
        case AssetLibKind():
            # Asset library archives wrap their content in a root folder.
            strip = dep.dep.strip_components
            return 1 if strip is None else strip


def collect_file_pairs(dep: ResolvedDependency, cache_dir) -> list[tuple[Path, Path]]:
    """List ``(cache file, project-relative destination)`` pairs to install.

    Leading components are stripped first; ``map`` entries are then matched
    against the stripped paths. A map entry that matches nothing is an error.
    """
    n_strip = _strip_count(dep)
    try:
        raw = list(_walk(Path(cache_dir), Path()))
    except GggError as exc:
        raise GggError(f"failed to enumerate cache for {dep.dep.name!r}: {exc}") from exc

    stripped = [
        (abs_path, virtual)
        for abs_path, rel in raw
        if (virtual := strip_rel_path(rel, n_strip)) is not None
    ]

    if dep.dep.map is None:
        return stripped

    pairs: list[tuple[Path, Path]] = []
    for entry in dep.dep.map:
        source = Path(entry.from_path)
        target = Path(entry.to) if entry.to is not None else source
        matched = False
        for abs_path, virtual in stripped:
            if virtual == source:
                matched = True
                pairs.append((abs_path, target))
            elif virtual.is_relative_to(source):
                matched = True
                pairs.append((abs_path, target / virtual.relative_to(source)))
        if not matched:
            raise GggError(
                f"dependency {dep.dep.name!r}: map entry `from = {entry.from_path!r}` "
                "does not exist in the cached tree"
            )
    return pairs


def cache_file_map(dep: ResolvedDependency, cache_dir) -> dict[str, Path]:
    """Map each project-relative path key to the cache file it comes from."""
    return {
        path_key(project_path): cache_path
        for cache_path, project_path in collect_file_pairs(dep, cache_dir)
    }