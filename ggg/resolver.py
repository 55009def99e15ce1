"""Resolving a git revision (branch, tag or SHA) to a full commit SHA.

Full 40-character SHAs are accepted without contacting the remote. Branches
and tags are looked up in the ref advertisement served over HTTP(S).
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass

import requests

from ggg.models import GggError, GitKind, ResolvedDependency, Dependency

_SHA_RE = re.compile(r"[0-9a-fA-F]{40}")
_DUMB_LINE_RE = re.compile(rb"^[0-9a-f]{40}\t")
_PEELED_SUFFIX = "^{}"
_TIMEOUT = 30


@dataclass
class RemoteRef:
    """A ref advertised by a remote.

    ``object`` is the SHA the ref points at. For annotated tags ``peeled``
    holds the SHA of the commit the tag refers to.
    """

    name: str
    object: str
    peeled: str | None = None


def looks_like_sha(s: str) -> bool:
    """True if ``s`` is exactly 40 hexadecimal characters."""
    return _SHA_RE.fullmatch(s) is not None


def _pkt_payloads(data: bytes):
    pos = 0
    while pos < len(data):
        head = data[pos:pos + 4]
        if len(head) < 4:
            raise GggError("truncated pkt-line header in ref advertisement")
        try:
            length = int(head, 16)
        except ValueError as exc:
            raise GggError(f"invalid pkt-line length {head!r}") from exc
        if length < 4:
            pos += 4
            continue
        if pos + length > len(data):
            raise GggError("truncated pkt-line in ref advertisement")
        yield data[pos + 4:pos + length]
        pos += length


def _smart_pairs(data: bytes):
    for payload in _pkt_payloads(data):
        line = payload.decode("utf-8", errors="replace").rstrip("\n")
        if not line or line.startswith("#"):
            continue
        sha, _, name = line.split("\0", 1)[0].partition(" ")
        yield sha, name


def _dumb_pairs(data: bytes):
    for raw in data.splitlines():
        if not raw.strip():
            continue
        sha, _, name = raw.decode("utf-8", errors="replace").partition("\t")
        yield sha, name.strip()


def parse_ref_advertisement(data: bytes) -> list[RemoteRef]:
    """Parse a smart (pkt-line) or dumb ``info/refs`` response into refs."""
    pairs = _dumb_pairs(data) if _DUMB_LINE_RE.match(data) else _smart_pairs(data)
    refs: list[RemoteRef] = []
    by_name: dict[str, RemoteRef] = {}
    for sha, name in pairs:
        if not looks_like_sha(sha) or not name:
            raise GggError(f"malformed ref line: {sha!r} {name!r}")
        if name == "capabilities" + _PEELED_SUFFIX:
            continue
        sha = sha.lower()
        if name.endswith(_PEELED_SUFFIX):
            target = by_name.get(name[: -len(_PEELED_SUFFIX)])
            if target is not None:
                target.peeled = sha
            continue
        ref = RemoteRef(name=name, object=sha)
        refs.append(ref)
        by_name[name] = ref
    return refs


def list_remote_refs(url: str) -> list[RemoteRef]:
    """Fetch and parse the refs advertised by the HTTP(S) git remote at ``url``."""
    if not url.lower().startswith(("http://", "https://")):
        raise GggError(f"unsupported git URL {url!r}: only http(s) remotes can be queried")
    endpoint = url.rstrip("/") + "/info/refs"
    try:
        response = requests.get(
            endpoint,
            params={"service": "git-upload-pack"},
            headers={"User-Agent": "git/ggg"},
            timeout=_TIMEOUT,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        raise GggError(f"failed to list refs from {url!r}: {exc}") from exc
    return parse_ref_advertisement(response.content)


def select_ref(refs: list[RemoteRef], rev: str) -> str | None:
    """Pick the commit SHA for ``rev`` from advertised refs, or None.

    Priority: annotated tag, lightweight tag, branch, then an exact ref name.
    """
    tag_ref = f"refs/tags/{rev}"
    head_ref = f"refs/heads/{rev}"
    for ref in refs:
        if ref.peeled is not None and ref.name == tag_ref:
            return ref.peeled
    for candidate in (tag_ref, head_ref, rev):
        for ref in refs:
            if ref.peeled is None and ref.name == candidate:
                return ref.object
    return None


def _resolve_remote(url: str, rev: str) -> str:
    sha = select_ref(list_remote_refs(url), rev)
    if sha is None:
        raise GggError(f"ref {rev!r} not found in {url}")
    return sha


def resolve(dep: Dependency) -> ResolvedDependency:
    """Resolve a git dependency's revision to a full lowercase commit SHA."""
    kind = dep.kind()
    if not isinstance(kind, GitKind):
        raise GggError(f"dependency {dep.name!r} is not a git dependency")
    if not dep.rev:
        raise GggError(f"git dependency {dep.name!r} has no `rev`")
    rev = dep.rev
    if looks_like_sha(rev):
        sha = rev.lower()
    else:
        try:
            sha = _resolve_remote(kind.git, rev)
        except GggError as exc:
            raise GggError(f"failed to resolve dependency {dep.name!r}: {exc}") from exc
    return ResolvedDependency(dep=copy.deepcopy(dep), sha=sha)