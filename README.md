# ggg

A library for managing third-party dependencies of Godot projects. It resolves
git revisions to commit SHAs. It downloads archive and Godot Asset Library
packages and keeps verified snapshots of them in a shared on-disk cache. It
installs cached snapshots into a project without overwriting files you have
edited yourself. It also records what it installed in a lock file and a local
state file.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `ggg.models`: `Dependency`, `MapEntry`, `ResolvedDependency`, the kind
  classes `GitKind`, `ArchiveKind` and `AssetLibKind`, and `GggError`, the
  exception raised throughout the package.
- `ggg.resolver`: `resolve(dep)` turns a git dependency's `rev` into a full
  lowercase commit SHA.
  - A 40-character hex `rev` is accepted without contacting the remote.
  - Any other `rev` is looked up in the remote's `info/refs` advertisement, in
    this order: annotated tag, lightweight tag, branch, exact ref name.
  - Only `http://` and `https://` remotes can be queried.
  - `list_remote_refs`, `parse_ref_advertisement` and `select_ref` expose the
    individual steps.
- `ggg.lockfile`: `LockFile` and `LockEntry`, the committed `ggg.lock`.
- `ggg.state`: `LocalState`, `StateEntry` and `InstalledFile`. This is the
  uncommitted `.ggg.state`, which records every installed file with its
  SHA-256. `save` leaves the file read-only.
- `ggg.archive`: `download_and_extract` and `download_and_extract_url`.
  - URLs ending in `.tar.gz` or `.tgz` are read as gzipped tar; anything else
    as zip.
  - The archive's SHA-256 is checked against an optional expected value.
  - Every entry is scanned before extraction. Absolute paths, `..` components
    and escaping symlinks raise `UnsafeArchiveError`.
  - Extracted files are read-only, and a `.ggg_dep_info.toml` is written
    beside them.
- `ggg.cache`: `DependencyCache`, `normalize_url`, `url_hash` and
  `resolve_cache_root`.
  - Entries live at `<base>/<sha256(url)>/<version sha>/`.
  - `DependencyCache.from_env()` uses `<GGG_CACHE_DIR>/deps` when that
    environment variable is set, otherwise `deps` under the platform's user
    data directory.
- `ggg.fileset`: `collect_file_pairs` and `cache_file_map` list the files of a
  cache entry and where they go in the project.
  - `strip_components` is applied first. It defaults to 0 for git and archive
    dependencies and to 1 for asset library dependencies.
  - `map` entries are then matched against the stripped paths.
  - Also provides `GlobSet`, `strip_rel_path`, `path_key` and `hash_file`.
- `ggg.install`: `plan_install`, `execute_install`, `InstallPlan` and
  `Conflicts`.
- `ggg.cleanup`: `plan_cleanup`, `execute_cleanup` and `CleanupPlan`.

## Example

```python
from pathlib import Path

from ggg.cache import DependencyCache
from ggg.cleanup import execute_cleanup, plan_cleanup
from ggg.install import execute_install, plan_install
from ggg.lockfile import LockFile
from ggg.models import Dependency, ResolvedDependency
from ggg.state import LocalState

project = Path("my_game")
dep = Dependency.new_archive("tool", "https://example.com/tool.zip")
dep.strip_components = 1

cache = DependencyCache.from_env()
archive_sha = cache.install_archive(dep)          # download, verify, extract
resolved = ResolvedDependency(dep=dep, sha=archive_sha)

state_path = project / ".ggg.state"
state, present = LocalState.load_or_empty(state_path)

plan = plan_install(
    resolved, cache.entry_path(resolved), project, state, False, ["**/*.import"]
)
if plan.conflicts.is_empty():
    cleanup = plan_cleanup(state, [plan.entry], project, present, False)
    execute_install(plan, project)
    execute_cleanup(cleanup, project)
    state.upsert_entry(plan.entry)
    state.save(state_path)

lock = LockFile.load_or_empty(project / "ggg.lock")
lock.upsert(resolved)
lock.save(project / "ggg.lock")
```

For a git dependency, `ggg.resolver.resolve` gives the `ResolvedDependency`:

```python
from ggg.resolver import resolve

resolved = resolve(Dependency.new_git("gut", "https://example.com/gut.git", "v9.3.0"))
```

## Conflict handling

`plan_install` writes nothing to disk. An existing project file is left out of
the conflicts in these cases:

- its content already equals what would be installed;
- the state records it with its current hash, so it was installed and has not
  been edited since;
- its forward-slash path matches one of the `force_overwrite` glob patterns;
- `force` is true.

Glob patterns follow these rules:

- `*` and `?` also match `/`.
- A leading `**/` matches any number of leading directories.
- `[...]` classes and `{a,b}` alternates are supported.
- An invalid pattern raises `GggError`.

Any other existing file is listed in the plan's `conflicts`:

- `modified` holds files that are in the state but were edited.
- `unmanaged` holds files that are not in the state.

`execute_install` copies files into a staging directory inside the project.
It then renames each one into place, and installed files are writable.

`plan_cleanup` finds files recorded in the old state that no new entry
installs any more:

- Unchanged files go to `to_remove`.
- Edited files go to `modified`, unless `force` is true, in which case they
  are removed too.
- If the state file was absent, the plan is empty and a warning is printed to
  stderr.

`execute_cleanup` deletes the planned files, printing `Removed <path>` for
each one, and prunes directories that become empty.

## What this package does not do

- It has no command-line tool.
- It does not read a project configuration file. You build `Dependency`
  objects yourself.
- It does not query the Godot Asset Library. `install_asset_lib` needs the
  download URL to be given.
- It does not fetch git repositories into the cache. `DependencyCache` can
  compute a git dependency's entry path and check whether the entry exists,
  but only archive and asset library downloads are installed into it.