from __future__ import annotations

"""
Lazy materialization of project engrams.

WHY THIS FILE EXISTS:
A project can know about many engrams through the index without having any
of them checked out. This module owns the per-engram state machine:

    ABSENT       no directory and no index entry
    INDEXED      index entry (or wrap manifest) present, content not on disk
    INITIALIZED  submodule checked out, or wrap content/ sparse-checked out

INDEXED -> INITIALIZED goes through the repository cache: `git submodule
update --init --reference <mirror>` for plain engrams, and a sparse partial
checkout for wrap engrams (locked commit, else wrap.ref, else the default
branch). Successful wrap checkouts record the resolved commit as wrap.locked.
There is no way back to INDEXED here.
"""

import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from engrams.core.constants import CONTENT_DIR, ENGRAMS_DIR, MANIFEST_FILENAME
from engrams.core.errors import EngramError, StateError
from engrams.core.index_ref import EngramIndex, IndexStore
from engrams.core.manifest import EngramManifest, IndexEntry, IndexWrapConfig, parse_engram
from engrams.core.repo_cache import RepositoryCache


class EngramState(str, Enum):
    ABSENT = "absent"
    INDEXED = "indexed"
    INITIALIZED = "initialized"


class InitStatus(str, Enum):
    INITIALIZED = "initialized"
    ALREADY_INITIALIZED = "already_initialized"


@dataclass(frozen=True)
class InitResult:
    name: str
    status: InitStatus
    kind: str = "submodule"
    commit: Optional[str] = None
    description: str = ""
    warning: Optional[str] = None


@dataclass
class BatchInitResult:
    initialized: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def is_submodule_initialized(project_root: str, relative_path: str) -> bool:
    """A checked-out submodule (or clone) has a .git file or directory at its root."""
    return os.path.exists(os.path.join(project_root, relative_path, ".git"))


class LazyInitializer:
    def __init__(
        self,
        project_root: str,
        *,
        cache: RepositoryCache,
        index_store: IndexStore,
        logger: Any = None,
    ):
        self.project_root = os.path.abspath(project_root)
        self.cache = cache
        self.index_store = index_store
        self.logger = logger

    # ---- helpers ----
    def _info(self, msg: str) -> None:
        if self.logger is not None:
            self.logger.info(msg)

    def _warn(self, msg: str) -> None:
        if self.logger is not None:
            self.logger.warning(msg)

    @staticmethod
    def relative_path(name: str) -> str:
        return f"{ENGRAMS_DIR}/{name}"

    def engram_dir(self, name: str) -> str:
        return os.path.join(self.project_root, ENGRAMS_DIR, name)

    def _wrap_manifest(self, name: str) -> Optional[EngramManifest]:
        path = os.path.join(self.engram_dir(name), MANIFEST_FILENAME)
        if not os.path.isfile(path):
            return None
        manifest = parse_engram(path)
        return manifest if manifest.wrap is not None else None

    def _wrap_names_on_disk(self) -> List[str]:
        root = os.path.join(self.project_root, ENGRAMS_DIR)
        if not os.path.isdir(root):
            return []
        out: List[str] = []
        for name in sorted(os.listdir(root)):
            if name.startswith("."):
                continue
            path = os.path.join(root, name, MANIFEST_FILENAME)
            if not os.path.isfile(path):
                continue
            try:
                if parse_engram(path).wrap is not None:
                    out.append(name)
            except EngramError as e:
                self._warn(f"Skipping {name}: {e.user_message}")
        return out

    def _fetch(self) -> Optional[str]:
        res = self.index_store.fetch_index()
        if not res.success:
            self._warn(f"Could not fetch engram index: {res.error}")
            return res.error
        return None

    # ---- state ----
    def state(self, name: str, *, index: Optional[EngramIndex] = None) -> EngramState:
        if self._wrap_manifest(name) is not None:
            if os.path.isdir(os.path.join(self.engram_dir(name), CONTENT_DIR)):
                return EngramState.INITIALIZED
            return EngramState.INDEXED
        directory = self.engram_dir(name)
        if is_submodule_initialized(self.project_root, self.relative_path(name)) or os.path.isfile(os.path.join(directory, MANIFEST_FILENAME)):
            return EngramState.INITIALIZED
        if index is None:
            index = self.index_store.read_index() or {}
        return EngramState.INDEXED if name in index else EngramState.ABSENT

    # ---- transitions ----
    def _init_wrap(self, name: str, manifest: EngramManifest, *, force: bool) -> InitResult:
        wrap = manifest.wrap
        assert wrap is not None
        content_dir = os.path.join(self.engram_dir(name), CONTENT_DIR)
        if os.path.isdir(content_dir):
            if not force:
                return InitResult(name=name, status=InitStatus.ALREADY_INITIALIZED, kind="wrap", description=manifest.description)
            self._warn(f"Removing existing content for {name} (forced re-initialization)")
            shutil.rmtree(content_dir)

        locked = None
        if not force:
            entry = (self.index_store.read_index() or {}).get(name)
            locked = entry.locked if entry is not None else None
        ref = locked or wrap.ref
        self._info(f"Initializing wrapped engram {name} from {wrap.remote} (ref={ref or 'default branch'})")
        commit = self.cache.clone_with_sparse_checkout(wrap.remote, content_dir, ref=ref, sparse=list(wrap.sparse))

        warning = None
        if commit != locked:
            try:
                self._record_lock(name, manifest, commit)
            except EngramError as e:
                warning = f"Content checked out, but the lock for {name} was not recorded: {e.user_message}"
                self._warn(warning)
        return InitResult(name=name, status=InitStatus.INITIALIZED, kind="wrap", commit=commit, description=manifest.description, warning=warning)

    def _record_lock(self, name: str, manifest: EngramManifest, commit: str) -> None:
        wrap = manifest.wrap
        assert wrap is not None

        def _mutate(index: EngramIndex) -> EngramIndex:
            entry = index.get(name) or IndexEntry.from_manifest(manifest, url=wrap.remote)
            base = entry.wrap or IndexWrapConfig.model_validate(wrap.model_dump())
            index[name] = entry.model_copy(update={"wrap": base.model_copy(update={"locked": commit}), "url": entry.url or wrap.remote})
            return index

        self.index_store.update_index(_mutate, message=f"Lock {name} at {commit[:12]}")
        self._info(f"Locked {name} at {commit[:12]}")

    def _init_submodule(self, name: str, index: EngramIndex, *, force: bool) -> InitResult:
        entry = index.get(name)
        if entry is None:
            if os.path.isdir(self.engram_dir(name)):
                raise StateError(
                    f"Engram '{name}' has no [wrap] config and no index entry; add a [wrap] section to {MANIFEST_FILENAME} or sync the index",
                    name=name,
                )
            available = ", ".join(sorted(index)) or "none"
            raise StateError(f"Engram '{name}' not found in index (available: {available})", name=name)
        rel = self.relative_path(name)
        if is_submodule_initialized(self.project_root, rel) and not force:
            return InitResult(name=name, status=InitStatus.ALREADY_INITIALIZED, description=entry.description)
        self._info(f"Initializing submodule {rel}")
        self.cache.submodule_init_from_cache(entry.url, rel, self.project_root, force=force)
        return InitResult(name=name, status=InitStatus.INITIALIZED, description=entry.description)

    def initialize(self, name: str, *, fetch_first: bool = False, force: bool = False) -> InitResult:
        """Materialize one engram. Errors propagate to the caller."""
        manifest = self._wrap_manifest(name)
        if manifest is not None:
            return self._init_wrap(name, manifest, force=force)
        if fetch_first:
            self._fetch()
        return self._init_submodule(name, self.index_store.read_index() or {}, force=force)

    def initialize_all(self, *, fetch_first: bool = False) -> BatchInitResult:
        """
        Materialize every known engram, one at a time. A failing engram is
        recorded and the batch moves on; nothing here aborts early.
        """
        result = BatchInitResult()
        if fetch_first:
            err = self._fetch()
            if err:
                result.warnings.append(f"Could not fetch engram index: {err}")
        index = self.index_store.read_index() or {}
        for name in sorted(set(index) | set(self._wrap_names_on_disk())):
            try:
                if self.state(name, index=index) == EngramState.INITIALIZED:
                    result.skipped.append(name)
                    continue
                manifest = self._wrap_manifest(name)
                if manifest is not None:
                    res = self._init_wrap(name, manifest, force=False)
                else:
                    res = self._init_submodule(name, index, force=False)
            except (EngramError, OSError) as e:
                msg = e.user_message if isinstance(e, EngramError) else str(e)
                result.failed.append((name, msg))
                self._warn(f"Failed to initialize {name}: {msg}")
                continue
            if res.status == InitStatus.ALREADY_INITIALIZED:
                result.skipped.append(name)
            else:
                result.initialized.append(name)
                if res.warning:
                    result.warnings.append(res.warning)
        self._info(f"Initialized {len(result.initialized)} engram(s), {len(result.skipped)} already present, {len(result.failed)} failed")
        return result
