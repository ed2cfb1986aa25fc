from __future__ import annotations

"""
EngramManager: add + lazy-init + index listing + discovery wiring.

WHY THIS FILE EXISTS:
This is the single public API for engram lifecycle operations used by the CLI
and the host adapter. It owns object construction (git runner, repository
cache, index store) from EngramsConfig and returns structured results for
presentation; it never prints.

The project root is always an explicit argument. Global operations work
without one; project operations raise StateError when it is missing.
"""

import os
import re
import shutil
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from engrams.core.config.loader import resolve_cache_dir
from engrams.core.config.models import EngramsConfig
from engrams.core.config.paths import EngramsFsPaths
from engrams.core.constants import ENGRAMS_DIR, MANIFEST_FILENAME
from engrams.core.errors import ConflictError, EngramError, RemoteError, StateError, ValidationError
from engrams.core.git import GitRunner
from engrams.core.index_ref import EngramIndex, IndexStore, TransportResult, parse_engram_toml
from engrams.core.manifest import IndexEntry
from engrams.core.registry.discovery import DiscoveryIssue, DiscoveryReport, Engram, discover_engrams, discover_engrams_with_lazy
from engrams.core.registry.lazy import BatchInitResult, EngramState, InitResult, LazyInitializer
from engrams.core.repo_cache import RepositoryCache
from engrams.core.repo_url import RepoRef, get_engram_name, get_supported_domains, parse_repo_url

_VALID_ENGRAM_NAME = re.compile(r"^[\w][\w.-]*$")


@dataclass(frozen=True)
class AddResult:
    name: str
    target_dir: str
    url: str
    mode: str
    used_cache: bool
    index_updated: bool = False
    index_note: Optional[str] = None


@dataclass(frozen=True)
class IndexListingEntry:
    key: str
    entry: IndexEntry
    initialized: bool
    disclosure: List[str] = field(default_factory=list)
    activation: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class IndexListing:
    exists: bool
    entries: List[IndexListingEntry] = field(default_factory=list)
    fetch_error: Optional[str] = None
    issues: List[DiscoveryIssue] = field(default_factory=list)


@dataclass(frozen=True)
class InstalledEngram:
    name: str
    directory: str
    scope: str
    has_manifest: bool


@dataclass(frozen=True)
class InitProjectResult:
    engrams_dir: str
    created: bool
    auto_fetch: bool
    fetched_index: bool


def resolve_git_dir(project_root: str) -> str:
    """Follow a `gitdir:` pointer file (worktrees, nested submodules) to the real git dir."""
    dot_git = os.path.join(project_root, ".git")
    if not os.path.isfile(dot_git):
        return dot_git
    with open(dot_git, "r", encoding="utf-8") as f:
        content = f.read().strip()
    m = re.match(r"^gitdir:\s*(.+)$", content)
    if m:
        return os.path.normpath(os.path.join(project_root, m.group(1).strip()))
    return dot_git


def _inside(path: str, root: str) -> bool:
    root = os.path.realpath(root)
    path = os.path.realpath(path)
    return path == root or path.startswith(root + os.sep)


class EngramManager:
    def __init__(
        self,
        *,
        project_root: Optional[str],
        fs: Optional[EngramsFsPaths] = None,
        config: Optional[EngramsConfig] = None,
        git: Optional[GitRunner] = None,
        cache: Optional[RepositoryCache] = None,
        index_store: Optional[IndexStore] = None,
        logger: Any = None,
    ):
        self.project_root = os.path.abspath(project_root) if project_root else None
        self.fs = fs or EngramsFsPaths.from_env()
        self.config = config or EngramsConfig()
        self.logger = logger
        self.git = git or GitRunner(
            timeout_seconds=self.config.git_timeout_seconds,
            allow_file_protocol=self.config.allow_file_protocol,
            logger=logger,
        )
        self.cache = cache or RepositoryCache(
            cache_dir=resolve_cache_dir(self.config, self.fs),
            git=self.git,
            lock_timeout_seconds=self.config.lock_timeout_seconds,
            logger=logger,
        )
        self.index_store = index_store
        if self.index_store is None and self.project_root is not None:
            self.index_store = IndexStore(
                self.project_root,
                git=self.git,
                ref=self.config.index_ref,
                remote=self.config.remote,
                logger=logger,
            )

    # ---- helpers ----
    def _info(self, msg: str) -> None:
        if self.logger is not None:
            self.logger.info(msg)

    def _warn(self, msg: str) -> None:
        if self.logger is not None:
            self.logger.warning(msg)

    def _require_project(self) -> str:
        if self.project_root is None:
            raise StateError("Not in a project directory (no .git or .engrams found).")
        return self.project_root

    def _require_index(self) -> IndexStore:
        self._require_project()
        assert self.index_store is not None
        return self.index_store

    @property
    def local_dir(self) -> Optional[str]:
        return os.path.join(self.project_root, ENGRAMS_DIR) if self.project_root else None

    def engram_paths(self) -> List[str]:
        paths = [self.fs.global_dir]
        if self.local_dir:
            paths.append(self.local_dir)
        return paths

    def lazy(self) -> LazyInitializer:
        root = self._require_project()
        return LazyInitializer(root, cache=self.cache, index_store=self._require_index(), logger=self.logger)

    # ---- add ----
    def add_module(
        self,
        repo: Union[str, RepoRef],
        *,
        name: Optional[str] = None,
        global_install: bool = False,
        clone: bool = False,
        force: bool = False,
        no_cache: bool = False,
    ) -> AddResult:
        parsed = parse_repo_url(repo) if isinstance(repo, str) else repo
        if parsed is None:
            raise ValidationError(
                f"Invalid repository format: {repo}. Use owner/repo, domain:owner/repo or a full URL "
                f"(domains: {', '.join(get_supported_domains())}).",
                repo=str(repo),
            )
        engram_name = name or get_engram_name(parsed.repo)
        if not _VALID_ENGRAM_NAME.match(engram_name):
            raise ValidationError(f"Invalid engram name: {engram_name!r}", name=engram_name)

        if global_install:
            target_dir = os.path.join(self.fs.global_dir, engram_name)
        else:
            root = self._require_project()
            target_dir = os.path.join(root, ENGRAMS_DIR, engram_name)
            if force:
                self._force_cleanup(target_dir)

        if os.path.exists(target_dir):
            raise ConflictError(f"Engram already exists at {target_dir}; use force to overwrite.", path=target_dir)
        os.makedirs(os.path.dirname(target_dir), exist_ok=True)

        used_cache = not no_cache
        self._info(f"Adding {parsed.slug} as {engram_name}{' (cache hit)' if used_cache and self.cache.is_cached(parsed.url) else ''}")

        if not clone and not global_install:
            root = self._require_project()
            rel = os.path.relpath(target_dir, root)
            if no_cache:
                args = ["submodule", "add", "--quiet"] + (["--force"] if force else []) + ["--", parsed.url, rel]
                res = self.git.run(args, cwd=root)
                if not res.ok:
                    raise RemoteError(f"git submodule add failed for {parsed.url}: {res.error_text}", url=parsed.url)
            else:
                self.cache.submodule_add_from_cache(parsed.url, rel, root, force=force)
            updated, note = self._update_index_after_add(engram_name, parsed.url)
            return AddResult(
                name=engram_name,
                target_dir=target_dir,
                url=parsed.url,
                mode="submodule",
                used_cache=used_cache,
                index_updated=updated,
                index_note=note,
            )

        if no_cache:
            res = self.git.run(["clone", "--quiet", parsed.url, target_dir])
            if not res.ok:
                shutil.rmtree(target_dir, ignore_errors=True)
                raise RemoteError(f"git clone failed for {parsed.url}: {res.error_text}", url=parsed.url)
        else:
            self.cache.clone_from_cache(parsed.url, target_dir)
        return AddResult(name=engram_name, target_dir=target_dir, url=parsed.url, mode="clone", used_cache=used_cache)

    def _force_cleanup(self, target_dir: str) -> None:
        root = self._require_project()
        rel = os.path.relpath(target_dir, root)
        if rel.startswith("..") or os.path.isabs(rel):
            raise ConflictError(f"Force cleanup refused: {target_dir} escapes project root {root}", path=target_dir)

        for args in (["submodule", "deinit", "-f", "--", rel], ["rm", "-f", "-q", "--", rel]):
            res = self.git.run(args, cwd=root)
            if not res.ok and "did not match any file" not in res.error_text:
                self._warn(f"git {args[0]} {args[1]} {rel}: {res.error_text}")

        git_dir = resolve_git_dir(root)
        modules_path = os.path.join(git_dir, "modules", rel)
        if not _inside(modules_path, git_dir):
            raise ConflictError(f"Force cleanup refused: {modules_path} escapes git dir {git_dir}", path=modules_path)
        if os.path.exists(modules_path):
            shutil.rmtree(modules_path)
        if os.path.lexists(target_dir):
            shutil.rmtree(target_dir)
        self._warn(f"Cleaned up existing engram state for {rel}")

    def _update_index_after_add(self, engram_name: str, url: str) -> tuple[bool, Optional[str]]:
        root = self._require_project()
        manifest_path = os.path.join(root, ENGRAMS_DIR, engram_name, MANIFEST_FILENAME)
        if not os.path.isfile(manifest_path):
            note = f"No {MANIFEST_FILENAME} in {engram_name}; index not updated"
            self._info(note)
            return False, note
        try:
            entry = parse_engram_toml(manifest_path).model_copy(update={"url": url})
        except ValidationError as e:
            note = f"Index not updated: {e.user_message}"
            self._warn(note)
            return False, note

        def _mutate(index: EngramIndex) -> EngramIndex:
            index[engram_name] = entry
            return index

        self._require_index().update_index(_mutate, message=f"Add {engram_name}")
        self._info(f"Updated {self.config.index_ref} with {engram_name}")
        return True, None

    # ---- lazy ----
    def initialize_lazy_module(self, name: str, *, fetch_first: bool = False, force: bool = False) -> InitResult:
        return self.lazy().initialize(name, fetch_first=fetch_first, force=force)

    def initialize_all_lazy_modules(self, *, fetch_first: bool = False) -> BatchInitResult:
        return self.lazy().initialize_all(fetch_first=fetch_first)

    # ---- index ----
    def list_index(self, *, fetch_first: bool = False) -> IndexListing:
        store = self._require_index()
        fetch_error = None
        if fetch_first:
            res = store.fetch_index()
            if not res.success:
                fetch_error = res.error
                self._warn(f"Could not fetch engram index: {res.error}")
        index = store.read_index()
        if index is None:
            return IndexListing(exists=False, fetch_error=fetch_error)
        lazy = self.lazy()
        entries: List[IndexListingEntry] = []
        issues: List[DiscoveryIssue] = []
        for key in sorted(index):
            entry = index[key]
            try:
                initialized = lazy.state(key, index=index) == EngramState.INITIALIZED
            except EngramError as e:
                initialized = False
                issues.append(DiscoveryIssue(path=lazy.engram_dir(key), error=e.user_message))
                self._warn(f"Could not determine state of {key}: {e.user_message}")
            entries.append(
                IndexListingEntry(
                    key=key,
                    entry=entry,
                    initialized=initialized,
                    disclosure=entry.disclosure_triggers.summary_parts() if entry.disclosure_triggers else [],
                    activation=entry.activation_triggers.summary_parts() if entry.activation_triggers else [],
                )
            )
        return IndexListing(exists=True, entries=entries, fetch_error=fetch_error, issues=issues)

    def push_index(self) -> TransportResult:
        return self._require_index().push_index()

    def fetch_index(self) -> TransportResult:
        return self._require_index().fetch_index()

    # ---- discovery ----
    def list_modules(self) -> DiscoveryReport:
        """Discovered engrams plus the manifests or index that could not be read."""
        if self.project_root is None:
            return discover_engrams(self.engram_paths(), logger=self.logger)
        return discover_engrams_with_lazy(self.engram_paths(), self.project_root, index_store=self.index_store, logger=self.logger)

    def find_module(self, name: str) -> Engram:
        for e in self.list_modules().engrams:
            if name in (e.name, e.tool_name, os.path.basename(e.directory)):
                return e
        raise StateError(f"Engram '{name}' not found", name=name)

    def list_installed(self) -> List[InstalledEngram]:
        out: List[InstalledEngram] = []
        scopes = [("global", self.fs.global_dir)]
        if self.local_dir:
            scopes.append(("local", self.local_dir))
        for scope, base in scopes:
            if not os.path.isdir(base):
                continue
            for entry in sorted(os.listdir(base)):
                directory = os.path.join(base, entry)
                if entry.startswith(".") or not os.path.isdir(directory):
                    continue
                out.append(
                    InstalledEngram(
                        name=entry,
                        directory=directory,
                        scope=scope,
                        has_manifest=os.path.isfile(os.path.join(directory, MANIFEST_FILENAME)),
                    )
                )
        return out

    # ---- project ----
    def init_project(self) -> InitProjectResult:
        store = self._require_index()
        engrams_dir = self.local_dir
        assert engrams_dir is not None
        created = not os.path.isdir(engrams_dir)
        os.makedirs(engrams_dir, exist_ok=True)
        if created:
            self._info(f"Created {engrams_dir}")
        auto_fetch = store.configure_auto_fetch()
        fetched = False
        if auto_fetch and not store.index_exists():
            res = store.fetch_index()
            fetched = res.success
            if not res.success:
                self._info(f"No remote engram index fetched: {res.error}")
        return InitProjectResult(engrams_dir=engrams_dir, created=created, auto_fetch=auto_fetch, fetched_index=fetched)
