from __future__ import annotations

"""
Engram discovery (disk scan + index merge).

WHY THIS FILE EXISTS:
The host adapter needs one list of engrams: those materialized on disk under
the global and project roots, plus those only known through the index ref
(lazy). Discovery reads manifests and README text only; it never runs git
checkouts. Disk always wins over the index for the same name.
"""

import hashlib
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from engrams.core.config.paths import EngramsFsPaths
from engrams.core.constants import CONTENT_DIR, ENGRAMS_DIR, MANIFEST_FILENAME, README_FILENAME, TOOL_NAME_PREFIX
from engrams.core.errors import ValidationError
from engrams.core.index_ref import EngramIndex, IndexStore
from engrams.core.manifest import IndexEntry, TriggerConfig, WrapConfig, parse_engram
from engrams.core.registry.triggers import ContextTriggerMatcher, compile_engram_matcher
from engrams.core.repo_url import find_project_root


@dataclass(frozen=True)
class Engram:
    name: str
    directory: str
    description: str
    content: str = ""
    is_lazy: bool = False
    tool_name: str = ""
    version: str = ""
    url: Optional[str] = None
    wrap: Optional[WrapConfig] = None
    disclosure_triggers: Optional[TriggerConfig] = None
    activation_triggers: Optional[TriggerConfig] = None
    matcher: Optional[ContextTriggerMatcher] = field(default=None, compare=False, repr=False)
    manifest_path: Optional[str] = None

    def to_host_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tool_name": self.tool_name,
            "description": self.description,
            "directory": self.directory,
            "content": self.content,
            "is_lazy": self.is_lazy,
        }


@dataclass(frozen=True)
class DiscoveryIssue:
    path: str
    error: str


@dataclass
class DiscoveryReport:
    engrams: List[Engram] = field(default_factory=list)
    issues: List[DiscoveryIssue] = field(default_factory=list)


def get_default_engram_paths(cwd: str, fs: Optional[EngramsFsPaths] = None) -> List[str]:
    """Global root first, then the project root's .engrams/ (later paths win on name clashes)."""
    fs = fs or EngramsFsPaths.from_env()
    paths = [fs.global_dir]
    project_root = find_project_root(cwd)
    if project_root:
        paths.append(os.path.join(project_root, ENGRAMS_DIR))
    return paths


def find_engram_files(path: str) -> List[str]:
    out: List[str] = []
    if not os.path.isdir(path):
        return out
    for name in sorted(os.listdir(path)):
        if name.startswith("."):
            continue
        manifest = os.path.join(path, name, MANIFEST_FILENAME)
        if os.path.isfile(manifest):
            out.append(manifest)
    return out


_SLUG = re.compile(r"[^a-z0-9]+")


def generate_tool_name(name: str) -> str:
    slug = _SLUG.sub("_", str(name or "").lower()).strip("_")
    return TOOL_NAME_PREFIX + (slug or "engram")


def _path_suffix(directory: str) -> str:
    return hashlib.sha256(os.path.abspath(directory).encode("utf-8")).hexdigest()[:6]


def _assign_tool_names(engrams: List[Engram]) -> List[Engram]:
    """
    Unique tool names. While several engrams share a slug, every one of them
    gets a path-derived suffix, so a name never depends on which other engrams
    happen to sort before it.
    """
    counts: Dict[str, int] = {}
    for e in engrams:
        base = generate_tool_name(e.name)
        counts[base] = counts.get(base, 0) + 1
    out: List[Engram] = []
    for e in sorted(engrams, key=lambda x: (x.name, x.directory)):
        base = generate_tool_name(e.name)
        tool = base if counts[base] == 1 else f"{base}_{_path_suffix(e.directory)}"
        out.append(replace(e, tool_name=tool))
    return out


def _read_content(engram_dir: str) -> str:
    readme = os.path.join(engram_dir, README_FILENAME)
    if not os.path.isfile(readme):
        return ""
    with open(readme, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


class EngramDiscovery:
    def __init__(self, *, paths: Sequence[str], project_root: Optional[str] = None, index_store: Optional[IndexStore] = None, logger: Any = None):
        self.paths = [str(p) for p in paths]
        self.project_root = os.path.abspath(project_root) if project_root else None
        self.index_store = index_store
        self.logger = logger

    def _warn(self, msg: str) -> None:
        if self.logger is not None:
            self.logger.warning(msg)

    def _load(self, manifest_path: str) -> Engram:
        manifest = parse_engram(manifest_path)
        engram_dir = os.path.dirname(os.path.abspath(manifest_path))
        is_lazy = manifest.wrap is not None and not os.path.isdir(os.path.join(engram_dir, CONTENT_DIR))
        return Engram(
            name=manifest.name,
            directory=engram_dir,
            description=manifest.description,
            content=_read_content(engram_dir),
            is_lazy=is_lazy,
            version=manifest.version,
            wrap=manifest.wrap,
            disclosure_triggers=manifest.disclosure_triggers,
            activation_triggers=manifest.activation_triggers,
            matcher=compile_engram_matcher(manifest.name, manifest.disclosure_triggers, manifest.activation_triggers),
            manifest_path=manifest_path,
        )

    def scan_disk(self, report: DiscoveryReport) -> Dict[str, Engram]:
        by_name: Dict[str, Engram] = {}
        for root in self.paths:
            for manifest_path in find_engram_files(root):
                try:
                    e = self._load(manifest_path)
                except ValidationError as err:
                    report.issues.append(DiscoveryIssue(path=manifest_path, error=err.user_message))
                    self._warn(f"Skipping engram: {err.user_message}")
                    continue
                if e.name in by_name and self.logger is not None:
                    self.logger.debug(f"Engram '{e.name}' at {e.directory} overrides {by_name[e.name].directory}")
                by_name[e.name] = e
        return by_name

    def lazy_from_index(self, index: EngramIndex, present: Dict[str, Engram]) -> List[Engram]:
        out: List[Engram] = []
        if self.project_root is None:
            return out
        for key, entry in sorted(index.items()):
            if not entry.url:
                continue
            if key in present or entry.name in present:
                continue
            out.append(
                Engram(
                    name=entry.name,
                    directory=os.path.join(self.project_root, ENGRAMS_DIR, key),
                    description=entry.description,
                    content="",
                    is_lazy=True,
                    version=entry.version,
                    url=entry.url,
                    wrap=entry.wrap,
                    disclosure_triggers=entry.disclosure_triggers,
                    activation_triggers=entry.activation_triggers,
                    matcher=compile_engram_matcher(entry.name, entry.disclosure_triggers, entry.activation_triggers),
                )
            )
        return out

    def scan(self, *, include_lazy: bool = False) -> DiscoveryReport:
        report = DiscoveryReport()
        present = self.scan_disk(report)
        # Disk entries are keyed by display name; also key them by directory
        # name so index entries (keyed by directory name) dedupe correctly.
        keyed: Dict[str, Engram] = dict(present)
        for e in present.values():
            keyed.setdefault(os.path.basename(e.directory), e)
        engrams = list(present.values())
        if include_lazy and self.index_store is not None:
            try:
                index = self.index_store.read_index() or {}
            except ValidationError as err:
                report.issues.append(DiscoveryIssue(path=self.index_store.ref, error=err.user_message))
                self._warn(f"Ignoring engram index: {err.user_message}")
                index = {}
            engrams.extend(self.lazy_from_index(index, keyed))
        report.engrams = _assign_tool_names(engrams)
        return report


def discover_engrams(paths: Sequence[str], *, logger: Any = None) -> DiscoveryReport:
    """Engrams on disk plus one issue per manifest that could not be loaded."""
    return EngramDiscovery(paths=paths, logger=logger).scan()


def discover_engrams_with_lazy(
    paths: Sequence[str],
    project_root: str,
    *,
    index_store: Optional[IndexStore] = None,
    logger: Any = None,
) -> DiscoveryReport:
    store = index_store or IndexStore(project_root, logger=logger)
    return EngramDiscovery(paths=paths, project_root=project_root, index_store=store, logger=logger).scan(include_lazy=True)


def read_index_ref(project_root: str, *, index_store: Optional[IndexStore] = None) -> Optional[EngramIndex]:
    store = index_store or IndexStore(project_root)
    return store.read_index()


def get_engrams_from_index(project_root: str, *, index_store: Optional[IndexStore] = None) -> List[Tuple[str, IndexEntry]]:
    """Index entries that can be lazily materialized (those with a known url), sorted by key."""
    index = read_index_ref(project_root, index_store=index_store) or {}
    return [(key, entry) for key, entry in sorted(index.items()) if entry.url]
