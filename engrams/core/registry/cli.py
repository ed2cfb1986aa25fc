from __future__ import annotations

"""
CLI rendering helpers for engram commands.

WHY THIS FILE EXISTS:
app.py only parses arguments and prints; these helpers turn manager results
into stable, testable output lines.
"""

import json
from typing import Any, Dict, List

from engrams.core.constants import INDEX_REF
from engrams.core.registry.discovery import DiscoveryIssue, Engram
from engrams.core.registry.lazy import BatchInitResult, InitResult, InitStatus
from engrams.core.registry.manager import AddResult, IndexListing, InstalledEngram
from engrams.core.repo_url import shorten_path

ICON_READY = "●"
ICON_INACTIVE = "○"


def add_lines(res: AddResult) -> List[str]:
    verb = "Added as submodule" if res.mode == "submodule" else "Cloned to"
    lines = [f"{verb}: {shorten_path(res.target_dir)}"]
    if res.index_updated:
        lines.append(f"Updated {INDEX_REF}")
    elif res.index_note:
        lines.append(res.index_note)
    return lines


def init_lines(res: InitResult) -> List[str]:
    if res.status == InitStatus.ALREADY_INITIALIZED:
        return [f"Engram '{res.name}' is already initialized"]
    lines = [f"Initialized: {res.name}"]
    if res.description:
        lines.append(f"  {res.description}")
    if res.commit:
        lines.append(f"  locked at {res.commit[:12]}")
    if res.warning:
        lines.append(f"  warning: {res.warning}")
    return lines


def batch_lines(res: BatchInitResult) -> List[str]:
    lines: List[str] = []
    if res.initialized:
        lines.append(f"Initialized {len(res.initialized)} engram(s):")
        lines.extend(f"  {n}" for n in res.initialized)
    if res.failed:
        lines.append("Failed to initialize:")
        lines.extend(f"  {n}: {err}" for n, err in res.failed)
    if res.skipped:
        lines.append(f"{len(res.skipped)} already initialized")
    lines.extend(f"warning: {w}" for w in res.warnings)
    if not lines:
        lines.append("Nothing to initialize")
    return lines


def index_lines(listing: IndexListing, *, ref: str = INDEX_REF) -> List[str]:
    """
    Render show-index output.
    Each entry: status icon, key and display name, then description and trigger summaries.
    """
    if not listing.exists:
        return ["No engram index found"]
    lines = [f"Engram Index ({ref})", ""]
    for item in listing.entries:
        status = ICON_READY if item.initialized else ICON_INACTIVE
        lines.append(f"{status} {item.key}: {item.entry.name}")
        if item.entry.description:
            lines.append(f"    {item.entry.description}")
        if item.disclosure:
            lines.append("    disclosure: " + " | ".join(item.disclosure))
        if item.activation:
            lines.append("    activation: " + " | ".join(item.activation))
    lines.append("")
    lines.append(f"{ICON_READY} initialized  {ICON_INACTIVE} not initialized")
    return lines


def index_json(listing: IndexListing) -> str:
    doc: Dict[str, Any] = {item.key: item.entry.to_document() for item in listing.entries}
    return json.dumps(doc, indent=2, ensure_ascii=False, sort_keys=True)


def modules_lines(engrams: List[Engram]) -> List[str]:
    """
    Columns: tool_name | name | state | directory
    """
    lines = ["tool_name | name | state | directory"]
    for e in engrams:
        state = "lazy" if e.is_lazy else "ready"
        lines.append(f"{e.tool_name} | {e.name} | {state} | {shorten_path(e.directory)}")
    return lines


def issue_lines(issues: List[DiscoveryIssue]) -> List[str]:
    return [f"warning: {shorten_path(i.path)}: {i.error}" for i in issues]


def installed_lines(items: List[InstalledEngram]) -> List[str]:
    if not items:
        return ["No engrams installed"]
    lines: List[str] = []
    for scope in ("global", "local"):
        scoped = [i for i in items if i.scope == scope]
        if not scoped:
            continue
        lines.append(f"{scope}:")
        for i in scoped:
            marker = ICON_READY if i.has_manifest else ICON_INACTIVE
            lines.append(f"  {marker} {i.name}  {shorten_path(i.directory)}")
    return lines
