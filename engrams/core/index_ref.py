from __future__ import annotations

"""
Engram index stored at a dedicated git reference.

WHY THIS FILE EXISTS:
Consumers need engram names, descriptions and triggers without checking out
every engram. The index is a JSON document (name -> IndexEntry) committed as
`index.json` in a commit that `refs/engrams/index` points at. It travels with
ordinary fetch/push, never appears in the working tree, and every write is a
new commit whose parent is the previous index state.

Writes use `git update-ref <ref> <new> <old>`, so a concurrent writer makes
the update fail with ConflictError instead of silently losing data.
"""

import json
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from engrams.core.constants import AUTO_FETCH_REFSPEC, INDEX_FILENAME, INDEX_REF
from engrams.core.errors import ConflictError, StateError, ValidationError
from engrams.core.git import GitRunner
from engrams.core.manifest import IndexEntry, parse_engram

EngramIndex = Dict[str, IndexEntry]

_COMMIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "engrams",
    "GIT_AUTHOR_EMAIL": "engrams@localhost",
    "GIT_COMMITTER_NAME": "engrams",
    "GIT_COMMITTER_EMAIL": "engrams@localhost",
}


@dataclass(frozen=True)
class TransportResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class IndexSnapshot:
    entries: Optional[EngramIndex]
    commit: Optional[str]


def parse_index_document(text: str, *, source: str = INDEX_REF) -> EngramIndex:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Corrupt engram index at {source}: {e}", source=source) from e
    if not isinstance(raw, dict):
        raise ValidationError(f"Corrupt engram index at {source}: top level is not an object", source=source)
    out: EngramIndex = {}
    for name, entry in raw.items():
        try:
            out[str(name)] = IndexEntry.model_validate(entry)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid index entry '{name}' at {source}: {e}"[:500], source=source, entry=name) from e
    return out


def serialize_index(index: EngramIndex) -> str:
    doc = {name: index[name].to_document() for name in sorted(index)}
    return json.dumps(doc, indent=2, ensure_ascii=False, sort_keys=True) + "\n"


def parse_engram_toml(path: str) -> IndexEntry:
    """Seed an index entry from an engram.toml on disk (url is filled in by the caller)."""
    return IndexEntry.from_manifest(parse_engram(path))


class IndexStore:
    def __init__(
        self,
        project_root: str,
        *,
        git: Optional[GitRunner] = None,
        ref: str = INDEX_REF,
        remote: str = "origin",
        logger: Any = None,
    ):
        self.project_root = os.path.abspath(project_root)
        self.git = git or GitRunner(logger=logger)
        self.ref = ref
        self.remote = remote
        self.logger = logger

    def _run(self, args, **kw):  # noqa: ANN001, ANN003
        return self.git.run(args, cwd=self.project_root, **kw)

    def _identity_env(self) -> Dict[str, str]:
        return {k: v for k, v in _COMMIT_IDENTITY.items() if not os.environ.get(k)}

    def _resolve(self) -> Optional[str]:
        res = self._run(["rev-parse", "--verify", "--quiet", f"{self.ref}^{{commit}}"])
        return res.out if res.ok and res.out else None

    def _has_remote(self) -> bool:
        return self._run(["remote", "get-url", self.remote]).ok

    # ---- public API ----
    def index_exists(self) -> bool:
        return self._resolve() is not None

    def read_snapshot(self) -> IndexSnapshot:
        commit = self._resolve()
        if commit is None:
            return IndexSnapshot(entries=None, commit=None)
        res = self._run(["cat-file", "blob", f"{commit}:{INDEX_FILENAME}"])
        if not res.ok:
            raise ValidationError(f"Engram index commit {commit[:12]} has no {INDEX_FILENAME}: {res.error_text}", ref=self.ref)
        return IndexSnapshot(entries=parse_index_document(res.stdout, source=self.ref), commit=commit)

    def read_index(self) -> Optional[EngramIndex]:
        return self.read_snapshot().entries

    def write_index(self, index: EngramIndex, *, expected_commit: Optional[str] = None, message: str = "Update engram index") -> str:
        """
        Commit `index` and move the ref. The ref must still point at
        `expected_commit` (or at whatever it pointed to when this call started,
        if not given); otherwise ConflictError and the caller re-reads.
        """
        base = expected_commit if expected_commit is not None else self._resolve()
        blob = self._run(["hash-object", "-w", "--stdin"], input_text=serialize_index(index))
        if not blob.ok:
            raise StateError(f"Could not store engram index blob: {blob.error_text}", project_root=self.project_root)
        tree = self._run(["mktree"], input_text=f"100644 blob {blob.out}\t{INDEX_FILENAME}\n")
        if not tree.ok:
            raise StateError(f"Could not store engram index tree: {tree.error_text}", project_root=self.project_root)
        args = ["commit-tree", tree.out, "-m", message]
        if base:
            args.extend(["-p", base])
        commit = self._run(args, env=self._identity_env())
        if not commit.ok:
            raise StateError(f"Could not commit engram index: {commit.error_text}", project_root=self.project_root)
        upd = self._run(["update-ref", "-m", message, self.ref, commit.out, base or ""])
        if not upd.ok:
            raise ConflictError(
                f"Engram index at {self.ref} changed concurrently; re-read and retry ({upd.error_text})",
                ref=self.ref,
                expected=base or "",
            )
        if self.logger is not None:
            self.logger.info(f"Wrote {self.ref} -> {commit.out[:12]} ({len(index)} entries)")
        return commit.out

    def update_index(self, mutate: Callable[[EngramIndex], Optional[EngramIndex]], *, attempts: int = 3, message: str = "Update engram index") -> EngramIndex:
        """Read-modify-write with compare-and-swap; retries after a lost race."""
        last: Optional[ConflictError] = None
        for _ in range(max(1, int(attempts))):
            snap = self.read_snapshot()
            current: EngramIndex = dict(snap.entries or {})
            updated = mutate(current)
            if updated is None:
                updated = current
            try:
                self.write_index(updated, expected_commit=snap.commit or "", message=message)
                return updated
            except ConflictError as e:
                last = e
                if self.logger is not None:
                    self.logger.warning(f"Index update raced with another writer; retrying ({e.user_message})")
        assert last is not None
        raise last

    def fetch_index(self) -> TransportResult:
        if not self._has_remote():
            return TransportResult(success=False, error=f"no remote '{self.remote}' configured")
        res = self._run(["fetch", "--quiet", self.remote, f"{self.ref}:{self.ref}"])
        if not res.ok:
            return TransportResult(success=False, error=res.error_text)
        return TransportResult(success=True)

    def push_index(self) -> TransportResult:
        if not self.index_exists():
            return TransportResult(success=False, error=f"{self.ref} does not exist")
        if not self._has_remote():
            return TransportResult(success=False, error=f"no remote '{self.remote}' configured")
        res = self._run(["push", "--quiet", self.remote, f"{self.ref}:{self.ref}"])
        if not res.ok:
            return TransportResult(success=False, error=res.error_text)
        return TransportResult(success=True)

    def configure_auto_fetch(self) -> bool:
        """Add the refs/engrams/* refspec to the remote's fetch list (once)."""
        if not self._has_remote():
            return False
        key = f"remote.{self.remote}.fetch"
        current = self._run(["config", "--get-all", key])
        if current.ok and AUTO_FETCH_REFSPEC in current.stdout.splitlines():
            return True
        return self._run(["config", "--add", key, AUTO_FETCH_REFSPEC]).ok
