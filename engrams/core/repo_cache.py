from __future__ import annotations

"""
Bare-mirror repository cache.

WHY THIS FILE EXISTS:
Many projects install the same engram repositories. Each remote is mirrored
once under the user cache directory (one bare mirror per normalized URL) and
every submodule add, clone and sparse checkout borrows objects from that mirror
with `--reference` instead of downloading history again.

Concurrency: mirror creation/fetch is serialized per URL by an exclusive file
lock next to the mirror directory. New mirrors are cloned into a temporary
directory and renamed into place, so an interrupted run never leaves a
half-written mirror behind.
"""

import os
import re
import shutil
import uuid
from typing import Any, List, Optional
from urllib.parse import urlsplit

from filelock import FileLock, Timeout

from engrams.core.errors import CacheError, ConflictError, RemoteError, ValidationError
from engrams.core.git import GitRunner

_SCP_LIKE = re.compile(r"^(?:[\w.+-]+@)?(?P<host>[\w.-]+):(?P<path>(?!//).+)$")
_SAFE_SEGMENT = re.compile(r"[^\w.@+-]")


def normalize_url(url: str) -> str:
    """
    Canonical cache key "host/path": scheme, credentials and port separators
    dropped, host lowercased, duplicate slashes and the .git suffix removed.
    Local paths map to "file/<absolute path>".
    """
    raw = str(url or "").strip()
    if not raw:
        raise ValidationError("Repository URL is empty.")

    if "://" in raw:
        parts = urlsplit(raw)
        if parts.scheme == "file":
            host, path = "file", os.path.abspath(parts.path or "/")
        else:
            host = (parts.hostname or "").lower()
            if parts.port:
                host = f"{host}_{parts.port}"
            path = parts.path
    elif os.path.isabs(raw) or raw.startswith("."):
        host, path = "file", os.path.abspath(raw)
    else:
        m = _SCP_LIKE.match(raw)
        if m is None:
            raise ValidationError(f"Unrecognised repository URL: {raw}", url=raw)
        host, path = m.group("host").lower(), m.group("path")

    segments = [s for s in path.replace("\\", "/").split("/") if s]
    if segments and segments[-1].endswith(".git"):
        segments[-1] = segments[-1][: -len(".git")]
    segments = [s for s in segments if s]
    if not host or not segments or any(s in (".", "..") for s in segments):
        raise ValidationError(f"Unrecognised repository URL: {raw}", url=raw)
    return "/".join([host] + [_SAFE_SEGMENT.sub("_", s) for s in segments])


class RepositoryCache:
    def __init__(
        self,
        *,
        cache_dir: str,
        git: Optional[GitRunner] = None,
        lock_timeout_seconds: float = 120.0,
        logger: Any = None,
    ):
        self.cache_dir = os.path.abspath(cache_dir)
        self.git = git or GitRunner(logger=logger)
        self.lock_timeout_seconds = float(lock_timeout_seconds)
        self.logger = logger

    # ---- helpers ----
    def _info(self, msg: str) -> None:
        if self.logger is not None:
            self.logger.info(msg)

    def mirror_path(self, url: str) -> str:
        key = normalize_url(url)
        return os.path.join(self.cache_dir, *key.split("/")) + ".git"

    def _lock(self, url: str) -> FileLock:
        mirror = self.mirror_path(url)
        os.makedirs(os.path.dirname(mirror), exist_ok=True)
        return FileLock(mirror + ".lock", timeout=self.lock_timeout_seconds)

    def _create_mirror(self, url: str, mirror: str) -> None:
        tmp = f"{mirror}.tmp-{uuid.uuid4().hex[:8]}"
        res = self.git.run(["clone", "--mirror", "--quiet", url, tmp])
        if not res.ok:
            shutil.rmtree(tmp, ignore_errors=True)
            raise CacheError(f"Could not create cache mirror for {url}: {res.error_text}", stage="mirror", url=url)
        try:
            os.replace(tmp, mirror)
        except OSError as e:
            shutil.rmtree(tmp, ignore_errors=True)
            raise CacheError(f"Could not move cache mirror into place for {url}: {e}", stage="mirror", url=url) from e
        self._info(f"Created cache mirror {mirror}")

    def _refresh_mirror(self, url: str, mirror: str) -> None:
        res = self.git.run(["--git-dir", mirror, "fetch", "--prune", "--quiet", "origin"])
        if not res.ok:
            raise CacheError(f"Could not fetch cache mirror for {url}: {res.error_text}", stage="mirror", url=url)
        self._info(f"Refreshed cache mirror {mirror}")

    # ---- public API ----
    def is_cached(self, url: str) -> bool:
        mirror = self.mirror_path(url)
        return os.path.isdir(mirror) and os.path.isfile(os.path.join(mirror, "HEAD"))

    def ensure_mirror(self, url: str, *, refresh: bool = True) -> str:
        """Create the mirror if absent, else fetch it (unless refresh=False). Returns its path."""
        mirror = self.mirror_path(url)
        try:
            with self._lock(url):
                if not self.is_cached(url):
                    self._create_mirror(url, mirror)
                elif refresh:
                    self._refresh_mirror(url, mirror)
        except Timeout as e:
            raise RemoteError(
                f"Timed out waiting for the cache lock on {url}; another engrams process may be fetching it.",
                code="cache_lock_timeout",
                url=url,
            ) from e
        return mirror

    def submodule_add_from_cache(
        self,
        url: str,
        relative_path: str,
        project_root: str,
        *,
        force: bool = False,
        refresh: bool = True,
    ) -> str:
        mirror = self.ensure_mirror(url, refresh=refresh)
        args: List[str] = ["submodule", "add", "--quiet"]
        if force:
            args.append("--force")
        args.extend(["--reference", mirror, "--", url, relative_path])
        res = self.git.run(args, cwd=project_root)
        if not res.ok:
            raise CacheError(
                f"Cache mirror is ready, but registering submodule {relative_path} failed: {res.error_text}",
                stage="submodule",
                url=url,
                path=relative_path,
            )
        self._info(f"Added submodule {relative_path} from cache ({url})")
        return os.path.join(project_root, relative_path)

    def submodule_init_from_cache(self, url: Optional[str], relative_path: str, project_root: str, *, force: bool = False) -> None:
        """Initialize an already-registered submodule, borrowing objects from the mirror when the URL is known."""
        args: List[str] = ["submodule", "update", "--init"]
        if force:
            args.append("--force")
        if url:
            args.extend(["--reference", self.ensure_mirror(url)])
        args.extend(["--", relative_path])
        res = self.git.run(args, cwd=project_root)
        if not res.ok:
            raise CacheError(f"Initializing submodule {relative_path} failed: {res.error_text}", stage="submodule", url=url or "", path=relative_path)

    def clone_from_cache(self, url: str, target_dir: str, *, refresh: bool = True) -> str:
        if os.path.exists(target_dir):
            raise ConflictError(f"Clone target already exists: {target_dir}", path=target_dir)
        mirror = self.ensure_mirror(url, refresh=refresh)
        res = self.git.run(["clone", "--quiet", "--reference", mirror, url, target_dir])
        if not res.ok:
            shutil.rmtree(target_dir, ignore_errors=True)
            raise CacheError(f"Cache mirror is ready, but cloning into {target_dir} failed: {res.error_text}", stage="clone", url=url)
        self._info(f"Cloned {url} into {target_dir} from cache")
        return target_dir

    def clone_with_sparse_checkout(
        self,
        remote: str,
        content_dir: str,
        *,
        ref: Optional[str] = None,
        sparse: Optional[List[str]] = None,
    ) -> str:
        """
        Sparse partial checkout of `remote` into `content_dir`, for wrap engrams.

        `ref` may be a commit hash, branch or tag; None means the default
        branch. Returns the checked-out commit. The checkout is assembled in a
        sibling temporary directory and renamed into place, so on failure
        `content_dir` does not exist.
        """
        if os.path.exists(content_dir):
            raise ConflictError(f"Content directory already exists: {content_dir}", path=content_dir)
        mirror = self.ensure_mirror(remote)
        parent = os.path.dirname(os.path.abspath(content_dir))
        os.makedirs(parent, exist_ok=True)
        tmp = os.path.join(parent, f".{os.path.basename(content_dir)}.tmp-{uuid.uuid4().hex[:8]}")

        def _fail(step: str, detail: str) -> CacheError:
            shutil.rmtree(tmp, ignore_errors=True)
            return CacheError(f"Sparse checkout of {remote} failed during {step}: {detail}", stage="checkout", url=remote, ref=ref or "")

        res = self.git.run(["clone", "--quiet", "--no-checkout", "--reference", mirror, remote, tmp])
        if not res.ok:
            raise _fail("clone", res.error_text)
        patterns = [p for p in (sparse or []) if str(p).strip()]
        if patterns:
            res = self.git.run(["sparse-checkout", "set", "--no-cone", *patterns], cwd=tmp)
            if not res.ok:
                raise _fail("sparse-checkout", res.error_text)
        target = ref
        if not target:
            default = self.git.run(["symbolic-ref", "--short", "HEAD"], cwd=tmp)
            target = default.out if default.ok and default.out else "HEAD"
        # --force: the no-checkout clone has no populated index to merge against.
        res = self.git.run(["checkout", "--quiet", "--force", target], cwd=tmp)
        if not res.ok:
            raise _fail("checkout", res.error_text)
        head = self.git.run(["rev-parse", "HEAD"], cwd=tmp)
        if not head.ok:
            raise _fail("rev-parse", head.error_text)
        try:
            os.replace(tmp, content_dir)
        except OSError as e:
            raise _fail("rename", str(e)) from e
        self._info(f"Sparse-checked out {remote}@{head.out[:12]} into {content_dir}")
        return head.out
