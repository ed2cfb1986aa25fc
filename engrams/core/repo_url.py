from __future__ import annotations

"""
Repository reference parsing and project-root lookup.

Accepted inputs:
- owner/repo                     (GitHub)
- alias:owner/repo               (github/gh, gitlab/gl, codeberg/cb, sourcehut/srht)
- https://host/owner/repo(.git)  or  git@host:owner/repo(.git)
"""

import os
import re
from dataclasses import dataclass
from typing import List, Optional

from engrams.core.constants import ENGRAMS_DIR

DOMAIN_ALIASES = {
    "github": "github.com",
    "gh": "github.com",
    "gitlab": "gitlab.com",
    "gl": "gitlab.com",
    "codeberg": "codeberg.org",
    "cb": "codeberg.org",
    "sourcehut": "git.sr.ht",
    "srht": "git.sr.ht",
}

MAX_INPUT_LENGTH = 2048
_VALID_NAME = re.compile(r"^[\w][\w.-]*$")
_FULL_URL = re.compile(r"(?:https?://|git@)([^/:]+)[/:]([^/]+)/([^/\s]+?)(?:\.git)?(?:[/#?].*)?$")
_DOMAIN_SHORT = re.compile(r"^([a-z]+):([^/]+)/([^/]+)$")
_SHORT = re.compile(r"^([^/:]+)/([^/:]+)$")


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str
    url: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"


def _valid_owner_repo(owner: str, repo: str) -> bool:
    if not owner or not repo:
        return False
    if len(owner) > 100 or len(repo) > 100:
        return False
    if not _VALID_NAME.match(owner) or not _VALID_NAME.match(repo):
        return False
    if owner[0] in ".-" or repo[0] in ".-":
        return False
    return True


def parse_repo_url(text: str) -> Optional[RepoRef]:
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed or len(trimmed) > MAX_INPUT_LENGTH:
        return None

    m = _FULL_URL.search(trimmed)
    if m:
        domain, owner, repo = m.group(1), m.group(2), m.group(3)
        if not _valid_owner_repo(owner, repo):
            return None
        return RepoRef(owner=owner, repo=repo, url=f"https://{domain}/{owner}/{repo}.git")

    m = _DOMAIN_SHORT.match(trimmed)
    if m:
        domain = DOMAIN_ALIASES.get(m.group(1))
        owner, repo = m.group(2), m.group(3)
        if not domain or not _valid_owner_repo(owner, repo):
            return None
        return RepoRef(owner=owner, repo=repo, url=f"https://{domain}/{owner}/{repo}.git")

    m = _SHORT.match(trimmed)
    if m:
        owner, repo = m.group(1), m.group(2)
        if not _valid_owner_repo(owner, repo):
            return None
        return RepoRef(owner=owner, repo=repo, url=f"https://github.com/{owner}/{repo}.git")

    return None


def get_supported_domains() -> List[str]:
    return list(DOMAIN_ALIASES.keys())


def get_engram_name(repo: str) -> str:
    """Strip the conventional `eg.` repository prefix."""
    return re.sub(r"^eg\.", "", str(repo or ""))


def shorten_path(path: str, home: Optional[str] = None) -> str:
    home = home or os.path.expanduser("~")
    if home and path.startswith(home):
        return "~" + path[len(home):]
    return path


def find_project_root(cwd: str) -> Optional[str]:
    cur = os.path.abspath(cwd)
    while True:
        if os.path.exists(os.path.join(cur, ".git")) or os.path.exists(os.path.join(cur, ENGRAMS_DIR)):
            return cur
        parent = os.path.dirname(cur)
        if parent == cur:
            return None
        cur = parent
