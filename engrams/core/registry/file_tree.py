from __future__ import annotations

"""
Flat file listing for an engram directory.

WHY THIS FILE EXISTS:
The host adapter shows the agent which files an engram ships. The listing is
one absolute path per line (directories end with "/"), never tree glyphs, and
optionally carries a one-line description per entry taken from the file itself
("# oneliner: ...") or from a directory's .oneliner / .oneliner.txt.

A `.ignore` file at the engram root uses gitignore syntax: `#` comments,
`!` negation, trailing `/` for directory-only rules, and patterns containing a
slash are anchored to the root. The last matching rule wins.
"""

import os
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import List, Optional

ALWAYS_SKIP = {"node_modules", ".git"}
IGNORE_FILENAME = ".ignore"
DIR_ONELINER_FILES = (".oneliner", ".oneliner.txt")
ONELINER_MARKER = "# oneliner:"
ONELINER_SCAN_LINES = 10


@dataclass(frozen=True)
class IgnoreRule:
    pattern: str
    negate: bool = False
    dir_only: bool = False
    anchored: bool = False

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.anchored:
            return fnmatch(rel_path, self.pattern)
        return fnmatch(os.path.basename(rel_path), self.pattern) or fnmatch(rel_path, self.pattern)


def parse_ignore_rules(text: str) -> List[IgnoreRule]:
    rules: List[IgnoreRule] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = "/" in line
        line = line.lstrip("/")
        if line:
            rules.append(IgnoreRule(pattern=line, negate=negate, dir_only=dir_only, anchored=anchored))
    return rules


class IgnoreMatcher:
    def __init__(self, rules: Optional[List[IgnoreRule]] = None):
        self.rules = list(rules or [])

    @classmethod
    def from_directory(cls, directory: str) -> "IgnoreMatcher":
        path = os.path.join(directory, IGNORE_FILENAME)
        if not os.path.isfile(path):
            return cls()
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return cls(parse_ignore_rules(f.read()))

    def ignored(self, rel_path: str, is_dir: bool) -> bool:
        rel = rel_path.replace(os.sep, "/")
        result = False
        for rule in self.rules:
            if rule.matches(rel, is_dir):
                result = not rule.negate
        return result


def _file_oneliner(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8", errors="strict") as f:
            for _ in range(ONELINER_SCAN_LINES):
                line = f.readline()
                if not line:
                    break
                stripped = line.strip()
                if stripped.startswith(ONELINER_MARKER):
                    text = stripped[len(ONELINER_MARKER):].strip()
                    return text or None
    except (OSError, UnicodeDecodeError):
        return None
    return None


def _dir_oneliner(path: str) -> Optional[str]:
    for name in DIR_ONELINER_FILES:
        candidate = os.path.join(path, name)
        if os.path.isfile(candidate):
            with open(candidate, "r", encoding="utf-8", errors="replace") as f:
                text = f.read().strip().splitlines()
            if text and text[0].strip():
                return text[0].strip()
    return None


def generate_file_tree(directory: str, *, include_metadata: bool = False, max_depth: int = 5) -> str:
    """Return the listing as text, or "" when `directory` does not exist."""
    root = os.path.abspath(directory)
    if not os.path.isdir(root):
        return ""
    matcher = IgnoreMatcher.from_directory(root)
    lines: List[str] = []

    def _walk(current: str, depth: int) -> None:
        try:
            names = sorted(os.listdir(current))
        except OSError:
            return
        for name in names:
            if name.startswith(".") or name in ALWAYS_SKIP:
                continue
            full = os.path.join(current, name)
            is_dir = os.path.isdir(full)
            rel = os.path.relpath(full, root)
            if matcher.ignored(rel, is_dir):
                continue
            label = full + ("/" if is_dir else "")
            note = None
            if include_metadata:
                note = _dir_oneliner(full) if is_dir else _file_oneliner(full)
            lines.append(f"{label}  # {note}" if note else label)
            if is_dir and depth < max_depth:
                _walk(full, depth + 1)

    _walk(root, 1)
    return "\n".join(lines)
