from __future__ import annotations

"""
Context trigger compilation.

WHY THIS FILE EXISTS:
Engram manifests declare when an engram should be disclosed (named to the
host) or activated (fully loaded) as plain pattern lists. Patterns are compiled
once into regexes here; per-turn matching is then a couple of regex searches.

Matching is case-insensitive SUBSTRING matching, not word-boundary matching:
the pattern "go" fires on "mango". This favours recall over precision and is
kept deliberately until authors ask for something stricter.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from engrams.core.manifest import TriggerConfig

_BRACE_GROUP = re.compile(r"\{([^{}]*)\}")


class Channel(str, Enum):
    user = "user"
    agent = "agent"


@dataclass(frozen=True)
class ConversationTurn:
    channel: Channel
    text: str

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(channel=Channel.user, text=text)

    @classmethod
    def agent(cls, text: str) -> "ConversationTurn":
        return cls(channel=Channel.agent, text=text)


def _balanced(pattern: str) -> bool:
    depth = 0
    for ch in pattern:
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def expand_braces(pattern: str) -> List[str]:
    """
    Shell-style brace expansion: "build.{sh,ts}" -> ["build.sh", "build.ts"].

    Several groups expand to their cross product. Unbalanced braces are not an
    error; the pattern is returned unchanged and matches literally.
    """
    if "{" not in pattern and "}" not in pattern:
        return [pattern]
    if not _balanced(pattern):
        return [pattern]
    m = _BRACE_GROUP.search(pattern)
    if m is None:
        return [pattern]
    head, tail = pattern[: m.start()], pattern[m.end():]
    out: List[str] = []
    for alt in m.group(1).split(","):
        out.extend(expand_braces(head + alt + tail))
    return out


@dataclass(frozen=True)
class CompiledTriggerRegexes:
    user: Optional["re.Pattern[str]"] = None
    agent: Optional["re.Pattern[str]"] = None
    any: Optional["re.Pattern[str]"] = None

    @property
    def empty(self) -> bool:
        return self.user is None and self.agent is None and self.any is None

    def matches(self, turn: ConversationTurn) -> bool:
        text = turn.text or ""
        if self.any is not None and self.any.search(text):
            return True
        channel_re = self.user if turn.channel == Channel.user else self.agent if turn.channel == Channel.agent else None
        return bool(channel_re is not None and channel_re.search(text))


def _compile_channel(patterns: Iterable[str]) -> Optional["re.Pattern[str]"]:
    literals: List[str] = []
    for p in patterns:
        for lit in expand_braces(str(p)):
            if lit.strip():
                literals.append(re.escape(lit))
    if not literals:
        return None
    # Longest first so the alternation reports the most specific hit.
    literals.sort(key=len, reverse=True)
    return re.compile("|".join(literals), re.IGNORECASE)


def compile_context_trigger(config: Optional[TriggerConfig]) -> CompiledTriggerRegexes:
    if config is None:
        return CompiledTriggerRegexes()
    return CompiledTriggerRegexes(
        user=_compile_channel(config.user_msg),
        agent=_compile_channel(config.agent_msg),
        any=_compile_channel(config.any_msg),
    )


@dataclass(frozen=True)
class ContextTriggerMatcher:
    """
    Per-engram decision object.

    - no rules at all: permanent (always disclosed and activated)
    - only activation rules: always disclosed, activated on match
    - only disclosure rules: disclosed on match, never auto-activated
    - an activation hit always implies disclosure
    """

    name: str
    disclosure: CompiledTriggerRegexes
    activation: CompiledTriggerRegexes

    @property
    def permanent(self) -> bool:
        return self.disclosure.empty and self.activation.empty

    def should_activate(self, turn: ConversationTurn) -> bool:
        if self.permanent:
            return True
        if self.activation.empty:
            return False
        return self.activation.matches(turn)

    def should_disclose(self, turn: ConversationTurn) -> bool:
        if self.disclosure.empty:
            return True
        return self.disclosure.matches(turn) or self.should_activate(turn)


def compile_engram_matcher(
    name: str,
    disclosure: Optional[TriggerConfig],
    activation: Optional[TriggerConfig],
) -> ContextTriggerMatcher:
    return ContextTriggerMatcher(
        name=name,
        disclosure=compile_context_trigger(disclosure),
        activation=compile_context_trigger(activation),
    )


def build_context_trigger_matchers(engrams: Iterable[Any]) -> Dict[str, ContextTriggerMatcher]:
    """
    Batch-compile matchers for anything exposing `name`, `disclosure_triggers`
    and `activation_triggers` (manifests, index entries, discovered engrams).
    """
    out: Dict[str, ContextTriggerMatcher] = {}
    for e in engrams:
        name = str(getattr(e, "name", "") or "")
        if not name:
            continue
        out[name] = compile_engram_matcher(
            name,
            getattr(e, "disclosure_triggers", None),
            getattr(e, "activation_triggers", None),
        )
    return out
