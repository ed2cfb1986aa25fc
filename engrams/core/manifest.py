from __future__ import annotations

"""
Engram contract models (manifest + index entry).

WHY THIS FILE EXISTS:
engram.toml is the contract-of-record authored by each engram repository, and
the index entry is the same contract flattened plus provenance (url, locked
commit). Both are validated here without touching the engram's content.
"""

import os
import tomllib
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from engrams.core.constants import MIN_DESCRIPTION_LENGTH
from engrams.core.errors import ValidationError


def _norm_patterns(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    if isinstance(v, (list, tuple)):
        return [str(x) for x in v if str(x or "").strip()]
    raise ValueError("trigger patterns must be a string or a list of strings")


class TriggerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    user_msg: List[str] = Field(default_factory=list, alias="user-msg")
    agent_msg: List[str] = Field(default_factory=list, alias="agent-msg")
    any_msg: List[str] = Field(default_factory=list, alias="any-msg")

    @field_validator("user_msg", "agent_msg", "any_msg", mode="before")
    @classmethod
    def _norm(cls, v: Any) -> List[str]:
        return _norm_patterns(v)

    def is_empty(self) -> bool:
        return not (self.user_msg or self.agent_msg or self.any_msg)

    def summary_parts(self) -> List[str]:
        parts: List[str] = []
        if self.user_msg:
            parts.append("user: " + ", ".join(self.user_msg))
        if self.agent_msg:
            parts.append("agent: " + ", ".join(self.agent_msg))
        if self.any_msg:
            parts.append("any: " + ", ".join(self.any_msg))
        return parts


class WrapConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    remote: str = Field(min_length=1)
    ref: Optional[str] = None
    sparse: List[str] = Field(default_factory=list)

    @field_validator("sparse", mode="before")
    @classmethod
    def _norm_sparse(cls, v: Any) -> List[str]:
        return _norm_patterns(v)

    @field_validator("ref", mode="before")
    @classmethod
    def _blank_ref(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip()
        return s or None


class IndexWrapConfig(WrapConfig):
    model_config = ConfigDict(extra="ignore")

    # Resolved commit pinning the sparse checkout; written after materialization.
    locked: Optional[str] = None


class EngramManifest(BaseModel):
    # Unknown top-level keys (author, license, ...) are tolerated; trigger and
    # wrap tables stay strict.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1, max_length=120)
    description: str = Field(min_length=MIN_DESCRIPTION_LENGTH, max_length=1000)
    version: str = ""
    disclosure_triggers: Optional[TriggerConfig] = Field(default=None, alias="disclosure-triggers")
    activation_triggers: Optional[TriggerConfig] = Field(default=None, alias="activation-triggers")
    wrap: Optional[WrapConfig] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("version", mode="before")
    @classmethod
    def _version_str(cls, v: Any) -> str:
        return "" if v is None else str(v)


class IndexEntry(BaseModel):
    """
    Index record stored at refs/engrams/index. Descriptions are not length
    checked here: entries may come from other clones and must stay readable.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    description: str = ""
    version: str = ""
    disclosure_triggers: Optional[TriggerConfig] = Field(default=None, alias="disclosure-triggers")
    activation_triggers: Optional[TriggerConfig] = Field(default=None, alias="activation-triggers")
    wrap: Optional[IndexWrapConfig] = None
    url: Optional[str] = None

    @classmethod
    def from_manifest(cls, manifest: EngramManifest, *, url: Optional[str] = None) -> "IndexEntry":
        raw = manifest.model_dump(by_alias=True, exclude_none=True)
        raw["url"] = url
        return cls.model_validate(raw)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True, exclude_none=True)
        for key in ("disclosure-triggers", "activation-triggers"):
            if key in doc:
                doc[key] = {channel: patterns for channel, patterns in doc[key].items() if patterns}
        return doc

    @property
    def locked(self) -> Optional[str]:
        return self.wrap.locked if self.wrap is not None else None


def parse_engram(manifest_path: str) -> EngramManifest:
    """Read and validate an engram.toml; any problem is a ValidationError naming the file."""
    try:
        with open(manifest_path, "rb") as f:
            raw = tomllib.load(f)
    except FileNotFoundError as e:
        raise ValidationError(f"Manifest not found: {manifest_path}", path=manifest_path) from e
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"Invalid TOML in {manifest_path}: {e}", path=manifest_path) from e
    except OSError as e:
        raise ValidationError(f"Unreadable manifest {manifest_path}: {e}", path=manifest_path) from e
    try:
        return EngramManifest.model_validate(raw)
    except PydanticValidationError as e:
        summary = "; ".join(f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in e.errors())
        raise ValidationError(
            f"Invalid manifest {os.path.basename(os.path.dirname(manifest_path)) or manifest_path}: {summary}"[:500],
            path=manifest_path,
        ) from e
