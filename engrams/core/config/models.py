from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EngramsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    git_timeout_seconds: float = Field(default=300.0, gt=0)
    lock_timeout_seconds: float = Field(default=120.0, ge=0)
    allow_file_protocol: bool = False
    remote: str = Field(default="origin", min_length=1)
    index_ref: str = Field(default="refs/engrams/index", min_length=1)
    cache_dir: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("index_ref")
    @classmethod
    def _ref_under_refs(cls, v: str) -> str:
        v = str(v or "").strip()
        if not v.startswith("refs/") or v.endswith("/") or ".." in v:
            raise ValueError("index_ref must be a full ref name under refs/")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_level(cls, v: object) -> str:
        vv = str(v or "INFO").strip().upper()
        if vv not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be a standard logging level name")
        return vv


def default_config_dict() -> dict:
    return EngramsConfig().model_dump()
