from __future__ import annotations

"""
Configuration loader.

Reads <global_dir>/config.json (optional), applies ENGRAMS_* environment
overrides and validates the result against EngramsConfig. A missing file means
defaults; a corrupt or invalid file is a ConfigError naming the file.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from engrams.core.config.io import read_json_file
from engrams.core.config.models import EngramsConfig
from engrams.core.config.paths import EngramsFsPaths
from engrams.core.errors import ConfigError

_TRUTHY = {"1", "true", "yes", "on"}


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    timeout = str(env.get("ENGRAMS_GIT_TIMEOUT") or "").strip()
    if timeout:
        out["git_timeout_seconds"] = timeout
    cache_dir = str(env.get("ENGRAMS_CACHE_DIR") or "").strip()
    if cache_dir:
        out["cache_dir"] = cache_dir
    allow_file = str(env.get("ENGRAMS_ALLOW_FILE_PROTOCOL") or "").strip().lower()
    if allow_file:
        out["allow_file_protocol"] = allow_file in _TRUTHY
    level = str(env.get("ENGRAMS_LOG_LEVEL") or "").strip()
    if level:
        out["log_level"] = level
    return out


def load_config(paths: EngramsFsPaths, env: Optional[Mapping[str, str]] = None) -> EngramsConfig:
    env = os.environ if env is None else env
    rr = read_json_file(paths.config_file)
    if not rr.ok and rr.error != "missing":
        raise ConfigError(f"Unreadable config file {paths.config_file}: {rr.error}", path=paths.config_file)
    raw = dict(rr.data)
    raw.update(_env_overrides(env))
    try:
        return EngramsConfig.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid config {paths.config_file}: {e}", path=paths.config_file) from e


def resolve_cache_dir(cfg: EngramsConfig, paths: EngramsFsPaths) -> str:
    if cfg.cache_dir:
        return os.path.abspath(os.path.expanduser(cfg.cache_dir))
    return paths.cache_dir
