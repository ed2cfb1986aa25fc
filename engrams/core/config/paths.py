from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class EngramsFsPaths:
    config_home: str
    cache_home: str

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngramsFsPaths":
        env = os.environ if env is None else env
        home = os.path.expanduser("~")
        config_home = str(env.get("XDG_CONFIG_HOME") or "").strip() or os.path.join(home, ".config")
        cache_home = str(env.get("XDG_CACHE_HOME") or "").strip() or os.path.join(home, ".cache")
        return cls(config_home=config_home, cache_home=cache_home)

    # Directories
    @property
    def global_dir(self) -> str:
        return os.path.join(self.config_home, "engrams")

    @property
    def state_dir(self) -> str:
        return os.path.join(self.cache_home, "engrams")

    @property
    def cache_dir(self) -> str:
        return os.path.join(self.state_dir, "repos")

    @property
    def log_dir(self) -> str:
        return os.path.join(self.state_dir, "logs")

    # Files
    @property
    def config_file(self) -> str:
        return os.path.join(self.global_dir, "config.json")
