from engrams.core.config.loader import load_config, resolve_cache_dir
from engrams.core.config.models import EngramsConfig
from engrams.core.config.paths import EngramsFsPaths

__all__ = ["EngramsConfig", "EngramsFsPaths", "load_config", "resolve_cache_dir"]
