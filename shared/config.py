import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass

_MISSING = object()


@dataclass
class ConfigError(Exception):
    message: str


def _lookup(tree: Dict[str, Any], path: str) -> Any:
    """Walk a dotted path through nested dicts; _MISSING when any step is absent"""
    value = tree
    for key in path.split('.'):
        if not isinstance(value, dict) or key not in value:
            return _MISSING
        value = value[key]
    return value


class Config:
    """
    Feed service settings from shared/config.yaml

    FEED_CONFIG_PATH points at another YAML file. In test mode, numeric values
    under the `test_mode` section replace their production counterparts.
    """

    def __init__(self, config_path: Optional[str] = None, test_mode: bool = False):
        self.test_mode = test_mode
        self._config = self._load_config(config_path)

    def _load_config(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        config_path = config_path or os.getenv('FEED_CONFIG_PATH')
        path = Path(config_path) if config_path else Path(__file__).parent / "config.yaml"

        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file: {e}")
        except OSError as e:
            raise ConfigError(f"Error reading config file: {e}")

        if not isinstance(config, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")
        return config

    def get(self, path: str, default: Any = None) -> Any:
        value = _lookup(self._config, path)
        if value is _MISSING:
            return default

        if self.test_mode and isinstance(value, (int, float)):
            override = _lookup(self._config.get('test_mode', {}), path)
            if override is not _MISSING:
                return override

        if isinstance(value, dict) and self.test_mode:
            # Sections come back with their test overrides applied
            return {key: self.get(f"{path}.{key}") for key in value}

        return value

    def _positive_int(self, path: str, env_var: str, default: int) -> int:
        raw = os.getenv(env_var) or self.get(path, default)
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"{path} must be an integer, got {raw!r}")
        if value < 1:
            raise ConfigError(f"{path} must be positive, got {value}")
        return value

    @property
    def redis_url(self) -> str:
        return os.getenv('REDIS_URL') or self.get('redis.url', 'redis://localhost:6379')

    @property
    def cache_ttl(self) -> int:
        """Seconds a cached read lives (CACHE_TTL_SECONDS overrides)"""
        return self._positive_int('cache.ttl_seconds', 'CACHE_TTL_SECONDS', 3600)

    @property
    def stats_cache_ttl(self) -> int:
        return self._positive_int('cache.stats_ttl_seconds', 'STATS_CACHE_TTL_SECONDS', 300)

    def get_feed_config(self) -> Dict[str, Any]:
        return self.get('feed', {})

    def get_listing_config(self) -> Dict[str, Any]:
        return self.get('listing', {})

    def get_stats_config(self) -> Dict[str, Any]:
        return self.get('stats', {})


_global_config: Optional[Config] = None


def get_config(config_path: Optional[str] = None, test_mode: bool = False) -> Config:
    global _global_config

    if _global_config is None or config_path is not None or test_mode != _global_config.test_mode:
        _global_config = Config(config_path, test_mode)

    return _global_config


def reset_config():
    global _global_config
    _global_config = None
