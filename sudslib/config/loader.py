"""
Configuration Loader

Staging and feature settings are read from YAML in layers, later layers
winning key by key (nested mappings are merged, lists are replaced):

1. config/defaults/<name>.yaml, shipped with the package
2. config/local/<name>.yaml, per-site and not shipped
3. a YAML file given on the command line (`suds --config` / `--features`)
4. runtime overrides passed as a dictionary (command-line flags)

Only layers 1 and 2 are cached.
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_yaml(path: PathLike) -> Dict:
    """Read a YAML mapping; an empty file gives an empty dict."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def deep_merge(base: Dict, override: Dict) -> Dict:
    """Merge `override` into a copy of `base`."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigLoader:
    """
    Layered YAML configuration for `staging` and `features`.

    Usage:
        loader = ConfigLoader()
        staging = loader.get_staging({'projection': {'nc': 8}})
        features = loader.get_features(path='site/features.yaml')
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Args:
            config_dir: Directory holding `defaults/` and `local/`
                (default: this package's directory)
        """
        self.config_dir = Path(config_dir) if config_dir else Path(__file__).parent
        self.defaults_dir = self.config_dir / 'defaults'
        self.local_dir = self.config_dir / 'local'
        self._cache: Dict[str, Dict] = {}

    def _base(self, name: str) -> Dict:
        """Defaults with local overrides applied (cached)."""
        if name not in self._cache:
            default_path = self.defaults_dir / f'{name}.yaml'
            if not default_path.exists():
                raise FileNotFoundError(f"Default config not found: {default_path}")
            config = read_yaml(default_path)

            local_path = self.local_dir / f'{name}.yaml'
            if local_path.exists():
                logger.debug(f"Applying local overrides from {local_path}")
                config = deep_merge(config, read_yaml(local_path))
            self._cache[name] = config
        return copy.deepcopy(self._cache[name])

    def load(self, name: str, overrides: Optional[Dict] = None,
             path: Optional[PathLike] = None) -> Dict:
        """
        Load one configuration.

        Args:
            name: File name without extension ('staging' or 'features')
            overrides: Runtime overrides, applied last
            path: Optional YAML file applied between local and runtime overrides

        Returns:
            Merged configuration dict (a fresh copy on every call)
        """
        config = self._base(name)
        if path:
            logger.debug(f"Applying {name} settings from {path}")
            config = deep_merge(config, read_yaml(path))
        if overrides:
            config = deep_merge(config, overrides)
        return config

    def get_staging(self, overrides: Optional[Dict] = None,
                    path: Optional[PathLike] = None) -> Dict:
        """Projection, quality, classifier and weighting settings."""
        return self.load('staging', overrides, path)

    def get_features(self, overrides: Optional[Dict] = None,
                     path: Optional[PathLike] = None) -> Dict:
        """The feature model."""
        return self.load('features', overrides, path)

    def clear_cache(self):
        """Forget cached defaults and local overrides."""
        self._cache.clear()


_default_loader: Optional[ConfigLoader] = None


def get_config() -> ConfigLoader:
    """Shared loader over the packaged configuration directory."""
    global _default_loader
    if _default_loader is None:
        _default_loader = ConfigLoader()
    return _default_loader
