"""
Configuration for the staging engine.

YAML defaults live in `defaults/`; site-specific overrides may be placed
in `local/`. The loaded dictionaries are turned into an immutable
StagingConfig which is passed explicitly to every component.
"""

from .loader import ConfigLoader, get_config
from .settings import (
    StagingConfig,
    ProjectionSettings,
    QualitySettings,
    ClassifierSettings,
    WeightingSettings,
    WEIGHT_METHODS,
)

__all__ = [
    'ConfigLoader',
    'get_config',
    'StagingConfig',
    'ProjectionSettings',
    'QualitySettings',
    'ClassifierSettings',
    'WeightingSettings',
    'WEIGHT_METHODS',
]
