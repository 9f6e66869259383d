"""
Epoch quality control and retained-epoch bookkeeping.
"""

from .epochs import (
    RetainedEpochs,
    REASONS,
    UNLABELED,
    BAD_SPECTRUM,
    FLAT,
    HJORTH,
    OUTLIER,
    CAPPED,
    SELF_CLASSIFICATION,
)
from .filter import QualityFilter, HjorthBounds, hjorth_summary

__all__ = [
    'RetainedEpochs',
    'REASONS',
    'UNLABELED',
    'BAD_SPECTRUM',
    'FLAT',
    'HJORTH',
    'OUTLIER',
    'CAPPED',
    'SELF_CLASSIFICATION',
    'QualityFilter',
    'HjorthBounds',
    'hjorth_summary',
]
