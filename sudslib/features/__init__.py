"""
Feature extraction for sleep staging.

Spectral (Welch bins, relative bins, segment variability, slope) and
time-domain (skewness, kurtosis, fractal dimension, permutation entropy,
Hjorth) features per channel and epoch.
"""

from .definitions import (
    FEATURE_BLOCKS,
    SPECTRAL_BLOCKS,
    HJORTH_METRICS,
    PE_ORDERS,
    FeatureSpec,
    ChannelSpec,
    FeatureModel,
)
from .extractor import EpochFeatureExtractor, EpochFeatures, FeatureMatrix, time_track_columns

__all__ = [
    'FEATURE_BLOCKS',
    'SPECTRAL_BLOCKS',
    'HJORTH_METRICS',
    'PE_ORDERS',
    'FeatureSpec',
    'ChannelSpec',
    'FeatureModel',
    'EpochFeatureExtractor',
    'EpochFeatures',
    'FeatureMatrix',
    'time_track_columns',
]
