"""
Feature Definitions and Constants

Feature block names, their default arguments, and the immutable feature
model describing which blocks are computed for which channel. The model
fixes the width of the feature vector for a whole trainer corpus.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

# Replacement value for non-positive spectral power (-40 dB)
POWER_FLOOR = 1e-4

# Below this an activity/mobility/complexity value marks a flat epoch
FLAT_EPSILON = 1e-8

# Width of the spectral bins (Hz)
BIN_WIDTH = 1.0

# Permutation entropy orders
PE_ORDERS = (3, 4, 5, 6, 7)

WINDOWS = {
    'tukey50': ('tukey', 0.5),
    'hann': 'hann',
    'hamming': 'hamming',
    'none': 'boxcar',
}

# Feature blocks and their default arguments
FEATURE_BLOCKS: Dict[str, Dict[str, float]] = {
    'SPEC': {'lwr': 0.5, 'upr': 25.0},
    'RSPEC': {'lwr': 5.0, 'upr': 20.0, 'z_lwr': 30.0, 'z_upr': 45.0},
    'VSPEC': {'lwr': 0.5, 'upr': 25.0},
    'SLOPE': {'lwr': 30.0, 'upr': 45.0, 'threshold': 3.0},
    'SKEW': {},
    'KURTOSIS': {},
    'FD': {},
    'PE': {},
    'HJORTH': {},
    'MEAN': {},
}

SPECTRAL_BLOCKS = ('SPEC', 'RSPEC', 'VSPEC', 'SLOPE')

# Per-channel quality metrics, always computed
HJORTH_METRICS = ('activity', 'mobility', 'complexity')


def bin_starts(lwr: float, upr: float, width: float = BIN_WIDTH) -> np.ndarray:
    """Left edges of the fixed-width spectral bins covering [lwr, upr]."""
    n = int(np.floor((upr - lwr) / width + 1e-9))
    return lwr + width * np.arange(max(n, 0))


@dataclass(frozen=True)
class FeatureSpec:
    """One feature block for one channel."""
    kind: str
    lwr: float = 0.0
    upr: float = 0.0
    z_lwr: float = 0.0
    z_upr: float = 0.0
    threshold: float = 0.0

    @classmethod
    def from_dict(cls, kind: str, args: Optional[Dict[str, Any]] = None) -> 'FeatureSpec':
        kind = kind.upper()
        if kind not in FEATURE_BLOCKS:
            raise ValueError(f"Unknown feature block: {kind}. Available: {sorted(FEATURE_BLOCKS)}")
        merged = dict(FEATURE_BLOCKS[kind])
        for key, value in (args or {}).items():
            key = key.replace('-', '_')
            if key not in merged:
                raise ValueError(f"Unknown argument '{key}' for feature block {kind}")
            merged[key] = float(value)
        return cls(kind=kind, **merged)

    def to_dict(self) -> Dict[str, float]:
        return {key: getattr(self, key) for key in FEATURE_BLOCKS[self.kind]}


@dataclass(frozen=True)
class ChannelSpec:
    """A channel, its analysis sample rate and its ordered feature blocks."""
    label: str
    sample_rate: float
    features: Tuple[FeatureSpec, ...] = field(default_factory=tuple)

    def has(self, kind: str) -> bool:
        return any(f.kind == kind for f in self.features)

    def get(self, kind: str) -> Optional[FeatureSpec]:
        for f in self.features:
            if f.kind == kind:
                return f
        return None


@dataclass(frozen=True)
class FeatureModel:
    """
    Corpus-level feature configuration.

    Attributes:
        channels: Ordered channel specifications
        epoch_sec: Epoch duration in seconds
        segment_sec: Welch segment length in seconds
        segment_overlap: Welch segment overlap in seconds
        window: Welch window name (tukey50, hann, hamming, none)
        time_tracks: Number of polynomial time-of-night columns
    """
    channels: Tuple[ChannelSpec, ...]
    epoch_sec: float = 30.0
    segment_sec: float = 4.0
    segment_overlap: float = 2.0
    window: str = 'tukey50'
    time_tracks: int = 0

    @property
    def channel_labels(self) -> List[str]:
        return [ch.label for ch in self.channels]

    @property
    def n_channels(self) -> int:
        return len(self.channels)

    @property
    def n_features(self) -> int:
        return len(self.column_names())

    def welch_segment(self) -> Tuple[float, float]:
        """Welch segment length and overlap, falling back to a single whole-epoch segment."""
        if self.epoch_sec <= self.segment_sec + self.segment_overlap:
            return self.epoch_sec, 0.0
        return self.segment_sec, self.segment_overlap

    def welch_frequencies(self, sample_rate: float) -> np.ndarray:
        segment_sec, _ = self.welch_segment()
        nperseg = int(round(segment_sec * sample_rate))
        return np.fft.rfftfreq(nperseg, 1.0 / sample_rate)

    def column_names(self) -> List[str]:
        """Ordered feature column names; the order defines the feature vector."""
        names = []
        for ch in self.channels:
            for spec in ch.features:
                prefix = f"{spec.kind}_{ch.label}"
                if spec.kind in ('SPEC', 'RSPEC'):
                    names.extend(f"{prefix}_{a:g}" for a in bin_starts(spec.lwr, spec.upr))
                elif spec.kind == 'VSPEC':
                    freqs = self.welch_frequencies(ch.sample_rate)
                    keep = freqs[(freqs >= spec.lwr) & (freqs <= spec.upr)]
                    names.extend(f"{prefix}_{f:g}" for f in keep)
                elif spec.kind == 'PE':
                    names.extend(f"{prefix}_{m}" for m in PE_ORDERS)
                elif spec.kind == 'HJORTH':
                    names.extend([f"{prefix}_mobility", f"{prefix}_complexity"])
                else:
                    names.append(prefix)
        names.extend(f"TIME_{c + 1}" for c in range(self.time_tracks))
        return names

    def validate(self) -> List[str]:
        """List of problems with this model (empty when valid)."""
        problems = []
        if not self.channels:
            problems.append("no channels specified")
        if self.window not in WINDOWS:
            problems.append(f"unknown window '{self.window}'")
        if self.epoch_sec <= 0:
            problems.append("epoch length must be positive")
        if self.time_tracks < 0:
            problems.append("time_tracks must be >= 0")
        labels = self.channel_labels
        if len(set(labels)) != len(labels):
            problems.append("duplicate channel labels")
        for ch in self.channels:
            if ch.sample_rate <= 0:
                problems.append(f"{ch.label}: sample rate must be positive")
                continue
            if not ch.features:
                problems.append(f"{ch.label}: no feature blocks")
            nyquist = ch.sample_rate / 2.0
            for spec in ch.features:
                if spec.kind in SPECTRAL_BLOCKS:
                    top = max(spec.upr, spec.z_upr)
                    if spec.lwr >= spec.upr:
                        problems.append(f"{ch.label} {spec.kind}: lwr must be below upr")
                    if top > nyquist:
                        problems.append(f"{ch.label} {spec.kind}: {top:g} Hz above Nyquist ({nyquist:g} Hz)")
        return problems

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'FeatureModel':
        channels = []
        for ch in config.get('channels', []):
            blocks = ch.get('features') or {}
            specs = tuple(FeatureSpec.from_dict(kind, args) for kind, args in blocks.items())
            channels.append(ChannelSpec(label=str(ch['label']),
                                        sample_rate=float(ch['sample_rate']),
                                        features=specs))
        return cls(
            channels=tuple(channels),
            epoch_sec=float(config.get('epoch_sec', 30.0)),
            segment_sec=float(config.get('segment_sec', 4.0)),
            segment_overlap=float(config.get('segment_overlap', 2.0)),
            window=str(config.get('window', 'tukey50')),
            time_tracks=int(config.get('time_tracks', 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'epoch_sec': self.epoch_sec,
            'segment_sec': self.segment_sec,
            'segment_overlap': self.segment_overlap,
            'window': self.window,
            'time_tracks': self.time_tracks,
            'channels': [
                {
                    'label': ch.label,
                    'sample_rate': ch.sample_rate,
                    'features': {f.kind: f.to_dict() for f in ch.features},
                }
                for ch in self.channels
            ],
        }
