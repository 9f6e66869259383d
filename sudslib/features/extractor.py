"""
Epoch Feature Extractor

Main class for turning per-channel epoch waveforms into the ordered
feature vector consumed by the projector.
"""

import logging
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, List

import numpy as np
from scipy import signal
from scipy.stats import kurtosis, skew

from ..errors import ConfigurationError
from ..recording import EpochSource
from .definitions import FLAT_EPSILON, PE_ORDERS, ChannelSpec, FeatureModel
from .spectral import (
    band_power,
    bin_power,
    floor_power,
    hjorth,
    permutation_entropy,
    petrosian_fd,
    segment_periodograms,
    spectral_slope,
)

logger = logging.getLogger(__name__)


@dataclass
class EpochFeatures:
    """
    Features of one epoch.

    Attributes:
        values: Ordered feature vector
        bad: True if a spectral value was degenerate (replaced by the floor)
        flat: True if any channel has (near) zero activity, mobility or complexity
        hjorth: (n_channels, 3) activity, mobility, complexity per channel
    """
    values: np.ndarray
    bad: bool
    flat: bool
    hjorth: np.ndarray


@dataclass
class FeatureMatrix:
    """
    Features of every epoch of a recording.

    Attributes:
        X: (n_epochs, n_features) feature matrix (time tracks not included)
        bad: Per-epoch degenerate-spectrum flags
        flat: Per-epoch flat-signal flags
        hjorth: (n_epochs, n_channels, 3) Hjorth parameters
        columns: Feature column names
    """
    X: np.ndarray
    bad: np.ndarray
    flat: np.ndarray
    hjorth: np.ndarray
    columns: List[str]

    @property
    def n_epochs(self) -> int:
        return self.X.shape[0]


def time_track_columns(n_rows: int, order: int) -> np.ndarray:
    """
    Polynomial time-of-night columns ((i/n) - 0.5)^(c+1), c = 0..order-1.

    Args:
        n_rows: Number of (retained) epochs
        order: Number of columns

    Returns:
        (n_rows, order) array
    """
    if order <= 0 or n_rows == 0:
        return np.zeros((n_rows, 0))
    t = np.arange(n_rows) / n_rows - 0.5
    return np.column_stack([t ** (c + 1) for c in range(order)])


class EpochFeatureExtractor:
    """
    Extract per-epoch feature vectors from multi-channel recordings.

    The extractor is configured once with a FeatureModel; the width and
    column order of its output are fixed by that model, so every
    recording scored against the same corpus yields comparable vectors.

    Usage:
        extractor = EpochFeatureExtractor(config.features)
        fm = extractor.extract_all(source)
        fm.X, fm.bad, fm.flat
    """

    def __init__(self, model: FeatureModel):
        """
        Initialize the feature extractor.

        Args:
            model: Feature model (channels, sample rates, blocks, Welch settings)
        """
        problems = model.validate()
        if problems:
            raise ConfigurationError("invalid feature model: " + "; ".join(problems))
        self.model = model
        self.columns = model.column_names()
        # time tracks are appended later, over retained epochs only
        self.n_base_features = len(self.columns) - model.time_tracks

    def extract_epoch(self, signals: Dict[str, np.ndarray]) -> EpochFeatures:
        """
        Extract the feature vector of a single epoch.

        Args:
            signals: Channel label -> samples, already at the configured sample rate

        Returns:
            EpochFeatures
        """
        values = []
        bad = False
        flat = False
        hj = np.zeros((self.model.n_channels, 3))

        for c, ch in enumerate(self.model.channels):
            if ch.label not in signals:
                raise ConfigurationError(f"channel '{ch.label}' not provided")
            x = np.asarray(signals[ch.label], dtype=float)
            mean = float(np.mean(x)) if len(x) else 0.0
            x = x - mean

            hj[c] = hjorth(x)
            if np.any(hj[c] < FLAT_EPSILON):
                flat = True

            ch_values, ch_bad = self._extract_channel(x, mean, ch, hj[c])
            values.extend(ch_values)
            bad = bad or ch_bad

        vector = np.asarray(values, dtype=float)
        if not np.all(np.isfinite(vector)):
            vector = np.nan_to_num(vector, nan=0.0, posinf=0.0, neginf=0.0)
            bad = True
        return EpochFeatures(values=vector, bad=bad, flat=flat, hjorth=hj)

    def _extract_channel(self, x: np.ndarray, mean: float, ch: ChannelSpec,
                         hj: np.ndarray):
        """Extract every configured block for one channel; returns (values, bad)."""
        values: List[float] = []
        bad = False

        periodograms = None
        needs_spectrum = any(f.kind in ('SPEC', 'RSPEC', 'VSPEC', 'SLOPE') for f in ch.features)
        if needs_spectrum:
            segment_sec, overlap_sec = self.model.welch_segment()
            freqs, periodograms = segment_periodograms(
                x, ch.sample_rate, segment_sec, overlap_sec, self.model.window
            )
            psd = np.mean(periodograms, axis=1)

        for spec in ch.features:
            # === SPECTRAL FEATURES ===
            if spec.kind == 'SPEC':
                power, floored = floor_power(bin_power(freqs, psd, spec.lwr, spec.upr))
                values.extend(10.0 * np.log10(power))
                bad = bad or floored

            elif spec.kind == 'RSPEC':
                power, floored = floor_power(bin_power(freqs, psd, spec.lwr, spec.upr))
                total = band_power(freqs, psd, spec.z_lwr, spec.z_upr)
                if total <= 0:
                    total = 1e-4
                    floored = True
                values.extend(np.log(power / total))
                bad = bad or floored

            elif spec.kind == 'VSPEC':
                mask = (freqs >= spec.lwr) & (freqs <= spec.upr)
                seg = periodograms[mask]
                mu = np.mean(seg, axis=1)
                sd = np.std(seg, axis=1)
                if np.any(mu <= 0):
                    bad = True
                values.extend(np.where(mu > 0, sd / np.where(mu > 0, mu, 1.0), 0.0))

            elif spec.kind == 'SLOPE':
                slope, slope_bad = spectral_slope(freqs, psd, spec.lwr, spec.upr, spec.threshold)
                values.append(slope)
                bad = bad or slope_bad

            # === TIME-DOMAIN FEATURES ===
            elif spec.kind == 'SKEW':
                values.append(float(skew(x)) if hj[0] > 0 else 0.0)

            elif spec.kind == 'KURTOSIS':
                values.append(float(kurtosis(x, fisher=True)) if hj[0] > 0 else 0.0)

            elif spec.kind == 'FD':
                values.append(petrosian_fd(x))

            elif spec.kind == 'PE':
                values.extend(permutation_entropy(x, m) for m in PE_ORDERS)

            elif spec.kind == 'HJORTH':
                values.extend([hj[1], hj[2]])

            elif spec.kind == 'MEAN':
                values.append(mean)

            else:
                raise ValueError(f"Unknown feature block: {spec.kind}")

        return values, bad

    def _resampler(self, source: EpochSource, ch: ChannelSpec):
        """Return a function mapping a source epoch to the configured sample rate."""
        source_rate = source.sample_rate(ch.label)
        if np.isclose(source_rate, ch.sample_rate):
            return lambda x: np.asarray(x, dtype=float)
        ratio = Fraction(ch.sample_rate / source_rate).limit_denominator(1000)
        logger.info(f"{source.recording_id}: resampling {ch.label} from "
                    f"{source_rate:g} Hz to {ch.sample_rate:g} Hz")
        return lambda x: signal.resample_poly(np.asarray(x, dtype=float),
                                              ratio.numerator, ratio.denominator)

    def extract_all(self, source: EpochSource) -> FeatureMatrix:
        """
        Extract features from every epoch of a recording.

        Args:
            source: Epoch source providing the configured channels

        Returns:
            FeatureMatrix over all epochs (none excluded here)
        """
        missing = [ch.label for ch in self.model.channels if not source.has_channel(ch.label)]
        if missing:
            raise ConfigurationError(
                f"{source.recording_id}: missing channel(s) {missing}; "
                f"recording has {source.channels}"
            )

        resamplers = {ch.label: self._resampler(source, ch) for ch in self.model.channels}
        n = source.n_epochs
        X = np.zeros((n, self.n_base_features))
        bad = np.zeros(n, dtype=bool)
        flat = np.zeros(n, dtype=bool)
        hj = np.zeros((n, self.model.n_channels, 3))

        for i in range(n):
            signals = {ch: fn(source.epoch(i, ch)) for ch, fn in resamplers.items()}
            ef = self.extract_epoch(signals)
            if len(ef.values) != self.n_base_features:
                raise ConfigurationError(
                    f"{source.recording_id}: epoch {i} yielded {len(ef.values)} features, "
                    f"expected {self.n_base_features}"
                )
            X[i] = ef.values
            bad[i] = ef.bad
            flat[i] = ef.flat
            hj[i] = ef.hjorth

        logger.info(f"{source.recording_id}: extracted {self.n_base_features} features "
                    f"from {n} epochs ({int(bad.sum())} bad, {int(flat.sum())} flat)")
        return FeatureMatrix(X=X, bad=bad, flat=flat, hjorth=hj,
                             columns=self.columns[:self.n_base_features])
