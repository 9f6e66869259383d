"""Tests for feature definitions, spectral helpers and the epoch feature extractor."""

import numpy as np
import pytest

from sudslib.config import StagingConfig
from sudslib.errors import ConfigurationError
from sudslib.features import EpochFeatureExtractor, FeatureModel, time_track_columns
from sudslib.features.definitions import POWER_FLOOR, bin_starts
from sudslib.features.spectral import (
    floor_power,
    hjorth,
    permutation_entropy,
    spectral_slope,
)
from sudslib.recording import ArrayEpochSource

from conftest import FEATURES, SAMPLE_RATE, make_recording


def test_column_layout(config):
    """Column count and order follow the configured blocks."""
    names = config.features.column_names()
    # SPEC 24 bins, RSPEC 15 bins, SLOPE, SKEW, KURTOSIS, HJORTH x 2
    assert len(names) == 24 + 15 + 1 + 1 + 1 + 2
    assert config.n_features == len(names)
    assert names[0] == 'SPEC_EEG_0.5'
    assert names[24] == 'RSPEC_EEG_5'
    assert names[-2:] == ['HJORTH_EEG_mobility', 'HJORTH_EEG_complexity']


def test_time_tracks_extend_columns():
    model = FeatureModel.from_dict(dict(FEATURES, time_tracks=2))
    assert model.column_names()[-2:] == ['TIME_1', 'TIME_2']


def test_bin_starts():
    assert np.allclose(bin_starts(0.5, 4.5), [0.5, 1.5, 2.5, 3.5])
    assert len(bin_starts(5, 5)) == 0


def test_invalid_models_rejected():
    above_nyquist = {**FEATURES, 'channels': [
        {'label': 'EEG', 'sample_rate': 64, 'features': {'SLOPE': {'lwr': 30, 'upr': 45}}}
    ]}
    with pytest.raises(ConfigurationError):
        StagingConfig.from_dicts({}, above_nyquist)

    no_blocks = {**FEATURES, 'channels': [{'label': 'EEG', 'sample_rate': 100, 'features': {}}]}
    with pytest.raises(ConfigurationError):
        StagingConfig.from_dicts({}, no_blocks)

    with pytest.raises(ConfigurationError):
        StagingConfig.from_dicts({}, {**FEATURES, 'window': 'triangle'})


def test_extract_all_shapes(config, recording):
    fm = EpochFeatureExtractor(config.features).extract_all(recording)
    assert fm.X.shape == (recording.n_epochs, config.n_features)
    assert fm.hjorth.shape == (recording.n_epochs, 1, 3)
    assert not fm.bad.any()
    assert not fm.flat.any()
    assert np.all(np.isfinite(fm.X))


def test_stage_spectra_differ(config, recording):
    """Delta power is higher in N3 than in wake; alpha power the reverse."""
    fm = EpochFeatureExtractor(config.features).extract_all(recording)
    stages = np.array(recording.stages())
    delta = fm.columns.index('SPEC_EEG_1.5')
    alpha = fm.columns.index('SPEC_EEG_9.5')
    assert fm.X[stages == 'N3', delta].mean() > fm.X[stages == 'W', delta].mean() + 10
    assert fm.X[stages == 'W', alpha].mean() > fm.X[stages == 'N3', alpha].mean() + 10


def test_flat_epoch_flagged(config):
    """A constant epoch is flagged flat and bad but still yields finite values."""
    n = int(30 * SAMPLE_RATE)
    extractor = EpochFeatureExtractor(config.features)
    ef = extractor.extract_epoch({'EEG': np.full(n, 3.0)})
    assert ef.flat
    assert ef.bad
    assert np.all(np.isfinite(ef.values))
    # -40 dB floor
    assert ef.values[0] == pytest.approx(10 * np.log10(POWER_FLOOR))


def test_resampled_channel(config):
    """A channel recorded at a different rate is resampled to the configured rate."""
    base = make_recording('fast', n_epochs=4, seed=3)
    data = np.vstack([np.repeat(base.epoch(i, 'EEG'), 2) for i in range(4)])
    source = ArrayEpochSource('fast', {'EEG': data}, {'EEG': 2 * SAMPLE_RATE}, base.stages())
    fm = EpochFeatureExtractor(config.features).extract_all(source)
    assert fm.X.shape == (4, config.n_features)
    assert not fm.bad.any()


def test_missing_channel(config):
    source = ArrayEpochSource('other', {'EMG': np.random.default_rng(0).standard_normal((3, 3000))},
                              {'EMG': SAMPLE_RATE})
    with pytest.raises(ConfigurationError):
        EpochFeatureExtractor(config.features).extract_all(source)


def test_time_track_columns():
    tt = time_track_columns(4, 2)
    t = np.array([-0.5, -0.25, 0.0, 0.25])
    assert np.allclose(tt[:, 0], t)
    assert np.allclose(tt[:, 1], t ** 2)
    assert time_track_columns(4, 0).shape == (4, 0)


def test_hjorth_of_sine():
    fs, f = 100.0, 5.0
    x = np.sin(2 * np.pi * f * np.arange(3000) / fs)
    activity, mobility, complexity = hjorth(x)
    assert activity == pytest.approx(0.5, rel=1e-2)
    assert mobility == pytest.approx(2 * np.sin(np.pi * f / fs), rel=1e-2)
    assert complexity == pytest.approx(1.0, rel=1e-2)
    assert hjorth(np.zeros(100)) == (0.0, 0.0, 0.0)


def test_permutation_entropy_range():
    rng = np.random.default_rng(0)
    assert permutation_entropy(np.arange(500.0), 3) == pytest.approx(0.0)
    assert permutation_entropy(rng.standard_normal(5000), 3) > 0.95


def test_spectral_slope_power_law():
    freqs = np.linspace(1, 50, 200)
    psd = freqs ** -2.0
    slope, bad = spectral_slope(freqs, psd, 30, 45)
    assert not bad
    assert slope == pytest.approx(-2.0, abs=1e-6)
    _, bad = spectral_slope(freqs, np.zeros_like(freqs), 30, 45)
    assert bad


def test_floor_power():
    values, floored = floor_power(np.array([1.0, 0.0, -2.0]))
    assert floored
    assert np.allclose(values, [1.0, POWER_FLOOR, POWER_FLOOR])
    _, floored = floor_power(np.array([1.0, 2.0]))
    assert not floored
