"""Shared fixtures: synthetic staged recordings and a small feature model."""

import numpy as np
import pytest

from sudslib.config import StagingConfig
from sudslib.library import TrainerLibrary
from sudslib.pipeline import build_trainer
from sudslib.recording import ArrayEpochSource
from sudslib.stages import LABELS_5

# Test constants
SAMPLE_RATE = 100.0  # Hz
EPOCH_SEC = 30.0
N_EPOCHS = 100

# Dominant rhythms per stage: (frequency Hz, amplitude)
STAGE_RHYTHMS = {
    'W': [(10.0, 3.0), (22.0, 1.0)],   # alpha, beta
    'N1': [(5.5, 2.0)],                # theta
    'N2': [(13.0, 3.0), (3.0, 1.5)],   # spindles over slow activity
    'N3': [(1.5, 6.0)],                # delta
    'R': [(7.5, 2.0), (18.0, 1.5)],    # sawtooth theta, mixed fast
}

FEATURES = {
    'epoch_sec': EPOCH_SEC,
    'segment_sec': 4,
    'segment_overlap': 2,
    'window': 'tukey50',
    'time_tracks': 0,
    'channels': [
        {
            'label': 'EEG',
            'sample_rate': SAMPLE_RATE,
            'features': {
                'SPEC': {'lwr': 0.5, 'upr': 25},
                'RSPEC': {'lwr': 5, 'upr': 20, 'z_lwr': 30, 'z_upr': 45},
                'SLOPE': {'lwr': 30, 'upr': 45, 'threshold': 3},
                'SKEW': {},
                'KURTOSIS': {},
                'HJORTH': {},
            },
        },
    ],
}


def stage_sequence(n_epochs: int = N_EPOCHS, block: int = 5):
    """Stages in runs of `block` epochs cycling through N1, N2, N3, R, W."""
    return [LABELS_5[(i // block) % len(LABELS_5)] for i in range(n_epochs)]


def make_recording(recording_id: str, n_epochs: int = N_EPOCHS, seed: int = 0,
                   stages=None, flat: bool = False, noise: float = 1.0) -> ArrayEpochSource:
    """
    Synthesise a one-channel recording whose stages have distinct spectra.

    Args:
        recording_id: Identifier
        n_epochs: Number of epochs
        seed: Random seed (each seed gives a slightly different individual)
        stages: Stage per epoch (default: stage_sequence)
        flat: Make the channel a constant signal
        noise: White noise SD
    """
    rng = np.random.default_rng(seed)
    stages = list(stages) if stages is not None else stage_sequence(n_epochs)
    n = int(EPOCH_SEC * SAMPLE_RATE)
    t = np.arange(n) / SAMPLE_RATE
    gain = 1.0 + 0.1 * rng.standard_normal()
    data = np.zeros((n_epochs, n))
    if not flat:
        for i, stage in enumerate(stages):
            x = noise * rng.standard_normal(n)
            for freq, amp in STAGE_RHYTHMS.get(stage, []):
                phase = rng.uniform(0, 2 * np.pi)
                x += gain * amp * np.sin(2 * np.pi * freq * t + phase)
            data[i] = x
    return ArrayEpochSource(recording_id, {'EEG': data}, {'EEG': SAMPLE_RATE}, stages)


@pytest.fixture
def config():
    """Default staging settings with the test feature model."""
    return StagingConfig.from_dicts({}, FEATURES)


@pytest.fixture
def recording():
    return make_recording('rec_a', seed=1)


@pytest.fixture
def target_recording():
    return make_recording('target', seed=99)


@pytest.fixture
def trainers(config):
    """Two fitted trainers (with stored features)."""
    return [build_trainer(make_recording(f"tr{i}", seed=10 + i), config, include_features=True)
            for i in range(2)]


@pytest.fixture
def library(trainers, config):
    return TrainerLibrary(trainers, config)
