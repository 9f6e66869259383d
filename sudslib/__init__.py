"""
sudslib - Automated Sleep Staging

Stages the epochs of a sleep recording from a corpus of previously staged
recordings ("trainers"). Each trainer carries a spectral projection and a
discriminant classifier; a target is projected into every trainer's basis,
classified, and the weighted trainer posteriors are averaged.

Core modules:
- features: Spectral and time-domain features per channel and epoch
- quality: Epoch exclusion (bad spectra, flat signals, Hjorth bounds, outliers)
- projection: Standardisation, truncated SVD and component selection
- classification: LDA / QDA and agreement statistics
- library: Trainer corpus format (text and binary) and streaming I/O
- ensemble: Trainer weighting and posterior combination
- soap: Self-evaluation and iterative refinement of a staging
- reports: Per-epoch tables, durations, label files and console reports

Example usage:
    from sudslib import StagingConfig, TrainerLibrary, EnsemblePredictor, build_target
    from sudslib.recording import load_npz

    config = StagingConfig.load()
    library = TrainerLibrary.load('corpus.db', config)
    target = build_target(load_npz('night1.npz'), config, library.hjorth_bounds())
    result = EnsemblePredictor(config, library).predict(target)
    labels = result.epoch_labels()
"""

__version__ = "0.1.0"

# Configuration and errors
from sudslib.config import StagingConfig, ConfigLoader, get_config
from sudslib.errors import (
    StagingError,
    ConfigurationError,
    LibraryFormatError,
    InsufficientDataError,
    NoValidTrainersError,
    ScoringCancelled,
)

# Recordings and features
from sudslib.recording import EpochSource, ArrayEpochSource, load_npz, save_npz
from sudslib.features import EpochFeatureExtractor, FeatureModel

# Per-recording processing and corpora
from sudslib.pipeline import (
    IndividualFit,
    fit_individual,
    build_trainer,
    build_target,
    build_library,
)
from sudslib.library import Trainer, TrainerLibrary, read_library, write_library, copy_library

# Scoring
from sudslib.ensemble import EnsemblePredictor, EnsembleResult
from sudslib.soap import SelfEvaluator, Refiner

__all__ = [
    # Configuration and errors
    'StagingConfig',
    'ConfigLoader',
    'get_config',
    'StagingError',
    'ConfigurationError',
    'LibraryFormatError',
    'InsufficientDataError',
    'NoValidTrainersError',
    'ScoringCancelled',
    # Recordings and features
    'EpochSource',
    'ArrayEpochSource',
    'load_npz',
    'save_npz',
    'EpochFeatureExtractor',
    'FeatureModel',
    # Per-recording processing and corpora
    'IndividualFit',
    'fit_individual',
    'build_trainer',
    'build_target',
    'build_library',
    'Trainer',
    'TrainerLibrary',
    'read_library',
    'write_library',
    'copy_library',
    # Scoring
    'EnsemblePredictor',
    'EnsembleResult',
    'SelfEvaluator',
    'Refiner',
]
