"""
Ensemble prediction: per-trainer posteriors, weighting strategies,
weight gating and posterior combination.
"""

from .weights import (
    WeightStrategy,
    UniformWeight,
    KLWeight,
    RepredWeight,
    SoapWeight,
    make_strategies,
    compose_weights,
)
from .gating import process_weights, percentile_count
from .predictor import EnsemblePredictor, EnsembleResult, TargetState, TrainerDiagnostics

__all__ = [
    'WeightStrategy',
    'UniformWeight',
    'KLWeight',
    'RepredWeight',
    'SoapWeight',
    'make_strategies',
    'compose_weights',
    'process_weights',
    'percentile_count',
    'EnsemblePredictor',
    'EnsembleResult',
    'TargetState',
    'TrainerDiagnostics',
]
