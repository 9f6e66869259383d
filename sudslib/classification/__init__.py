"""
Stage classification: linear / quadratic discriminant analysis and
agreement statistics.
"""

from .discriminant import (
    DiscriminantModel,
    fit_discriminant,
    predict_discriminant,
    predict_posteriors,
    widen,
)
from .metrics import (
    AgreementStats,
    agreement,
    agreement_score,
    confusion_3class,
    kappa,
    mcc,
)

__all__ = [
    'DiscriminantModel',
    'fit_discriminant',
    'predict_discriminant',
    'predict_posteriors',
    'widen',
    'AgreementStats',
    'agreement',
    'agreement_score',
    'confusion_3class',
    'kappa',
    'mcc',
]
