"""
Agreement metrics between two stagings.

Thin wrappers around scikit-learn metrics that drop unscored epochs and
return 0 rather than NaN for degenerate comparisons.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    confusion_matrix,
    matthews_corrcoef,
    precision_recall_fscore_support,
)

from ..stages import UNKNOWN, LABELS_3, to_nrw, to_rem


def _paired(a: Sequence[str], b: Sequence[str]) -> Tuple[List[str], List[str]]:
    if len(a) != len(b):
        raise ValueError(f"cannot compare stagings of length {len(a)} and {len(b)}")
    pairs = [(x, y) for x, y in zip(a, b) if x != UNKNOWN and y != UNKNOWN]
    return [x for x, _ in pairs], [y for _, y in pairs]


def kappa(observed: Sequence[str], predicted: Sequence[str]) -> float:
    """Cohen's kappa over epochs scored in both stagings."""
    a, b = _paired(observed, predicted)
    if not a:
        return 0.0
    if a == b:
        return 1.0
    value = cohen_kappa_score(a, b)
    return 0.0 if not np.isfinite(value) else float(value)


def mcc(observed: Sequence[str], predicted: Sequence[str]) -> float:
    """Matthews correlation coefficient over epochs scored in both stagings."""
    a, b = _paired(observed, predicted)
    if not a:
        return 0.0
    if a == b:
        return 1.0
    value = matthews_corrcoef(a, b)
    return 0.0 if not np.isfinite(value) else float(value)


def agreement_score(observed: Sequence[str], predicted: Sequence[str],
                    metric: str = 'kappa', classes: str = 'full') -> float:
    """
    Agreement under a chosen metric and class collapsing.

    Args:
        observed: Reference labels
        predicted: Predicted labels
        metric: 'kappa' or 'mcc'
        classes: 'full' (as given), 'nrw' (NR/R/W) or 'rem' (R vs not)
    """
    if classes == 'nrw':
        observed, predicted = to_nrw(observed), to_nrw(predicted)
    elif classes == 'rem':
        observed, predicted = to_rem(observed), to_rem(predicted)
    elif classes != 'full':
        raise ValueError(f"Unknown class collapsing: {classes}")

    if metric == 'kappa':
        return kappa(observed, predicted)
    if metric == 'mcc':
        return mcc(observed, predicted)
    raise ValueError(f"Unknown agreement metric: {metric}")


@dataclass
class AgreementStats:
    """
    Agreement between reference and predicted stagings.

    Attributes:
        labels: Row/column order of the confusion matrix
        confusion: Confusion matrix (rows = observed, columns = predicted)
        n: Number of epochs compared
        kappa: Cohen's kappa
        accuracy: Proportion of matching epochs
        mcc: Matthews correlation coefficient
        precision/recall/f1: Macro-averaged values
        weighted_precision/weighted_recall/weighted_f1: Support-weighted values
        per_class: label -> {'precision', 'recall', 'f1', 'support'}
        kappa3: Kappa after collapsing to NR/R/W
        accuracy3: Accuracy after collapsing to NR/R/W
    """
    labels: List[str]
    confusion: np.ndarray
    n: int
    kappa: float
    accuracy: float
    mcc: float
    precision: float
    recall: float
    f1: float
    weighted_precision: float
    weighted_recall: float
    weighted_f1: float
    per_class: Dict[str, Dict[str, float]] = field(default_factory=dict)
    kappa3: float = 0.0
    accuracy3: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'n': self.n,
            'kappa': self.kappa,
            'accuracy': self.accuracy,
            'mcc': self.mcc,
            'precision': self.precision,
            'recall': self.recall,
            'f1': self.f1,
            'weighted_precision': self.weighted_precision,
            'weighted_recall': self.weighted_recall,
            'weighted_f1': self.weighted_f1,
            'kappa3': self.kappa3,
            'accuracy3': self.accuracy3,
            'per_class': self.per_class,
            'labels': list(self.labels),
            'confusion': self.confusion.tolist(),
        }


def agreement(observed: Sequence[str], predicted: Sequence[str],
              labels: Optional[Sequence[str]] = None) -> AgreementStats:
    """
    Full agreement statistics between two stagings.

    Args:
        observed: Reference label per epoch ('?' = unscored)
        predicted: Predicted label per epoch ('?' = unscored)
        labels: Label order (default: sorted union of the labels present)

    Returns:
        AgreementStats
    """
    a, b = _paired(observed, predicted)
    if labels is None:
        labels = sorted(set(a) | set(b))
    labels = list(labels)

    if not a:
        k = len(labels)
        return AgreementStats(labels=labels, confusion=np.zeros((k, k), dtype=int), n=0,
                              kappa=0.0, accuracy=0.0, mcc=0.0, precision=0.0, recall=0.0,
                              f1=0.0, weighted_precision=0.0, weighted_recall=0.0,
                              weighted_f1=0.0)

    cm = confusion_matrix(a, b, labels=labels)
    p, r, f, s = precision_recall_fscore_support(a, b, labels=labels, zero_division=0)
    mp, mr, mf, _ = precision_recall_fscore_support(a, b, labels=labels, average='macro',
                                                    zero_division=0)
    wp, wr, wf, _ = precision_recall_fscore_support(a, b, labels=labels, average='weighted',
                                                    zero_division=0)
    per_class = {
        lab: {'precision': float(p[i]), 'recall': float(r[i]), 'f1': float(f[i]), 'support': int(s[i])}
        for i, lab in enumerate(labels)
    }
    a3, b3 = to_nrw(a), to_nrw(b)

    return AgreementStats(
        labels=labels,
        confusion=cm,
        n=len(a),
        kappa=kappa(a, b),
        accuracy=float(accuracy_score(a, b)),
        mcc=mcc(a, b),
        precision=float(mp),
        recall=float(mr),
        f1=float(mf),
        weighted_precision=float(wp),
        weighted_recall=float(wr),
        weighted_f1=float(wf),
        per_class=per_class,
        kappa3=kappa(a3, b3),
        accuracy3=float(accuracy_score(a3, b3)),
    )


def confusion_3class(observed: Sequence[str], predicted: Sequence[str]) -> np.ndarray:
    """Confusion matrix after collapsing to NR/R/W."""
    a, b = _paired(to_nrw(observed), to_nrw(predicted))
    return confusion_matrix(a, b, labels=LABELS_3) if a else np.zeros((3, 3), dtype=int)
