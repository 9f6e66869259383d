"""
Discriminant Classifier

Linear and quadratic discriminant analysis on spectral-component
coordinates, backed by scikit-learn's estimators. Degenerate data is
caught before fitting: a model with `valid=False` and a reason is
returned, and the caller decides whether the recording is unusable.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.discriminant_analysis import LinearDiscriminantAnalysis, QuadraticDiscriminantAnalysis

from ..stages import UNKNOWN

logger = logging.getLogger(__name__)

# Relative tolerance for rank and constant-variable checks
TOL = 1e-4


@dataclass
class DiscriminantModel:
    """
    A fitted LDA or QDA model.

    Attributes:
        method: 'lda' or 'qda'
        classes: Class labels observed in the training data (sorted)
        priors: Prior probability per class
        means: (n_classes, n_components) class means
        counts: Training epochs per class
        estimator: The fitted scikit-learn estimator
        valid: Whether the fit succeeded
        reason: Why the fit is invalid
    """
    method: str
    classes: List[str]
    priors: np.ndarray = field(default_factory=lambda: np.zeros(0))
    means: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    counts: Dict[str, int] = field(default_factory=dict)
    estimator: Optional[object] = None
    valid: bool = False
    reason: Optional[str] = None

    @property
    def n_classes(self) -> int:
        return len(self.classes)


def _invalid(method: str, classes: List[str], reason: str) -> DiscriminantModel:
    logger.debug(f"{method.upper()} fit invalid: {reason}")
    return DiscriminantModel(method=method, classes=classes, valid=False, reason=reason)


def fit_discriminant(U: np.ndarray, labels: Sequence[str], method: str = 'lda',
                     flat_priors: bool = False) -> DiscriminantModel:
    """
    Fit a discriminant model.

    Rows labelled '?' are ignored.

    Args:
        U: (n_epochs, n_components) coordinates
        labels: Stage label per row
        method: 'lda' or 'qda'
        flat_priors: Use uniform instead of empirical class priors

    Returns:
        DiscriminantModel (check `valid`)
    """
    if method not in ('lda', 'qda'):
        raise ValueError(f"Unknown discriminant method: {method}")

    U = np.asarray(U, dtype=float)
    labels = np.asarray(labels)
    if U.shape[0] != len(labels):
        raise ValueError(f"{U.shape[0]} rows but {len(labels)} labels")

    keep = labels != UNKNOWN
    x = U[keep]
    y = labels[keep]
    classes = sorted(set(y.tolist()))

    if x.shape[1] == 0:
        return _invalid(method, classes, "no components")
    if len(classes) < 2:
        return _invalid(method, classes, f"{len(classes)} class(es) observed, need at least 2")
    if not np.all(np.isfinite(x)):
        return _invalid(method, classes, "non-finite coordinates")

    groups = np.array([classes.index(s) for s in y])
    counts = np.bincount(groups, minlength=len(classes))
    priors = np.full(len(classes), 1.0 / len(classes)) if flat_priors else counts / len(y)
    means = np.vstack([x[groups == g].mean(axis=0) for g in range(len(classes))])

    if method == 'lda':
        problem = _lda_problem(x, groups, classes, priors, means)
        estimator = LinearDiscriminantAnalysis(solver='svd', priors=priors, tol=TOL)
    else:
        problem = _qda_problem(x, groups, classes, means)
        estimator = QuadraticDiscriminantAnalysis(priors=priors, tol=TOL)
    if problem:
        return _invalid(method, classes, problem)

    try:
        estimator.fit(x, y)
    except (ValueError, np.linalg.LinAlgError) as e:
        return _invalid(method, classes, f"fit failed: {e}")

    return DiscriminantModel(method=method, classes=classes, priors=priors, means=means,
                             counts={c: int(k) for c, k in zip(classes, counts)},
                             estimator=estimator, valid=True)


def _lda_problem(x, groups, classes, priors, means) -> Optional[str]:
    n = x.shape[0]
    if n <= len(classes):
        return "not enough epochs for the number of classes"

    within = x - means[groups]
    sd = np.std(within, axis=0, ddof=1)
    constant = np.flatnonzero(sd < TOL)
    if len(constant):
        return f"variable(s) {constant.tolist()} constant within groups"

    spread = (means - priors @ means) / sd
    if np.all(np.abs(spread) < TOL):
        return "group means are numerically identical"
    return None


def _qda_problem(x, groups, classes, means) -> Optional[str]:
    p = x.shape[1]
    for g, label in enumerate(classes):
        xg = x[groups == g]
        if xg.shape[0] < p + 1:
            return f"class {label} too small for QDA ({xg.shape[0]} epochs, {p} components)"
        if np.any(np.std(xg, axis=0) < TOL):
            return f"a variable is constant within class {label}"
        if np.linalg.matrix_rank(xg - means[g]) < p:
            return f"rank deficiency in class {label}"
    return None


def predict_posteriors(model: DiscriminantModel, U: np.ndarray) -> np.ndarray:
    """
    Posterior probabilities over the model's own classes.

    Args:
        model: A valid DiscriminantModel
        U: (n_epochs, n_components) coordinates

    Returns:
        (n_epochs, n_classes) posteriors; rows sum to 1
    """
    if not model.valid:
        raise ValueError(f"cannot predict with an invalid model ({model.reason})")
    U = np.asarray(U, dtype=float)
    if U.ndim != 2 or U.shape[1] != model.means.shape[1]:
        raise ValueError(f"coordinates have shape {U.shape}, model expects {model.means.shape[1]} components")
    if U.shape[0] == 0:
        return np.zeros((0, model.n_classes))
    # estimator.classes_ is sorted, as are model.classes
    return model.estimator.predict_proba(U)


def widen(posteriors: np.ndarray, classes: Sequence[str], vocabulary: Sequence[str]) -> np.ndarray:
    """
    Place posteriors over a model's classes into the full vocabulary.

    Classes the model never saw get probability 0.
    """
    out = np.zeros((posteriors.shape[0], len(vocabulary)))
    for j, c in enumerate(classes):
        if c not in vocabulary:
            raise ValueError(f"class '{c}' not in vocabulary {list(vocabulary)}")
        out[:, list(vocabulary).index(c)] = posteriors[:, j]
    return out


def predict_discriminant(model: DiscriminantModel, U: np.ndarray,
                         vocabulary: Optional[Sequence[str]] = None) -> Tuple[np.ndarray, List[str]]:
    """
    Predict posteriors and most likely labels.

    Args:
        model: A valid DiscriminantModel
        U: (n_epochs, n_components) coordinates
        vocabulary: If given, posteriors are widened to these columns

    Returns:
        Tuple of (posterior matrix, most likely label per row)
    """
    post = predict_posteriors(model, U)
    labels = [model.classes[i] for i in np.argmax(post, axis=1)] if len(post) else []
    if vocabulary is not None:
        post = widen(post, model.classes, vocabulary)
    return post, labels
