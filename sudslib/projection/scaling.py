"""
Feature and component scaling.

Column standardisation (z-score with sample SD, or robust median / IQR
with optional winsorisation) applied to a single recording's own matrix.
Scaling parameters are never carried over to another recording.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.stats.mstats import winsorize
from sklearn.preprocessing import RobustScaler, StandardScaler

# IQR of a standard normal is 1/0.7413 SDs
IQR_TO_SD = 0.7413

# Columns with a scale below this are treated as constant
MIN_SCALE = 1e-12


@dataclass
class ScaleResult:
    """
    Scaled matrix plus validity.

    Attributes:
        Z: Scaled matrix (same shape as input)
        valid: False if a column has no variability
        constant_columns: Indices of columns without variability
    """
    Z: np.ndarray
    valid: bool
    constant_columns: np.ndarray

    @property
    def reason(self) -> Optional[str]:
        if self.valid:
            return None
        return f"no variability in {len(self.constant_columns)} feature column(s)"


def standardize(X: np.ndarray, robust: bool = False, winsor: float = 0.0) -> ScaleResult:
    """
    Standardise every column of a matrix.

    Args:
        X: (n_rows, n_columns) matrix
        robust: Use median and 0.7413 x IQR instead of mean and SD
        winsor: Winsorisation quantile applied before robust scaling (0 = off)

    Returns:
        ScaleResult
    """
    X = np.asarray(X, dtype=float)
    n = X.shape[0]
    if n < 2:
        return ScaleResult(Z=np.zeros_like(X), valid=False,
                           constant_columns=np.arange(X.shape[1]))

    if robust:
        if winsor > 0:
            X = np.asarray(winsorize(X, limits=(winsor, winsor), axis=0))
        scaler = RobustScaler(quantile_range=(25.0, 75.0))
        iqr = np.subtract(*np.percentile(X, [75, 25], axis=0))
        constant = np.flatnonzero(iqr * IQR_TO_SD < MIN_SCALE)
        Z = scaler.fit_transform(X) / IQR_TO_SD
    else:
        scaler = StandardScaler()
        constant = np.flatnonzero(np.sqrt(np.var(X, axis=0)) < MIN_SCALE)
        # sample SD (n - 1 denominator)
        Z = scaler.fit_transform(X) * np.sqrt((n - 1) / n)

    if len(constant):
        Z[:, constant] = 0.0
    return ScaleResult(Z=Z, valid=len(constant) == 0, constant_columns=constant)


def center(X: np.ndarray) -> np.ndarray:
    """Column-centre without rescaling."""
    X = np.asarray(X, dtype=float)
    return X - X.mean(axis=0) if X.shape[0] else X


def center_only(X: np.ndarray) -> ScaleResult:
    """Centre columns without rescaling, still flagging constant columns."""
    Z = center(X)
    if Z.shape[0] < 2:
        return ScaleResult(Z=Z, valid=False, constant_columns=np.arange(Z.shape[1]))
    constant = np.flatnonzero(np.ptp(Z, axis=0) < MIN_SCALE)
    return ScaleResult(Z=Z, valid=len(constant) == 0, constant_columns=constant)


def unit_scale(values: np.ndarray) -> np.ndarray:
    """
    Min-max rescale to [0, 1].

    A constant vector maps to all ones.
    """
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return values
    lo, hi = float(np.min(values)), float(np.max(values))
    if hi - lo <= 0:
        return np.ones_like(values)
    return (values - lo) / (hi - lo)
