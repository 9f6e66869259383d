"""
Spectral Projector

Truncated SVD of a recording's scaled feature matrix ("spectral
components", PSCs), projection of another recording into that basis, and
per-component association testing against stage labels.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import f_oneway
from sklearn.utils.extmath import svd_flip

from ..config import ProjectionSettings
from .denoise import denoise_components
from .scaling import center_only, standardize

logger = logging.getLogger(__name__)


@dataclass
class Projection:
    """
    Result of fitting the projector to one recording.

    Attributes:
        U: (n_epochs, nc) component coordinates (post-processed)
        W: (nc,) singular values
        V: (n_features, nc) right singular vectors
        valid: False if the feature matrix could not be decomposed
        reason: Why the projection is invalid
    """
    U: np.ndarray
    W: np.ndarray
    V: np.ndarray
    valid: bool = True
    reason: Optional[str] = None

    @property
    def nc(self) -> int:
        return len(self.W)

    def subset(self, components: Sequence[int]) -> 'Projection':
        """Keep only some components (e.g. the stage-associated ones)."""
        idx = np.asarray(components, dtype=int)
        return Projection(U=self.U[:, idx], W=self.W[idx], V=self.V[:, idx],
                          valid=self.valid, reason=self.reason)


def _invalid(n_rows: int, n_features: int, reason: str) -> Projection:
    return Projection(U=np.zeros((n_rows, 0)), W=np.zeros(0), V=np.zeros((n_features, 0)),
                      valid=False, reason=reason)


def decompose(Z: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Thin SVD with a deterministic sign convention.

    Components with numerically zero singular values are dropped.

    Returns:
        Tuple of (U, W, V) with V as columns
    """
    U, W, Vt = np.linalg.svd(Z, full_matrices=False)
    U, Vt = svd_flip(U, Vt, u_based_decision=False)
    if len(W):
        tol = W[0] * max(Z.shape) * np.finfo(float).eps
        rank = int(np.sum(W > tol))
        U, W, Vt = U[:, :rank], W[:rank], Vt[:rank]
    return U, W, Vt.T


class SpectralProjector:
    """
    Fit and apply the per-recording orthogonal decomposition.

    Each recording is scaled to its own distribution; only the basis
    (V and W) is shared when another recording is projected.

    Usage:
        projector = SpectralProjector(config.projection)
        proj = projector.fit(X_trainer)
        U_target = projector.project(X_target, proj.V, proj.W)
    """

    def __init__(self, settings: ProjectionSettings):
        self.settings = settings

    def scale(self, X: np.ndarray):
        """Scale a feature matrix the way fit/project do; returns a ScaleResult."""
        s = self.settings
        if s.standardize_features:
            return standardize(X, robust=s.robust, winsor=s.winsor_features)
        return center_only(X)

    def _postprocess(self, U: np.ndarray) -> np.ndarray:
        s = self.settings
        if s.standardize_components and U.shape[1]:
            U = standardize(U, robust=s.robust, winsor=s.winsor_components).Z
        if s.denoise_lambda > 0:
            U = denoise_components(U, s.denoise_lambda)
        return U

    def components(self, X: np.ndarray, nc: Optional[int] = None) -> Projection:
        """
        Raw decomposition (no post-processing), used for outlier passes.

        Args:
            X: (n_epochs, n_features) feature matrix
            nc: Components to keep (default: configured nc)
        """
        X = np.asarray(X, dtype=float)
        scaled = self.scale(X)
        if not scaled.valid:
            return _invalid(X.shape[0], X.shape[1], scaled.reason)
        U, W, V = decompose(scaled.Z)
        k = min(nc or self.settings.nc, len(W))
        if k == 0:
            return _invalid(X.shape[0], X.shape[1], "feature matrix has rank 0")
        return Projection(U=U[:, :k], W=W[:k], V=V[:, :k])

    def fit(self, X: np.ndarray) -> Projection:
        """
        Fit the truncated decomposition to a recording's retained feature rows.

        Args:
            X: (n_epochs, n_features) feature matrix

        Returns:
            Projection (check `valid`)
        """
        proj = self.components(X)
        if not proj.valid:
            return proj
        if proj.nc < self.settings.nc:
            logger.debug(f"Matrix rank limits components to {proj.nc} (nc={self.settings.nc})")
        return Projection(U=self._postprocess(proj.U), W=proj.W, V=proj.V)

    def project(self, X: np.ndarray, V: np.ndarray, W: np.ndarray) -> np.ndarray:
        """
        Project another recording into a fitted basis.

        Args:
            X: (n_epochs, n_features) feature matrix of the recording to project
            V: (n_features, nc) basis of the fitted recording
            W: (nc,) singular values of the fitted recording

        Returns:
            (n_epochs, nc) coordinates comparable to the fitted recording's U
        """
        X = np.asarray(X, dtype=float)
        if X.shape[1] != V.shape[0]:
            raise ValueError(f"feature matrix has {X.shape[1]} columns, basis expects {V.shape[0]}")
        Z = self.scale(X).Z
        U = Z @ V / W
        return self._postprocess(U)


def select_components(U: np.ndarray, labels: Sequence[str],
                      p_threshold: float) -> Tuple[List[int], np.ndarray]:
    """
    One-way ANOVA of each component against the stage labels.

    Args:
        U: (n_epochs, nc) coordinates
        labels: Stage label per row
        p_threshold: Keep components with p below this (>= 1 keeps all)

    Returns:
        Tuple of (kept component indices, p-value per component)
    """
    labels = np.asarray(labels)
    classes = [c for c in np.unique(labels)]
    pvalues = np.ones(U.shape[1])
    for j in range(U.shape[1]):
        groups = [U[labels == c, j] for c in classes]
        groups = [g for g in groups if len(g) > 0]
        if len(groups) < 2:
            pvalues[j] = np.nan
            continue
        with np.errstate(divide='ignore', invalid='ignore'):
            pvalues[j] = f_oneway(*groups).pvalue

    if p_threshold >= 1:
        return list(range(U.shape[1])), pvalues
    keep = [j for j in range(U.shape[1]) if np.isfinite(pvalues[j]) and pvalues[j] < p_threshold]
    return keep, pvalues
