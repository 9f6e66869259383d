"""
Quality Filter

Decides which epochs of a recording are usable: degenerate spectra, flat
signals, cross-individual Hjorth bounds, statistical outliers in
component space and (for trainers) a per-class epoch cap.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..config import StagingConfig
from ..projection import SpectralProjector
from ..projection.scaling import MIN_SCALE
from ..stages import UNKNOWN
from .epochs import (
    BAD_SPECTRUM,
    CAPPED,
    FLAT,
    HJORTH,
    OUTLIER,
    UNLABELED,
    RetainedEpochs,
)

logger = logging.getLogger(__name__)

# Hjorth metrics screened against corpus bounds (mobility, complexity)
SCREENED_METRICS = (1, 2)


@dataclass
class HjorthBounds:
    """
    Per-channel acceptance range for Hjorth parameters.

    Attributes:
        lower: (n_channels, 3) lower bounds (activity, mobility, complexity)
        upper: (n_channels, 3) upper bounds
    """
    lower: np.ndarray
    upper: np.ndarray

    @classmethod
    def from_stats(cls, means: Sequence[np.ndarray], sds: Sequence[np.ndarray],
                   k: float) -> 'HjorthBounds':
        """
        Bounds from trainer summary statistics: mean of means +/- k x mean of SDs.

        Args:
            means: Per-trainer (n_channels, 3) Hjorth means
            sds: Per-trainer (n_channels, 3) Hjorth SDs
            k: Width in SD units
        """
        if not len(means):
            raise ValueError("no trainer statistics to derive Hjorth bounds from")
        mean = np.mean(np.stack(means), axis=0)
        sd = np.mean(np.stack(sds), axis=0)
        return cls(lower=mean - k * sd, upper=mean + k * sd)

    def violations(self, hjorth: np.ndarray) -> np.ndarray:
        """
        Epochs outside the bounds on any channel's mobility or complexity.

        Args:
            hjorth: (n_epochs, n_channels, 3) Hjorth parameters

        Returns:
            Boolean mask over epochs
        """
        if hjorth.shape[1:] != self.lower.shape:
            raise ValueError(f"Hjorth array shape {hjorth.shape[1:]} does not match bounds {self.lower.shape}")
        idx = list(SCREENED_METRICS)
        h = hjorth[:, :, idx]
        out = (h < self.lower[None, :, idx]) | (h > self.upper[None, :, idx])
        return np.any(out, axis=(1, 2))


def hjorth_summary(hjorth: np.ndarray, retained: RetainedEpochs):
    """Per-channel mean and SD of the Hjorth parameters over retained epochs."""
    h = retained.take(hjorth)
    if h.shape[0] < 2:
        return h.mean(axis=0) if h.shape[0] else np.zeros(hjorth.shape[1:]), np.zeros(hjorth.shape[1:])
    return h.mean(axis=0), h.std(axis=0, ddof=1)


class QualityFilter:
    """
    Epoch-level quality control.

    Usage:
        qf = QualityFilter(config)
        retained = qf.initial(fm, labels, require_labels=True)
        qf.remove_outliers(retained, fm.X)
        qf.cap_classes(retained, labels)
    """

    def __init__(self, config: StagingConfig, projector: Optional[SpectralProjector] = None):
        self.config = config
        self.settings = config.quality
        self.projector = projector or SpectralProjector(config.projection)

    def initial(self, n_epochs: int, bad: np.ndarray, flat: np.ndarray,
                labels: Optional[Sequence[str]] = None,
                require_labels: bool = False) -> RetainedEpochs:
        """
        Exclude unlabeled (if required), degenerate-spectrum and flat epochs.

        Args:
            n_epochs: Number of epochs in the recording
            bad: Per-epoch degenerate-spectrum flags
            flat: Per-epoch flat-signal flags
            labels: Per-epoch stage labels
            require_labels: Exclude epochs labelled '?'

        Returns:
            RetainedEpochs
        """
        retained = RetainedEpochs(n_epochs)
        if require_labels:
            if labels is None:
                raise ValueError("labels are required")
            retained.exclude_mask(np.array([s == UNKNOWN for s in labels], dtype=bool), UNLABELED)
        retained.exclude_mask(bad, BAD_SPECTRUM)
        retained.exclude_mask(flat, FLAT)
        return retained

    def apply_hjorth_bounds(self, retained: RetainedEpochs, hjorth: np.ndarray,
                            bounds: HjorthBounds) -> int:
        """Exclude retained epochs outside corpus Hjorth bounds (targets only)."""
        n = retained.exclude_mask(bounds.violations(hjorth), HJORTH)
        if n:
            logger.info(f"Excluded {n} epochs outside corpus Hjorth bounds")
        return n

    def outlier_pass(self, retained: RetainedEpochs, X: np.ndarray, k: float) -> int:
        """
        One outlier pass: decompose the retained rows and exclude epochs
        lying beyond mean +/- k SD on any of the first nc components.
        Components without spread (SD below MIN_SCALE) are not screened.

        Args:
            retained: Retained epochs (updated in place)
            X: (n_epochs, n_features) feature matrix over all epochs
            k: Threshold in SD units

        Returns:
            Number of epochs excluded by this pass
        """
        if len(retained) < 3:
            return 0
        proj = self.projector.components(retained.take(X))
        if not proj.valid:
            return 0
        U = proj.U
        mu = U.mean(axis=0)
        sd = U.std(axis=0, ddof=1)
        active = sd >= MIN_SCALE
        if not np.any(active):
            return 0
        out = np.any(np.abs(U[:, active] - mu[active]) > k * sd[active], axis=1)
        return retained.exclude_rows(out, OUTLIER)

    def remove_outliers(self, retained: RetainedEpochs, X: np.ndarray,
                        thresholds: Optional[Sequence[float]] = None) -> List[int]:
        """
        Apply the configured outlier thresholds in sequence.

        The decomposition is recomputed before every pass.

        Returns:
            Number of epochs excluded by each pass
        """
        thresholds = self.settings.outlier_thresholds if thresholds is None else thresholds
        removed = []
        for k in thresholds:
            n = self.outlier_pass(retained, X, k)
            logger.debug(f"Outlier pass k={k:g}: removed {n} epochs, {len(retained)} remain")
            removed.append(n)
        if thresholds:
            logger.info(f"Outlier removal: {sum(removed)} epochs over {len(thresholds)} passes")
        return removed

    def cap_classes(self, retained: RetainedEpochs, labels: Sequence[str],
                    max_n: Optional[int] = None, seed: Optional[int] = None) -> int:
        """
        Randomly subsample classes with more than `max_n` retained epochs (trainers only).

        Args:
            retained: Retained epochs (updated in place)
            labels: Per-epoch labels over all epochs
            max_n: Per-class cap (default: configured cap; None = no cap)
            seed: Random seed (default: configured seed)

        Returns:
            Number of epochs excluded
        """
        max_n = self.settings.max_epochs_per_class if max_n is None else max_n
        if max_n is None:
            return 0
        rng = np.random.default_rng(self.settings.seed if seed is None else seed)
        idx = retained.indices
        drop = []
        for stage in sorted({labels[i] for i in idx}):
            members = [i for i in idx if labels[i] == stage]
            if len(members) > max_n:
                keep = set(rng.choice(members, size=max_n, replace=False).tolist())
                drop.extend(i for i in members if i not in keep)
        n = retained.exclude(drop, CAPPED)
        if n:
            logger.info(f"Per-class cap of {max_n}: excluded {n} epochs")
        return n
