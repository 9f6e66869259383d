"""
Iterative Refinement (RESOAP)

Keeps a working label vector over a recording's retained epochs. Labels
can be edited one epoch at a time, or thinned to N seed epochs per
class; each refit trains on the currently labelled epochs, re-predicts
every retained epoch and reports what changed since the previous fit.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..classification import AgreementStats, agreement, kappa
from ..config import StagingConfig
from ..errors import InsufficientDataError
from ..pipeline import IndividualFit
from ..stages import UNKNOWN, count_stages, normalize_stage, vocabulary
from .evaluator import SelfEvaluator

logger = logging.getLogger(__name__)

# Policies for classes with fewer than `resoap_required_n` labelled epochs
DROP = 'drop'
KEEP = 'keep'


@dataclass
class RefineResult:
    """
    Outcome of one refit.

    Attributes:
        labels: Working labels used for this fit (per retained epoch)
        predicted: Predicted stage per retained epoch
        posteriors: (n_retained, n_stages) posteriors
        n_changed: Working labels that differ from those of the previous fit
        n_prediction_changed: Predictions that differ from the previous fit
        dropped_classes: Classes left out of the fit for having too few epochs
        stats: Agreement between working labels and predictions
        original_stats: Agreement between the recording's original staging and predictions
    """
    labels: List[str]
    predicted: List[str]
    posteriors: np.ndarray
    n_changed: int
    n_prediction_changed: int
    dropped_classes: List[str]
    stats: AgreementStats
    original_stats: Optional[AgreementStats] = None

    @property
    def kappa(self) -> float:
        return self.stats.kappa


class Refiner:
    """
    RESOAP working state for one recording.

    Usage:
        refiner = Refiner(config, fit)
        refiner.refit()
        refiner.alter(120, 'R')
        result = refiner.refit()
        result.n_changed   # 1
    """

    def __init__(self, config: StagingConfig, fit: IndividualFit,
                 labels: Optional[Sequence[str]] = None):
        """
        Args:
            config: Staging configuration
            fit: Valid IndividualFit of the recording
            labels: Optional proposed staging over all epochs (default: the recording's own)
        """
        if not fit.valid:
            raise InsufficientDataError(fit.reason or "invalid fit", fit.recording_id)
        self.config = config
        self.fit = fit
        self.evaluator = SelfEvaluator(config)
        n_stages = config.classifier.n_stages

        if labels is not None:
            if len(labels) != fit.n_epochs:
                raise ValueError(f"{len(labels)} labels for {fit.n_epochs} epochs")
            full = [normalize_stage(s, n_stages) for s in labels]
        elif fit.labels is not None:
            full = list(fit.labels)
        else:
            full = [UNKNOWN] * fit.n_epochs

        self.original: Optional[List[str]] = fit.retained_labels if fit.has_staging else None
        self.labels: List[str] = fit.retained.take(full)
        self._last_labels: List[str] = list(self.labels)
        self._last_predicted: Optional[List[str]] = None
        self._rng = np.random.default_rng(config.quality.seed)

    def alter(self, epoch: int, stage: str) -> bool:
        """
        Change the working label of one epoch.

        Args:
            epoch: 0-based epoch index in the recording
            stage: New stage ('?' removes the label)

        Returns:
            False (with a warning) if the epoch is not retained
        """
        if epoch not in self.fit.retained:
            logger.warning(f"{self.fit.recording_id}: epoch {epoch} is not retained "
                           f"({self.fit.retained.reason(epoch) or 'out of range'}); label unchanged")
            return False
        pos = self.fit.retained.position(epoch)
        self.labels[pos] = normalize_stage(stage, self.config.classifier.n_stages)
        return True

    def pick(self, n: int, exact: bool = False, seed: Optional[int] = None) -> List[str]:
        """
        Keep only `n` randomly chosen labelled epochs per class; all others become '?'.

        Args:
            n: Seed epochs per class
            exact: Drop classes with fewer than n labelled epochs entirely
            seed: Random seed (default: continue the configured generator)

        Returns:
            The new working labels
        """
        rng = self._rng if seed is None else np.random.default_rng(seed)
        current = list(self.labels)
        picked = [UNKNOWN] * len(current)
        for stage in count_stages(current):
            rows = [i for i, s in enumerate(current) if s == stage]
            if exact and len(rows) < n:
                continue
            rng.shuffle(rows)
            for i in rows[:n]:
                picked[i] = stage
        self.labels = picked
        logger.info(f"{self.fit.recording_id}: picked {n} epochs per class "
                    f"({sum(1 for s in picked if s != UNKNOWN)} labelled)")
        return list(picked)

    def refit(self, policy: str = DROP) -> RefineResult:
        """
        Refit on the labelled epochs and re-predict all retained epochs.

        Args:
            policy: 'drop' leaves classes with too few labelled epochs out of
                the fit, 'keep' fits them anyway

        Returns:
            RefineResult

        Raises:
            InsufficientDataError: if fewer than two usable classes remain, or
                the labelled epochs do not outnumber the components plus one
        """
        if policy not in (DROP, KEEP):
            raise ValueError(f"Unknown policy: {policy}")
        required = self.config.quality.resoap_required_n
        counts = count_stages(self.labels)
        dropped = [s for s, k in counts.items() if k < required] if policy == DROP else []
        train = [UNKNOWN if s in dropped else s for s in self.labels]

        nc = self.fit.U.shape[1]
        n_train = sum(1 for s in train if s != UNKNOWN)
        if n_train <= nc + 1:
            raise InsufficientDataError(
                f"{n_train} labelled epochs for {nc} components, need more than {nc + 1}",
                self.fit.recording_id,
            )
        model_result = self.evaluator.evaluate_coordinates(
            self.fit.U, train, self.fit.recording_id,
            min_per_class=required if policy == DROP else 1,
        )

        predicted = model_result.predicted
        n_changed = sum(1 for a, b in zip(self.labels, self._last_labels) if a != b)
        n_pred_changed = (sum(1 for a, b in zip(predicted, self._last_predicted) if a != b)
                          if self._last_predicted is not None else 0)

        vocab = vocabulary(self.config.classifier.n_stages)
        result = RefineResult(
            labels=list(self.labels),
            predicted=predicted,
            posteriors=model_result.posteriors,
            n_changed=n_changed,
            n_prediction_changed=n_pred_changed,
            dropped_classes=dropped,
            stats=agreement(self.labels, predicted, vocab),
            original_stats=agreement(self.original, predicted, vocab) if self.original else None,
        )
        self._last_labels = list(self.labels)
        self._last_predicted = list(predicted)
        logger.info(f"{self.fit.recording_id}: RESOAP {n_changed} label(s) changed, "
                    f"{n_pred_changed} prediction(s) changed, kappa {result.kappa:.3f}")
        return result

    def agreement_with_original(self) -> Optional[float]:
        """Kappa between the working labels and the recording's original staging."""
        if self.original is None:
            return None
        return kappa(self.original, self.labels)
