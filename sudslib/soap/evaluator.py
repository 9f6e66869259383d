"""
Self-Evaluation (SOAP)

Fits a classifier on a recording's own labelled component coordinates,
predicts every retained epoch with it, and reports agreement between the
observed and re-predicted stagings. A poorly self-consistent recording
points at noisy signals or unreliable staging.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..classification import AgreementStats, DiscriminantModel, agreement, fit_discriminant, predict_discriminant
from ..config import StagingConfig
from ..errors import InsufficientDataError
from ..pipeline import TARGET, IndividualFit, fit_individual
from ..recording import EpochSource
from ..stages import sufficient_classes, vocabulary

logger = logging.getLogger(__name__)


@dataclass
class SoapResult:
    """
    Outcome of one self-evaluation.

    Attributes:
        recording_id: Recording identifier
        model: Discriminant model fitted on the labelled epochs
        posteriors: (n_retained, n_stages) posteriors over the vocabulary
        predicted: Re-predicted stage per retained epoch
        observed: Stage used for fitting per retained epoch ('?' = not used)
        stats: Agreement between observed and predicted stages
    """
    recording_id: str
    model: DiscriminantModel
    posteriors: np.ndarray
    predicted: List[str]
    observed: List[str]
    stats: AgreementStats

    @property
    def kappa(self) -> float:
        return self.stats.kappa


class SelfEvaluator:
    """
    SOAP: fit and predict on the same recording.

    Usage:
        evaluator = SelfEvaluator(config)
        result = evaluator.evaluate(fit)
        print(result.kappa)
    """

    def __init__(self, config: StagingConfig):
        self.config = config
        self.vocabulary = vocabulary(config.classifier.n_stages)

    def evaluate_coordinates(self, U: np.ndarray, labels: Sequence[str],
                             recording_id: str = '',
                             min_per_class: Optional[int] = None) -> SoapResult:
        """
        Self-evaluate given coordinates and per-row labels ('?' rows are predicted only).

        Args:
            U: (n_epochs, nc) coordinates
            labels: Stage label per row
            recording_id: Used in log and error messages
            min_per_class: Epochs a class needs to count (default: required_epoch_n)

        Raises:
            InsufficientDataError: if fewer than two classes have enough epochs,
                or the classifier fit is invalid
        """
        labels = list(labels)
        required = self.config.quality.required_epoch_n if min_per_class is None else min_per_class
        n_ok = sufficient_classes(labels, required)
        if n_ok < 2:
            raise InsufficientDataError(
                f"too few stages for SOAP ({n_ok} with at least {required} epochs)", recording_id
            )
        model = fit_discriminant(U, labels, self.config.classifier.method,
                                 self.config.classifier.flat_priors)
        if not model.valid:
            raise InsufficientDataError(f"invalid classifier fit ({model.reason})", recording_id)

        post, predicted = predict_discriminant(model, U, self.vocabulary)
        stats = agreement(labels, predicted, self.vocabulary)
        logger.info(f"{recording_id}: SOAP kappa {stats.kappa:.3f} "
                    f"(3-class {stats.kappa3:.3f}) over {stats.n} epochs")
        return SoapResult(recording_id=recording_id, model=model, posteriors=post,
                          predicted=predicted, observed=labels, stats=stats)

    def evaluate(self, fit: IndividualFit, labels: Optional[Sequence[str]] = None) -> SoapResult:
        """
        Self-evaluate a processed recording.

        Args:
            fit: Valid IndividualFit
            labels: Optional per-retained-epoch labels replacing the fit's own

        Returns:
            SoapResult
        """
        if not fit.valid:
            raise InsufficientDataError(fit.reason or "invalid fit", fit.recording_id)
        if labels is None:
            if not fit.has_staging:
                raise InsufficientDataError("no staging to self-evaluate", fit.recording_id)
            labels = fit.retained_labels
        return self.evaluate_coordinates(fit.U, labels, fit.recording_id)

    def evaluate_source(self, source: EpochSource,
                        labels: Optional[Sequence[str]] = None) -> SoapResult:
        """
        Process a recording (as a target) and self-evaluate it.

        Unlabelled epochs are kept and re-predicted.
        """
        fit = fit_individual(source, self.config, TARGET, labels=labels)
        if not fit.valid:
            raise InsufficientDataError(fit.reason, fit.recording_id)
        return self.evaluate(fit)
