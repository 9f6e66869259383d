"""
Per-recording processing.

Runs feature extraction, quality control, projection and (for trainers)
component selection and classifier fitting on one recording, in the
same order for trainers, targets and self-evaluation. Lower layers
report validity; `build_trainer` and `build_target` turn an invalid fit
into an InsufficientDataError, and `build_library` skips such recordings.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import numpy as np

from .classification import DiscriminantModel, fit_discriminant, kappa, predict_discriminant
from .config import StagingConfig
from .errors import InsufficientDataError
from .features import EpochFeatureExtractor, FeatureMatrix, time_track_columns
from .library import LibraryWriter, Trainer, TrainerRecord
from .projection import Projection, SpectralProjector, select_components
from .quality import SELF_CLASSIFICATION, HjorthBounds, QualityFilter, RetainedEpochs, hjorth_summary
from .recording import EpochSource
from .stages import UNKNOWN, count_stages, normalize_stages, sufficient_classes

logger = logging.getLogger(__name__)

TRAINER = 'trainer'
TARGET = 'target'
ROLES = (TRAINER, TARGET)


@dataclass
class IndividualFit:
    """
    Result of processing one recording.

    Attributes:
        recording_id: Recording identifier
        role: 'trainer' or 'target'
        retained: Retained epochs with exclusion reasons
        labels: Normalised stage label per epoch (all epochs), or None if unstaged
        features: Feature matrix over all epochs
        X: Feature rows of retained epochs (time tracks appended)
        projection: Spectral projection of X
        model: Fitted discriminant model (trainers only)
        hjorth_mean: (n_channels, 3) Hjorth means over retained epochs
        hjorth_sd: (n_channels, 3) Hjorth SDs over retained epochs
        component_pvalues: ANOVA p-value per component before selection (trainers only)
        valid: Whether the recording is usable
        reason: Why it is not
    """
    recording_id: str
    role: str
    retained: RetainedEpochs
    labels: Optional[List[str]] = None
    features: Optional[FeatureMatrix] = None
    X: Optional[np.ndarray] = None
    projection: Optional[Projection] = None
    model: Optional[DiscriminantModel] = None
    hjorth_mean: Optional[np.ndarray] = None
    hjorth_sd: Optional[np.ndarray] = None
    component_pvalues: Optional[np.ndarray] = None
    valid: bool = False
    reason: Optional[str] = None
    info: Dict = field(default_factory=dict)

    @property
    def n_epochs(self) -> int:
        return self.retained.n_epochs

    @property
    def U(self) -> np.ndarray:
        return self.projection.U

    @property
    def has_staging(self) -> bool:
        return self.labels is not None and any(s != UNKNOWN for s in self.labels)

    @property
    def retained_labels(self) -> Optional[List[str]]:
        """Observed labels of the retained epochs (None if unstaged)."""
        if self.labels is None:
            return None
        return self.retained.take(self.labels)

    def to_record(self, include_features: bool = False) -> TrainerRecord:
        """Persisted form of a valid trainer fit."""
        if not self.valid or self.role != TRAINER:
            raise ValueError(f"{self.recording_id}: only a valid trainer fit can be stored")
        labels = self.retained_labels
        return TrainerRecord(
            trainer_id=self.recording_id,
            hjorth_mean=self.hjorth_mean,
            hjorth_sd=self.hjorth_sd,
            class_counts=count_stages(labels),
            epochs=self.retained.indices,
            labels=labels,
            W=self.projection.W,
            V=self.projection.V,
            U=self.projection.U,
            X=self.X if include_features else None,
        )


def _reject(fit: IndividualFit, reason: str) -> IndividualFit:
    fit.valid = False
    fit.reason = reason
    logger.info(f"{fit.recording_id}: unusable {fit.role} ({reason})")
    return fit


def fit_individual(source: EpochSource, config: StagingConfig, role: str = TRAINER,
                   hjorth_bounds: Optional[HjorthBounds] = None,
                   labels: Optional[List[str]] = None,
                   extractor: Optional[EpochFeatureExtractor] = None) -> IndividualFit:
    """
    Process one recording.

    Args:
        source: Epoch source
        config: Staging configuration
        role: 'trainer' (labels required, classifier fitted) or 'target'
        hjorth_bounds: Corpus Hjorth bounds (targets only)
        labels: Stage annotation overriding the source's own
        extractor: Feature extractor to reuse

    Returns:
        IndividualFit (check `valid`)
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}. Available: {ROLES}")

    extractor = extractor or EpochFeatureExtractor(config.features)
    projector = SpectralProjector(config.projection)
    qf = QualityFilter(config, projector)
    q = config.quality

    fm = extractor.extract_all(source)
    raw = labels if labels is not None else source.stages()
    stages = normalize_stages(raw, config.classifier.n_stages) if raw is not None else None
    if stages is not None and len(stages) != fm.n_epochs:
        raise ValueError(f"{source.recording_id}: {len(stages)} stages for {fm.n_epochs} epochs")

    retained = RetainedEpochs(fm.n_epochs)
    fit = IndividualFit(recording_id=source.recording_id, role=role, retained=retained,
                        labels=stages, features=fm)

    if role == TRAINER and stages is None:
        return _reject(fit, "no staging")

    retained = qf.initial(fm.n_epochs, fm.bad, fm.flat, stages, require_labels=(role == TRAINER))
    fit.retained = retained
    if role == TARGET and hjorth_bounds is not None:
        qf.apply_hjorth_bounds(retained, fm.hjorth, hjorth_bounds)

    if len(retained) < q.min_epochs:
        return _reject(fit, f"too few epochs ({len(retained)} < {q.min_epochs})")

    scaled = projector.scale(retained.take(fm.X))
    if not scaled.valid:
        return _reject(fit, scaled.reason)

    fit.info['outliers'] = qf.remove_outliers(retained, fm.X)
    if role == TRAINER:
        qf.cap_classes(retained, stages)

    if len(retained) < q.min_epochs:
        return _reject(fit, f"too few epochs ({len(retained)} < {q.min_epochs})")

    if role == TRAINER:
        n_ok = sufficient_classes(retained.take(stages), q.required_epoch_n)
        if n_ok < 2:
            return _reject(fit, f"too few stages ({n_ok} with at least {q.required_epoch_n} epochs)")

    fit = _project_and_classify(fit, config, projector)
    if not fit.valid:
        return fit

    if role == TRAINER and config.classifier.self_classification:
        fit = _self_classification(fit, config, projector)
        if not fit.valid:
            return fit

    if role == TRAINER and config.classifier.self_kappa <= 1:
        _, predicted = predict_discriminant(fit.model, fit.U)
        k = kappa(fit.retained_labels, predicted)
        fit.info['self_kappa'] = k
        if k < config.classifier.self_kappa:
            return _reject(fit, f"failed self-classification threshold (kappa {k:.3f} < "
                                f"{config.classifier.self_kappa:g})")

    fit.hjorth_mean, fit.hjorth_sd = hjorth_summary(fm.hjorth, fit.retained)
    logger.info(f"{fit.recording_id}: {len(fit.retained)} of {fit.n_epochs} epochs retained, "
                f"{fit.projection.nc} components")
    return fit


def _project_and_classify(fit: IndividualFit, config: StagingConfig,
                          projector: SpectralProjector) -> IndividualFit:
    """Steps shared by the first fit and the refit after self-classification pruning."""
    q = config.quality
    retained = fit.retained
    X = retained.take(fit.features.X)
    if config.features.time_tracks:
        X = np.hstack([X, time_track_columns(len(retained), config.features.time_tracks)])
    fit.X = X

    proj = projector.fit(X)
    if not proj.valid:
        return _reject(fit, proj.reason)
    fit.projection = proj

    if fit.role != TRAINER:
        fit.valid = True
        return fit

    labels = fit.retained_labels
    keep, pvalues = select_components(proj.U, labels, config.projection.required_comp_p)
    fit.component_pvalues = pvalues
    if not keep:
        return _reject(fit, "no stage-associated components")
    if len(keep) < proj.nc:
        logger.debug(f"{fit.recording_id}: keeping {len(keep)} of {proj.nc} components")
    fit.projection = proj.subset(keep)

    model = fit_discriminant(fit.projection.U, labels, config.classifier.method,
                             config.classifier.flat_priors)
    if not model.valid:
        return _reject(fit, f"invalid classifier fit ({model.reason})")
    fit.model = model
    fit.valid = sufficient_classes(labels, q.required_epoch_n) >= 2
    if not fit.valid:
        return _reject(fit, "too few stages")
    return fit


def _self_classification(fit: IndividualFit, config: StagingConfig,
                         projector: SpectralProjector) -> IndividualFit:
    """
    Drop trainer epochs the trainer's own model does not reproduce, then refit.

    An epoch survives if its predicted label matches its label, or if the
    posterior of its own label is at least `self_prob`.
    """
    post, predicted = predict_discriminant(fit.model, fit.U)
    labels = fit.retained_labels
    cols = {c: j for j, c in enumerate(fit.model.classes)}
    own = np.array([post[i, cols[s]] for i, s in enumerate(labels)])
    drop = np.array([p != s for p, s in zip(predicted, labels)]) & (own < config.classifier.self_prob)
    n = fit.retained.exclude_rows(drop, SELF_CLASSIFICATION)
    logger.info(f"{fit.recording_id}: self-classification removed {n} epochs")
    if n == 0:
        return fit

    q = config.quality
    if len(fit.retained) < q.min_epochs:
        return _reject(fit, f"too few epochs after self-classification ({len(fit.retained)})")
    if sufficient_classes(fit.retained_labels, q.required_epoch_n) < 2:
        return _reject(fit, "too few stages after self-classification")
    return _project_and_classify(fit, config, projector)


def build_trainer(source: EpochSource, config: StagingConfig,
                  extractor: Optional[EpochFeatureExtractor] = None,
                  include_features: bool = False) -> Trainer:
    """
    Fit a trainer.

    Raises:
        InsufficientDataError: if the recording cannot be used as a trainer
    """
    fit = fit_individual(source, config, TRAINER, extractor=extractor)
    if not fit.valid:
        raise InsufficientDataError(fit.reason, recording_id=fit.recording_id)
    return Trainer(record=fit.to_record(include_features), model=fit.model)


def build_target(source: EpochSource, config: StagingConfig,
                 hjorth_bounds: Optional[HjorthBounds] = None,
                 labels: Optional[List[str]] = None,
                 extractor: Optional[EpochFeatureExtractor] = None) -> IndividualFit:
    """
    Prepare a recording for scoring.

    Raises:
        InsufficientDataError: if the recording cannot be scored
    """
    fit = fit_individual(source, config, TARGET, hjorth_bounds=hjorth_bounds,
                         labels=labels, extractor=extractor)
    if not fit.valid:
        raise InsufficientDataError(fit.reason, recording_id=fit.recording_id)
    return fit


def build_library(sources: Iterable[EpochSource], config: StagingConfig,
                  path: Union[str, Path], binary: bool = True,
                  include_features: bool = False,
                  per_trainer: bool = False) -> Dict[str, Optional[str]]:
    """
    Fit trainers from a batch of recordings and write them to a corpus.

    Unusable recordings are logged and skipped.

    Returns:
        Dict of recording id -> None (written) or rejection reason
    """
    extractor = EpochFeatureExtractor(config.features)
    outcome: Dict[str, Optional[str]] = {}
    with LibraryWriter(path, binary=binary, per_trainer=per_trainer) as writer:
        for source in sources:
            try:
                trainer = build_trainer(source, config, extractor, include_features)
            except InsufficientDataError as e:
                logger.warning(f"Skipping {source.recording_id}: {e.reason}")
                outcome[source.recording_id] = e.reason
                continue
            writer.write(trainer.record)
            outcome[source.recording_id] = None
    n_ok = sum(1 for r in outcome.values() if r is None)
    logger.info(f"Wrote {n_ok} of {len(outcome)} trainers to {path}")
    return outcome
