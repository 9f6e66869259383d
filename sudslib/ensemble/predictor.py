"""
Ensemble Predictor

Scores a target recording with every trainer of a corpus: the target is
projected into each trainer's basis, the trainer's classifier gives a
posterior matrix, trainers are weighted, and the weighted posteriors are
averaged into the final staging.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..classification import (
    AgreementStats,
    agreement,
    fit_discriminant,
    kappa,
    predict_discriminant,
)
from ..config import StagingConfig
from ..errors import ConfigurationError, NoValidTrainersError, ScoringCancelled
from ..library import Trainer, TrainerLibrary
from ..pipeline import IndividualFit
from ..projection import SpectralProjector
from ..quality import RetainedEpochs
from ..stages import (
    argmax_labels,
    count_stages,
    one_hot,
    sufficient_classes,
    to_nrw,
    vocabulary,
)
from .gating import process_weights
from .weights import SoapWeight, compose_weights, make_strategies

logger = logging.getLogger(__name__)


class TargetState:
    """
    Working state of one target: its own fit plus the posterior matrix
    each trainer assigns to it.

    The cache is owned by the target; stored matrices are read-only.
    """

    def __init__(self, fit: IndividualFit, labels: Sequence[str]):
        self.fit = fit
        self.vocabulary = list(labels)
        self._posteriors: Dict[str, np.ndarray] = {}
        self._predicted: Dict[str, List[str]] = {}

    @property
    def recording_id(self) -> str:
        return self.fit.recording_id

    @property
    def U(self) -> np.ndarray:
        return self.fit.projection.U

    @property
    def V(self) -> np.ndarray:
        return self.fit.projection.V

    @property
    def W(self) -> np.ndarray:
        return self.fit.projection.W

    @property
    def X(self) -> np.ndarray:
        return self.fit.X

    def add(self, trainer_id: str, posteriors: np.ndarray):
        post = np.array(posteriors, dtype=float)
        post.setflags(write=False)
        self._posteriors[trainer_id] = post
        self._predicted[trainer_id] = argmax_labels(post, self.vocabulary)

    def posteriors(self, trainer_id: str) -> np.ndarray:
        return self._posteriors[trainer_id]

    def predicted(self, trainer_id: str) -> List[str]:
        return list(self._predicted[trainer_id])

    def stage_proportions(self, trainer_id: str) -> np.ndarray:
        """Share of epochs assigned to each vocabulary stage by a trainer."""
        pred = self._predicted[trainer_id]
        counts = np.array([pred.count(s) for s in self.vocabulary], dtype=float)
        return counts / max(len(pred), 1)


@dataclass
class TrainerDiagnostics:
    """Per-trainer output for verbose reporting."""
    trainer_id: str
    raw_weights: Dict[str, float]
    weight: float
    predicted_counts: Dict[str, int]
    self_kappa: Optional[float] = None
    kappa3: Optional[float] = None


@dataclass
class EnsembleResult:
    """
    Final staging of a target.

    Attributes:
        target_id: Target recording id
        labels_vocab: Posterior column order
        retained: Retained epochs of the target
        posteriors: (n_retained, n_stages) combined posteriors
        predicted: Most likely stage per retained epoch
        weights: Final weight per trainer (sums to 1)
        diagnostics: Per-trainer diagnostics
        mean_max_posterior: Mean over epochs of the largest posterior
        soap_kappa: Self-consistency kappa of the final staging (None if not computable)
        stats: Agreement with the target's prior staging, if any
        observed: Prior staging of all epochs, if any
        info: Weight processing details
    """
    target_id: str
    labels_vocab: List[str]
    retained: RetainedEpochs
    posteriors: np.ndarray
    predicted: List[str]
    weights: Dict[str, float]
    diagnostics: List[TrainerDiagnostics] = field(default_factory=list)
    mean_max_posterior: float = 0.0
    soap_kappa: Optional[float] = None
    stats: Optional[AgreementStats] = None
    observed: Optional[List[str]] = None
    info: Dict = field(default_factory=dict)

    @property
    def n_trainers(self) -> int:
        return sum(1 for w in self.weights.values() if w > 0)

    def epoch_labels(self) -> List[str]:
        """Predicted stage for every epoch, '?' for excluded epochs."""
        return self.retained.expand_labels(self.predicted)

    def epoch_posteriors(self) -> np.ndarray:
        """Posteriors for every epoch, NaN rows for excluded epochs."""
        return self.retained.expand(self.posteriors)


class EnsemblePredictor:
    """
    Weighted ensemble of trainers.

    Usage:
        predictor = EnsemblePredictor(config, library)
        target = build_target(source, config, library.hjorth_bounds())
        result = predictor.predict(target)
    """

    def __init__(self, config: StagingConfig, library: TrainerLibrary,
                 weight_library: Optional[TrainerLibrary] = None):
        """
        Args:
            config: Staging configuration
            library: Trainer corpus
            weight_library: Optional corpus of weight trainers (with features)
                for re-prediction weighting
        """
        self.config = config
        self.library = library
        self.weight_library = weight_library
        self.vocabulary = vocabulary(config.classifier.n_stages)
        self.projector = SpectralProjector(config.projection)

    def _select_trainers(self, target_id: str) -> List[Trainer]:
        if self.config.weighting.allow_self:
            return list(self.library)
        trainers = [t for t in self.library if t.trainer_id != target_id]
        if len(trainers) < len(self.library):
            logger.info(f"{target_id}: excluding the target's own trainer")
        return trainers

    def _check_dimensions(self, target: IndividualFit):
        nf = self.config.n_features
        if target.X.shape[1] != nf:
            raise ConfigurationError(
                f"{target.recording_id}: target has {target.X.shape[1]} feature columns, corpus has {nf}"
            )

    def predict(self, target: IndividualFit, cancel_event=None,
                diagnostics: bool = False) -> EnsembleResult:
        """
        Stage a target recording.

        Args:
            target: Valid target fit (see build_target)
            cancel_event: Optional object with `is_set()`, checked between trainers
            diagnostics: Compute per-trainer self-consistency and 3-class kappa

        Returns:
            EnsembleResult

        Raises:
            NoValidTrainersError: if no trainer can be used
            ScoringCancelled: if cancel_event is set
        """
        if not target.valid:
            raise ValueError(f"{target.recording_id}: target fit is not valid ({target.reason})")
        self._check_dimensions(target)

        def check():
            if cancel_event is not None and cancel_event.is_set():
                raise ScoringCancelled(f"{target.recording_id}: scoring cancelled")

        trainers = self._select_trainers(target.recording_id)
        if not trainers:
            raise NoValidTrainersError(target.recording_id, "no trainers after self-exclusion")

        # 1. posteriors per trainer
        state = TargetState(target, self.vocabulary)
        for t in trainers:
            check()
            U = self.projector.project(target.X, t.V, t.W)
            post, _ = predict_discriminant(t.model, U, self.vocabulary)
            state.add(t.trainer_id, post)
        logger.info(f"{target.recording_id}: {len(trainers)} trainers, {len(target.retained)} epochs")

        # 2-3. weights
        weight_trainers = self.weight_library.with_features() if self.weight_library else None
        strategies = make_strategies(self.config, weight_trainers)
        logger.info(f"Weighting: {', '.join(s.name for s in strategies)}")
        raw = compose_weights(strategies, trainers, state, check)
        weights, info = process_weights({k: v['combined'] for k, v in raw.items()},
                                        self.config.weighting, target.recording_id)
        logger.info(f"{target.recording_id}: {info['n_used']} trainers used, "
                    f"weighted N = {info['weighted_n']:.2f}")

        # 4-5. combine
        combined = np.zeros((len(target.retained), len(self.vocabulary)))
        for t in trainers:
            w = weights[t.trainer_id]
            if w <= 0:
                continue
            post = state.posteriors(t.trainer_id)
            if self.config.weighting.best_guess:
                post = one_hot(post)
            combined += w * post
        combined /= combined.sum(axis=1, keepdims=True)
        predicted = argmax_labels(combined, self.vocabulary)

        observed = target.retained_labels if target.has_staging else None
        result = EnsembleResult(
            target_id=target.recording_id,
            labels_vocab=list(self.vocabulary),
            retained=target.retained,
            posteriors=combined,
            predicted=predicted,
            weights=weights,
            mean_max_posterior=float(np.mean(np.max(combined, axis=1))) if len(combined) else 0.0,
            soap_kappa=self._soap_kappa(target, predicted),
            stats=agreement(observed, predicted, self.vocabulary) if observed is not None else None,
            observed=target.labels if target.has_staging else None,
            info=info,
        )
        result.diagnostics = self._diagnostics(trainers, state, raw, weights, observed, diagnostics)
        return result

    def _soap_kappa(self, target: IndividualFit, predicted: List[str]) -> Optional[float]:
        """Kappa of a model fitted on the final staging re-predicting the target."""
        if sufficient_classes(predicted, self.config.quality.required_epoch_n) < 2:
            return None
        model = fit_discriminant(target.U, predicted, self.config.classifier.method,
                                 self.config.classifier.flat_priors)
        if not model.valid:
            return None
        _, repredicted = predict_discriminant(model, target.U)
        return kappa(predicted, repredicted)

    def _diagnostics(self, trainers, state, raw, weights, observed, full) -> List[TrainerDiagnostics]:
        soap = SoapWeight(self.config) if full else None
        out = []
        for t in trainers:
            pred = state.predicted(t.trainer_id)
            d = TrainerDiagnostics(trainer_id=t.trainer_id,
                                   raw_weights=raw[t.trainer_id],
                                   weight=weights[t.trainer_id],
                                   predicted_counts=count_stages(pred))
            if soap is not None:
                d.self_kappa = soap.weight(t, state)
                if observed is not None:
                    d.kappa3 = kappa(to_nrw(observed), to_nrw(pred))
            out.append(d)
            logger.debug(f"{t.trainer_id}: weight {d.weight:.4f} counts {d.predicted_counts}")
        return out
