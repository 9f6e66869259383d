"""
Trainer weighting strategies.

Each strategy scores how much a trainer's view of the target can be
trusted. Strategies share one contract: `prepare` once per target,
`weight(trainer, target)` per trainer, and `finalize` over all raw
weights. When several strategies are selected their finalized weights
are averaged.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..classification import agreement_score, fit_discriminant, kappa, predict_discriminant
from ..config import StagingConfig
from ..errors import ConfigurationError
from ..library import Trainer
from ..projection import SpectralProjector, unit_scale
from ..stages import sufficient_classes

logger = logging.getLogger(__name__)

# Proportions below this are ignored in the KL sum
KL_EPSILON = 1e-6


class WeightStrategy(ABC):
    """Base class for trainer weighting strategies."""

    name = ''

    def __init__(self, config: StagingConfig):
        self.config = config

    def prepare(self, trainers: Sequence[Trainer], target) -> None:
        """Hook called once per target before any weight is computed."""
        pass

    @abstractmethod
    def weight(self, trainer: Trainer, target) -> float:
        """
        Raw weight of one trainer for the target.

        Args:
            trainer: Trainer whose posteriors are cached in the target state
            target: TargetState of the recording being scored

        Returns:
            Weight (>= 0 once finalized)
        """
        pass

    def finalize(self, raw: Dict[str, float]) -> Dict[str, float]:
        """Transform the raw weights of all trainers (default: unchanged)."""
        return raw


class UniformWeight(WeightStrategy):
    """Every trainer counts equally."""

    name = 'uniform'

    def weight(self, trainer: Trainer, target) -> float:
        return 1.0


class KLWeight(WeightStrategy):
    """
    Negative KL divergence of a trainer's predicted-stage mix from the
    corpus-average mix, unit-rescaled across trainers.
    """

    name = 'kl'

    def prepare(self, trainers: Sequence[Trainer], target) -> None:
        self.proportions = {t.trainer_id: target.stage_proportions(t.trainer_id) for t in trainers}
        self.mean = np.mean(np.stack(list(self.proportions.values())), axis=0)

    def weight(self, trainer: Trainer, target) -> float:
        q = self.proportions[trainer.trainer_id]
        p = self.mean
        use = (q > KL_EPSILON) & (p > 0)
        return float(-np.sum(p[use] * np.log(p[use] / q[use])))

    def finalize(self, raw: Dict[str, float]) -> Dict[str, float]:
        ids = list(raw)
        scaled = unit_scale(np.array([raw[i] for i in ids]))
        return dict(zip(ids, scaled.tolist()))


class _PseudoLabelWeight(WeightStrategy):
    """Shared logic: refit a throwaway model on the target using a trainer's guess."""

    def pseudo_model(self, trainer: Trainer, target):
        pseudo = target.predicted(trainer.trainer_id)
        if sufficient_classes(pseudo, self.config.quality.required_epoch_n) < 2:
            return pseudo, None
        model = fit_discriminant(target.U, pseudo, self.config.classifier.method,
                                 self.config.classifier.flat_priors)
        if not model.valid:
            logger.debug(f"{trainer.trainer_id}: pseudo-label fit invalid ({model.reason})")
            return pseudo, None
        return pseudo, model


class SoapWeight(_PseudoLabelWeight):
    """Self-consistency of the trainer's guess on the target's own components."""

    name = 'soap'

    def weight(self, trainer: Trainer, target) -> float:
        pseudo, model = self.pseudo_model(trainer, target)
        if model is None:
            return 0.0
        _, predicted = predict_discriminant(model, target.U)
        return kappa(pseudo, predicted)


class RepredWeight(_PseudoLabelWeight):
    """
    How well a model fitted on the trainer's guess predicts independently
    staged weight trainers projected into the target's basis.

    Without a separate weight corpus, each trainer is re-predicted only
    against itself (it must carry raw features).
    """

    name = 'repred'

    def __init__(self, config: StagingConfig, weight_trainers: Optional[Sequence[Trainer]] = None):
        super().__init__(config)
        self.weight_trainers = list(weight_trainers) if weight_trainers else []
        self.projector = SpectralProjector(config.projection)

    def prepare(self, trainers: Sequence[Trainer], target) -> None:
        w = self.config.weighting
        if self.weight_trainers:
            self.pool = [t for t in self.weight_trainers
                         if t.X is not None and (w.allow_self or t.trainer_id != target.recording_id)]
            if not self.pool:
                raise ConfigurationError("re-prediction weighting: no weight trainers with features")
        else:
            self.pool = []
            missing = [t.trainer_id for t in trainers if t.X is None]
            if missing:
                raise ConfigurationError(
                    f"re-prediction weighting needs trainers with features "
                    f"(missing for {len(missing)} trainer(s), e.g. {missing[0]})"
                )
        self._projected: Dict[str, np.ndarray] = {}

    def _project(self, wt: Trainer, target) -> np.ndarray:
        if wt.trainer_id not in self._projected:
            self._projected[wt.trainer_id] = self.projector.project(wt.X, target.V, target.W)
        return self._projected[wt.trainer_id]

    def weight(self, trainer: Trainer, target) -> float:
        _, model = self.pseudo_model(trainer, target)
        if model is None:
            return 0.0
        w = self.config.weighting
        pool = self.pool or [trainer]
        scores: List[float] = []
        for wt in pool:
            _, predicted = predict_discriminant(model, self._project(wt, target))
            scores.append(agreement_score(wt.labels, predicted, w.repred_metric, w.repred_classes))
        if w.repred_summary == 'median':
            return float(np.median(scores))
        return float(np.mean(scores))


def make_strategies(config: StagingConfig,
                    weight_trainers: Optional[Sequence[Trainer]] = None) -> List[WeightStrategy]:
    """Instantiate the configured strategies (uniform when none are selected)."""
    strategies: List[WeightStrategy] = []
    for method in config.weighting.methods:
        if method == 'kl':
            strategies.append(KLWeight(config))
        elif method == 'repred':
            strategies.append(RepredWeight(config, weight_trainers))
        elif method == 'soap':
            strategies.append(SoapWeight(config))
        else:
            raise ConfigurationError(f"Unknown weighting method: {method}")
    return strategies or [UniformWeight(config)]


def compose_weights(strategies: Sequence[WeightStrategy], trainers: Sequence[Trainer],
                    target, check=None) -> Dict[str, Dict[str, float]]:
    """
    Run every strategy over every trainer.

    Args:
        strategies: Strategies to apply
        trainers: Trainers with posteriors cached in the target state
        target: TargetState
        check: Optional callable invoked before each trainer (cancellation)

    Returns:
        Dict of trainer id -> {strategy name: weight, ..., 'combined': mean}
    """
    per_strategy: Dict[str, Dict[str, float]] = {}
    for strategy in strategies:
        strategy.prepare(trainers, target)
        raw = {}
        for t in trainers:
            if check is not None:
                check()
            raw[t.trainer_id] = strategy.weight(t, target)
        per_strategy[strategy.name] = strategy.finalize(raw)
        logger.debug(f"{strategy.name} weights: " +
                     ", ".join(f"{k}={v:.3f}" for k, v in per_strategy[strategy.name].items()))

    out: Dict[str, Dict[str, float]] = {}
    for t in trainers:
        entry = {name: w[t.trainer_id] for name, w in per_strategy.items()}
        entry['combined'] = float(np.mean(list(entry.values())))
        out[t.trainer_id] = entry
    return out
