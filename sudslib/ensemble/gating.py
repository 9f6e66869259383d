"""
Weight post-processing.

Raw trainer weights are turned into final ensemble weights in one fixed
order:

    1. clip negative weights to 0
    2. mean normalisation: divide by the mean weight, zero those below
       `mean_threshold`
    3. exponent: divide by the maximum, raise to `exponent`
    4. percentile gating: keep the top k = round(n x pct / 100) trainers
       (at least 1) ranked by weight then id; kept weights are divided by
       their maximum (or set to 1 with `equal_in_selected`, or when fewer
       than 3 trainers are available), the rest set to 0
    5. normalise to sum 1

Steps 2-4 are skipped when not configured.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from ..config import WeightingSettings
from ..errors import NoValidTrainersError

logger = logging.getLogger(__name__)


def percentile_count(n: int, pct: float) -> int:
    """Number of trainers kept by percentile gating (round half up, at least 1)."""
    return max(1, int(np.floor(n * pct / 100.0 + 0.5)))


def process_weights(raw: Dict[str, float], settings: WeightingSettings,
                    target_id: Optional[str] = None) -> Tuple[Dict[str, float], Dict]:
    """
    Apply the canonical post-processing to raw trainer weights.

    Args:
        raw: Trainer id -> raw weight
        settings: Weighting settings
        target_id: Used in the error message

    Returns:
        Tuple of (final weights summing to 1, info dict with intermediate steps)

    Raises:
        NoValidTrainersError: if no trainer keeps a positive weight
    """
    ids = list(raw)
    if not ids:
        raise NoValidTrainersError(target_id, "no trainers")
    w = np.array([raw[i] for i in ids], dtype=float)
    w[~np.isfinite(w)] = 0.0
    info: Dict = {'n': len(ids)}

    # 1. clip
    w = np.clip(w, 0.0, None)

    # 2. mean normalisation
    if settings.mean_threshold is not None:
        mean = float(np.mean(w))
        if mean > 0:
            w = w / mean
        w[w < settings.mean_threshold] = 0.0
        info['below_mean_threshold'] = int(np.sum(w == 0))

    # 3. exponent
    if settings.exponent not in (0, 1):
        top = float(np.max(w))
        if top > 0:
            w = (w / top) ** settings.exponent

    # 4. percentile
    if settings.percentile > 0:
        k = percentile_count(len(ids), settings.percentile)
        order = sorted(range(len(ids)), key=lambda j: (-w[j], ids[j]))
        kept = np.zeros(len(ids), dtype=bool)
        kept[order[:k]] = True
        if settings.equal_in_selected or len(ids) < 3:
            w = np.where(kept & (w > 0), 1.0, 0.0)
        else:
            top = float(np.max(w[kept]))
            w = np.where(kept, w / top if top > 0 else 0.0, 0.0)
        info['percentile_kept'] = [ids[j] for j in order[:k]]

    # 5. normalise
    total = float(np.sum(w))
    if total <= 0:
        raise NoValidTrainersError(target_id, "all trainer weights are zero")
    w = w / total
    info['n_used'] = int(np.sum(w > 0))
    # effective number of trainers
    info['weighted_n'] = float(1.0 / np.sum(w ** 2))
    logger.debug(f"Weights: {info['n_used']} of {len(ids)} trainers used, "
                 f"weighted N = {info['weighted_n']:.2f}")

    return dict(zip(ids, w.tolist())), info
