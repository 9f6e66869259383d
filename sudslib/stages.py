"""
Sleep stage vocabulary.

Defines the closed stage vocabularies used by the staging engine, the
mapping from annotation strings to canonical labels, and the collapsed
3-class (NR/R/W) and REM-versus-not views used for agreement statistics.
"""

from typing import Dict, Any, Iterable, List, Sequence

import numpy as np

UNKNOWN = '?'

# Canonical label orders; posterior matrix columns follow these
LABELS_5: List[str] = ['N1', 'N2', 'N3', 'R', 'W']
LABELS_3: List[str] = ['NR', 'R', 'W']
LABELS_REM: List[str] = ['R', 'NOT']

STAGES: Dict[str, Dict[str, Any]] = {
    'N1': {'code': -1, 'collapsed': 'NR', 'description': 'NREM stage 1'},
    'N2': {'code': -2, 'collapsed': 'NR', 'description': 'NREM stage 2'},
    'N3': {'code': -3, 'collapsed': 'NR', 'description': 'NREM stage 3 (slow wave sleep)'},
    'NR': {'code': -1, 'collapsed': 'NR', 'description': 'NREM (3-class model)'},
    'R': {'code': 0, 'collapsed': 'R', 'description': 'REM sleep'},
    'W': {'code': 1, 'collapsed': 'W', 'description': 'Wake'},
    UNKNOWN: {'code': 2, 'collapsed': UNKNOWN, 'description': 'Unscored, unknown or excluded'},
}

# Annotation strings accepted from stage-label providers
_ALIASES: Dict[str, str] = {
    'W': 'W', 'WAKE': 'W', '0': 'W',
    'N1': 'N1', 'NREM1': 'N1', 'S1': 'N1', '1': 'N1',
    'N2': 'N2', 'NREM2': 'N2', 'S2': 'N2', '2': 'N2',
    'N3': 'N3', 'NREM3': 'N3', 'S3': 'N3', '3': 'N3',
    'N4': 'N3', 'NREM4': 'N3', 'S4': 'N3', '4': 'N3',
    'NR': 'NR', 'NREM': 'NR',
    'R': 'R', 'REM': 'R', '5': 'R',
}


def vocabulary(n_stages: int = 5) -> List[str]:
    """Get the ordered label set for a 5- or 3-class model."""
    if n_stages == 5:
        return list(LABELS_5)
    if n_stages == 3:
        return list(LABELS_3)
    raise ValueError(f"Unknown number of stages: {n_stages}")


def normalize_stage(label: Any, n_stages: int = 5) -> str:
    """
    Map an annotation value to a canonical stage label.

    Unscored, movement, lights-on and anything unrecognised map to '?'.
    In a 3-class model N1/N2/N3 collapse to NR.
    """
    if label is None:
        return UNKNOWN
    key = str(label).strip().upper()
    stage = _ALIASES.get(key, UNKNOWN)
    if n_stages == 3 and stage in ('N1', 'N2', 'N3'):
        return 'NR'
    if n_stages == 5 and stage == 'NR':
        return UNKNOWN
    return stage


def normalize_stages(labels: Iterable[Any], n_stages: int = 5) -> List[str]:
    return [normalize_stage(s, n_stages) for s in labels]


def to_nrw(labels: Sequence[str]) -> List[str]:
    """Collapse to the NR/R/W vocabulary (already-collapsed labels pass through)."""
    return [STAGES.get(s, STAGES[UNKNOWN])['collapsed'] for s in labels]


def to_rem(labels: Sequence[str]) -> List[str]:
    """Reduce to REM versus everything else."""
    out = []
    for s in labels:
        if s == UNKNOWN:
            out.append(UNKNOWN)
        elif s == 'R':
            out.append('R')
        else:
            out.append('NOT')
    return out


def stage_code(label: str) -> int:
    """Get the integer export code for a stage label."""
    return STAGES.get(label, STAGES[UNKNOWN])['code']


def count_stages(labels: Sequence[str]) -> Dict[str, int]:
    """Per-label epoch counts, sorted by label, unknowns excluded."""
    counts: Dict[str, int] = {}
    for s in labels:
        if s == UNKNOWN:
            continue
        counts[s] = counts.get(s, 0) + 1
    return dict(sorted(counts.items()))


def sufficient_classes(labels: Sequence[str], required_n: int) -> int:
    """Number of classes with at least `required_n` epochs."""
    return sum(1 for n in count_stages(labels).values() if n >= required_n)


def argmax_labels(posteriors: np.ndarray, labels: Sequence[str]) -> List[str]:
    """Most likely label per row; ties resolve to the first column."""
    if posteriors.shape[1] != len(labels):
        raise ValueError("posterior columns do not match the label set")
    idx = np.argmax(posteriors, axis=1)
    return [labels[i] for i in idx]


def one_hot(posteriors: np.ndarray) -> np.ndarray:
    """Replace each row by a one-hot vector at its most likely column."""
    out = np.zeros_like(posteriors)
    if posteriors.size:
        out[np.arange(posteriors.shape[0]), np.argmax(posteriors, axis=1)] = 1.0
    return out
