"""
Flat per-epoch label files.

One label per line for every epoch, '?' for unscored epochs, or the
integer export codes. The same format is read back as an externally
edited annotation.
"""

from pathlib import Path
from typing import List, Sequence, Union

from ..stages import UNKNOWN, normalize_stage, stage_code

PathLike = Union[str, Path]


def format_labels(labels: Sequence[str], numeric: bool = False) -> List[str]:
    """Labels as export strings (stage names or integer codes)."""
    if numeric:
        return [str(stage_code(s)) for s in labels]
    return [s if s else UNKNOWN for s in labels]


def write_labels(labels: Sequence[str], path: PathLike, numeric: bool = False) -> Path:
    """
    Write one label per line.

    Args:
        labels: Stage per epoch
        path: Output file
        numeric: Write integer codes (N1=-1, N2=-2, N3=-3, NR=-1, R=0, W=1, unscored=2)

    Returns:
        Path written
    """
    path = Path(path)
    with open(path, 'w') as f:
        for line in format_labels(labels, numeric):
            f.write(line + '\n')
    return path


_CODES = {'-3': 'N3', '-2': 'N2', '-1': 'N1', '0': 'R', '1': 'W', '2': UNKNOWN}


def read_stage_file(path: PathLike, n_stages: int = 5, numeric: bool = False) -> List[str]:
    """
    Read a flat label file (one stage per line, blank and '%' lines ignored).

    Args:
        path: Label file
        n_stages: 5 or 3 (N1/N2/N3 collapse to NR)
        numeric: Interpret lines as export codes rather than annotation strings

    Returns:
        Normalised stage per epoch
    """
    labels = []
    with open(path, 'r') as f:
        for line in f:
            token = line.strip()
            if not token or token.startswith('%'):
                continue
            if numeric:
                token = _CODES.get(token, UNKNOWN)
            labels.append(normalize_stage(token, n_stages))
    return labels
