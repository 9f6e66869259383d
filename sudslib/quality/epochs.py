"""
Retained epoch bookkeeping.

A RetainedEpochs object covers every epoch of a recording and records,
for each excluded epoch, why it was excluded. Feature rows, labels and
projected coordinates are always taken through it, so that the rows of
every per-recording matrix refer to the same epochs.
"""

from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

# Exclusion reasons
UNLABELED = 'unlabeled'
BAD_SPECTRUM = 'bad-spectrum'
FLAT = 'flat'
HJORTH = 'hjorth'
OUTLIER = 'outlier'
CAPPED = 'capped'
SELF_CLASSIFICATION = 'self'

REASONS = (UNLABELED, BAD_SPECTRUM, FLAT, HJORTH, OUTLIER, CAPPED, SELF_CLASSIFICATION)


class RetainedEpochs:
    """
    Index set of the retained epochs of one recording.

    Epoch indices are 0-based positions in the recording. Row positions
    are 0-based positions within the currently retained epochs, i.e. the
    rows of any matrix built with `take`.
    """

    def __init__(self, n_epochs: int, reasons: Optional[Dict[int, str]] = None):
        self.n_epochs = int(n_epochs)
        self._reasons: Dict[int, str] = dict(reasons or {})
        self._update()

    def _update(self):
        mask = np.ones(self.n_epochs, dtype=bool)
        if self._reasons:
            mask[list(self._reasons)] = False
        self._mask = mask
        self._indices = np.flatnonzero(mask)

    @property
    def indices(self) -> np.ndarray:
        """Retained epoch indices, ascending."""
        return self._indices.copy()

    @property
    def mask(self) -> np.ndarray:
        """Boolean mask over all epochs."""
        return self._mask.copy()

    def __len__(self) -> int:
        return len(self._indices)

    def __contains__(self, epoch: int) -> bool:
        return 0 <= epoch < self.n_epochs and bool(self._mask[epoch])

    def __iter__(self):
        return iter(self._indices.tolist())

    def __repr__(self) -> str:
        return f"RetainedEpochs({len(self)}/{self.n_epochs} retained)"

    def copy(self) -> 'RetainedEpochs':
        return RetainedEpochs(self.n_epochs, self._reasons)

    def reason(self, epoch: int) -> Optional[str]:
        """Exclusion reason for an epoch, or None if retained."""
        return self._reasons.get(epoch)

    def excluded(self, reason: Optional[str] = None) -> List[int]:
        """Excluded epoch indices (optionally for one reason only)."""
        return sorted(e for e, r in self._reasons.items() if reason is None or r == reason)

    def summary(self) -> Dict[str, int]:
        """Count of excluded epochs per reason."""
        return dict(Counter(self._reasons.values()))

    def position(self, epoch: int) -> int:
        """Row position of a retained epoch."""
        if epoch not in self:
            raise KeyError(f"epoch {epoch} is not retained")
        return int(np.searchsorted(self._indices, epoch))

    def exclude(self, epochs: Iterable[int], reason: str) -> int:
        """
        Exclude epochs by epoch index. Already excluded epochs keep their first reason.

        Returns:
            Number of newly excluded epochs
        """
        if reason not in REASONS:
            raise ValueError(f"Unknown exclusion reason: {reason}")
        n = 0
        for e in epochs:
            e = int(e)
            if not 0 <= e < self.n_epochs:
                raise IndexError(f"epoch {e} out of range (0..{self.n_epochs - 1})")
            if e not in self._reasons:
                self._reasons[e] = reason
                n += 1
        if n:
            self._update()
        return n

    def exclude_mask(self, mask: np.ndarray, reason: str) -> int:
        """Exclude epochs flagged in a mask over all epochs."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.n_epochs,):
            raise ValueError(f"mask has shape {mask.shape}, expected ({self.n_epochs},)")
        return self.exclude(np.flatnonzero(mask), reason)

    def exclude_rows(self, rows: np.ndarray, reason: str) -> int:
        """
        Exclude by row position within the retained epochs.

        Args:
            rows: Boolean mask over retained rows, or integer row positions
        """
        rows = np.asarray(rows)
        if rows.dtype == bool:
            if rows.shape != (len(self),):
                raise ValueError(f"row mask has shape {rows.shape}, expected ({len(self)},)")
            rows = np.flatnonzero(rows)
        return self.exclude(self._indices[rows], reason)

    def take(self, values):
        """Select retained rows from a per-epoch array or sequence."""
        if isinstance(values, np.ndarray):
            if values.shape[0] != self.n_epochs:
                raise ValueError(f"array has {values.shape[0]} rows, expected {self.n_epochs}")
            return values[self._indices]
        if len(values) != self.n_epochs:
            raise ValueError(f"sequence has {len(values)} items, expected {self.n_epochs}")
        return [values[i] for i in self._indices]

    def expand(self, rows: np.ndarray, fill: float = np.nan) -> np.ndarray:
        """Scatter retained-row values back to an all-epoch float array."""
        rows = np.asarray(rows, dtype=float)
        if rows.shape[0] != len(self):
            raise ValueError(f"{rows.shape[0]} rows for {len(self)} retained epochs")
        out = np.full((self.n_epochs,) + rows.shape[1:], fill, dtype=float)
        out[self._indices] = rows
        return out

    def expand_labels(self, labels: Sequence[str], fill: str = '?') -> List[str]:
        """Scatter retained-row labels back to one label per epoch."""
        if len(labels) != len(self):
            raise ValueError(f"{len(labels)} labels for {len(self)} retained epochs")
        out = [fill] * self.n_epochs
        for e, s in zip(self._indices, labels):
            out[e] = s
        return out
