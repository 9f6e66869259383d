"""
Epoch sources.

Defines the abstract interface through which the staging engine reads
per-epoch, per-channel waveforms and optional ground-truth stages, plus
an in-memory implementation and an `.npz` file implementation.

An `.npz` recording holds one `(epochs x samples)` array per channel
under the channel label, the sample rate as `fs_<label>`, and optionally
a `stages` array of annotation strings (one per epoch).
"""

import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np

from .stages import UNKNOWN


class EpochSource(ABC):
    """
    Abstract base class for recordings split into fixed-length epochs.

    Implementations provide raw waveform values per epoch and channel,
    channel sample rates, and (optionally) per-epoch stage annotations.
    """

    def __init__(self, recording_id: str):
        """
        Initialize the source.

        Args:
            recording_id: Identifier of the recording (trainer or target id)
        """
        self.recording_id = recording_id

    @property
    @abstractmethod
    def channels(self) -> List[str]:
        """Channel labels available in this recording."""
        pass

    @property
    @abstractmethod
    def n_epochs(self) -> int:
        """Number of epochs in the recording."""
        pass

    @abstractmethod
    def sample_rate(self, channel: str) -> float:
        """
        Get the sample rate of a channel.

        Args:
            channel: Channel label

        Returns:
            Sample rate in Hz
        """
        pass

    @abstractmethod
    def epoch(self, index: int, channel: str) -> np.ndarray:
        """
        Get the raw samples of one epoch of one channel.

        Args:
            index: 0-based epoch index
            channel: Channel label

        Returns:
            1-D array of samples
        """
        pass

    def stages(self) -> Optional[List[str]]:
        """
        Get raw stage annotations, one per epoch.

        Returns:
            List of annotation strings, or None if the recording is unstaged
        """
        return None

    def has_channel(self, channel: str) -> bool:
        return channel in self.channels

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(id={self.recording_id!r}, "
                f"epochs={self.n_epochs}, channels={self.channels})")


class ArrayEpochSource(EpochSource):
    """Epoch source over in-memory arrays."""

    def __init__(self, recording_id: str, data: Dict[str, np.ndarray],
                 sample_rates: Dict[str, float], stages: Optional[Sequence[str]] = None):
        """
        Args:
            recording_id: Recording identifier
            data: Channel label -> (n_epochs, n_samples) array
            sample_rates: Channel label -> sample rate in Hz
            stages: Optional per-epoch stage annotations
        """
        super().__init__(recording_id)
        if not data:
            raise ValueError("recording has no channels")
        lengths = {np.asarray(v).shape[0] for v in data.values()}
        if len(lengths) != 1:
            raise ValueError(f"channels disagree on number of epochs: {sorted(lengths)}")
        missing = [ch for ch in data if ch not in sample_rates]
        if missing:
            raise ValueError(f"no sample rate for channel(s): {missing}")

        self._data = {ch: np.asarray(v, dtype=float) for ch, v in data.items()}
        self._rates = {ch: float(sample_rates[ch]) for ch in data}
        self._n = lengths.pop()
        if stages is not None and len(stages) != self._n:
            raise ValueError(f"{len(stages)} stage annotations for {self._n} epochs")
        self._stages = None if stages is None else [str(s) for s in stages]

    @property
    def channels(self) -> List[str]:
        return list(self._data)

    @property
    def n_epochs(self) -> int:
        return self._n

    def sample_rate(self, channel: str) -> float:
        return self._rates[channel]

    def epoch(self, index: int, channel: str) -> np.ndarray:
        return self._data[channel][index]

    def stages(self) -> Optional[List[str]]:
        return None if self._stages is None else list(self._stages)

    def with_stages(self, stages: Optional[Sequence[str]]) -> 'ArrayEpochSource':
        """Copy of this source with a different annotation."""
        return ArrayEpochSource(self.recording_id, self._data, self._rates, stages)


def load_npz(path: str, recording_id: Optional[str] = None) -> ArrayEpochSource:
    """
    Load an `.npz` recording.

    Args:
        path: Path to the .npz file
        recording_id: Identifier (default: file name without extension)

    Returns:
        ArrayEpochSource
    """
    if recording_id is None:
        recording_id = os.path.splitext(os.path.basename(path))[0]

    with np.load(path, allow_pickle=False) as npz:
        keys = list(npz.keys())
        data = {}
        rates = {}
        for key in keys:
            if key == 'stages' or key.startswith('fs_'):
                continue
            fs_key = f"fs_{key}"
            if fs_key not in npz:
                raise ValueError(f"{path}: channel '{key}' has no '{fs_key}' entry")
            data[key] = np.asarray(npz[key], dtype=float)
            rates[key] = float(npz[fs_key])
        stages = [str(s) for s in npz['stages']] if 'stages' in npz else None

    return ArrayEpochSource(recording_id, data, rates, stages)


def save_npz(source: EpochSource, path: str, stages: Optional[Sequence[str]] = None) -> None:
    """
    Write a recording to `.npz`.

    Args:
        source: Epoch source to write
        path: Output path
        stages: Annotation to store instead of the source's own
    """
    arrays = {}
    for ch in source.channels:
        arrays[ch] = np.vstack([source.epoch(i, ch) for i in range(source.n_epochs)])
        arrays[f"fs_{ch}"] = np.asarray(source.sample_rate(ch))
    annotation = stages if stages is not None else source.stages()
    if annotation is not None:
        arrays['stages'] = np.asarray([s if s else UNKNOWN for s in annotation], dtype=str)
    np.savez(path, **arrays)
