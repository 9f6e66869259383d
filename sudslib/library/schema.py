"""
Trainer record schema.

A trainer record is the persisted form of one fitted trainer. Records
are written field by field through a codec (text or binary) in the
order fixed by the schema version; the classifier itself is not stored
and is refitted from U and the labels on load.

Field order for version SUDS2:

    tag                         str   'SUDS2'
    id                          str
    contents                    str   'X:Y' (features included) / 'X:N'
    nve                         int   valid (retained) epochs
    ns                          int   channels
    nf                          int   feature columns
    nc                          int   components
    ns x (mean, sd) x 3         real  Hjorth activity, mobility, complexity
    n_classes                   int
    n_classes x (label, count)  str, int
    nve x (epoch, label)        int, str
    W                           nc reals
    V                           nf x nc reals, row-major
    U                           nve x nc reals, row-major
    X                           nve x nf reals, row-major (contents X:Y only)
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from ..errors import LibraryFormatError

CURRENT_VERSION = 'SUDS2'
END_SENTINEL = '_END_'

WITH_FEATURES = 'X:Y'
WITHOUT_FEATURES = 'X:N'


@dataclass
class TrainerRecord:
    """
    Persisted trainer fields.

    Attributes:
        trainer_id: Recording identifier
        hjorth_mean: (n_channels, 3) mean Hjorth parameters over retained epochs
        hjorth_sd: (n_channels, 3) SD of Hjorth parameters
        class_counts: Retained epochs per stage label
        epochs: (nve,) 0-based epoch index of each retained epoch
        labels: Stage label of each retained epoch
        W: (nc,) singular values
        V: (nf, nc) right singular vectors
        U: (nve, nc) component coordinates
        X: Optional (nve, nf) quality-filtered feature matrix
    """
    trainer_id: str
    hjorth_mean: np.ndarray
    hjorth_sd: np.ndarray
    class_counts: Dict[str, int]
    epochs: np.ndarray
    labels: List[str]
    W: np.ndarray
    V: np.ndarray
    U: np.ndarray
    X: Optional[np.ndarray] = None
    version: str = field(default=CURRENT_VERSION)

    @property
    def nve(self) -> int:
        return len(self.labels)

    @property
    def ns(self) -> int:
        return self.hjorth_mean.shape[0]

    @property
    def nf(self) -> int:
        return self.V.shape[0]

    @property
    def nc(self) -> int:
        return len(self.W)

    @property
    def has_features(self) -> bool:
        return self.X is not None

    def without_features(self) -> 'TrainerRecord':
        return TrainerRecord(self.trainer_id, self.hjorth_mean, self.hjorth_sd,
                             dict(self.class_counts), self.epochs, list(self.labels),
                             self.W, self.V, self.U, None, self.version)

    def check(self) -> None:
        """Raise LibraryFormatError if field shapes are inconsistent."""
        problems = []
        if not self.trainer_id or any(c.isspace() for c in self.trainer_id):
            problems.append(f"invalid trainer id {self.trainer_id!r}")
        if self.hjorth_mean.shape != (self.ns, 3) or self.hjorth_sd.shape != (self.ns, 3):
            problems.append("Hjorth statistics must be (channels x 3)")
        if len(self.epochs) != self.nve:
            problems.append(f"{len(self.epochs)} epoch indices for {self.nve} labels")
        if self.V.shape != (self.nf, self.nc):
            problems.append(f"V has shape {self.V.shape}, expected ({self.nf}, {self.nc})")
        if self.U.shape != (self.nve, self.nc):
            problems.append(f"U has shape {self.U.shape}, expected ({self.nve}, {self.nc})")
        if self.X is not None and self.X.shape != (self.nve, self.nf):
            problems.append(f"X has shape {self.X.shape}, expected ({self.nve}, {self.nf})")
        if sum(self.class_counts.values()) != self.nve:
            problems.append("class counts do not add up to the number of epochs")
        if problems:
            raise LibraryFormatError("; ".join(problems), source=self.trainer_id)

    def equals(self, other: 'TrainerRecord') -> bool:
        """Exact equality of every field."""
        def same(a, b):
            if a is None or b is None:
                return a is None and b is None
            return a.shape == b.shape and np.array_equal(a, b)
        return (
            self.trainer_id == other.trainer_id
            and self.version == other.version
            and self.class_counts == other.class_counts
            and list(self.labels) == list(other.labels)
            and np.array_equal(self.epochs, other.epochs)
            and same(self.hjorth_mean, other.hjorth_mean)
            and same(self.hjorth_sd, other.hjorth_sd)
            and same(self.W, other.W)
            and same(self.V, other.V)
            and same(self.U, other.U)
            and same(self.X, other.X)
        )


def encode_v2(record: TrainerRecord, writer) -> None:
    """Write one SUDS2 record (tag included)."""
    record.check()
    writer.write_str(CURRENT_VERSION)
    writer.comment(f"trainer {record.trainer_id}")
    writer.write_str(record.trainer_id)
    writer.write_str(WITH_FEATURES if record.has_features else WITHOUT_FEATURES)
    for n in (record.nve, record.ns, record.nf, record.nc):
        writer.write_int(n)

    writer.comment("Hjorth mean/SD per channel")
    for c in range(record.ns):
        for h in range(3):
            writer.write_real(float(record.hjorth_mean[c, h]))
            writer.write_real(float(record.hjorth_sd[c, h]))

    writer.comment("class counts")
    writer.write_int(len(record.class_counts))
    for label, count in record.class_counts.items():
        writer.write_str(label)
        writer.write_int(count)

    writer.comment("epochs")
    for e, label in zip(record.epochs, record.labels):
        writer.write_int(int(e))
        writer.write_str(label)

    writer.comment("W")
    writer.write_reals(record.W)
    writer.comment("V")
    writer.write_reals(record.V)
    writer.comment("U")
    writer.write_reals(record.U)
    if record.has_features:
        writer.comment("X")
        writer.write_reals(record.X)


def decode_v2(reader) -> TrainerRecord:
    """Read the remainder of a SUDS2 record (after its tag)."""
    trainer_id = reader.read_str()
    contents = reader.read_str()
    if contents not in (WITH_FEATURES, WITHOUT_FEATURES):
        raise LibraryFormatError(f"bad contents flag {contents!r}", source=trainer_id)
    nve, ns, nf, nc = (reader.read_int() for _ in range(4))
    if min(nve, ns, nf, nc) < 0:
        raise LibraryFormatError("negative record size", source=trainer_id)

    hj = reader.read_reals(ns * 6).reshape(ns, 3, 2)
    hjorth_mean = hj[:, :, 0].copy()
    hjorth_sd = hj[:, :, 1].copy()

    n_classes = reader.read_int()
    class_counts = {}
    for _ in range(n_classes):
        label = reader.read_str()
        class_counts[label] = reader.read_int()

    epochs = np.zeros(nve, dtype=int)
    labels = []
    for i in range(nve):
        epochs[i] = reader.read_int()
        labels.append(reader.read_str())

    W = reader.read_reals(nc)
    V = reader.read_reals(nf * nc).reshape(nf, nc)
    U = reader.read_reals(nve * nc).reshape(nve, nc)
    X = reader.read_reals(nve * nf).reshape(nve, nf) if contents == WITH_FEATURES else None

    record = TrainerRecord(trainer_id=trainer_id, hjorth_mean=hjorth_mean, hjorth_sd=hjorth_sd,
                           class_counts=class_counts, epochs=epochs, labels=labels,
                           W=W, V=V, U=U, X=X, version=CURRENT_VERSION)
    record.check()
    return record


# Version tag -> decoder for the fields after the tag
DECODERS: Dict[str, Callable] = {
    'SUDS2': decode_v2,
}

ENCODERS: Dict[str, Callable] = {
    'SUDS2': encode_v2,
}
