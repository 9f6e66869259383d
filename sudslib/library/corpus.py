"""
Trainer corpus I/O.

A corpus is either a single stream file holding any number of
concatenated trainer records, or a directory of such files. Every
stream ends with the `_END_` sentinel. Both wire formats are detected
automatically on read, and records are yielded one at a time.
"""

import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

import numpy as np

from ..classification import DiscriminantModel, fit_discriminant
from ..config import StagingConfig
from ..errors import ConfigurationError, LibraryFormatError
from ..quality import HjorthBounds
from .codecs import BinaryReader, BinaryWriter, TextReader, TextWriter, is_binary
from .schema import CURRENT_VERSION, DECODERS, ENCODERS, END_SENTINEL, TrainerRecord

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Extension used for per-trainer files in a directory corpus
TRAINER_SUFFIX = '.suds'


def read_stream(stream: io.BufferedIOBase, source: str = '') -> Iterator[TrainerRecord]:
    """
    Yield records from one open binary-mode stream until the end sentinel.

    Args:
        stream: Stream opened in binary mode, positioned at the first record.
            Buffered streams (files, pipes, stdin) are peeked; others must
            be seekable.
        source: Name used in error messages
    """
    if hasattr(stream, 'peek'):
        head = stream.peek(1)[:1]
    else:
        start = stream.tell()
        head = stream.read(1)
        stream.seek(start)
    binary = is_binary(head)
    if binary:
        reader = BinaryReader(stream, source)
    else:
        reader = TextReader(io.TextIOWrapper(stream, encoding='utf-8'), source)

    while True:
        tag = reader.read_str()
        if tag == END_SENTINEL:
            return
        decoder = DECODERS.get(tag)
        if decoder is None:
            raise LibraryFormatError(f"unknown record tag {tag!r}", source=source)
        yield decoder(reader)


def _stream_files(path: Path) -> List[Path]:
    if path.is_dir():
        return sorted(p for p in path.iterdir() if p.is_file() and not p.name.startswith('.'))
    if path.is_file():
        return [path]
    raise FileNotFoundError(f"Trainer library not found: {path}")


def read_library(path: PathLike) -> Iterator[TrainerRecord]:
    """
    Stream every trainer record of a corpus file or directory.

    Args:
        path: Corpus file or directory of corpus files

    Yields:
        TrainerRecord
    """
    for file in _stream_files(Path(path)):
        with open(file, 'rb') as f:
            yield from read_stream(f, source=str(file))


class LibraryWriter:
    """
    Write trainer records to a corpus.

    Usage:
        with LibraryWriter('corpus.db', binary=True) as writer:
            writer.write(record)

    If `path` is an existing directory (or `per_trainer=True`), each record
    is written to its own `<id>.suds` stream inside it.
    """

    def __init__(self, path: PathLike, binary: bool = True, per_trainer: bool = False):
        self.path = Path(path)
        self.binary = binary
        self.per_trainer = per_trainer or self.path.is_dir()
        self.n_written = 0
        self._stream = None
        self._writer = None

    def __enter__(self) -> 'LibraryWriter':
        if self.per_trainer:
            self.path.mkdir(parents=True, exist_ok=True)
        else:
            self._stream, self._writer = self._open(self.path)
        return self

    def __exit__(self, exc_type, exc, tb):
        # an interrupted corpus is left without its end sentinel
        self.close(complete=exc_type is None)
        return False

    def _open(self, path: Path):
        if self.binary:
            stream = open(path, 'wb')
            return stream, BinaryWriter(stream)
        stream = open(path, 'w', encoding='utf-8', newline='\n')
        writer = TextWriter(stream)
        writer.comment(f"trainer library ({CURRENT_VERSION})")
        return stream, writer

    def write(self, record: TrainerRecord, version: str = CURRENT_VERSION):
        encoder = ENCODERS[version]
        if self.per_trainer:
            stream, writer = self._open(self.path / f"{record.trainer_id}{TRAINER_SUFFIX}")
            try:
                encoder(record, writer)
                writer.write_str(END_SENTINEL)
            finally:
                stream.close()
        else:
            if self._writer is None:
                raise ValueError("LibraryWriter is not open")
            encoder(record, self._writer)
        self.n_written += 1

    def close(self, complete: bool = True):
        if self._stream is not None:
            if complete:
                self._writer.write_str(END_SENTINEL)
            self._stream.close()
            self._stream = None
            self._writer = None


def write_library(records: Iterable[TrainerRecord], path: PathLike,
                  binary: bool = True, per_trainer: bool = False) -> int:
    """
    Write records to a corpus.

    Returns:
        Number of records written
    """
    with LibraryWriter(path, binary=binary, per_trainer=per_trainer) as writer:
        for record in records:
            writer.write(record)
    return writer.n_written


def copy_library(src: PathLike, dst: PathLike, binary: bool = True,
                 drop_features: bool = False) -> int:
    """
    Copy a corpus, converting between text and binary formats.

    Args:
        src: Source corpus (either format)
        dst: Destination file
        binary: Write the binary format (else text)
        drop_features: Omit raw feature matrices from the copy

    Returns:
        Number of records copied
    """
    records = read_library(src)
    if drop_features:
        records = (r.without_features() for r in records)
    n = write_library(records, dst, binary=binary)
    logger.info(f"Copied {n} trainers from {src} to {dst} ({'binary' if binary else 'text'})")
    return n


@dataclass
class Trainer:
    """A loaded trainer: its persisted record plus the refitted classifier."""
    record: TrainerRecord
    model: DiscriminantModel

    @property
    def trainer_id(self) -> str:
        return self.record.trainer_id

    @property
    def U(self) -> np.ndarray:
        return self.record.U

    @property
    def V(self) -> np.ndarray:
        return self.record.V

    @property
    def W(self) -> np.ndarray:
        return self.record.W

    @property
    def X(self) -> Optional[np.ndarray]:
        return self.record.X

    @property
    def labels(self) -> List[str]:
        return self.record.labels

    @classmethod
    def from_record(cls, record: TrainerRecord, method: str = 'lda',
                    flat_priors: bool = False) -> 'Trainer':
        return cls(record=record,
                   model=fit_discriminant(record.U, record.labels, method, flat_priors))


class TrainerLibrary:
    """
    Read-only collection of trainers, keyed and iterated by id.

    Usage:
        library = TrainerLibrary.load('corpus.db', config)
        for trainer in library:
            ...
    """

    def __init__(self, trainers: Iterable[Trainer], config: StagingConfig):
        self.config = config
        self._trainers: Dict[str, Trainer] = {}
        for t in trainers:
            if t.trainer_id in self._trainers:
                raise ConfigurationError(f"duplicate trainer id '{t.trainer_id}' in library")
            self._trainers[t.trainer_id] = t

    @classmethod
    def from_records(cls, records: Iterable[TrainerRecord], config: StagingConfig,
                     source: str = '') -> 'TrainerLibrary':
        """
        Build from records, checking dimensions and refitting classifiers.

        Raises:
            ConfigurationError: if a record's channel or feature count differs
                from the configuration
        """
        ns = config.n_channels
        nf = config.n_features
        trainers = []
        for record in records:
            if record.ns != ns or record.nf != nf:
                raise ConfigurationError(
                    f"{source or 'library'}: trainer {record.trainer_id} has {record.ns} channels / "
                    f"{record.nf} features, configuration expects {ns} / {nf}"
                )
            trainer = Trainer.from_record(record, config.classifier.method,
                                          config.classifier.flat_priors)
            if not trainer.model.valid:
                logger.warning(f"Skipping trainer {record.trainer_id}: {trainer.model.reason}")
                continue
            trainers.append(trainer)
        library = cls(trainers, config)
        logger.info(f"Loaded {len(library)} trainers{' from ' + source if source else ''}")
        return library

    @classmethod
    def load(cls, path: PathLike, config: StagingConfig) -> 'TrainerLibrary':
        return cls.from_records(read_library(path), config, source=os.fspath(path))

    def __len__(self) -> int:
        return len(self._trainers)

    def __iter__(self) -> Iterator[Trainer]:
        return iter(self._trainers[k] for k in self.ids)

    def __contains__(self, trainer_id: str) -> bool:
        return trainer_id in self._trainers

    def __getitem__(self, trainer_id: str) -> Trainer:
        return self._trainers[trainer_id]

    @property
    def ids(self) -> List[str]:
        return sorted(self._trainers)

    def with_features(self) -> List[Trainer]:
        """Trainers that carry raw features (usable as weight trainers)."""
        return [t for t in self if t.X is not None]

    def hjorth_bounds(self, k: Optional[float] = None) -> HjorthBounds:
        """Corpus Hjorth bounds: mean of trainer means +/- k x mean of trainer SDs."""
        k = self.config.quality.hjorth_threshold if k is None else k
        return HjorthBounds.from_stats([t.record.hjorth_mean for t in self],
                                       [t.record.hjorth_sd for t in self], k)
