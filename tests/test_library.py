"""Tests for the trainer record schema, wire codecs and corpus I/O."""

import io
import os

import numpy as np
import pytest

from sudslib.classification import predict_posteriors
from sudslib.config import StagingConfig
from sudslib.errors import ConfigurationError, LibraryFormatError
from sudslib.library import (
    END_SENTINEL,
    BinaryReader,
    BinaryWriter,
    LibraryWriter,
    TrainerLibrary,
    TrainerRecord,
    copy_library,
    is_binary,
    read_library,
    read_stream,
    write_library,
)

from conftest import FEATURES


def make_record(trainer_id='t1', nve=12, nf=5, nc=3, with_x=True, seed=0):
    rng = np.random.default_rng(seed)
    labels = ['W', 'R', 'N2'] * (nve // 3)
    return TrainerRecord(
        trainer_id=trainer_id,
        hjorth_mean=rng.random((2, 3)),
        hjorth_sd=rng.random((2, 3)),
        class_counts={'N2': nve // 3, 'R': nve // 3, 'W': nve // 3},
        epochs=np.arange(nve) * 2,
        labels=labels,
        W=np.sort(rng.random(nc))[::-1] * 10,
        V=rng.standard_normal((nf, nc)),
        U=rng.standard_normal((nve, nc)),
        X=rng.standard_normal((nve, nf)) if with_x else None,
    )


@pytest.mark.parametrize('binary', [True, False])
def test_round_trip_is_exact(tmp_path, binary):
    records = [make_record('t1'), make_record('t2', with_x=False, seed=1)]
    path = tmp_path / ('corpus.db' if binary else 'corpus.txt')
    assert write_library(records, path, binary=binary) == 2
    loaded = list(read_library(path))
    assert [r.trainer_id for r in loaded] == ['t1', 't2']
    assert all(a.equals(b) for a, b in zip(records, loaded))
    assert loaded[0].has_features and not loaded[1].has_features


def test_binary_layout():
    """Strings are length-prefixed, integers int32 little-endian."""
    buf = io.BytesIO()
    w = BinaryWriter(buf)
    w.write_str('SUDS2')
    w.write_int(-3)
    w.write_real(0.5)
    raw = buf.getvalue()
    assert raw[:6] == b'\x05SUDS2'
    assert raw[6:10] == (-3).to_bytes(4, 'little', signed=True)
    buf.seek(0)
    r = BinaryReader(buf)
    assert (r.read_str(), r.read_int(), r.read_real()) == ('SUDS2', -3, 0.5)


def test_text_stream_comments_and_sentinel(tmp_path):
    path = tmp_path / 'corpus.txt'
    write_library([make_record()], path, binary=False)
    text = path.read_text()
    assert text.startswith('%')
    assert text.rstrip().endswith(END_SENTINEL)


def test_format_detection(tmp_path):
    path = tmp_path / 'corpus.db'
    write_library([make_record()], path, binary=True)
    assert is_binary(path.read_bytes()[:1])
    assert not is_binary(b'SUDS2')
    with pytest.raises(LibraryFormatError):
        is_binary(b'')


def test_directory_corpus(tmp_path):
    directory = tmp_path / 'lib'
    write_library([make_record('b'), make_record('a')], directory, per_trainer=True)
    assert sorted(p.name for p in directory.iterdir()) == ['a.suds', 'b.suds']
    assert [r.trainer_id for r in read_library(directory)] == ['a', 'b']


def test_copy_library_converts_format(tmp_path):
    src = tmp_path / 'corpus.db'
    dst = tmp_path / 'corpus.txt'
    write_library([make_record('t1'), make_record('t2')], src)
    assert copy_library(src, dst, binary=False, drop_features=True) == 2
    assert not is_binary(dst.read_bytes()[:1])
    copied = list(read_library(dst))
    assert all(not r.has_features for r in copied)
    assert np.array_equal(copied[0].U, make_record('t1').U)


def test_text_binary_text_round_trip_keeps_features(tmp_path):
    records = [make_record('t1'), make_record('t2', nve=15, seed=4)]
    text = tmp_path / 'corpus.txt'
    binary = tmp_path / 'corpus.db'
    again = tmp_path / 'again.txt'
    write_library(records, text, binary=False)
    assert copy_library(text, binary, binary=True) == 2
    assert copy_library(binary, again, binary=False) == 2
    assert is_binary(binary.read_bytes()[:1])

    copied = list(read_library(again))
    assert all(r.has_features for r in copied)
    assert all(a.equals(b) for a, b in zip(records, copied))
    assert again.read_text() == text.read_text()


def test_read_stream_from_pipe(tmp_path):
    """Pipes cannot seek; the format is detected without rewinding."""
    path = tmp_path / 'corpus.db'
    write_library([make_record()], path)
    r, w = os.pipe()
    os.write(w, path.read_bytes())
    os.close(w)
    with open(r, 'rb') as stream:
        records = list(read_stream(stream))
    assert records[0].equals(make_record())


def test_read_stream_after_leading_bytes(tmp_path):
    path = tmp_path / 'corpus.txt'
    write_library([make_record()], path, binary=False)
    stream = io.BytesIO(b'HEADER' + path.read_bytes())
    assert stream.read(6) == b'HEADER'
    assert [r.trainer_id for r in read_stream(stream)] == ['t1']


def test_interrupted_writer_leaves_no_sentinel(tmp_path):
    path = tmp_path / 'corpus.db'
    with pytest.raises(RuntimeError):
        with LibraryWriter(path) as writer:
            writer.write(make_record('t1'))
            raise RuntimeError('interrupted')
    with pytest.raises(LibraryFormatError):
        list(read_library(path))


def test_truncated_stream(tmp_path):
    path = tmp_path / 'corpus.db'
    write_library([make_record()], path)
    path.write_bytes(path.read_bytes()[:-40])
    with pytest.raises(LibraryFormatError):
        list(read_library(path))


def test_missing_sentinel(tmp_path):
    path = tmp_path / 'corpus.txt'
    write_library([make_record()], path, binary=False)
    lines = path.read_text().splitlines()
    path.write_text('\n'.join(lines[:-1]) + '\n')
    with pytest.raises(LibraryFormatError):
        list(read_library(path))


def test_unknown_version_tag():
    stream = io.BytesIO(b'SUDS9\nx\n')
    with pytest.raises(LibraryFormatError, match='unknown record tag'):
        list(read_stream(stream))


def test_inconsistent_record_rejected(tmp_path):
    record = make_record()
    record.U = record.U[:, :2]
    with pytest.raises(LibraryFormatError):
        write_library([record], tmp_path / 'bad.db')


def test_loaded_trainer_predicts_identically(tmp_path, trainers, config):
    path = tmp_path / 'corpus.db'
    write_library([t.record for t in trainers], path)
    library = TrainerLibrary.load(path, config)
    assert library.ids == ['tr0', 'tr1']
    for original in trainers:
        loaded = library[original.trainer_id]
        assert loaded.record.equals(original.record)
        assert np.array_equal(predict_posteriors(loaded.model, loaded.U),
                              predict_posteriors(original.model, original.U))


def test_library_checks_dimensions(trainers):
    narrower = {**FEATURES, 'channels': [dict(FEATURES['channels'][0], features={'SKEW': {}})]}
    other = StagingConfig.from_dicts({}, narrower)
    with pytest.raises(ConfigurationError):
        TrainerLibrary.from_records([t.record for t in trainers], other)


def test_library_rejects_duplicate_ids(trainers, config):
    with pytest.raises(ConfigurationError):
        TrainerLibrary([trainers[0], trainers[0]], config)


def test_hjorth_bounds_from_library(library, config):
    bounds = library.hjorth_bounds()
    assert bounds.lower.shape == (config.n_channels, 3)
    assert np.all(bounds.upper > bounds.lower)
    assert len(library.with_features()) == 2
