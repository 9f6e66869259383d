"""Tests for tables, label files, console reports and the command line tool."""

import numpy as np
import pytest
import yaml

from sudslib.cli import build_parser, main
from sudslib.ensemble import EnsemblePredictor
from sudslib.library import is_binary, read_library
from sudslib.pipeline import build_target
from sudslib.recording import save_npz
from sudslib.reports import (
    StagingReporter,
    confusion_table,
    epoch_table,
    format_labels,
    print_library_outcome,
    read_stage_file,
    stage_durations,
    summary_table,
    trainer_table,
    write_labels,
)
from sudslib.soap import Refiner, SelfEvaluator

from conftest import EPOCH_SEC, FEATURES, N_EPOCHS, make_recording


@pytest.fixture
def result(config, library, target_recording):
    target = build_target(target_recording, config, library.hjorth_bounds())
    return EnsemblePredictor(config, library).predict(target, diagnostics=True)


# === TABLES ===

def test_epoch_table(result):
    df = epoch_table(result)
    assert len(df) == N_EPOCHS
    assert df['epoch'].iloc[0] == 1
    pp = df[[f'PP_{s}' for s in result.labels_vocab]]
    kept = df['retained']
    assert np.allclose(pp[kept].sum(axis=1), 1.0)
    assert pp[~kept].isna().all(axis=None)
    assert (df.loc[~kept, 'excluded'] != '').all()
    assert (df.loc[~kept, 'predicted'] == '?').all()
    assert list(df['observed']) == list(result.observed)


def test_stage_durations(result):
    df = stage_durations(result, EPOCH_SEC)
    assert list(df.index) == result.labels_vocab + ['?']
    total = N_EPOCHS * EPOCH_SEC / 60.0
    assert df['pp'].sum() == pytest.approx(total)
    assert df['predicted'].sum() == pytest.approx(total)
    assert df['observed'].sum() == pytest.approx(total)


def test_trainer_table(result):
    df = trainer_table(result)
    assert list(df['trainer']) == ['tr0', 'tr1']
    assert df['weight'].sum() == pytest.approx(1.0)
    assert {'w_uniform', 'self_kappa', 'kappa3', 'n_W'} <= set(df.columns)


def test_confusion_table(result):
    df = confusion_table(result.stats.confusion, result.stats.labels)
    assert df.loc['Total', 'Total'] == result.stats.n
    assert df.index.name == 'observed'


def test_summary_table(result):
    df = summary_table([result], EPOCH_SEC)
    assert df.loc[0, 'id'] == 'target'
    assert df.loc[0, 'n_trainers'] == 2
    assert 'kappa' in df.columns and 'mins_W' in df.columns
    narrow = summary_table([result], EPOCH_SEC, columns=['id', 'kappa'])
    assert list(narrow.columns) == ['id', 'kappa']


# === LABEL FILES ===

def test_label_files(tmp_path):
    labels = ['W', 'N3', '?', 'R', 'N1']
    path = write_labels(labels, tmp_path / 'rec.eannot')
    assert read_stage_file(path) == labels
    assert read_stage_file(path, n_stages=3) == ['W', 'NR', '?', 'R', 'NR']

    numeric = write_labels(labels, tmp_path / 'rec.codes', numeric=True)
    assert numeric.read_text().split() == ['1', '-3', '2', '0', '-1']
    assert read_stage_file(numeric, numeric=True) == labels
    assert format_labels(['NR'], numeric=True) == ['-1']


def test_label_file_comments(tmp_path):
    path = tmp_path / 'edited.txt'
    path.write_text('% edited by hand\nW\n\nN2\n')
    assert read_stage_file(path) == ['W', 'N2']


# === CONSOLE REPORTS ===

def test_print_result(result, capsys):
    StagingReporter(EPOCH_SEC, verbose=True).print_result(result)
    out = capsys.readouterr().out
    assert 'STAGING REPORT: target' in out
    assert 'Stage Durations' in out
    assert 'Confusion Matrix' in out
    assert 'Trainer Weights' in out
    assert 'tr0' in out


def test_print_soap_and_refinement(config, recording, capsys):
    reporter = StagingReporter(EPOCH_SEC)
    reporter.print_soap(SelfEvaluator(config).evaluate_source(recording))
    fit = build_target(recording, config)
    refiner = Refiner(config, fit)
    reporter.print_refinement(fit.recording_id, [refiner.refit()])
    out = capsys.readouterr().out
    assert 'SOAP: rec_a' in out
    assert 'Self-consistency' in out
    assert 'RESOAP: rec_a' in out


def test_print_library_outcome(capsys):
    print_library_outcome({'a': None, 'b': 'too few epochs'}, skipped_only=True)
    out = capsys.readouterr().out
    assert 'Written: 1 / 2' in out
    assert 'skipped: too few epochs' in out
    assert '  a ' not in out


# === COMMAND LINE ===

@pytest.fixture
def workdir(tmp_path):
    """Two staged trainers, one target and the matching feature model on disk."""
    for i in range(2):
        save_npz(make_recording(f"tr{i}", seed=10 + i), str(tmp_path / f"tr{i}.npz"))
    save_npz(make_recording('target', seed=99), str(tmp_path / 'target.npz'))
    (tmp_path / 'features.yaml').write_text(yaml.safe_dump(FEATURES))
    return tmp_path


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_cli_train_score_copy(workdir):
    feats = str(workdir / 'features.yaml')
    db = str(workdir / 'corpus.db')
    assert main(['train', str(workdir / 'tr*.npz'), '--out', db,
                 '--features', feats, '--include-features']) == 0
    assert [r.trainer_id for r in read_library(db)] == ['tr0', 'tr1']

    out_dir = workdir / 'results'
    assert main(['-v', 'score', str(workdir / 'target.npz'), '--library', db,
                 '--features', feats, '--weights', 'kl', 'soap', '--out-dir', str(out_dir)]) == 0
    for name in ('target-epochs.csv', 'target-durations.csv', 'target-trainers.csv', 'target.eannot'):
        assert (out_dir / name).exists()
    assert len(read_stage_file(out_dir / 'target.eannot')) == N_EPOCHS

    text = workdir / 'corpus.txt'
    assert main(['copy-db', db, str(text), '--text', '--drop-features']) == 0
    assert not is_binary(text.read_bytes()[:1])


def test_cli_soap_and_resoap(workdir, capsys):
    feats = str(workdir / 'features.yaml')
    rec = str(workdir / 'tr0.npz')
    assert main(['soap', rec, '--features', feats]) == 0
    out_labels = workdir / 'tr0.eannot'
    assert main(['resoap', rec, '--features', feats, '--alter', '1=W',
                 '--out', str(out_labels)]) == 0
    assert 'RESOAP: tr0' in capsys.readouterr().out
    assert len(read_stage_file(out_labels)) == N_EPOCHS


def test_cli_reports_failures(workdir):
    feats = str(workdir / 'features.yaml')
    save_npz(make_recording('flat', flat=True), str(workdir / 'flat.npz'))
    assert main(['train', str(workdir / 'flat.npz'), '--out', str(workdir / 'flat.db'),
                 '--features', feats]) == 1
    # an empty corpus leaves nothing to score with
    assert main(['score', str(workdir / 'target.npz'), '--library', str(workdir / 'flat.db'),
                 '--features', feats]) == 1


def test_cli_resoap_pick(workdir, capsys):
    feats = str(workdir / 'features.yaml')
    out_labels = workdir / 'picked.eannot'
    assert main(['resoap', str(workdir / 'tr1.npz'), '--features', feats,
                 '--pick', '3', '--seed', '1', '--out', str(out_labels)]) == 0
    assert 'RESOAP: tr1' in capsys.readouterr().out
    labels = read_stage_file(out_labels)
    assert len(labels) == N_EPOCHS
    assert set(labels) - {'?'} <= {'N1', 'N2', 'N3', 'R', 'W'}
