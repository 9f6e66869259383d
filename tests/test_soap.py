"""Tests for self-evaluation (SOAP) and iterative refinement (RESOAP)."""

import numpy as np
import pytest

from sudslib.errors import InsufficientDataError
from sudslib.pipeline import TARGET, TRAINER, build_target, fit_individual
from sudslib.quality import UNLABELED
from sudslib.soap import KEEP, Refiner, SelfEvaluator
from sudslib.stages import UNKNOWN, count_stages

from conftest import make_recording, stage_sequence


@pytest.fixture
def target_fit(config, recording):
    return build_target(recording, config)


# === SOAP ===

def test_self_evaluation(config, recording):
    result = SelfEvaluator(config).evaluate_source(recording)
    n = result.posteriors.shape[0]
    assert result.posteriors.shape == (n, 5)
    assert np.allclose(result.posteriors.sum(axis=1), 1.0)
    assert len(result.predicted) == n
    # stages have clearly different spectra
    assert result.kappa > 0.8
    assert result.stats.n == n


def test_self_evaluation_is_repeatable(config, target_fit):
    evaluator = SelfEvaluator(config)
    first = evaluator.evaluate(target_fit)
    second = evaluator.evaluate(target_fit)
    assert np.array_equal(first.stats.confusion, second.stats.confusion)
    assert first.kappa == second.kappa
    assert first.predicted == second.predicted
    assert np.array_equal(first.posteriors, second.posteriors)


def test_self_evaluation_with_proposed_staging(config, recording):
    """A shuffled staging is much less self-consistent than the real one."""
    rng = np.random.default_rng(0)
    shuffled = list(rng.permutation(stage_sequence()))
    evaluator = SelfEvaluator(config)
    real = evaluator.evaluate_source(recording)
    proposed = evaluator.evaluate_source(recording, labels=shuffled)
    assert proposed.kappa < real.kappa


def test_self_evaluation_needs_staging(config, recording):
    with pytest.raises(InsufficientDataError, match='no staging'):
        SelfEvaluator(config).evaluate_source(recording.with_stages(None))


def test_self_evaluation_needs_two_classes(config, target_fit):
    labels = ['W'] * len(target_fit.retained)
    with pytest.raises(InsufficientDataError, match='too few stages'):
        SelfEvaluator(config).evaluate_coordinates(target_fit.U, labels, 'rec')


# === RESOAP ===

def test_single_edit(config, target_fit):
    refiner = Refiner(config, target_fit)
    first = refiner.refit()
    assert first.n_changed == 0
    assert first.n_prediction_changed == 0
    assert first.original_stats is not None

    epoch = list(target_fit.retained)[0]
    old = target_fit.labels[epoch]
    assert refiner.alter(epoch, 'W' if old != 'W' else 'N3')
    second = refiner.refit()
    assert second.n_changed == 1
    assert second.labels[0] != first.labels[0]
    assert second.labels[1:] == first.labels[1:]
    assert -1.0 <= second.kappa <= 1.0
    assert refiner.agreement_with_original() < 1.0

    # no further edits
    assert refiner.refit().n_changed == 0


def test_alter_unretained_epoch(config):
    stages = stage_sequence()
    stages[3] = UNKNOWN
    fit = fit_individual(make_recording('rec_u', seed=1, stages=stages), config, TRAINER)
    assert fit.valid and fit.retained.reason(3) == UNLABELED
    refiner = Refiner(config, fit)
    assert not refiner.alter(3, 'W')
    assert not refiner.alter(10_000, 'W')


def test_pick_keeps_n_per_class(config, target_fit):
    refiner = Refiner(config, target_fit)
    picked = refiner.pick(8, seed=3)
    counts = count_stages(picked)
    assert set(counts.values()) == {8}
    assert sum(1 for s in picked if s == UNKNOWN) == len(picked) - 8 * len(counts)

    again = Refiner(config, target_fit).pick(8, seed=3)
    assert again == picked


def test_pick_exact_drops_small_classes(config, target_fit):
    refiner = Refiner(config, target_fit)
    picked = refiner.pick(1000, exact=True)
    assert all(s == UNKNOWN for s in picked)


def test_refit_from_three_seeds_per_class(config, target_fit):
    refiner = Refiner(config, target_fit)
    picked = refiner.pick(3, seed=1)
    result = refiner.refit()
    assert result.dropped_classes == []
    assert len(result.predicted) == len(target_fit.retained)
    # unlabelled epochs are predicted too
    assert UNKNOWN not in result.predicted
    assert result.labels == picked
    assert result.original_stats.kappa > 0


def test_refit_policies(config, target_fit):
    refiner = Refiner(config, target_fit)
    picked = refiner.pick(8, seed=1)
    # thin W down to two seed epochs, below the RESOAP minimum of three
    w_rows = [i for i, s in enumerate(picked) if s == 'W']
    for pos in w_rows[2:]:
        assert refiner.alter(int(target_fit.retained.indices[pos]), UNKNOWN)

    dropped = refiner.refit()
    assert dropped.dropped_classes == ['W']
    assert 'W' not in set(dropped.predicted)

    kept = refiner.refit(KEEP)
    assert kept.dropped_classes == []
    assert len(kept.predicted) == len(target_fit.retained)

    with pytest.raises(ValueError):
        refiner.refit('ignore')


def test_refit_needs_more_epochs_than_components(config, target_fit):
    refiner = Refiner(config, target_fit)
    refiner.pick(2, seed=1)
    # two per class: every class is dropped
    with pytest.raises(InsufficientDataError):
        refiner.refit()
    # kept, 10 labelled epochs do not outnumber the components plus one
    nc = target_fit.U.shape[1]
    assert nc >= 9
    with pytest.raises(InsufficientDataError, match=f'need more than {nc + 1}'):
        refiner.refit(KEEP)


def test_refiner_rejects_bad_input(config, target_fit):
    with pytest.raises(ValueError):
        Refiner(config, target_fit, labels=['W'] * 3)
    flat = fit_individual(make_recording('flat', flat=True), config, TARGET)
    assert not flat.valid
    with pytest.raises(InsufficientDataError):
        Refiner(config, flat)
