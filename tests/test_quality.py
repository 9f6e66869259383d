"""Tests for retained-epoch bookkeeping and the quality filter."""

from types import SimpleNamespace

import numpy as np
import pytest

from sudslib.features import EpochFeatureExtractor
from sudslib.quality import (
    BAD_SPECTRUM,
    CAPPED,
    FLAT,
    HJORTH,
    OUTLIER,
    UNLABELED,
    HjorthBounds,
    QualityFilter,
    RetainedEpochs,
    hjorth_summary,
)


def test_retained_epochs_bookkeeping():
    retained = RetainedEpochs(6)
    assert len(retained) == 6
    assert retained.exclude([1, 4], FLAT) == 2
    # first reason wins
    assert retained.exclude([1, 2], OUTLIER) == 1
    assert retained.reason(1) == FLAT
    assert retained.reason(2) == OUTLIER
    assert retained.reason(0) is None
    assert list(retained) == [0, 3, 5]
    assert retained.position(3) == 1
    assert 4 not in retained
    assert retained.summary() == {FLAT: 2, OUTLIER: 1}
    assert retained.excluded(FLAT) == [1, 4]


def test_retained_epochs_rows_and_expand():
    retained = RetainedEpochs(5)
    retained.exclude([0], FLAT)
    # row 1 of the retained rows is epoch 2
    retained.exclude_rows(np.array([False, True, False, False]), OUTLIER)
    assert list(retained) == [1, 3, 4]

    values = np.arange(10.0).reshape(5, 2)
    assert np.array_equal(retained.take(values), values[[1, 3, 4]])
    assert retained.take(list('abcde')) == ['b', 'd', 'e']

    full = retained.expand(np.ones((3, 2)))
    assert np.isnan(full[0]).all() and np.isnan(full[2]).all()
    assert np.array_equal(full[[1, 3, 4]], np.ones((3, 2)))
    assert retained.expand_labels(['W', 'R', 'N2']) == ['?', 'W', '?', 'R', 'N2']


def test_retained_epochs_errors():
    retained = RetainedEpochs(3)
    with pytest.raises(ValueError):
        retained.exclude([0], 'unknown-reason')
    with pytest.raises(IndexError):
        retained.exclude([5], FLAT)
    with pytest.raises(ValueError):
        retained.take(np.zeros((4, 2)))
    retained.exclude([1], FLAT)
    with pytest.raises(KeyError):
        retained.position(1)


def test_initial_exclusions(config):
    qf = QualityFilter(config)
    labels = ['W', '?', 'N2', 'N2', 'R']
    bad = np.array([False, False, True, False, False])
    flat = np.array([False, True, False, False, True])
    retained = qf.initial(5, bad, flat, labels, require_labels=True)
    assert list(retained) == [0, 3]
    assert retained.reason(1) == UNLABELED
    assert retained.reason(2) == BAD_SPECTRUM
    assert retained.reason(4) == FLAT

    target = qf.initial(5, bad, flat, labels, require_labels=False)
    assert list(target) == [0, 3]
    assert target.reason(1) == FLAT


def test_outlier_removal(config, recording):
    """An epoch with an extreme spectrum is removed by the outlier passes."""
    fm = EpochFeatureExtractor(config.features).extract_all(recording)
    X = fm.X.copy()
    X[7] += 50.0
    qf = QualityFilter(config)
    retained = RetainedEpochs(len(X))
    removed = qf.remove_outliers(retained, X)
    assert len(removed) == len(config.quality.outlier_thresholds)
    assert retained.reason(7) == OUTLIER
    assert sum(removed) == len(retained.excluded(OUTLIER))


@pytest.mark.parametrize('stricter', [4.0, 3.0, 2.0])
def test_stricter_threshold_never_retains_more(config, recording, stricter):
    X = EpochFeatureExtractor(config.features).extract_all(recording).X
    qf = QualityFilter(config)
    loose = RetainedEpochs(len(X))
    qf.remove_outliers(loose, X, [8.0])
    strict = RetainedEpochs(len(X))
    qf.remove_outliers(strict, X, [8.0, stricter])
    assert len(strict) <= len(loose)
    assert set(strict) <= set(loose)


def test_outlier_pass_skips_components_without_spread(config, monkeypatch):
    rng = np.random.default_rng(5)
    U = np.column_stack([np.full(40, 0.1), rng.standard_normal(40)])
    U[4, 1] = 50.0
    qf = QualityFilter(config)
    monkeypatch.setattr(qf.projector, 'components', lambda X, nc=None: SimpleNamespace(valid=True, U=U))

    retained = RetainedEpochs(40)
    assert qf.outlier_pass(retained, np.zeros((40, 3)), k=4.0) == 1
    assert retained.excluded(OUTLIER) == [4]

    flat = RetainedEpochs(40)
    U[:, 1] = 0.3
    assert qf.outlier_pass(flat, np.zeros((40, 3)), k=4.0) == 0
    assert len(flat) == 40


def test_cap_classes_is_seeded(config):
    labels = ['W'] * 30 + ['N2'] * 10
    qf = QualityFilter(config)
    first = RetainedEpochs(40)
    assert qf.cap_classes(first, labels, max_n=12) == 18
    second = RetainedEpochs(40)
    qf.cap_classes(second, labels, max_n=12)
    assert list(first) == list(second)
    assert first.excluded() == first.excluded(CAPPED)
    assert sum(1 for i in first if labels[i] == 'N2') == 10


def test_hjorth_bounds():
    means = [np.array([[1.0, 0.3, 1.2]]), np.array([[3.0, 0.5, 1.4]])]
    sds = [np.array([[0.1, 0.02, 0.1]]), np.array([[0.3, 0.04, 0.1]])]
    bounds = HjorthBounds.from_stats(means, sds, k=2)
    assert np.allclose(bounds.lower, [[2.0 - 0.4, 0.4 - 0.06, 1.3 - 0.2]])
    assert np.allclose(bounds.upper, [[2.0 + 0.4, 0.4 + 0.06, 1.3 + 0.2]])

    hj = np.array([
        [[2.0, 0.40, 1.3]],    # inside
        [[99.0, 0.40, 1.3]],   # activity is not screened
        [[2.0, 0.90, 1.3]],    # mobility too high
        [[2.0, 0.40, 0.5]],    # complexity too low
    ])
    assert bounds.violations(hj).tolist() == [False, False, True, True]

    with pytest.raises(ValueError):
        bounds.violations(np.zeros((3, 2, 3)))


def test_apply_hjorth_bounds(config):
    qf = QualityFilter(config)
    bounds = HjorthBounds(lower=np.array([[0.0, 0.2, 1.0]]), upper=np.array([[10.0, 0.6, 2.0]]))
    hj = np.tile([[1.0, 0.4, 1.5]], (4, 1, 1))
    hj[2, 0, 1] = 0.9
    retained = RetainedEpochs(4)
    assert qf.apply_hjorth_bounds(retained, hj, bounds) == 1
    assert retained.reason(2) == HJORTH


def test_hjorth_summary():
    hj = np.arange(12.0).reshape(4, 1, 3)
    retained = RetainedEpochs(4)
    retained.exclude([3], FLAT)
    mean, sd = hjorth_summary(hj, retained)
    assert np.allclose(mean, [[3.0, 4.0, 5.0]])
    assert np.allclose(sd, [[3.0, 3.0, 3.0]])
