"""Tests for scaling, decomposition, projection and component selection."""

import numpy as np
import pytest

from sudslib.config import ProjectionSettings
from sudslib.projection import (
    SpectralProjector,
    decompose,
    denoise_components,
    select_components,
    standardize,
    tv1d,
    unit_scale,
)


@pytest.fixture
def matrix():
    rng = np.random.default_rng(4)
    latent = rng.standard_normal((80, 3))
    mixing = rng.standard_normal((3, 12))
    return latent @ mixing + 0.1 * rng.standard_normal((80, 12))


def test_standardize_uses_sample_sd(matrix):
    result = standardize(matrix)
    assert result.valid
    assert np.allclose(result.Z.mean(axis=0), 0.0)
    assert np.allclose(result.Z.std(axis=0, ddof=1), 1.0)


def test_standardize_flags_constant_column(matrix):
    X = matrix.copy()
    X[:, 5] = 2.0
    result = standardize(X)
    assert not result.valid
    assert result.constant_columns.tolist() == [5]
    assert "no variability" in result.reason


def test_robust_standardize(matrix):
    result = standardize(matrix, robust=True, winsor=0.05)
    assert result.valid
    assert np.allclose(np.median(result.Z, axis=0), 0.0, atol=1e-9)


def test_decompose_sign_convention(matrix):
    Z = standardize(matrix).Z
    U, W, V = decompose(Z)
    assert np.allclose(U * W @ V.T, Z)
    assert np.all(np.diff(W) <= 0)
    # the largest absolute loading of every component is positive
    idx = np.argmax(np.abs(V), axis=0)
    assert np.all(V[idx, np.arange(V.shape[1])] > 0)
    # same input gives identical output
    _, _, V2 = decompose(Z.copy())
    assert np.allclose(V, V2)


def test_fit_truncates_to_nc(matrix):
    proj = SpectralProjector(ProjectionSettings(nc=4)).fit(matrix)
    assert proj.valid
    assert proj.nc == 4
    assert proj.U.shape == (80, 4)
    assert proj.V.shape == (12, 4)


def test_fit_rank_limits_components():
    rng = np.random.default_rng(1)
    X = rng.standard_normal((30, 2)) @ rng.standard_normal((2, 6))
    proj = SpectralProjector(ProjectionSettings(nc=5)).fit(X)
    assert proj.valid
    assert proj.nc == 2


def test_fit_invalid_on_constant_feature(matrix):
    X = matrix.copy()
    X[:, 0] = 0.0
    proj = SpectralProjector(ProjectionSettings()).fit(X)
    assert not proj.valid
    assert proj.reason


def test_self_projection_recovers_components(matrix):
    """Projecting a recording into its own basis reproduces its coordinates."""
    projector = SpectralProjector(ProjectionSettings(nc=3))
    proj = projector.fit(matrix)
    U = projector.project(matrix, proj.V, proj.W)
    assert np.allclose(U, proj.U)


def test_project_checks_width(matrix):
    projector = SpectralProjector(ProjectionSettings(nc=3))
    proj = projector.fit(matrix)
    with pytest.raises(ValueError):
        projector.project(matrix[:, :5], proj.V, proj.W)


def test_subset(matrix):
    proj = SpectralProjector(ProjectionSettings(nc=3)).fit(matrix)
    sub = proj.subset([0, 2])
    assert sub.nc == 2
    assert np.array_equal(sub.V[:, 1], proj.V[:, 2])


def test_select_components():
    rng = np.random.default_rng(2)
    labels = ['W'] * 40 + ['N2'] * 40
    U = rng.standard_normal((80, 3))
    U[:40, 1] += 3.0
    keep, pvalues = select_components(U, labels, 1e-6)
    assert keep == [1]
    assert pvalues[1] < 1e-10
    keep_all, _ = select_components(U, labels, 1.0)
    assert keep_all == [0, 1, 2]


def test_tv1d_piecewise_constant():
    rng = np.random.default_rng(3)
    clean = np.repeat([0.0, 4.0, 1.0], 50)
    noisy = clean + 0.3 * rng.standard_normal(150)
    denoised = tv1d(noisy, 2.0)
    assert np.mean(np.abs(denoised - clean)) < np.mean(np.abs(noisy - clean))
    assert np.array_equal(tv1d(noisy, 0.0), noisy)


def test_denoise_components_shape(matrix):
    U = standardize(matrix).Z[:, :3]
    assert denoise_components(U, 0.5).shape == U.shape


def test_unit_scale():
    assert np.allclose(unit_scale(np.array([2.0, 4.0, 3.0])), [0.0, 1.0, 0.5])
    assert np.allclose(unit_scale(np.array([5.0, 5.0])), [1.0, 1.0])
