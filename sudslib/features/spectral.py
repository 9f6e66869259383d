"""
Spectral and Time-Domain Helpers

Per-epoch building blocks used by the feature extractor: segment-wise
Welch periodograms, fixed-width spectral binning, spectral slope,
Petrosian fractal dimension, permutation entropy and Hjorth parameters.
Every function is pure and works on a single mean-centred channel epoch.
"""

from math import factorial
from typing import Tuple

import numpy as np
from scipy import signal

from .definitions import BIN_WIDTH, POWER_FLOOR, WINDOWS, bin_starts


def segment_periodograms(x: np.ndarray, sample_rate: float, segment_sec: float,
                         overlap_sec: float, window: str = 'tukey50') -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute the periodogram of every Welch segment of one epoch.

    Args:
        x: Mean-centred epoch samples
        sample_rate: Sample rate in Hz
        segment_sec: Segment length in seconds
        overlap_sec: Overlap between segments in seconds
        window: Window name (see WINDOWS)

    Returns:
        Tuple of (frequencies, periodograms) where periodograms has shape
        (n_frequencies, n_segments); the Welch PSD is its mean over segments.
    """
    if window not in WINDOWS:
        raise ValueError(f"Unknown window: {window}. Available: {sorted(WINDOWS)}")
    nperseg = min(len(x), int(round(segment_sec * sample_rate)))
    noverlap = min(nperseg - 1, int(round(overlap_sec * sample_rate)))
    freqs, _, sxx = signal.spectrogram(
        x, fs=sample_rate, window=WINDOWS[window], nperseg=nperseg,
        noverlap=max(noverlap, 0), detrend=False, scaling='density', mode='psd'
    )
    return freqs, sxx


def bin_power(freqs: np.ndarray, psd: np.ndarray, lwr: float, upr: float) -> np.ndarray:
    """
    Mean PSD within each 1-Hz bin [a, a+1) starting at lwr.

    Bins without any frequency point are returned as zero so that the
    caller flags the epoch.
    """
    starts = bin_starts(lwr, upr)
    out = np.zeros(len(starts))
    for i, a in enumerate(starts):
        mask = (freqs >= a) & (freqs < a + BIN_WIDTH)
        if np.any(mask):
            out[i] = np.mean(psd[mask])
    return out


def band_power(freqs: np.ndarray, psd: np.ndarray, lwr: float, upr: float) -> float:
    """Integrated power in [lwr, upr]."""
    mask = (freqs >= lwr) & (freqs <= upr)
    if not np.any(mask):
        return 0.0
    df = freqs[1] - freqs[0] if len(freqs) > 1 else 1.0
    return float(np.sum(psd[mask]) * df)


def floor_power(values: np.ndarray) -> Tuple[np.ndarray, bool]:
    """Replace non-positive (or non-finite) powers by POWER_FLOOR; report if any were replaced."""
    bad = ~np.isfinite(values) | (values <= 0)
    if np.any(bad):
        values = values.copy()
        values[bad] = POWER_FLOOR
        return values, True
    return values, False


def spectral_slope(freqs: np.ndarray, psd: np.ndarray, lwr: float, upr: float,
                   threshold: float = 3.0) -> Tuple[float, bool]:
    """
    Log-log spectral slope over [lwr, upr].

    A first line is fitted, points whose residual lies beyond `threshold`
    SD of the residuals are dropped, and the line is refitted.

    Returns:
        Tuple of (slope, bad) where bad is True when the fit is not possible
    """
    mask = (freqs >= lwr) & (freqs <= upr) & (freqs > 0)
    f = freqs[mask]
    p = psd[mask]
    if len(f) < 3 or np.any(p <= 0) or not np.all(np.isfinite(p)):
        return 0.0, True

    lf = np.log10(f)
    lp = np.log10(p)
    coef = np.polyfit(lf, lp, 1)
    resid = lp - np.polyval(coef, lf)
    sd = np.std(resid)
    if threshold > 0 and sd > 0:
        keep = np.abs(resid - np.mean(resid)) <= threshold * sd
        if np.sum(keep) >= 3 and not np.all(keep):
            coef = np.polyfit(lf[keep], lp[keep], 1)
    return float(coef[0]), False


def petrosian_fd(x: np.ndarray) -> float:
    """Petrosian fractal dimension."""
    n = len(x)
    if n < 3:
        return 0.0
    d = np.diff(x)
    n_delta = int(np.sum(np.signbit(d[1:]) != np.signbit(d[:-1])))
    return float(np.log10(n) / (np.log10(n) + np.log10(n / (n + 0.4 * n_delta))))


def permutation_entropy(x: np.ndarray, order: int, delay: int = 1) -> float:
    """
    Normalised permutation entropy (0 = fully regular, 1 = random).

    Args:
        x: Epoch samples
        order: Embedding dimension (pattern length)
        delay: Embedding delay in samples

    Returns:
        Shannon entropy of the ordinal-pattern distribution divided by log(order!)
    """
    n = len(x) - (order - 1) * delay
    if n <= 0:
        return 0.0
    idx = np.arange(n)[:, None] + delay * np.arange(order)[None, :]
    patterns = np.argsort(x[idx], axis=1, kind='stable')
    codes = patterns @ (order ** np.arange(order))
    _, counts = np.unique(codes, return_counts=True)
    p = counts / counts.sum()
    return float(-np.sum(p * np.log(p)) / np.log(factorial(order)))


def hjorth(x: np.ndarray) -> Tuple[float, float, float]:
    """
    Hjorth activity, mobility and complexity.

    Mobility and complexity are zero for a signal without variance.
    """
    dx = np.diff(x)
    ddx = np.diff(dx)
    var_x = float(np.var(x))
    var_dx = float(np.var(dx)) if len(dx) else 0.0
    var_ddx = float(np.var(ddx)) if len(ddx) else 0.0

    if var_x <= 0 or var_dx <= 0:
        return var_x, 0.0, 0.0
    mobility = np.sqrt(var_dx / var_x)
    complexity = np.sqrt(var_ddx / var_dx) / mobility
    return var_x, float(mobility), float(complexity)
