"""
Total-variation denoising of component time courses.

Exact 1-D TV denoising (Condat's direct algorithm): minimises
0.5 * ||y - x||^2 + lambda * sum |x[i+1] - x[i]|.
"""

import numpy as np


def tv1d(y: np.ndarray, lam: float) -> np.ndarray:
    """
    Denoise a 1-D signal.

    Args:
        y: Input signal
        lam: Regularisation strength (0 returns a copy)

    Returns:
        Piecewise-constant denoised signal of the same length
    """
    y = np.asarray(y, dtype=float)
    n = len(y)
    if n == 0 or lam <= 0:
        return y.copy()

    out = np.empty(n)
    k = k0 = kplus = kminus = 0
    umin, umax = lam, -lam
    vmin, vmax = y[0] - lam, y[0] + lam
    twolam = 2.0 * lam

    while True:
        while k == n - 1:
            if umin < 0.0:
                while True:
                    out[k0] = vmin
                    k0 += 1
                    if k0 > kminus:
                        break
                k = kminus = k0
                vmin = y[k0]
                umin = lam
                umax = vmin + umin - vmax
            elif umax > 0.0:
                while True:
                    out[k0] = vmax
                    k0 += 1
                    if k0 > kplus:
                        break
                k = kplus = k0
                vmax = y[k0]
                umax = -lam
                umin = vmax + umax - vmin
            else:
                vmin += umin / (k - k0 + 1)
                out[k0:k + 1] = vmin
                return out

        umin += y[k + 1] - vmin
        if umin < -lam:
            while True:
                out[k0] = vmin
                k0 += 1
                if k0 > kminus:
                    break
            k = kplus = kminus = k0
            vmin = y[k0]
            vmax = vmin + twolam
            umin, umax = lam, -lam
            continue

        umax += y[k + 1] - vmax
        if umax > lam:
            while True:
                out[k0] = vmax
                k0 += 1
                if k0 > kplus:
                    break
            k = kplus = kminus = k0
            vmax = y[k0]
            vmin = vmax - twolam
            umin, umax = lam, -lam
            continue

        k += 1
        if umin >= lam:
            kminus = k
            vmin += (umin - lam) / (kminus - k0 + 1)
            umin = lam
        if umax <= -lam:
            kplus = k
            vmax += (umax + lam) / (kplus - k0 + 1)
            umax = -lam


def denoise_components(U: np.ndarray, factor: float) -> np.ndarray:
    """
    TV-denoise every column of U with lambda = factor x SD of that column.

    Args:
        U: (n_epochs, n_components) coordinates in epoch order
        factor: Lambda as a multiple of each column's SD (0 = off)

    Returns:
        Denoised copy of U
    """
    U = np.asarray(U, dtype=float)
    if factor <= 0 or U.shape[0] < 2:
        return U.copy()
    out = np.empty_like(U)
    for j in range(U.shape[1]):
        sd = float(np.std(U[:, j], ddof=1))
        out[:, j] = tv1d(U[:, j], factor * sd)
    return out
