"""**cycle_slips.py**

======  ============================================================================================
file    scintpll/dsp/cycle_slips.py
brief   Off-line cycle slip detection by total variation denoising of the phase error.
date    March 2025
refs    1. "Total Variation Denoising (An MM Algorithm)", 2017
            - Selesnick
        2. "Numerical Recipes: The Art of Scientific Computing", 3rd Edition, 2007
            - Press, Teukolsky, Vetterling, Flannery
======  ============================================================================================
"""

import logging
import numpy as np
from numba import njit
from dataclasses import dataclass

from scintpll.utils.config import ConfigurationError
from scintpll.utils.constants import TWO_PI

NEGLIGIBLE_JUMP_RATIO = 1e-2    # fraction of the jump magnitude below which a difference is ignored

# ===== TOTAL VARIATION DENOISING ================================================================ #

@njit(cache=True, fastmath=True)
def SolveTridiagonal(a: np.ndarray, b: np.ndarray, c: np.ndarray, d: np.ndarray):
    """
    Thomas algorithm for a diagonally dominant tridiagonal system

    Parameters
    ----------
    a : np.ndarray
        sub-diagonal (a[0] unused)
    b : np.ndarray
        main diagonal
    c : np.ndarray
        super-diagonal (c[-1] unused)
    d : np.ndarray
        right hand side

    Returns
    -------
    x : np.ndarray
        solution
    """
    n = d.size
    cp = np.zeros(n)
    dp = np.zeros(n)
    cp[0] = c[0] / b[0]
    dp[0] = d[0] / b[0]
    for i in range(1, n):
        den = b[i] - a[i] * cp[i-1]
        cp[i] = c[i] / den
        dp[i] = (d[i] - a[i] * dp[i-1]) / den
    x = np.zeros(n)
    x[n-1] = dp[n-1]
    for i in range(n-2, -1, -1):
        x[i] = dp[i] - cp[i] * x[i+1]
    return x

@njit(cache=True, fastmath=True)
def TvDenoise(y: np.ndarray, lam: np.double, n_iterations: int=50):
    """
    Total variation denoising by majorization-minimization, minimizes
        0.5 * ||y - x||^2 + lam * ||D x||_1
    where D is the first difference operator

    Parameters
    ----------
    y : np.ndarray
        noisy signal
    lam : np.double
        regularization parameter
    n_iterations : int, optional
        number of MM iterations, by default 50

    Returns
    -------
    x : np.ndarray
        denoised (piecewise constant) signal
    """
    N = y.size
    x = y.copy()
    if N < 2:
        return x

    Dy = y[1:] - y[:-1]
    sub = -np.ones(N-1)
    sup = -np.ones(N-1)
    for _ in range(n_iterations):
        # (diag(|Dx|) / lam + D D^T) z = D y
        Dx = x[1:] - x[:-1]
        diag = np.abs(Dx) / lam + 2.0
        z = SolveTridiagonal(sub, diag, sup, Dy)

        # x = y - D^T z
        x[0] = y[0] + z[0]
        for i in range(1, N-1):
            x[i] = y[i] - (z[i-1] - z[i])
        x[N-1] = y[N-1] - z[N-2]
    return x

# ===== DETECTION ================================================================================ #

@dataclass(slots=True)
class CycleSlipResult:
    trend        : np.ndarray   # denoised (downsampled) phase error [rad]
    trend_diff   : np.ndarray   # first difference of the trend [rad]
    n_slips      : int          # number of detected slips
    slip_indices : np.ndarray   # slip locations in the original sampling
    magnitudes   : np.ndarray   # phase jump of each detected slip [rad]

@njit(cache=True, fastmath=True)
def MergeJumps(diff: np.ndarray, negligible: np.double):
    """
    Group consecutive same sign non-negligible differences into jump events

    Parameters
    ----------
    diff : np.ndarray
        first difference of the denoised trend
    negligible : np.double
        differences at or below this magnitude end an event

    Returns
    -------
    peaks : np.ndarray
        location of the largest difference within each event
    totals : np.ndarray
        summed magnitude of each event
    """
    peaks = np.zeros(diff.size, dtype=np.int64)
    totals = np.zeros(diff.size)
    n = 0
    peak_mag = 0.0
    in_event = False
    for i in range(diff.size):
        d = diff[i]
        if abs(d) <= negligible:
            in_event = False
            continue
        if in_event and np.sign(d) == np.sign(totals[n-1]):
            totals[n-1] += d
            if abs(d) > peak_mag:
                peaks[n-1] = i
                peak_mag = abs(d)
        else:
            peaks[n] = i
            totals[n] = d
            peak_mag = abs(d)
            n += 1
            in_event = True
    return peaks[:n], totals[:n]

def DetectCycleSlips(phase_error: np.ndarray,
                     lam: np.double,
                     ds_factor: int=1,
                     jump_magnitude: np.double=TWO_PI,
                     threshold_ratio: np.double=0.5,
                     n_iterations: int=50) -> CycleSlipResult:
    """
    Detect cycle slips in a phase error trajectory

    Parameters
    ----------
    phase_error : np.ndarray
        Estimated minus reference carrier phase [rad]
    lam : np.double
        Total variation regularization parameter
    ds_factor : int, optional
        Downsampling factor (every ds_factor-th sample starting with the first), by default 1
    jump_magnitude : np.double, optional
        Nominal slip size [rad], by default 2*pi
    threshold_ratio : np.double, optional
        Fraction of the nominal slip size an event must exceed, by default 0.5
    n_iterations : int, optional
        Number of denoising iterations, by default 50

    Returns
    -------
    CycleSlipResult
        Denoised trend, its first difference, slip count and slip locations

    Raises
    ------
    ConfigurationError
        Empty or non-finite phase error, or invalid detector parameters
    """
    phase_error = np.asarray(phase_error, dtype=np.double)
    if phase_error.ndim != 1 or phase_error.size == 0:
        raise ConfigurationError("phase_error", f"expected a non-empty 1-D sequence, received shape {phase_error.shape}")
    if not np.all(np.isfinite(phase_error)):
        raise ConfigurationError("phase_error", "contains non-finite values")
    if not lam > 0.0:
        raise ConfigurationError("lam", f"must be positive, received {lam}")
    if int(ds_factor) != ds_factor or ds_factor < 1:
        raise ConfigurationError("ds_factor", f"must be a positive integer, received {ds_factor}")
    if not jump_magnitude > 0.0 or not threshold_ratio > 0.0:
        raise ConfigurationError("jump_magnitude", "jump magnitude and threshold ratio must be positive")
    ds_factor = int(ds_factor)

    trend = TvDenoise(phase_error[::ds_factor].copy(), np.double(lam), int(n_iterations))
    trend_diff = np.diff(trend)

    threshold = threshold_ratio * jump_magnitude
    peaks, totals = MergeJumps(trend_diff, NEGLIGIBLE_JUMP_RATIO * jump_magnitude)
    is_slip = np.abs(totals) > threshold

    # a difference at i is a jump between trend samples i and i+1
    slip_indices = (peaks[is_slip] + 1) * ds_factor
    magnitudes = totals[is_slip]
    n_slips = int(slip_indices.size)
    logging.getLogger('ScintPLL_Logger').debug(f"Cycle slip detection: {n_slips} slip(s) at {slip_indices.tolist()}.")
    return CycleSlipResult(trend, trend_diff, n_slips, slip_indices, magnitudes)
