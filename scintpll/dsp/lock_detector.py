"""**lock_detector.py**

======  ============================================================================================
file    scintpll/dsp/lock_detector.py
brief   Narrow-band wide-band power ratio carrier-to-noise density estimation.
date    March 2025
refs    1. "Understanding GPS/GNSS Principles and Applications", 3rd Edition, 2017
            - Kaplan & Hegarty
        2. "Global Positioning System: Theory and Applications, Volume 1", 1996
            - Spilker, Axlerad, Parkinson, Enge
        3. "Comparison of Four SNR Estimators for QPSK Modulations", 2000
            - Pauluzzi & Beaulieu
======  ============================================================================================
"""

import numpy as np
from numba import njit

from scintpll.utils.constants import NWPR_MIN_CN0_DBHZ, NWPR_MAX_CN0_DBHZ

# ===== CONVERSIONS ============================================================================== #

@njit(cache=True, fastmath=True)
def DbHzToMagnitude(cn0_dbhz: np.double):
    """
    Carrier-to-noise density ratio from dB-Hz to magnitude [Hz]
    """
    return 10.0**(cn0_dbhz / 10.0)

@njit(cache=True, fastmath=True)
def MagnitudeToDbHz(cn0: np.double):
    """
    Carrier-to-noise density ratio from magnitude [Hz] to dB-Hz
    """
    return 10.0 * np.log10(cn0)

# ===== NWPR ===================================================================================== #

@njit(cache=True, fastmath=True)
def NarrowWideBandPowerRatio(prompt: np.ndarray):
    """
    Narrow-band over wide-band power ratio of a group of prompt samples

    Parameters
    ----------
    prompt : np.ndarray
        M_nwpr consecutive complex prompt samples

    Returns
    -------
    NP : np.double
        |sum(s)|^2 / sum(|s|^2), between 1 (pure noise on average) and M_nwpr (pure signal)
    """
    I = 0.0
    Q = 0.0
    WBP = 0.0
    for s in prompt:
        I += s.real
        Q += s.imag
        WBP += s.real**2 + s.imag**2
    if WBP <= 0.0:
        # no received power, treated as noise only
        return 1.0
    NBP = I**2 + Q**2
    return NBP / WBP

@njit(cache=True, fastmath=True)
def NwprCn0(NP_mean: np.double, M: int, T: np.double):
    """
    Carrier-to-noise density ratio estimate from the averaged power ratios

    Parameters
    ----------
    NP_mean : np.double
        mean of the last N_nwpr power ratios
    M : int
        number of samples per group
    T : np.double
        sampling interval [s]

    Returns
    -------
    cn0_dbhz : np.double
        estimated C/N0 [dB-Hz], clamped to the estimator's valid range
    """
    num = NP_mean - 1.0
    den = M - NP_mean
    if num <= 0.0:
        return NWPR_MIN_CN0_DBHZ
    if den <= 0.0:
        return NWPR_MAX_CN0_DBHZ
    cn0_dbhz = 10.0 * np.log10(num / (den * T))
    if cn0_dbhz < NWPR_MIN_CN0_DBHZ:
        return NWPR_MIN_CN0_DBHZ
    if cn0_dbhz > NWPR_MAX_CN0_DBHZ:
        return NWPR_MAX_CN0_DBHZ
    return cn0_dbhz
