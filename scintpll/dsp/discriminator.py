"""**discriminator.py**

======  ============================================================================================
file    scintpll/dsp/discriminator.py
brief   Carrier wipe-off and phase lock loop discriminators.
date    March 2025
refs    1. "Understanding GPS/GNSS Principles and Applications", 3rd Edition, 2017
            - Kaplan & Hegarty
        2. "Global Positioning System: Signals, Measurements, and Performance", 2nd Edition, 2006
            - Misra & Enge
======  ============================================================================================
"""

import numpy as np
from numba import njit

from scintpll.utils.enums import PllDiscriminator

# ===== WIPE-OFF ================================================================================= #

@njit(cache=True, fastmath=True)
def CarrierWipeoff(sample: np.complex128, phase: np.double):
    """
    Remove the replica carrier phase from a complex baseband sample

    Parameters
    ----------
    sample : np.complex128
        received complex baseband sample
    phase : np.double
        replica carrier phase [rad]

    Returns
    -------
    IP : np.double
        in-phase prompt correlator
    QP : np.double
        quadra-phase prompt correlator
    """
    prompt = sample * np.exp(-1j * phase)
    return prompt.real, prompt.imag

# ===== PLL ====================================================================================== #

@njit(cache=True, fastmath=True)
def PllCostas(IP: np.double, QP: np.double):
    """
    Phase Lock Loop - Costas discriminator, insensitive to data bits

    Parameters
    ----------
    IP : np.double
        in-phase prompt discriminator
    QP : np.double
        quadra-phase prompt discriminator

    Returns
    -------
    phi
        phase error/misalignment [rad], +-pi/2 when IP is zero
    """
    if IP == 0.0:
        return np.sign(QP) * 0.5 * np.pi
    return np.arctan(QP / IP)

@njit(cache=True, fastmath=True)
def PllAtan2(IP: np.double, QP: np.double):
    """
    Phase Lock Loop - ATAN2 discriminator, sensitive to data bits

    Parameters
    ----------
    IP : np.double
        in-phase prompt discriminator
    QP : np.double
        quadra-phase prompt discriminator

    Returns
    -------
    phi
        phase error/misalignment [rad]
    """
    return np.arctan2(QP, IP)

@njit(cache=True, fastmath=True)
def PllVariance(cn0: np.double, T: np.double):
    """
    Variance in the PLL discriminator

    Parameters
    ----------
    cn0 : np.double
        Carrier to noise density ratio magnitude (not dB-Hz)
    T : np.double
        Integtation time [s]

    Returns
    -------
    np.double
        variance in the PLL discriminator [rad^2]
    """
    tmp = 1.0 / (cn0 * T)
    return tmp * (1.0 + 0.5*tmp)

DISCRIMINATORS = {
    PllDiscriminator.ATAN2  : PllAtan2,
    PllDiscriminator.COSTAS : PllCostas,
}

def PhaseMeasurement(sample: np.complex128,
                     predicted_phase: np.double,
                     discriminator: PllDiscriminator=PllDiscriminator.ATAN2):
    """
    Carrier phase measurement formed from the discriminator output around the predicted phase

    Parameters
    ----------
    sample : np.complex128
        received complex baseband sample
    predicted_phase : np.double
        predicted (a priori) carrier phase [rad]
    discriminator : PllDiscriminator, optional
        Discriminator to use, by default ATAN2

    Returns
    -------
    z : np.double
        carrier phase measurement [rad]
    prompt : np.complex128
        carrier wiped-off prompt sample
    """
    IP, QP = CarrierWipeoff(sample, predicted_phase)
    phi = DISCRIMINATORS[discriminator](IP, QP)
    return predicted_phase + phi, complex(IP, QP)
