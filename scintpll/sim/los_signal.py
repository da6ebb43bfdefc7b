"""**los_signal.py**

======  ============================================================================================
file    scintpll/sim/los_signal.py
brief   Synthetic line-of-sight (non-scintillated) complex baseband carrier.
date    March 2025
refs    1. "Global Positioning System: Signals, Measurements, and Performance", 2nd Edition, 2006
            - Misra & Enge
======  ============================================================================================
"""

import numpy as np
from dataclasses import dataclass

from scintpll.dsp.lock_detector import DbHzToMagnitude
from scintpll.utils.config import ConfigurationError

@dataclass(slots=True)
class LosSignal:
    time  : np.ndarray  # sample times [s]
    phase : np.ndarray  # true carrier phase [rad]
    rx    : np.ndarray  # received complex baseband samples

def LosPhase(doppler_profile: np.ndarray, time: np.ndarray) -> np.ndarray:
    """
    Carrier phase of a polynomial Doppler profile, phase = sum(profile[i] * t^i / i!)

    Parameters
    ----------
    doppler_profile : np.ndarray
        [initial phase [rad], frequency [rad/s], frequency rate [rad/s^2], ...]
    time : np.ndarray
        Sample times [s]

    Returns
    -------
    np.ndarray
        Carrier phase [rad]
    """
    phase = np.zeros(time.size, dtype=np.double)
    factorial = 1.0
    for i, p in enumerate(doppler_profile):
        if i > 0:
            factorial *= i
        phase += p * time**i / factorial
    return phase

def GenerateLosSignal(cn0_dbhz: np.double,
                      doppler_profile: np.ndarray,
                      sampling_interval: np.double,
                      simulation_time: np.double,
                      rng: np.random.Generator=None) -> LosSignal:
    """
    Unit amplitude carrier in circular complex Gaussian noise at a constant C/N0

    Parameters
    ----------
    cn0_dbhz : np.double
        Carrier-to-noise density ratio [dB-Hz]
    doppler_profile : np.ndarray
        Polynomial phase profile, see :func:`LosPhase`
    sampling_interval : np.double
        Sampling interval T [s]
    simulation_time : np.double
        Last sample time [s], samples are taken at T, 2T, ..., simulation_time
    rng : np.random.Generator, optional
        Noise generator, by default a new unseeded generator

    Returns
    -------
    LosSignal
        Sample times, true phase and received samples (noise variance 1 / (C/N0 * T))
    """
    if not sampling_interval > 0.0:
        raise ConfigurationError("sampling_interval", f"must be positive, received {sampling_interval}")
    if not simulation_time >= sampling_interval:
        raise ConfigurationError("simulation_time", f"must be at least one sampling interval, received {simulation_time}")
    if rng is None:
        rng = np.random.default_rng()

    N = int(np.round(simulation_time / sampling_interval))
    time = sampling_interval * np.arange(1, N + 1, dtype=np.double)
    phase = LosPhase(np.atleast_1d(np.asarray(doppler_profile, dtype=np.double)), time)

    sigma2 = 1.0 / (DbHzToMagnitude(cn0_dbhz) * sampling_interval)
    noise = np.sqrt(sigma2 / 2.0) * (rng.standard_normal(N) + 1j * rng.standard_normal(N))
    rx = np.exp(1j * phase) + noise
    return LosSignal(time, phase, rx)
