"""**adaptive.py**

======  ============================================================================================
file    scintpll/dsp/adaptive.py
brief   Online measurement and process noise covariance adaptation for the Kalman filter PLL.
date    March 2025
refs    1. "Adaptive Kalman Filter for Navigation Sensor Fusion", 2008
            - Loebis, Sutton, Chudley
        2. "On the Identification of Variances and Adaptive Kalman Filtering", 1970
            - Mehra
        3. "Comparison of Four SNR Estimators for QPSK Modulations", 2000
            - Pauluzzi & Beaulieu
======  ============================================================================================
"""

import numpy as np
from abc import ABC, abstractmethod

from scintpll.dsp.discriminator import PllVariance
from scintpll.dsp.lock_detector import DbHzToMagnitude, NarrowWideBandPowerRatio, NwprCn0
from scintpll.model.state_space import StateSpaceModel
from scintpll.utils.config import (AdaptiveConfig, NwprParams, MatchingParams, HardLimiterParams,
                                   ConfigurationError)
from scintpll.utils.enums import MeasurementCovAdaptAlgorithm, StatesCovAdaptAlgorithm, MatchingMethod
from scintpll.utils.ring_buffer import RingBuffer

# ===== MEASUREMENT COVARIANCE =================================================================== #

class MeasurementCovarianceAdapter(ABC):
    """
    Produces the measurement noise covariance R_k from the wiped-off prompt samples.
    """

    __slots__ = 'T', 'nominal_cn0_dbhz', 'cn0_dbhz', 'R'
    T                : np.double    # sampling interval [s]
    nominal_cn0_dbhz : np.double    # reference C/N0 [dB-Hz]
    cn0_dbhz         : np.double    # current C/N0 estimate [dB-Hz]
    R                : np.ndarray   # current measurement covariance (1 x 1)

    def __init__(self, T: np.double, nominal_cn0_dbhz: np.double):
        self.T = np.double(T)
        self.nominal_cn0_dbhz = np.double(nominal_cn0_dbhz)
        self.cn0_dbhz = self.nominal_cn0_dbhz
        self.R = self.CovarianceFromCn0(self.nominal_cn0_dbhz)
        return

    def CovarianceFromCn0(self, cn0_dbhz: np.double) -> np.ndarray:
        """
        PLL discriminator variance at the given C/N0 as a 1 x 1 covariance [rad^2]
        """
        return np.array([[PllVariance(DbHzToMagnitude(cn0_dbhz), self.T)]], dtype=np.double)

    @abstractmethod
    def Adapt(self, prompt: np.complex128) -> np.ndarray:
        """
        Consume one prompt sample and return the measurement covariance for the current step
        """
        pass

class FixedMeasurementCovariance(MeasurementCovarianceAdapter):
    """
    R_k held at the discriminator variance of the nominal C/N0.
    """

    __slots__ = ()

    def Adapt(self, prompt: np.complex128) -> np.ndarray:
        return self.R

class NwprMeasurementCovariance(MeasurementCovarianceAdapter):
    """
    Narrow-band wide-band power ratio (NWPR) driven measurement covariance. Prompt samples are
    grouped by M_nwpr and the power ratio of the last N_nwpr groups is mapped to C/N0. Until the
    first N_nwpr groups complete, the nominal C/N0 and its covariance are reported.
    """

    __slots__ = 'params', 'hard_limiter', 'group', 'ratios', 'is_limited', 'R_limit'
    params       : NwprParams
    hard_limiter : HardLimiterParams
    group        : RingBuffer       # prompts of the group being accumulated
    ratios       : RingBuffer       # power ratios of the last N_nwpr groups
    is_limited   : bool             # hard limiter active on the current estimate
    R_limit      : np.ndarray       # covariance forced by the hard limiter

    def __init__(self,
                 T: np.double,
                 nominal_cn0_dbhz: np.double,
                 params: NwprParams,
                 hard_limiter: HardLimiterParams=HardLimiterParams()):
        MeasurementCovarianceAdapter.__init__(self, T, nominal_cn0_dbhz)
        self.params       = params
        self.hard_limiter = hard_limiter
        self.group        = RingBuffer(params.M_nwpr, dtype=np.complex128)
        self.ratios       = RingBuffer(params.N_nwpr)
        self.is_limited   = False
        if hard_limiter.is_used:
            self.R_limit = self.CovarianceFromCn0(hard_limiter.threshold_dbhz)
        else:
            self.R_limit = None
        return

    def Adapt(self, prompt: np.complex128) -> np.ndarray:
        """
        Accumulate one prompt sample, updating C/N0 and R_k when a group completes

        Parameters
        ----------
        prompt : np.complex128
            Carrier wiped-off prompt sample

        Returns
        -------
        R : np.ndarray
            Measurement covariance (1 x 1) [rad^2]
        """
        self.group.Push(prompt)
        if not self.group.is_full:
            return self.R

        # group complete
        self.ratios.Push(NarrowWideBandPowerRatio(self.group.Ordered()))
        self.group.Clear()
        if not self.ratios.is_full:
            return self.R

        self.cn0_dbhz = NwprCn0(np.mean(self.ratios.buffer), self.params.M_nwpr, self.T)
        self.is_limited = self.hard_limiter.is_used and self.cn0_dbhz < self.hard_limiter.threshold_dbhz
        if self.is_limited:
            self.R = self.R_limit
        else:
            self.R = self.CovarianceFromCn0(self.cn0_dbhz)
        return self.R

# ===== PROCESS COVARIANCE ======================================================================= #

class StateCovarianceAdapter(ABC):
    """
    Produces the process noise covariance Q_k applied in the next prediction.
    """

    __slots__ = 'model', 'Q'
    model : StateSpaceModel
    Q     : np.ndarray      # covariance for the next prediction (n x n)

    def __init__(self, model: StateSpaceModel):
        self.model = model
        self.Q = model.Q_base
        return

    @abstractmethod
    def Adapt(self, innovation: np.ndarray, P: np.ndarray, R: np.ndarray) -> np.ndarray:
        """
        Consume the innovation and posterior covariance of the current step and return the
        process covariance for the next prediction
        """
        pass

class FixedStateCovariance(StateCovarianceAdapter):
    """
    Q_k held at the model's process covariance.
    """

    __slots__ = ()

    def Adapt(self, innovation: np.ndarray, P: np.ndarray, R: np.ndarray) -> np.ndarray:
        return self.Q

class MatchingStateCovariance(StateCovarianceAdapter):
    """
    Covariance matching of the process noise. Once the innovation window is full, the empirical
    innovation covariance C is matched to H F P F^T H^T + H Q H^T + R by a non-negative scaling of
    each active Wiener noise component (RAE: residual based adaptive estimation).
    """

    __slots__ = 'params', 'window', 'active', 'A'
    params : MatchingParams
    window : RingBuffer         # last window_size innovations
    active : np.ndarray         # indices of the noise components with non-zero base variance
    A      : np.ndarray         # least squares design matrix, vec(H Q_i H^T) per active component

    def __init__(self, model: StateSpaceModel, params: MatchingParams):
        StateCovarianceAdapter.__init__(self, model)
        if params.method != MatchingMethod.RAE:
            raise ConfigurationError("states_cov_adapt_algorithm_params.method",
                                     f"matching method '{params.method}' is not supported")
        self.params = params
        self.window = RingBuffer(params.window_size, shape=(model.m,))
        self.active = np.flatnonzero(model.sigma > 0.0)
        H = model.H
        self.A = np.stack([(H @ model.Q_components[i] @ H.T).ravel() for i in self.active], axis=1) \
                 if self.active.size > 0 else np.zeros((model.m**2, 0), dtype=np.double)
        return

    def Adapt(self, innovation: np.ndarray, P: np.ndarray, R: np.ndarray) -> np.ndarray:
        """
        Push the innovation and recompute Q_k from the full window

        Parameters
        ----------
        innovation : np.ndarray
            Innovation of the current step (m)
        P : np.ndarray
            Posterior covariance of the current step (n x n)
        R : np.ndarray
            Measurement covariance of the current step (m x m)

        Returns
        -------
        Q : np.ndarray
            Process covariance for the next prediction (n x n), Q_base until the window is full
        """
        self.window.Push(innovation)
        if not self.window.is_full or self.active.size == 0:
            return self.Q

        Y = self.window.buffer
        C = (Y.T @ Y) / self.window.capacity
        HF = self.model.H @ self.model.F
        D = C - R - HF @ P @ HF.T

        alpha = np.linalg.lstsq(self.A, D.ravel(), rcond=None)[0]
        alpha = np.clip(alpha, 0.0, None)
        self.Q = np.einsum('k,kij->ij', alpha, self.model.Q_components[self.active])
        return self.Q

# ===== FACTORIES ================================================================================ #

def MeasurementCovarianceFromConfig(config: AdaptiveConfig,
                                    nominal_cn0_dbhz: np.double) -> MeasurementCovarianceAdapter:
    """
    Create a fresh measurement covariance adapter for the configured algorithm
    """
    if config.measurement_algorithm == MeasurementCovAdaptAlgorithm.NWPR:
        return NwprMeasurementCovariance(config.sampling_interval, nominal_cn0_dbhz, config.nwpr,
                                         config.hard_limited)
    return FixedMeasurementCovariance(config.sampling_interval, nominal_cn0_dbhz)

def StateCovarianceFromConfig(config: AdaptiveConfig, model: StateSpaceModel) -> StateCovarianceAdapter:
    """
    Create a fresh process covariance adapter for the configured algorithm
    """
    if config.states_algorithm == StatesCovAdaptAlgorithm.MATCHING:
        return MatchingStateCovariance(model, config.matching)
    return FixedStateCovariance(model)
