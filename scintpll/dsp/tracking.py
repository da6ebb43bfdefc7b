"""**tracking.py**

======  ============================================================================================
file    scintpll/dsp/tracking.py
brief   Adaptive Kalman filter based phase lock loop.
date    March 2025
refs    1. "Are PLLs Dead? A Tutorial on Kalman Filter-Based Techniques for Digital Carrier Syncronization"
            - Vila-Valls, Closas, Navarro, Fernandez-Prades
        2. "Understanding GPS/GNSS Principles and Applications", 3rd Edition, 2017
            - Kaplan & Hegarty
        3. "Estimation with Applications to Tracking and Navigation", 2001
            - Bar-Shalom, Li, Kirubarajan
======  ============================================================================================
"""

import logging
import numpy as np
from dataclasses import dataclass

from scintpll.dsp.adaptive import (MeasurementCovarianceAdapter, StateCovarianceAdapter,
                                   MeasurementCovarianceFromConfig, StateCovarianceFromConfig)
from scintpll.dsp.discriminator import PhaseMeasurement
from scintpll.model.state_space import StateSpaceModel, FilterState
from scintpll.utils.config import AdaptiveConfig, ConfigurationError, CheckSamplingIntervals
from scintpll.utils.constants import MAX_INNOVATION_CONDITION, PSD_TOLERANCE
from scintpll.utils.enums import PllDiscriminator

# ===== RESULTS ================================================================================== #

@dataclass(slots=True)
class KalmanPllResult:
    """
    Per sample trajectory of the Kalman filter PLL
    """
    states       : np.ndarray   # posterior states (N x n)
    covariances  : np.ndarray   # posterior covariances (N x n x n)
    cn0_dbhz     : np.ndarray   # C/N0 estimates (N) [dB-Hz]
    R            : np.ndarray   # applied measurement covariances (N x m x m)
    Q            : np.ndarray   # applied process covariances (N x n x n)
    innovations  : np.ndarray   # innovations (N x m)
    degenerate   : np.ndarray   # degenerate step flags (N)
    n_processed  : int          # number of processed samples
    is_cancelled : bool = False

    @property
    def n_degenerate(self) -> int:
        return int(np.count_nonzero(self.degenerate))

    def Truncate(self, n: int):
        self.states      = self.states[:n]
        self.covariances = self.covariances[:n]
        self.cn0_dbhz    = self.cn0_dbhz[:n]
        self.R           = self.R[:n]
        self.Q           = self.Q[:n]
        self.innovations = self.innovations[:n]
        self.degenerate  = self.degenerate[:n]
        self.n_processed = n
        return

# ===== KALMAN PLL =============================================================================== #

class KalmanPll:
    """
    Linear Kalman filter carrier phase tracking loop with pluggable measurement and process noise
    covariance adaptation. Numerically degenerate steps are flagged instead of raised.
    """

    __slots__ = 'model', 'x', 'P', 'measurement_adapter', 'state_adapter', 'discriminator', \
                'max_condition', 'I', 'Q', 'R', 'y', 'degenerate', 'k', 'logger'
    model               : StateSpaceModel
    x                   : np.ndarray                    # posterior state
    P                   : np.ndarray                    # posterior covariance
    measurement_adapter : MeasurementCovarianceAdapter
    state_adapter       : StateCovarianceAdapter
    discriminator       : PllDiscriminator
    max_condition       : np.double                     # innovation covariance condition limit
    I                   : np.ndarray                    # identity (n x n)
    Q                   : np.ndarray                    # process covariance applied last step
    R                   : np.ndarray                    # measurement covariance applied last step
    y                   : np.ndarray                    # innovation of the last step
    degenerate          : bool                          # last step was degenerate
    k                   : int                           # number of processed samples
    logger              : logging.Logger

    def __init__(self,
                 model: StateSpaceModel,
                 initial_state: FilterState,
                 measurement_adapter: MeasurementCovarianceAdapter,
                 state_adapter: StateCovarianceAdapter,
                 discriminator: PllDiscriminator=PllDiscriminator.ATAN2,
                 max_condition: np.double=MAX_INNOVATION_CONDITION):
        """
        Constructor for KalmanPll class

        Parameters
        ----------
        model : StateSpaceModel
            Discrete state-space model
        initial_state : FilterState
            Initial estimates, copied
        measurement_adapter : MeasurementCovarianceAdapter
            Supplies R_k from the prompt samples
        state_adapter : StateCovarianceAdapter
            Supplies Q_k from the innovations
        discriminator : PllDiscriminator, optional
            Phase discriminator, by default ATAN2
        max_condition : np.double, optional
            Innovation covariance condition number above which a step is degenerate, by default 1e12
        """
        self.model               = model
        self.x                   = np.array(initial_state.x, dtype=np.double)
        self.P                   = np.array(initial_state.P, dtype=np.double)
        self.measurement_adapter = measurement_adapter
        self.state_adapter       = state_adapter
        self.discriminator       = discriminator
        self.max_condition       = max_condition
        self.I                   = np.eye(model.n)
        self.Q                   = state_adapter.Q
        self.R                   = measurement_adapter.R
        self.y                   = np.zeros(model.m)
        self.degenerate          = False
        self.k                   = 0
        self.logger              = logging.getLogger('ScintPLL_Logger')
        return

    @property
    def cn0_dbhz(self) -> np.double:
        return self.measurement_adapter.cn0_dbhz

    def Run(self, sample: np.complex128):
        """
        Process one complex baseband sample

        Parameters
        ----------
        sample : np.complex128
            Received complex baseband sample

        Returns
        -------
        x : np.ndarray
            Current state estimates of the Kalman filter PLL
        """
        F, H = self.model.F, self.model.H

        # Prediction
        self.Q = self.state_adapter.Q
        x_pred = F @ self.x
        P_pred = F @ self.P @ F.T + self.Q
        P_pred = 0.5 * (P_pred + P_pred.T)
        is_valid_prediction = np.all(np.isfinite(x_pred)) and np.all(np.isfinite(P_pred))

        # Measurement
        Hx = H @ x_pred
        z, prompt = PhaseMeasurement(sample, Hx[0], self.discriminator)
        if np.isfinite(prompt):
            self.R = self.measurement_adapter.Adapt(prompt)
        self.y = np.atleast_1d(z - Hx)

        # Correction
        PHt = P_pred @ H.T
        S = H @ PHt + self.R
        reason = self.__CheckInnovation(S)
        if reason is None and is_valid_prediction:
            K = PHt @ np.linalg.inv(S)
            x_new = x_pred + K @ self.y
            IKH = self.I - K @ H
            P_new = IKH @ P_pred @ IKH.T + K @ self.R @ K.T
            P_new = 0.5 * (P_new + P_new.T)
            reason = self.__CheckCovariance(x_new, P_new)
        elif reason is None:
            reason = "non-finite prediction"

        self.degenerate = reason is not None
        if not self.degenerate:
            self.x, self.P = x_new, P_new
            self.state_adapter.Adapt(self.y, self.P, self.R)
        else:
            self.logger.debug(f"Kalman PLL step {self.k} degenerate ({reason}), "
                              f"{'prediction carried' if is_valid_prediction else 'posterior held'}.")
            if is_valid_prediction:
                self.x, self.P = x_pred, P_pred
        self.k += 1
        return self.x

    def __CheckInnovation(self, S: np.ndarray):
        if not np.all(np.isfinite(S)):
            return "non-finite innovation covariance"
        if not np.all(np.isfinite(self.y)):
            return "non-finite innovation"
        ev = np.linalg.eigvalsh(0.5 * (S + S.T))
        if ev[0] <= 0.0:
            return "non-positive innovation covariance"
        if ev[-1] / ev[0] > self.max_condition:
            return "ill-conditioned innovation covariance"
        return None

    def __CheckCovariance(self, x: np.ndarray, P: np.ndarray):
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(P))):
            return "non-finite posterior"
        if np.linalg.eigvalsh(P)[0] < -PSD_TOLERANCE * max(1.0, np.trace(np.abs(P))):
            return "posterior covariance not positive semi-definite"
        return None

# ===== DRIVER =================================================================================== #

def _ValidateInputs(rx: np.ndarray, model: StateSpaceModel, initial_state: FilterState,
                    config: AdaptiveConfig, nominal_cn0_dbhz: np.double):
    if rx.ndim != 1 or rx.size == 0:
        raise ConfigurationError("rx", f"expected a non-empty 1-D sample sequence, received shape {rx.shape}")
    if not np.iscomplexobj(rx):
        raise ConfigurationError("rx", f"expected complex baseband samples, received {rx.dtype}")
    n, m = model.n, model.m
    if model.F.shape != (n, n):
        raise ConfigurationError("model.F", f"expected shape ({n}, {n}), received {model.F.shape}")
    if model.Q_base.shape != (n, n):
        raise ConfigurationError("model.Q_base", f"expected shape ({n}, {n}), received {model.Q_base.shape}")
    if model.H.shape != (m, n):
        raise ConfigurationError("model.H", f"expected shape ({m}, {n}), received {model.H.shape}")
    if not (np.isfinite(model.T) and model.T > 0.0):
        raise ConfigurationError("model.T", f"sampling interval must be positive, received {model.T}")
    if np.shape(initial_state.x) != (n,):
        raise ConfigurationError("initial_state.x", f"expected {n} states, received shape {np.shape(initial_state.x)}")
    if np.shape(initial_state.P) != (n, n):
        raise ConfigurationError("initial_state.P", f"expected shape ({n}, {n}), received {np.shape(initial_state.P)}")
    if not (np.isfinite(nominal_cn0_dbhz) and nominal_cn0_dbhz > 0.0):
        raise ConfigurationError("nominal_cn0_dbhz", f"must be positive, received {nominal_cn0_dbhz}")
    CheckSamplingIntervals(model.T, config.sampling_interval, "sampling_interval")
    return

def GetKalmanPllEstimates(rx: np.ndarray,
                          model: StateSpaceModel,
                          initial_state: FilterState,
                          adaptive_config: AdaptiveConfig,
                          nominal_cn0_dbhz: np.double,
                          discriminator: PllDiscriminator=PllDiscriminator.ATAN2,
                          max_condition: np.double=MAX_INNOVATION_CONDITION,
                          cancel_event=None) -> KalmanPllResult:
    """
    Run the adaptive Kalman filter PLL over a received signal

    Parameters
    ----------
    rx : np.ndarray
        Complex baseband samples, one per sampling interval
    model : StateSpaceModel
        Discrete state-space model
    initial_state : FilterState
        Initial estimates (not modified)
    adaptive_config : AdaptiveConfig
        Measurement and process covariance adaptation configuration
    nominal_cn0_dbhz : np.double
        Reference C/N0 [dB-Hz] used before the NWPR estimates are available
    discriminator : PllDiscriminator, optional
        Phase discriminator, by default ATAN2
    max_condition : np.double, optional
        Innovation covariance condition number limit, by default 1e12
    cancel_event : threading.Event | multiprocessing.Event, optional
        Checked between samples, the trajectory is truncated once it is set

    Returns
    -------
    KalmanPllResult
        Estimated trajectory

    Raises
    ------
    ConfigurationError
        Inconsistent inputs, detected before any sample is processed
    """
    logger = logging.getLogger('ScintPLL_Logger')
    rx = np.asarray(rx)
    _ValidateInputs(rx, model, initial_state, adaptive_config, nominal_cn0_dbhz)

    # fresh adapter state for every run
    pll = KalmanPll(
        model,
        initial_state,
        MeasurementCovarianceFromConfig(adaptive_config, nominal_cn0_dbhz),
        StateCovarianceFromConfig(adaptive_config, model),
        discriminator,
        max_condition,
    )

    N, n, m = rx.size, model.n, model.m
    result = KalmanPllResult(
        states=np.zeros((N, n)),
        covariances=np.zeros((N, n, n)),
        cn0_dbhz=np.zeros(N),
        R=np.zeros((N, m, m)),
        Q=np.zeros((N, n, n)),
        innovations=np.zeros((N, m)),
        degenerate=np.zeros(N, dtype=bool),
        n_processed=N,
    )
    logger.info(f"Kalman PLL started: {N} samples, measurement covariance "
                f"'{adaptive_config.measurement_algorithm}', process covariance "
                f"'{adaptive_config.states_algorithm}'.")

    for k in range(N):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Kalman PLL cancelled after {k} of {N} samples.")
            result.Truncate(k)
            result.is_cancelled = True
            break
        result.states[k]      = pll.Run(rx[k])
        result.covariances[k] = pll.P
        result.cn0_dbhz[k]    = pll.cn0_dbhz
        result.R[k]           = pll.R
        result.Q[k]           = pll.Q
        result.innovations[k] = pll.y
        result.degenerate[k]  = pll.degenerate

    logger.info(f"Kalman PLL finished: {result.n_processed} samples, {result.n_degenerate} degenerate steps.")
    return result
