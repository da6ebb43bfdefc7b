"""**state_space.py**

======  ============================================================================================
file    scintpll/model/state_space.py
brief   Discrete Wiener process state-space models for Kalman filter PLLs.
date    March 2025
refs    1. "Are PLLs Dead? A Tutorial on Kalman Filter-Based Techniques for Digital Carrier Syncronization"
            - Vila-Valls, Closas, Navarro, Fernandez-Prades
        2. "Estimation with Applications to Tracking and Navigation", 2001
            - Bar-Shalom, Li, Kirubarajan
======  ============================================================================================
"""

import logging
import numpy as np
from pathlib import Path
from dataclasses import dataclass

from scintpll.utils.config import (DiscreteWienerConfig, KalmanPllConfig, ValidateKalmanPllConfig)
from scintpll.utils.iotools import EnsurePathExists, ContentHash

# ================================================================================================ #

@dataclass(frozen=True, slots=True)
class StateSpaceModel:
    """
    Immutable linear state-space model shared read-only by the Kalman PLL
    """
    F            : np.ndarray   # state transition matrix (n x n)
    Q_base       : np.ndarray   # process noise covariance template (n x n)
    H            : np.ndarray   # observation matrix (m x n)
    T            : np.double    # sampling interval [s]
    Q_components : np.ndarray   # unit-variance noise components (K x n x n)
    sigma        : np.ndarray   # noise component variances (K), Q_base = sum(sigma * Q_components)

    @property
    def n(self) -> int:
        return self.F.shape[0]

    @property
    def m(self) -> int:
        return self.H.shape[0]

@dataclass(slots=True)
class FilterState:
    x : np.ndarray  # state estimate (n)
    P : np.ndarray  # error covariance (n x n)

    def copy(self):
        return FilterState(self.x.copy(), self.P.copy())

def _ReadOnly(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=np.double)
    a.setflags(write=False)
    return a

def _Factorial(k: int) -> np.double:
    out = 1.0
    for i in range(2, k + 1):
        out *= i
    return out

# ===== DISCRETE WIENER MODEL ==================================================================== #

def WienerTransition(M: int, T: np.double) -> np.ndarray:
    """
    Taylor series state transition of an M-th order Wiener process

    Parameters
    ----------
    M : int
        Process order (number of states)
    T : np.double
        Sampling interval [s]

    Returns
    -------
    F : np.ndarray
        M x M transition matrix, F[i,j] = T^(j-i) / (j-i)!
    """
    F = np.zeros((M, M), dtype=np.double)
    for i in range(M):
        for j in range(i, M):
            F[i, j] = T**(j - i) / _Factorial(j - i)
    return F

def WienerNoiseComponent(M: int, k: int, T: np.double) -> np.ndarray:
    """
    Discretized covariance of continuous unit white noise driving the k-th derivative of an M-th
    order Wiener process

    Parameters
    ----------
    M : int
        Process order (number of states)
    k : int
        Derivative driven by the white noise (0 = phase random walk)
    T : np.double
        Sampling interval [s]

    Returns
    -------
    Qk : np.ndarray
        M x M covariance, non-zero only in the leading (k+1) x (k+1) block
    """
    Qk = np.zeros((M, M), dtype=np.double)
    for i in range(k + 1):
        for j in range(k + 1):
            p = 2 * k - i - j + 1
            Qk[i, j] = T**p / (_Factorial(k - i) * _Factorial(k - j) * p)
    return Qk

def BuildDiscreteWienerModel(wiener: DiscreteWienerConfig) -> StateSpaceModel:
    """
    Build the single carrier discrete Wiener state-space model

    Parameters
    ----------
    wiener : DiscreteWienerConfig
        Validated discrete Wiener configuration

    Returns
    -------
    StateSpaceModel
        Model with states [phase, phase rate, ...] and a phase observation scaled by delta
    """
    n = wiener.L + wiener.M - 1
    T = wiener.sampling_interval
    sigma = np.asarray(wiener.sigma, dtype=np.double)
    components = np.stack([WienerNoiseComponent(n, k, T) for k in range(n)])
    Q = np.einsum('k,kij->ij', sigma, components)
    H = np.zeros((wiener.L, n), dtype=np.double)
    H[0, 0] = wiener.delta[0]
    return StateSpaceModel(
        F=_ReadOnly(WienerTransition(n, T)),
        Q_base=_ReadOnly(0.5 * (Q + Q.T)),
        H=_ReadOnly(H),
        T=np.double(T),
        Q_components=_ReadOnly(components),
        sigma=_ReadOnly(sigma),
    )

def GetInitialEstimates(config: KalmanPllConfig,
                        model: StateSpaceModel,
                        rng: np.random.Generator=None) -> FilterState:
    """
    Initial state estimate and covariance from the expected Doppler profile and the initial
    state distribution boundaries

    Parameters
    ----------
    config : KalmanPllConfig
        Validated Kalman PLL configuration
    model : StateSpaceModel
        State-space model the estimates belong to
    rng : np.random.Generator, optional
        Random generator for the uniform draw, by default a new unseeded generator

    Returns
    -------
    FilterState
        x0 = profile + U(lower, upper) (or the interval midpoint when random generation is
        disabled), P0 = diag((upper - lower)^2 / 12)
    """
    bounds = np.asarray(config.initial_bounds, dtype=np.double)
    lower, upper = bounds[:, 0], bounds[:, 1]

    # expected profile truncated/padded to the state dimension
    profile = np.zeros(model.n, dtype=np.double)
    k = min(model.n, len(config.expected_doppler_profile))
    profile[:k] = config.expected_doppler_profile[:k]

    if config.is_generate_random_initial_estimates:
        if rng is None:
            rng = np.random.default_rng()
        x0 = profile + rng.uniform(lower, upper)
    else:
        x0 = profile + 0.5 * (lower + upper)
    P0 = np.diag((upper - lower)**2 / 12.0)
    return FilterState(x0, P0)

# ===== CACHE ==================================================================================== #

class StateSpaceModelCache:
    """
    Memoizes state-space models by a content hash of their Wiener configuration, optionally
    persisting them as .npz files.
    """

    __slots__ = 'cache_dir', 'models', 'hits', 'misses', 'logger'
    cache_dir : Path | None                 # on-disk cache location
    models    : dict[str, StateSpaceModel]  # in-memory models by key
    hits      : int
    misses    : int
    logger    : logging.Logger

    def __init__(self, cache_dir: Path | str=None):
        self.cache_dir = None if cache_dir is None else Path(cache_dir)
        if self.cache_dir is not None:
            EnsurePathExists(self.cache_dir)
        self.models = {}
        self.hits   = 0
        self.misses = 0
        self.logger = logging.getLogger('ScintPLL_Logger')
        return

    @staticmethod
    def Key(wiener: DiscreteWienerConfig) -> str:
        return ContentHash(wiener.AsDict())

    def Get(self, wiener: DiscreteWienerConfig) -> StateSpaceModel:
        """
        Cached model for the configuration, built (and persisted) on a miss
        """
        key = self.Key(wiener)
        if key in self.models:
            self.hits += 1
            return self.models[key]

        filename = self._Filename(key)
        if filename is not None and filename.exists():
            self.hits += 1
            with np.load(filename) as data:
                model = StateSpaceModel(
                    F=_ReadOnly(data['F']),
                    Q_base=_ReadOnly(data['Q_base']),
                    H=_ReadOnly(data['H']),
                    T=np.double(data['T']),
                    Q_components=_ReadOnly(data['Q_components']),
                    sigma=_ReadOnly(data['sigma']),
                )
            self.logger.debug(f"State-space model {key[:12]} loaded from {filename}.")
        else:
            self.misses += 1
            model = BuildDiscreteWienerModel(wiener)
            if filename is not None:
                np.savez(filename, F=model.F, Q_base=model.Q_base, H=model.H, T=model.T,
                         Q_components=model.Q_components, sigma=model.sigma)
            self.logger.debug(f"State-space model {key[:12]} computed.")
        self.models[key] = model
        return model

    def Invalidate(self, wiener: DiscreteWienerConfig=None):
        """
        Drop one cached model (or all of them when wiener is None), including persisted files
        """
        keys = list(self.models.keys()) if wiener is None else [self.Key(wiener)]
        for key in keys:
            self.models.pop(key, None)
            filename = self._Filename(key)
            if filename is not None and filename.exists():
                filename.unlink()
        if wiener is None and self.cache_dir is not None:
            for filename in self.cache_dir.glob('kalman_pll_*.npz'):
                filename.unlink()
        return

    def _Filename(self, key: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"kalman_pll_{key}.npz"

# ================================================================================================ #

def GetKalmanPllConfig(cfg: dict,
                       cache: StateSpaceModelCache=None,
                       rng: np.random.Generator=None):
    """
    Validate a Kalman PLL configuration and produce its state-space model and initial estimates

    Parameters
    ----------
    cfg : dict
        Kalman PLL configuration mapping (see :func:`ValidateKalmanPllConfig`)
    cache : StateSpaceModelCache, optional
        Model cache, used when is_use_cached_settings is set and refreshed otherwise
    rng : np.random.Generator, optional
        Random generator for the initial estimates

    Returns
    -------
    model : StateSpaceModel
        Discrete Wiener state-space model
    initial_state : FilterState
        Initial estimates
    config : KalmanPllConfig
        Validated configuration
    """
    config = ValidateKalmanPllConfig(cfg)
    if cache is None:
        model = BuildDiscreteWienerModel(config.wiener)
    else:
        if not config.is_use_cached_settings:
            cache.Invalidate(config.wiener)
        model = cache.Get(config.wiener)
    initial_state = GetInitialEstimates(config, model, rng)
    return model, initial_state, config
