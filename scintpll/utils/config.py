"""**config.py**

======  ============================================================================================
file    scintpll/utils/config.py
brief   Loading and validation of the Kalman PLL and adaptive covariance configurations.
date    March 2025
======  ============================================================================================
"""

import logging
import numpy as np
import yaml
from pathlib import Path
from dataclasses import dataclass, field

from scintpll.utils.constants import SAMPLING_INTERVAL_TOL
from scintpll.utils.enums import (KalmanFilterType, AugmentationModel, MeasurementCovAdaptAlgorithm,
                                  StatesCovAdaptAlgorithm, MatchingMethod)

INTEGER_TOL = 1e-9

# ===== ERRORS =================================================================================== #

class ConfigurationError(ValueError):
    """
    Invalid or missing configuration field, raised before any sample is processed.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        ValueError.__init__(self, f"{field}: {message}")

    def __reduce__(self):
        return (self.__class__, (self.field, self.message))

class UnsupportedFeatureError(ConfigurationError):
    """
    Configuration requests a feature that is recognized but not implemented.
    """

# ===== DATA ===================================================================================== #

@dataclass(frozen=True, slots=True)
class NwprParams:
    N_nwpr : int    # number of groups averaged
    M_nwpr : int    # number of samples per group

@dataclass(frozen=True, slots=True)
class MatchingParams:
    method      : MatchingMethod
    window_size : int

@dataclass(frozen=True, slots=True)
class HardLimiterParams:
    is_used        : bool      = False
    threshold_dbhz : np.double = np.nan

@dataclass(frozen=True, slots=True)
class AdaptiveConfig:
    """
    Immutable adaptive covariance configuration. The algorithm tags and their parameter blocks
    are checked against each other on construction.
    """
    sampling_interval     : np.double
    measurement_algorithm : MeasurementCovAdaptAlgorithm = MeasurementCovAdaptAlgorithm.NONE
    nwpr                  : NwprParams | None            = None
    states_algorithm      : StatesCovAdaptAlgorithm      = StatesCovAdaptAlgorithm.NONE
    matching              : MatchingParams | None        = None
    hard_limited          : HardLimiterParams            = field(default_factory=HardLimiterParams)

    def __post_init__(self):
        if (self.measurement_algorithm == MeasurementCovAdaptAlgorithm.NWPR) != (self.nwpr is not None):
            raise ConfigurationError(
                "measurement_cov_adapt_algorithm_params",
                f"parameters do not match algorithm '{self.measurement_algorithm}'"
            )
        if (self.states_algorithm == StatesCovAdaptAlgorithm.MATCHING) != (self.matching is not None):
            raise ConfigurationError(
                "states_cov_adapt_algorithm_params",
                f"parameters do not match algorithm '{self.states_algorithm}'"
            )

@dataclass(frozen=True, slots=True)
class DiscreteWienerConfig:
    L                 : int     # number of carriers
    M                 : int     # Wiener process order
    sampling_interval : np.double
    sigma             : tuple   # noise variances, length L + M - 1
    delta             : tuple   # normalized carrier frequencies, length L

    def AsDict(self) -> dict:
        return {
            'L'                 : int(self.L),
            'M'                 : int(self.M),
            'sampling_interval' : float(self.sampling_interval),
            'sigma'             : [float(s) for s in self.sigma],
            'delta'             : [float(d) for d in self.delta],
        }

@dataclass(frozen=True, slots=True)
class KalmanPllConfig:
    kf_type                              : KalmanFilterType
    wiener                               : DiscreteWienerConfig
    cn0_dbhz                             : np.double
    initial_bounds                       : tuple
    expected_doppler_profile             : tuple
    augmentation_model                   : AugmentationModel = AugmentationModel.NONE
    is_use_cached_settings               : bool              = False
    is_generate_random_initial_estimates : bool              = True

# ===== LOADING ================================================================================== #

def ParseLogLevel(level: str | int) -> int:
    """
    Convert a configuration log level string into a :mod:`logging` level

    Parameters
    ----------
    level : str | int
        'debug', 'info', 'warn'/'warning', 'error' or an existing logging level

    Returns
    -------
    int
        logging level
    """
    if isinstance(level, int):
        return level
    tmp = str(level).casefold()
    if tmp == 'debug':
        return logging.DEBUG
    elif tmp == 'info':
        return logging.INFO
    elif tmp == 'warn' or tmp == 'warning':
        return logging.WARNING
    elif tmp == 'error':
        return logging.ERROR
    raise ConfigurationError("GENERAL.log_level", f"log level '{level}' is not valid")

def LoadConfig(config_file: Path | str) -> dict:
    """
    Load a YAML configuration file

    Parameters
    ----------
    config_file : Path | str
        YAML file

    Returns
    -------
    config : dict
        Configuration dictionary, GENERAL.log_level converted to a logging level
    """
    with open(config_file, 'r') as file:
        config = yaml.safe_load(file)
    if not isinstance(config, dict):
        raise ConfigurationError(str(config_file), "configuration file must contain a mapping")
    general = config.setdefault('GENERAL', {})
    general['log_level'] = ParseLogLevel(general.get('log_level', 'info'))
    return config

# ===== VALIDATION HELPERS ======================================================================= #

def _Require(cfg: dict, key: str, path: str):
    if not isinstance(cfg, dict):
        raise ConfigurationError(path, "must be a mapping")
    if key not in cfg or cfg[key] is None:
        raise ConfigurationError(f"{path}.{key}" if path else key, "missing required field")
    return cfg[key]

def _RejectUnknown(cfg: dict, allowed: set, path: str):
    unknown = sorted(set(cfg.keys()) - allowed)
    if unknown:
        name = f"{path}.{unknown[0]}" if path else unknown[0]
        raise ConfigurationError(name, "unknown field")

def _PositiveInt(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ConfigurationError(name, f"expected a positive integer, received {value!r}")
    rounded = int(np.round(value))
    if abs(value - rounded) > INTEGER_TOL or rounded <= 0:
        raise ConfigurationError(name, f"expected a positive integer, received {value!r}")
    return rounded

def _PositiveReal(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ConfigurationError(name, f"expected a positive number, received {value!r}")
    if not np.isfinite(value) or value <= 0:
        raise ConfigurationError(name, f"expected a positive number, received {value!r}")
    return float(value)

def _Real(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ConfigurationError(name, f"expected a number, received {value!r}")
    if not np.isfinite(value):
        raise ConfigurationError(name, f"expected a finite number, received {value!r}")
    return float(value)

def _Bool(value, name: str) -> bool:
    if not isinstance(value, (bool, np.bool_)):
        raise ConfigurationError(name, f"expected a boolean, received {value!r}")
    return bool(value)

def _RealVector(value, name: str, allow_empty: bool=False) -> tuple:
    if np.isscalar(value):
        value = [value]
    if not isinstance(value, (list, tuple, np.ndarray)):
        raise ConfigurationError(name, f"expected a numeric vector, received {value!r}")
    if len(value) == 0 and not allow_empty:
        raise ConfigurationError(name, "expected a non-empty numeric vector")
    return tuple(_Real(v, f"{name}[{i}]") for i, v in enumerate(value))

def _Enum(enum_cls, value, name: str):
    try:
        return enum_cls.FromString(value)
    except KeyError:
        allowed = ', '.join(str(m) for m in enum_cls)
        raise ConfigurationError(name, f"'{value}' is not one of {{{allowed}}}") from None

# ===== ADAPTIVE CONFIGURATION =================================================================== #

def ParseAdaptiveConfig(cfg: dict) -> AdaptiveConfig:
    """
    Validate an adaptive covariance configuration mapping

    Parameters
    ----------
    cfg : dict
        Mapping with the fields
            - measurement_cov_adapt_algorithm        : 'none' | 'nwpr'
            - measurement_cov_adapt_algorithm_params : {N_nwpr, M_nwpr} (nwpr only)
            - states_cov_adapt_algorithm             : 'none' | 'matching'
            - states_cov_adapt_algorithm_params      : {method, window_size} (matching only)
            - sampling_interval                      : positive [s]
            - hard_limited                           : {is_used, L1_C_over_N0_dBHz_threshold}

    Returns
    -------
    AdaptiveConfig
        Validated configuration

    Raises
    ------
    ConfigurationError
        Missing, unknown, or invalid field (the message names the field)
    """
    if not isinstance(cfg, dict):
        raise ConfigurationError("adaptive_config", "must be a mapping")
    _RejectUnknown(cfg, {'measurement_cov_adapt_algorithm', 'measurement_cov_adapt_algorithm_params',
                         'states_cov_adapt_algorithm', 'states_cov_adapt_algorithm_params',
                         'sampling_interval', 'hard_limited'}, '')

    T = _PositiveReal(_Require(cfg, 'sampling_interval', ''), 'sampling_interval')

    # measurement covariance
    meas_alg = _Enum(MeasurementCovAdaptAlgorithm, _Require(cfg, 'measurement_cov_adapt_algorithm', ''),
                     'measurement_cov_adapt_algorithm')
    nwpr = None
    if meas_alg == MeasurementCovAdaptAlgorithm.NWPR:
        path = 'measurement_cov_adapt_algorithm_params'
        params = _Require(cfg, path, '')
        _RejectUnknown(params, {'N_nwpr', 'M_nwpr'}, path)
        nwpr = NwprParams(
            N_nwpr=_PositiveInt(_Require(params, 'N_nwpr', path), f"{path}.N_nwpr"),
            M_nwpr=_PositiveInt(_Require(params, 'M_nwpr', path), f"{path}.M_nwpr"),
        )
        if nwpr.M_nwpr < 2:
            raise ConfigurationError(f"{path}.M_nwpr", "at least 2 samples per group are required")

    # process covariance
    states_alg = _Enum(StatesCovAdaptAlgorithm, _Require(cfg, 'states_cov_adapt_algorithm', ''),
                       'states_cov_adapt_algorithm')
    matching = None
    if states_alg == StatesCovAdaptAlgorithm.MATCHING:
        path = 'states_cov_adapt_algorithm_params'
        params = _Require(cfg, path, '')
        _RejectUnknown(params, {'method', 'window_size'}, path)
        matching = MatchingParams(
            method=_Enum(MatchingMethod, _Require(params, 'method', path), f"{path}.method"),
            window_size=_PositiveInt(_Require(params, 'window_size', path), f"{path}.window_size"),
        )

    # hard limiter
    hard_limited = HardLimiterParams()
    if cfg.get('hard_limited') is not None:
        path = 'hard_limited'
        params = cfg['hard_limited']
        if not isinstance(params, dict):
            raise ConfigurationError(path, "must be a mapping")
        _RejectUnknown(params, {'is_used', 'L1_C_over_N0_dBHz_threshold'}, path)
        is_used = _Bool(_Require(params, 'is_used', path), f"{path}.is_used")
        if is_used:
            if meas_alg != MeasurementCovAdaptAlgorithm.NWPR:
                raise ConfigurationError(f"{path}.is_used", "the hard limiter requires the nwpr algorithm")
            threshold = _Real(_Require(params, 'L1_C_over_N0_dBHz_threshold', path),
                              f"{path}.L1_C_over_N0_dBHz_threshold")
            hard_limited = HardLimiterParams(is_used=True, threshold_dbhz=threshold)

    return AdaptiveConfig(
        sampling_interval=T,
        measurement_algorithm=meas_alg,
        nwpr=nwpr,
        states_algorithm=states_alg,
        matching=matching,
        hard_limited=hard_limited,
    )

# ===== KALMAN PLL CONFIGURATION ================================================================= #

def ParseDiscreteWienerConfig(dw: dict | list | tuple) -> DiscreteWienerConfig:
    """
    Validate the discrete Wiener model configuration, either a mapping with the keys L, M,
    sampling_interval, sigma, delta or a 5 element sequence in that order.
    """
    name = 'discrete_wiener_model_config'
    if isinstance(dw, (list, tuple)):
        if len(dw) != 5:
            raise ConfigurationError(name, f"expected 5 elements {{L, M, sampling_interval, sigma, delta}}, received {len(dw)}")
        dw = dict(zip(('L', 'M', 'sampling_interval', 'sigma', 'delta'), dw))
    if not isinstance(dw, dict):
        raise ConfigurationError(name, "must be a mapping or a 5 element sequence")
    _RejectUnknown(dw, {'L', 'M', 'sampling_interval', 'sigma', 'delta'}, name)

    L = _PositiveInt(_Require(dw, 'L', name), f"{name}.L")
    M = _PositiveInt(_Require(dw, 'M', name), f"{name}.M")
    T = _PositiveReal(_Require(dw, 'sampling_interval', name), f"{name}.sampling_interval")
    sigma = _RealVector(_Require(dw, 'sigma', name), f"{name}.sigma")
    delta = _RealVector(_Require(dw, 'delta', name), f"{name}.delta")
    if len(sigma) != L + M - 1:
        raise ConfigurationError(f"{name}.sigma", f"must have L+M-1 = {L + M - 1} elements, received {len(sigma)}")
    if len(delta) != L:
        raise ConfigurationError(f"{name}.delta", f"must have L = {L} elements, received {len(delta)}")
    if any(s < 0.0 for s in sigma):
        raise ConfigurationError(f"{name}.sigma", "variances must be non-negative")
    if L != 1:
        raise UnsupportedFeatureError(f"{name}.L", "multi-frequency carrier tracking is not supported")
    return DiscreteWienerConfig(L=L, M=M, sampling_interval=T, sigma=sigma, delta=delta)

def ValidateKalmanPllConfig(cfg: dict) -> KalmanPllConfig:
    """
    Validate the Kalman PLL configuration (state-space model, initial estimate distributions,
    nominal C/N0 and requested filter features)

    Parameters
    ----------
    cfg : dict
        Mapping with the fields kf_type, discrete_wiener_model_config, C_over_N0_array_dBHz,
        initial_states_distributions_boundaries, expected_doppler_profile and optionally
        augmentation_model_initializer, is_use_cached_settings,
        is_generate_random_initial_estimates

    Returns
    -------
    KalmanPllConfig
        Validated configuration

    Raises
    ------
    ConfigurationError
        Missing or invalid field
    UnsupportedFeatureError
        Filter variant, augmentation model or multi-frequency tracking not implemented
    """
    if not isinstance(cfg, dict):
        raise ConfigurationError("kalman_pll_config", "must be a mapping")

    # filter type
    kf_type = _Enum(KalmanFilterType, _Require(cfg, 'kf_type', ''), 'kf_type')
    if kf_type != KalmanFilterType.STANDARD:
        raise UnsupportedFeatureError('kf_type', f"the '{kf_type}' Kalman filter is not supported")

    wiener = ParseDiscreteWienerConfig(_Require(cfg, 'discrete_wiener_model_config', ''))
    n_states = wiener.L + wiener.M - 1

    # nominal C/N0, single frequency only
    cn0 = _RealVector(_Require(cfg, 'C_over_N0_array_dBHz', ''), 'C_over_N0_array_dBHz')
    if len(cn0) != wiener.L:
        raise ConfigurationError('C_over_N0_array_dBHz', f"expected {wiener.L} value(s), received {len(cn0)}")
    if cn0[0] <= 0.0:
        raise ConfigurationError('C_over_N0_array_dBHz', "must be positive")

    # initial estimate distributions
    name = 'initial_states_distributions_boundaries'
    bounds = _Require(cfg, name, '')
    if not isinstance(bounds, (list, tuple)) or len(bounds) == 0:
        raise ConfigurationError(name, "must be a non-empty list of [lower, upper] pairs")
    if len(bounds) != n_states:
        raise ConfigurationError(name, f"expected {n_states} boundaries (one per state), received {len(bounds)}")
    parsed_bounds = []
    for i, b in enumerate(bounds):
        b = _RealVector(b, f"{name}[{i}]")
        if len(b) != 2:
            raise ConfigurationError(f"{name}[{i}]", "must contain exactly 2 elements")
        if b[0] >= b[1]:
            raise ConfigurationError(f"{name}[{i}]", "first element must be less than the second")
        parsed_bounds.append(b)

    doppler = _RealVector(_Require(cfg, 'expected_doppler_profile', ''), 'expected_doppler_profile')

    # augmentation models
    augmentation = AugmentationModel.NONE
    if cfg.get('augmentation_model_initializer') is not None:
        name = 'augmentation_model_initializer'
        aug = cfg[name]
        augmentation = _Enum(AugmentationModel, _Require(aug, 'id', name), f"{name}.id")
        if augmentation == AugmentationModel.RBF:
            raise UnsupportedFeatureError(f"{name}.id", "the RBF model initializer is still under development")
        if augmentation != AugmentationModel.NONE:
            raise UnsupportedFeatureError(f"{name}.id", f"the '{augmentation}' augmentation model is not supported")

    return KalmanPllConfig(
        kf_type=kf_type,
        wiener=wiener,
        cn0_dbhz=cn0[0],
        initial_bounds=tuple(parsed_bounds),
        expected_doppler_profile=doppler,
        augmentation_model=augmentation,
        is_use_cached_settings=_Bool(cfg.get('is_use_cached_settings', False), 'is_use_cached_settings'),
        is_generate_random_initial_estimates=_Bool(cfg.get('is_generate_random_initial_estimates', True),
                                                   'is_generate_random_initial_estimates'),
    )

def CheckSamplingIntervals(expected: np.double,
                           received: np.double,
                           name: str,
                           tol: np.double=SAMPLING_INTERVAL_TOL):
    """
    Raise a ConfigurationError when two sampling intervals differ by more than tol
    """
    if abs(expected - received) > tol:
        raise ConfigurationError(name, f"sampling interval {received} does not match {expected}")
    return
