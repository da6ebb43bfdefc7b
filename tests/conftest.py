"""
Shared fixtures for the ScintPLL test suite
"""

import numpy as np
import pytest

from scintpll.model.state_space import BuildDiscreteWienerModel
from scintpll.utils.config import ParseDiscreteWienerConfig, ParseAdaptiveConfig

T = 0.01
DOPPLER_PROFILE = [0.0, 2.0 * np.pi * 2.0, 0.5]


@pytest.fixture
def wiener_cfg():
    return {
        'L': 1,
        'M': 3,
        'sampling_interval': T,
        'sigma': [0.0, 0.0, 0.26],
        'delta': [1.0],
    }


@pytest.fixture
def kalman_pll_cfg(wiener_cfg):
    return {
        'kf_type': 'standard',
        'discrete_wiener_model_config': wiener_cfg,
        'C_over_N0_array_dBHz': [40.0],
        'initial_states_distributions_boundaries': [[-np.pi, np.pi], [-1.0, 1.0], [-0.01, 0.01]],
        'expected_doppler_profile': DOPPLER_PROFILE,
        'augmentation_model_initializer': {'id': 'none'},
        'is_use_cached_settings': False,
        'is_generate_random_initial_estimates': True,
    }


@pytest.fixture
def model(wiener_cfg):
    return BuildDiscreteWienerModel(ParseDiscreteWienerConfig(wiener_cfg))


@pytest.fixture
def fixed_config():
    return ParseAdaptiveConfig({
        'measurement_cov_adapt_algorithm': 'none',
        'states_cov_adapt_algorithm': 'none',
        'sampling_interval': T,
    })


@pytest.fixture
def nwpr_config():
    return ParseAdaptiveConfig({
        'measurement_cov_adapt_algorithm': 'nwpr',
        'measurement_cov_adapt_algorithm_params': {'N_nwpr': 10, 'M_nwpr': 2},
        'states_cov_adapt_algorithm': 'none',
        'sampling_interval': T,
    })


@pytest.fixture
def matching_config():
    return ParseAdaptiveConfig({
        'measurement_cov_adapt_algorithm': 'nwpr',
        'measurement_cov_adapt_algorithm_params': {'N_nwpr': 10, 'M_nwpr': 2},
        'states_cov_adapt_algorithm': 'matching',
        'states_cov_adapt_algorithm_params': {'method': 'rae', 'window_size': 25},
        'sampling_interval': T,
    })


def NwprTestSequence(cn0_dbhz: float, n_groups: int, T: float = T) -> np.ndarray:
    """
    Constant amplitude noiseless prompt pairs (1 + je, 1 - je) whose two-sample power ratio maps
    exactly to cn0_dbhz
    """
    rho = 10.0**(cn0_dbhz / 10.0) * T
    e = 1.0 / np.sqrt(2.0 * rho + 1.0)
    return np.tile(np.array([1.0 + 1j * e, 1.0 - 1j * e]), n_groups)
