"""
Discrete Wiener state-space model, initial estimates and model cache tests
"""

import numpy as np
import pytest

from scintpll.model.state_space import (
    BuildDiscreteWienerModel,
    FilterState,
    GetInitialEstimates,
    GetKalmanPllConfig,
    StateSpaceModelCache,
    WienerNoiseComponent,
    WienerTransition,
)
from scintpll.utils.config import ParseDiscreteWienerConfig, ValidateKalmanPllConfig

T = 0.01


class TestDiscreteWienerModel:
    """Test state-space model construction."""

    def test_transition(self, model):
        expected = np.array([
            [1.0, T, T**2 / 2.0],
            [0.0, 1.0, T],
            [0.0, 0.0, 1.0],
        ])
        np.testing.assert_allclose(model.F, expected)
        np.testing.assert_allclose(WienerTransition(3, T), expected)

    def test_jerk_noise_component(self):
        expected = np.array([
            [T**5 / 20.0, T**4 / 8.0, T**3 / 6.0],
            [T**4 / 8.0,  T**3 / 3.0, T**2 / 2.0],
            [T**3 / 6.0,  T**2 / 2.0, T],
        ])
        np.testing.assert_allclose(WienerNoiseComponent(3, 2, T), expected)

    def test_phase_noise_component(self):
        Q0 = WienerNoiseComponent(3, 0, T)
        assert Q0[0, 0] == pytest.approx(T)
        assert np.count_nonzero(Q0) == 1

    def test_dimensions(self, model):
        assert model.n == 3
        assert model.m == 1
        assert model.T == T
        np.testing.assert_array_equal(model.H, [[1.0, 0.0, 0.0]])
        assert model.Q_components.shape == (3, 3, 3)

    def test_process_covariance(self, model):
        np.testing.assert_allclose(model.Q_base, 0.26 * model.Q_components[2])
        np.testing.assert_array_equal(model.Q_base, model.Q_base.T)
        assert np.linalg.eigvalsh(model.Q_base).min() > -1e-15

    def test_observation_scaled_by_delta(self, wiener_cfg):
        wiener_cfg['delta'] = [0.5]
        model = BuildDiscreteWienerModel(ParseDiscreteWienerConfig(wiener_cfg))
        assert model.H[0, 0] == 0.5

    def test_read_only(self, model):
        with pytest.raises(ValueError):
            model.F[0, 0] = 2.0
        with pytest.raises(ValueError):
            model.Q_base[2, 2] = 0.0

    def test_pure(self, wiener_cfg):
        wiener = ParseDiscreteWienerConfig(wiener_cfg)
        a = BuildDiscreteWienerModel(wiener)
        b = BuildDiscreteWienerModel(wiener)
        assert a is not b
        np.testing.assert_array_equal(a.F, b.F)
        np.testing.assert_array_equal(a.Q_base, b.Q_base)


class TestInitialEstimates:
    """Test initial state and covariance generation."""

    def test_midpoint(self, kalman_pll_cfg, model):
        kalman_pll_cfg['initial_states_distributions_boundaries'] = [[-1.0, 3.0], [0.0, 2.0], [-0.1, 0.1]]
        kalman_pll_cfg['is_generate_random_initial_estimates'] = False
        state = GetInitialEstimates(ValidateKalmanPllConfig(kalman_pll_cfg), model)
        profile = np.asarray(kalman_pll_cfg['expected_doppler_profile'])
        np.testing.assert_allclose(state.x, profile + np.array([1.0, 1.0, 0.0]))
        np.testing.assert_allclose(state.P, np.diag([16.0, 4.0, 0.04]) / 12.0)

    def test_uniform_within_bounds(self, kalman_pll_cfg, model):
        config = ValidateKalmanPllConfig(kalman_pll_cfg)
        profile = np.asarray(kalman_pll_cfg['expected_doppler_profile'])
        bounds = np.asarray(kalman_pll_cfg['initial_states_distributions_boundaries'])
        rng = np.random.default_rng(3)
        for _ in range(20):
            dx = GetInitialEstimates(config, model, rng).x - profile
            assert np.all(dx >= bounds[:, 0]) and np.all(dx <= bounds[:, 1])

    def test_seeded(self, kalman_pll_cfg, model):
        config = ValidateKalmanPllConfig(kalman_pll_cfg)
        a = GetInitialEstimates(config, model, np.random.default_rng(7))
        b = GetInitialEstimates(config, model, np.random.default_rng(7))
        np.testing.assert_array_equal(a.x, b.x)

    def test_profile_truncated_and_padded(self, kalman_pll_cfg, model):
        kalman_pll_cfg['is_generate_random_initial_estimates'] = False
        kalman_pll_cfg['initial_states_distributions_boundaries'] = [[-1.0, 1.0]] * 3
        kalman_pll_cfg['expected_doppler_profile'] = [1.0, 2.0, 3.0, 4.0]
        np.testing.assert_allclose(GetInitialEstimates(ValidateKalmanPllConfig(kalman_pll_cfg), model).x, [1.0, 2.0, 3.0])
        kalman_pll_cfg['expected_doppler_profile'] = [1.0]
        np.testing.assert_allclose(GetInitialEstimates(ValidateKalmanPllConfig(kalman_pll_cfg), model).x, [1.0, 0.0, 0.0])

    def test_filter_state_copy(self):
        state = FilterState(np.zeros(2), np.eye(2))
        other = state.copy()
        other.x[0] = 1.0
        assert state.x[0] == 0.0


class TestStateSpaceModelCache:
    """Test the content-addressed model cache."""

    def test_memoized(self, wiener_cfg):
        cache = StateSpaceModelCache()
        wiener = ParseDiscreteWienerConfig(wiener_cfg)
        a = cache.Get(wiener)
        b = cache.Get(ParseDiscreteWienerConfig(dict(wiener_cfg)))
        assert a is b
        assert cache.misses == 1
        assert cache.hits == 1

    def test_key_depends_on_content(self, wiener_cfg):
        a = StateSpaceModelCache.Key(ParseDiscreteWienerConfig(wiener_cfg))
        wiener_cfg['sigma'] = [0.0, 0.0, 0.5]
        b = StateSpaceModelCache.Key(ParseDiscreteWienerConfig(wiener_cfg))
        assert a != b
        assert len(a) == 64

    def test_invalidate(self, wiener_cfg):
        cache = StateSpaceModelCache()
        wiener = ParseDiscreteWienerConfig(wiener_cfg)
        a = cache.Get(wiener)
        cache.Invalidate(wiener)
        b = cache.Get(wiener)
        assert a is not b
        assert cache.misses == 2
        np.testing.assert_array_equal(a.Q_base, b.Q_base)

    def test_persisted(self, wiener_cfg, tmp_path):
        wiener = ParseDiscreteWienerConfig(wiener_cfg)
        a = StateSpaceModelCache(tmp_path).Get(wiener)
        assert len(list(tmp_path.glob('*.npz'))) == 1

        cache = StateSpaceModelCache(tmp_path)
        b = cache.Get(wiener)
        assert cache.hits == 1 and cache.misses == 0
        np.testing.assert_array_equal(a.F, b.F)
        np.testing.assert_array_equal(a.Q_components, b.Q_components)
        assert b.T == a.T
        with pytest.raises(ValueError):
            b.H[0, 0] = 2.0

    def test_invalidate_all(self, wiener_cfg, tmp_path):
        cache = StateSpaceModelCache(tmp_path)
        cache.Get(ParseDiscreteWienerConfig(wiener_cfg))
        wiener_cfg['M'] = 2
        wiener_cfg['sigma'] = [0.0, 0.1]
        cache.Get(ParseDiscreteWienerConfig(wiener_cfg))
        assert len(list(tmp_path.glob('*.npz'))) == 2
        cache.Invalidate()
        assert len(cache.models) == 0
        assert len(list(tmp_path.glob('*.npz'))) == 0


class TestGetKalmanPllConfig:
    """Test the validated model and initial estimate factory."""

    def test_without_cache(self, kalman_pll_cfg):
        model, state, config = GetKalmanPllConfig(kalman_pll_cfg, rng=np.random.default_rng(0))
        assert model.n == 3
        assert state.x.shape == (3,)
        assert config.cn0_dbhz == 40.0

    def test_cache_refreshed_unless_requested(self, kalman_pll_cfg):
        cache = StateSpaceModelCache()
        a, _, _ = GetKalmanPllConfig(kalman_pll_cfg, cache)
        b, _, _ = GetKalmanPllConfig(kalman_pll_cfg, cache)
        assert a is not b
        kalman_pll_cfg['is_use_cached_settings'] = True
        c, _, _ = GetKalmanPllConfig(kalman_pll_cfg, cache)
        assert c is b
