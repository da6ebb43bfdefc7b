"""
Total variation denoising and cycle slip detection tests
"""

import numpy as np
import pytest

from scintpll.dsp.cycle_slips import DetectCycleSlips, MergeJumps, SolveTridiagonal, TvDenoise
from scintpll.utils.config import ConfigurationError


def _PhaseErrorWithJumps(jumps, N=3000, sigma=0.05, seed=0):
    rng = np.random.default_rng(seed)
    phase_error = sigma * rng.standard_normal(N)
    for index, magnitude in jumps:
        phase_error[index:] += magnitude
    return phase_error


class TestTvDenoise:
    """Test the tridiagonal solver and the denoiser."""

    def test_tridiagonal_solver(self):
        rng = np.random.default_rng(1)
        n = 12
        a = rng.uniform(-1.0, 1.0, n)
        c = rng.uniform(-1.0, 1.0, n)
        b = 3.0 + rng.uniform(0.0, 1.0, n)
        d = rng.standard_normal(n)
        A = np.diag(b) + np.diag(a[1:], -1) + np.diag(c[:-1], 1)
        np.testing.assert_allclose(SolveTridiagonal(a, b, c, d), np.linalg.solve(A, d), rtol=1e-10)

    def test_constant(self):
        y = np.full(50, 1.5)
        np.testing.assert_array_equal(TvDenoise(y, 4.0), y)

    def test_single_sample(self):
        np.testing.assert_array_equal(TvDenoise(np.array([0.3]), 1.0), [0.3])

    def test_piecewise_constant(self):
        y = _PhaseErrorWithJumps([(100, 1.0)], N=200, sigma=0.02)
        x = TvDenoise(y, 2.0)
        assert np.std(x[10:90]) < 0.01
        assert np.std(x[110:190]) < 0.01
        assert np.mean(x[110:190]) - np.mean(x[10:90]) == pytest.approx(1.0, abs=0.1)


class TestMergeJumps:
    """Test grouping of trend differences into jump events."""

    def test_events(self):
        diff = np.array([0.0, 2.0, 3.0, 0.0, -1.0, -4.0, 1.5, 0.001])
        peaks, totals = MergeJumps(diff, 0.01)
        np.testing.assert_array_equal(peaks, [2, 5, 6])
        np.testing.assert_allclose(totals, [5.0, -5.0, 1.5])

    def test_empty(self):
        peaks, totals = MergeJumps(np.zeros(0), 0.01)
        assert peaks.size == 0 and totals.size == 0

    def test_long_trajectory(self):
        diff = np.zeros(30000)
        diff[12345] = 6.0
        peaks, totals = MergeJumps(diff, 0.06)
        np.testing.assert_array_equal(peaks, [12345])
        np.testing.assert_allclose(totals, [6.0])


class TestDetectCycleSlips:
    """Test cycle slip detection on synthetic phase errors."""

    def test_three_slips(self):
        phase_error = _PhaseErrorWithJumps([(700, 2.0 * np.pi), (1500, -2.0 * np.pi), (2300, 2.0 * np.pi)])
        result = DetectCycleSlips(phase_error, lam=4.0)
        assert result.n_slips == 3
        np.testing.assert_allclose(result.slip_indices, [700, 1500, 2300], atol=3)
        np.testing.assert_array_equal(np.sign(result.magnitudes), [1.0, -1.0, 1.0])
        assert result.trend.size == phase_error.size
        assert result.trend_diff.size == phase_error.size - 1

    def test_downsampled(self):
        phase_error = _PhaseErrorWithJumps([(700, 2.0 * np.pi), (1500, -2.0 * np.pi), (2300, 2.0 * np.pi)])
        result = DetectCycleSlips(phase_error, lam=4.0, ds_factor=10)
        assert result.n_slips == 3
        assert result.trend.size == 300
        np.testing.assert_allclose(result.slip_indices, [700, 1500, 2300], atol=10)

    def test_no_slips(self):
        result = DetectCycleSlips(_PhaseErrorWithJumps([]), lam=4.0)
        assert result.n_slips == 0
        assert result.slip_indices.size == 0

    def test_small_jump_ignored(self):
        result = DetectCycleSlips(_PhaseErrorWithJumps([(1000, 0.5 * np.pi)]), lam=4.0)
        assert result.n_slips == 0

    def test_half_cycle_jumps(self):
        phase_error = _PhaseErrorWithJumps([(1000, np.pi), (2000, np.pi)])
        result = DetectCycleSlips(phase_error, lam=4.0, jump_magnitude=np.pi)
        assert result.n_slips == 2

    def test_single_sample(self):
        result = DetectCycleSlips(np.array([0.1]), lam=4.0)
        assert result.n_slips == 0
        assert result.trend_diff.size == 0

    @pytest.mark.parametrize('kwargs, field', [
        ({'phase_error': np.array([]), 'lam': 4.0}, 'phase_error'),
        ({'phase_error': np.array([0.0, np.nan]), 'lam': 4.0}, 'phase_error'),
        ({'phase_error': np.zeros(10), 'lam': 0.0}, 'lam'),
        ({'phase_error': np.zeros(10), 'lam': 4.0, 'ds_factor': 0}, 'ds_factor'),
        ({'phase_error': np.zeros(10), 'lam': 4.0, 'ds_factor': 2.5}, 'ds_factor'),
        ({'phase_error': np.zeros(10), 'lam': 4.0, 'jump_magnitude': -1.0}, 'jump_magnitude'),
    ])
    def test_invalid(self, kwargs, field):
        with pytest.raises(ConfigurationError) as e:
            DetectCycleSlips(**kwargs)
        assert e.value.field == field
