#!/usr/bin/env python3
"""
Unit and integration tests for maximum likelihood fitting and interval estimation.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add src to path
current_dir = Path(__file__).parent
src_dir = current_dir.parent / "src"
sys.path.insert(0, str(src_dir))

from scipy.optimize import minimize
from scipy.special import expit

from fixtures import (
    create_simulated_survey, reference_euclidean_nll, create_uniform_grid,
    create_trap_set, create_scenario_encounters
)

def _config(**optimizer):
    from scr_connectivity.config import SCRConfig

    config = SCRConfig(use_env=False)
    for key, value in optimizer.items():
        setattr(config.optimizer, key, value)
    return config

@pytest.fixture(scope="module")
def ecological_fit():
    """All four parameters free on the simulated patchy landscape."""
    from scr_connectivity.scr import fit

    grid, traps, encounters = create_simulated_survey()
    theta0 = np.array([-1.0, -1.0, np.log(15.0), 0.0])
    return fit(theta0, encounters, traps, grid, config=_config(),
               raise_on_failure=False, progress=True)

@pytest.fixture(scope="module")
def euclidean_fit():
    """Euclidean model with alpha2 held at zero."""
    from scr_connectivity.scr import fit

    grid, traps, encounters = create_simulated_survey(metric="euclidean")
    theta0 = np.array([-1.0, -1.0, np.log(15.0), 0.0])
    return fit(theta0, encounters, traps, grid, metric="euclidean", fixed={"alpha2": 0.0},
               config=_config(), raise_on_failure=False)

class TestNumericalHessian:
    """Test suite for the finite-difference Hessian."""

    def test_quadratic(self):
        from scr_connectivity.scr import numerical_hessian

        A = np.array([[4.0, 1.0, 0.0], [1.0, 3.0, -0.5], [0.0, -0.5, 2.0]])
        b = np.array([1.0, -2.0, 0.5])

        def quadratic(x):
            return 0.5 * x @ A @ x + b @ x

        H = numerical_hessian(quadratic, np.array([0.3, -1.2, 2.0]))

        np.testing.assert_allclose(H, A, atol=1e-5)
        np.testing.assert_array_equal(H, H.T)

class TestConfidenceInterval:
    """Test suite for Wald confidence intervals."""

    def test_known_hessian(self):
        from scr_connectivity.scr import confidence_interval

        theta_hat = np.array([1.0, -2.0])
        hessian = np.diag([4.0, 1.0])

        lo, hi = confidence_interval(theta_hat, hessian, 0, 0.95)

        assert lo == pytest.approx(1.0 - 1.959964 * 0.5, rel=1e-6)
        assert hi == pytest.approx(1.0 + 1.959964 * 0.5, rel=1e-6)

    def test_wider_at_higher_level(self):
        from scr_connectivity.scr import confidence_interval

        theta_hat = np.array([0.5, 2.0, -1.0])
        hessian = np.array([[5.0, 1.0, 0.2], [1.0, 3.0, 0.1], [0.2, 0.1, 2.0]])

        for k in range(3):
            lo95, hi95 = confidence_interval(theta_hat, hessian, k, 0.95)
            lo99, hi99 = confidence_interval(theta_hat, hessian, k, 0.99)
            assert lo99 <= lo95 <= theta_hat[k] <= hi95 <= hi99

    def test_singular_hessian(self):
        from scr_connectivity.exceptions import NumericalDegeneracyError
        from scr_connectivity.scr import confidence_interval

        hessian = np.array([[1.0, 1.0], [1.0, 1.0]])
        with pytest.raises(NumericalDegeneracyError):
            confidence_interval(np.zeros(2), hessian, 0)

    def test_non_positive_variance(self):
        from scr_connectivity.exceptions import NumericalDegeneracyError
        from scr_connectivity.scr import confidence_interval

        with pytest.raises(NumericalDegeneracyError):
            confidence_interval(np.zeros(2), np.diag([2.0, -1.0]), 1)

    def test_invalid_level(self):
        from scr_connectivity.scr import confidence_interval

        with pytest.raises(ValueError):
            confidence_interval(np.zeros(1), np.eye(1), 0, 1.5)

class TestFit:
    """Test suite for the parameter estimator."""

    def test_trace_is_monotone(self, ecological_fit):
        """The objective never increases along accepted optimizer steps."""
        trace = np.array(ecological_fit.trace)

        assert len(trace) >= 2
        assert np.all(np.isfinite(trace))
        assert np.all(np.diff(trace) <= 1e-9 * np.abs(trace[:-1]))
        assert ecological_fit.nll <= trace[0]

    def test_fit_result_shape(self, ecological_fit):
        assert ecological_fit.theta_hat.shape == (4,)
        assert ecological_fit.free_names == ("alpha0", "alpha1", "n0_log", "alpha2")
        assert ecological_fit.hessian.shape == (4, 4)
        assert ecological_fit.n_evaluations > ecological_fit.n_iterations
        assert ecological_fit.n_detected > 0

        theta_hat, hessian, status = ecological_fit.as_tuple()
        np.testing.assert_array_equal(theta_hat, ecological_fit.theta_hat)
        assert isinstance(status, int)

    def test_tuple_feeds_confidence_interval_with_fixed_parameter(self, euclidean_fit):
        from scr_connectivity.scr import confidence_interval

        theta_hat, hessian, status = euclidean_fit.as_tuple()

        assert theta_hat.shape == (3,)
        assert hessian.shape == (3, 3)
        for k, name in enumerate(euclidean_fit.free_names):
            assert confidence_interval(theta_hat, hessian, k, 0.95) == pytest.approx(
                euclidean_fit.confidence_interval(name, 0.95))

    def test_default_config_ignores_environment(self, monkeypatch, tmp_path):
        from scr_connectivity.scr import fit

        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('SCR_MAX_ITERATIONS', '1')
        grid, traps, encounters = create_uniform_grid(), create_trap_set(), create_scenario_encounters()

        result = fit(np.array([-1.0, 0.0, 1.0, 0.0]), encounters, traps, grid, metric="euclidean",
                     fixed={"alpha2": 0.0}, raise_on_failure=False)

        assert result.n_iterations > 1

    def test_fixed_parameter_held(self, euclidean_fit):
        assert euclidean_fit.theta_hat[3] == 0.0
        assert euclidean_fit.free_names == ("alpha0", "alpha1", "n0_log")
        assert euclidean_fit.fixed_names == ("alpha2",)
        assert euclidean_fit.hessian.shape == (3, 3)

    def test_confidence_intervals_contain_estimate(self, euclidean_fit):
        for name in euclidean_fit.free_names:
            estimate = euclidean_fit.theta_hat[["alpha0", "alpha1", "n0_log"].index(name)]
            lo95, hi95 = euclidean_fit.confidence_interval(name, 0.95)
            lo99, hi99 = euclidean_fit.confidence_interval(name, 0.99)

            assert lo95 <= estimate <= hi95
            assert lo99 <= lo95 and hi95 <= hi99

    def test_fixed_parameter_has_no_interval(self, euclidean_fit):
        with pytest.raises(ValueError):
            euclidean_fit.confidence_interval("alpha2")

    def test_summary_table(self, euclidean_fit):
        summary = euclidean_fit.summary()
        rows = summary.set_index('parameter')

        n0 = np.exp(euclidean_fit.theta_hat[2])
        assert rows.loc['N', 'estimate'] == pytest.approx(euclidean_fit.n_detected + n0)
        assert rows.loc['density', 'estimate'] == pytest.approx(
            (euclidean_fit.n_detected + n0) / euclidean_fit.area)
        assert rows.loc['p0', 'estimate'] == pytest.approx(expit(euclidean_fit.theta_hat[0]))
        assert rows.loc['alpha2', 'fixed']
        assert rows.loc['p0', 'lower'] <= rows.loc['p0', 'estimate'] <= rows.loc['p0', 'upper']
        assert rows.loc['sigma', 'lower'] <= rows.loc['sigma', 'estimate'] <= rows.loc['sigma', 'upper']

    def test_json_round_trip(self, euclidean_fit, tmp_path):
        from scr_connectivity.scr import FitResult

        path = euclidean_fit.to_json(tmp_path / "fit.json")
        loaded = FitResult.from_json(path)

        np.testing.assert_allclose(loaded.theta_hat, euclidean_fit.theta_hat)
        np.testing.assert_allclose(loaded.hessian, euclidean_fit.hessian)
        assert loaded.free_names == euclidean_fit.free_names
        assert loaded.converged == euclidean_fit.converged
        assert loaded.metric == "euclidean"

    def test_flat_record(self, euclidean_fit):
        record = euclidean_fit.to_dict()

        for name in ("alpha0", "alpha1", "n0_log", "alpha2", "nll", "status"):
            assert np.isscalar(record[name])
        assert np.array(record['hessian']).shape == (3, 3)

    def test_convergence_failure_carries_best_result(self):
        from scr_connectivity.exceptions import ConvergenceFailure
        from scr_connectivity.scr import fit

        grid, traps, encounters = create_simulated_survey(metric="euclidean")
        theta0 = np.array([-3.0, 1.0, 0.0, 0.0])

        with pytest.raises(ConvergenceFailure) as excinfo:
            fit(theta0, encounters, traps, grid, metric="euclidean", fixed={"alpha2": 0.0},
                config=_config(max_iterations=1))

        failure = excinfo.value
        assert failure.status is not None and failure.status != 0
        assert failure.result is not None
        assert not failure.result.converged
        assert failure.result.nll <= failure.result.trace[0]

    def test_nonconverged_result_returned_on_request(self):
        from scr_connectivity.scr import fit

        grid, traps, encounters = create_simulated_survey(metric="euclidean")
        result = fit(np.array([-3.0, 1.0, 0.0, 0.0]), encounters, traps, grid,
                     metric="euclidean", fixed={"alpha2": 0.0},
                     config=_config(max_iterations=1), raise_on_failure=False)

        assert not result.converged
        assert result.status != 0

    def test_invalid_fixed_parameters(self):
        from scr_connectivity.scr import fit

        grid, traps, encounters = create_uniform_grid(), create_trap_set(), create_scenario_encounters()
        with pytest.raises(ValueError):
            fit(np.zeros(4), encounters, traps, grid, fixed={"beta": 1.0}, config=_config())
        with pytest.raises(ValueError):
            fit(np.zeros(4), encounters, traps, grid, config=_config(),
                fixed={"alpha0": 0.0, "alpha1": 0.0, "n0_log": 0.0, "alpha2": 0.0})

    def test_invalid_data_rejected_before_optimizing(self):
        from scr_connectivity.exceptions import DataValidationError
        from scr_connectivity.scr import fit, EncounterData

        encounters = EncounterData(np.array([[0, 0, 0]]))
        with pytest.raises(DataValidationError):
            fit(np.zeros(4), encounters, create_trap_set(), create_uniform_grid(), config=_config())

class TestEndToEnd:
    """Three traps, a uniform 5 x 5 grid, K = 10 and two individuals each seen at one trap."""

    def test_matches_reference_euclidean_fit(self):
        """With alpha2 fixed at 0 the estimates agree with an independent Euclidean SCR fit."""
        from scr_connectivity.scr import fit

        grid = create_uniform_grid(5, 5)
        traps = create_trap_set()
        encounters = create_scenario_encounters()
        theta0 = np.array([-1.0, 0.0, 1.0, 0.0])

        result = fit(theta0, encounters, traps, grid, metric="euclidean",
                     fixed={"alpha2": 0.0}, config=_config(), raise_on_failure=False)

        def reference(x):
            return reference_euclidean_nll(np.append(x, 0.0), encounters.counts, traps.trials,
                                           traps.coords, grid.coords)

        expected = minimize(reference, theta0[:3], method="Nelder-Mead",
                            options={'xatol': 1e-8, 'fatol': 1e-11, 'maxiter': 20000, 'maxfev': 20000})

        n = encounters.n_detected
        N_hat = n + np.exp(result.theta_hat[2])
        N_ref = n + np.exp(expected.x[2])
        p0_hat = expit(result.theta_hat[0])
        p0_ref = expit(expected.x[0])

        assert result.nll == pytest.approx(expected.fun, rel=1e-6)
        assert N_hat == pytest.approx(N_ref, rel=0.01)
        assert N_hat / grid.area == pytest.approx(N_ref / grid.area, rel=0.01)
        assert p0_hat == pytest.approx(p0_ref, rel=0.01)

    def test_least_cost_fit_matches_reference_euclidean_fit(self):
        """On a uniform landscape the 16-direction least-cost fit recovers the Euclidean estimates."""
        from scr_connectivity.scr import fit

        grid = create_uniform_grid(5, 5)
        traps = create_trap_set()
        encounters = create_scenario_encounters()
        theta0 = np.array([-1.0, 0.0, 1.0, 0.0])

        result = fit(theta0, encounters, traps, grid, fixed={"alpha2": 0.0},
                     config=_config(), raise_on_failure=False)
        assert result.metric == "ecological"

        def reference(x):
            return reference_euclidean_nll(np.append(x, 0.0), encounters.counts, traps.trials,
                                           traps.coords, grid.coords)

        expected = minimize(reference, theta0[:3], method="Nelder-Mead",
                            options={'xatol': 1e-8, 'fatol': 1e-11, 'maxiter': 20000, 'maxfev': 20000})

        n = encounters.n_detected
        N_hat = n + np.exp(result.theta_hat[2])
        N_ref = n + np.exp(expected.x[2])

        assert N_hat == pytest.approx(N_ref, rel=0.01)
        assert N_hat / grid.area == pytest.approx(N_ref / grid.area, rel=0.01)
        assert expit(result.theta_hat[0]) == pytest.approx(expit(expected.x[0]), rel=0.01)

    def test_objective_agrees_with_reference_at_estimate(self):
        from scr_connectivity.scr import fit, negative_log_likelihood

        grid = create_uniform_grid(5, 5)
        traps = create_trap_set()
        encounters = create_scenario_encounters()

        result = fit(np.array([-1.0, 0.0, 1.0, 0.0]), encounters, traps, grid, metric="euclidean",
                     fixed={"alpha2": 0.0}, config=_config(), raise_on_failure=False)
        value = negative_log_likelihood(result.theta_hat, encounters, traps, grid, metric="euclidean")

        assert value == pytest.approx(result.nll, rel=1e-12)
        assert value == pytest.approx(
            reference_euclidean_nll(result.theta_hat, encounters.counts, traps.trials,
                                    traps.coords, grid.coords), rel=1e-10)
