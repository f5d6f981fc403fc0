#!/usr/bin/env python3
"""
Unit tests for detection models, the marginal likelihood and activity-centre posteriors.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add src to path
current_dir = Path(__file__).parent
src_dir = current_dir.parent / "src"
sys.path.insert(0, str(src_dir))

from fixtures import (
    SURVEY_THETA, create_simulated_survey, reference_euclidean_nll,
    create_uniform_grid, create_split_grid, create_trap_set, create_scenario_encounters
)

class TestDetectionProbability:
    """Test suite for the half-normal detection function."""

    def test_baseline_at_zero_distance(self):
        from scr_connectivity.scr import detection_probability

        theta = np.array([0.4, 1.0, 0.0, 0.0])
        p = detection_probability(theta, np.array([[0.0, 1.0, 2.0]]))

        assert p[0, 0] == pytest.approx(1.0 / (1.0 + np.exp(-0.4)))
        assert p[0, 1] == pytest.approx(p[0, 0] * np.exp(-np.e))
        assert np.all(np.diff(p[0]) < 0)

    def test_unreachable_is_exactly_zero(self):
        from scr_connectivity.scr import detection_probability
        from scr_connectivity.landscape import UNREACHABLE

        p = detection_probability(np.array([0.0, -1.0, 0.0, 0.0]), np.array([[UNREACHABLE, 1.0]]))

        assert p[0, 0] == 0.0
        assert not np.any(np.isnan(p))

    def test_extreme_decay_stays_finite(self):
        from scr_connectivity.scr import detection_probability

        p = detection_probability(np.array([0.0, 800.0, 0.0, 0.0]), np.array([[0.0, 0.5]]))

        assert p[0, 0] == pytest.approx(0.5)
        assert p[0, 1] == 0.0

class TestObservationModels:
    """Test suite for binomial and Poisson observation models."""

    def test_resolve_from_string(self):
        from scr_connectivity.scr import (
            ObservationModel, get_detection_model, BinomialDetection, PoissonDetection
        )

        assert ObservationModel.resolve("Poisson") is ObservationModel.POISSON
        assert isinstance(get_detection_model("binomial"), BinomialDetection)
        assert isinstance(get_detection_model(ObservationModel.POISSON), PoissonDetection)

        model = PoissonDetection()
        assert get_detection_model(model) is model

    def test_unknown_model(self):
        from scr_connectivity.scr import ObservationModel

        with pytest.raises(ValueError):
            ObservationModel.resolve("negative-binomial")

    def test_binomial_matches_scipy(self):
        from scipy.stats import binom
        from scr_connectivity.scr import BinomialDetection

        y = np.array([0, 2, 5])
        p = np.array([0.1, 0.3, 0.9])
        expected = binom.logpmf(y, 5, p)

        np.testing.assert_allclose(BinomialDetection().log_likelihood_contribution(y, 5, p), expected)

    def test_binomial_zero_probability(self):
        from scr_connectivity.scr import BinomialDetection

        contribution = BinomialDetection().log_likelihood_contribution(np.array([0, 1]), 4, np.array([0.0, 0.0]))

        assert contribution[0] == 0.0
        assert contribution[1] == -np.inf

    def test_poisson_matches_scipy(self):
        from scipy.stats import poisson
        from scr_connectivity.scr import PoissonDetection

        y = np.array([0, 1, 3])
        p = np.array([0.2, 0.05, 0.5])
        expected = poisson.logpmf(y, 6 * p)

        np.testing.assert_allclose(PoissonDetection().log_likelihood_contribution(y, 6, p), expected)

class TestNegativeLogLikelihood:
    """Test suite for the marginal likelihood evaluator."""

    def test_matches_reference_euclidean(self):
        """Euclidean metric agrees with a cell-by-cell reference computation."""
        from scr_connectivity.scr import negative_log_likelihood

        grid, traps, encounters = create_simulated_survey(metric="euclidean")
        theta = np.array([-0.5, -1.2, 2.5, 0.0])

        nll = negative_log_likelihood(theta, encounters, traps, grid, metric="euclidean")
        expected = reference_euclidean_nll(theta, encounters.counts, traps.trials,
                                           traps.coords, grid.coords)

        assert nll == pytest.approx(expected, rel=1e-10)

    def test_poisson_matches_reference(self):
        from scr_connectivity.scr import negative_log_likelihood

        grid, traps, encounters = create_simulated_survey(metric="euclidean")
        theta = np.array([-1.0, -0.8, 2.0, 0.0])

        nll = negative_log_likelihood(theta, encounters, traps, grid,
                                      obs_model="poisson", metric="euclidean")
        expected = reference_euclidean_nll(theta, encounters.counts, traps.trials,
                                           traps.coords, grid.coords, model="poisson")

        assert nll == pytest.approx(expected, rel=1e-10)

    def test_ecological_with_zero_alpha2_on_uniform_grid(self):
        """On a uniform grid with traps at cell centres, straight-line and least-cost
        distances agree along rows, so the two metrics give close likelihoods."""
        from scr_connectivity.scr import negative_log_likelihood

        grid = create_uniform_grid(5, 5)
        traps = create_trap_set()
        encounters = create_scenario_encounters()
        theta = np.array([-1.0, 1.0, 1.0, 0.0])

        eco = negative_log_likelihood(theta, encounters, traps, grid, metric="ecological")
        euc = negative_log_likelihood(theta, encounters, traps, grid, metric="euclidean")

        assert np.isfinite(eco)
        assert eco == pytest.approx(euc, rel=0.05)

    def test_invariant_to_cell_order(self):
        """Reordering the grid cells leaves the likelihood unchanged."""
        from scr_connectivity.scr import negative_log_likelihood

        grid, traps, encounters = create_simulated_survey()
        order = np.random.default_rng(3).permutation(grid.n_cells)
        shuffled = grid.permuted(order)

        original = negative_log_likelihood(SURVEY_THETA, encounters, traps, grid)
        reordered = negative_log_likelihood(SURVEY_THETA, encounters, traps, shuffled)

        assert reordered == pytest.approx(original, rel=1e-10)

    def test_chunking_does_not_change_value(self, monkeypatch):
        from scr_connectivity.scr import likelihood

        grid, traps, encounters = create_simulated_survey()
        full = likelihood.negative_log_likelihood(SURVEY_THETA, encounters, traps, grid)

        monkeypatch.setattr(likelihood, "CHUNK_ELEMENTS", 1)
        chunked = likelihood.negative_log_likelihood(SURVEY_THETA, encounters, traps, grid)

        assert chunked == pytest.approx(full, rel=1e-12)

    def test_components_consistent(self):
        from scr_connectivity.scr import evaluate, negative_log_likelihood

        grid, traps, encounters = create_simulated_survey()
        components = evaluate(SURVEY_THETA, encounters, traps, grid)

        assert components.log_conditional.shape == (encounters.n_detected + 1, grid.n_cells)
        assert components.n0 == pytest.approx(20.0)
        assert components.log_likelihood == pytest.approx(
            -negative_log_likelihood(SURVEY_THETA, encounters, traps, grid))

    def test_resistance_changes_likelihood(self):
        from scr_connectivity.scr import negative_log_likelihood

        grid, traps, encounters = create_simulated_survey()
        theta = SURVEY_THETA.copy()
        with_resistance = negative_log_likelihood(theta, encounters, traps, grid)
        theta[3] = 0.0
        without = negative_log_likelihood(theta, encounters, traps, grid)

        assert with_resistance != pytest.approx(without)

    def test_unreachable_cells_give_finite_likelihood(self):
        """Cells cut off from every trap contribute zero detection probability, not NaN."""
        from scr_connectivity.scr import TrapSet, EncounterData, negative_log_likelihood

        grid = create_split_grid()
        traps = TrapSet.from_coords(np.array([[0.5, 3.5], [2.5, 0.5]]), 4)
        encounters = EncounterData(np.array([[2, 0], [1, 1]]))

        nll = negative_log_likelihood(np.array([0.0, -0.5, 1.0, 0.3]), encounters, traps, grid)

        assert np.isfinite(nll)

    def test_invalid_theta_length(self):
        from scr_connectivity.scr import negative_log_likelihood

        with pytest.raises(ValueError):
            negative_log_likelihood(np.zeros(3), create_scenario_encounters(), create_trap_set(),
                                    create_uniform_grid())

    def test_validation_runs_first(self):
        from scr_connectivity.exceptions import DataValidationError
        from scr_connectivity.scr import EncounterData, negative_log_likelihood

        encounters = EncounterData(np.array([[1, 0]]))
        with pytest.raises(DataValidationError):
            negative_log_likelihood(np.zeros(4), encounters, create_trap_set(), create_uniform_grid())

class TestPosteriors:
    """Test suite for activity-centre posteriors."""

    def test_rows_sum_to_one(self):
        from scr_connectivity.scr import predict_posteriors

        grid, traps, encounters = create_simulated_survey()
        posteriors = predict_posteriors(SURVEY_THETA, encounters, traps, grid)

        assert posteriors.detected.shape == (encounters.n_detected, grid.n_cells)
        np.testing.assert_allclose(posteriors.matrix.sum(axis=1), 1.0, atol=1e-9)
        assert np.all(posteriors.matrix >= 0)
        assert posteriors.n0 == pytest.approx(20.0)

    def test_posterior_mass_near_detections(self):
        """An individual caught repeatedly at one trap most likely lives in that trap's cell."""
        from scr_connectivity.scr import predict_posteriors

        grid = create_uniform_grid(5, 5)
        traps = create_trap_set()
        encounters = create_scenario_encounters()
        posteriors = predict_posteriors(np.array([-1.0, 0.5, 1.0, 0.0]), encounters, traps, grid)

        trap_cells = grid.nearest_cells(traps.coords)
        assert np.argmax(posteriors.detected[0]) == trap_cells[0]
        assert np.argmax(posteriors.detected[1]) == trap_cells[1]

    def test_unreachable_cells_have_zero_posterior(self):
        from scr_connectivity.scr import TrapSet, EncounterData, predict_posteriors

        grid = create_split_grid()
        traps = TrapSet.from_coords(np.array([[0.5, 3.5], [2.5, 0.5]]), 4)
        encounters = EncounterData(np.array([[2, 0], [1, 1]]))

        posteriors = predict_posteriors(np.array([0.0, -0.5, 1.0, 0.3]), encounters, traps, grid)
        east = grid.cols >= 5

        assert np.all(posteriors.detected[:, east] == 0.0)
        # undetected animals can live anywhere, including the unsurveyed block
        assert np.all(posteriors.undetected[east] > 0.0)
        np.testing.assert_allclose(posteriors.matrix.sum(axis=1), 1.0, atol=1e-9)

    def test_history_spanning_disconnected_blocks_rejected(self):
        """An individual caught on both sides of a barrier has no possible activity centre."""
        from scr_connectivity.exceptions import DataValidationError
        from scr_connectivity.scr import TrapSet, EncounterData, predict_posteriors

        grid = create_split_grid()
        traps = TrapSet.from_coords(np.array([[0.5, 3.5], [7.5, 0.5]]), 4)
        encounters = EncounterData(np.array([[1, 1], [1, 0]]), individual_ids=('straddler', 'west'))

        with pytest.raises(DataValidationError) as excinfo:
            predict_posteriors(np.array([0.0, -0.5, 1.0, 0.0]), encounters, traps, grid)

        assert excinfo.value.problem == 'impossible_histories'
        assert str(excinfo.value).endswith("['straddler']")

    def test_weights(self):
        from scr_connectivity.scr import predict_posteriors

        grid, traps, encounters = create_simulated_survey()
        posteriors = predict_posteriors(SURVEY_THETA, encounters, traps, grid)

        assert posteriors.weights.tolist() == [1.0] * encounters.n_detected + [pytest.approx(20.0)]
