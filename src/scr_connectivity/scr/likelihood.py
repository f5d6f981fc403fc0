#!/usr/bin/env python3
"""
Marginal likelihood of SCR encounter histories under ecological distance.

The activity centre of every individual is integrated out over the grid cells
(uniform prior), and the number of undetected individuals enters through one
virtual all-zero encounter history weighted by n0.
"""

import numpy as np
from dataclasses import dataclass
from scipy.special import gammaln, logsumexp
from typing import Optional, Tuple, Union
import logging

from ..exceptions import DataValidationError
from ..landscape.grid import Grid, Connectivity
from ..landscape.ecological_distance import DistanceMetric, distance_matrix
from .detection_models import (
    DetectionModel, ObservationModel, get_detection_model, detection_probability
)
from .encounters import EncounterData, TrapSet, validate_inputs
from .parameters import PARAM_NAMES

logger = logging.getLogger(__name__)

# Upper bound on (individuals x traps x cells) evaluated at once
CHUNK_ELEMENTS = 4_000_000

@dataclass(frozen=True)
class LikelihoodComponents:
    """Per-individual pieces of one likelihood evaluation."""
    log_conditional: np.ndarray   # (n + 1, S) log L(y_i | s); last row is the all-zero history
    log_marginal: np.ndarray      # (n + 1,) log L(y_i)
    n_detected: int
    n0: float

    @property
    def log_likelihood(self) -> float:
        n, n0 = self.n_detected, self.n0
        part1 = gammaln(n + n0 + 1) - gammaln(n0 + 1)
        part2 = np.sum(self.log_marginal[:n]) + n0 * self.log_marginal[n]
        return float(part1 + part2)

    @property
    def negative_log_likelihood(self) -> float:
        return -self.log_likelihood

@dataclass(frozen=True)
class Posteriors:
    """Activity-centre posteriors Pr(s | y_i) over grid cells."""
    detected: np.ndarray          # (n, S)
    undetected: np.ndarray        # (S,) posterior of the virtual all-zero history
    n0: float
    individual_ids: Optional[Tuple] = None

    @property
    def matrix(self) -> np.ndarray:
        """Detected rows followed by the undetected row, shape (n + 1, S)."""
        return np.vstack([self.detected, self.undetected[None, :]])

    @property
    def weights(self) -> np.ndarray:
        """Expected number of individuals each row stands for."""
        return np.append(np.ones(self.detected.shape[0]), self.n0)

    @property
    def n_cells(self) -> int:
        return int(self.undetected.shape[0])

def _check_theta(theta) -> np.ndarray:
    theta = np.asarray(theta, dtype=np.float64)
    if theta.shape != (len(PARAM_NAMES),):
        raise ValueError(f"θ must be {PARAM_NAMES}, got shape {theta.shape}")
    return theta

def log_conditional_likelihood(histories: np.ndarray, trials: np.ndarray, p: np.ndarray,
                               model: DetectionModel) -> np.ndarray:
    """
    log L(y_i | s) summed over traps for every history and cell.

    Parameters:
    -----------
    histories : np.ndarray
        (m, J) collapsed counts
    trials : np.ndarray
        (J,) operational occasions per trap
    p : np.ndarray
        (J, S) detection probability per trap and cell
    model : DetectionModel
        Observation model

    Returns:
    --------
    np.ndarray
        (m, S) log-likelihood per history and candidate activity centre
    """
    n_histories, n_traps = histories.shape
    n_cells = p.shape[1]
    out = np.empty((n_histories, n_cells))

    # Working tensors are bounded in size; results do not depend on the chunking
    chunk = max(1, CHUNK_ELEMENTS // max(1, n_traps * n_cells))
    for start in range(0, n_histories, chunk):
        y = histories[start:start + chunk, :, None]
        contribution = model.log_likelihood_contribution(y, trials[None, :, None], p[None, :, :])
        out[start:start + chunk] = contribution.sum(axis=1)
    return out

def evaluate(theta, encounters: EncounterData, traps: TrapSet, grid: Grid,
             connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
             obs_model: Union[str, ObservationModel, DetectionModel] = ObservationModel.BINOMIAL,
             metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL,
             validate: bool = True) -> LikelihoodComponents:
    """
    Evaluate all likelihood components for θ.

    Shared by negative_log_likelihood and predict_posteriors.
    """
    theta = _check_theta(theta)
    model = get_detection_model(obs_model)
    if validate:
        validate_inputs(encounters, traps, model)

    distances = distance_matrix(grid, theta[3], traps.coords, None, connectivity, metric)
    p = detection_probability(theta, distances)

    histories = np.vstack([encounters.counts, np.zeros((1, traps.n_traps), dtype=np.int64)])
    log_cond = log_conditional_likelihood(histories, traps.trials, p, model)

    with np.errstate(divide='ignore'):
        log_marg = logsumexp(log_cond, axis=1) - np.log(grid.n_cells)

    return LikelihoodComponents(
        log_conditional=log_cond,
        log_marginal=log_marg,
        n_detected=encounters.n_detected,
        n0=float(np.exp(theta[2]))
    )

def negative_log_likelihood(theta, encounters: EncounterData, traps: TrapSet, grid: Grid,
                            connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
                            obs_model: Union[str, ObservationModel, DetectionModel] = ObservationModel.BINOMIAL,
                            metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL,
                            validate: bool = True) -> float:
    """
    Negative log-likelihood of the encounter histories.

    LL = lgamma(n + n0 + 1) - lgamma(n0 + 1) + Σ_i log L(y_i) + n0 × log L(0)

    Parameters:
    -----------
    theta : array-like
        (α0, α1, n0_log, α2)
    encounters : EncounterData
        Detected individuals' counts
    traps : TrapSet
        Trap locations and operational occasions
    grid : Grid
        State space and resistance covariate
    connectivity : int or Connectivity
        Least-cost neighbourhood (16 by default)
    obs_model : str, ObservationModel or DetectionModel
        Binomial or Poisson observation model
    metric : str or DistanceMetric
        Ecological (least-cost) or Euclidean distance
    validate : bool
        Run input validation first (disabled inside optimizer loops once checked)

    Returns:
    --------
    float
        -LL (to be minimized)
    """
    components = evaluate(theta, encounters, traps, grid, connectivity, obs_model, metric, validate)
    nll = components.negative_log_likelihood
    logger.debug(f"NLL at θ={np.round(np.asarray(theta, dtype=float), 5).tolist()}: {nll:.6f}")
    return nll

def predict_posteriors(theta, encounters: EncounterData, traps: TrapSet, grid: Grid,
                       connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
                       obs_model: Union[str, ObservationModel, DetectionModel] = ObservationModel.BINOMIAL,
                       metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL,
                       validate: bool = True) -> Posteriors:
    """
    Posterior activity-centre distribution of every individual.

    Pr(s | y_i) = L(y_i | s) × (1/S) / L(y_i), for each detected individual and
    for the virtual undetected entry. Each row sums to one.
    """
    components = evaluate(theta, encounters, traps, grid, connectivity, obs_model, metric, validate)
    log_cond = components.log_conditional
    n = components.n_detected

    impossible = np.flatnonzero(~np.isfinite(components.log_marginal[:n]))
    if impossible.size:
        ids = encounters.individual_ids
        labels = [ids[i] for i in impossible] if ids is not None else impossible.tolist()
        raise DataValidationError(
            f"Encounter histories with zero likelihood at every cell (detections at traps "
            f"no single activity centre can reach): {labels}",
            problem='impossible_histories'
        )

    posterior = np.exp(log_cond - logsumexp(log_cond, axis=1, keepdims=True))

    logger.info(f"Computed activity-centre posteriors for {n} detected individuals "
                f"and n0={components.n0:.3f} undetected")

    return Posteriors(
        detected=posterior[:n],
        undetected=posterior[n],
        n0=components.n0,
        individual_ids=encounters.individual_ids
    )
