"""Test fixtures for SCR connectivity testing"""

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from scipy.special import expit, gammaln, logsumexp
from scipy.stats import binom, poisson

from scr_connectivity.landscape import Grid
from scr_connectivity.scr import EncounterData, TrapSet, simulate_encounters

# Three traps inside a 5 x 5 unit grid, K = 10 occasions
SCENARIO_TRAPS = np.array([[1.5, 1.5], [2.5, 3.5], [3.5, 2.5]])
SCENARIO_OCCASIONS = 10

def create_uniform_grid(rows: int = 5, cols: int = 5, value: float = 0.0,
                        resolution: float = 1.0) -> Grid:
    """Grid with a constant covariate."""
    return Grid.from_array(np.full((rows, cols), value), resolution=resolution)

def create_gradient_grid(rows: int = 6, cols: int = 6, resolution: float = 1.0) -> Grid:
    """Grid whose covariate increases from west to east and is scaled to [0, 1]."""
    values = np.tile(np.linspace(0.0, 1.0, cols), (rows, 1))
    return Grid.from_array(values, resolution=resolution)

def create_patchy_grid(rows: int = 8, cols: int = 8, seed: int = 7) -> Grid:
    """Grid with a random (forest-cover like) covariate."""
    rng = np.random.default_rng(seed)
    return Grid.from_array(rng.random((rows, cols)))

def create_split_grid(rows: int = 4, cols: int = 8) -> Grid:
    """Two blocks separated by a two-column gap, wider than a knight move."""
    values = np.zeros((rows, cols))
    values[:, 3:5] = np.nan
    return Grid.from_array(values)

def create_trap_set(coords=None, n_occasions: int = SCENARIO_OCCASIONS) -> TrapSet:
    """Traps operational on every occasion."""
    coords = SCENARIO_TRAPS if coords is None else coords
    return TrapSet.from_coords(coords, n_occasions)

def create_trap_array(grid: Grid, spacing: int = 2, n_occasions: int = 5) -> TrapSet:
    """Regular trap array on every `spacing`-th cell centre."""
    rows, cols = grid.lattice_positions()
    keep = (rows % spacing == 1) & (cols % spacing == 1)
    return TrapSet.from_coords(grid.coords[keep], n_occasions)

def create_scenario_encounters() -> EncounterData:
    """Two individuals, each detected at a single trap."""
    counts = np.array([
        [3, 0, 0],
        [0, 2, 0],
    ])
    return EncounterData(counts, individual_ids=('A', 'B'))

def create_capture_table() -> pd.DataFrame:
    """Long capture table (1-based trap and occasion indices) over two sessions."""
    return pd.DataFrame({
        'session': [1, 1, 1, 1, 2],
        'individual': ['A', 'A', 'B', 'A', 'C'],
        'trap': [1, 1, 2, 3, 1],
        'occasion': [1, 4, 2, 4, 1],
    })

# (alpha0, alpha1, n0_log, alpha2): p0 = 0.3, sigma = 1.2, alpha2 = 0.8
SURVEY_THETA = np.array([np.log(0.3 / 0.7), np.log(1.0 / (2 * 1.2 ** 2)), np.log(20.0), 0.8])

def create_simulated_survey(n_individuals: int = 40, seed: int = 42, metric: str = "ecological"):
    """Patchy 8 x 8 landscape, 16 traps over 5 occasions, simulated detections."""
    grid = create_patchy_grid()
    traps = create_trap_array(grid)
    encounters, _ = simulate_encounters(SURVEY_THETA, traps, grid, n_individuals,
                                        metric=metric, rng=seed)
    return grid, traps, encounters

def reference_euclidean_nll(theta, counts, trials, trap_coords, cell_coords,
                            model: str = "binomial") -> float:
    """Straightforward Euclidean SCR negative log-likelihood from scipy.stats pmfs."""
    alpha0, alpha1, n0_log = theta[0], theta[1], theta[2]
    p = expit(alpha0) * np.exp(-np.exp(alpha1) * cdist(trap_coords, cell_coords) ** 2)
    histories = np.vstack([counts, np.zeros((1, counts.shape[1]))])

    n_cells = cell_coords.shape[0]
    trials = np.asarray(trials)[:, None]
    log_cond = np.empty((histories.shape[0], n_cells))
    for i, y in enumerate(histories):
        if model == "binomial":
            log_cond[i] = binom.logpmf(y[:, None], trials, p).sum(axis=0)
        else:
            log_cond[i] = poisson.logpmf(y[:, None], trials * p).sum(axis=0)

    log_marginal = logsumexp(log_cond, axis=1) - np.log(n_cells)
    n, n0 = counts.shape[0], np.exp(n0_log)
    ll = gammaln(n + n0 + 1) - gammaln(n0 + 1) + log_marginal[:n].sum() + n0 * log_marginal[n]
    return float(-ll)

__all__ = [
    'SURVEY_THETA',
    'create_simulated_survey',
    'reference_euclidean_nll',
    'SCENARIO_TRAPS',
    'SCENARIO_OCCASIONS',
    'create_uniform_grid',
    'create_gradient_grid',
    'create_patchy_grid',
    'create_split_grid',
    'create_trap_set',
    'create_trap_array',
    'create_scenario_encounters',
    'create_capture_table'
]
