#!/usr/bin/env python3
"""
Resistance (cost) surface construction.
Converts a landscape covariate and a resistance coefficient into movement costs.
"""

import numpy as np
from dataclasses import dataclass, field
import logging

from .grid import Grid

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class CostSurface:
    """Per-cell movement cost derived from a grid covariate."""
    grid: Grid
    alpha2: float
    cost: np.ndarray = field(repr=False)

    @property
    def conductance(self) -> np.ndarray:
        """Ease of movement, the reciprocal of cost."""
        return 1.0 / self.cost

    @property
    def barrier_mask(self) -> np.ndarray:
        """Cells that cannot be traversed (missing covariate or overflowing cost)."""
        return ~np.isfinite(self.cost)

def build_cost_surface(grid: Grid, alpha2: float) -> CostSurface:
    """
    Calculate the resistance surface for a resistance coefficient.

    cost = exp(α2 × covariate)

    Costs are strictly positive and monotonic in the covariate. A negative α2
    makes high covariate values (e.g. forest cover) cheaper to cross, a positive
    α2 makes them more expensive. The surface is always derived fresh so that
    optimizer iterations never see a stale cost.

    Parameters:
    -----------
    grid : Grid
        Landscape grid with one covariate value per cell
    alpha2 : float
        Resistance coefficient (any sign)

    Returns:
    --------
    CostSurface
        Read-only cost per cell, NaN/inf where the cell is a barrier
    """
    alpha2 = float(alpha2)
    if not np.isfinite(alpha2):
        raise ValueError(f"Resistance coefficient must be finite, got {alpha2}")

    with np.errstate(over='ignore', invalid='ignore'):
        cost = np.exp(alpha2 * grid.covariate)
    cost.setflags(write=False)

    finite = np.isfinite(cost)
    if finite.any():
        logger.debug(f"Cost surface for α2={alpha2:.4f}: "
                     f"{np.min(cost[finite]):.4g} - {np.max(cost[finite]):.4g}")
    if not finite.all():
        logger.debug(f"{int((~finite).sum())} barrier cells in cost surface")

    return CostSurface(grid=grid, alpha2=alpha2, cost=cost)
