"""Connectivity surfaces derived from fitted SCR models"""

from .deriver import (
    Surface, ConnectivitySurfaces, realized_density, potential_connectivity_matrix,
    density_weighted_connectivity, derive_connectivity
)

__all__ = [
    'Surface',
    'ConnectivitySurfaces',
    'realized_density',
    'potential_connectivity_matrix',
    'density_weighted_connectivity',
    'derive_connectivity'
]
