"""Landscape grids, resistance surfaces and ecological distances"""

from .grid import Grid, Connectivity
from .resistance import CostSurface, build_cost_surface
from .ecological_distance import (
    GridGraph, DistanceMetric, UNREACHABLE, ecological_distance,
    euclidean_distance, distance_matrix, unreachable_mask
)

__all__ = [
    'Grid',
    'Connectivity',
    'CostSurface',
    'build_cost_surface',
    'GridGraph',
    'DistanceMetric',
    'UNREACHABLE',
    'ecological_distance',
    'euclidean_distance',
    'distance_matrix',
    'unreachable_mask'
]
