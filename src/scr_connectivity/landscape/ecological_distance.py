#!/usr/bin/env python3
"""
Least-cost (ecological) distance engine.
Builds the grid cell graph once and computes shortest-path distances on a cost surface.
"""

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import dijkstra
from scipy.spatial.distance import cdist
from enum import Enum
from typing import Optional, Union
import logging

from .grid import Grid, Connectivity
from .resistance import CostSurface, build_cost_surface
from ..exceptions import UnreachableCellError

logger = logging.getLogger(__name__)

# Sentinel stored in distance matrices for pairs with no finite-cost path
UNREACHABLE = np.inf

class DistanceMetric(Enum):
    """Distance used in the detection model."""
    ECOLOGICAL = "ecological"
    EUCLIDEAN = "euclidean"

    @classmethod
    def resolve(cls, value: Union[str, 'DistanceMetric']) -> 'DistanceMetric':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown distance metric {value!r}; use 'ecological' or 'euclidean'")

class GridGraph:
    """
    Fixed neighbour topology of a grid.

    Every undirected neighbour pair (i, j) is stored once together with its
    centre-to-centre length. Only the edge weights depend on the cost surface,
    so the topology is built once per grid and connectivity and reused for
    every optimizer evaluation.
    """

    def __init__(self, grid: Grid, connectivity: Connectivity = Connectivity.KNIGHT):
        self.grid = grid
        self.connectivity = Connectivity.resolve(connectivity)

        lattice = grid.lattice
        n_rows, n_cols = lattice.shape
        heads, tails, lengths = [], [], []

        for dr, dc in self.connectivity.half_offsets:
            r0, r1 = max(0, -dr), n_rows - max(0, dr)
            c0, c1 = max(0, -dc), n_cols - max(0, dc)
            if r1 <= r0 or c1 <= c0:
                continue
            a = lattice[r0:r1, c0:c1]
            b = lattice[r0 + dr:r1 + dr, c0 + dc:c1 + dc]
            valid = (a >= 0) & (b >= 0)
            heads.append(a[valid])
            tails.append(b[valid])
            lengths.append(np.full(int(valid.sum()), np.hypot(dr, dc) * grid.resolution))

        self.heads = np.concatenate(heads) if heads else np.empty(0, dtype=np.int64)
        self.tails = np.concatenate(tails) if tails else np.empty(0, dtype=np.int64)
        self.lengths = np.concatenate(lengths) if lengths else np.empty(0)

        logger.debug(f"Built {self.connectivity.value}-direction graph: "
                     f"{grid.n_cells} cells, {self.n_edges} edges")

    @property
    def n_edges(self) -> int:
        return int(self.heads.shape[0])

    def conductance(self, cost: np.ndarray) -> np.ndarray:
        """
        Geo-corrected edge conductance.

        The conductance of an edge is the reciprocal of the mean cost of its two
        cells, divided by the edge length so that diagonal and knight moves are
        not favoured over orthogonal ones.
        """
        with np.errstate(invalid='ignore', over='ignore', divide='ignore'):
            return 1.0 / (0.5 * (cost[self.heads] + cost[self.tails])) / self.lengths

    def weighted(self, cost: np.ndarray) -> csr_matrix:
        """
        Sparse graph of edge traversal costs for a cost surface.

        Parameters:
        -----------
        cost : np.ndarray
            Per-cell cost aligned with the grid

        Returns:
        --------
        csr_matrix
            Upper-triangle edge weights (reciprocal conductance); edges touching
            barrier cells are dropped
        """
        with np.errstate(invalid='ignore', divide='ignore'):
            weights = 1.0 / self.conductance(cost)
        keep = np.isfinite(weights)
        # zero weights would be read as missing edges
        weights = np.maximum(weights[keep], np.finfo(np.float64).tiny)
        n = self.grid.n_cells
        return csr_matrix((weights, (self.heads[keep], self.tails[keep])), shape=(n, n))

def _as_cell_indices(grid: Grid, points) -> np.ndarray:
    """Cell indices given directly, or coordinates snapped to the nearest cell."""
    points = np.asarray(points)
    if points.ndim == 1 and np.issubdtype(points.dtype, np.integer):
        if points.size and (points.min() < 0 or points.max() >= grid.n_cells):
            raise IndexError("Cell index out of range")
        return points.astype(np.int64)
    return grid.nearest_cells(points)

def unreachable_mask(distances: np.ndarray) -> np.ndarray:
    """Boolean mask of pairs holding the UNREACHABLE sentinel."""
    return np.isposinf(distances)

def ecological_distance(cost_surface: CostSurface, sources,
                        destinations=None,
                        connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
                        on_unreachable: str = "sentinel") -> np.ndarray:
    """
    Least-cost path distances on a cost surface.

    Parameters:
    -----------
    cost_surface : CostSurface
        Surface from build_cost_surface
    sources : array-like
        Integer cell indices, or (m, 2) coordinates snapped to the nearest cell
    destinations : array-like, optional
        Same forms as sources; defaults to every cell of the grid
    connectivity : int or Connectivity
        4, 8 or 16 directions (16 by default)
    on_unreachable : str
        'sentinel' stores UNREACHABLE for disconnected pairs, 'raise' raises
        UnreachableCellError

    Returns:
    --------
    np.ndarray
        (M, N) matrix of non-negative distances
    """
    if on_unreachable not in ("sentinel", "raise"):
        raise ValueError("on_unreachable must be 'sentinel' or 'raise'")

    grid = cost_surface.grid
    graph = grid.graph(connectivity)
    source_cells = _as_cell_indices(grid, sources)

    unique_sources, inverse = np.unique(source_cells, return_inverse=True)
    all_distances = dijkstra(graph.weighted(cost_surface.cost), directed=False,
                             indices=unique_sources)
    distances = np.atleast_2d(all_distances)[inverse.ravel()]

    if destinations is not None:
        distances = distances[:, _as_cell_indices(grid, destinations)]

    unreachable = unreachable_mask(distances)
    if unreachable.any():
        if on_unreachable == "raise":
            pairs = np.argwhere(unreachable)
            raise UnreachableCellError(
                f"{len(pairs)} source-destination pairs have no finite-cost path", pairs=pairs
            )
        logger.debug(f"{int(unreachable.sum())} unreachable pairs in distance matrix")

    return distances

def euclidean_distance(grid: Grid, sources, destinations=None) -> np.ndarray:
    """Straight-line distances from points (or cells) to cell centres."""
    sources = np.asarray(sources)
    if sources.ndim == 1 and np.issubdtype(sources.dtype, np.integer):
        sources = grid.coords[sources]
    if destinations is None:
        targets = grid.coords
    else:
        destinations = np.asarray(destinations)
        if destinations.ndim == 1 and np.issubdtype(destinations.dtype, np.integer):
            targets = grid.coords[destinations]
        else:
            targets = np.atleast_2d(destinations)
    return cdist(np.atleast_2d(sources).astype(np.float64), targets)

def distance_matrix(grid: Grid, alpha2: float, sources, destinations=None,
                    connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
                    metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL) -> np.ndarray:
    """
    Distance matrix under the chosen metric.

    The cost surface is rebuilt from alpha2 on every call; the Euclidean metric
    ignores alpha2.
    """
    metric = DistanceMetric.resolve(metric)
    if metric is DistanceMetric.EUCLIDEAN:
        return euclidean_distance(grid, sources, destinations)
    cost_surface = build_cost_surface(grid, alpha2)
    return ecological_distance(cost_surface, sources, destinations, connectivity)
