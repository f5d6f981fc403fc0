#!/usr/bin/env python3
"""
Landscape grid representation for SCR state spaces.
Handles loading covariate rasters and tables into an immutable cell collection.
"""

import numpy as np
import pandas as pd
import rasterio
from rasterio.transform import Affine
from scipy.spatial import cKDTree
from enum import IntEnum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

class Connectivity(IntEnum):
    """Neighbourhood used to connect grid cells."""
    ROOK = 4
    QUEEN = 8
    KNIGHT = 16

    @property
    def half_offsets(self) -> List[Tuple[int, int]]:
        """(drow, dcol) offsets covering each undirected neighbour pair once."""
        offsets = [(0, 1), (1, 0)]
        if self >= Connectivity.QUEEN:
            offsets += [(1, 1), (1, -1)]
        if self >= Connectivity.KNIGHT:
            offsets += [(1, 2), (1, -2), (2, 1), (2, -1)]
        return offsets

    @property
    def offsets(self) -> List[Tuple[int, int]]:
        """All (drow, dcol) offsets of the neighbourhood."""
        half = self.half_offsets
        return half + [(-dr, -dc) for dr, dc in half]

    @classmethod
    def resolve(cls, value: Union[int, 'Connectivity']) -> 'Connectivity':
        """Accept 4/8/16 or an enum member."""
        try:
            return cls(int(value))
        except ValueError:
            raise ValueError(f"Unsupported connectivity {value!r}; use 4, 8 or 16")

class Grid:
    """
    Immutable collection of square landscape cells.

    Each cell has a lattice index (row, col), a centre coordinate (x, y) and a
    scalar covariate. Used both as the SCR state space and as the domain of the
    connectivity surfaces. Cells may be listed in any order and the lattice may
    have holes; missing lattice positions are impassable.
    """

    def __init__(self, rows: np.ndarray, cols: np.ndarray,
                 x: np.ndarray, y: np.ndarray, covariate: np.ndarray,
                 resolution: float = 1.0, crs: Optional[str] = None):
        """
        Initialize grid from per-cell arrays.

        Parameters:
        -----------
        rows, cols : np.ndarray
            Integer lattice indices of each cell (row 0 is the top row)
        x, y : np.ndarray
            Cell-centre coordinates
        covariate : np.ndarray
            Scalar landscape covariate per cell (NaN marks a barrier cell)
        resolution : float
            Cell side length in coordinate units
        crs : str, optional
            Coordinate reference system, carried through to raster outputs
        """
        arrays = [np.asarray(a) for a in (rows, cols, x, y, covariate)]
        n_cells = arrays[0].shape[0]
        if any(a.ndim != 1 or a.shape[0] != n_cells for a in arrays):
            raise ValueError("rows, cols, x, y and covariate must be 1D arrays of equal length")
        if n_cells == 0:
            raise ValueError("Grid must contain at least one cell")
        if resolution <= 0:
            raise ValueError("Grid resolution must be positive")

        self.rows = self._frozen(arrays[0].astype(np.int64))
        self.cols = self._frozen(arrays[1].astype(np.int64))
        self.x = self._frozen(arrays[2].astype(np.float64))
        self.y = self._frozen(arrays[3].astype(np.float64))
        self.covariate = self._frozen(arrays[4].astype(np.float64))
        self.resolution = float(resolution)
        self.crs = crs

        self._row_min = int(self.rows.min())
        self._col_min = int(self.cols.min())
        lattice = np.full(
            (int(self.rows.max()) - self._row_min + 1, int(self.cols.max()) - self._col_min + 1),
            -1, dtype=np.int64
        )
        lattice_rows = self.rows - self._row_min
        lattice_cols = self.cols - self._col_min
        if len(set(zip(lattice_rows.tolist(), lattice_cols.tolist()))) != n_cells:
            raise ValueError("Grid cells must have unique (row, col) positions")
        lattice[lattice_rows, lattice_cols] = np.arange(n_cells)
        self._lattice = self._frozen(lattice)

        self._tree = None
        self._graphs: Dict[Connectivity, object] = {}

    @staticmethod
    def _frozen(array: np.ndarray) -> np.ndarray:
        array = np.array(array, copy=True)
        array.setflags(write=False)
        return array

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, values: np.ndarray, resolution: float = 1.0,
                   origin: Optional[Tuple[float, float]] = None,
                   nodata: Optional[float] = None,
                   crs: Optional[str] = None) -> 'Grid':
        """
        Build a grid from a 2D covariate raster array.

        Parameters:
        -----------
        values : np.ndarray
            2D covariate array, row 0 at the top (GeoTIFF orientation)
        resolution : float
            Cell size in coordinate units
        origin : Tuple[float, float], optional
            (x, y) of the top-left corner; defaults to (0, nrows * resolution)
            so that all coordinates are non-negative
        nodata : float, optional
            Covariate value marking cells outside the state space
        crs : str, optional
            Coordinate reference system

        Returns:
        --------
        Grid
            Grid with one cell per valid raster pixel, in row-major order
        """
        if isinstance(values, np.ma.MaskedArray):
            mask = np.ma.getmaskarray(values)
            values = values.filled(np.nan).astype(np.float64)
        else:
            values = np.asarray(values, dtype=np.float64)
            mask = np.zeros(values.shape, dtype=bool)
        if values.ndim != 2:
            raise ValueError("Covariate raster must be 2D")

        if nodata is not None:
            mask |= values == nodata
        mask |= np.isnan(values)

        n_rows, n_cols = values.shape
        if origin is None:
            origin = (0.0, n_rows * resolution)

        rows, cols = np.nonzero(~mask)
        x = origin[0] + (cols + 0.5) * resolution
        y = origin[1] - (rows + 0.5) * resolution

        if mask.any():
            logger.info(f"Excluded {int(mask.sum())} nodata cells from the state space")

        return cls(rows, cols, x, y, values[rows, cols], resolution=resolution, crs=crs)

    @classmethod
    def from_raster(cls, raster_path: Union[str, Path], band: int = 1) -> 'Grid':
        """
        Load a covariate raster with rasterio.

        Parameters:
        -----------
        raster_path : str or Path
            Path to a single-band covariate raster (e.g. percent forest cover)
        band : int
            Band to read

        Returns:
        --------
        Grid
            Grid in the raster's CRS
        """
        raster_path = Path(raster_path)
        if not raster_path.exists():
            raise FileNotFoundError(f"Covariate raster not found: {raster_path}")

        logger.info(f"Loading covariate raster from {raster_path}")

        with rasterio.open(raster_path) as src:
            values = src.read(band, masked=True)
            transform = src.transform
            crs = str(src.crs) if src.crs else None

        x_res, y_res = abs(transform.a), abs(transform.e)
        if not np.isclose(x_res, y_res):
            raise ValueError(f"Covariate raster cells must be square, got {x_res} x {y_res}")

        grid = cls.from_array(values, resolution=x_res, origin=(transform.c, transform.f), crs=crs)
        logger.info(f"Loaded grid: {grid.n_cells} cells at {x_res} resolution")
        return grid

    @classmethod
    def from_frame(cls, df: pd.DataFrame, x_col: str = 'x', y_col: str = 'y',
                   value_col: str = 'covariate', resolution: Optional[float] = None,
                   crs: Optional[str] = None) -> 'Grid':
        """Build a grid from a table of cell centres, inferring the lattice."""
        missing_cols = [c for c in (x_col, y_col, value_col) if c not in df.columns]
        if missing_cols:
            raise ValueError(f"Missing required columns: {missing_cols}")

        x = df[x_col].to_numpy(dtype=np.float64)
        y = df[y_col].to_numpy(dtype=np.float64)

        if resolution is None:
            steps = np.concatenate([np.diff(np.unique(x)), np.diff(np.unique(y))])
            steps = steps[steps > 1e-9]
            if steps.size == 0:
                raise ValueError("Cannot infer resolution from a single cell; pass resolution")
            resolution = float(steps.min())

        cols = np.rint((x - x.min()) / resolution).astype(np.int64)
        rows = np.rint((y.max() - y) / resolution).astype(np.int64)

        return cls(rows, cols, x, y, df[value_col].to_numpy(dtype=np.float64),
                   resolution=resolution, crs=crs)

    # ------------------------------------------------------------------
    # Derived grids
    # ------------------------------------------------------------------

    def with_covariate(self, covariate: np.ndarray) -> 'Grid':
        """Same cells with a new covariate."""
        return Grid(self.rows, self.cols, self.x, self.y, covariate,
                    resolution=self.resolution, crs=self.crs)

    def standardized(self) -> 'Grid':
        """Grid with covariate centred and scaled to unit standard deviation."""
        mean = np.nanmean(self.covariate)
        std = np.nanstd(self.covariate)
        if std == 0 or not np.isfinite(std):
            logger.warning("Covariate has no variation; centring only")
            std = 1.0
        return self.with_covariate((self.covariate - mean) / std)

    def permuted(self, order: np.ndarray) -> 'Grid':
        """Same cells listed in a different order."""
        order = np.asarray(order)
        if sorted(order.tolist()) != list(range(self.n_cells)):
            raise ValueError("order must be a permutation of the cell indices")
        return Grid(self.rows[order], self.cols[order], self.x[order], self.y[order],
                    self.covariate[order], resolution=self.resolution, crs=self.crs)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def n_cells(self) -> int:
        return int(self.rows.shape[0])

    def __len__(self) -> int:
        return self.n_cells

    @property
    def coords(self) -> np.ndarray:
        """Cell-centre coordinates, shape (n_cells, 2)."""
        return np.column_stack([self.x, self.y])

    @property
    def area(self) -> float:
        """State-space area in squared coordinate units."""
        return self.n_cells * self.resolution ** 2

    @property
    def lattice_shape(self) -> Tuple[int, int]:
        return self._lattice.shape

    @property
    def lattice(self) -> np.ndarray:
        """Lattice array of cell indices, -1 where there is no cell."""
        return self._lattice

    @property
    def transform(self) -> Affine:
        """Affine transform of the lattice bounding box (top-left origin)."""
        first = 0
        x0 = self.x[first] - (self.cols[first] - self._col_min + 0.5) * self.resolution
        y0 = self.y[first] + (self.rows[first] - self._row_min + 0.5) * self.resolution
        return Affine.translation(x0, y0) * Affine.scale(self.resolution, -self.resolution)

    def lattice_positions(self) -> Tuple[np.ndarray, np.ndarray]:
        """Zero-based lattice (row, col) of every cell."""
        return self.rows - self._row_min, self.cols - self._col_min

    def neighbors(self, index: int, connectivity: Union[int, Connectivity] = Connectivity.KNIGHT) -> List[int]:
        """
        Indices of the cells adjacent to a cell.

        Parameters:
        -----------
        index : int
            Cell index
        connectivity : int or Connectivity
            Neighbourhood (4, 8 or 16 directions)

        Returns:
        --------
        List[int]
            Neighbouring cell indices present in the grid
        """
        connectivity = Connectivity.resolve(connectivity)
        n_rows, n_cols = self._lattice.shape
        row = int(self.rows[index]) - self._row_min
        col = int(self.cols[index]) - self._col_min

        found = []
        for dr, dc in connectivity.offsets:
            r, c = row + dr, col + dc
            if 0 <= r < n_rows and 0 <= c < n_cols and self._lattice[r, c] >= 0:
                found.append(int(self._lattice[r, c]))
        return found

    def nearest_cells(self, xy: np.ndarray) -> np.ndarray:
        """Snap points to the index of the nearest cell centre."""
        xy = np.atleast_2d(np.asarray(xy, dtype=np.float64))
        if xy.shape[1] != 2:
            raise ValueError("Points must have shape (m, 2)")
        if self._tree is None:
            self._tree = cKDTree(self.coords)
        _, index = self._tree.query(xy)
        return np.asarray(index, dtype=np.int64)

    def graph(self, connectivity: Union[int, Connectivity] = Connectivity.KNIGHT):
        """Fixed least-cost graph topology, built once per connectivity."""
        from .ecological_distance import GridGraph

        connectivity = Connectivity.resolve(connectivity)
        if connectivity not in self._graphs:
            self._graphs[connectivity] = GridGraph(self, connectivity)
        return self._graphs[connectivity]

    def to_frame(self) -> pd.DataFrame:
        """Cells as a table (row, col, x, y, covariate)."""
        return pd.DataFrame({
            'row': self.rows, 'col': self.cols,
            'x': self.x, 'y': self.y,
            'covariate': self.covariate
        })

    def __repr__(self) -> str:
        return (f"Grid(n_cells={self.n_cells}, lattice={self.lattice_shape}, "
                f"resolution={self.resolution})")
