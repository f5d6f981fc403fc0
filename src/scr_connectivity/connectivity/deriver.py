#!/usr/bin/env python3
"""
Landscape connectivity surfaces from a fitted SCR model.

Realized density, potential connectivity and density-weighted connectivity,
each returned as (coordinate, value) pairs on the cells of the input grid.
"""

import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
from shapely.geometry import Point
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union
import logging

from ..exceptions import DataValidationError
from ..landscape.grid import Grid, Connectivity
from ..landscape.ecological_distance import DistanceMetric, distance_matrix, unreachable_mask
from ..scr.likelihood import Posteriors

logger = logging.getLogger(__name__)

NODATA_VALUE = -9999.0

@dataclass(frozen=True)
class Surface:
    """Per-cell values tied to cell-centre coordinates."""
    x: np.ndarray
    y: np.ndarray
    values: np.ndarray
    name: str = "value"

    def __post_init__(self):
        if not (len(self.x) == len(self.y) == len(self.values)):
            raise ValueError("Surface x, y and values must have equal length")

    @classmethod
    def on_grid(cls, grid: Grid, values: np.ndarray, name: str) -> 'Surface':
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (grid.n_cells,):
            raise ValueError(f"Expected {grid.n_cells} values for surface {name!r}, got {values.shape}")
        return cls(grid.x, grid.y, values, name)

    def __len__(self) -> int:
        return len(self.values)

    def pairs(self) -> Iterator[Tuple[Tuple[float, float], float]]:
        """((x, y), value) for every cell."""
        for x, y, v in zip(self.x.tolist(), self.y.tolist(), self.values.tolist()):
            yield (x, y), v

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'x': self.x, 'y': self.y, self.name: self.values})

    def to_geodataframe(self, crs: Optional[str] = None) -> gpd.GeoDataFrame:
        """Cell centres as point geometries."""
        df = self.to_frame()
        geometry = [Point(x, y) for x, y in zip(df['x'], df['y'])]
        return gpd.GeoDataFrame(df, geometry=geometry, crs=crs)

    def to_array(self, grid: Grid) -> np.ndarray:
        """Values laid out on the grid lattice, NaN where the lattice has no cell."""
        if grid.n_cells != len(self.values):
            raise ValueError("Surface does not match grid")
        array = np.full(grid.lattice_shape, np.nan)
        rows, cols = grid.lattice_positions()
        array[rows, cols] = self.values
        return array

    def to_raster(self, output_path: Union[str, Path], grid: Grid,
                  crs: Optional[str] = None) -> Path:
        """
        Write the surface as a single-band GeoTIFF.

        Parameters:
        -----------
        output_path : str or Path
            Destination file
        grid : Grid
            Grid the surface was derived on
        crs : str, optional
            Overrides the grid's CRS

        Returns:
        --------
        Path
            Written file
        """
        array = self.to_array(grid)
        profile = {
            'driver': 'GTiff',
            'height': array.shape[0],
            'width': array.shape[1],
            'count': 1,
            'dtype': 'float32',
            'crs': crs or grid.crs,
            'transform': grid.transform,
            'nodata': NODATA_VALUE
        }

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with rasterio.open(output_path, 'w', **profile) as dst:
            dst.write(np.where(np.isnan(array), NODATA_VALUE, array).astype(np.float32), 1)

        logger.info(f"💾 Saved {self.name} surface: {output_path}")
        return output_path

@dataclass(frozen=True)
class ConnectivitySurfaces:
    """Density, potential and density-weighted connectivity surfaces."""
    density: Surface
    potential: Surface
    dwc: Surface
    potential_matrix: np.ndarray

    def __iter__(self):
        return iter((self.density, self.potential, self.dwc))

    def to_frame(self) -> pd.DataFrame:
        """One table with a column per surface."""
        df = self.density.to_frame()
        df[self.potential.name] = self.potential.values
        df[self.dwc.name] = self.dwc.values
        return df

def realized_density(posteriors: Posteriors) -> np.ndarray:
    """
    Expected number of activity centres per cell.

    Detected individuals count once each, the virtual undetected entry n0 times.
    """
    return posteriors.weights @ posteriors.matrix

def potential_connectivity_matrix(theta_hat, grid: Grid,
                                  connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
                                  metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL
                                  ) -> np.ndarray:
    """
    Cell-to-cell potential connectivity under the fitted cost surface.

    potential[i, j] = exp(-exp(α1) × D[i, j]²), 0 for unreachable pairs.

    Parameters:
    -----------
    theta_hat : array-like
        Fitted (α0, α1, n0_log, α2)
    grid : Grid
        Landscape grid
    connectivity : int or Connectivity
        Least-cost neighbourhood
    metric : str or DistanceMetric
        Distance metric the model was fitted with

    Returns:
    --------
    np.ndarray
        (S, S) matrix
    """
    theta_hat = np.asarray(theta_hat, dtype=np.float64)
    cells = np.arange(grid.n_cells)
    distances = distance_matrix(grid, theta_hat[3], cells, cells, connectivity, metric)

    with np.errstate(over='ignore', invalid='ignore'):
        potential = np.exp(-np.exp(theta_hat[1]) * distances * distances)
    potential[distances == 0] = 1.0
    potential[unreachable_mask(distances)] = 0.0
    return potential

def density_weighted_connectivity(potential: np.ndarray, density: np.ndarray) -> np.ndarray:
    """dwc[i] = Σ_j potential[i, j] × density[j]."""
    potential = np.asarray(potential, dtype=np.float64)
    density = np.asarray(density, dtype=np.float64)
    if potential.ndim != 2 or potential.shape[1] != density.shape[0]:
        raise ValueError(f"Potential matrix {potential.shape} does not match density {density.shape}")
    return potential @ density

def derive_connectivity(theta_hat, grid: Grid,
                        connectivity: Union[int, Connectivity],
                        detected_posteriors: Posteriors,
                        metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL
                        ) -> ConnectivitySurfaces:
    """
    Turn fitted parameters and posteriors into connectivity surfaces.

    Parameters:
    -----------
    theta_hat : array-like
        Fitted (α0, α1, n0_log, α2)
    grid : Grid
        Grid the model was fitted on
    connectivity : int or Connectivity
        Least-cost neighbourhood
    detected_posteriors : Posteriors
        Output of predict_posteriors at theta_hat
    metric : str or DistanceMetric
        Distance metric

    Returns:
    --------
    ConnectivitySurfaces
        density, potential (row sums) and dwc surfaces
    """
    if detected_posteriors.n_cells != grid.n_cells:
        raise ValueError("Posteriors and grid have different numbers of cells")
    bad_rows = np.flatnonzero(~np.all(np.isfinite(detected_posteriors.matrix), axis=1))
    if bad_rows.size:
        raise DataValidationError(f"Posterior rows with non-finite values: {bad_rows.tolist()}",
                                  problem='non_finite_posteriors')

    logger.info(f"🗺️  Deriving connectivity surfaces on {grid.n_cells} cells")
    density = realized_density(detected_posteriors)
    potential = potential_connectivity_matrix(theta_hat, grid, connectivity, metric)
    dwc = density_weighted_connectivity(potential, density)

    logger.info(f"   Expected abundance on grid: {density.sum():.2f}")

    return ConnectivitySurfaces(
        density=Surface.on_grid(grid, density, 'density'),
        potential=Surface.on_grid(grid, potential.sum(axis=1), 'potential'),
        dwc=Surface.on_grid(grid, dwc, 'dwc'),
        potential_matrix=potential
    )
