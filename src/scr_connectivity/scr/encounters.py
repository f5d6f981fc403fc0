#!/usr/bin/env python3
"""
Trap and encounter data for spatial capture-recapture.
Handles reformatting raw capture tables into dense arrays, and input validation.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging

from ..exceptions import DataValidationError

logger = logging.getLogger(__name__)

def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array

@dataclass(frozen=True)
class TrapSet:
    """Trap locations and their per-occasion operational flags."""
    coords: np.ndarray          # (J, 2) trap x, y
    operational: np.ndarray     # (J, K) True where the trap was working
    ids: Optional[Tuple] = None

    def __post_init__(self):
        coords = np.atleast_2d(np.asarray(self.coords, dtype=np.float64))
        operational = np.asarray(self.operational)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise DataValidationError(f"Trap coordinates must have shape (J, 2), got {coords.shape}",
                                      problem='trap_coords')
        if operational.ndim != 2 or operational.shape[0] != coords.shape[0]:
            raise DataValidationError(
                f"Operational flags must have shape ({coords.shape[0]}, K), got {operational.shape}",
                problem='operational_shape'
            )
        if self.ids is not None and len(self.ids) != coords.shape[0]:
            raise DataValidationError("Number of trap ids does not match number of traps",
                                      problem='trap_ids')
        object.__setattr__(self, 'coords', _frozen(coords))
        object.__setattr__(self, 'operational', _frozen(operational.astype(bool)))
        if self.ids is not None:
            object.__setattr__(self, 'ids', tuple(self.ids))

    @classmethod
    def from_coords(cls, coords, n_occasions: int, ids: Optional[Sequence] = None) -> 'TrapSet':
        """Traps operational on every one of n_occasions."""
        coords = np.atleast_2d(np.asarray(coords, dtype=np.float64))
        return cls(coords, np.ones((coords.shape[0], int(n_occasions)), dtype=bool), ids)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, x_col: str = 'x', y_col: str = 'y',
                   id_col: Optional[str] = None, occasion_cols: Optional[List[str]] = None,
                   n_occasions: Optional[int] = None) -> 'TrapSet':
        """
        Build a trap set from a trap table.

        Parameters:
        -----------
        df : pd.DataFrame
            One row per trap
        x_col, y_col : str
            Coordinate columns
        id_col : str, optional
            Trap identifier column used to match capture records
        occasion_cols : List[str], optional
            0/1 operational columns, one per occasion
        n_occasions : int, optional
            Number of occasions when every trap is always operational

        Returns:
        --------
        TrapSet
        """
        missing_cols = [c for c in (x_col, y_col) if c not in df.columns]
        if missing_cols:
            raise DataValidationError(f"Missing required trap columns: {missing_cols}",
                                      problem='missing_columns')

        coords = df[[x_col, y_col]].to_numpy(dtype=np.float64)
        ids = tuple(df[id_col].tolist()) if id_col else None

        if occasion_cols:
            flags = df[occasion_cols].to_numpy()
            if np.any((flags != 0) & (flags != 1)):
                raise DataValidationError("Operational flags must be 0 or 1",
                                          problem='operational_values')
            operational = flags.astype(bool)
        elif n_occasions is not None:
            operational = np.ones((len(df), int(n_occasions)), dtype=bool)
        else:
            raise ValueError("Provide occasion_cols or n_occasions")

        return cls(coords, operational, ids)

    @property
    def n_traps(self) -> int:
        return int(self.coords.shape[0])

    @property
    def n_occasions(self) -> int:
        return int(self.operational.shape[1])

    @property
    def trials(self) -> np.ndarray:
        """Number of operational occasions per trap."""
        return self.operational.sum(axis=1)

    @property
    def all_active(self) -> bool:
        return bool(self.operational.all())

@dataclass(frozen=True)
class EncounterData:
    """
    Detection counts for detected individuals.

    `data` is either (n, J) total counts or (n, J, K) per-occasion detections.
    Undetected individuals have no row; their number is estimated by the model.
    """
    data: np.ndarray
    individual_ids: Optional[Tuple] = None

    def __post_init__(self):
        data = np.asarray(self.data)
        if data.ndim not in (2, 3):
            raise DataValidationError(f"Encounter data must be 2D or 3D, got {data.ndim}D",
                                      problem='encounter_ndim')
        if data.size and not np.all(np.isfinite(data)):
            raise DataValidationError("Encounter data contains non-finite values",
                                      problem='non_finite')
        if np.any(data < 0):
            raise DataValidationError("Encounter data contains negative counts",
                                      problem='negative_counts')
        if np.any(data != np.round(data)):
            raise DataValidationError("Encounter data must hold integer counts",
                                      problem='non_integer')
        if self.individual_ids is not None and len(self.individual_ids) != data.shape[0]:
            raise DataValidationError("Number of individual ids does not match encounter rows",
                                      problem='individual_ids')
        object.__setattr__(self, 'data', _frozen(data.astype(np.int64)))
        if self.individual_ids is not None:
            object.__setattr__(self, 'individual_ids', tuple(self.individual_ids))

    @classmethod
    def from_captures(cls, captures: pd.DataFrame, traps: TrapSet,
                      individual_col: str = 'individual', trap_col: str = 'trap',
                      occasion_col: str = 'occasion', session_col: Optional[str] = None,
                      session=None, index_base: int = 1) -> 'EncounterData':
        """
        Reformat a long capture table into a dense (individual, trap, occasion) array.

        Parameters:
        -----------
        captures : pd.DataFrame
            One row per detection event
        traps : TrapSet
            Trap set the capture table refers to
        individual_col, trap_col, occasion_col : str
            Column names of the capture table
        session_col : str, optional
            Session column; rows of other sessions are dropped
        session : optional
            Session to keep (required when session_col is given)
        index_base : int
            Base of integer trap and occasion indices (1 for R-style tables)

        Returns:
        --------
        EncounterData
            3D encounter array, individuals ordered by first appearance
        """
        required_cols = [individual_col, trap_col, occasion_col]
        if session_col:
            required_cols.append(session_col)
        missing_cols = [c for c in required_cols if c not in captures.columns]
        if missing_cols:
            raise DataValidationError(f"Missing required capture columns: {missing_cols}",
                                      problem='missing_columns')

        df = captures
        if session_col:
            df = df[df[session_col] == session]
            logger.info(f"Selected {len(df)} capture records for session {session}")

        if df[required_cols].isna().any().any():
            raise DataValidationError("Capture table contains missing values", problem='missing_values')

        individuals = pd.unique(df[individual_col])
        individual_index = {ind: i for i, ind in enumerate(individuals)}

        if traps.ids is not None:
            trap_index = {tid: j for j, tid in enumerate(traps.ids)}
            unknown = set(df[trap_col]) - set(trap_index)
            if unknown:
                raise DataValidationError(f"Captures reference unknown traps: {sorted(map(str, unknown))}",
                                          problem='unknown_traps')
            trap_idx = df[trap_col].map(trap_index).to_numpy(dtype=np.int64)
        else:
            trap_idx = df[trap_col].to_numpy(dtype=np.int64) - index_base

        occasion_idx = df[occasion_col].to_numpy(dtype=np.int64) - index_base

        if np.any((trap_idx < 0) | (trap_idx >= traps.n_traps)):
            raise DataValidationError("Capture trap index out of range", problem='trap_range')
        if np.any((occasion_idx < 0) | (occasion_idx >= traps.n_occasions)):
            raise DataValidationError("Capture occasion index out of range", problem='occasion_range')

        data = np.zeros((len(individuals), traps.n_traps, traps.n_occasions), dtype=np.int64)
        ind_idx = df[individual_col].map(individual_index).to_numpy(dtype=np.int64)
        np.add.at(data, (ind_idx, trap_idx, occasion_idx), 1)

        logger.info(f"Reformatted {len(df)} capture records: {len(individuals)} individuals, "
                    f"{traps.n_traps} traps, {traps.n_occasions} occasions")

        return cls(data, individual_ids=tuple(individuals))

    @property
    def counts(self) -> np.ndarray:
        """Per individual and trap totals, shape (n, J)."""
        if self.data.ndim == 3:
            return self.data.sum(axis=2)
        return self.data

    @property
    def n_detected(self) -> int:
        return int(self.data.shape[0])

    @property
    def n_traps(self) -> int:
        return int(self.data.shape[1])

    @property
    def has_occasions(self) -> bool:
        return self.data.ndim == 3

    def validate(self, traps: 'TrapSet', detection_model=None) -> 'EncounterData':
        validate_inputs(self, traps, detection_model)
        return self

    def summary(self) -> dict:
        """Basic capture statistics."""
        counts = self.counts
        return {
            'n_individuals': self.n_detected,
            'n_detections': int(counts.sum()),
            'n_traps_with_detections': int((counts.sum(axis=0) > 0).sum()),
            'mean_traps_per_individual': float((counts > 0).sum(axis=1).mean()) if self.n_detected else 0.0
        }

def validate_inputs(encounters: EncounterData, traps: TrapSet, detection_model=None) -> None:
    """
    Check encounter and trap tables before likelihood evaluation.

    Raises:
    -------
    DataValidationError
        On mismatched dimensions, traps with no operational occasion,
        individuals without detections, detections on inactive occasions,
        or a violated observation-model precondition
    """
    if encounters.n_traps != traps.n_traps:
        raise DataValidationError(
            f"Encounter data has {encounters.n_traps} traps, trap set has {traps.n_traps}",
            problem='trap_dimension'
        )

    idle = np.flatnonzero(traps.trials == 0)
    if idle.size:
        raise DataValidationError(f"Traps with zero operational occasions: {idle.tolist()}",
                                  problem='idle_traps')

    if encounters.n_detected and np.any(encounters.counts.sum(axis=1) == 0):
        empty = np.flatnonzero(encounters.counts.sum(axis=1) == 0)
        raise DataValidationError(f"Encounter rows without detections: {empty.tolist()}",
                                  problem='empty_histories')

    if encounters.has_occasions:
        if encounters.data.shape[2] != traps.n_occasions:
            raise DataValidationError(
                f"Encounter data has {encounters.data.shape[2]} occasions, "
                f"trap set has {traps.n_occasions}",
                problem='occasion_dimension'
            )
        inactive_hits = (encounters.data > 0) & ~traps.operational[None, :, :]
        if inactive_hits.any():
            raise DataValidationError(
                f"{int(inactive_hits.sum())} detections recorded on inactive trap occasions",
                problem='inactive_detections'
            )

    if detection_model is not None:
        detection_model.validate(encounters, traps)
