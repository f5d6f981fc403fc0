"""SCR Connectivity - spatial capture-recapture with ecological distance"""

__version__ = "0.1.0"
__author__ = "Guillaume Atencia"

# Make main classes available at package level
from .landscape import Grid, Connectivity, DistanceMetric, build_cost_surface, ecological_distance
from .scr import (
    TrapSet, EncounterData, ObservationModel, DetectionModel, ModelParameters,
    negative_log_likelihood, predict_posteriors, fit, confidence_interval, FitResult,
    simulate_encounters
)
from .connectivity import derive_connectivity, ConnectivitySurfaces, Surface
from .config import SCRConfig, get_config
from .exceptions import (
    SCRError, DataValidationError, UnreachableCellError,
    NumericalDegeneracyError, ConvergenceFailure
)

__all__ = [
    'Grid',
    'Connectivity',
    'DistanceMetric',
    'build_cost_surface',
    'ecological_distance',
    'TrapSet',
    'EncounterData',
    'ObservationModel',
    'DetectionModel',
    'ModelParameters',
    'negative_log_likelihood',
    'predict_posteriors',
    'fit',
    'confidence_interval',
    'FitResult',
    'simulate_encounters',
    'derive_connectivity',
    'ConnectivitySurfaces',
    'Surface',
    'SCRConfig',
    'get_config',
    'SCRError',
    'DataValidationError',
    'UnreachableCellError',
    'NumericalDegeneracyError',
    'ConvergenceFailure'
]
