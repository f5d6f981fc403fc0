"""Spatial capture-recapture likelihood and estimation"""

from .parameters import PARAM_NAMES, ModelParameters
from .encounters import TrapSet, EncounterData, validate_inputs
from .detection_models import (
    DetectionModel, BinomialDetection, PoissonDetection, ObservationModel,
    get_detection_model, detection_probability
)
from .likelihood import (
    LikelihoodComponents, Posteriors, evaluate, negative_log_likelihood, predict_posteriors
)
from .estimator import FitResult, fit, confidence_interval, numerical_hessian
from .simulation import simulate_encounters

__all__ = [
    'PARAM_NAMES',
    'ModelParameters',
    'TrapSet',
    'EncounterData',
    'validate_inputs',
    'DetectionModel',
    'BinomialDetection',
    'PoissonDetection',
    'ObservationModel',
    'get_detection_model',
    'detection_probability',
    'LikelihoodComponents',
    'Posteriors',
    'evaluate',
    'negative_log_likelihood',
    'predict_posteriors',
    'FitResult',
    'fit',
    'confidence_interval',
    'numerical_hessian',
    'simulate_encounters'
]
