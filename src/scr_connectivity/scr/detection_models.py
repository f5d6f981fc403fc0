#!/usr/bin/env python3
"""
Observation models for trap encounter counts.
The model type is resolved once per fit and dispatched through DetectionModel.
"""

import numpy as np
from abc import ABC, abstractmethod
from enum import Enum
from scipy.special import expit, gammaln, xlogy, xlog1py
from typing import Union
import logging

from ..exceptions import DataValidationError
from ..landscape.ecological_distance import unreachable_mask

logger = logging.getLogger(__name__)

class DetectionModel(ABC):
    """Capability interface of an observation model."""

    name = "abstract"

    @abstractmethod
    def log_likelihood_contribution(self, y: np.ndarray, trials: np.ndarray,
                                    p: np.ndarray) -> np.ndarray:
        """
        Elementwise log-probability of counts y.

        Parameters:
        -----------
        y : np.ndarray
            Detection counts (broadcastable against p)
        trials : np.ndarray
            Operational occasions per trap (broadcastable against p)
        p : np.ndarray
            Per-occasion detection probability

        Returns:
        --------
        np.ndarray
            log f(y | trials, p), -inf for impossible counts
        """

    def validate(self, encounters, traps) -> None:
        """Model-specific preconditions on the data; raise DataValidationError."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

class BinomialDetection(DetectionModel):
    """y ~ Binomial(K_j, p) per individual and trap."""

    name = "binomial"

    def log_likelihood_contribution(self, y, trials, p):
        y = np.asarray(y, dtype=np.float64)
        trials = np.asarray(trials, dtype=np.float64)
        log_comb = gammaln(trials + 1) - gammaln(y + 1) - gammaln(trials - y + 1)
        return log_comb + xlogy(y, p) + xlog1py(trials - y, -p)

    def validate(self, encounters, traps) -> None:
        if encounters.has_occasions and np.any(encounters.data > 1):
            raise DataValidationError(
                "Binomial model needs binary per-occasion detections", problem='non_binary'
            )
        excess = encounters.counts > traps.trials[None, :]
        if excess.any():
            raise DataValidationError(
                f"{int(excess.sum())} encounter counts exceed the trap's operational occasions",
                problem='count_exceeds_trials'
            )

class PoissonDetection(DetectionModel):
    """
    Collapsed counts y ~ Poisson(K × p).

    Only valid when every trap is operational on every occasion.
    """

    name = "poisson"

    def log_likelihood_contribution(self, y, trials, p):
        y = np.asarray(y, dtype=np.float64)
        rate = np.asarray(trials, dtype=np.float64) * p
        return xlogy(y, rate) - rate - gammaln(y + 1)

    def validate(self, encounters, traps) -> None:
        if not traps.all_active:
            raise DataValidationError(
                "Poisson model requires every trap to be operational on every occasion",
                problem='poisson_inactive_traps'
            )

class ObservationModel(Enum):
    """Observation model selector."""
    BINOMIAL = "binomial"
    POISSON = "poisson"

    @classmethod
    def resolve(cls, value: Union[str, 'ObservationModel', DetectionModel]) -> 'ObservationModel':
        if isinstance(value, cls):
            return value
        if isinstance(value, DetectionModel):
            return cls(value.name)
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown observation model {value!r}; use 'binomial' or 'poisson'")

    def detection_model(self) -> DetectionModel:
        return _MODELS[self]()

_MODELS = {
    ObservationModel.BINOMIAL: BinomialDetection,
    ObservationModel.POISSON: PoissonDetection,
}

def get_detection_model(obs_model: Union[str, ObservationModel, DetectionModel]) -> DetectionModel:
    """Resolve an observation model selector to its DetectionModel."""
    if isinstance(obs_model, DetectionModel):
        return obs_model
    return ObservationModel.resolve(obs_model).detection_model()

def detection_probability(theta, distances: np.ndarray) -> np.ndarray:
    """
    Half-normal detection probability in (ecological) distance.

    p(d) = logistic(α0) × exp(-exp(α1) × d²)

    Unreachable pairs get a probability of exactly zero.
    """
    alpha0, alpha1 = float(theta[0]), float(theta[1])
    distances = np.asarray(distances, dtype=np.float64)

    with np.errstate(over='ignore', invalid='ignore'):
        p = expit(alpha0) * np.exp(-np.exp(alpha1) * distances * distances)
    p[distances == 0] = expit(alpha0)
    p[unreachable_mask(distances)] = 0.0
    return p
