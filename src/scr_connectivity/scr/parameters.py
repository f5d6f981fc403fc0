#!/usr/bin/env python3
"""
SCR model parameter vector and its real-scale transformations.
"""

import numpy as np
from dataclasses import dataclass
from scipy.special import expit
from typing import Dict, Sequence

PARAM_NAMES = ("alpha0", "alpha1", "n0_log", "alpha2")

@dataclass(frozen=True)
class ModelParameters:
    """
    Named view of θ = (α0, α1, n0_log, α2).

    α0 is the logit of baseline detection, α1 the log of the distance-decay
    rate, n0_log the log of the expected number of undetected individuals and
    α2 the resistance coefficient. Optimization always happens on this scale.
    """
    alpha0: float
    alpha1: float
    n0_log: float
    alpha2: float

    @classmethod
    def from_vector(cls, theta: Sequence[float]) -> 'ModelParameters':
        theta = np.asarray(theta, dtype=np.float64)
        if theta.shape != (len(PARAM_NAMES),):
            raise ValueError(f"θ must have {len(PARAM_NAMES)} elements, got shape {theta.shape}")
        return cls(*(float(v) for v in theta))

    def to_vector(self) -> np.ndarray:
        return np.array([self.alpha0, self.alpha1, self.n0_log, self.alpha2])

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(PARAM_NAMES, self.to_vector().tolist()))

    @property
    def p0(self) -> float:
        """Baseline detection probability at zero distance."""
        return float(expit(self.alpha0))

    @property
    def decay(self) -> float:
        """Distance-decay rate in exp(-decay × d²)."""
        return float(np.exp(self.alpha1))

    @property
    def sigma(self) -> float:
        """Half-normal spatial scale, decay = 1 / (2σ²)."""
        return float(np.sqrt(1.0 / (2.0 * self.decay)))

    @property
    def n0(self) -> float:
        """Expected number of undetected individuals."""
        return float(np.exp(self.n0_log))
