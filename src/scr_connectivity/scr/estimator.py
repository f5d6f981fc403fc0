#!/usr/bin/env python3
"""
Maximum likelihood estimation for the ecological-distance SCR model.
Wraps the marginal likelihood in a quasi-Newton optimizer and derives Wald intervals.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from pathlib import Path
from scipy.optimize import minimize
from scipy.special import expit
from scipy.stats import norm
from tqdm import tqdm
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import json
import logging

from ..config.scr_config import SCRConfig
from ..exceptions import ConvergenceFailure, NumericalDegeneracyError
from ..landscape.grid import Grid, Connectivity
from ..landscape.ecological_distance import DistanceMetric
from .detection_models import DetectionModel, ObservationModel, get_detection_model
from .encounters import EncounterData, TrapSet, validate_inputs
from .likelihood import negative_log_likelihood
from .parameters import PARAM_NAMES, ModelParameters

logger = logging.getLogger(__name__)

DERIVATIVE_FREE_METHODS = ('Nelder-Mead', 'Powell', 'COBYLA')

def numerical_hessian(func: Callable[[np.ndarray], float], x: np.ndarray,
                      step: float = 1e-4) -> np.ndarray:
    """
    Central-difference Hessian of a scalar function.

    Parameters:
    -----------
    func : callable
        Scalar function of a 1D array
    x : np.ndarray
        Point of evaluation
    step : float
        Relative step, scaled by max(|x_i|, 1)

    Returns:
    --------
    np.ndarray
        Symmetric (n, n) Hessian
    """
    x = np.asarray(x, dtype=np.float64)
    n = x.shape[0]
    h = step * np.maximum(np.abs(x), 1.0)
    f0 = func(x)
    hessian = np.zeros((n, n))

    for i in range(n):
        ei = np.zeros(n)
        ei[i] = h[i]
        hessian[i, i] = (func(x + 2 * ei) - 2 * f0 + func(x - 2 * ei)) / (4 * h[i] ** 2)
        for j in range(i + 1, n):
            ej = np.zeros(n)
            ej[j] = h[j]
            value = (func(x + ei + ej) - func(x + ei - ej)
                     - func(x - ei + ej) + func(x - ei - ej)) / (4 * h[i] * h[j])
            hessian[i, j] = hessian[j, i] = value

    return hessian

def _covariance(hessian: np.ndarray) -> np.ndarray:
    hessian = np.atleast_2d(np.asarray(hessian, dtype=np.float64))
    if hessian.shape[0] != hessian.shape[1]:
        raise ValueError(f"Hessian must be square, got {hessian.shape}")
    if not np.all(np.isfinite(hessian)):
        raise NumericalDegeneracyError("Hessian contains non-finite values", hessian=hessian)
    if np.linalg.cond(hessian) > 1.0 / np.finfo(np.float64).eps:
        raise NumericalDegeneracyError("Hessian is singular at the optimum (flat or ridged likelihood)",
                                       hessian=hessian)
    try:
        return np.linalg.inv(hessian)
    except np.linalg.LinAlgError as e:
        raise NumericalDegeneracyError(f"Hessian is not invertible: {e}", hessian=hessian) from e

def confidence_interval(theta_hat, hessian, param_index: int,
                        level: float = 0.95) -> Tuple[float, float]:
    """
    Wald confidence interval from the inverse Hessian.

    θ̂_k ± z × sqrt((H⁻¹)_kk), z the normal quantile for the level.

    Parameters:
    -----------
    theta_hat : array-like
        Estimates aligned with the Hessian rows
    hessian : array-like
        Hessian of the negative log-likelihood at θ̂
    param_index : int
        Index of the parameter
    level : float
        Confidence level in (0, 1)

    Returns:
    --------
    Tuple[float, float]
        (lower, upper) on the optimization scale
    """
    if not 0 < level < 1:
        raise ValueError(f"Confidence level must be in (0, 1), got {level}")

    theta_hat = np.atleast_1d(np.asarray(theta_hat, dtype=np.float64))
    covariance = _covariance(hessian)
    if theta_hat.shape[0] != covariance.shape[0]:
        raise ValueError("theta_hat and hessian dimensions do not match")

    variance = covariance[param_index, param_index]
    if not np.isfinite(variance) or variance <= 0:
        raise NumericalDegeneracyError(
            f"Non-positive variance {variance:.4g} for parameter {param_index}", hessian=hessian
        )

    z = norm.ppf(0.5 + level / 2.0)
    half_width = z * np.sqrt(variance)
    estimate = theta_hat[param_index]
    return float(estimate - half_width), float(estimate + half_width)

@dataclass
class FitResult:
    """Outcome of one maximum likelihood fit."""
    theta_hat: np.ndarray
    free_names: Tuple[str, ...]
    hessian: np.ndarray
    converged: bool
    status: int
    message: str
    nll: float
    n_iterations: int = 0
    n_evaluations: int = 0
    n_detected: int = 0
    area: float = float('nan')
    obs_model: str = ObservationModel.BINOMIAL.value
    metric: str = DistanceMetric.ECOLOGICAL.value
    connectivity: int = int(Connectivity.KNIGHT)
    trace: List[float] = field(default_factory=list)

    @property
    def parameters(self) -> ModelParameters:
        return ModelParameters.from_vector(self.theta_hat)

    @property
    def fixed_names(self) -> Tuple[str, ...]:
        return tuple(name for name in PARAM_NAMES if name not in self.free_names)

    @property
    def theta_free(self) -> np.ndarray:
        return np.array([self.theta_hat[PARAM_NAMES.index(name)] for name in self.free_names])

    def as_tuple(self) -> Tuple[np.ndarray, np.ndarray, int]:
        """
        (θ̂, Hessian, convergence status), aligned for confidence_interval.

        θ̂ holds the free parameters in `free_names` order, the same rows as
        the Hessian. With nothing fixed it equals `theta_hat`.
        """
        return self.theta_free, self.hessian, self.status

    def covariance(self) -> np.ndarray:
        return _covariance(self.hessian)

    def standard_errors(self) -> Dict[str, float]:
        """Standard errors of the free parameters on the optimization scale."""
        variances = np.diag(self.covariance())
        if np.any(variances <= 0):
            raise NumericalDegeneracyError("Non-positive variances in inverse Hessian",
                                           hessian=self.hessian)
        return dict(zip(self.free_names, np.sqrt(variances).tolist()))

    def confidence_interval(self, name: str, level: float = 0.95) -> Tuple[float, float]:
        """Wald interval for a free parameter by name."""
        if name not in self.free_names:
            raise ValueError(f"Parameter {name!r} was fixed or is unknown; free: {self.free_names}")
        return confidence_interval(self.theta_free, self.hessian, self.free_names.index(name), level)

    def summary(self, level: float = 0.95) -> pd.DataFrame:
        """
        Estimates on the link and real scale.

        Intervals on the real scale are back-transformed link-scale Wald
        intervals. If the Hessian is degenerate the point estimates are still
        reported with NaN uncertainty.
        """
        intervals = {}
        try:
            ses = self.standard_errors()
            for name in self.free_names:
                intervals[name] = (ses[name],) + self.confidence_interval(name, level)
        except NumericalDegeneracyError as e:
            logger.warning(f"⚠️  Interval estimation unavailable: {e}")

        nan3 = (np.nan, np.nan, np.nan)
        rows = []
        for name, estimate in zip(PARAM_NAMES, self.theta_hat):
            se, lo, hi = intervals.get(name, nan3)
            rows.append({'parameter': name, 'scale': 'link', 'estimate': estimate,
                         'se': se, 'lower': lo, 'upper': hi, 'fixed': name in self.fixed_names})

        def real(label, source, transform):
            index = PARAM_NAMES.index(source)
            _, lo, hi = intervals.get(source, nan3)
            bounds = sorted([transform(lo), transform(hi)]) if np.isfinite(lo) else [np.nan, np.nan]
            rows.append({'parameter': label, 'scale': 'real',
                         'estimate': transform(self.theta_hat[index]), 'se': np.nan,
                         'lower': bounds[0], 'upper': bounds[1],
                         'fixed': source in self.fixed_names})

        n = self.n_detected
        real('p0', 'alpha0', lambda v: float(expit(v)))
        real('decay', 'alpha1', np.exp)
        real('sigma', 'alpha1', lambda v: float(np.sqrt(1.0 / (2.0 * np.exp(v)))))
        real('n0', 'n0_log', np.exp)
        real('N', 'n0_log', lambda v: n + float(np.exp(v)))
        real('density', 'n0_log', lambda v: (n + float(np.exp(v))) / self.area)

        return pd.DataFrame(rows)

    def to_dict(self) -> Dict[str, Any]:
        """Flat record of named scalars plus the Hessian matrix."""
        record = dict(zip(PARAM_NAMES, np.asarray(self.theta_hat, dtype=float).tolist()))
        record.update({
            'nll': float(self.nll),
            'converged': bool(self.converged),
            'status': int(self.status),
            'message': str(self.message),
            'n_iterations': int(self.n_iterations),
            'n_evaluations': int(self.n_evaluations),
            'n_detected': int(self.n_detected),
            'area': float(self.area),
            'obs_model': self.obs_model,
            'metric': self.metric,
            'connectivity': int(self.connectivity),
            'free_names': list(self.free_names),
            'hessian': np.asarray(self.hessian, dtype=float).tolist(),
            'trace': [float(v) for v in self.trace]
        })
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'FitResult':
        return cls(
            theta_hat=np.array([record[name] for name in PARAM_NAMES], dtype=float),
            free_names=tuple(record['free_names']),
            hessian=np.array(record['hessian'], dtype=float).reshape(
                len(record['free_names']), len(record['free_names'])),
            converged=bool(record['converged']),
            status=int(record['status']),
            message=record.get('message', ''),
            nll=float(record['nll']),
            n_iterations=int(record.get('n_iterations', 0)),
            n_evaluations=int(record.get('n_evaluations', 0)),
            n_detected=int(record.get('n_detected', 0)),
            area=float(record.get('area', float('nan'))),
            obs_model=record.get('obs_model', ObservationModel.BINOMIAL.value),
            metric=record.get('metric', DistanceMetric.ECOLOGICAL.value),
            connectivity=int(record.get('connectivity', int(Connectivity.KNIGHT))),
            trace=list(record.get('trace', []))
        )

    def to_json(self, output_path: Union[str, Path]) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)
        logger.info(f"📄 Fit result saved to {output_path}")
        return output_path

    @classmethod
    def from_json(cls, input_path: Union[str, Path]) -> 'FitResult':
        with open(input_path, 'r') as f:
            return cls.from_dict(json.load(f))

def fit(theta0, encounters: EncounterData, traps: TrapSet, grid: Grid,
        connectivity: Union[int, Connectivity] = Connectivity.KNIGHT,
        obs_model: Union[str, ObservationModel, DetectionModel] = ObservationModel.BINOMIAL,
        metric: Union[str, DistanceMetric] = DistanceMetric.ECOLOGICAL,
        fixed: Optional[Dict[str, float]] = None,
        config: Optional[SCRConfig] = None,
        raise_on_failure: bool = True,
        progress: bool = False) -> FitResult:
    """
    Maximum likelihood estimates of θ = (α0, α1, n0_log, α2).

    Parameters:
    -----------
    theta0 : array-like
        Starting values for all four parameters; convergence is sensitive to them
    encounters : EncounterData
        Detected individuals' counts
    traps : TrapSet
        Trap locations and operational occasions
    grid : Grid
        State space and resistance covariate
    connectivity : int or Connectivity
        Least-cost neighbourhood (16 by default)
    obs_model : str, ObservationModel or DetectionModel
        Binomial or Poisson observation model
    metric : str or DistanceMetric
        Ecological or Euclidean distance
    fixed : Dict[str, float], optional
        Parameters held constant, e.g. {'alpha2': 0.0}
    config : SCRConfig, optional
        Optimizer settings (built-in defaults when omitted; the environment is not read)
    raise_on_failure : bool
        Raise ConvergenceFailure (carrying the best-found result) instead of
        returning a non-converged result
    progress : bool
        Show an iteration counter

    Returns:
    --------
    FitResult
        Estimates, Hessian over the free parameters, convergence diagnostics
    """
    config = config if config is not None else SCRConfig(use_env=False)
    opt = config.optimizer

    theta0 = np.asarray(theta0, dtype=np.float64)
    if theta0.shape != (len(PARAM_NAMES),):
        raise ValueError(f"θ0 must be {PARAM_NAMES}, got shape {theta0.shape}")

    fixed = dict(fixed or {})
    unknown = set(fixed) - set(PARAM_NAMES)
    if unknown:
        raise ValueError(f"Unknown fixed parameters: {sorted(unknown)}")
    free_names = tuple(name for name in PARAM_NAMES if name not in fixed)
    if not free_names:
        raise ValueError("At least one parameter must be free")
    free_index = [PARAM_NAMES.index(name) for name in free_names]

    base = theta0.copy()
    for name, value in fixed.items():
        base[PARAM_NAMES.index(name)] = float(value)

    # Resolve dispatch once for the whole fit
    model = get_detection_model(obs_model)
    metric = DistanceMetric.resolve(metric)
    connectivity = Connectivity.resolve(connectivity)
    validate_inputs(encounters, traps, model)

    def full_theta(x: np.ndarray) -> np.ndarray:
        theta = base.copy()
        theta[free_index] = x
        return theta

    n_evaluations = 0

    def objective(x: np.ndarray) -> float:
        nonlocal n_evaluations
        n_evaluations += 1
        value = negative_log_likelihood(full_theta(x), encounters, traps, grid,
                                        connectivity, model, metric, validate=False)
        return value if not np.isnan(value) else np.inf

    logger.info(f"🔍 Fitting SCR model: {encounters.n_detected} individuals, {traps.n_traps} traps, "
                f"{grid.n_cells} cells, {model.name} / {metric.value} / {connectivity.value} directions")
    if fixed:
        logger.info(f"   Fixed parameters: {fixed}")

    x0 = base[free_index]
    trace = [objective(x0)]

    with tqdm(total=opt.max_iterations, desc="Fitting SCR model", unit="iter",
              disable=not progress, leave=False) as bar:

        def callback(intermediate_result):
            trace.append(float(intermediate_result.fun))
            bar.update(1)
            bar.set_postfix(nll=f"{intermediate_result.fun:.4f}")

        kwargs = {'method': opt.method, 'callback': callback,
                  'options': {'maxiter': opt.max_iterations}}
        if opt.method not in DERIVATIVE_FREE_METHODS:
            kwargs['jac'] = opt.finite_difference
            kwargs['options']['gtol'] = opt.gtol

        result = minimize(objective, x0, **kwargs)

    gradient = getattr(result, 'jac', None)
    max_gradient = float(np.max(np.abs(gradient))) if gradient is not None else float('nan')
    converged = bool(result.success) or (
        result.status == 2 and np.isfinite(max_gradient) and max_gradient < opt.gradient_tolerance
    )

    logger.info("Computing Hessian at the optimum...")
    hessian = numerical_hessian(objective, result.x, step=opt.hessian_step)

    fit_result = FitResult(
        theta_hat=full_theta(result.x),
        free_names=free_names,
        hessian=hessian,
        converged=converged,
        status=int(result.status),
        message=str(result.message),
        nll=float(result.fun),
        n_iterations=int(getattr(result, 'nit', 0)),
        n_evaluations=n_evaluations,
        n_detected=encounters.n_detected,
        area=grid.area,
        obs_model=model.name,
        metric=metric.value,
        connectivity=int(connectivity),
        trace=trace
    )

    if converged:
        logger.info(f"✅ Converged after {fit_result.n_iterations} iterations: NLL={fit_result.nll:.4f}, "
                    f"θ̂={np.round(fit_result.theta_hat, 4).tolist()}")
        return fit_result

    message = (f"Optimizer did not converge (status {result.status}: {result.message}); "
               f"max |gradient| = {max_gradient:.3g}")
    if raise_on_failure:
        logger.error(f"❌ {message}")
        raise ConvergenceFailure(message, result=fit_result, status=int(result.status))

    logger.warning(f"⚠️  {message}")
    return fit_result
