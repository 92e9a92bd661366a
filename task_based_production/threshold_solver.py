#!/usr/bin/env python3
"""
Threshold Solver

Given observed labor inputs L, finds the output level q and thresholds xT
that reproduce them, q * u(xT) = L.

The unknowns are optimised in internal coordinates y = [log q, y_1, ..., y_{H-1}]
with xT_1 = lower + exp(y_1) (or y_1 when the support is unbounded below) and
xT_h = xT_{h-1} + exp(y_h), so q > 0 and the thresholds are strictly
increasing for every y. The objective is the sum of squared relative
residuals, minimised with scipy.optimize.least_squares using a
finite-difference Jacobian. A type with zero labor is fitted by shrinking
its interval towards nothing; its residual is measured against total labor
and weighted up inside the optimizer.

Failure to reach fval_tol is not an error: the solver jitters the starting
point, retries up to max_retries times and returns the best attempt with
converged=False, logging a warning.
"""

import math
import numpy as np
from dataclasses import dataclass
from scipy import optimize
from typing import Callable, Optional
import logging

from . import model_config as cfg
from .errors import ParameterValidationError, SolverNonconvergence
from .general_model import _demand_general
from .initial_guess import _check_labor_input, find_initial_guess, find_initial_guess_gen
from .parameters import BlueprintParameters, GeneralModel, SolverSettings, _resolve_settings
from .task_distribution import SUPPORT, _demand
from .utils import _coerce_vector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolutionState:
    """
    Result of prod_fun.

    Attributes:
        q: Output level
        xT: Strictly increasing thresholds (length H-1)
        fval: Sum of squared relative residuals at the returned point
        converged: Whether fval <= settings.fval_tol
        attempts: Number of optimizer runs performed
        message: Optimizer status message of the returned attempt
    """
    q: float
    xT: np.ndarray
    fval: float
    converged: bool
    attempts: int
    message: str = ""

    def require_converged(self) -> "SolutionState":
        """Return self, or raise SolverNonconvergence if the fit missed its tolerance."""
        if not self.converged:
            raise SolverNonconvergence(
                f"Threshold solver did not converge after {self.attempts} attempt(s): "
                f"fval={self.fval:.3e} ({self.message})",
                fval=self.fval,
                attempts=self.attempts,
            )
        return self


def _to_internal(guess: np.ndarray, lower: float) -> np.ndarray:
    """Map [log q, xT...] to internal coordinates [log q, y...]."""
    guess = np.asarray(guess, dtype=np.float64)
    log_q, xT = guess[0], guess[1:]
    if xT.size == 0:
        return np.array([log_q])
    if math.isfinite(lower):
        first = math.log(max(xT[0] - lower, cfg.MIN_THRESHOLD_GAP))
    else:
        first = xT[0]
    increments = np.log(np.maximum(np.diff(xT), cfg.MIN_THRESHOLD_GAP))
    return np.concatenate(([log_q, first], increments))


def _from_internal(y: np.ndarray, lower: float):
    """Map internal coordinates to (q, xT)."""
    q = math.exp(float(np.clip(y[0], -700.0, 700.0)))
    if y.size == 1:
        return q, np.zeros(0)
    steps = np.exp(np.clip(y[2:], -cfg.LOG_INCREMENT_CLAMP, cfg.LOG_INCREMENT_CLAMP))
    if math.isfinite(lower):
        first = lower + math.exp(float(np.clip(y[1], cfg.LOG_FIRST_GAP_MIN, cfg.LOG_INCREMENT_CLAMP)))
    else:
        first = float(y[1])
    xT = first + np.concatenate(([0.0], np.cumsum(steps)))
    # Increments below the spacing of floats vanish in the sum
    for h in range(1, xT.size):
        if xT[h] <= xT[h - 1]:
            xT[h] = np.nextafter(xT[h - 1], np.inf)
    return q, xT


def _relative_residuals(q: float, xT: np.ndarray, labor_input: np.ndarray,
                        demand_fn: Callable[[np.ndarray], np.ndarray]) -> np.ndarray:
    """
    (q * u_h - L_h) / L_h, with types that supply no labor scaled by total labor.

    A zero-labor type can only be matched by shrinking its interval to nothing,
    which the log-coordinate clamps stop short of; dividing by a tiny floor
    there would let that leftover demand dominate the fit.
    """
    scale = np.where(labor_input > 0, labor_input, labor_input.sum())
    denominator = np.maximum(scale, cfg.LABOR_INPUT_FLOOR)
    return (q * demand_fn(xT) - labor_input) / denominator


def _fit_quality(q: float, xT: np.ndarray, labor_input: np.ndarray,
                 demand_fn: Callable[[np.ndarray], np.ndarray]) -> float:
    """Sum of squared relative residuals at (q, xT)."""
    residuals = _relative_residuals(q, xT, labor_input, demand_fn)
    return float(np.dot(residuals, residuals))


def _solve(labor_input: np.ndarray, demand_fn: Callable[[np.ndarray], np.ndarray], lower: float,
           initial_guess: np.ndarray, settings: SolverSettings) -> SolutionState:
    """Multi-start least-squares fit shared by the closed-form and general models."""
    n_types = labor_input.size
    initial_guess = _coerce_vector(initial_guess, "initial_guess", length=n_types)
    if n_types > 1 and np.any(np.diff(initial_guess[1:]) < 0):
        raise ParameterValidationError(f"initial_guess thresholds must be non-decreasing, got {initial_guess[1:]}")

    weights = np.where(labor_input > 0, 1.0, cfg.ZERO_LABOR_RESIDUAL_WEIGHT)

    def residuals(y):
        q, xT = _from_internal(y, lower)
        return weights * _relative_residuals(q, xT, labor_input, demand_fn)

    rng = np.random.default_rng(settings.seed)
    y_start = _to_internal(initial_guess, lower)
    best = None
    attempts = 0

    for attempt in range(settings.max_retries + 1):
        if attempt == 0:
            y0 = y_start
        else:
            # Jitter grows with each retry
            y0 = y_start + rng.normal(0.0, settings.retry_jitter * attempt, size=y_start.size)

        result = optimize.least_squares(
            residuals,
            x0=y0,
            method='trf',
            xtol=settings.x_tol,
            ftol=settings.f_tol,
            gtol=settings.g_tol,
            max_nfev=settings.max_iterations,
        )
        attempts += 1
        unweighted = result.fun / weights
        fval = float(np.dot(unweighted, unweighted))
        logger.debug(
            f"prod_fun attempt {attempt + 1}: fval={fval:.3e}, nfev={result.nfev}, status={result.status}"
        )

        if np.isfinite(fval) and (best is None or fval < best[0]):
            best = (fval, result.x, result.message)
        if best is not None and best[0] <= settings.fval_tol:
            break

    if best is None:
        q, xT = _from_internal(y_start, lower)
        return SolutionState(q=q, xT=xT, fval=math.inf, converged=False, attempts=attempts,
                             message="no attempt produced a finite objective")

    fval, y_best, message = best
    q, xT = _from_internal(y_best, lower)
    converged = fval <= settings.fval_tol
    if not converged:
        logger.warning(
            f"Threshold solver did not reach fval_tol={settings.fval_tol:.1e} after {attempts} "
            f"attempt(s); returning best fval={fval:.3e}"
        )
    return SolutionState(q=q, xT=xT, fval=fval, converged=converged, attempts=attempts, message=str(message))


def prod_fun(labor_input, params: BlueprintParameters, initial_guess=None,
             settings: Optional[SolverSettings] = None, skip_param_checks: bool = False,
             **overrides) -> SolutionState:
    """
    Output level and thresholds that reproduce the observed labor inputs.

    Args:
        labor_input: Observed labor of each type (length H, non-negative)
        params: Closed-form blueprint parameters
        initial_guess: [log q0, xT0...]; defaults to find_initial_guess
        settings: Tolerances, iteration and retry caps
        skip_param_checks: Bypass validation
        **overrides: SolverSettings fields to override, e.g. max_retries=10

    Returns:
        SolutionState with q, xT, fval and convergence information
    """
    settings = _resolve_settings(settings, overrides)
    if not skip_param_checks:
        params.validate()
        labor_input = _check_labor_input(labor_input, params.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)

    if initial_guess is None:
        initial_guess = find_initial_guess(labor_input, params, settings=settings, skip_param_checks=True)

    return _solve(labor_input, lambda xT: _demand(xT, params), SUPPORT[0], initial_guess, settings)


def prod_fun_general(labor_input, model: GeneralModel, initial_guess=None,
                     settings: Optional[SolverSettings] = None, skip_param_checks: bool = False,
                     **overrides) -> SolutionState:
    """
    Output level and thresholds that reproduce the observed labor inputs
    under a general task density and efficiency functions.

    Same contract as prod_fun; the default starting point comes from
    find_initial_guess_gen.
    """
    settings = _resolve_settings(settings, overrides)
    if not skip_param_checks:
        model.validate(np.size(labor_input))
        labor_input = _check_labor_input(labor_input, model.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)

    if initial_guess is None:
        initial_guess = find_initial_guess_gen(labor_input, model, settings=settings, skip_param_checks=True)

    return _solve(labor_input, lambda xT: _demand_general(xT, model, settings), model.support[0],
                  initial_guess, settings)
