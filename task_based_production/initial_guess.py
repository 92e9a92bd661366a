#!/usr/bin/env python3
"""
Initial Guess Module

Builds a starting point [log q0, xT0...] for the threshold solver such that
the implied labor demand of every worker type is non-degenerate.

The heuristic starts from an evenly spaced partition of a fixed task-space
window, then repeatedly widens the interval of every type whose share of
implied demand is below `threshold`, taking task space from its neighbours.
It returns the best partition found even if the iteration cap is hit:
the result is a feasible starting point, not a solution.
"""

import math
import numpy as np
from scipy import stats
from typing import Callable, Optional, Tuple
import logging

from . import model_config as cfg
from .errors import ParameterValidationError
from .general_model import _demand_general, task_quantile_general
from .parameters import BlueprintParameters, GeneralModel, SolverSettings, _resolve_settings
from .task_distribution import _demand
from .utils import _coerce_vector

logger = logging.getLogger(__name__)


def _widen_deficient(xT: np.ndarray, deficient: np.ndarray, lo: float, hi: float) -> np.ndarray:
    """
    Move the boundaries of each deficient type's interval outward.

    Each boundary moves INITIAL_GUESS_STEP of the way to the next boundary
    beyond it (or to the window edge), so the ordering is preserved. The
    upper edge target is extended past the window so the last inner
    threshold can keep moving up.
    """
    xT = xT.copy()
    n_thresholds = xT.size
    upper_target = hi + (hi - lo)
    for h in deficient:
        # Lower boundary of type h is xT[h-1]
        if h >= 1:
            below = xT[h - 2] if h >= 2 else lo
            xT[h - 1] -= cfg.INITIAL_GUESS_STEP * (xT[h - 1] - below)
        # Upper boundary of type h is xT[h]
        if h < n_thresholds:
            above = xT[h + 1] if h + 1 < n_thresholds else upper_target
            xT[h] += cfg.INITIAL_GUESS_STEP * (above - xT[h])
    return xT


def _search_partition(labor_input: np.ndarray, demand_fn: Callable[[np.ndarray], np.ndarray],
                      window: Tuple[float, float], threshold: float, max_iter: int,
                      verbose: bool) -> np.ndarray:
    """Run the widening heuristic; returns the guess vector [log q0, xT0...]."""
    log = logger.info if verbose else logger.debug
    n_types = labor_input.size
    lo, hi = window

    xT = np.linspace(lo, hi, n_types + 1)[1:-1]
    best_xT = xT
    best_min_share = -np.inf
    best_demand = None

    for iteration in range(max_iter):
        demand = demand_fn(xT)
        total = float(np.sum(demand))
        shares = demand / total if total > 0 else np.zeros_like(demand)
        min_share = float(np.min(shares))
        if best_demand is None or min_share > best_min_share:
            best_xT, best_min_share, best_demand = xT, min_share, demand

        deficient = np.flatnonzero(shares < threshold)
        if deficient.size == 0:
            log(f"Initial guess found after {iteration} adjustments: xT={xT}, shares={shares}")
            break
        xT = _widen_deficient(xT, deficient, lo, hi)
    else:
        log(
            f"Initial guess search hit {max_iter} iterations; best minimum demand share "
            f"{best_min_share:.3e} < threshold {threshold:.3e}. Returning best partition xT={best_xT}"
        )

    xT = best_xT
    demand = best_demand
    total_demand = float(np.sum(demand))
    if total_demand <= 0:
        raise ParameterValidationError("Implied labor demand is zero for every worker type")
    # Total implied labor matches total observed labor
    log_q0 = math.log(float(np.sum(labor_input)) / total_demand)
    return np.concatenate(([log_q0], xT))


def _check_labor_input(labor_input, n_types: int) -> np.ndarray:
    labor_input = _coerce_vector(labor_input, "labor_input", length=n_types, nonnegative=True)
    if not np.sum(labor_input) > 0:
        raise ParameterValidationError("labor_input must have at least one positive entry")
    return labor_input


def find_initial_guess(labor_input, params: BlueprintParameters, threshold: Optional[float] = None,
                       settings: Optional[SolverSettings] = None, skip_param_checks: bool = False,
                       **overrides) -> np.ndarray:
    """
    Starting point for prod_fun under the closed-form model.

    The window runs from the support edge 0 to the 99th percentile of the
    gamma blueprint.

    Args:
        labor_input: Observed labor of each type (length H)
        params: Closed-form blueprint parameters
        threshold: Minimum acceptable demand share (default settings.initial_guess_threshold)
        settings: Solver settings (iteration cap, verbose flag)
        skip_param_checks: Bypass validation
        **overrides: SolverSettings fields to override, e.g. verbose=True

    Returns:
        Array [log q0, xT0_1, ..., xT0_{H-1}]
    """
    settings = _resolve_settings(settings, overrides)
    if not skip_param_checks:
        params.validate()
        labor_input = _check_labor_input(labor_input, params.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)
    threshold = settings.initial_guess_threshold if threshold is None else threshold

    window = (0.0, float(stats.gamma.ppf(cfg.INITIAL_GUESS_WINDOW_QUANTILES[1],
                                         params.kappa, scale=params.theta)))
    return _search_partition(labor_input, lambda xT: _demand(xT, params), window,
                             threshold, settings.initial_guess_max_iter, settings.verbose)


def find_initial_guess_gen(labor_input, model: GeneralModel, threshold: Optional[float] = None,
                           settings: Optional[SolverSettings] = None, skip_param_checks: bool = False,
                           **overrides) -> np.ndarray:
    """
    Starting point for prod_fun_general.

    The window uses the finite ends of the model's support; an infinite end
    is replaced by the 1% (lower) or 99% (upper) task quantile.
    """
    settings = _resolve_settings(settings, overrides)
    if not skip_param_checks:
        model.validate(np.size(labor_input))
        labor_input = _check_labor_input(labor_input, model.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)
    threshold = settings.initial_guess_threshold if threshold is None else threshold

    lower, upper = model.support
    p_lo, p_hi = cfg.INITIAL_GUESS_WINDOW_QUANTILES
    lo = lower if math.isfinite(lower) else task_quantile_general(p_lo, model, settings)
    hi = upper if math.isfinite(upper) else task_quantile_general(p_hi, model, settings)
    return _search_partition(labor_input, lambda xT: _demand_general(xT, model, settings), (lo, hi),
                             threshold, settings.initial_guess_max_iter, settings.verbose)
