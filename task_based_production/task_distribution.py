#!/usr/bin/env python3
"""
Closed-form task distribution.

Task complexity x is gamma distributed with scale theta and shape kappa,

    b_g(x) = x^(kappa-1) exp(-x/theta) / (Gamma(kappa) theta^kappa),   x >= 0,

and worker type h produces task x with efficiency z * exp(alpha_h * x).
The unit labor demand of type h over its interval [x_{h-1}, x_h] is

    u_h = integral b_g(x) / (z exp(alpha_h x)) dx
        = (1 + alpha_h theta)^(-kappa) / z * [P(kappa, s_h x_h) - P(kappa, s_h x_{h-1})]

with s_h = 1/theta + alpha_h, x_0 = 0 and x_H = inf.
"""

import math
import numpy as np
from scipy.special import gammaln
from typing import Optional
import logging

from .errors import ParameterValidationError
from .parameters import BlueprintParameters, SolverSettings
from .special_functions import gamma_interval_probability
from .utils import _check_thresholds, _coerce_vector, _interval_bounds

logger = logging.getLogger(__name__)

SUPPORT = (0.0, math.inf)


def blueprint_density(x, theta: float, kappa: float):
    """
    Gamma blueprint density of task complexity.
    Handles both scalar and array inputs; zero outside the support.
    """
    input_was_scalar = np.ndim(x) == 0
    x_arr = np.atleast_1d(np.asarray(x, dtype=np.float64))

    result = np.zeros_like(x_arr)
    positive = x_arr > 0
    if np.any(positive):
        xp = x_arr[positive]
        log_density = (kappa - 1.0) * np.log(xp) - xp / theta - gammaln(kappa) - kappa * np.log(theta)
        result[positive] = np.exp(log_density)

    return float(result[0]) if input_was_scalar else result


def _demand(xT: np.ndarray, params: BlueprintParameters) -> np.ndarray:
    """Unit labor demand without validation (thresholds assumed coerced)."""
    theta, kappa, z = float(params.theta), float(params.kappa), float(params.z)
    lows, highs = _interval_bounds(xT, *SUPPORT)
    demand = np.zeros(params.n_types)
    for h, alpha in enumerate(params.alpha_vec):
        # Zero-width interval: no integration
        if not highs[h] > lows[h]:
            continue
        scale = 1.0 / theta + alpha
        coefficient = math.exp(-kappa * math.log1p(alpha * theta)) / z
        demand[h] = coefficient * gamma_interval_probability(kappa, scale * lows[h], scale * highs[h])
    return demand


def unit_input_demand(xT, params: BlueprintParameters, skip_param_checks: bool = False) -> np.ndarray:
    """
    Labor required per unit of output from each worker type.

    Args:
        xT: H-1 non-decreasing task thresholds
        params: Closed-form blueprint parameters
        skip_param_checks: Bypass validation of params and xT

    Returns:
        Array of length H with the unit labor demand of each type
    """
    if not skip_param_checks:
        params.validate()
    xT = _check_thresholds(xT, params.n_types, skip_param_checks)
    return _demand(xT, params)


def task_mass_by_type(xT, params: BlueprintParameters, skip_param_checks: bool = False) -> np.ndarray:
    """Share of task mass assigned to each worker type; sums to one."""
    if not skip_param_checks:
        params.validate()
    xT = _check_thresholds(xT, params.n_types, skip_param_checks)
    lows, highs = _interval_bounds(xT, *SUPPORT)
    theta, kappa = float(params.theta), float(params.kappa)
    return np.array([
        gamma_interval_probability(kappa, lo / theta, hi / theta)
        for lo, hi in zip(lows, highs)
    ])


def _mpl_ratios(xT: np.ndarray, params: BlueprintParameters) -> np.ndarray:
    """MPL_h / MPL_1, from indifference at each threshold."""
    log_ratios = np.concatenate(([0.0], np.cumsum(np.diff(params.alpha) * xT)))
    return np.exp(log_ratios)


def marg_prod_labor(labor_input, params: BlueprintParameters, xT=None, q: Optional[float] = None,
                    settings: Optional[SolverSettings] = None,
                    skip_param_checks: bool = False) -> np.ndarray:
    """
    Marginal product of labor of each worker type.

    At threshold x_h the assignment is indifferent between types h and h+1,
    so MPL_{h+1} / MPL_h = exp((alpha_{h+1} - alpha_h) x_h). Constant returns
    to scale fix the level through sum_h MPL_h L_h = q.

    If xT or q is missing both are obtained by solving for the equilibrium
    with prod_fun.

    Args:
        labor_input: Observed labor of each type (length H)
        params: Closed-form blueprint parameters
        xT: Solved thresholds (optional)
        q: Solved output level (optional)
        settings: Solver settings used when xT/q must be solved for
        skip_param_checks: Bypass validation

    Returns:
        Array of length H with the marginal product of each type
    """
    if not skip_param_checks:
        params.validate()
        labor_input = _coerce_vector(labor_input, "labor_input", length=params.n_types, nonnegative=True)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)

    if xT is None or q is None:
        from .threshold_solver import prod_fun
        solution = prod_fun(labor_input, params, settings=settings, skip_param_checks=skip_param_checks)
        xT, q = solution.xT, solution.q
    xT = _check_thresholds(xT, params.n_types, skip_param_checks)

    ratios = _mpl_ratios(xT, params)
    weighted_labor = float(np.dot(labor_input, ratios))
    if weighted_labor <= 0:
        raise ParameterValidationError("labor_input must have at least one positive entry")
    return float(q) / weighted_labor * ratios
