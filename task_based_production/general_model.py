#!/usr/bin/env python3
"""
General task distribution.

Same contract as task_distribution, for an arbitrary task density b_g and
efficiency functions e_h. Integrals are evaluated with scipy.integrate.quad.
Intervals reaching an infinite end of the support are integrated over the
infinite range directly (QUADPACK transforms the variable), so there is no
tail truncation.
"""

import math
import numpy as np
from scipy import integrate, optimize
from typing import Optional
import logging

from . import model_config as cfg
from .errors import NumericalInstability, ParameterValidationError
from .parameters import GeneralModel, SolverSettings
from .utils import _check_thresholds, _coerce_vector, _interval_bounds

logger = logging.getLogger(__name__)


def _quad(func, lo: float, hi: float, settings: SolverSettings) -> float:
    value, abserr = integrate.quad(
        func, lo, hi,
        epsabs=settings.quad_epsabs,
        epsrel=settings.quad_epsrel,
        limit=settings.quad_limit,
    )
    if not np.isfinite(value):
        raise NumericalInstability(f"Quadrature over [{lo}, {hi}] returned {value}")
    logger.debug(f"quad over [{lo:.4g}, {hi:.4g}]: {value:.6e} (abserr {abserr:.2e})")
    return value


def _labor_per_task(x: float, model: GeneralModel, efficiency) -> float:
    """
    b_g(x) / e_h(x), the labor density of one worker type at task x.

    QUADPACK's infinite-range transform samples x in the thousands, where an
    exponential efficiency overflows. Tasks with no density, or an efficiency
    too large to represent, need no labor.
    """
    density = model.b_g(x)
    if density == 0.0:
        return 0.0
    try:
        e = efficiency(x)
    except OverflowError:
        return 0.0
    if not e > 0:
        raise NumericalInstability(f"Efficiency must be positive where b_g > 0, got e({x})={e}")
    return density / e


def _demand_general(xT: np.ndarray, model: GeneralModel, settings: SolverSettings) -> np.ndarray:
    """Unit labor demand without validation (thresholds assumed coerced)."""
    z = float(model.z)
    lows, highs = _interval_bounds(xT, *model.support)
    demand = np.zeros(model.n_types)
    for h, efficiency in enumerate(model.e_h):
        # Zero-width interval: no integration
        if not highs[h] > lows[h]:
            continue
        demand[h] = _quad(lambda x, e=efficiency: _labor_per_task(x, model, e), lows[h], highs[h], settings) / z
    return demand


def _prepare(model: GeneralModel, n_types: Optional[int], settings: Optional[SolverSettings],
             skip_param_checks: bool) -> SolverSettings:
    if not skip_param_checks:
        model.validate(n_types)
    return settings if settings is not None else SolverSettings()


def unit_input_demand_general(xT, model: GeneralModel, settings: Optional[SolverSettings] = None,
                              skip_param_checks: bool = False) -> np.ndarray:
    """
    Labor required per unit of output from each worker type.

    u_h = (1/z) * integral over type h's interval of b_g(x) / e_h(x).

    Args:
        xT: H-1 non-decreasing task thresholds
        model: General model (density, efficiencies, support)
        settings: Quadrature tolerances
        skip_param_checks: Bypass validation of the model and xT

    Returns:
        Array of length H with the unit labor demand of each type
    """
    settings = _prepare(model, None, settings, skip_param_checks)
    xT = _check_thresholds(xT, model.n_types, skip_param_checks)
    return _demand_general(xT, model, settings)


def task_mass_by_type_general(xT, model: GeneralModel, settings: Optional[SolverSettings] = None,
                              skip_param_checks: bool = False) -> np.ndarray:
    """Share of task mass assigned to each worker type; sums to one."""
    settings = _prepare(model, None, settings, skip_param_checks)
    xT = _check_thresholds(xT, model.n_types, skip_param_checks)
    lows, highs = _interval_bounds(xT, *model.support)
    return np.array([
        _quad(model.b_g, lo, hi, settings) if hi > lo else 0.0
        for lo, hi in zip(lows, highs)
    ])


def _mpl_ratios_general(xT: np.ndarray, model: GeneralModel) -> np.ndarray:
    """MPL_h / MPL_1, from indifference at each threshold."""
    ratios = np.ones(model.n_types)
    for h, x in enumerate(xT):
        ratios[h + 1] = ratios[h] * model.e_h[h + 1](x) / model.e_h[h](x)
    return ratios


def marg_prod_labor_general(labor_input, model: GeneralModel, xT, q: float,
                            skip_param_checks: bool = False) -> np.ndarray:
    """
    Marginal product of labor of each worker type.

    MPL_{h+1} / MPL_h = e_{h+1}(x_h) / e_h(x_h) at every threshold, with the
    level fixed by sum_h MPL_h L_h = q. Unlike the closed-form entry point,
    xT and q must already be solved (see prod_fun_general).
    """
    if xT is None or q is None:
        raise ParameterValidationError("marg_prod_labor_general requires solved xT and q")
    if not skip_param_checks:
        model.validate()
        labor_input = _coerce_vector(labor_input, "labor_input", length=model.n_types, nonnegative=True)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)
    xT = _check_thresholds(xT, model.n_types, skip_param_checks)

    ratios = _mpl_ratios_general(xT, model)
    weighted_labor = float(np.dot(labor_input, ratios))
    if weighted_labor <= 0:
        raise ParameterValidationError("labor_input must have at least one positive entry")
    return float(q) / weighted_labor * ratios


def task_quantile_general(p: float, model: GeneralModel, settings: Optional[SolverSettings] = None) -> float:
    """
    Task x with CDF(x) = p under b_g, found with brentq on the integrated density.

    An infinite support end is replaced by a bracket that is expanded
    geometrically until it contains the quantile.
    """
    if not 0 < p < 1:
        raise ParameterValidationError(f"p must be in (0, 1), got {p}")
    settings = settings if settings is not None else SolverSettings()
    lower, upper = model.support

    if math.isfinite(lower):
        def cdf(x):
            return _quad(model.b_g, lower, x, settings) if x > lower else 0.0
    else:
        def cdf(x):
            return 1.0 - _quad(model.b_g, x, upper, settings) if x < upper else 1.0

    anchor = lower if math.isfinite(lower) else (upper - 1.0 if math.isfinite(upper) else 0.0)
    lo = lower if math.isfinite(lower) else anchor - 1.0
    hi = upper if math.isfinite(upper) else anchor + 1.0
    width = 1.0
    for _ in range(cfg.QUANTILE_BRACKET_EXPANSIONS):
        lo_ok = cdf(lo) <= p
        hi_ok = cdf(hi) >= p
        if lo_ok and hi_ok:
            break
        width *= 2.0
        if not lo_ok:
            lo = anchor - width
        if not hi_ok:
            hi = anchor + width
    else:
        raise NumericalInstability(f"Could not bracket the {p} task quantile of b_g")

    return float(optimize.brentq(lambda x: cdf(x) - p, lo, hi, xtol=1e-12, maxiter=200))
