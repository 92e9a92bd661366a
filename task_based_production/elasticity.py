#!/usr/bin/env python3
"""
Elasticity Engine

Allen partial elasticities of substitution and Hicks partial elasticities of
complementarity between worker types, from the Hessian of the production
function F(L) = q.

The gradient of F is the MPL vector. Its Jacobian F_ij = dMPL_i/dL_j is taken
by central differences in L_j, re-solving the equilibrium at each perturbed
point. Re-solves are warm-started from the implicit-function prediction

    d[q, xT]/dL = J^{-1},   J = [u(xT), q * du/dxT],

which follows from differentiating q * u(xT) = L. The demand Jacobian
du/dxT is itself a central difference whose steps shrink with the gap
between neighbouring thresholds, so nearly degenerate partitions are not
stepped across.

    Hicks:  c_ij     = q F_ij / (MPL_i MPL_j)
    Allen:  sigma_ij = (sum_k L_k MPL_k) / (L_i L_j) * (B^{-1})_{ij}

where B is the Hessian bordered by the MPL vector. Diagonal entries are NaN.
"""

import math
import numpy as np
from typing import Callable, NamedTuple, Optional, Union
import logging

from .errors import NumericalInstability, ParameterValidationError
from .general_model import _demand_general, _mpl_ratios_general
from .initial_guess import _check_labor_input
from .parameters import BlueprintParameters, GeneralModel, SolverSettings, _resolve_settings
from .task_distribution import SUPPORT, _demand, _mpl_ratios
from .threshold_solver import _fit_quality, _solve, prod_fun, prod_fun_general
from .utils import _central_difference_jacobian, _check_thresholds, _coerce_vector, _threshold_steps

logger = logging.getLogger(__name__)


class ElasticityMatrices(NamedTuple):
    """H x H elasticity matrices with NaN diagonals."""
    allen: np.ndarray
    hicks: np.ndarray


class _ModelFunctions(NamedTuple):
    demand: Callable[[np.ndarray], np.ndarray]
    mpl_ratios: Callable[[np.ndarray], np.ndarray]
    lower: float
    upper: float


def _model_functions(params: Union[BlueprintParameters, GeneralModel], settings: SolverSettings) -> _ModelFunctions:
    if isinstance(params, BlueprintParameters):
        return _ModelFunctions(
            demand=lambda xT: _demand(xT, params),
            mpl_ratios=lambda xT: _mpl_ratios(xT, params),
            lower=SUPPORT[0],
            upper=SUPPORT[1],
        )
    if isinstance(params, GeneralModel):
        return _ModelFunctions(
            demand=lambda xT: _demand_general(xT, params, settings),
            mpl_ratios=lambda xT: _mpl_ratios_general(xT, params),
            lower=params.support[0],
            upper=params.support[1],
        )
    raise ParameterValidationError(
        f"params must be BlueprintParameters or GeneralModel, got {type(params).__name__}"
    )


def _mpl(labor_input: np.ndarray, xT: np.ndarray, q: float, fns: _ModelFunctions) -> np.ndarray:
    ratios = fns.mpl_ratios(xT)
    return q / float(np.dot(labor_input, ratios)) * ratios


def _demand_jacobian(xT: np.ndarray, fns: _ModelFunctions, settings: SolverSettings) -> np.ndarray:
    steps = _threshold_steps(xT, fns.lower, fns.upper, settings.fd_threshold_step)
    return _central_difference_jacobian(fns.demand, xT, steps)


def _state_jacobian(q: float, xT: np.ndarray, fns: _ModelFunctions, settings: SolverSettings) -> np.ndarray:
    """d[q, xT]/dL by implicit differentiation of q * u(xT) = L."""
    u = fns.demand(xT)
    J = np.column_stack([u, q * _demand_jacobian(xT, fns, settings)])
    try:
        return np.linalg.solve(J, np.eye(u.size))
    except np.linalg.LinAlgError as exc:
        raise NumericalInstability(
            f"Equilibrium Jacobian is singular at xT={xT}; thresholds may be degenerate"
        ) from exc


def demand_threshold_jacobian(xT, params: Union[BlueprintParameters, GeneralModel],
                              settings: Optional[SolverSettings] = None,
                              skip_param_checks: bool = False) -> np.ndarray:
    """
    Jacobian of unit labor demand with respect to the thresholds.

    Returns:
        Array of shape (H, H-1); entry [h, k] is du_h / dxT_k
    """
    settings = settings if settings is not None else SolverSettings()
    if not skip_param_checks:
        params.validate()
    xT = _check_thresholds(xT, params.n_types, skip_param_checks)
    return _demand_jacobian(xT, _model_functions(params, settings), settings)


def threshold_labor_jacobian(xT, q: float, params: Union[BlueprintParameters, GeneralModel],
                             settings: Optional[SolverSettings] = None,
                             skip_param_checks: bool = False) -> np.ndarray:
    """
    Response of the equilibrium (q, xT) to the labor inputs.

    Returns:
        Array of shape (H, H): row 0 is dq/dL (equal to the MPL vector),
        rows 1..H-1 are dxT/dL
    """
    settings = settings if settings is not None else SolverSettings()
    if not skip_param_checks:
        params.validate()
    xT = _check_thresholds(xT, params.n_types, skip_param_checks)
    return _state_jacobian(float(q), xT, _model_functions(params, settings), settings)


def _perturbed_state(labor_input: np.ndarray, q_pred: float, xT_pred: np.ndarray,
                     fns: _ModelFunctions, settings: SolverSettings):
    """
    Re-solve the equilibrium at a perturbed labor vector, warm-started from
    the linear prediction. The prediction is kept if it fits better.
    """
    xT_pred = np.maximum.accumulate(xT_pred)
    guess = np.concatenate(([math.log(q_pred)], xT_pred))
    solution = _solve(labor_input, fns.demand, fns.lower, guess, settings)
    predicted_fval = _fit_quality(q_pred, xT_pred, labor_input, fns.demand)
    if predicted_fval < solution.fval:
        logger.debug(
            f"Keeping linear prediction at L={labor_input}: fval {predicted_fval:.3e} "
            f"< re-solve fval {solution.fval:.3e}"
        )
        return q_pred, xT_pred
    return solution.q, solution.xT


def _mpl_hessian(labor_input: np.ndarray, xT: np.ndarray, q: float,
                 fns: _ModelFunctions, settings: SolverSettings) -> np.ndarray:
    """Central-difference dMPL_i/dL_j, as computed (not symmetrised)."""
    n_types = labor_input.size
    state_jacobian = _state_jacobian(q, xT, fns, settings)
    steps = settings.fd_rel_step * labor_input

    hessian = np.empty((n_types, n_types))
    for j in range(n_types):
        mpl_at = []
        for sign in (1.0, -1.0):
            delta = sign * steps[j]
            perturbed = labor_input.copy()
            perturbed[j] += delta
            q_pred = q + delta * state_jacobian[0, j]
            xT_pred = xT + delta * state_jacobian[1:, j]
            q_j, xT_j = _perturbed_state(perturbed, q_pred, xT_pred, fns, settings)
            mpl_at.append(_mpl(perturbed, xT_j, q_j, fns))
        hessian[:, j] = (mpl_at[0] - mpl_at[1]) / (2.0 * steps[j])
    return hessian


def production_hessian(labor_input, params: Union[BlueprintParameters, GeneralModel], xT, q: float,
                       settings: Optional[SolverSettings] = None,
                       skip_param_checks: bool = False) -> np.ndarray:
    """
    Numerical Hessian of F(L) = q at a solved equilibrium.

    Entry [i, j] is dMPL_i/dL_j from central differences in L_j. The matrix
    is returned as computed, without symmetrisation, so its symmetry and
    F @ L = 0 (MPL is homogeneous of degree zero) measure its accuracy.
    """
    settings = settings if settings is not None else SolverSettings()
    if not skip_param_checks:
        params.validate()
        labor_input = _check_labor_input(labor_input, params.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)
    if np.any(labor_input <= 0):
        raise ParameterValidationError(f"The Hessian needs strictly positive labor inputs, got {labor_input}")
    xT = _check_thresholds(xT, params.n_types, skip_param_checks)
    return _mpl_hessian(labor_input, xT, float(q), _model_functions(params, settings), settings)


def _elasticities(labor_input: np.ndarray, xT: np.ndarray, q: float, mpl: np.ndarray,
                  fns: _ModelFunctions, settings: SolverSettings) -> ElasticityMatrices:
    n_types = labor_input.size
    if n_types < 2:
        raise ParameterValidationError("Elasticities need at least two worker types")
    if np.any(labor_input <= 0):
        raise ParameterValidationError(f"Elasticities need strictly positive labor inputs, got {labor_input}")

    hessian = _mpl_hessian(labor_input, xT, q, fns, settings)
    hessian = 0.5 * (hessian + hessian.T)

    hicks = q * hessian / np.outer(mpl, mpl)

    bordered = np.zeros((n_types + 1, n_types + 1))
    bordered[0, 1:] = mpl
    bordered[1:, 0] = mpl
    bordered[1:, 1:] = hessian
    try:
        bordered_inv = np.linalg.inv(bordered)
    except np.linalg.LinAlgError as exc:
        raise NumericalInstability("Bordered Hessian is singular; elasticities are undefined") from exc
    allen = float(np.dot(labor_input, mpl)) / np.outer(labor_input, labor_input) * bordered_inv[1:, 1:]
    allen = 0.5 * (allen + allen.T)

    np.fill_diagonal(allen, np.nan)
    np.fill_diagonal(hicks, np.nan)
    return ElasticityMatrices(allen=allen, hicks=hicks)


def elasticity_sub_comp(labor_input, params: BlueprintParameters, MPL=None, xT=None, q: Optional[float] = None,
                        settings: Optional[SolverSettings] = None, skip_param_checks: bool = False,
                        **overrides) -> ElasticityMatrices:
    """
    Allen (substitution) and Hicks (complementarity) elasticity matrices
    under the closed-form model.

    Args:
        labor_input: Observed labor of each type (length H >= 2, strictly positive)
        params: Closed-form blueprint parameters
        MPL: Marginal products (solved for if missing)
        xT: Equilibrium thresholds (solved for if missing)
        q: Output level; defaults to sum_h L_h MPL_h when MPL is given
        settings: Solver and finite-difference settings
        skip_param_checks: Bypass validation
        **overrides: SolverSettings fields to override

    Returns:
        ElasticityMatrices(allen, hicks), each H x H with NaN diagonal
    """
    settings = _resolve_settings(settings, overrides)
    if not skip_param_checks:
        params.validate()
        labor_input = _check_labor_input(labor_input, params.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)

    def solve():
        return prod_fun(labor_input, params, settings=settings, skip_param_checks=True)

    return _prepare_and_compute(labor_input, MPL, xT, q, solve, _model_functions(params, settings),
                                settings, skip_param_checks)


def elasticity_sub_comp_general(labor_input, model: GeneralModel, MPL=None, xT=None, q: Optional[float] = None,
                                settings: Optional[SolverSettings] = None, skip_param_checks: bool = False,
                                **overrides) -> ElasticityMatrices:
    """Same as elasticity_sub_comp for a general task density and efficiency functions."""
    settings = _resolve_settings(settings, overrides)
    if not skip_param_checks:
        model.validate(np.size(labor_input))
        labor_input = _check_labor_input(labor_input, model.n_types)
    else:
        labor_input = np.asarray(labor_input, dtype=np.float64)

    def solve():
        return prod_fun_general(labor_input, model, settings=settings, skip_param_checks=True)

    return _prepare_and_compute(labor_input, MPL, xT, q, solve, _model_functions(model, settings),
                                settings, skip_param_checks)


def _prepare_and_compute(labor_input: np.ndarray, MPL, xT, q, solve, fns: _ModelFunctions,
                         settings: SolverSettings, skip_param_checks: bool) -> ElasticityMatrices:
    """Fill in whichever of xT, q and MPL the caller did not supply, then compute."""
    n_types = labor_input.size
    if xT is None or (MPL is None and q is None):
        solution = solve()
        if solution.fval > settings.fval_tol:
            logger.warning(f"Elasticities computed at an inexact equilibrium (fval={solution.fval:.3e})")
        xT, q = solution.xT, solution.q
        MPL = _mpl(labor_input, solution.xT, solution.q, fns) if MPL is None else MPL

    xT = _check_thresholds(xT, n_types, skip_param_checks)
    if MPL is None:
        MPL = _mpl(labor_input, xT, float(q), fns)
    MPL = _coerce_vector(MPL, "MPL", length=n_types)
    if q is None:
        # Euler's theorem under constant returns to scale
        q = float(np.dot(labor_input, MPL))

    return _elasticities(labor_input, xT, float(q), MPL, fns, settings)
