#!/usr/bin/env python3
"""
Batch solving across observations.

Every observation (one row of labor inputs) is an independent unit of work,
so rows can be solved sequentially or spread over worker processes with
joblib.
"""

import time
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from typing import Any, Dict, Optional, Sequence, Union
import logging

from .elasticity import elasticity_sub_comp, elasticity_sub_comp_general
from .errors import ParameterValidationError
from .general_model import marg_prod_labor_general
from .parameters import BlueprintParameters, GeneralModel, SolverSettings
from .task_distribution import marg_prod_labor
from .threshold_solver import prod_fun, prod_fun_general

logger = logging.getLogger(__name__)


def _solve_observation(labor_input: np.ndarray, params: Union[BlueprintParameters, GeneralModel],
                       settings: SolverSettings, type_names: Sequence[str],
                       with_elasticities: bool) -> Dict[str, Any]:
    """Solve one observation and flatten the result into a row dict."""
    if isinstance(params, GeneralModel):
        solution = prod_fun_general(labor_input, params, settings=settings, skip_param_checks=True)
        mpl = marg_prod_labor_general(labor_input, params, solution.xT, solution.q, skip_param_checks=True)
    else:
        solution = prod_fun(labor_input, params, settings=settings, skip_param_checks=True)
        mpl = marg_prod_labor(labor_input, params, xT=solution.xT, q=solution.q, skip_param_checks=True)

    row: Dict[str, Any] = {
        'q': solution.q,
        'fval': solution.fval,
        'converged': solution.converged,
        'attempts': solution.attempts,
    }
    for k, x in enumerate(solution.xT, start=1):
        row[f'xT_{k}'] = float(x)
    for name, value in zip(type_names, mpl):
        row[f'mpl_{name}'] = float(value)

    if with_elasticities:
        compute = elasticity_sub_comp_general if isinstance(params, GeneralModel) else elasticity_sub_comp
        allen, hicks = compute(labor_input, params, MPL=mpl, xT=solution.xT, q=solution.q,
                               settings=settings, skip_param_checks=True)
        for i, name_i in enumerate(type_names):
            for j in range(i + 1, len(type_names)):
                name_j = type_names[j]
                row[f'allen_{name_i}_{name_j}'] = float(allen[i, j])
                row[f'hicks_{name_i}_{name_j}'] = float(hicks[i, j])
    return row


def solve_observations(labor_inputs: pd.DataFrame, params: Union[BlueprintParameters, GeneralModel],
                       settings: Optional[SolverSettings] = None, elasticities: bool = False,
                       n_jobs: Optional[int] = None) -> pd.DataFrame:
    """
    Solve the equilibrium for every row of a labor-input table.

    Args:
        labor_inputs: One row per observation, one column per worker type
            (columns in comparative-advantage order)
        params: Closed-form or general model shared by all observations
        settings: Solver settings
        elasticities: Also compute Allen/Hicks elasticities for every pair of types
        n_jobs: joblib worker count (-1 for all cores); None or 1 solves in-process

    Returns:
        DataFrame with the input's index and columns q, fval, converged,
        attempts, xT_k, mpl_<type> and, optionally, allen_<a>_<b> / hicks_<a>_<b>
    """
    settings = settings if settings is not None else SolverSettings()
    if isinstance(params, GeneralModel):
        params.validate(labor_inputs.shape[1])
    else:
        params.validate()
        if labor_inputs.shape[1] != params.n_types:
            raise ParameterValidationError(
                f"labor_inputs has {labor_inputs.shape[1]} columns but alpha_vec has {params.n_types} types"
            )

    values = labor_inputs.to_numpy(dtype=np.float64)
    if np.any(~np.isfinite(values)) or np.any(values < 0):
        raise ParameterValidationError("labor_inputs must be finite and non-negative")
    if np.any(values.sum(axis=1) <= 0):
        raise ParameterValidationError("every observation needs at least one positive labor input")

    type_names = [str(c) for c in labor_inputs.columns]
    start_time = time.perf_counter()

    if n_jobs is None or n_jobs == 1:
        rows = [_solve_observation(row, params, settings, type_names, elasticities) for row in values]
    else:
        rows = Parallel(n_jobs=n_jobs, prefer="processes")(
            delayed(_solve_observation)(row, params, settings, type_names, elasticities)
            for row in values
        )

    elapsed = time.perf_counter() - start_time
    result = pd.DataFrame(rows, index=labor_inputs.index)
    n_failed = int((~result['converged']).sum()) if len(result) else 0
    logger.info(f"Solved {len(result)} observations in {elapsed:.3f}s ({n_failed} did not converge)")
    return result
