"""
Task-based production engine.

Worker types are assigned contiguous intervals of a task-complexity continuum
by comparative advantage. This package contains:
- Unit labor demand and marginal products from task-assignment thresholds
- The inverse problem: thresholds and output from observed labor inputs
- Allen/Hicks elasticities between worker types
- A closed-form gamma blueprint model and a general model with arbitrary
  density and efficiency functions
"""

from .errors import (
    TaskProductionError,
    ParameterValidationError,
    NumericalInstability,
    SolverNonconvergence,
    DegenerateIntervalWarning,
)

from .parameters import BlueprintParameters, GeneralModel, SolverSettings

from .special_functions import (
    regularized_incomplete_gamma,
    gamma_inc,
    gamma_interval_probability,
)

from .task_distribution import (
    unit_input_demand,
    marg_prod_labor,
    task_mass_by_type,
    blueprint_density,
)

from .general_model import (
    unit_input_demand_general,
    marg_prod_labor_general,
    task_mass_by_type_general,
    task_quantile_general,
)

from .initial_guess import find_initial_guess, find_initial_guess_gen

from .threshold_solver import SolutionState, prod_fun, prod_fun_general

from .elasticity import (
    ElasticityMatrices,
    elasticity_sub_comp,
    elasticity_sub_comp_general,
    demand_threshold_jacobian,
    threshold_labor_jacobian,
    production_hessian,
)

from .batch import solve_observations

__all__ = [
    # Errors
    'TaskProductionError',
    'ParameterValidationError',
    'NumericalInstability',
    'SolverNonconvergence',
    'DegenerateIntervalWarning',

    # Parameters and settings
    'BlueprintParameters',
    'GeneralModel',
    'SolverSettings',

    # Special functions
    'regularized_incomplete_gamma',
    'gamma_inc',
    'gamma_interval_probability',

    # Closed-form model
    'unit_input_demand',
    'marg_prod_labor',
    'task_mass_by_type',
    'blueprint_density',

    # General model
    'unit_input_demand_general',
    'marg_prod_labor_general',
    'task_mass_by_type_general',
    'task_quantile_general',

    # Initial guess
    'find_initial_guess',
    'find_initial_guess_gen',

    # Solver
    'SolutionState',
    'prod_fun',
    'prod_fun_general',

    # Elasticities
    'ElasticityMatrices',
    'elasticity_sub_comp',
    'elasticity_sub_comp_general',
    'demand_threshold_jacobian',
    'threshold_labor_jacobian',
    'production_hessian',

    # Batch
    'solve_observations',
]
