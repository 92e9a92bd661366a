"""
Configuration file for the task-based production engine.
Contains hardcoded values for numerical stability and internal implementation constants.

NOTE: Caller-facing tolerances live on SolverSettings (parameters.py), not here.
This file should only contain implementation details that users shouldn't need to change.
"""

# =============================================================================
# INCOMPLETE GAMMA FUNCTION
# =============================================================================
GAMMA_INC_MAX_ITER = 2000
GAMMA_INC_EPS = 1e-15
GAMMA_INC_FPMIN = 1e-300
# Below this x (and for shape < 1) the upper function is computed by the
# small-x power-series continuation instead of 1 - P
GAMMA_INC_SMALL_X = 1.5
GAMMA_INC_SMALL_SHAPE = 1.0
LOG_UNDERFLOW = -745.0
# Largest exponent math.exp accepts without OverflowError
LOG_OVERFLOW = 709.0

# =============================================================================
# PARAMETER VALIDATION
# =============================================================================
DENSITY_MASS_TOLERANCE = 1e-5

# =============================================================================
# SOLVER DEFAULTS (copied onto SolverSettings)
# =============================================================================
DEFAULT_X_TOL = 1e-12
DEFAULT_F_TOL = 1e-12
DEFAULT_G_TOL = 1e-12
DEFAULT_MAX_ITERATIONS = 1000
DEFAULT_MAX_RETRIES = 5
DEFAULT_FVAL_TOL = 1e-12
DEFAULT_RETRY_JITTER = 0.25
DEFAULT_SEED = 0

# Internal parameterisation: thresholds are lower + cumsum(exp(y))
LOG_INCREMENT_CLAMP = 50.0
# The first threshold may sit arbitrarily close to a finite lower support end
# (zero labor for the first type when kappa < 1)
LOG_FIRST_GAP_MIN = -700.0
MIN_THRESHOLD_GAP = 1e-10
LABOR_INPUT_FLOOR = 1e-12
# Optimizer weight on residuals of types with no labor; their gradient vanishes
# like the residual squared, so unweighted they stall above fval_tol
ZERO_LABOR_RESIDUAL_WEIGHT = 1e6

# =============================================================================
# INITIAL GUESS HEURISTIC
# =============================================================================
DEFAULT_INITIAL_GUESS_THRESHOLD = 1e-2
DEFAULT_INITIAL_GUESS_MAX_ITER = 200
INITIAL_GUESS_WINDOW_QUANTILES = (0.01, 0.99)
INITIAL_GUESS_STEP = 0.5
QUANTILE_BRACKET_EXPANSIONS = 60

# =============================================================================
# QUADRATURE (general model)
# =============================================================================
DEFAULT_QUAD_EPSABS = 1e-12
DEFAULT_QUAD_EPSREL = 1e-10
DEFAULT_QUAD_LIMIT = 200

# =============================================================================
# FINITE DIFFERENCES
# =============================================================================
# Relative step in labor input for the elasticity Hessian
DEFAULT_FD_REL_STEP = 1e-4
# Relative step for the demand Jacobian with respect to thresholds
DEFAULT_FD_THRESHOLD_STEP = 1e-6
# Threshold steps never exceed this fraction of the gap to a neighbour
FD_GAP_FRACTION = 0.25
