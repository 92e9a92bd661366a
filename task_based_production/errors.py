"""
Exception and warning types raised by the task-based production engine.
"""


class TaskProductionError(Exception):
    """Base class for errors raised by this package."""


class ParameterValidationError(TaskProductionError, ValueError):
    """Structurally invalid input: malformed alpha_vec or xT, bad density, mismatched e_h."""


class NumericalInstability(TaskProductionError, ArithmeticError):
    """A numerical evaluation (e.g. the incomplete gamma function) failed to converge."""


class SolverNonconvergence(TaskProductionError):
    """
    Raised only on request, via SolutionState.require_converged().

    The solver itself never raises this; it returns its best attempt and the
    caller decides whether the fit is good enough.
    """

    def __init__(self, message: str, fval: float, attempts: int):
        super().__init__(message)
        self.fval = fval
        self.attempts = attempts


class DegenerateIntervalWarning(UserWarning):
    """A worker type was assigned a zero-width task interval; its demand is zero."""
