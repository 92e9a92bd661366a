#!/usr/bin/env python3
"""
Utility functions for the task-based production engine.

Contains scalar and vector coercion, threshold-vector checks and a
central-difference Jacobian shared by the solver and the elasticity engine.
"""

import warnings
import numpy as np
from typing import Any, Callable, Optional

from . import model_config as cfg
from .errors import ParameterValidationError, DegenerateIntervalWarning


def _coerce_real(value: Any, name: str) -> float:
    """Finite float from a number, a numeric string (YAML) or a one-element sequence."""
    try:
        result = float(np.asarray(value, dtype=np.float64).reshape(()))
    except (TypeError, ValueError) as exc:
        raise ParameterValidationError(f"{name} must be a single real number, got {value!r}") from exc
    if not np.isfinite(result):
        raise ParameterValidationError(f"{name} must be finite, got {value!r}")
    return result


def _coerce_vector(value: Any, name: str, length: Optional[int] = None,
                   nonnegative: bool = False, allow_inf: bool = False) -> np.ndarray:
    """
    Convert a value to a 1-D float64 array, checking length and sign.

    Args:
        value: Sequence or array of reals (a scalar is treated as length 1)
        name: Name used in error messages
        length: Required length, if any
        nonnegative: Reject negative entries
        allow_inf: Accept +/-inf entries (NaN is always rejected)
    """
    try:
        arr = np.atleast_1d(np.asarray(value, dtype=np.float64))
    except (TypeError, ValueError) as exc:
        raise ParameterValidationError(f"{name} must be a sequence of reals, got {value!r}") from exc

    if arr.ndim != 1:
        raise ParameterValidationError(f"{name} must be one-dimensional, got shape {arr.shape}")
    if length is not None and arr.size != length:
        raise ParameterValidationError(f"{name} must have length {length}, got {arr.size}")
    if np.any(np.isnan(arr)) or (not allow_inf and not np.all(np.isfinite(arr))):
        raise ParameterValidationError(f"{name} must be finite, got {arr}")
    if nonnegative and np.any(arr < 0):
        raise ParameterValidationError(f"{name} must be non-negative, got {arr}")
    return arr


def _check_thresholds(xT: Any, n_types: int, skip_param_checks: bool = False) -> np.ndarray:
    """
    Coerce a threshold vector of length n_types - 1 and check its ordering.

    Decreasing pairs are an input error. Equal neighbours are allowed and
    reported with a DegenerateIntervalWarning, since the type between them
    gets a zero-width interval.
    """
    if xT is None:
        xT = []
    if skip_param_checks:
        return np.atleast_1d(np.asarray(xT, dtype=np.float64)).reshape(-1)

    arr = _coerce_vector(xT, "xT", length=n_types - 1)
    gaps = np.diff(arr)
    if np.any(gaps < 0):
        raise ParameterValidationError(f"xT must be non-decreasing, got {arr}")
    if np.any(gaps == 0):
        degenerate = [int(i) + 2 for i in np.flatnonzero(gaps == 0)]
        warnings.warn(
            f"Worker type(s) {degenerate} have zero-width task intervals; their demand is zero",
            DegenerateIntervalWarning,
            stacklevel=3,
        )
    return arr


def _interval_bounds(xT: np.ndarray, lower: float, upper: float):
    """
    Lower and upper task bounds of every worker type's interval.

    Thresholds outside [lower, upper] are clamped to the support, which
    empties the affected intervals.
    """
    inner = np.clip(xT, lower, upper)
    edges = np.concatenate(([lower], inner, [upper]))
    return edges[:-1], edges[1:]


def _threshold_steps(xT: np.ndarray, lower: float, upper: float, rel_step: float) -> np.ndarray:
    """
    Finite-difference steps for each threshold.

    Steps scale with max(1, |x|) but never exceed FD_GAP_FRACTION of the gap
    to either neighbouring boundary, so a perturbation cannot reorder thresholds.
    """
    steps = rel_step * np.maximum(1.0, np.abs(xT))
    edges = np.concatenate(([lower], xT, [upper]))
    gap_below = xT - edges[:-2]
    gap_above = edges[2:] - xT
    room = cfg.FD_GAP_FRACTION * np.minimum(gap_below, gap_above)
    room = np.where(np.isfinite(room), room, steps)
    return np.where(room > 0, np.minimum(steps, room), steps)


def _central_difference_jacobian(func: Callable[[np.ndarray], np.ndarray],
                                 x: np.ndarray, steps: np.ndarray) -> np.ndarray:
    """
    Central-difference Jacobian D[i, k] = d func_i / d x_k.

    Args:
        func: Vector-valued function of a 1-D array
        x: Point of evaluation
        steps: Per-coordinate step sizes (same shape as x)
    """
    x = np.asarray(x, dtype=np.float64)
    f0 = np.atleast_1d(np.asarray(func(x), dtype=np.float64))
    D = np.empty((f0.size, x.size), dtype=np.float64)
    for k in range(x.size):
        x_up = x.copy()
        x_dn = x.copy()
        x_up[k] += steps[k]
        x_dn[k] -= steps[k]
        f_up = np.asarray(func(x_up), dtype=np.float64)
        f_dn = np.asarray(func(x_dn), dtype=np.float64)
        D[:, k] = (f_up - f_dn) / (2.0 * steps[k])
    return D
