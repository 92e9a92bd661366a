#!/usr/bin/env python3
"""
Parameters Module

Contains the model parameter containers and the solver configuration:

- BlueprintParameters: closed-form gamma blueprint (theta, kappa, z, alpha_vec)
- GeneralModel: arbitrary task density b_g and efficiency functions e_h
- SolverSettings: tolerances, iteration/retry caps and finite-difference steps

Settings can be loaded from YAML; all containers are immutable per call.
"""

import math
import numpy as np
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, Optional, Tuple, Union
from pathlib import Path
from scipy import integrate
import yaml
import logging

from . import model_config as cfg
from .errors import ParameterValidationError
from .utils import _coerce_real, _coerce_vector

logger = logging.getLogger(__name__)


def _load_yaml_section(path: Union[str, Path], section: str) -> Dict[str, Any]:
    """Load a YAML file, returning the named top-level section if present."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ParameterValidationError(f"{path} must contain a mapping, got {type(data).__name__}")
    section_data = data.get(section, data)
    if not isinstance(section_data, dict):
        raise ParameterValidationError(f"Section '{section}' in {path} must be a mapping")
    return section_data


@dataclass(frozen=True)
class BlueprintParameters:
    """
    Closed-form task distribution.

    Tasks are gamma distributed with scale theta and shape kappa; worker type h
    has efficiency z * exp(alpha_vec[h] * x) at task x. alpha_vec is strictly
    increasing, so type h is favoured at lower task complexity than type h+1.
    """
    theta: float
    kappa: float
    z: float
    alpha_vec: Tuple[float, ...]

    def __post_init__(self):
        object.__setattr__(self, 'alpha_vec', tuple(float(a) for a in np.atleast_1d(self.alpha_vec)))

    @property
    def n_types(self) -> int:
        return len(self.alpha_vec)

    @property
    def alpha(self) -> np.ndarray:
        return np.asarray(self.alpha_vec, dtype=np.float64)

    def validate(self) -> "BlueprintParameters":
        """Check structural invariants, raising ParameterValidationError on failure."""
        theta = _coerce_real(self.theta, "theta")
        kappa = _coerce_real(self.kappa, "kappa")
        z = _coerce_real(self.z, "z")
        if theta <= 0:
            raise ParameterValidationError(f"theta must be > 0, got {theta}")
        if kappa <= 0:
            raise ParameterValidationError(f"kappa must be > 0, got {kappa}")
        if z <= 0:
            raise ParameterValidationError(f"z must be > 0, got {z}")

        alpha = _coerce_vector(self.alpha_vec, "alpha_vec")
        if alpha.size == 0:
            raise ParameterValidationError("alpha_vec must contain at least one worker type")
        if np.any(np.diff(alpha) <= 0):
            raise ParameterValidationError(f"alpha_vec must be strictly increasing, got {alpha}")
        # The demand integral of exp(-(1/theta + alpha) x) diverges otherwise
        if np.any(1.0 / theta + alpha <= 0):
            raise ParameterValidationError(
                f"alpha_vec entries must exceed -1/theta={-1.0 / theta}, got {alpha}"
            )
        return self

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BlueprintParameters":
        """Create instance from dictionary (keys theta, kappa, z, alpha_vec)."""
        missing = [k for k in ("theta", "kappa", "z", "alpha_vec") if k not in d]
        if missing:
            raise ParameterValidationError(f"Missing blueprint parameters: {missing}")
        return cls(theta=d["theta"], kappa=d["kappa"], z=d["z"], alpha_vec=d["alpha_vec"])

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "BlueprintParameters":
        """Load from a YAML file, optionally nested under a 'blueprint' key."""
        return cls.from_dict(_load_yaml_section(path, "blueprint"))


@dataclass(frozen=True)
class GeneralModel:
    """
    Fully general task distribution.

    b_g is the task density on `support` (must integrate to one) and e_h holds
    one positive efficiency function per worker type, ordered by comparative
    advantage. Any callable float -> float is accepted.
    """
    z: float
    b_g: Callable[[float], float]
    e_h: Tuple[Callable[[float], float], ...]
    support: Tuple[float, float] = (0.0, math.inf)

    def __post_init__(self):
        object.__setattr__(self, 'e_h', tuple(self.e_h))
        object.__setattr__(self, 'support', (float(self.support[0]), float(self.support[1])))

    @property
    def n_types(self) -> int:
        return len(self.e_h)

    def validate(self, n_types: Optional[int] = None) -> "GeneralModel":
        """
        Check structural invariants, raising ParameterValidationError on failure.

        Args:
            n_types: Expected number of worker types (e.g. len(labor_input))
        """
        z = _coerce_real(self.z, "z")
        if z <= 0:
            raise ParameterValidationError(f"z must be > 0, got {z}")
        lower, upper = self.support
        if math.isnan(lower) or math.isnan(upper) or not lower < upper:
            raise ParameterValidationError(f"support must satisfy lower < upper, got {self.support}")
        if not callable(self.b_g):
            raise ParameterValidationError("b_g must be callable")
        if len(self.e_h) == 0:
            raise ParameterValidationError("e_h must contain at least one efficiency function")
        if not all(callable(e) for e in self.e_h):
            raise ParameterValidationError("every entry of e_h must be callable")
        if n_types is not None and n_types != len(self.e_h):
            raise ParameterValidationError(
                f"e_h has {len(self.e_h)} efficiency functions but there are {n_types} worker types"
            )

        mass, _ = integrate.quad(self.b_g, lower, upper, limit=cfg.DEFAULT_QUAD_LIMIT)
        if not abs(mass - 1.0) <= cfg.DENSITY_MASS_TOLERANCE:
            raise ParameterValidationError(f"b_g must integrate to 1 over {self.support}, got {mass}")
        return self

    @classmethod
    def from_blueprint(cls, params: BlueprintParameters) -> "GeneralModel":
        """General-model counterpart of a closed-form parameterisation."""
        from .task_distribution import blueprint_density

        def make_efficiency(alpha):
            # Saturates instead of overflowing far out in the tail, where b_g is zero anyway
            return lambda x: math.exp(min(alpha * x, cfg.LOG_OVERFLOW))

        return cls(
            z=params.z,
            b_g=lambda x: blueprint_density(x, params.theta, params.kappa),
            e_h=tuple(make_efficiency(a) for a in params.alpha_vec),
            support=(0.0, math.inf),
        )


@dataclass(frozen=True)
class SolverSettings:
    """
    Tolerances and caps for the threshold solver and the elasticity engine.

    x_tol, f_tol and g_tol are passed to the optimizer. An attempt counts as
    converged when its sum of squared relative residuals is at most fval_tol;
    otherwise the initial point is jittered and the solve retried, up to
    max_retries times.
    """
    x_tol: float = cfg.DEFAULT_X_TOL
    f_tol: float = cfg.DEFAULT_F_TOL
    g_tol: float = cfg.DEFAULT_G_TOL
    max_iterations: int = cfg.DEFAULT_MAX_ITERATIONS
    max_retries: int = cfg.DEFAULT_MAX_RETRIES
    fval_tol: float = cfg.DEFAULT_FVAL_TOL
    retry_jitter: float = cfg.DEFAULT_RETRY_JITTER
    seed: Optional[int] = cfg.DEFAULT_SEED

    # Initial guess heuristic
    initial_guess_threshold: float = cfg.DEFAULT_INITIAL_GUESS_THRESHOLD
    initial_guess_max_iter: int = cfg.DEFAULT_INITIAL_GUESS_MAX_ITER
    verbose: bool = False

    # Quadrature (general model)
    quad_epsabs: float = cfg.DEFAULT_QUAD_EPSABS
    quad_epsrel: float = cfg.DEFAULT_QUAD_EPSREL
    quad_limit: int = cfg.DEFAULT_QUAD_LIMIT

    # Finite differences
    fd_rel_step: float = cfg.DEFAULT_FD_REL_STEP
    fd_threshold_step: float = cfg.DEFAULT_FD_THRESHOLD_STEP

    def __post_init__(self):
        # YAML 1.1 reads "1e-12" as a string, so numeric fields are coerced here
        for name in ("x_tol", "f_tol", "g_tol", "fval_tol", "quad_epsabs", "quad_epsrel",
                     "fd_rel_step", "fd_threshold_step", "initial_guess_threshold", "retry_jitter"):
            value = _coerce_real(getattr(self, name), name)
            if value < 0 or (value == 0 and name != "retry_jitter"):
                raise ParameterValidationError(f"{name} must be positive, got {value!r}")
            object.__setattr__(self, name, value)
        for name, minimum in (("max_iterations", 1), ("quad_limit", 1),
                              ("initial_guess_max_iter", 1), ("max_retries", 0)):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < minimum:
                raise ParameterValidationError(f"{name} must be an integer >= {minimum}, got {value!r}")
        if self.fd_rel_step >= 1:
            raise ParameterValidationError(f"fd_rel_step must be < 1, got {self.fd_rel_step}")

    def replace(self, **overrides) -> "SolverSettings":
        """Return a copy with the given fields replaced."""
        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise ParameterValidationError(f"Unknown solver settings: {sorted(unknown)}")
        return replace(self, **overrides)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SolverSettings":
        """Create instance from dictionary, rejecting unknown keys."""
        return cls().replace(**d)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SolverSettings":
        """Load from a YAML file, optionally nested under a 'solver' key."""
        return cls.from_dict(_load_yaml_section(path, "solver"))


def _resolve_settings(settings: Optional[SolverSettings], overrides: Dict[str, Any]) -> SolverSettings:
    """Default settings, with keyword overrides applied."""
    settings = settings if settings is not None else SolverSettings()
    return settings.replace(**overrides) if overrides else settings
