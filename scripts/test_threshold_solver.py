"""
Tests for the initial-guess heuristic and the threshold solver.

Verifies that:
1. The reference scenario is solved to a tight fit that reproduces the labor inputs
2. Known equilibria are recovered from the labor they imply (closed-form and general)
3. The initial guess is ordered and gives every type a usable demand share
4. Non-convergence is reported, not raised, unless require_converged() is called
5. Settings validation, overrides and YAML loading
"""

import math
import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

from task_based_production import (
    BlueprintParameters,
    GeneralModel,
    ParameterValidationError,
    SolutionState,
    SolverNonconvergence,
    SolverSettings,
    find_initial_guess,
    find_initial_guess_gen,
    prod_fun,
    prod_fun_general,
    unit_input_demand,
    unit_input_demand_general,
)


SCENARIO = BlueprintParameters(theta=1.0, kappa=0.5, z=1.2, alpha_vec=(0.1, 0.2, 0.3))
SCENARIO_LABOR = np.array([0.5, 0.04, 0.19])


def test_reference_scenario():
    print("\n=== Test: reference scenario ===")
    guess = find_initial_guess(SCENARIO_LABOR, SCENARIO)
    solution = prod_fun(SCENARIO_LABOR, SCENARIO, initial_guess=guess)

    print(f"  q={solution.q:.8f}, xT={solution.xT}, fval={solution.fval:.3e}")
    assert solution.converged
    assert solution.fval < 1e-8
    assert solution.q > 0
    assert np.all(np.diff(solution.xT) > 0)
    implied = solution.q * unit_input_demand(solution.xT, SCENARIO)
    np.testing.assert_allclose(implied, SCENARIO_LABOR, atol=1e-6)
    print("PASSED: reference scenario")


def test_recovers_known_equilibrium():
    print("\n=== Test: recover known equilibrium ===")
    cases = [
        (SCENARIO, 2.5, [0.4, 1.3]),
        (BlueprintParameters(theta=2.0, kappa=1.5, z=0.7, alpha_vec=(-0.2, 0.1)), 0.9, [1.7]),
        (BlueprintParameters(theta=0.5, kappa=3.0, z=1.0, alpha_vec=(0.0, 0.5, 1.0, 2.0)), 4.0, [0.8, 1.2, 2.4]),
    ]
    for params, q_true, xT_true in cases:
        labor = q_true * unit_input_demand(xT_true, params)
        solution = prod_fun(labor, params).require_converged()
        assert abs(solution.q - q_true) < 1e-6 * q_true
        np.testing.assert_allclose(solution.xT, xT_true, atol=1e-6)
        print(f"  H={params.n_types}: q={solution.q:.6f}, xT={solution.xT}")
    print("PASSED: known equilibria recovered")


def test_single_type():
    params = BlueprintParameters(theta=1.0, kappa=2.0, z=1.5, alpha_vec=(0.3,))
    solution = prod_fun([0.7], params)
    assert solution.converged
    assert solution.xT.size == 0
    assert abs(solution.q * unit_input_demand([], params)[0] - 0.7) < 1e-9
    print("PASSED: single worker type")


def test_zero_labor_type():
    """A type with no labor gets a (nearly) empty interval; the others are still matched."""
    labor = np.array([0.5, 0.0, 0.19])
    solution = prod_fun(labor, SCENARIO)
    implied = solution.q * unit_input_demand(solution.xT, SCENARIO)
    np.testing.assert_allclose(implied[[0, 2]], labor[[0, 2]], rtol=1e-5)
    assert implied[1] < 1e-6
    assert np.all(np.diff(solution.xT) > 0)
    print("PASSED: zero-labor type")


def test_zero_labor_outer_types():
    """The first type's interval shrinks onto zero, the last type's runs off to infinity."""
    print("\n=== Test: zero labor for the first and last type ===")
    for labor, empty in (([0.0, 0.04, 0.19], 0), ([0.5, 0.04, 0.0], 2)):
        labor = np.array(labor)
        solution = prod_fun(labor, SCENARIO)
        implied = solution.q * unit_input_demand(solution.xT, SCENARIO)
        print(f"  L={labor}: implied={implied}, fval={solution.fval:.3e}")
        assert solution.converged
        assert solution.xT[0] > 0 and np.all(np.diff(solution.xT) > 0)
        matched = labor > 0
        np.testing.assert_allclose(implied[matched], labor[matched], rtol=1e-5)
        assert implied[empty] < 1e-6

    # Shape below one puts unbounded density at zero, so the first interval must be very short
    params = BlueprintParameters(theta=1.0, kappa=0.2, z=1.0, alpha_vec=(0.0, 0.5))
    solution = prod_fun([0.0, 1.0], params)
    assert solution.converged
    assert solution.q * unit_input_demand(solution.xT, params)[0] < 1e-6
    print("PASSED: zero labor for outer types")


def test_general_model_round_trip():
    print("\n=== Test: general model solve ===")
    params = BlueprintParameters(theta=1.5, kappa=2.0, z=1.2, alpha_vec=(0.1, 0.2, 0.3))
    model = GeneralModel.from_blueprint(params)
    q_true, xT_true = 1.8, [0.9, 2.8]
    labor = q_true * unit_input_demand(xT_true, params)

    solution = prod_fun_general(labor, model)
    print(f"  q={solution.q:.6f}, xT={solution.xT}, fval={solution.fval:.3e}")
    assert solution.fval < 1e-8
    assert abs(solution.q - q_true) < 1e-5 * q_true
    np.testing.assert_allclose(solution.xT, xT_true, atol=1e-5)
    implied = solution.q * unit_input_demand_general(solution.xT, model)
    np.testing.assert_allclose(implied, labor, rtol=1e-5)
    print("PASSED: general model solve")


def test_general_model_reference_scenario():
    """Blueprint efficiencies exp(alpha * x) are integrated over [x, inf) without overflow."""
    model = GeneralModel.from_blueprint(SCENARIO)
    solution = prod_fun_general(SCENARIO_LABOR, model)
    print(f"  q={solution.q:.8f}, xT={solution.xT}, fval={solution.fval:.3e}")
    assert solution.fval < 1e-8
    implied = solution.q * unit_input_demand_general(solution.xT, model)
    np.testing.assert_allclose(implied, SCENARIO_LABOR, atol=1e-6)

    closed = prod_fun(SCENARIO_LABOR, SCENARIO)
    np.testing.assert_allclose(solution.xT, closed.xT, atol=1e-5)
    print("PASSED: general model reference scenario")


def test_general_model_bounded_support():
    model = GeneralModel(z=1.0, b_g=lambda x: 1.0, e_h=(lambda x: 1.0, math.exp), support=(0.0, 1.0))
    x1, q = 0.35, 3.0
    labor = q * np.array([x1, math.exp(-x1) - math.exp(-1.0)])
    solution = prod_fun_general(labor, model)
    assert solution.converged
    assert abs(solution.xT[0] - x1) < 1e-6
    assert abs(solution.q - q) < 1e-6
    print("PASSED: bounded-support solve")


def test_initial_guess_properties():
    print("\n=== Test: initial guess ===")
    guess = find_initial_guess(SCENARIO_LABOR, SCENARIO)
    assert guess.shape == (3,)
    assert np.isfinite(guess[0])
    xT = guess[1:]
    assert np.all(xT > 0) and np.all(np.diff(xT) > 0)
    demand = unit_input_demand(xT, SCENARIO)
    shares = demand / demand.sum()
    assert np.all(shares >= SolverSettings().initial_guess_threshold)
    # Implied total labor matches observed total labor
    assert abs(math.exp(guess[0]) * demand.sum() - SCENARIO_LABOR.sum()) < 1e-10
    print(f"  guess={guess}")

    # An unreachable threshold still returns the best ordered partition
    guess = find_initial_guess(SCENARIO_LABOR, SCENARIO, threshold=0.5, initial_guess_max_iter=20)
    assert guess.shape == (3,) and np.all(np.diff(guess[1:]) >= 0)
    print("PASSED: initial guess")


def test_initial_guess_general():
    model = GeneralModel(z=1.0, b_g=lambda x: math.exp(-x), e_h=(lambda x: 1.0, lambda x: math.exp(0.5 * x)))
    guess = find_initial_guess_gen([1.0, 1.0], model)
    assert guess.shape == (2,)
    assert guess[1] > 0
    demand = unit_input_demand_general(guess[1:], model)
    assert np.all(demand / demand.sum() >= 0.01)
    print("PASSED: general initial guess")


def test_nonconvergence_is_reported():
    print("\n=== Test: non-convergence ===")
    solution = prod_fun(SCENARIO_LABOR, SCENARIO, max_iterations=1, max_retries=0)
    assert not solution.converged
    assert solution.attempts == 1
    assert np.isfinite(solution.q) and np.all(np.diff(solution.xT) > 0)
    with pytest.raises(SolverNonconvergence) as excinfo:
        solution.require_converged()
    assert excinfo.value.attempts == 1
    assert excinfo.value.fval == solution.fval

    retried = prod_fun(SCENARIO_LABOR, SCENARIO, max_iterations=1, max_retries=2)
    assert retried.attempts == 3
    assert retried.fval <= solution.fval
    print("PASSED: non-convergence reported")


def test_solution_state_require_converged():
    state = SolutionState(q=1.0, xT=np.array([0.5]), fval=1e-20, converged=True, attempts=1)
    assert state.require_converged() is state
    print("PASSED: require_converged")


def test_invalid_inputs():
    with pytest.raises(ParameterValidationError):
        prod_fun([0.5, -0.1, 0.2], SCENARIO)
    with pytest.raises(ParameterValidationError):
        prod_fun([0.5, 0.1], SCENARIO)
    with pytest.raises(ParameterValidationError):
        prod_fun([0.0, 0.0, 0.0], SCENARIO)
    with pytest.raises(ParameterValidationError):
        prod_fun(SCENARIO_LABOR, SCENARIO, initial_guess=[0.0, 1.0, 0.5])
    with pytest.raises(ParameterValidationError):
        prod_fun(SCENARIO_LABOR, SCENARIO, initial_guess=[0.0, 1.0])
    with pytest.raises(ParameterValidationError):
        prod_fun(SCENARIO_LABOR, SCENARIO, not_a_setting=1)
    print("PASSED: invalid inputs rejected")


def test_settings_validation_and_yaml():
    print("\n=== Test: solver settings ===")
    for bad in ({"x_tol": -1.0}, {"fval_tol": 0.0}, {"max_iterations": 0}, {"max_retries": -1},
                {"max_retries": True}, {"fd_rel_step": 1.5}, {"quad_limit": 2.5}):
        with pytest.raises(ParameterValidationError):
            SolverSettings(**bad)

    # Numeric strings and one-element sequences are accepted as floats
    assert SolverSettings(x_tol="1e-10").x_tol == 1e-10
    assert SolverSettings(x_tol=[1e-10]).x_tol == 1e-10
    for bad in ("abc", [1e-10, 1e-9], [], None, float("nan")):
        with pytest.raises(ParameterValidationError):
            SolverSettings(x_tol=bad)
    with pytest.raises(ParameterValidationError):
        BlueprintParameters(theta=[1.0, 2.0], kappa=0.5, z=1.2, alpha_vec=(0.1, 0.2)).validate()

    settings = SolverSettings().replace(max_retries=2)
    assert settings.max_retries == 2 and settings.fval_tol == SolverSettings().fval_tol

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "solver.yaml"
        path.write_text(
            "solver:\n"
            "  max_retries: 3\n"
            "  f_tol: 1e-10\n"
            "  verbose: true\n"
        )
        loaded = SolverSettings.from_yaml(path)
        assert loaded.max_retries == 3
        assert loaded.f_tol == 1e-10
        assert loaded.verbose is True

        path.write_text("solver:\n  tolerance: 1.0\n")
        with pytest.raises(ParameterValidationError):
            SolverSettings.from_yaml(path)

    solution = prod_fun(SCENARIO_LABOR, SCENARIO, settings=loaded)
    assert solution.converged
    print("PASSED: solver settings")


if __name__ == "__main__":
    print("=" * 60)
    print("THRESHOLD SOLVER TESTS")
    print("=" * 60)

    try:
        test_reference_scenario()
        test_recovers_known_equilibrium()
        test_single_type()
        test_zero_labor_type()
        test_zero_labor_outer_types()
        test_general_model_round_trip()
        test_general_model_reference_scenario()
        test_general_model_bounded_support()
        test_initial_guess_properties()
        test_initial_guess_general()
        test_nonconvergence_is_reported()
        test_solution_state_require_converged()
        test_invalid_inputs()
        test_settings_validation_and_yaml()

        print("\n" + "=" * 60)
        print("ALL TESTS PASSED!")
        print("=" * 60)
    except Exception as e:
        print(f"\n\nTEST FAILED: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
