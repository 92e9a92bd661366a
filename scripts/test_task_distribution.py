"""
Tests for the closed-form task distribution.

Verifies that:
1. Unit labor demand matches direct numerical integration of the blueprint
2. Moving a threshold shifts demand only between the two neighbouring types
3. Task mass is conserved across types
4. Equal thresholds give a zero-demand type and a DegenerateIntervalWarning
5. Marginal products satisfy the threshold indifference and Euler conditions
6. Invalid parameters and threshold vectors are rejected
"""

import math
import sys
import tempfile
import warnings
from pathlib import Path

import numpy as np
import pytest
from scipy import integrate, stats

from task_based_production import (
    BlueprintParameters,
    DegenerateIntervalWarning,
    ParameterValidationError,
    blueprint_density,
    marg_prod_labor,
    prod_fun,
    task_mass_by_type,
    unit_input_demand,
)


SCENARIO = BlueprintParameters(theta=1.0, kappa=0.5, z=1.2, alpha_vec=(0.1, 0.2, 0.3))
SMOOTH = BlueprintParameters(theta=1.5, kappa=2.0, z=1.2, alpha_vec=(0.1, 0.2, 0.3))


def direct_demand(xT, params):
    """Integrate b_g(x) / (z exp(alpha_h x)) over every interval with quad."""
    edges = [0.0] + list(xT) + [math.inf]
    demand = []
    for h, alpha in enumerate(params.alpha_vec):
        value, _ = integrate.quad(
            lambda x: blueprint_density(x, params.theta, params.kappa) * math.exp(-alpha * x) / params.z,
            edges[h], edges[h + 1], epsabs=1e-14, epsrel=1e-12, limit=200,
        )
        demand.append(value)
    return np.array(demand)


def test_demand_matches_integration():
    print("\n=== Test: closed form vs quadrature ===")
    for xT in ([0.4, 1.3], [1.0, 4.0], [0.05, 0.1]):
        demand = unit_input_demand(xT, SMOOTH)
        np.testing.assert_allclose(demand, direct_demand(xT, SMOOTH), rtol=1e-8, atol=1e-14)
        print(f"  xT={xT}: u={demand}")
    print("PASSED: closed-form demand matches quadrature")


def test_single_type_demand():
    """With one type the whole support belongs to it: u = (1 + alpha theta)^(-kappa) / z."""
    params = BlueprintParameters(theta=2.0, kappa=1.5, z=0.8, alpha_vec=(0.2,))
    demand = unit_input_demand([], params)
    assert demand.shape == (1,)
    assert abs(demand[0] - (1.0 + 0.2 * 2.0) ** -1.5 / 0.8) < 1e-14
    # None is accepted for the empty threshold vector
    np.testing.assert_array_equal(unit_input_demand(None, params), demand)
    print("PASSED: single-type demand")


def test_threshold_monotonicity():
    print("\n=== Test: threshold monotonicity ===")
    xT = np.array([0.5, 1.5])
    base = unit_input_demand(xT, SCENARIO)

    moved_first = unit_input_demand(xT + [0.1, 0.0], SCENARIO)
    assert moved_first[0] > base[0], "raising x1 should increase type 1 demand"
    assert moved_first[1] < base[1], "raising x1 should decrease type 2 demand"
    assert moved_first[2] == base[2], "type 3 is unaffected by x1"

    moved_second = unit_input_demand(xT + [0.0, 0.1], SCENARIO)
    assert moved_second[0] == base[0]
    assert moved_second[1] > base[1]
    assert moved_second[2] < base[2]
    print("PASSED: demand moves between neighbouring types only")


def test_task_mass_conservation():
    for params in (SCENARIO, SMOOTH):
        for xT in ([0.3, 0.9], [2.0, 2.5], [1e-6, 50.0]):
            mass = task_mass_by_type(xT, params)
            assert np.all(mass >= 0)
            assert abs(mass.sum() - 1.0) < 1e-12, f"task mass sums to {mass.sum()}"
    # Mass agrees with the gamma CDF
    mass = task_mass_by_type([0.3, 0.9], SMOOTH)
    cdf = stats.gamma.cdf([0.3, 0.9], SMOOTH.kappa, scale=SMOOTH.theta)
    np.testing.assert_allclose(mass, [cdf[0], cdf[1] - cdf[0], 1.0 - cdf[1]], rtol=1e-10)
    print("PASSED: task mass conserved")


def test_degenerate_interval_warns_and_zeroes():
    print("\n=== Test: degenerate interval ===")
    with pytest.warns(DegenerateIntervalWarning):
        demand = unit_input_demand([1.0, 1.0], SCENARIO)
    assert demand[1] == 0.0, "zero-width interval must have exactly zero demand"
    assert demand[0] > 0 and demand[2] > 0

    # Skipping checks skips the warning but not the zero demand
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        demand_unchecked = unit_input_demand([1.0, 1.0], SCENARIO, skip_param_checks=True)
    np.testing.assert_array_equal(demand_unchecked, demand)
    print("PASSED: degenerate interval handled")


def test_blueprint_density():
    x = np.array([0.0, 0.5, 2.0, 10.0])
    np.testing.assert_allclose(blueprint_density(x, 1.5, 2.0), stats.gamma.pdf(x, 2.0, scale=1.5), rtol=1e-12)
    assert blueprint_density(-1.0, 1.5, 2.0) == 0.0
    assert isinstance(blueprint_density(1.0, 1.5, 2.0), float)
    mass, _ = integrate.quad(lambda t: blueprint_density(t, 1.5, 2.0), 0.0, math.inf)
    assert abs(mass - 1.0) < 1e-9
    print("PASSED: blueprint density")


def test_mpl_indifference_and_euler():
    print("\n=== Test: marginal products ===")
    labor = np.array([0.5, 0.04, 0.19])
    xT = np.array([0.45, 0.6])
    q = 0.8
    mpl = marg_prod_labor(labor, SCENARIO, xT=xT, q=q)

    assert np.all(mpl > 0)
    assert abs(mpl[1] / mpl[0] - math.exp(0.1 * xT[0])) < 1e-12
    assert abs(mpl[2] / mpl[1] - math.exp(0.1 * xT[1])) < 1e-12
    assert abs(np.dot(mpl, labor) - q) < 1e-12, "sum of MPL * L must equal q"
    print(f"  MPL={mpl}")
    print("PASSED: marginal products")


def test_mpl_solves_when_state_missing():
    labor = np.array([0.5, 0.04, 0.19])
    solution = prod_fun(labor, SCENARIO)
    mpl = marg_prod_labor(labor, SCENARIO)
    np.testing.assert_allclose(mpl, marg_prod_labor(labor, SCENARIO, xT=solution.xT, q=solution.q), rtol=1e-10)
    assert abs(np.dot(mpl, labor) - solution.q) < 1e-10
    print("PASSED: MPL solves for the missing equilibrium")


def test_invalid_thresholds():
    with pytest.raises(ParameterValidationError):
        unit_input_demand([1.5, 0.5], SCENARIO)  # decreasing
    with pytest.raises(ParameterValidationError):
        unit_input_demand([0.5], SCENARIO)  # wrong length
    with pytest.raises(ParameterValidationError):
        unit_input_demand([0.5, float("nan")], SCENARIO)
    with pytest.raises(ParameterValidationError):
        unit_input_demand([[0.5, 1.0]], SCENARIO)
    print("PASSED: invalid thresholds rejected")


def test_invalid_parameters():
    bad = [
        BlueprintParameters(theta=0.0, kappa=0.5, z=1.0, alpha_vec=(0.1, 0.2)),
        BlueprintParameters(theta=1.0, kappa=-1.0, z=1.0, alpha_vec=(0.1, 0.2)),
        BlueprintParameters(theta=1.0, kappa=0.5, z=0.0, alpha_vec=(0.1, 0.2)),
        BlueprintParameters(theta=1.0, kappa=0.5, z=1.0, alpha_vec=(0.2, 0.1)),  # not increasing
        BlueprintParameters(theta=1.0, kappa=0.5, z=1.0, alpha_vec=(0.2, 0.2)),  # ties
        BlueprintParameters(theta=1.0, kappa=0.5, z=1.0, alpha_vec=(-1.5, 0.2)),  # divergent integral
        BlueprintParameters(theta=1.0, kappa=0.5, z=1.0, alpha_vec=()),
    ]
    for params in bad:
        with pytest.raises(ParameterValidationError):
            unit_input_demand([0.5] * max(params.n_types - 1, 0), params)
    print("PASSED: invalid parameters rejected")


def test_skip_param_checks_bypasses_validation():
    # Decreasing alpha is structurally invalid but still evaluable
    params = BlueprintParameters(theta=1.0, kappa=0.5, z=1.0, alpha_vec=(0.3, 0.1))
    demand = unit_input_demand([0.5], params, skip_param_checks=True)
    assert demand.shape == (2,) and np.all(demand > 0)
    print("PASSED: skip_param_checks")


def test_parameters_from_yaml():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "model.yaml"
        path.write_text(
            "blueprint:\n"
            "  theta: 1.0\n"
            "  kappa: 0.5\n"
            "  z: 1.2\n"
            "  alpha_vec: [0.1, 0.2, 0.3]\n"
        )
        params = BlueprintParameters.from_yaml(path)
    assert params == SCENARIO
    assert params.n_types == 3

    with pytest.raises(ParameterValidationError):
        BlueprintParameters.from_dict({"theta": 1.0, "kappa": 0.5})
    print("PASSED: parameters from YAML")


if __name__ == "__main__":
    print("=" * 60)
    print("CLOSED-FORM TASK DISTRIBUTION TESTS")
    print("=" * 60)

    try:
        test_demand_matches_integration()
        test_single_type_demand()
        test_threshold_monotonicity()
        test_task_mass_conservation()
        test_degenerate_interval_warns_and_zeroes()
        test_blueprint_density()
        test_mpl_indifference_and_euler()
        test_mpl_solves_when_state_missing()
        test_invalid_thresholds()
        test_invalid_parameters()
        test_skip_param_checks_bypasses_validation()
        test_parameters_from_yaml()

        print("\n" + "=" * 60)
        print("ALL TESTS PASSED!")
        print("=" * 60)
    except Exception as e:
        print(f"\n\nTEST FAILED: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
