"""Unit tests for single-step methods and step-size control."""

from __future__ import annotations

import unittest

import numpy as np

from ptsens.integration import (
    BackwardEulerStepper,
    ForwardEulerStepper,
    StepperConfig,
    TimeStepControl,
    TimeStepControlConfig,
    create_stepper,
)
from ptsens.utils.exceptions import ConfigurationError
from tests.helpers import CubicModel, ScalarShiftModel


class _ConstantScalarShiftModel(ScalarShiftModel):
    """Scalar shift model that declares its Jacobian constant."""

    jacobian_is_constant = True


class BackwardEulerStepperTests(unittest.TestCase):
    """Validate the implicit Euler step."""

    def test_linear_step_matches_closed_form(self) -> None:
        """Reproduce ``x_1 = (x_0 + dt p) / (1 + dt)`` for the scalar shift model."""
        model = ScalarShiftModel(p=3.0)
        stepper = BackwardEulerStepper()
        result = stepper.take_step(model, 0.0, np.zeros(1), np.zeros(1), 0.5, (np.array([3.0]),))
        self.assertTrue(result.converged)
        np.testing.assert_allclose(result.x, [1.0])
        np.testing.assert_allclose(result.x_dot, [2.0])

    def test_nonlinear_step_satisfies_residual(self) -> None:
        """Drive the nonlinear step residual to zero with Newton's method."""
        model = CubicModel(p=2.0)
        params = model.get_parameters()
        stepper = BackwardEulerStepper()
        result = stepper.take_step(model, 0.0, np.zeros(1), np.zeros(1), 0.2, params)
        self.assertTrue(result.converged)
        self.assertGreater(result.newton_iterations, 1)
        residual = model.residual(result.x_dot, result.x, 0.2, params)
        np.testing.assert_allclose(residual, [0.0], atol=1e-9)

    def test_reports_non_convergence_instead_of_raising(self) -> None:
        """Return a failed result when the Newton budget is exhausted."""
        model = CubicModel(p=2.0)
        stepper = BackwardEulerStepper(StepperConfig(newton_max_iterations=1))
        result = stepper.take_step(
            model, 0.0, np.zeros(1), np.zeros(1), 10.0, model.get_parameters()
        )
        self.assertFalse(result.converged)
        self.assertIsNone(result.x)
        self.assertIn("Newton", result.message)

    def test_constant_jacobian_factorization_is_reused(self) -> None:
        """Factor a constant iteration matrix once per step size."""
        model = _ConstantScalarShiftModel()
        stepper = BackwardEulerStepper()
        params = model.get_parameters()
        x = np.zeros(1)
        for _ in range(3):
            result = stepper.take_step(model, 0.0, x, np.zeros(1), 0.5, params)
            x = result.x
        self.assertEqual(stepper.factorization_count, 1)
        stepper.take_step(model, 0.0, x, np.zeros(1), 0.25, params)
        self.assertEqual(stepper.factorization_count, 2)
        stepper.reset()
        stepper.take_step(model, 0.0, x, np.zeros(1), 0.25, params)
        self.assertEqual(stepper.factorization_count, 3)


class ForwardEulerStepperTests(unittest.TestCase):
    """Validate the explicit Euler step."""

    def test_initial_rate_solves_residual(self) -> None:
        """Solve ``f(x_dot, x) = 0`` for a consistent rate."""
        model = ScalarShiftModel(p=3.0)
        stepper = ForwardEulerStepper()
        x_dot = stepper.initial_rate(model, np.array([1.0]), 0.0, model.get_parameters())
        np.testing.assert_allclose(x_dot, [2.0])

    def test_step_returns_consistent_rate(self) -> None:
        """Advance explicitly and return the rate at the new state."""
        model = ScalarShiftModel(p=3.0)
        stepper = ForwardEulerStepper()
        result = stepper.take_step(
            model, 0.0, np.zeros(1), np.array([3.0]), 0.5, model.get_parameters()
        )
        self.assertTrue(result.converged)
        np.testing.assert_allclose(result.x, [1.5])
        np.testing.assert_allclose(result.x_dot, [1.5])

    def test_non_finite_update_fails(self) -> None:
        """Report a failed step when the explicit update overflows."""
        model = ScalarShiftModel(p=3.0)
        stepper = ForwardEulerStepper()
        result = stepper.take_step(
            model, 0.0, np.zeros(1), np.array([np.inf]), 0.5, model.get_parameters()
        )
        self.assertFalse(result.converged)


class StepperFactoryTests(unittest.TestCase):
    """Validate stepper construction from settings."""

    def test_creates_registered_steppers(self) -> None:
        """Map stepper identifiers to stepper classes."""
        self.assertIsInstance(
            create_stepper(StepperConfig(stepper_type="backward_euler")),
            BackwardEulerStepper,
        )
        self.assertIsInstance(
            create_stepper(StepperConfig(stepper_type="forward_euler")),
            ForwardEulerStepper,
        )

    def test_rejects_unknown_stepper(self) -> None:
        """Raise for unknown stepper identifiers."""
        with self.assertRaises(ConfigurationError):
            create_stepper(StepperConfig(stepper_type="crank_nicolson"))

    def test_description_names_stepper(self) -> None:
        """Name the stepper class in its description."""
        self.assertIn("BackwardEulerStepper", BackwardEulerStepper().description())


class TimeStepControlTests(unittest.TestCase):
    """Validate step-size selection."""

    def test_constant_strategy_keeps_step(self) -> None:
        """Keep the step size with the constant strategy."""
        control = TimeStepControl(TimeStepControlConfig(strategy="constant"))
        self.assertAlmostEqual(control.next_step(0.1, 1.0, 0.01), 0.1)

    def test_ser_grows_with_rate_ratio(self) -> None:
        """Grow the step with the ratio of successive rate norms."""
        control = TimeStepControl(TimeStepControlConfig(strategy="ser"))
        self.assertAlmostEqual(control.next_step(0.1, 1.0, 0.5), 0.2)

    def test_ser_growth_is_bounded(self) -> None:
        """Clamp step growth and shrinkage to the configured factors."""
        control = TimeStepControl(
            TimeStepControlConfig(strategy="ser", max_growth_factor=4.0, max_time_step=100.0)
        )
        self.assertAlmostEqual(control.next_step(1.0, 1.0, 1e-9), 4.0)
        self.assertAlmostEqual(control.next_step(1.0, 1.0, 100.0), 0.5)
        self.assertAlmostEqual(control.next_step(80.0, 1.0, 0.1), 100.0)

    def test_first_step_without_history_is_kept(self) -> None:
        """Keep the step size when no previous rate norm is known."""
        control = TimeStepControl()
        self.assertAlmostEqual(control.next_step(0.3, None, 0.1), 0.3)

    def test_reduce_respects_minimum_step(self) -> None:
        """Halve failed steps and give up below the minimum step."""
        control = TimeStepControl(TimeStepControlConfig(min_time_step=0.01))
        self.assertAlmostEqual(control.reduce(0.1), 0.05)
        self.assertIsNone(control.reduce(0.015))

    def test_description_reports_strategy(self) -> None:
        """Report the strategy in the description."""
        self.assertIn("ser", TimeStepControl().description())


if __name__ == "__main__":
    unittest.main()
