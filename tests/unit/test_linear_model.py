"""Unit tests for the residual-model base class and the linear reference model."""

from __future__ import annotations

import unittest

import numpy as np

from ptsens.model import LinearResidualModel, check_parameter_blocks
from ptsens.utils.exceptions import ConfigurationError, DimensionMismatchError
from tests.helpers import ScalarShiftModel, sample_linear_model


class LinearResidualModelTests(unittest.TestCase):
    """Validate evaluation, derivatives and closed-form helpers."""

    def test_sizes_follow_matrices(self) -> None:
        """Derive state, parameter and response sizes from the matrices."""
        model = sample_linear_model()
        self.assertEqual(model.state_size, 3)
        self.assertEqual(model.parameter_sizes, (2, 3))
        self.assertEqual(model.response_sizes, (2,))
        self.assertEqual(model.num_parameter_blocks, 2)
        self.assertEqual(model.num_responses, 1)
        model.validate()

    def test_residual_vanishes_at_steady_state(self) -> None:
        """Return a zero residual at the closed-form steady state."""
        model = sample_linear_model()
        params = model.get_parameters()
        x = model.steady_state(params)
        residual = model.residual(np.zeros(3), x, 0.0, params)
        np.testing.assert_allclose(residual, np.zeros(3), atol=1e-12)

    def test_jacobian_combines_mass_and_state_matrices(self) -> None:
        """Weight the mass and state matrices by ``alpha`` and ``beta``."""
        model = sample_linear_model()
        params = model.get_parameters()
        x = np.zeros(3)
        np.testing.assert_allclose(model.mass_matrix(x, x, 0.0, params), np.eye(3))
        np.testing.assert_allclose(model.state_jacobian(x, x, 0.0, params), model.state_matrix)
        np.testing.assert_allclose(
            model.jacobian(x, x, 0.0, params, alpha=2.0, beta=0.5),
            2.0 * np.eye(3) + 0.5 * model.state_matrix,
        )

    def test_parameter_jacobians_of_both_blocks(self) -> None:
        """Return ``-B`` for the input block and ``-I`` for the source block."""
        model = sample_linear_model()
        params = model.get_parameters()
        x = np.zeros(3)
        np.testing.assert_allclose(
            model.parameter_jacobian(0, x, x, 0.0, params), -model.input_matrix
        )
        np.testing.assert_allclose(model.parameter_jacobian(1, x, x, 0.0, params), -np.eye(3))
        with self.assertRaises(ConfigurationError):
            model.parameter_jacobian(2, x, x, 0.0, params)

    def test_response_gradient_matches_finite_difference(self) -> None:
        """Match ``dg/dx`` against a central difference of the response."""
        model = sample_linear_model()
        params = model.get_parameters()
        x = np.array([0.3, -0.2, 0.7])
        gradient = model.response_gradient(0, 0, x, 0.0, params)
        step = 1e-6
        columns = []
        for entry in range(3):
            shift = np.zeros(3)
            shift[entry] = step
            plus = model.response(0, x + shift, 0.0, params)
            minus = model.response(0, x - shift, 0.0, params)
            columns.append((plus - minus) / (2.0 * step))
        np.testing.assert_allclose(gradient.dg_dx, np.column_stack(columns), atol=1e-8)
        np.testing.assert_allclose(gradient.dg_dp, model.response_parameter_weights)

    def test_rejects_unknown_response_index(self) -> None:
        """Reject response indices other than zero."""
        model = sample_linear_model()
        with self.assertRaises(ConfigurationError):
            model.response(1, np.zeros(3), 0.0, model.get_parameters())

    def test_rejects_inconsistent_shapes(self) -> None:
        """Reject matrices whose shapes do not fit together."""
        with self.assertRaises(DimensionMismatchError):
            LinearResidualModel(
                state_matrix=np.ones((2, 3)),
                input_matrix=np.ones((2, 1)),
                input_values=np.ones(1),
            )
        with self.assertRaises(DimensionMismatchError):
            LinearResidualModel(
                state_matrix=np.eye(2),
                input_matrix=np.ones((2, 1)),
                input_values=np.ones(2),
            )

    def test_scalar_defaults(self) -> None:
        """Fill identity mass, zero source and unit response weights."""
        model = LinearResidualModel(state_matrix=2.0, input_matrix=1.0, input_values=4.0)
        np.testing.assert_allclose(model.steady_state(), [2.0])
        np.testing.assert_allclose(model.exact_dgdp(), [[0.5]])
        np.testing.assert_allclose(model.exact_dgdp(1), [[0.5]])


class ModelBaseTests(unittest.TestCase):
    """Validate shared model bookkeeping."""

    def test_validate_rejects_wrong_nominal_parameters(self) -> None:
        """Reject nominal parameter blocks that contradict the declared sizes."""

        class _BrokenModel(ScalarShiftModel):
            """Scalar model declaring two parameter entries."""

            parameter_sizes = (2,)

        with self.assertRaises(DimensionMismatchError):
            _BrokenModel().validate()

    def test_validate_rejects_non_positive_sizes(self) -> None:
        """Reject empty response declarations."""

        class _NoResponseModel(ScalarShiftModel):
            """Scalar model declaring an empty response."""

            response_sizes = (0,)

        with self.assertRaises(ConfigurationError):
            _NoResponseModel().validate()

    def test_check_parameter_blocks_counts_blocks(self) -> None:
        """Reject a wrong number of parameter blocks."""
        with self.assertRaises(DimensionMismatchError):
            check_parameter_blocks((np.zeros(1),), (1, 2))
        check_parameter_blocks((np.zeros(1), np.zeros(2)), (1, 2))


if __name__ == "__main__":
    unittest.main()
