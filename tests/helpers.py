"""Shared test helpers."""

from __future__ import annotations

from dataclasses import replace

import numpy as np

from ptsens.integration import IntegratorConfig, build_integrator_config
from ptsens.model import LinearResidualModel, Parameters, ResidualModelBase, ResponseGradient
from ptsens.sensitivity import PseudoTransientSensitivityConfig, build_pseudo_transient_config


class ScalarShiftModel(ResidualModelBase):
    """Scalar model ``x_dot + x - p = 0`` with response ``g = x^2``.

    For ``p = 3`` the steady state is ``x = 3``, the adjoint steady state is
    ``y = 2 x = 6`` and ``dg/dp = 6``.
    """

    state_size = 1
    parameter_sizes = (1,)
    response_sizes = (1,)

    def __init__(self, p: float = 3.0) -> None:
        """Store the nominal parameter.

        Args:
            p: Nominal parameter value.
        """
        self.p = float(p)

    def get_parameters(self) -> Parameters:
        """Return the nominal parameter block.

        Returns:
            One-block parameter tuple.
        """
        return (np.array([self.p]),)

    def residual(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate ``x_dot + x - p``.

        Args:
            x_dot: State rate.
            x: State.
            t: Time (unused).
            params: Parameter blocks.

        Returns:
            Residual vector.
        """
        return x_dot + x - params[0]

    def jacobian(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
        *,
        alpha: float,
        beta: float,
    ) -> np.ndarray:
        """Evaluate ``(alpha + beta) I``.

        Args:
            x_dot: State rate (unused).
            x: State (unused).
            t: Time (unused).
            params: Parameter blocks (unused).
            alpha: Mass-matrix weight.
            beta: Jacobian weight.

        Returns:
            ``1 x 1`` iteration matrix.
        """
        return np.array([[alpha + beta]])

    def parameter_jacobian(
        self,
        parameter_index: int,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Return ``df/dp = -1``.

        Args:
            parameter_index: Parameter block index (only ``0``).
            x_dot: State rate (unused).
            x: State (unused).
            t: Time (unused).
            params: Parameter blocks (unused).

        Returns:
            ``1 x 1`` parameter Jacobian.
        """
        return np.array([[-1.0]])

    def response(
        self,
        response_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Return ``g = x^2``.

        Args:
            response_index: Response index (only ``0``).
            x: State.
            t: Time (unused).
            params: Parameter blocks (unused).

        Returns:
            One-element response vector.
        """
        return x**2

    def response_gradient(
        self,
        response_index: int,
        parameter_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> ResponseGradient:
        """Return ``dg/dx = 2 x`` and ``dg/dp = 0``.

        Args:
            response_index: Response index (only ``0``).
            parameter_index: Parameter block index (only ``0``).
            x: State.
            t: Time (unused).
            params: Parameter blocks (unused).

        Returns:
            Response derivatives.
        """
        return ResponseGradient(dg_dx=np.array([[2.0 * x[0]]]), dg_dp=np.zeros((1, 1)))


class CubicModel(ScalarShiftModel):
    """Nonlinear scalar model ``x_dot + x^3 + x - p = 0`` with ``g = x``.

    For ``p = 2`` the steady state is ``x = 1`` and ``dg/dp = 1 / (3 x^2 + 1) = 0.25``.
    """

    def __init__(self, p: float = 2.0) -> None:
        """Store the nominal parameter.

        Args:
            p: Nominal parameter value.
        """
        super().__init__(p)

    def residual(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate ``x_dot + x^3 + x - p``.

        Args:
            x_dot: State rate.
            x: State.
            t: Time (unused).
            params: Parameter blocks.

        Returns:
            Residual vector.
        """
        return x_dot + x**3 + x - params[0]

    def jacobian(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
        *,
        alpha: float,
        beta: float,
    ) -> np.ndarray:
        """Evaluate ``alpha + beta (3 x^2 + 1)``.

        Args:
            x_dot: State rate (unused).
            x: State.
            t: Time (unused).
            params: Parameter blocks (unused).
            alpha: Mass-matrix weight.
            beta: Jacobian weight.

        Returns:
            ``1 x 1`` iteration matrix.
        """
        return np.array([[alpha + beta * (3.0 * x[0] ** 2 + 1.0)]])

    def response(
        self,
        response_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Return ``g = x``.

        Args:
            response_index: Response index (only ``0``).
            x: State.
            t: Time (unused).
            params: Parameter blocks (unused).

        Returns:
            One-element response vector.
        """
        return np.array(x, copy=True)

    def response_gradient(
        self,
        response_index: int,
        parameter_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> ResponseGradient:
        """Return ``dg/dx = 1`` and ``dg/dp = 0``.

        Args:
            response_index: Response index (only ``0``).
            parameter_index: Parameter block index (only ``0``).
            x: State.
            t: Time (unused).
            params: Parameter blocks (unused).

        Returns:
            Response derivatives.
        """
        return ResponseGradient(dg_dx=np.ones((1, 1)), dg_dp=np.zeros((1, 1)))


class TransposeAdjointModel:
    """Explicit adjoint model returning the conjugate transpose of a forward operator."""

    def __init__(self, forward_model: ResidualModelBase) -> None:
        """Wrap a forward model.

        Args:
            forward_model: Model whose operator is transposed.
        """
        self.forward_model = forward_model
        self.calls = 0

    def jacobian(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
        *,
        alpha: float,
        beta: float,
    ) -> np.ndarray:
        """Evaluate the adjoint of the forward iteration matrix.

        Args:
            x_dot: Forward state rate.
            x: Forward state.
            t: Time.
            params: Parameter blocks.
            alpha: Mass-matrix weight.
            beta: Jacobian weight.

        Returns:
            Conjugate-transposed iteration matrix.
        """
        self.calls += 1
        forward = self.forward_model.jacobian(x_dot, x, t, params, alpha=alpha, beta=beta)
        return np.asarray(forward).conj().T


def sample_linear_model() -> LinearResidualModel:
    """Create a non-symmetric three-state linear model with two responses.

    Returns:
        Stable linear model with two inputs.
    """
    return LinearResidualModel(
        state_matrix=np.array(
            [
                [3.0, -1.0, 0.0],
                [0.5, 2.0, -0.5],
                [0.0, 0.25, 1.5],
            ]
        ),
        input_matrix=np.array(
            [
                [1.0, 0.0],
                [0.0, 2.0],
                [1.0, -1.0],
            ]
        ),
        input_values=np.array([1.0, 0.5]),
        source_values=np.array([0.2, -0.1, 0.3]),
        response_weights=np.array(
            [
                [1.0, 0.0, 2.0],
                [0.0, -1.0, 0.5],
            ]
        ),
        response_hessian=np.diag([1.0, 0.5, 2.0]),
        response_parameter_weights=np.array(
            [
                [0.1, 0.0],
                [0.0, -0.3],
            ]
        ),
    )


def sample_complex_model() -> LinearResidualModel:
    """Create a stable complex-valued linear model.

    Returns:
        Two-state linear model with a complex state matrix.
    """
    return LinearResidualModel(
        state_matrix=np.array([[2.0 + 1.0j, 0.5], [0.0, 1.0 - 0.5j]]),
        input_matrix=np.array([[1.0], [1.0j]]),
        input_values=np.array([1.0 + 0.0j]),
        source_values=np.zeros(2, dtype=complex),
        response_weights=np.array([[1.0, 2.0]]),
    )


def tight_integrator_config(stepper_type: str = "backward_euler") -> IntegratorConfig:
    """Create stage settings with a tight steady-state tolerance.

    Args:
        stepper_type: Stepper of the stage.

    Returns:
        Stage settings.
    """
    if stepper_type == "forward_euler":
        return build_integrator_config(
            stepper_type=stepper_type,
            initial_time_step=0.5,
            max_time_steps=500,
            steady_state_tolerance=1e-11,
            strategy="constant",
        )
    return build_integrator_config(
        stepper_type=stepper_type,
        initial_time_step=0.1,
        max_time_steps=500,
        steady_state_tolerance=1e-11,
    )


def sensitivity_config(
    stepper_type: str = "backward_euler",
    *,
    sensitivity_parameter_index: int = 0,
    mass_matrix_is_identity: bool = False,
) -> PseudoTransientSensitivityConfig:
    """Create a two-stage configuration for tests.

    Args:
        stepper_type: Stepper of both stages.
        sensitivity_parameter_index: Parameter block differentiated against.
        mass_matrix_is_identity: Whether the mass matrix is the identity.

    Returns:
        Validated two-stage configuration.
    """
    stage = tight_integrator_config(stepper_type)
    return build_pseudo_transient_config(
        stepper_type=stepper_type,
        sensitivity_parameter_index=sensitivity_parameter_index,
        mass_matrix_is_identity=mass_matrix_is_identity,
        forward=stage,
        adjoint=stage,
    )


def starved_integrator_config(max_time_steps: int = 2) -> IntegratorConfig:
    """Create stage settings with too few steps to reach a steady state.

    Args:
        max_time_steps: Step budget of the stage.

    Returns:
        Stage settings.
    """
    config = tight_integrator_config()
    return replace(
        config,
        time_step_control=replace(config.time_step_control, max_time_steps=max_time_steps),
    )
