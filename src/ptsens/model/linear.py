"""Linear constant-coefficient residual model with a quadratic response."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ptsens.model.model_api import Parameters, ResidualModelBase, ResponseGradient
from ptsens.utils.exceptions import ConfigurationError, DimensionMismatchError

INPUT_PARAMETER_BLOCK = 0
SOURCE_PARAMETER_BLOCK = 1


@dataclass(frozen=True, eq=False)
class LinearResidualModel(ResidualModelBase):
    """Implicit linear ODE ``M x_dot + A x - B p - s = 0``.

    Parameter block ``0`` is the input vector ``p`` and block ``1`` is the
    additive source ``s``. The single response function is

    ``g(x, p) = 0.5 x^T Q x + G x + H p``

    applied per response component. The steady state is
    ``x^s = A^{-1} (B p + s)`` and is stable when the eigenvalues of ``A``
    lie in the right half-plane.

    Args:
        state_matrix: ``A``, shape ``(n, n)``.
        input_matrix: ``B``, shape ``(n, m)``.
        input_values: Nominal ``p``, shape ``(m,)``.
        source_values: Nominal ``s``, shape ``(n,)``. Defaults to zeros.
        mass_matrix_values: ``M``, shape ``(n, n)``. Defaults to identity.
        response_weights: ``G``, shape ``(k, n)``. Defaults to ``ones((1, n))``.
        response_hessian: ``Q``, shape ``(n, n)``. Defaults to no quadratic term.
        response_parameter_weights: ``H``, shape ``(k, m)``. Defaults to zeros.
    """

    state_matrix: np.ndarray
    input_matrix: np.ndarray
    input_values: np.ndarray
    source_values: np.ndarray | None = None
    mass_matrix_values: np.ndarray | None = None
    response_weights: np.ndarray | None = None
    response_hessian: np.ndarray | None = None
    response_parameter_weights: np.ndarray | None = None

    def __post_init__(self) -> None:
        """Normalize array inputs and fill defaults.

        Raises:
            ptsens.utils.exceptions.DimensionMismatchError: If array shapes
                are inconsistent with each other.
        """
        state_matrix = np.atleast_2d(np.asarray(self.state_matrix))
        input_matrix = np.atleast_2d(np.asarray(self.input_matrix))
        n = state_matrix.shape[0]
        if state_matrix.shape != (n, n):
            msg = f"state_matrix must be square, got shape {state_matrix.shape}"
            raise DimensionMismatchError(msg)
        if input_matrix.shape[0] != n:
            msg = f"input_matrix must have {n} rows, got shape {input_matrix.shape}"
            raise DimensionMismatchError(msg)
        m = input_matrix.shape[1]

        input_values = np.atleast_1d(np.asarray(self.input_values))
        source = (
            np.zeros(n)
            if self.source_values is None
            else np.atleast_1d(np.asarray(self.source_values))
        )
        mass = (
            np.eye(n)
            if self.mass_matrix_values is None
            else np.atleast_2d(np.asarray(self.mass_matrix_values))
        )
        weights = (
            np.ones((1, n))
            if self.response_weights is None
            else np.atleast_2d(np.asarray(self.response_weights))
        )
        hessian = (
            np.zeros((n, n))
            if self.response_hessian is None
            else np.atleast_2d(np.asarray(self.response_hessian))
        )
        k = weights.shape[0]
        parameter_weights = (
            np.zeros((k, m))
            if self.response_parameter_weights is None
            else np.atleast_2d(np.asarray(self.response_parameter_weights))
        )

        for name, value, shape in (
            ("input_values", input_values, (m,)),
            ("source_values", source, (n,)),
            ("mass_matrix_values", mass, (n, n)),
            ("response_weights", weights, (k, n)),
            ("response_hessian", hessian, (n, n)),
            ("response_parameter_weights", parameter_weights, (k, m)),
        ):
            if value.shape != shape:
                msg = f"{name} must have shape {shape}, got {value.shape}"
                raise DimensionMismatchError(msg)

        object.__setattr__(self, "state_matrix", state_matrix)
        object.__setattr__(self, "input_matrix", input_matrix)
        object.__setattr__(self, "input_values", input_values)
        object.__setattr__(self, "source_values", source)
        object.__setattr__(self, "mass_matrix_values", mass)
        object.__setattr__(self, "response_weights", weights)
        object.__setattr__(self, "response_hessian", hessian)
        object.__setattr__(self, "response_parameter_weights", parameter_weights)

    @property
    def state_size(self) -> int:  # type: ignore[override]
        """Return state dimension.

        Returns:
            Number of rows of ``A``.
        """
        return int(self.state_matrix.shape[0])

    @property
    def parameter_sizes(self) -> tuple[int, ...]:  # type: ignore[override]
        """Return parameter block sizes.

        Returns:
            ``(len(p), len(s))``.
        """
        return (int(self.input_matrix.shape[1]), self.state_size)

    @property
    def response_sizes(self) -> tuple[int, ...]:  # type: ignore[override]
        """Return response sizes.

        Returns:
            One-element tuple with the number of response components.
        """
        return (int(self.response_weights.shape[0]),)

    def get_parameters(self) -> Parameters:
        """Return nominal parameter blocks.

        Returns:
            Tuple ``(p, s)``.
        """
        return (self.input_values.copy(), self.source_values.copy())

    def steady_state(self, params: Parameters | None = None) -> np.ndarray:
        """Return the exact steady state ``A^{-1} (B p + s)``.

        Args:
            params: Parameter blocks. Defaults to nominal values.

        Returns:
            Steady-state vector.
        """
        p, s = params if params is not None else self.get_parameters()
        return np.linalg.solve(self.state_matrix, self.input_matrix @ p + s)

    def residual(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate ``M x_dot + A x - B p - s``.

        Args:
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time (unused; the model is autonomous).
            params: Parameter blocks ``(p, s)``.

        Returns:
            Residual vector.
        """
        del t
        p, s = params
        forcing = self.input_matrix @ p + s
        return self.mass_matrix_values @ x_dot + self.state_matrix @ x - forcing

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
        """Evaluate ``alpha * M + beta * A``.

        Args:
            x_dot: State time derivative (unused).
            x: State vector (unused).
            t: Evaluation time (unused).
            params: Parameter blocks (unused).
            alpha: Mass-matrix weight.
            beta: State-Jacobian weight.

        Returns:
            Dense iteration matrix.
        """
        del x_dot, x, t, params
        return alpha * self.mass_matrix_values + beta * self.state_matrix

    def parameter_jacobian(
        self,
        parameter_index: int,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate ``df/dp`` (``-B``) or ``df/ds`` (``-I``).

        Args:
            parameter_index: Parameter block index.
            x_dot: State time derivative (unused).
            x: State vector (unused).
            t: Evaluation time (unused).
            params: Parameter blocks (unused).

        Returns:
            Dense parameter Jacobian.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If
                ``parameter_index`` does not name a block.
        """
        del x_dot, x, t, params
        if parameter_index == INPUT_PARAMETER_BLOCK:
            return -self.input_matrix
        if parameter_index == SOURCE_PARAMETER_BLOCK:
            return -np.eye(self.state_size)
        msg = f"parameter_index must be 0 or 1, got: {parameter_index}"
        raise ConfigurationError(msg)

    def response(
        self,
        response_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate ``0.5 x^T Q x + G x + H p``.

        Args:
            response_index: Response function index (only ``0``).
            x: State vector.
            t: Evaluation time (unused).
            params: Parameter blocks ``(p, s)``.

        Returns:
            Response vector.
        """
        del t
        self._check_response_index(response_index)
        p, _ = params
        quadratic = 0.5 * (x @ self.response_hessian @ x)
        return quadratic + self.response_weights @ x + self.response_parameter_weights @ p

    def response_gradient(
        self,
        response_index: int,
        parameter_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> ResponseGradient:
        """Evaluate response derivatives.

        Args:
            response_index: Response function index (only ``0``).
            parameter_index: Parameter block index for ``dg/dp``.
            x: State vector.
            t: Evaluation time (unused).
            params: Parameter blocks (unused).

        Returns:
            ``dg/dx = 0.5 x^T (Q + Q^T) + G`` and the explicit ``dg/dp``.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If either index is
                unknown.
        """
        del t, params
        self._check_response_index(response_index)
        quadratic_gradient = 0.5 * (x @ (self.response_hessian + self.response_hessian.T))
        dg_dx = self.response_weights + quadratic_gradient[np.newaxis, :]
        if parameter_index == INPUT_PARAMETER_BLOCK:
            dg_dp = self.response_parameter_weights
        elif parameter_index == SOURCE_PARAMETER_BLOCK:
            dg_dp = np.zeros((self.response_sizes[0], self.state_size))
        else:
            msg = f"parameter_index must be 0 or 1, got: {parameter_index}"
            raise ConfigurationError(msg)
        return ResponseGradient(dg_dx=dg_dx, dg_dp=dg_dp)

    def exact_dgdp(self, parameter_index: int = INPUT_PARAMETER_BLOCK) -> np.ndarray:
        """Return the closed-form steady-state sensitivity.

        Evaluates ``dg/dp - dg/dx A^{-1} df/dp`` at the exact steady state.

        Args:
            parameter_index: Parameter block index.

        Returns:
            Sensitivity matrix of shape ``(response_size, parameter_size)``.
        """
        params = self.get_parameters()
        x = self.steady_state(params)
        gradient = self.response_gradient(0, parameter_index, x, 0.0, params)
        df_dp = self.parameter_jacobian(parameter_index, np.zeros_like(x), x, 0.0, params)
        return gradient.dg_dp - gradient.dg_dx @ np.linalg.solve(self.state_matrix, df_dp)

    def _check_response_index(self, response_index: int) -> None:
        """Reject response indices other than ``0``.

        Args:
            response_index: Requested response function index.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the index is not
                ``0``.
        """
        if response_index != 0:
            msg = f"response_index must be 0, got: {response_index}"
            raise ConfigurationError(msg)
