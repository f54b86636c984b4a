"""Interfaces between the pseudo-transient integrators and residual models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from ptsens.utils.exceptions import ConfigurationError, DimensionMismatchError

Parameters = tuple[np.ndarray, ...]


@dataclass(frozen=True)
class ResponseGradient:
    """Derivatives of one response function at a state.

    Args:
        dg_dx: Response derivative with respect to the state, shape
            ``(response_size, state_size)``.
        dg_dp: Explicit response derivative with respect to one parameter
            block, shape ``(response_size, parameter_size)``.
    """

    dg_dx: np.ndarray
    dg_dp: np.ndarray


class ResidualModel(Protocol):
    """Protocol for implicit ODE models ``f(x_dot, x, t, p) = 0``.

    Any model can be integrated and differentiated as long as it implements
    this interface. Parameters are passed explicitly on every call so one
    model instance can be evaluated at perturbed parameter values.
    """

    state_size: int
    parameter_sizes: tuple[int, ...]
    response_sizes: tuple[int, ...]

    def get_parameters(self) -> Parameters:
        """Return nominal parameter blocks.

        Returns:
            Tuple with one 1-D array per parameter block.
        """
        ...

    def residual(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate the implicit residual.

        Args:
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Residual vector of length ``state_size``.
        """
        ...

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
        """Evaluate ``W = alpha * df/dx_dot + beta * df/dx``.

        Args:
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.
            alpha: Weight of the mass matrix ``df/dx_dot``.
            beta: Weight of the state Jacobian ``df/dx``.

        Returns:
            Dense ``(state_size, state_size)`` matrix.
        """
        ...

    def parameter_jacobian(
        self,
        parameter_index: int,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate ``df/dp`` for one parameter block.

        Args:
            parameter_index: Parameter block index.
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Dense ``(state_size, parameter_size)`` matrix.
        """
        ...

    def response(
        self,
        response_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Evaluate one response function ``g(x, p)``.

        Args:
            response_index: Response function index.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Response vector of length ``response_sizes[response_index]``.
        """
        ...

    def response_gradient(
        self,
        response_index: int,
        parameter_index: int,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> ResponseGradient:
        """Evaluate ``dg/dx`` and the explicit ``dg/dp`` of one response.

        Args:
            response_index: Response function index.
            parameter_index: Parameter block index for ``dg/dp``.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Response derivatives at the given state.
        """
        ...


class AdjointOperatorModel(Protocol):
    """Protocol for models returning the adjoint of ``W`` directly.

    The operator returned by ``jacobian`` is assumed to already be the
    adjoint and is used without transposition. Inputs match the forward
    model's inputs.
    """

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
        """Evaluate ``W^H = alpha * df/dx_dot^H + beta * df/dx^H``.

        Args:
            x_dot: Forward state time derivative.
            x: Forward state vector.
            t: Evaluation time.
            params: Parameter blocks.
            alpha: Weight of the adjoint mass matrix.
            beta: Weight of the adjoint state Jacobian.

        Returns:
            Dense ``(state_size, state_size)`` adjoint matrix.
        """
        ...


class ResidualModelBase(ABC):
    """Shared base class for residual models with size bookkeeping.

    Subclasses provide the evaluation methods of :class:`ResidualModel`;
    this base adds validation and convenience accessors used by the
    integrators and the adjoint adapter.
    """

    state_size: int
    parameter_sizes: tuple[int, ...]
    response_sizes: tuple[int, ...]

    @property
    def num_parameter_blocks(self) -> int:
        """Return the number of parameter blocks.

        Returns:
            Length of ``parameter_sizes``.
        """
        return len(self.parameter_sizes)

    @property
    def num_responses(self) -> int:
        """Return the number of response functions.

        Returns:
            Length of ``response_sizes``.
        """
        return len(self.response_sizes)

    def validate(self) -> None:
        """Validate model sizes and nominal parameter blocks.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If any declared size
                is non-positive or a parameter block has the wrong length.
        """
        if self.state_size < 1:
            msg = "state_size must be at least 1"
            raise ConfigurationError(msg)
        if any(size < 1 for size in self.parameter_sizes):
            msg = f"parameter_sizes must be positive, got: {self.parameter_sizes}"
            raise ConfigurationError(msg)
        if any(size < 1 for size in self.response_sizes):
            msg = f"response_sizes must be positive, got: {self.response_sizes}"
            raise ConfigurationError(msg)
        check_parameter_blocks(self.get_parameters(), self.parameter_sizes)

    @abstractmethod
    def get_parameters(self) -> Parameters:
        """Return nominal parameter blocks.

        Returns:
            Tuple with one 1-D array per parameter block.
        """

    @abstractmethod
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
        """Evaluate ``W = alpha * df/dx_dot + beta * df/dx``.

        Args:
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.
            alpha: Weight of the mass matrix.
            beta: Weight of the state Jacobian.

        Returns:
            Dense ``(state_size, state_size)`` matrix.
        """

    def mass_matrix(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Return ``df/dx_dot`` at the given point.

        Args:
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Dense mass matrix.
        """
        return self.jacobian(x_dot, x, t, params, alpha=1.0, beta=0.0)

    def state_jacobian(
        self,
        x_dot: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray:
        """Return ``df/dx`` at the given point.

        Args:
            x_dot: State time derivative.
            x: State vector.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Dense state Jacobian.
        """
        return self.jacobian(x_dot, x, t, params, alpha=0.0, beta=1.0)


def check_parameter_blocks(params: Sequence[np.ndarray], sizes: Sequence[int]) -> None:
    """Check parameter block count and lengths against declared sizes.

    Args:
        params: Parameter blocks to check.
        sizes: Declared length of each block.

    Raises:
        ptsens.utils.exceptions.DimensionMismatchError: If block count or
            any block length does not match.
    """
    if len(params) != len(sizes):
        msg = f"expected {len(sizes)} parameter blocks, got {len(params)}"
        raise DimensionMismatchError(msg)
    for idx, (block, size) in enumerate(zip(params, sizes)):
        if np.asarray(block).shape != (size,):
            msg = (
                f"parameter block {idx} must have shape ({size},), "
                f"got {np.asarray(block).shape}"
            )
            raise DimensionMismatchError(msg)
