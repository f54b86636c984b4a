"""Single-step methods for implicit ODE residual models."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import numpy as np
import scipy.linalg

from ptsens.integration.config import StepperConfig
from ptsens.model.model_api import Parameters
from ptsens.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepResult:
    """Outcome of one attempted step.

    Args:
        converged: Whether the nonlinear solve of the step converged.
        x: New state (``None`` when not converged).
        x_dot: Time derivative at the new state (``None`` when not converged).
        newton_iterations: Newton iterations spent on the step.
        message: Short reason for a failed step.
    """

    converged: bool
    x: np.ndarray | None = None
    x_dot: np.ndarray | None = None
    newton_iterations: int = 0
    message: str = ""


class _LinearSolver:
    """Dense LU solve with optional reuse of a constant factorization."""

    def __init__(self) -> None:
        """Initialize an empty factorization cache."""
        self._key: tuple[int, float, float] | None = None
        self._factorization: Any = None
        self.factorization_count = 0

    def reset(self) -> None:
        """Drop any cached factorization."""
        self._key = None
        self._factorization = None

    def solve(
        self,
        model: Any,
        matrix_factory: Any,
        alpha: float,
        beta: float,
        rhs: np.ndarray,
    ) -> np.ndarray:
        """Solve ``W dx = rhs`` for ``W = alpha * df/dx_dot + beta * df/dx``.

        Args:
            model: Model providing the matrix; a model with
                ``jacobian_is_constant = True`` has its factorization reused.
            matrix_factory: Zero-argument callable assembling ``W``.
            alpha: Mass-matrix weight of ``W``.
            beta: State-Jacobian weight of ``W``.
            rhs: Right-hand side array; columns are solved together.

        Returns:
            Solution array with the shape of ``rhs``.
        """
        key = (id(model), float(alpha), float(beta))
        reusable = bool(getattr(model, "jacobian_is_constant", False))
        if not reusable or key != self._key or self._factorization is None:
            matrix = np.asarray(matrix_factory())
            self._factorization = scipy.linalg.lu_factor(matrix, check_finite=False)
            self._key = key if reusable else None
            self.factorization_count += 1
        solution = scipy.linalg.lu_solve(self._factorization, rhs, check_finite=False)
        if not reusable:
            self._factorization = None
        return solution


class Stepper(ABC):
    """Base class for single-step methods on ``f(x_dot, x, t, p) = 0``.

    State arrays may be 1-D vectors or 2-D multivectors whose first axis is
    the state dimension; every column is advanced with the same operator.
    """

    stepper_type: str = ""

    def __init__(self, config: StepperConfig | None = None) -> None:
        """Initialize stepper settings and the linear-solve cache.

        Args:
            config: Newton controls. Defaults to :class:`StepperConfig`.
        """
        self.config = config or StepperConfig(stepper_type=self.stepper_type)
        self._linear_solver = _LinearSolver()

    @property
    def factorization_count(self) -> int:
        """Return the number of LU factorizations performed so far.

        Returns:
            Factorization counter.
        """
        return self._linear_solver.factorization_count

    def reset(self) -> None:
        """Drop cached factorizations, for example after a model change."""
        self._linear_solver.reset()

    def description(self) -> str:
        """Return a short human-readable stepper description.

        Returns:
            Stepper name with Newton controls.
        """
        return (
            f"{type(self).__name__}(newton_max_iterations="
            f"{self.config.newton_max_iterations}, "
            f"newton_absolute_tolerance={self.config.newton_absolute_tolerance:g})"
        )

    def initial_rate(
        self,
        model: Any,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> np.ndarray | None:
        """Solve ``f(x_dot, x, t) = 0`` for a consistent ``x_dot``.

        Args:
            model: Residual model.
            x: State array.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Consistent rate array, or ``None`` if the solve failed.
        """
        x_dot, _ = self._solve_rate(model, np.zeros_like(x), x, t, params)
        return x_dot

    @abstractmethod
    def take_step(
        self,
        model: Any,
        time: float,
        x: np.ndarray,
        x_dot: np.ndarray,
        time_step: float,
        params: Parameters,
    ) -> StepResult:
        """Advance one step of size ``time_step``.

        Args:
            model: Residual model.
            time: Time of the current state.
            x: Current state array.
            x_dot: Time derivative at the current state.
            time_step: Step size.
            params: Parameter blocks.

        Returns:
            Step outcome; failures are reported, never raised.
        """

    def _converged(self, update: np.ndarray, iterate: np.ndarray) -> bool:
        """Check the Newton update against absolute and relative tolerances.

        Args:
            update: Latest Newton update.
            iterate: Updated iterate.

        Returns:
            ``True`` when the update norm is below tolerance.
        """
        update_norm = float(np.linalg.norm(np.ravel(update)))
        iterate_norm = float(np.linalg.norm(np.ravel(iterate)))
        threshold = (
            self.config.newton_absolute_tolerance
            + self.config.newton_relative_tolerance * iterate_norm
        )
        return update_norm <= threshold

    def _solve_rate(
        self,
        model: Any,
        x_dot_guess: np.ndarray,
        x: np.ndarray,
        t: float,
        params: Parameters,
    ) -> tuple[np.ndarray | None, int]:
        """Newton-solve ``f(x_dot, x, t) = 0`` for ``x_dot`` at fixed ``x``.

        Args:
            model: Residual model.
            x_dot_guess: Initial Newton iterate.
            x: Fixed state array.
            t: Evaluation time.
            params: Parameter blocks.

        Returns:
            Tuple ``(x_dot, iterations)``; ``x_dot`` is ``None`` on failure.
        """
        x_dot = np.array(x_dot_guess, copy=True)
        for iteration in range(1, self.config.newton_max_iterations + 1):
            residual = np.asarray(model.residual(x_dot, x, t, params))
            update = self._linear_solver.solve(
                model,
                lambda: model.jacobian(x_dot, x, t, params, alpha=1.0, beta=0.0),
                1.0,
                0.0,
                -residual,
            )
            if not np.all(np.isfinite(update)):
                return None, iteration
            x_dot = x_dot + update
            if self._converged(update, x_dot):
                return x_dot, iteration
        return None, self.config.newton_max_iterations


class BackwardEulerStepper(Stepper):
    """Implicit Euler: ``f((x_{n+1} - x_n) / dt, x_{n+1}, t_n + dt) = 0``."""

    stepper_type = "backward_euler"

    def take_step(
        self,
        model: Any,
        time: float,
        x: np.ndarray,
        x_dot: np.ndarray,
        time_step: float,
        params: Parameters,
    ) -> StepResult:
        """Advance one implicit Euler step with Newton's method.

        The iteration matrix is ``W = (1 / dt) df/dx_dot + df/dx``.

        Args:
            model: Residual model.
            time: Time of the current state.
            x: Current state array.
            x_dot: Time derivative at the current state (unused).
            time_step: Step size.
            params: Parameter blocks.

        Returns:
            Step outcome with the new state and its backward-difference rate.
        """
        del x_dot
        alpha = 1.0 / time_step
        new_time = time + time_step
        x_new = np.array(x, copy=True)
        for iteration in range(1, self.config.newton_max_iterations + 1):
            rate = (x_new - x) * alpha
            residual = np.asarray(model.residual(rate, x_new, new_time, params))
            update = self._linear_solver.solve(
                model,
                lambda: model.jacobian(rate, x_new, new_time, params, alpha=alpha, beta=1.0),
                alpha,
                1.0,
                -residual,
            )
            if not np.all(np.isfinite(update)):
                return StepResult(
                    converged=False,
                    newton_iterations=iteration,
                    message="non-finite Newton update",
                )
            x_new = x_new + update
            if self._converged(update, x_new):
                return StepResult(
                    converged=True,
                    x=x_new,
                    x_dot=(x_new - x) * alpha,
                    newton_iterations=iteration,
                )
        return StepResult(
            converged=False,
            newton_iterations=self.config.newton_max_iterations,
            message="Newton iteration limit reached",
        )


class ForwardEulerStepper(Stepper):
    """Explicit Euler: ``x_{n+1} = x_n + dt * x_dot_n`` with ``f(x_dot_n, x_n) = 0``.

    The rate at the new state is solved immediately so it is available for the
    steady-state check and reused as the next step's rate.
    """

    stepper_type = "forward_euler"

    def take_step(
        self,
        model: Any,
        time: float,
        x: np.ndarray,
        x_dot: np.ndarray,
        time_step: float,
        params: Parameters,
    ) -> StepResult:
        """Advance one explicit Euler step.

        Args:
            model: Residual model.
            time: Time of the current state.
            x: Current state array.
            x_dot: Consistent time derivative at the current state.
            time_step: Step size.
            params: Parameter blocks.

        Returns:
            Step outcome with the new state and its consistent rate.
        """
        x_new = x + time_step * x_dot
        if not np.all(np.isfinite(x_new)):
            return StepResult(converged=False, message="non-finite state update")
        x_dot_new, iterations = self._solve_rate(
            model,
            x_dot,
            x_new,
            time + time_step,
            params,
        )
        if x_dot_new is None:
            return StepResult(
                converged=False,
                newton_iterations=iterations,
                message="rate solve did not converge",
            )
        return StepResult(converged=True, x=x_new, x_dot=x_dot_new, newton_iterations=iterations)


_STEPPER_TYPES: dict[str, type[Stepper]] = {
    BackwardEulerStepper.stepper_type: BackwardEulerStepper,
    ForwardEulerStepper.stepper_type: ForwardEulerStepper,
}


def create_stepper(config: StepperConfig) -> Stepper:
    """Create a stepper instance for a validated configuration.

    Args:
        config: Stepper settings.

    Returns:
        Stepper matching ``config.stepper_type``.

    Raises:
        ptsens.utils.exceptions.ConfigurationError: If the stepper type is
            unknown.
    """
    config.validate()
    stepper_cls = _STEPPER_TYPES.get(config.stepper_type)
    if stepper_cls is None:
        msg = f"no stepper registered for stepper_type {config.stepper_type!r}"
        raise ConfigurationError(msg)
    logger.debug("Creating %s", stepper_cls.__name__)
    return stepper_cls(config)
