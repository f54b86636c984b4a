"""Generic pseudo-transient integrator and the integrator capability."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Protocol

import numpy as np

from ptsens.integration._progress import maybe_emit_step_progress, steady_state_fraction
from ptsens.integration.config import IntegratorConfig
from ptsens.integration.solution_history import SolutionHistory, SolutionState
from ptsens.integration.stepper import ForwardEulerStepper, Stepper, create_stepper
from ptsens.integration.time_step_control import TimeStepControl
from ptsens.model.model_api import Parameters, check_parameter_blocks
from ptsens.utils.constants import TIME_EPS
from ptsens.utils.exceptions import (
    ConfigurationError,
    ConvergenceFailure,
    DimensionMismatchError,
    NotReadyError,
)

logger = logging.getLogger(__name__)


class Status(Enum):
    """Run status reported by integrators."""

    WORKING = "working"
    PASSED = "passed"
    FAILED = "failed"


class Integrator(Protocol):
    """Capability shared by every integrator, single- or multi-stage."""

    def initialize_solution_history(
        self,
        t0: float,
        x0: np.ndarray,
        x_dot0: np.ndarray | None = None,
        x_dot_dot0: np.ndarray | None = None,
    ) -> None:
        """Seed the initial condition.

        Args:
            t0: Initial time.
            x0: Initial state.
            x_dot0: Optional initial time derivative.
            x_dot_dot0: Optional initial second time derivative.
        """
        ...

    def advance_time(self, time_final: float | None = None) -> bool:
        """Integrate until completion.

        Args:
            time_final: End time; defaults to the configured final time.

        Returns:
            ``True`` if the run passed.
        """
        ...

    def get_time(self) -> float:
        """Return the current time.

        Returns:
            Current time.
        """
        ...

    def get_index(self) -> int:
        """Return the current step index.

        Returns:
            Current step index.
        """
        ...

    def get_status(self) -> Status:
        """Return the run status.

        Returns:
            Current status.
        """
        ...

    def set_status(self, status: Status) -> None:
        """Override the run status.

        Args:
            status: New status.
        """
        ...

    def get_stepper(self) -> Stepper:
        """Return the stepper.

        Returns:
            Stepper instance.
        """
        ...

    def get_solution_history(self) -> SolutionHistory:
        """Return the solution history.

        Returns:
            Solution history.
        """
        ...

    def get_time_step_control(self) -> TimeStepControl:
        """Return the step-size controller.

        Returns:
            Step-size controller.
        """
        ...

    def describe(self, verbose: bool = False) -> str:
        """Return human-readable diagnostics.

        Args:
            verbose: Include nested component descriptions.

        Returns:
            Multi-line description.
        """
        ...


class ConfigAcceptor(Protocol):
    """Capability of objects configured through a validated settings object."""

    def set_config(self, config: Any) -> None:
        """Validate and apply settings.

        Args:
            config: Settings object.
        """
        ...

    def get_config(self) -> Any:
        """Return the active settings.

        Returns:
            Settings object.
        """
        ...

    def unset_config(self) -> Any:
        """Restore default settings.

        Returns:
            Previously active settings.
        """
        ...

    def get_valid_config(self) -> Any:
        """Return default settings listing every recognized option.

        Returns:
            Default settings object.
        """
        ...


class IntegratorBasic:
    """Drive a residual model in pseudo-time until it reaches a steady state.

    The run stops with :attr:`Status.PASSED` as soon as an accepted state
    satisfies ``||x_dot|| <= steady_state_tolerance``. If steady-state
    detection is enabled and the final time or the step budget is exhausted
    first, the run ends with :attr:`Status.FAILED`. With detection disabled,
    reaching the final time passes.
    """

    def __init__(
        self,
        config: IntegratorConfig | None = None,
        model: Any = None,
        name: str = "integrator",
    ) -> None:
        """Initialize integrator components.

        Args:
            config: Stage settings. Defaults to :class:`IntegratorConfig`.
            model: Residual model to integrate; may be set later.
            name: Label used for logging and the solution history.
        """
        self.name = name
        self._config = IntegratorConfig()
        self._model: Any = None
        self._params: Parameters = ()
        self._status = Status.WORKING
        self._steady = False
        self._reference_rate_norm: float | None = None
        self._next_time_step: float | None = None
        self._wall_time = 0.0
        self._stepper_wall_time = 0.0
        self._history = SolutionHistory(name=name)
        self._stepper: Stepper = create_stepper(self._config.stepper)
        self._time_step_control = TimeStepControl(self._config.time_step_control)
        self.set_config(config or IntegratorConfig())
        if model is not None:
            self.set_model(model)

    def set_config(self, config: IntegratorConfig) -> None:
        """Validate settings and rebuild the stepper and step controller.

        Args:
            config: Stage settings.
        """
        config.validate()
        self._config = config
        self._stepper = create_stepper(config.stepper)
        self._time_step_control = TimeStepControl(config.time_step_control)
        self._history.storage_limit = config.history_storage_limit
        self._next_time_step = None

    def get_config(self) -> IntegratorConfig:
        """Return the active settings.

        Returns:
            Stage settings.
        """
        return self._config

    def unset_config(self) -> IntegratorConfig:
        """Restore default settings.

        Returns:
            Previously active settings.
        """
        previous = self._config
        self.set_config(IntegratorConfig())
        return previous

    def get_valid_config(self) -> IntegratorConfig:
        """Return default settings listing every recognized option.

        Returns:
            Default stage settings.
        """
        return IntegratorConfig()

    def set_model(self, model: Any) -> None:
        """Attach the residual model to integrate.

        Args:
            model: Residual model.
        """
        validate = getattr(model, "validate", None)
        if callable(validate):
            validate()
        self._model = model
        self._stepper.reset()

    def get_model(self) -> Any:
        """Return the attached residual model.

        Returns:
            Residual model, or ``None``.
        """
        return self._model

    def set_stepper(self, stepper: Stepper) -> None:
        """Replace the stepper built from the settings.

        Args:
            stepper: Stepper instance.
        """
        self._stepper = stepper

    def get_parameters(self) -> Parameters:
        """Return the parameter blocks used for evaluation.

        Returns:
            Parameter blocks of the seeded run.
        """
        return self._params

    def initialize_solution_history(
        self,
        t0: float,
        x0: np.ndarray,
        x_dot0: np.ndarray | None = None,
        x_dot_dot0: np.ndarray | None = None,
        *,
        params: Parameters | None = None,
    ) -> None:
        """Clear the history and seed it with the initial condition.

        When ``x_dot0`` is omitted, explicit steppers solve for a consistent
        initial rate and implicit steppers start from a zero rate.

        Args:
            t0: Initial time.
            x0: Initial state; its first axis must equal the model state size.
            x_dot0: Optional initial time derivative.
            x_dot_dot0: Optional initial second time derivative.
            params: Parameter blocks; defaults to the model's nominal values.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If no model is set.
            ptsens.utils.exceptions.DimensionMismatchError: If ``x0`` does not
                match the model state size.
            ptsens.utils.exceptions.ConvergenceFailure: If an explicit stepper
                cannot compute a consistent initial rate.
        """
        if self._model is None:
            msg = f"integrator {self.name!r} has no model"
            raise ConfigurationError(msg)
        x0 = np.asarray(x0)
        state_size = int(self._model.state_size)
        if x0.ndim == 0 or x0.shape[0] != state_size:
            msg = f"x0 must have leading dimension {state_size}, got shape {x0.shape}"
            raise DimensionMismatchError(msg)
        if params is None:
            params = tuple(self._model.get_parameters())
        else:
            params = tuple(np.asarray(block) for block in params)
            check_parameter_blocks(params, self._model.parameter_sizes)
        self._params = params

        if x_dot0 is None:
            if isinstance(self._stepper, ForwardEulerStepper):
                x_dot0 = self._stepper.initial_rate(self._model, x0, t0, params)
                if x_dot0 is None:
                    msg = (
                        f"integrator {self.name!r} could not solve for a consistent "
                        "initial rate"
                    )
                    raise ConvergenceFailure(msg)
            else:
                x_dot0 = np.zeros_like(x0)

        self._history.clear()
        self._history.add(
            SolutionState(
                time=float(t0),
                index=0,
                x=x0,
                x_dot=np.asarray(x_dot0),
                x_dot_dot=None if x_dot_dot0 is None else np.asarray(x_dot_dot0),
            )
        )
        self._status = Status.WORKING
        self._steady = False
        self._reference_rate_norm = None
        self._next_time_step = None
        self._wall_time = 0.0
        self._stepper_wall_time = 0.0
        self._stepper.reset()

    def advance_time(self, time_final: float | None = None) -> bool:
        """Integrate until steady state, the final time, or the step budget.

        Args:
            time_final: End time; defaults to the configured final time.

        Returns:
            ``True`` if the run passed.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the history was not
                seeded or is frozen.
        """
        if self._history.is_empty:
            msg = f"integrator {self.name!r} has no initial condition"
            raise NotReadyError(msg)
        if self._history.is_frozen:
            msg = f"solution history of integrator {self.name!r} is frozen"
            raise NotReadyError(msg)
        if self._steady and self._config.detects_steady_state:
            return True

        started = time.perf_counter()
        controls = self._config.time_step_control
        final_time = controls.final_time if time_final is None else float(time_final)
        time_eps = TIME_EPS * max(1.0, abs(final_time))
        current = self._history.current_state
        time_step = self._next_time_step or self._time_step_control.initial_step()
        previous_rate = current.rate_norm if current.index > 0 else None
        accepted = 0
        consecutive_failures = 0
        progress_threshold = 0.0
        reason = ""
        self._status = Status.WORKING

        while True:
            if current.time >= final_time - time_eps:
                reason = f"reached final time {final_time:g}"
                self._status = (
                    Status.FAILED if self._config.detects_steady_state else Status.PASSED
                )
                break
            if accepted >= controls.max_time_steps:
                reason = f"exhausted {controls.max_time_steps} time steps"
                self._status = Status.FAILED
                break

            attempted = min(time_step, final_time - current.time)
            step_started = time.perf_counter()
            result = self._stepper.take_step(
                self._model,
                current.time,
                current.x,
                current.x_dot,
                attempted,
                self._params,
            )
            self._stepper_wall_time += time.perf_counter() - step_started
            if not result.converged:
                consecutive_failures += 1
                logger.debug(
                    "%s: step failed at t=%g with dt=%g (%s)",
                    self.name,
                    current.time,
                    attempted,
                    result.message,
                )
                reduced = self._time_step_control.reduce(attempted)
                if reduced is None or consecutive_failures > controls.max_consecutive_failures:
                    reason = f"step failed at t={current.time:g}: {result.message}"
                    self._status = Status.FAILED
                    break
                time_step = reduced
                continue

            consecutive_failures = 0
            current = SolutionState(
                time=current.time + attempted,
                index=current.index + 1,
                x=result.x,
                x_dot=result.x_dot,
                time_step=attempted,
                newton_iterations=result.newton_iterations,
            )
            self._history.add(current)
            accepted += 1
            rate = current.rate_norm
            if not np.isfinite(rate):
                reason = f"non-finite rate at t={current.time:g}"
                self._status = Status.FAILED
                break
            if self._reference_rate_norm is None:
                self._reference_rate_norm = rate
            logger.debug(
                "%s: step %d t=%g dt=%g ||x_dot||=%.3e",
                self.name,
                current.index,
                current.time,
                attempted,
                rate,
            )

            threshold = self._steady_state_threshold()
            if threshold is not None:
                progress_threshold = maybe_emit_step_progress(
                    progress_prefix=self._config.progress_prefix,
                    fraction=steady_state_fraction(rate, self._reference_rate_norm, threshold),
                    step_index=current.index,
                    next_fraction_threshold=progress_threshold,
                )
                if rate <= threshold:
                    reason = f"steady state with ||x_dot||={rate:.3e}"
                    self._steady = True
                    self._status = Status.PASSED
                    break

            time_step = self._time_step_control.next_step(time_step, previous_rate, rate)
            previous_rate = rate

        self._next_time_step = time_step
        self._wall_time += time.perf_counter() - started
        if self._status is Status.PASSED and self._config.progress_prefix is not None:
            maybe_emit_step_progress(
                progress_prefix=self._config.progress_prefix,
                fraction=1.0,
                step_index=current.index,
                next_fraction_threshold=progress_threshold,
                final=True,
            )
        log = logger.info if self._status is Status.PASSED else logger.warning
        log(
            "%s %s after %d steps at t=%g: %s",
            self.name,
            self._status.value,
            accepted,
            current.time,
            reason,
        )
        return self._status is Status.PASSED

    def _steady_state_threshold(self) -> float | None:
        """Return the absolute steady-state threshold of the current run.

        Returns:
            Threshold on ``||x_dot||``, or ``None`` when detection is off.
        """
        tolerance = self._config.steady_state_tolerance
        if tolerance is None:
            return None
        if self._config.steady_state_relative and self._reference_rate_norm is not None:
            return tolerance * self._reference_rate_norm
        return tolerance

    @property
    def reached_steady_state(self) -> bool:
        """Return whether the last run stopped on the steady-state criterion.

        Returns:
            ``True`` after a steady-state stop.
        """
        return self._steady

    def rate_norm(self) -> float:
        """Return ``||x_dot||`` of the current state.

        Returns:
            Rate norm of the latest state.
        """
        return self._history.current_state.rate_norm

    def get_wall_time(self) -> float:
        """Return wall-clock seconds spent in ``advance_time`` since seeding.

        Returns:
            Accumulated integrator wall time.
        """
        return self._wall_time

    def get_stepper_wall_time(self) -> float:
        """Return wall-clock seconds spent inside stepper calls since seeding.

        Returns:
            Accumulated stepper wall time, failed attempts included.
        """
        return self._stepper_wall_time

    def get_time(self) -> float:
        """Return the current time.

        Returns:
            Time of the latest state.
        """
        return self._history.current_state.time

    def get_index(self) -> int:
        """Return the current step index.

        Returns:
            Index of the latest state.
        """
        return self._history.current_state.index

    def get_status(self) -> Status:
        """Return the run status.

        Returns:
            Current status.
        """
        return self._status

    def set_status(self, status: Status) -> None:
        """Override the run status.

        Args:
            status: New status.
        """
        self._status = status

    def get_stepper(self) -> Stepper:
        """Return the stepper.

        Returns:
            Stepper instance.
        """
        return self._stepper

    def get_solution_history(self) -> SolutionHistory:
        """Return the solution history.

        Returns:
            Solution history owned by this integrator.
        """
        return self._history

    def get_time_step_control(self) -> TimeStepControl:
        """Return the step-size controller.

        Returns:
            Step-size controller.
        """
        return self._time_step_control

    def description(self) -> str:
        """Return a one-line description.

        Returns:
            Integrator name, status and current position.
        """
        if self._history.is_empty:
            return f"IntegratorBasic({self.name!r}, status={self._status.value}, uninitialized)"
        return (
            f"IntegratorBasic({self.name!r}, status={self._status.value}, "
            f"t={self.get_time():.6g}, index={self.get_index()}, "
            f"||x_dot||={self.rate_norm():.3e})"
        )

    def describe(self, verbose: bool = False) -> str:
        """Return human-readable diagnostics.

        Args:
            verbose: Include stepper, step control and history descriptions.

        Returns:
            Multi-line description.
        """
        lines = [self.description()]
        if verbose:
            lines.extend(
                [
                    f"  stepper: {self._stepper.description()}",
                    f"  time step control: {self._time_step_control.description()}",
                    f"  history: {self._history.describe()}",
                    f"  wall time: {self._wall_time:.3f} s "
                    f"(stepper {self._stepper_wall_time:.3f} s)",
                ]
            )
        return "\n".join(lines)
