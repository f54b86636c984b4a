"""Two-stage pseudo-transient adjoint steady-state sensitivity integrator."""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Any

import numpy as np

from ptsens.integration.config import STEPPER_TYPE_ALIASES
from ptsens.integration.integrator import IntegratorBasic, Status
from ptsens.integration.solution_history import SolutionHistory
from ptsens.integration.stepper import Stepper
from ptsens.integration.time_step_control import TimeStepControl
from ptsens.sensitivity.adjoint_model import AdjointSensitivityModel
from ptsens.sensitivity.config import (
    PseudoTransientSensitivityConfig,
    build_pseudo_transient_config,
)
from ptsens.utils.exceptions import ConfigurationError, ConvergenceFailure, NotReadyError

logger = logging.getLogger(__name__)


class IntegratorStage(Enum):
    """Lifecycle of a two-stage sensitivity run."""

    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    FORWARD_READY = "forward_ready"
    FORWARD_DONE = "forward_done"
    ADJOINT_DONE = "adjoint_done"
    COMPLETE = "complete"
    FAILED = "failed"


def _read_only_copy(array: np.ndarray | None) -> np.ndarray | None:
    """Return a non-writeable copy of an optional array.

    Args:
        array: Array to copy, or ``None``.

    Returns:
        Read-only copy, or ``None``.
    """
    if array is None:
        return None
    copied = np.array(array, copy=True)
    copied.setflags(write=False)
    return copied


class PseudoTransientAdjointSensitivityIntegrator:
    """Compute steady-state sensitivities ``dg/dp`` by two pseudo-transient runs.

    The forward stage integrates ``f(x_dot, x, t, p) = 0`` until
    ``||x_dot||`` drops below its tolerance. The forward history is then
    frozen, the adjoint residual is built at the steady state ``x^s`` and
    integrated in reversed time ``tau`` from ``y = 0`` to its own steady
    state ``y^s``. The result is ``dg/dp = dg/dp|_explicit - y^{sH} df/dp``.

    The object implements the same integrator interface as
    :class:`ptsens.integration.IntegratorBasic`, so callers can use it wherever
    a single-stage integrator is expected. ``advance_time`` reports ordinary
    non-convergence through its return value; results are only available once
    :meth:`get_stage` is :attr:`IntegratorStage.COMPLETE`.

    Reported times are in the original time variable: after the adjoint stage
    :meth:`get_time` returns ``T - tau_end`` where ``T`` is the forward
    steady-state time.
    """

    def __init__(
        self,
        config: PseudoTransientSensitivityConfig | None = None,
        model: Any = None,
        adjoint_model: Any = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Two-stage configuration; may be set later.
            model: Forward residual model; may be set later.
            adjoint_model: Optional model returning the adjoint operator
                directly. Without it the forward operator is
                conjugate-transposed.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If ``config`` is
                invalid or incompatible with ``model``.
        """
        self._config: PseudoTransientSensitivityConfig | None = None
        self._model: Any = None
        self._adjoint_model: Any = None
        self._sensitivity_model: AdjointSensitivityModel | None = None
        self._forward: IntegratorBasic | None = None
        self._adjoint: IntegratorBasic | None = None
        self._stage = IntegratorStage.UNINITIALIZED
        self._status = Status.WORKING
        self._y: np.ndarray | None = None
        self._dgdp: np.ndarray | None = None
        if config is not None:
            self.set_config(config)
        if model is not None:
            self.set_model(model, adjoint_model)

    def set_config(self, config: PseudoTransientSensitivityConfig) -> None:
        """Validate and apply the two-stage configuration.

        Args:
            config: Two-stage configuration.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If ``config`` is
                invalid.
        """
        config.validate()
        self._build(config, self._model, self._adjoint_model)

    def get_config(self) -> PseudoTransientSensitivityConfig | None:
        """Return the active configuration.

        Returns:
            Two-stage configuration, or ``None`` if unset.
        """
        return self._config

    def unset_config(self) -> PseudoTransientSensitivityConfig | None:
        """Restore the default configuration.

        Returns:
            Previously active configuration.
        """
        previous = self._config
        self.set_config(self.get_valid_config())
        return previous

    def get_valid_config(self) -> PseudoTransientSensitivityConfig:
        """Return default settings listing every recognized option.

        Returns:
            Default two-stage configuration.
        """
        return PseudoTransientSensitivityConfig()

    def set_model(self, model: Any, adjoint_model: Any = None) -> None:
        """Attach the forward model and an optional explicit adjoint model.

        Args:
            model: Forward residual model.
            adjoint_model: Optional model returning the adjoint operator.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the model is
                incompatible with the configured indices. The previously
                attached model stays active in that case.
        """
        self._build(self._config, model, adjoint_model)

    def get_model(self) -> Any:
        """Return the forward model.

        Returns:
            Forward residual model, or ``None``.
        """
        return self._model

    def get_adjoint_model(self) -> Any:
        """Return the explicit adjoint model.

        Returns:
            Explicit adjoint model, or ``None`` for the transpose path.
        """
        return self._adjoint_model

    def get_sensitivity_model(self) -> AdjointSensitivityModel | None:
        """Return the adjoint sensitivity residual driven by the adjoint stage.

        Returns:
            Adjoint residual, or ``None`` before configuration.
        """
        return self._sensitivity_model

    def _build(
        self,
        config: PseudoTransientSensitivityConfig | None,
        model: Any,
        adjoint_model: Any,
    ) -> None:
        """Build the adjoint residual and both stage integrators, then commit them.

        Nothing is built until both a configuration and a model are present.
        When building fails, the previously attached configuration, models and
        stages stay in place.

        Args:
            config: Two-stage configuration, or ``None``.
            model: Forward residual model, or ``None``.
            adjoint_model: Optional explicit adjoint model.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the model is
                incompatible with the configured indices.
        """
        sensitivity_model = forward = adjoint = None
        if config is not None and model is not None:
            sensitivity_model = AdjointSensitivityModel(
                model,
                adjoint_model,
                config=config.sensitivities,
            )
            forward = IntegratorBasic(config.forward, model, name="forward")
            adjoint = IntegratorBasic(config.adjoint, sensitivity_model, name="adjoint")

        self._reset_results()
        self._config = config
        self._model = model
        self._adjoint_model = adjoint_model
        self._sensitivity_model = sensitivity_model
        self._forward = forward
        self._adjoint = adjoint
        if forward is None:
            self._stage = IntegratorStage.UNINITIALIZED
            return
        self._stage = IntegratorStage.CONFIGURED
        logger.debug(
            "Configured sensitivities of response %d with respect to parameter block %d",
            config.sensitivities.response_function_index,
            config.sensitivities.sensitivity_parameter_index,
        )

    def _reset_results(self) -> None:
        """Drop adjoint results and frozen operators of a previous run."""
        self._status = Status.WORKING
        self._y = None
        self._dgdp = None
        if self._sensitivity_model is not None:
            self._sensitivity_model.thaw()

    def _require_configured(self) -> None:
        """Ensure both stages exist.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the configuration
                or the model is missing.
        """
        if self._forward is None or self._adjoint is None:
            missing = "configuration" if self._config is None else "model"
            msg = f"pseudo-transient sensitivity integrator has no {missing}"
            raise ConfigurationError(msg)

    def initialize_solution_history(
        self,
        t0: float,
        x0: np.ndarray,
        x_dot0: np.ndarray | None = None,
        x_dot_dot0: np.ndarray | None = None,
        *,
        params: Any = None,
    ) -> None:
        """Seed the forward stage and discard results of any previous run.

        Args:
            t0: Initial forward time.
            x0: Initial forward state.
            x_dot0: Optional initial forward rate.
            x_dot_dot0: Optional initial second derivative.
            params: Parameter blocks; defaults to the model's nominal values.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the configuration
                or the model is missing.
        """
        self._require_configured()
        self._reset_results()
        self._forward.initialize_solution_history(t0, x0, x_dot0, x_dot_dot0, params=params)
        self._adjoint.get_solution_history().clear()
        self._adjoint.get_stepper().reset()
        self._stage = IntegratorStage.FORWARD_READY

    def advance_time(self, time_final: float | None = None) -> bool:
        """Run the forward stage, then the adjoint stage, then assemble ``dg/dp``.

        Args:
            time_final: Forward end time; defaults to the configured final time.
                The adjoint stage always uses its own configured final time.

        Returns:
            ``True`` if both stages reached a steady state and ``dg/dp`` is
            available.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the configuration
                or the model is missing.
            ptsens.utils.exceptions.NotReadyError: If the forward stage was
                not seeded.
        """
        self._require_configured()
        if self._stage is IntegratorStage.COMPLETE:
            return True
        if self._stage is IntegratorStage.FAILED:
            return False
        if self._stage is not IntegratorStage.FORWARD_READY:
            msg = "call initialize_solution_history before advance_time"
            raise NotReadyError(msg)

        if not self._forward.advance_time(time_final):
            return self._fail("forward stage did not reach a steady state")
        self._stage = IntegratorStage.FORWARD_DONE

        forward_history = self._forward.get_solution_history()
        forward_history.freeze()
        steady = forward_history.current_state
        self._sensitivity_model.freeze(
            steady.x,
            steady.x_dot,
            steady.time,
            self._forward.get_parameters(),
        )
        self._adjoint.set_model(self._sensitivity_model)
        try:
            self._adjoint.initialize_solution_history(
                0.0, self._sensitivity_model.initial_condition()
            )
        except ConvergenceFailure:
            return self._fail("adjoint stage could not compute a consistent initial rate")
        if not self._adjoint.advance_time():
            return self._fail("adjoint stage did not reach a steady state")
        self._stage = IntegratorStage.ADJOINT_DONE

        y = self._adjoint.get_solution_history().current_state.x
        self._y = _read_only_copy(y)
        self._dgdp = _read_only_copy(self._sensitivity_model.sensitivity(y))
        self._stage = IntegratorStage.COMPLETE
        self._status = Status.PASSED
        logger.info(
            "Sensitivities complete after %d forward and %d adjoint steps",
            self._forward.get_index(),
            self._adjoint.get_index(),
        )
        return True

    def _fail(self, reason: str) -> bool:
        """Mark the run as failed.

        Args:
            reason: Failure reason for the log.

        Returns:
            Always ``False``.
        """
        self._stage = IntegratorStage.FAILED
        self._status = Status.FAILED
        logger.warning("Pseudo-transient sensitivity run failed: %s", reason)
        return False

    def get_stage(self) -> IntegratorStage:
        """Return the lifecycle stage.

        Returns:
            Current stage.
        """
        return self._stage

    def get_status(self) -> Status:
        """Return the overall run status.

        Returns:
            :attr:`Status.PASSED` once complete, :attr:`Status.FAILED` after a
            stage failure, otherwise :attr:`Status.WORKING`.
        """
        return self._status

    def set_status(self, status: Status) -> None:
        """Override the overall run status.

        Args:
            status: New status.
        """
        self._status = status

    def get_time(self) -> float:
        """Return the current time in original time units.

        Returns:
            Forward time while the adjoint stage has not started, then
            ``T - tau`` for the latest adjoint state.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If not configured.
        """
        self._require_configured()
        if self._adjoint.get_solution_history().is_empty:
            return self._forward.get_time()
        return self._sensitivity_model.frozen_time - self._adjoint.get_time()

    def get_adjoint_time(self) -> float:
        """Return the reversed time ``tau`` of the adjoint stage.

        Returns:
            Latest adjoint time, ``0.0`` before the adjoint stage starts.
        """
        self._require_configured()
        if self._adjoint.get_solution_history().is_empty:
            return 0.0
        return self._adjoint.get_time()

    def get_index(self) -> int:
        """Return the total number of accepted steps of both stages.

        Returns:
            Forward steps plus adjoint steps.
        """
        self._require_configured()
        total = 0
        for stage in (self._forward, self._adjoint):
            if not stage.get_solution_history().is_empty:
                total += stage.get_index()
        return total

    def get_wall_time(self) -> float:
        """Return wall-clock seconds spent advancing both stages.

        Returns:
            Forward plus adjoint integrator wall time of the current run.
        """
        self._require_configured()
        return sum(self._stage_timers(stage)[0] for stage in (self._forward, self._adjoint))

    def get_stepper_wall_time(self) -> float:
        """Return wall-clock seconds spent inside the steppers of both stages.

        Returns:
            Forward plus adjoint stepper wall time of the current run.
        """
        self._require_configured()
        return sum(self._stage_timers(stage)[1] for stage in (self._forward, self._adjoint))

    def get_stepper(self) -> Stepper:
        """Return the forward stepper.

        Returns:
            Forward-stage stepper.
        """
        self._require_configured()
        return self._forward.get_stepper()

    def get_adjoint_stepper(self) -> Stepper:
        """Return the adjoint stepper.

        Returns:
            Adjoint-stage stepper.
        """
        self._require_configured()
        return self._adjoint.get_stepper()

    def get_solution_history(self) -> SolutionHistory:
        """Return the forward solution history.

        Returns:
            Forward history; frozen once the adjoint stage has started.
        """
        self._require_configured()
        return self._forward.get_solution_history()

    def get_adjoint_solution_history(self) -> SolutionHistory:
        """Return the adjoint solution history.

        Returns:
            Adjoint history in reversed time ``tau``.
        """
        self._require_configured()
        return self._adjoint.get_solution_history()

    def get_time_step_control(self) -> TimeStepControl:
        """Return the forward step-size controller.

        Returns:
            Forward-stage step-size controller.
        """
        self._require_configured()
        return self._forward.get_time_step_control()

    def get_forward_integrator(self) -> IntegratorBasic:
        """Return the forward stage integrator.

        Returns:
            Forward integrator.
        """
        self._require_configured()
        return self._forward

    def get_adjoint_integrator(self) -> IntegratorBasic:
        """Return the adjoint stage integrator.

        Returns:
            Adjoint integrator.
        """
        self._require_configured()
        return self._adjoint

    def _steady_forward_state(self) -> Any:
        """Return the forward steady state.

        Returns:
            Latest forward solution state.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the forward stage has
                not reached a steady state.
        """
        self._require_configured()
        if not self._forward.reached_steady_state:
            msg = "forward stage has not reached a steady state"
            raise NotReadyError(msg)
        return self._forward.get_solution_history().current_state

    def get_x(self) -> np.ndarray:
        """Return the forward steady state ``x^s``.

        Returns:
            Read-only copy of the steady state.
        """
        return _read_only_copy(self._steady_forward_state().x)

    def get_x_dot(self) -> np.ndarray:
        """Return the forward rate at the steady state.

        Returns:
            Read-only copy of ``x_dot``.
        """
        return _read_only_copy(self._steady_forward_state().x_dot)

    def get_x_dot_dot(self) -> np.ndarray | None:
        """Return the second derivative at the steady state, if tracked.

        Returns:
            Read-only copy of ``x_dot_dot``, or ``None`` when not tracked.
        """
        return _read_only_copy(self._steady_forward_state().x_dot_dot)

    def get_y(self) -> np.ndarray:
        """Return the adjoint steady state ``y^s``.

        Returns:
            Read-only ``(state_size, response_size)`` array.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the run is not complete.
        """
        if self._stage is not IntegratorStage.COMPLETE or self._y is None:
            msg = "adjoint solution is only available after a complete run"
            raise NotReadyError(msg)
        return self._y

    def get_dgdp(self) -> np.ndarray:
        """Return the steady-state sensitivity ``dg/dp``.

        Returns:
            Read-only ``(response_size, parameter_size)`` array.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the run is not complete.
        """
        if self._stage is not IntegratorStage.COMPLETE or self._dgdp is None:
            msg = f"dg/dp is only available after a complete run (stage: {self._stage.value})"
            raise NotReadyError(msg)
        return self._dgdp

    def description(self) -> str:
        """Return a one-line description.

        Returns:
            Stage, status and step counts.
        """
        if self._forward is None or self._adjoint is None:
            return (
                "PseudoTransientAdjointSensitivityIntegrator("
                f"stage={self._stage.value}, status={self._status.value})"
            )
        return (
            "PseudoTransientAdjointSensitivityIntegrator("
            f"stage={self._stage.value}, status={self._status.value}, "
            f"forward_steps={self._step_count(self._forward)}, "
            f"adjoint_steps={self._step_count(self._adjoint)})"
        )

    def describe(self, verbose: bool = False) -> str:
        """Return human-readable diagnostics of both stages.

        Args:
            verbose: Include stepper, step control and history descriptions.

        Returns:
            Multi-line description.
        """
        lines = [self.description()]
        if self._forward is None or self._adjoint is None:
            return "\n".join(lines)
        for label, stage in (("forward", self._forward), ("adjoint", self._adjoint)):
            nested = stage.describe(verbose).splitlines()
            lines.append(f"  {label}: {nested[0]}")
            lines.extend(f"  {line}" for line in nested[1:])
            wall_time, stepper_wall_time = self._stage_timers(stage)
            lines.append(
                f"    {label} wall time: {wall_time:.3f} s (stepper {stepper_wall_time:.3f} s)"
            )
        if self._stage is IntegratorStage.COMPLETE:
            lines.append(f"  dg/dp: {np.array2string(self._dgdp, precision=6)}")
        return "\n".join(lines)

    @staticmethod
    def _stage_timers(stage: IntegratorBasic) -> tuple[float, float]:
        """Return integrator and stepper wall time of one stage.

        Args:
            stage: Stage integrator.

        Returns:
            Pair of integrator and stepper seconds, zeros when not seeded.
        """
        if stage.get_solution_history().is_empty:
            return 0.0, 0.0
        return stage.get_wall_time(), stage.get_stepper_wall_time()

    @staticmethod
    def _step_count(stage: IntegratorBasic) -> int:
        """Return the accepted steps of one stage.

        Args:
            stage: Stage integrator.

        Returns:
            Latest step index, ``0`` when not seeded.
        """
        if stage.get_solution_history().is_empty:
            return 0
        return stage.get_index()


def pseudo_transient_adjoint_sensitivity_integrator(
    model: Any,
    adjoint_model: Any = None,
    config: PseudoTransientSensitivityConfig | None = None,
    stepper_type: str | None = None,
) -> PseudoTransientAdjointSensitivityIntegrator:
    """Build a configured two-stage sensitivity integrator.

    Args:
        model: Forward residual model.
        adjoint_model: Optional model returning the adjoint operator directly.
        config: Two-stage configuration. Defaults to
            :func:`ptsens.sensitivity.config.build_pseudo_transient_config`.
        stepper_type: Optional stepper for both stages, overriding ``config``.

    Returns:
        Integrator in :attr:`IntegratorStage.CONFIGURED`.

    Raises:
        ptsens.utils.exceptions.ConfigurationError: If the configuration is
            invalid or incompatible with ``model``.
    """
    if config is None:
        config = (
            build_pseudo_transient_config()
            if stepper_type is None
            else build_pseudo_transient_config(stepper_type=stepper_type)
        )
    elif stepper_type is not None:
        resolved = STEPPER_TYPE_ALIASES.get(stepper_type, stepper_type)
        config = replace(
            config,
            forward=replace(
                config.forward,
                stepper=replace(config.forward.stepper, stepper_type=resolved),
            ),
            adjoint=replace(
                config.adjoint,
                stepper=replace(config.adjoint.stepper, stepper_type=resolved),
            ),
        )
    return PseudoTransientAdjointSensitivityIntegrator(
        config=config,
        model=model,
        adjoint_model=adjoint_model,
    )
