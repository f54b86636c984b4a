"""Pseudo-transient integrator configuration dataclasses."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ptsens.utils.exceptions import ConfigurationError

DEFAULT_STEPPER_TYPE = "backward_euler"
VALID_STEPPER_TYPES = ("backward_euler", "forward_euler")
STEPPER_TYPE_ALIASES = {
    "Backward Euler": "backward_euler",
    "Forward Euler": "forward_euler",
}
DEFAULT_NEWTON_MAX_ITERATIONS = 10
DEFAULT_NEWTON_ABSOLUTE_TOLERANCE = 1e-10
DEFAULT_NEWTON_RELATIVE_TOLERANCE = 1e-8

DEFAULT_INITIAL_TIME = 0.0
DEFAULT_FINAL_TIME = 1e6
DEFAULT_INITIAL_TIME_STEP = 0.1
DEFAULT_MIN_TIME_STEP = 1e-8
DEFAULT_MAX_TIME_STEP = 1e3
DEFAULT_MAX_TIME_STEPS = 1000
DEFAULT_MAX_CONSECUTIVE_FAILURES = 10
DEFAULT_TIME_STEP_STRATEGY = "ser"
VALID_TIME_STEP_STRATEGIES = ("constant", "ser")
DEFAULT_MAX_GROWTH_FACTOR = 10.0
DEFAULT_STEP_REDUCTION_FACTOR = 0.5

DEFAULT_STEADY_STATE_TOLERANCE = 1e-10
DEFAULT_STEADY_STATE_RELATIVE = False


@dataclass(frozen=True)
class StepperConfig:
    """Single-step method and nonlinear-solve controls.

    Args:
        stepper_type: Stepper identifier (``backward_euler`` or
            ``forward_euler``).
        newton_max_iterations: Maximum Newton iterations per step.
        newton_absolute_tolerance: Absolute Newton update tolerance.
        newton_relative_tolerance: Newton update tolerance relative to the
            iterate norm.
    """

    stepper_type: str = DEFAULT_STEPPER_TYPE
    newton_max_iterations: int = DEFAULT_NEWTON_MAX_ITERATIONS
    newton_absolute_tolerance: float = DEFAULT_NEWTON_ABSOLUTE_TOLERANCE
    newton_relative_tolerance: float = DEFAULT_NEWTON_RELATIVE_TOLERANCE

    def validate(self) -> None:
        """Validate stepper settings.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If the stepper type is
                unknown or a Newton control violates its bound.
        """
        if self.stepper_type not in VALID_STEPPER_TYPES:
            msg = (
                "stepper_type must be one of "
                f"{VALID_STEPPER_TYPES}, got: {self.stepper_type!r}"
            )
            raise ConfigurationError(msg)
        if self.newton_max_iterations < 1:
            msg = "newton_max_iterations must be at least 1"
            raise ConfigurationError(msg)
        if (
            not np.isfinite(self.newton_absolute_tolerance)
            or self.newton_absolute_tolerance <= 0.0
        ):
            msg = "newton_absolute_tolerance must be a positive finite value"
            raise ConfigurationError(msg)
        if (
            not np.isfinite(self.newton_relative_tolerance)
            or self.newton_relative_tolerance < 0.0
        ):
            msg = "newton_relative_tolerance must be a non-negative finite value"
            raise ConfigurationError(msg)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> StepperConfig:
        """Build stepper settings from a parameter-list style mapping.

        Args:
            options: Mapping with optional keys ``"Stepper Type"``,
                ``"Maximum Newton Iterations"``, ``"Newton Absolute Tolerance"``
                and ``"Newton Relative Tolerance"``.

        Returns:
            Stepper settings with defaults for missing keys.
        """
        _reject_unknown_keys(options, _STEPPER_KEYS, "Stepper Settings")
        stepper_type = str(options.get("Stepper Type", DEFAULT_STEPPER_TYPE))
        return cls(
            stepper_type=STEPPER_TYPE_ALIASES.get(stepper_type, stepper_type),
            newton_max_iterations=int(
                options.get("Maximum Newton Iterations", DEFAULT_NEWTON_MAX_ITERATIONS)
            ),
            newton_absolute_tolerance=float(
                options.get("Newton Absolute Tolerance", DEFAULT_NEWTON_ABSOLUTE_TOLERANCE)
            ),
            newton_relative_tolerance=float(
                options.get("Newton Relative Tolerance", DEFAULT_NEWTON_RELATIVE_TOLERANCE)
            ),
        )


@dataclass(frozen=True)
class TimeStepControlConfig:
    """Time-window, step-size and step-budget controls.

    Args:
        initial_time: Start time used when a history is seeded without one.
        final_time: Default end time of ``advance_time()``.
        initial_time_step: First step size.
        min_time_step: Smallest admissible step size.
        max_time_step: Largest admissible step size.
        max_time_steps: Maximum number of accepted steps per run.
        max_consecutive_failures: Maximum number of rejected steps in a row.
        strategy: Step-size strategy. ``constant`` keeps the initial step;
            ``ser`` (switched evolution relaxation) grows the step with the
            ratio of successive rate norms.
        max_growth_factor: Upper bound on the step growth between two steps.
        step_reduction_factor: Step multiplier applied after a failed step.
    """

    initial_time: float = DEFAULT_INITIAL_TIME
    final_time: float = DEFAULT_FINAL_TIME
    initial_time_step: float = DEFAULT_INITIAL_TIME_STEP
    min_time_step: float = DEFAULT_MIN_TIME_STEP
    max_time_step: float = DEFAULT_MAX_TIME_STEP
    max_time_steps: int = DEFAULT_MAX_TIME_STEPS
    max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES
    strategy: str = DEFAULT_TIME_STEP_STRATEGY
    max_growth_factor: float = DEFAULT_MAX_GROWTH_FACTOR
    step_reduction_factor: float = DEFAULT_STEP_REDUCTION_FACTOR

    def validate(self) -> None:
        """Validate time-step controls.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If any control
                violates its bound or the step window is inconsistent.
        """
        if not np.isfinite(self.initial_time):
            msg = "initial_time must be finite"
            raise ConfigurationError(msg)
        if not np.isfinite(self.final_time) or self.final_time <= self.initial_time:
            msg = "final_time must be finite and greater than initial_time"
            raise ConfigurationError(msg)
        if not np.isfinite(self.min_time_step) or self.min_time_step <= 0.0:
            msg = "min_time_step must be a positive finite value"
            raise ConfigurationError(msg)
        if not np.isfinite(self.max_time_step) or self.max_time_step < self.min_time_step:
            msg = "max_time_step must be finite and not smaller than min_time_step"
            raise ConfigurationError(msg)
        if not (self.min_time_step <= self.initial_time_step <= self.max_time_step):
            msg = "initial_time_step must lie within [min_time_step, max_time_step]"
            raise ConfigurationError(msg)
        if self.max_time_steps < 1:
            msg = "max_time_steps must be at least 1"
            raise ConfigurationError(msg)
        if self.max_consecutive_failures < 0:
            msg = "max_consecutive_failures must be greater than or equal to 0"
            raise ConfigurationError(msg)
        if self.strategy not in VALID_TIME_STEP_STRATEGIES:
            msg = (
                "strategy must be one of "
                f"{VALID_TIME_STEP_STRATEGIES}, got: {self.strategy!r}"
            )
            raise ConfigurationError(msg)
        if not np.isfinite(self.max_growth_factor) or self.max_growth_factor < 1.0:
            msg = "max_growth_factor must be a finite value of at least 1"
            raise ConfigurationError(msg)
        if not (0.0 < self.step_reduction_factor < 1.0):
            msg = "step_reduction_factor must lie in the open interval (0, 1)"
            raise ConfigurationError(msg)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> TimeStepControlConfig:
        """Build time-step controls from a parameter-list style mapping.

        Args:
            options: Mapping using the keys listed in ``_TIME_STEP_CONTROL_KEYS``.

        Returns:
            Time-step controls with defaults for missing keys.
        """
        _reject_unknown_keys(options, _TIME_STEP_CONTROL_KEYS, "Time Step Control")
        defaults = cls()
        values: dict[str, Any] = {}
        for key, (attribute, cast) in _TIME_STEP_CONTROL_KEYS.items():
            values[attribute] = cast(options.get(key, getattr(defaults, attribute)))
        values["strategy"] = str(values["strategy"]).lower()
        return cls(**values)


@dataclass(frozen=True)
class IntegratorConfig:
    """Top-level settings for one pseudo-transient integration stage.

    Args:
        stepper: Single-step method and Newton controls.
        time_step_control: Time window, step size and step budget.
        steady_state_tolerance: Threshold on ``||x_dot||`` below which the run
            is considered converged. ``None`` disables steady-state detection
            and integrates to the final time.
        steady_state_relative: If ``True``, the threshold is relative to the
            rate norm of the first accepted step.
        history_storage_limit: Maximum number of retained solution states.
            ``None`` keeps all states.
        progress_prefix: Prefix of an optional stderr progress line.
            ``None`` disables progress output.
    """

    stepper: StepperConfig = field(default_factory=StepperConfig)
    time_step_control: TimeStepControlConfig = field(default_factory=TimeStepControlConfig)
    steady_state_tolerance: float | None = DEFAULT_STEADY_STATE_TOLERANCE
    steady_state_relative: bool = DEFAULT_STEADY_STATE_RELATIVE
    history_storage_limit: int | None = None
    progress_prefix: str | None = None

    def validate(self) -> None:
        """Validate integrator settings.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If nested settings or
                stage-level controls are invalid.
        """
        self.stepper.validate()
        self.time_step_control.validate()
        if self.steady_state_tolerance is not None and (
            not np.isfinite(self.steady_state_tolerance) or self.steady_state_tolerance <= 0.0
        ):
            msg = "steady_state_tolerance must be a positive finite value when provided"
            raise ConfigurationError(msg)
        if not isinstance(self.steady_state_relative, bool):
            msg = "steady_state_relative must be a boolean"
            raise ConfigurationError(msg)
        if self.history_storage_limit is not None and self.history_storage_limit < 2:
            msg = "history_storage_limit must be at least 2 when provided"
            raise ConfigurationError(msg)
        if self.progress_prefix is not None and not self.progress_prefix.strip():
            msg = "progress_prefix must be a non-empty string when provided"
            raise ConfigurationError(msg)

    @property
    def detects_steady_state(self) -> bool:
        """Return whether runs stop on the steady-state criterion.

        Returns:
            ``True`` when ``steady_state_tolerance`` is set.
        """
        return self.steady_state_tolerance is not None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> IntegratorConfig:
        """Build integrator settings from a nested parameter-list style mapping.

        Args:
            options: Mapping with optional sub-mappings ``"Stepper Settings"``
                and ``"Time Step Control"`` and optional scalar keys
                ``"Steady State Tolerance"``, ``"Relative Steady State"``,
                ``"Storage Limit"`` and ``"Progress Prefix"``.

        Returns:
            Integrator settings with defaults for missing keys.
        """
        _reject_unknown_keys(options, _INTEGRATOR_KEYS, "Integrator")
        tolerance = options.get("Steady State Tolerance", DEFAULT_STEADY_STATE_TOLERANCE)
        storage_limit = options.get("Storage Limit")
        progress_prefix = options.get("Progress Prefix")
        return cls(
            stepper=StepperConfig.from_mapping(options.get("Stepper Settings", {})),
            time_step_control=TimeStepControlConfig.from_mapping(
                options.get("Time Step Control", {})
            ),
            steady_state_tolerance=None if tolerance is None else float(tolerance),
            steady_state_relative=bool(
                options.get("Relative Steady State", DEFAULT_STEADY_STATE_RELATIVE)
            ),
            history_storage_limit=None if storage_limit is None else int(storage_limit),
            progress_prefix=None if progress_prefix is None else str(progress_prefix),
        )


_STEPPER_KEYS = {
    "Stepper Type",
    "Maximum Newton Iterations",
    "Newton Absolute Tolerance",
    "Newton Relative Tolerance",
}
_TIME_STEP_CONTROL_KEYS: dict[str, tuple[str, Any]] = {
    "Initial Time": ("initial_time", float),
    "Final Time": ("final_time", float),
    "Initial Time Step": ("initial_time_step", float),
    "Minimum Time Step": ("min_time_step", float),
    "Maximum Time Step": ("max_time_step", float),
    "Maximum Number of Time Steps": ("max_time_steps", int),
    "Maximum Number of Consecutive Stepper Failures": ("max_consecutive_failures", int),
    "Strategy": ("strategy", str),
    "Maximum Growth Factor": ("max_growth_factor", float),
    "Step Reduction Factor": ("step_reduction_factor", float),
}
_INTEGRATOR_KEYS = {
    "Stepper Settings",
    "Time Step Control",
    "Steady State Tolerance",
    "Relative Steady State",
    "Storage Limit",
    "Progress Prefix",
}


def _reject_unknown_keys(options: Mapping[str, Any], valid_keys: Any, section: str) -> None:
    """Raise on option keys that a section does not recognize.

    Args:
        options: User-supplied option mapping.
        valid_keys: Collection of recognized keys.
        section: Section name used in the error message.

    Raises:
        ptsens.utils.exceptions.ConfigurationError: If ``options`` is not a
            mapping or contains unknown keys.
    """
    if not isinstance(options, Mapping):
        msg = f"{section!r} options must be a mapping"
        raise ConfigurationError(msg)
    unknown = sorted(set(options) - set(valid_keys))
    if unknown:
        msg = f"unknown {section!r} options: {unknown}"
        raise ConfigurationError(msg)


def build_integrator_config(
    stepper_type: str = DEFAULT_STEPPER_TYPE,
    initial_time_step: float = DEFAULT_INITIAL_TIME_STEP,
    max_time_steps: int = DEFAULT_MAX_TIME_STEPS,
    steady_state_tolerance: float | None = DEFAULT_STEADY_STATE_TOLERANCE,
    strategy: str = DEFAULT_TIME_STEP_STRATEGY,
    final_time: float = DEFAULT_FINAL_TIME,
    history_storage_limit: int | None = None,
    progress_prefix: str | None = None,
) -> IntegratorConfig:
    """Build a validated integrator config with sensible numerical defaults.

    Args:
        stepper_type: Stepper identifier (``backward_euler`` or
            ``forward_euler``).
        initial_time_step: First step size.
        max_time_steps: Maximum number of accepted steps per run.
        steady_state_tolerance: Steady-state threshold on ``||x_dot||``;
            ``None`` disables steady-state detection.
        strategy: Step-size strategy (``constant`` or ``ser``).
        final_time: Default end time of ``advance_time()``.
        history_storage_limit: Optional maximum number of retained states.
        progress_prefix: Optional stderr progress-line prefix.

    Returns:
        Fully validated integrator configuration.

    Raises:
        ptsens.utils.exceptions.ConfigurationError: If assembled settings are
            inconsistent.
    """
    config = IntegratorConfig(
        stepper=StepperConfig(
            stepper_type=STEPPER_TYPE_ALIASES.get(stepper_type, stepper_type),
        ),
        time_step_control=TimeStepControlConfig(
            final_time=final_time,
            initial_time_step=initial_time_step,
            max_time_steps=max_time_steps,
            strategy=strategy,
            min_time_step=min(DEFAULT_MIN_TIME_STEP, initial_time_step),
            max_time_step=max(DEFAULT_MAX_TIME_STEP, initial_time_step),
        ),
        steady_state_tolerance=steady_state_tolerance,
        history_storage_limit=history_storage_limit,
        progress_prefix=progress_prefix,
    )
    config.validate()
    return config
