"""Generic pseudo-transient integration components."""

from ptsens.integration.config import (
    IntegratorConfig,
    StepperConfig,
    TimeStepControlConfig,
    build_integrator_config,
)
from ptsens.integration.integrator import ConfigAcceptor, Integrator, IntegratorBasic, Status
from ptsens.integration.solution_history import SolutionHistory, SolutionState
from ptsens.integration.stepper import (
    BackwardEulerStepper,
    ForwardEulerStepper,
    Stepper,
    StepResult,
    create_stepper,
)
from ptsens.integration.time_step_control import TimeStepControl

__all__ = [
    "BackwardEulerStepper",
    "ConfigAcceptor",
    "ForwardEulerStepper",
    "Integrator",
    "IntegratorBasic",
    "IntegratorConfig",
    "SolutionHistory",
    "SolutionState",
    "Status",
    "StepResult",
    "Stepper",
    "StepperConfig",
    "TimeStepControl",
    "TimeStepControlConfig",
    "build_integrator_config",
    "create_stepper",
]
