"""Sensitivity and two-stage integration configuration dataclasses."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from ptsens.integration.config import (
    DEFAULT_STEPPER_TYPE,
    STEPPER_TYPE_ALIASES,
    IntegratorConfig,
)
from ptsens.utils.exceptions import ConfigurationError

DEFAULT_SENSITIVITY_PARAMETER_INDEX = 0
DEFAULT_RESPONSE_FUNCTION_INDEX = 0
DEFAULT_MASS_MATRIX_IS_CONSTANT = True
DEFAULT_MASS_MATRIX_IS_IDENTITY = False

SENSITIVITIES_SECTION = "Sensitivities"
FORWARD_SECTION = "Forward Integrator"
ADJOINT_SECTION = "Adjoint Integrator"

_SENSITIVITY_KEYS = {
    "Sensitivity Parameter Index": "sensitivity_parameter_index",
    "Response Function Index": "response_function_index",
    "Mass Matrix Is Constant": "mass_matrix_is_constant",
    "Mass Matrix Is Identity": "mass_matrix_is_identity",
}


@dataclass(frozen=True)
class SensitivityConfig:
    """Options of the ``Sensitivities`` section.

    Args:
        sensitivity_parameter_index: Parameter block differentiated against.
        response_function_index: Response function differentiated.
        mass_matrix_is_constant: Whether ``df/dx_dot`` is constant. Only
            ``True`` is supported.
        mass_matrix_is_identity: Whether ``df/dx_dot`` is the identity, in
            which case mass-matrix products are skipped.
    """

    sensitivity_parameter_index: int = DEFAULT_SENSITIVITY_PARAMETER_INDEX
    response_function_index: int = DEFAULT_RESPONSE_FUNCTION_INDEX
    mass_matrix_is_constant: bool = DEFAULT_MASS_MATRIX_IS_CONSTANT
    mass_matrix_is_identity: bool = DEFAULT_MASS_MATRIX_IS_IDENTITY

    def validate(self) -> None:
        """Validate sensitivity options.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If an index is
                negative, a flag is not boolean, or the mass matrix is declared
                non-constant.
        """
        for name, value in (
            ("sensitivity_parameter_index", self.sensitivity_parameter_index),
            ("response_function_index", self.response_function_index),
        ):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                msg = f"{name} must be a non-negative integer, got: {value!r}"
                raise ConfigurationError(msg)
        for name, flag in (
            ("mass_matrix_is_constant", self.mass_matrix_is_constant),
            ("mass_matrix_is_identity", self.mass_matrix_is_identity),
        ):
            if not isinstance(flag, bool):
                msg = f"{name} must be a boolean"
                raise ConfigurationError(msg)
        if not self.mass_matrix_is_constant:
            msg = (
                "mass_matrix_is_constant=False is not supported: pseudo-transient "
                "adjoint sensitivities require a constant mass matrix"
            )
            raise ConfigurationError(msg)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> SensitivityConfig:
        """Build sensitivity options from a ``Sensitivities`` mapping.

        Args:
            options: Mapping with optional keys ``"Sensitivity Parameter
                Index"``, ``"Response Function Index"``, ``"Mass Matrix Is
                Constant"`` and ``"Mass Matrix Is Identity"``.

        Returns:
            Sensitivity options with defaults for missing keys.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If ``options`` contains
                unknown keys.
        """
        if not isinstance(options, Mapping):
            msg = f"{SENSITIVITIES_SECTION!r} options must be a mapping"
            raise ConfigurationError(msg)
        unknown = sorted(set(options) - set(_SENSITIVITY_KEYS))
        if unknown:
            msg = f"unknown {SENSITIVITIES_SECTION!r} options: {unknown}"
            raise ConfigurationError(msg)
        return cls(**{_SENSITIVITY_KEYS[key]: value for key, value in options.items()})


@dataclass(frozen=True)
class PseudoTransientSensitivityConfig:
    """Top-level configuration of the two-stage sensitivity integrator.

    The forward and adjoint stages are configured independently since they
    may use different steppers, step sizes and tolerances.

    Args:
        sensitivities: Parameter/response selection and mass-matrix flags.
        forward: Settings of the forward pseudo-transient stage.
        adjoint: Settings of the adjoint pseudo-transient stage.
    """

    sensitivities: SensitivityConfig = field(default_factory=SensitivityConfig)
    forward: IntegratorConfig = field(default_factory=IntegratorConfig)
    adjoint: IntegratorConfig = field(default_factory=IntegratorConfig)

    def validate(self) -> None:
        """Validate all sections.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If any section is
                invalid or a stage has steady-state detection disabled.
        """
        self.sensitivities.validate()
        for stage, config in (("forward", self.forward), ("adjoint", self.adjoint)):
            try:
                config.validate()
            except ConfigurationError as exc:
                msg = f"Invalid {stage} integrator settings: {exc}"
                raise ConfigurationError(msg) from exc
            if not config.detects_steady_state:
                msg = f"{stage} integrator requires a steady_state_tolerance"
                raise ConfigurationError(msg)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> PseudoTransientSensitivityConfig:
        """Build the configuration from a nested option tree.

        A missing ``"Adjoint Integrator"`` section reuses the
        ``"Forward Integrator"`` section.

        Args:
            options: Mapping with optional sections ``"Sensitivities"``,
                ``"Forward Integrator"`` and ``"Adjoint Integrator"``.

        Returns:
            Validated configuration.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If unknown sections
                are present or any section is invalid.
        """
        valid_sections = {SENSITIVITIES_SECTION, FORWARD_SECTION, ADJOINT_SECTION}
        unknown = sorted(set(options) - valid_sections)
        if unknown:
            msg = f"unknown configuration sections: {unknown}"
            raise ConfigurationError(msg)
        forward_options = options.get(FORWARD_SECTION, {})
        config = cls(
            sensitivities=SensitivityConfig.from_mapping(options.get(SENSITIVITIES_SECTION, {})),
            forward=IntegratorConfig.from_mapping(forward_options),
            adjoint=IntegratorConfig.from_mapping(options.get(ADJOINT_SECTION, forward_options)),
        )
        config.validate()
        return config


def build_pseudo_transient_config(
    stepper_type: str = DEFAULT_STEPPER_TYPE,
    sensitivity_parameter_index: int = DEFAULT_SENSITIVITY_PARAMETER_INDEX,
    response_function_index: int = DEFAULT_RESPONSE_FUNCTION_INDEX,
    mass_matrix_is_identity: bool = DEFAULT_MASS_MATRIX_IS_IDENTITY,
    forward: IntegratorConfig | None = None,
    adjoint: IntegratorConfig | None = None,
) -> PseudoTransientSensitivityConfig:
    """Build a validated two-stage configuration with sensible defaults.

    Args:
        stepper_type: Stepper used by stages that are not given explicitly.
        sensitivity_parameter_index: Parameter block differentiated against.
        response_function_index: Response function differentiated.
        mass_matrix_is_identity: Whether ``df/dx_dot`` is the identity.
        forward: Optional forward-stage settings.
        adjoint: Optional adjoint-stage settings. Defaults to the forward
            settings.

    Returns:
        Fully validated configuration.

    Raises:
        ptsens.utils.exceptions.ConfigurationError: If assembled settings are
            inconsistent.
    """
    if forward is None:
        default = IntegratorConfig()
        forward = replace(
            default,
            stepper=replace(
                default.stepper,
                stepper_type=STEPPER_TYPE_ALIASES.get(stepper_type, stepper_type),
            ),
        )
    config = PseudoTransientSensitivityConfig(
        sensitivities=SensitivityConfig(
            sensitivity_parameter_index=sensitivity_parameter_index,
            response_function_index=response_function_index,
            mass_matrix_is_identity=mass_matrix_is_identity,
        ),
        forward=forward,
        adjoint=adjoint or forward,
    )
    config.validate()
    return config
