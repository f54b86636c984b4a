"""Steady-state adjoint sensitivity analysis package."""

from ptsens.model import LinearResidualModel, ResidualModelBase, ResponseGradient
from ptsens.sensitivity import (
    IntegratorStage,
    PseudoTransientAdjointSensitivityIntegrator,
    PseudoTransientSensitivityConfig,
    SensitivityConfig,
    build_pseudo_transient_config,
    finite_difference_dgdp,
    pseudo_transient_adjoint_sensitivity_integrator,
)

__all__ = [
    "IntegratorStage",
    "LinearResidualModel",
    "PseudoTransientAdjointSensitivityIntegrator",
    "PseudoTransientSensitivityConfig",
    "ResidualModelBase",
    "ResponseGradient",
    "SensitivityConfig",
    "build_pseudo_transient_config",
    "finite_difference_dgdp",
    "pseudo_transient_adjoint_sensitivity_integrator",
]
