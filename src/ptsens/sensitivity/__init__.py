"""Steady-state adjoint sensitivities via pseudo-transient continuation."""

from ptsens.sensitivity.adjoint_model import AdjointSensitivityModel
from ptsens.sensitivity.config import (
    PseudoTransientSensitivityConfig,
    SensitivityConfig,
    build_pseudo_transient_config,
)
from ptsens.sensitivity.finite_difference import finite_difference_dgdp
from ptsens.sensitivity.pseudo_transient import (
    IntegratorStage,
    PseudoTransientAdjointSensitivityIntegrator,
    pseudo_transient_adjoint_sensitivity_integrator,
)

__all__ = [
    "AdjointSensitivityModel",
    "IntegratorStage",
    "PseudoTransientAdjointSensitivityIntegrator",
    "PseudoTransientSensitivityConfig",
    "SensitivityConfig",
    "build_pseudo_transient_config",
    "finite_difference_dgdp",
    "pseudo_transient_adjoint_sensitivity_integrator",
]
