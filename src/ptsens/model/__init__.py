"""Residual-model interfaces and reference models."""

from ptsens.model.linear import LinearResidualModel
from ptsens.model.model_api import (
    AdjointOperatorModel,
    Parameters,
    ResidualModel,
    ResidualModelBase,
    ResponseGradient,
    check_parameter_blocks,
)

__all__ = [
    "AdjointOperatorModel",
    "LinearResidualModel",
    "Parameters",
    "ResidualModel",
    "ResidualModelBase",
    "ResponseGradient",
    "check_parameter_blocks",
]
