"""Compute ``dg/dp`` of ``g = x^2`` at the steady state of ``x_dot = p - x``."""

from __future__ import annotations

import logging

import numpy as np
from common import example_stage_config

from ptsens import LinearResidualModel, pseudo_transient_adjoint_sensitivity_integrator
from ptsens.sensitivity import build_pseudo_transient_config
from ptsens.utils import configure_logging

PARAMETER_VALUE = 3.0


def main() -> None:
    """Run the scalar sensitivity computation and log its results."""
    configure_logging(logging.INFO)
    logger = logging.getLogger("scalar_shift_sensitivity")

    model = LinearResidualModel(
        state_matrix=1.0,
        input_matrix=1.0,
        input_values=PARAMETER_VALUE,
        response_weights=0.0,
        response_hessian=2.0,
    )
    config = build_pseudo_transient_config(forward=example_stage_config())
    integrator = pseudo_transient_adjoint_sensitivity_integrator(model, config=config)
    integrator.initialize_solution_history(0.0, np.zeros(1))
    if not integrator.advance_time():
        logger.error("Sensitivity run failed: %s", integrator.description())
        return

    logger.info("Steady state x = %.10g", float(integrator.get_x()[0]))
    logger.info("Adjoint y = %.10g", float(integrator.get_y()[0, 0]))
    logger.info(
        "dg/dp = %.10g (closed form %.10g)",
        float(integrator.get_dgdp()[0, 0]),
        float(model.exact_dgdp()[0, 0]),
    )
    logger.info("Total steps: %d", integrator.get_index())


if __name__ == "__main__":
    main()
