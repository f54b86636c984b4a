"""Compare adjoint, closed-form and finite-difference sensitivities of a linear system."""

from __future__ import annotations

import logging

import numpy as np
from common import example_stage_config, sensitivity_output_root

from ptsens import (
    LinearResidualModel,
    build_pseudo_transient_config,
    finite_difference_dgdp,
    pseudo_transient_adjoint_sensitivity_integrator,
)
from ptsens.utils import configure_logging


def build_example_model() -> LinearResidualModel:
    """Create a stable three-state linear model with two responses.

    Returns:
        Linear residual model with a quadratic response.
    """
    return LinearResidualModel(
        state_matrix=np.array([[3.0, -1.0, 0.0], [0.5, 2.0, -0.5], [0.0, 0.25, 1.5]]),
        input_matrix=np.array([[1.0, 0.0], [0.0, 2.0], [1.0, -1.0]]),
        input_values=np.array([1.0, 0.5]),
        mass_matrix_values=np.diag([2.0, 1.0, 0.5]),
        response_weights=np.array([[1.0, 0.0, 2.0], [0.0, -1.0, 0.5]]),
        response_hessian=np.diag([1.0, 0.5, 2.0]),
    )


def main() -> None:
    """Run the comparison and export both solution histories."""
    configure_logging(logging.INFO)
    logger = logging.getLogger("linear_system_sensitivity")

    model = build_example_model()
    config = build_pseudo_transient_config(
        forward=example_stage_config(progress_prefix="forward"),
        adjoint=example_stage_config(progress_prefix="adjoint"),
    )
    integrator = pseudo_transient_adjoint_sensitivity_integrator(model, config=config)
    integrator.initialize_solution_history(0.0, np.zeros(model.state_size))
    if not integrator.advance_time():
        logger.error("Sensitivity run failed: %s", integrator.description())
        return

    adjoint_dgdp = integrator.get_dgdp()
    exact_dgdp = model.exact_dgdp()
    reference_dgdp = finite_difference_dgdp(
        model,
        np.zeros(model.state_size),
        build_pseudo_transient_config(forward=example_stage_config()),
        step=1e-3,
    )
    logger.info("Adjoint dg/dp:\n%s", np.array2string(adjoint_dgdp, precision=8))
    logger.info(
        "Max deviation from closed form: %.3e",
        float(np.max(np.abs(adjoint_dgdp - exact_dgdp))),
    )
    logger.info(
        "Max deviation from finite differences: %.3e",
        float(np.max(np.abs(adjoint_dgdp - reference_dgdp))),
    )

    output_dir = sensitivity_output_root() / "linear_system"
    output_dir.mkdir(parents=True, exist_ok=True)
    for name, history in (
        ("forward", integrator.get_solution_history()),
        ("adjoint", integrator.get_adjoint_solution_history()),
    ):
        path = output_dir / f"{name}_history.csv"
        history.to_dataframe().to_csv(path, index=False)
        logger.info("Wrote %d %s states to %s", len(history), name, path)


if __name__ == "__main__":
    main()
