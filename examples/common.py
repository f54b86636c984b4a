"""Shared helpers for pseudo-transient sensitivity example scripts."""

from __future__ import annotations

from pathlib import Path

from ptsens.integration import IntegratorConfig, build_integrator_config


def sensitivity_output_root() -> Path:
    """Return canonical output root for sensitivity examples.

    Returns:
        Path to ``examples/output``.
    """
    return Path(__file__).resolve().parent / "output"


def example_stage_config(progress_prefix: str | None = None) -> IntegratorConfig:
    """Create stage settings used by the example scripts.

    Args:
        progress_prefix: Optional stderr progress-line prefix.

    Returns:
        Backward-Euler stage settings with adaptive step growth.
    """
    return build_integrator_config(
        stepper_type="backward_euler",
        initial_time_step=0.1,
        max_time_steps=500,
        steady_state_tolerance=1e-10,
        progress_prefix=progress_prefix,
    )
