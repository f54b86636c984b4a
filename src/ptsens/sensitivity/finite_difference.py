"""Finite-difference steady-state sensitivities for cross-checking adjoints."""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from ptsens.integration.integrator import IntegratorBasic
from ptsens.sensitivity.config import PseudoTransientSensitivityConfig
from ptsens.utils.exceptions import ConfigurationError, ConvergenceFailure

logger = logging.getLogger(__name__)

DEFAULT_FINITE_DIFFERENCE_STEP = 1e-6
DEFAULT_FINITE_DIFFERENCE_SCHEME = "central"
VALID_FINITE_DIFFERENCE_SCHEMES = ("central", "forward")


def _steady_response(
    integrator: IntegratorBasic,
    model: Any,
    x0: np.ndarray,
    t0: float,
    params: tuple[np.ndarray, ...],
    response_index: int,
) -> np.ndarray:
    """Integrate to steady state and evaluate one response there.

    Args:
        integrator: Forward integrator bound to ``model``.
        model: Forward residual model.
        x0: Initial state.
        t0: Initial time.
        params: Parameter blocks of this run.
        response_index: Response function evaluated.

    Returns:
        Response vector at the steady state.

    Raises:
        ptsens.utils.exceptions.ConvergenceFailure: If the run does not reach
            a steady state.
    """
    integrator.initialize_solution_history(t0, x0, params=params)
    if not integrator.advance_time():
        msg = "forward run did not reach a steady state during finite differencing"
        raise ConvergenceFailure(msg)
    state = integrator.get_solution_history().current_state
    return np.atleast_1d(np.asarray(model.response(response_index, state.x, state.time, params)))


def finite_difference_dgdp(
    model: Any,
    x0: np.ndarray,
    config: PseudoTransientSensitivityConfig | None = None,
    *,
    step: float = DEFAULT_FINITE_DIFFERENCE_STEP,
    scheme: str = DEFAULT_FINITE_DIFFERENCE_SCHEME,
    t0: float = 0.0,
) -> np.ndarray:
    """Approximate steady-state ``dg/dp`` by perturbing parameters.

    Each entry of the selected parameter block is perturbed by a step scaled
    with its magnitude, the forward stage is rerun to steady state from
    ``x0`` and the response is differenced. This costs one or two forward
    runs per parameter entry and is meant for verifying adjoint results on
    small problems.

    Args:
        model: Forward residual model.
        x0: Initial state of every forward run.
        config: Two-stage configuration; the forward section and the
            sensitivity indices are used.
        step: Relative perturbation size.
        scheme: ``"central"`` or ``"forward"`` differences.
        t0: Initial time of every forward run.

    Returns:
        Sensitivity matrix of shape ``(response_size, parameter_size)``.

    Raises:
        ptsens.utils.exceptions.ConfigurationError: If ``step`` or ``scheme``
            is invalid.
        ptsens.utils.exceptions.ConvergenceFailure: If any forward run does
            not reach a steady state.
    """
    config = config or PseudoTransientSensitivityConfig()
    config.validate()
    if scheme not in VALID_FINITE_DIFFERENCE_SCHEMES:
        msg = (
            f"scheme must be one of: {', '.join(VALID_FINITE_DIFFERENCE_SCHEMES)}, "
            f"got: {scheme!r}"
        )
        raise ConfigurationError(msg)
    if not np.isfinite(step) or step <= 0.0:
        msg = f"step must be a positive finite float, got: {step}"
        raise ConfigurationError(msg)

    parameter_index = config.sensitivities.sensitivity_parameter_index
    response_index = config.sensitivities.response_function_index
    integrator = IntegratorBasic(config.forward, model, name="finite-difference")
    nominal = tuple(np.asarray(block, dtype=float) for block in model.get_parameters())
    block = nominal[parameter_index]
    x0 = np.asarray(x0, dtype=float)

    baseline = None
    if scheme == "forward":
        baseline = _steady_response(integrator, model, x0, t0, nominal, response_index)

    columns = []
    for entry in range(block.size):
        delta = step * max(1.0, abs(float(block.flat[entry])))

        def perturbed(sign: float, entry: int = entry, delta: float = delta) -> np.ndarray:
            """Return the steady response with one parameter entry shifted.

            Args:
                sign: Direction of the shift.
                entry: Flat index of the shifted entry.
                delta: Shift size.

            Returns:
                Response vector of the perturbed run.
            """
            shifted = block.copy()
            shifted.flat[entry] += sign * delta
            params = nominal[:parameter_index] + (shifted,) + nominal[parameter_index + 1 :]
            return _steady_response(integrator, model, x0, t0, params, response_index)

        if scheme == "central":
            column = (perturbed(1.0) - perturbed(-1.0)) / (2.0 * delta)
        else:
            column = (perturbed(1.0) - baseline) / delta
        columns.append(column)
        logger.debug("Finite-difference column %d of %d done", entry + 1, block.size)

    return np.column_stack(columns)
