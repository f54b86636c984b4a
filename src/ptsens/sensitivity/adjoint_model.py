"""Adjoint sensitivity residual frozen at a forward steady state."""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from ptsens.model.model_api import Parameters
from ptsens.sensitivity.config import SensitivityConfig
from ptsens.utils.exceptions import DimensionMismatchError, NotReadyError

logger = logging.getLogger(__name__)


class AdjointSensitivityModel:
    """Present the steady adjoint equation as an implicit ODE residual.

    In the reversed time ``tau = T - t`` the adjoint variables ``y`` satisfy

    ``df/dx_dot^H y_dot + df/dx^H y - dg/dx^H = 0``

    where every operator is evaluated once at the frozen forward steady state.
    ``y`` has one column per response component. Its unique steady state is
    ``y^s = df/dx^{-H} dg/dx^H`` and the sensitivity follows as
    ``dg/dp - y^H df/dp``.

    If an explicit adjoint model is given, its operator is used as the adjoint
    directly; otherwise the forward operator is conjugate-transposed.
    """

    jacobian_is_constant = True

    def __init__(
        self,
        model: Any,
        adjoint_model: Any = None,
        *,
        config: SensitivityConfig | None = None,
    ) -> None:
        """Validate the sensitivity selection against the forward model.

        Args:
            model: Forward residual model.
            adjoint_model: Optional model returning the adjoint operator.
            config: Sensitivity options. Defaults to :class:`SensitivityConfig`.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If ``config`` is
                invalid, including a non-constant mass matrix.
            ptsens.utils.exceptions.DimensionMismatchError: If the parameter
                or response index is out of range for ``model``.
        """
        config = config or SensitivityConfig()
        config.validate()
        parameter_index = config.sensitivity_parameter_index
        response_index = config.response_function_index
        if parameter_index >= len(model.parameter_sizes):
            msg = (
                f"sensitivity_parameter_index {parameter_index} is out of range for a "
                f"model with {len(model.parameter_sizes)} parameter blocks"
            )
            raise DimensionMismatchError(msg)
        if response_index >= len(model.response_sizes):
            msg = (
                f"response_function_index {response_index} is out of range for a "
                f"model with {len(model.response_sizes)} responses"
            )
            raise DimensionMismatchError(msg)

        self.model = model
        self.adjoint_model = adjoint_model
        self.config = config
        self.state_size = int(model.state_size)
        self.response_size = int(model.response_sizes[response_index])
        self.parameter_size = int(model.parameter_sizes[parameter_index])
        self._frozen = False
        self._frozen_time = 0.0
        self._frozen_params: Parameters = ()
        self._mass_adjoint: np.ndarray | None = None
        self._jacobian_adjoint: np.ndarray | None = None
        self._dg_dx_adjoint: np.ndarray | None = None
        self._dg_dp: np.ndarray | None = None
        self._df_dp: np.ndarray | None = None

    @property
    def state_shape(self) -> tuple[int, int]:
        """Return the shape of the adjoint multivector ``y``.

        Returns:
            ``(state_size, response_size)``.
        """
        return (self.state_size, self.response_size)

    @property
    def is_frozen(self) -> bool:
        """Return whether frozen operators are available.

        Returns:
            ``True`` between :meth:`freeze` and :meth:`thaw`.
        """
        return self._frozen

    @property
    def frozen_time(self) -> float:
        """Return the forward time ``T`` of the frozen state.

        Returns:
            Frozen forward time.
        """
        self._require_frozen()
        return self._frozen_time

    def freeze(
        self,
        x: np.ndarray,
        x_dot: np.ndarray | None,
        t: float,
        params: Parameters,
    ) -> None:
        """Evaluate and cache every operator at the forward steady state.

        Args:
            x: Forward steady state.
            x_dot: Forward rate at the steady state; ``None`` means zero.
            t: Forward time ``T`` of the steady state.
            params: Parameter blocks of the forward run.

        Raises:
            ptsens.utils.exceptions.DimensionMismatchError: If any evaluated
                operator has an unexpected shape.
        """
        x = np.asarray(x)
        x_dot = np.zeros_like(x) if x_dot is None else np.asarray(x_dot)
        params = tuple(params)
        parameter_index = self.config.sensitivity_parameter_index
        response_index = self.config.response_function_index
        n, k, m = self.state_size, self.response_size, self.parameter_size

        if self.adjoint_model is not None:
            jacobian_adjoint = np.asarray(
                self.adjoint_model.jacobian(x_dot, x, t, params, alpha=0.0, beta=1.0)
            )
        else:
            jacobian_adjoint = np.asarray(
                self.model.jacobian(x_dot, x, t, params, alpha=0.0, beta=1.0)
            ).conj().T
        mass_adjoint = None
        if not self.config.mass_matrix_is_identity:
            if self.adjoint_model is not None:
                mass_adjoint = np.asarray(
                    self.adjoint_model.jacobian(x_dot, x, t, params, alpha=1.0, beta=0.0)
                )
            else:
                mass_adjoint = np.asarray(
                    self.model.jacobian(x_dot, x, t, params, alpha=1.0, beta=0.0)
                ).conj().T

        gradient = self.model.response_gradient(response_index, parameter_index, x, t, params)
        dg_dx = np.atleast_2d(np.asarray(gradient.dg_dx))
        dg_dp = np.atleast_2d(np.asarray(gradient.dg_dp))
        df_dp = np.asarray(self.model.parameter_jacobian(parameter_index, x_dot, x, t, params))
        if df_dp.ndim == 1:
            df_dp = df_dp[:, np.newaxis]

        for name, value, shape in (
            ("adjoint Jacobian", jacobian_adjoint, (n, n)),
            ("adjoint mass matrix", mass_adjoint, (n, n)),
            ("dg/dx", dg_dx, (k, n)),
            ("dg/dp", dg_dp, (k, m)),
            ("df/dp", df_dp, (n, m)),
        ):
            if value is not None and value.shape != shape:
                msg = f"{name} must have shape {shape}, got {value.shape}"
                raise DimensionMismatchError(msg)

        self._jacobian_adjoint = jacobian_adjoint
        self._mass_adjoint = mass_adjoint
        self._dg_dx_adjoint = dg_dx.conj().T
        self._dg_dp = dg_dp
        self._df_dp = df_dp
        self._frozen_time = float(t)
        self._frozen_params = params
        self._frozen = True
        logger.debug(
            "Froze adjoint operators at t=%g (state_size=%d, responses=%d, parameters=%d)",
            self._frozen_time,
            n,
            k,
            m,
        )

    def thaw(self) -> None:
        """Discard the frozen operators."""
        self._frozen = False
        self._frozen_params = ()
        self._mass_adjoint = None
        self._jacobian_adjoint = None
        self._dg_dx_adjoint = None
        self._dg_dp = None
        self._df_dp = None

    def get_parameters(self) -> Parameters:
        """Return the parameter blocks of the frozen forward run.

        Returns:
            Frozen parameter blocks.
        """
        self._require_frozen()
        return self._frozen_params

    def initial_condition(self) -> np.ndarray:
        """Return the adjoint initial condition ``y(0) = 0``.

        Returns:
            Zero multivector of shape :attr:`state_shape`.
        """
        self._require_frozen()
        dtype = np.result_type(self._jacobian_adjoint, self._dg_dx_adjoint)
        return np.zeros(self.state_shape, dtype=dtype)

    def residual(
        self,
        y_dot: np.ndarray,
        y: np.ndarray,
        tau: float,
        params: Parameters | None = None,
    ) -> np.ndarray:
        """Evaluate ``df/dx_dot^H y_dot + df/dx^H y - dg/dx^H``.

        Args:
            y_dot: Adjoint rate in reversed time.
            y: Adjoint multivector.
            tau: Reversed time (unused; the operators are frozen).
            params: Ignored; the frozen parameters are used.

        Returns:
            Residual multivector with the shape of ``y``.
        """
        del tau, params
        self._require_frozen()
        mass_term = y_dot if self._mass_adjoint is None else self._mass_adjoint @ y_dot
        return mass_term + self._jacobian_adjoint @ y - self._dg_dx_adjoint

    def jacobian(
        self,
        y_dot: np.ndarray,
        y: np.ndarray,
        tau: float,
        params: Parameters | None = None,
        *,
        alpha: float,
        beta: float,
    ) -> np.ndarray:
        """Evaluate ``alpha * df/dx_dot^H + beta * df/dx^H``.

        The adjoint equation is linear in ``y``, so this matrix does not
        change across adjoint steps.

        Args:
            y_dot: Adjoint rate (unused).
            y: Adjoint multivector (unused).
            tau: Reversed time (unused).
            params: Ignored.
            alpha: Mass-matrix weight.
            beta: Jacobian weight.

        Returns:
            Dense ``(state_size, state_size)`` matrix applied per column.
        """
        del y_dot, y, tau, params
        self._require_frozen()
        if self._mass_adjoint is None:
            mass = np.eye(self.state_size, dtype=self._jacobian_adjoint.dtype)
        else:
            mass = self._mass_adjoint
        return alpha * mass + beta * self._jacobian_adjoint

    def sensitivity(self, y: np.ndarray) -> np.ndarray:
        """Combine an adjoint steady state into ``dg/dp - y^H df/dp``.

        Args:
            y: Adjoint steady state of shape :attr:`state_shape`.

        Returns:
            Sensitivity matrix of shape ``(response_size, parameter_size)``.

        Raises:
            ptsens.utils.exceptions.DimensionMismatchError: If ``y`` has the
                wrong shape.
        """
        self._require_frozen()
        y = np.asarray(y)
        if y.shape != self.state_shape:
            msg = f"y must have shape {self.state_shape}, got {y.shape}"
            raise DimensionMismatchError(msg)
        return self._dg_dp - y.conj().T @ self._df_dp

    def _require_frozen(self) -> None:
        """Fail loudly when operators are requested before freezing.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If no state is frozen.
        """
        if not self._frozen:
            msg = "adjoint sensitivity model has no frozen forward state"
            raise NotReadyError(msg)
