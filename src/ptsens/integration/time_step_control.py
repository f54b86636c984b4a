"""Step-size selection for pseudo-transient continuation."""

from __future__ import annotations

from ptsens.integration.config import TimeStepControlConfig
from ptsens.utils.constants import SMALL_EPS


class TimeStepControl:
    """Choose step sizes within the configured window and step budget.

    With the ``ser`` strategy the step grows with the ratio of successive rate
    norms, ``dt_{n+1} = dt_n * ||x_dot_{n-1}|| / ||x_dot_n||``, so the method
    approaches Newton's method as the iteration nears a steady state.
    """

    def __init__(self, config: TimeStepControlConfig | None = None) -> None:
        """Initialize step-size controls.

        Args:
            config: Time-step settings. Defaults to :class:`TimeStepControlConfig`.
        """
        self.config = config or TimeStepControlConfig()
        self.config.validate()

    def initial_step(self) -> float:
        """Return the first step size.

        Returns:
            Configured initial step.
        """
        return self.config.initial_time_step

    def next_step(
        self,
        previous_step: float,
        previous_rate_norm: float | None,
        rate_norm: float,
    ) -> float:
        """Return the step size following an accepted step.

        Args:
            previous_step: Step size of the accepted step.
            previous_rate_norm: Rate norm before the accepted step, or ``None``
                when unknown.
            rate_norm: Rate norm after the accepted step.

        Returns:
            Next step size clipped to ``[min_time_step, max_time_step]``.
        """
        if self.config.strategy == "constant" or previous_rate_norm is None:
            return self._clip(previous_step)
        growth = previous_rate_norm / max(rate_norm, SMALL_EPS)
        growth = min(max(growth, self.config.step_reduction_factor), self.config.max_growth_factor)
        return self._clip(previous_step * growth)

    def reduce(self, failed_step: float) -> float | None:
        """Return a reduced step after a failed step.

        Args:
            failed_step: Step size that failed.

        Returns:
            Reduced step, or ``None`` if it would fall below ``min_time_step``.
        """
        reduced = failed_step * self.config.step_reduction_factor
        if reduced < self.config.min_time_step:
            return None
        return reduced

    def description(self) -> str:
        """Return a short human-readable description.

        Returns:
            Strategy and step window summary.
        """
        return (
            f"TimeStepControl(strategy={self.config.strategy!r}, "
            f"dt0={self.config.initial_time_step:g}, "
            f"dt_range=[{self.config.min_time_step:g}, {self.config.max_time_step:g}], "
            f"max_steps={self.config.max_time_steps})"
        )

    def _clip(self, step: float) -> float:
        """Clip a step size to the configured window.

        Args:
            step: Candidate step size.

        Returns:
            Clipped step size.
        """
        return float(min(max(step, self.config.min_time_step), self.config.max_time_step))
