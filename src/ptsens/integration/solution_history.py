"""Time-indexed storage of integrator solution states."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import numpy as np

from ptsens.utils.constants import TIME_EPS
from ptsens.utils.exceptions import ConfigurationError, NotReadyError


def _read_only(array: np.ndarray | None) -> np.ndarray | None:
    """Return a read-only copy of an optional array.

    Args:
        array: Array to copy, or ``None``.

    Returns:
        Non-writeable copy, or ``None``.
    """
    if array is None:
        return None
    copied = np.array(array, copy=True)
    copied.setflags(write=False)
    return copied


@dataclass(frozen=True)
class SolutionState:
    """One accepted snapshot of an integration run.

    Array members are stored as read-only copies.

    Args:
        time: Integration time of the snapshot.
        index: Step index (``0`` for the initial state).
        x: State array.
        x_dot: First time derivative of the state.
        x_dot_dot: Optional second time derivative of the state.
        time_step: Step size that produced this state (``0`` initially).
        newton_iterations: Newton iterations used by the producing step.
    """

    time: float
    index: int
    x: np.ndarray
    x_dot: np.ndarray
    x_dot_dot: np.ndarray | None = None
    time_step: float = 0.0
    newton_iterations: int = 0

    def __post_init__(self) -> None:
        """Store array members as read-only copies.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If ``x_dot`` (or
                ``x_dot_dot``) does not match the shape of ``x``.
        """
        object.__setattr__(self, "x", _read_only(self.x))
        object.__setattr__(self, "x_dot", _read_only(self.x_dot))
        object.__setattr__(self, "x_dot_dot", _read_only(self.x_dot_dot))
        if self.x_dot.shape != self.x.shape:
            msg = f"x_dot shape {self.x_dot.shape} does not match x shape {self.x.shape}"
            raise ConfigurationError(msg)
        if self.x_dot_dot is not None and self.x_dot_dot.shape != self.x.shape:
            msg = (
                f"x_dot_dot shape {self.x_dot_dot.shape} does not match "
                f"x shape {self.x.shape}"
            )
            raise ConfigurationError(msg)

    @property
    def rate_norm(self) -> float:
        """Return the Euclidean (Frobenius) norm of ``x_dot``.

        Returns:
            Rate-of-change norm of the snapshot.
        """
        return float(np.linalg.norm(np.ravel(self.x_dot)))


class SolutionHistory:
    """Ordered, time-indexed sequence of :class:`SolutionState` snapshots.

    The initial state is always retained. When a storage limit is set, the
    oldest non-initial states are dropped first. A frozen history rejects
    further mutation so readers can rely on its contents.
    """

    def __init__(self, name: str = "history", storage_limit: int | None = None) -> None:
        """Initialize an empty history.

        Args:
            name: Label used in descriptions and exports.
            storage_limit: Maximum number of retained states, or ``None``.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If ``storage_limit``
                is smaller than two.
        """
        if storage_limit is not None and storage_limit < 2:
            msg = "storage_limit must be at least 2 when provided"
            raise ConfigurationError(msg)
        self.name = name
        self.storage_limit = storage_limit
        self._states: list[SolutionState] = []
        self._frozen = False

    def __len__(self) -> int:
        """Return the number of retained states.

        Returns:
            Retained state count.
        """
        return len(self._states)

    def __iter__(self) -> Iterator[SolutionState]:
        """Iterate over retained states in time order.

        Returns:
            Iterator of snapshots.
        """
        return iter(tuple(self._states))

    def __getitem__(self, position: int) -> SolutionState:
        """Return a retained state by position.

        Args:
            position: Position in the retained sequence (negative allowed).

        Returns:
            Snapshot at ``position``.
        """
        return self._states[position]

    @property
    def is_frozen(self) -> bool:
        """Return whether the history rejects mutation.

        Returns:
            ``True`` after :meth:`freeze`.
        """
        return self._frozen

    @property
    def is_empty(self) -> bool:
        """Return whether no state has been stored.

        Returns:
            ``True`` if the history is empty.
        """
        return not self._states

    def freeze(self) -> None:
        """Mark the history read-only."""
        self._frozen = True

    def clear(self) -> None:
        """Remove all states and lift the read-only mark."""
        self._states.clear()
        self._frozen = False

    def add(self, state: SolutionState) -> None:
        """Append a state, enforcing time order and the storage limit.

        Args:
            state: Snapshot to append.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the history is frozen.
            ptsens.utils.exceptions.ConfigurationError: If ``state`` is not
                later than the current state.
        """
        if self._frozen:
            msg = f"solution history {self.name!r} is frozen and cannot be modified"
            raise NotReadyError(msg)
        if self._states and state.time <= self._states[-1].time - TIME_EPS:
            msg = (
                f"state time {state.time} precedes current time "
                f"{self._states[-1].time} in history {self.name!r}"
            )
            raise ConfigurationError(msg)
        self._states.append(state)
        if self.storage_limit is not None and len(self._states) > self.storage_limit:
            del self._states[1]

    @property
    def current_state(self) -> SolutionState:
        """Return the most recent state.

        Returns:
            Latest snapshot.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the history is empty.
        """
        if not self._states:
            msg = f"solution history {self.name!r} is empty"
            raise NotReadyError(msg)
        return self._states[-1]

    @property
    def initial_state(self) -> SolutionState:
        """Return the seeded initial state.

        Returns:
            First snapshot.

        Raises:
            ptsens.utils.exceptions.NotReadyError: If the history is empty.
        """
        if not self._states:
            msg = f"solution history {self.name!r} is empty"
            raise NotReadyError(msg)
        return self._states[0]

    def times(self) -> np.ndarray:
        """Return the times of all retained states.

        Returns:
            1-D array of snapshot times.
        """
        return np.array([state.time for state in self._states], dtype=float)

    def find(self, time: float) -> SolutionState | None:
        """Return the retained state at ``time`` if present.

        Args:
            time: Snapshot time to look up.

        Returns:
            Matching snapshot or ``None``.
        """
        for state in self._states:
            if abs(state.time - time) <= TIME_EPS * max(1.0, abs(time)):
                return state
        return None

    def describe(self) -> str:
        """Return a one-line human-readable summary.

        Returns:
            Summary text with state count and time range.
        """
        if not self._states:
            return f"SolutionHistory({self.name!r}, empty)"
        return (
            f"SolutionHistory({self.name!r}, states={len(self._states)}, "
            f"t=[{self._states[0].time:.6g}, {self._states[-1].time:.6g}], "
            f"index={self._states[-1].index})"
        )

    def to_dataframe(self) -> Any:
        """Return per-state scalar diagnostics as a data frame.

        Returns:
            Pandas DataFrame with one row per retained state.

        Raises:
            ptsens.utils.exceptions.ConfigurationError: If pandas is not
                installed in the active environment.
        """
        try:
            import pandas as pd  # type: ignore[import-untyped]
        except ModuleNotFoundError as exc:
            msg = (
                "SolutionHistory.to_dataframe requires pandas. "
                "Install with `pip install -e '.[pandas]'`."
            )
            raise ConfigurationError(msg) from exc

        rows = [
            {
                "history": self.name,
                "index": state.index,
                "time": state.time,
                "time_step": state.time_step,
                "newton_iterations": state.newton_iterations,
                "state_norm": float(np.linalg.norm(np.ravel(state.x))),
                "rate_norm": state.rate_norm,
            }
            for state in self._states
        ]
        return pd.DataFrame(rows)
