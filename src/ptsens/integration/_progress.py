"""Progress-line helpers for long pseudo-transient runs."""

from __future__ import annotations

import sys

import numpy as np

DEFAULT_PROGRESS_BAR_WIDTH = 30
DEFAULT_STEP_PROGRESS_FRACTION_STEP = 0.10


def render_progress_line(
    *,
    prefix: str,
    fraction: float,
    suffix: str,
    final: bool = False,
    bar_width: int = DEFAULT_PROGRESS_BAR_WIDTH,
) -> None:
    """Render one in-place text progress line to stderr.

    Args:
        prefix: Prefix shown before the progress bar.
        fraction: Progress fraction in ``[0, 1]``.
        suffix: Additional text shown after the percentage.
        final: If ``True``, end the line with a newline.
        bar_width: Number of characters used by the progress bar.
    """
    clamped = float(np.clip(fraction, 0.0, 1.0))
    filled = int(clamped * bar_width)
    bar = "#" * filled + "-" * (bar_width - filled)
    print(
        f"\r{prefix} [{bar}] {100.0 * clamped:5.1f}% {suffix}",
        end="\n" if final else "",
        file=sys.stderr,
        flush=True,
    )


def steady_state_fraction(rate_norm: float, initial_rate_norm: float, tolerance: float) -> float:
    """Map a rate norm to a log-scale completion fraction.

    Progress is measured as the fraction of decades travelled from the
    initial rate norm down to the steady-state tolerance.

    Args:
        rate_norm: Current rate norm.
        initial_rate_norm: Rate norm of the first accepted step.
        tolerance: Absolute steady-state threshold.

    Returns:
        Completion fraction in ``[0, 1]``.
    """
    if initial_rate_norm <= tolerance or rate_norm <= tolerance:
        return 1.0
    total = np.log10(initial_rate_norm) - np.log10(tolerance)
    travelled = np.log10(initial_rate_norm) - np.log10(max(rate_norm, tolerance))
    return float(np.clip(travelled / total, 0.0, 1.0))


def maybe_emit_step_progress(
    *,
    progress_prefix: str | None,
    fraction: float,
    step_index: int,
    next_fraction_threshold: float,
    final: bool = False,
    fraction_step: float = DEFAULT_STEP_PROGRESS_FRACTION_STEP,
    bar_width: int = DEFAULT_PROGRESS_BAR_WIDTH,
) -> float:
    """Emit throttled progress updates for integration loops.

    Args:
        progress_prefix: Prefix for progress output; ``None`` disables output.
        fraction: Current completion fraction.
        step_index: Index of the latest accepted step.
        next_fraction_threshold: Next completion fraction that should trigger
            progress output.
        final: If ``True``, always emit and terminate the line.
        fraction_step: Step used to advance ``next_fraction_threshold``.
        bar_width: Number of characters used by the progress bar.

    Returns:
        Updated threshold for the next progress emission.
    """
    if progress_prefix is None:
        return next_fraction_threshold
    if fraction < next_fraction_threshold and not final:
        return next_fraction_threshold

    render_progress_line(
        prefix=progress_prefix,
        fraction=fraction,
        suffix=f"step {step_index}",
        final=final,
        bar_width=bar_width,
    )

    threshold = next_fraction_threshold
    while threshold <= fraction:
        threshold += fraction_step
    return threshold
