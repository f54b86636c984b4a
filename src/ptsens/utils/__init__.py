"""Utility helpers."""

from ptsens.utils.constants import SMALL_EPS, TIME_EPS
from ptsens.utils.logging import configure_logging

__all__ = ["SMALL_EPS", "TIME_EPS", "configure_logging"]
