"""Numerical constants shared across the package."""

SMALL_EPS = 1e-12
TIME_EPS = 1e-14
