"""Tests for package export resolution."""

from __future__ import annotations

import importlib
import unittest

import ptsens
import ptsens.integration as integration_pkg
import ptsens.model as model_pkg
import ptsens.sensitivity as sensitivity_pkg
import ptsens.utils as utils_pkg


class PackageExportTests(unittest.TestCase):
    """Validate that every name in ``__all__`` resolves."""

    def test_all_exports_resolve(self) -> None:
        """Resolve each declared export of every package."""
        for package in (ptsens, integration_pkg, model_pkg, sensitivity_pkg, utils_pkg):
            for name in package.__all__:
                with self.subTest(package=package.__name__, name=name):
                    self.assertIsNotNone(getattr(package, name))

    def test_top_level_reexports_are_identical(self) -> None:
        """Re-export the same objects from the top-level package."""
        self.assertIs(
            ptsens.PseudoTransientAdjointSensitivityIntegrator,
            sensitivity_pkg.PseudoTransientAdjointSensitivityIntegrator,
        )
        self.assertIs(ptsens.LinearResidualModel, model_pkg.LinearResidualModel)
        self.assertIs(ptsens.finite_difference_dgdp, sensitivity_pkg.finite_difference_dgdp)

    def test_submodules_import(self) -> None:
        """Import every public submodule directly."""
        for name in (
            "ptsens.integration.config",
            "ptsens.integration.integrator",
            "ptsens.integration.solution_history",
            "ptsens.integration.stepper",
            "ptsens.integration.time_step_control",
            "ptsens.model.linear",
            "ptsens.model.model_api",
            "ptsens.sensitivity.adjoint_model",
            "ptsens.sensitivity.config",
            "ptsens.sensitivity.finite_difference",
            "ptsens.sensitivity.pseudo_transient",
            "ptsens.utils.exceptions",
        ):
            with self.subTest(module=name):
                self.assertIsNotNone(importlib.import_module(name))

    def test_missing_symbol_raises(self) -> None:
        """Raise ``AttributeError`` for unknown export names."""
        with self.assertRaises(AttributeError):
            _ = sensitivity_pkg.does_not_exist


if __name__ == "__main__":
    unittest.main()
