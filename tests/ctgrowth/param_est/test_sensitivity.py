########################################################################################
##
##                                  TESTS FOR
##                  'opt/sensitivity.py' and ParameterEstimator.sensitivity()
##
########################################################################################

# IMPORTS ==============================================================================

import unittest

import numpy as np
import pytest

from ctgrowth.model import MatrixSpec, ModelSpec
from ctgrowth.opt import ParameterEstimator, SensitivityResult
from ctgrowth.parameters import Parameter
from ctgrowth.utils.timeseries_data import SubjectSeries


# HELPERS ==============================================================================

def _make_normal_estimator():
    """
    y_i ~ N(mu, r), one observation per subject. At the MLE the observed
    information is diag(n / r, n / (2 r^2)).
    """
    y = np.array([1.2, 0.3, 2.5, 1.9, 0.8, 1.4, 2.2, 0.1, 1.6, 1.0])
    model = ModelSpec(
        A=np.zeros((1, 1)),
        C=np.eye(1),
        R=MatrixSpec("R", [[1.0]], [["r"]]),
        x0=MatrixSpec("x0", [0.0], ["mu"]),
        P0=np.zeros((1, 1)),
        parameters=[Parameter("mu", 0.0), Parameter("r", 1.0, (0.0, np.inf))],
    )
    subjects = [SubjectSeries([0.0], [v], subject_id=i) for i, v in enumerate(y)]
    est = ParameterEstimator(model, subjects, log=False)
    return est, np.array([1.3, 0.55]), y.size


# TESTS ================================================================================

class TestSensitivityResultConstruction(unittest.TestCase):
    """SensitivityResult built from a known information matrix."""

    def _result_identity(self, n=3):
        names = [f"p{i}" for i in range(n)]
        return SensitivityResult(hessian=np.eye(n), param_names=names, param_values=np.ones(n) * 2.0)

    def test_covariance_is_identity(self):
        r = self._result_identity(3)
        np.testing.assert_allclose(r.covariance, np.eye(3), atol=1e-12)

    def test_std_errors_are_one(self):
        r = self._result_identity(3)
        np.testing.assert_allclose(r.std_errors, np.ones(3), atol=1e-12)

    def test_correlation_is_identity(self):
        r = self._result_identity(3)
        np.testing.assert_allclose(r.correlation, np.eye(3), atol=1e-12)

    def test_condition_number_is_one(self):
        r = self._result_identity(3)
        self.assertAlmostEqual(r.condition_number, 1.0)
        self.assertTrue(r.is_positive_definite)

    def test_information_is_symmetrised(self):
        H = np.array([[2.0, 1.0], [0.0, 2.0]])
        r = SensitivityResult(H, ["a", "b"], np.ones(2))
        np.testing.assert_array_equal(r.information, [[2.0, 0.5], [0.5, 2.0]])

    def test_diagonal_information(self):
        r = SensitivityResult(np.diag([4.0, 100.0]), ["a", "b"], np.array([1.0, 5.0]))
        np.testing.assert_allclose(r.std_errors, [0.5, 0.1])
        self.assertAlmostEqual(r.condition_number, 25.0)
        self.assertEqual(r.std_error("b"), pytest.approx(0.1))
        self.assertEqual(r.as_dict()["a"], (1.0, pytest.approx(0.5)))

    def test_correlated_pair(self):
        H = np.linalg.inv(np.array([[1.0, 0.95], [0.95, 1.0]]))
        r = SensitivityResult(H, ["a", "b"], np.ones(2))
        self.assertAlmostEqual(r.correlation[0, 1], 0.95, places=10)


class TestDegenerateInformation:

    def test_singular_information_warns(self):
        with pytest.warns(UserWarning, match="not positive definite"):
            r = SensitivityResult(np.zeros((2, 2)), ["a", "b"], np.ones(2))
        assert np.all(np.isnan(r.std_errors))
        assert r.condition_number == np.inf
        assert not r.is_positive_definite

    def test_non_finite_information(self):
        with pytest.warns(UserWarning):
            r = SensitivityResult(np.full((2, 2), np.nan), ["a", "b"], np.ones(2))
        assert np.all(np.isnan(r.covariance))
        assert r.condition_number == np.inf

    def test_bound_parameters_warn(self):
        with pytest.warns(UserWarning, match="lie on a bound"):
            r = SensitivityResult(np.eye(2), ["a", "b"], np.ones(2), at_bounds=["b"])
        assert r.at_bounds == ["b"]


class TestEstimatorSensitivity(unittest.TestCase):

    def test_hessian_matches_closed_form(self):
        est, x_hat, n = _make_normal_estimator()
        H = est.hessian(x_hat)
        expected = np.diag([n / 0.55, n / (2 * 0.55**2)])
        np.testing.assert_allclose(H, expected, rtol=1e-4, atol=1e-4)

    def test_standard_errors_after_fit(self):
        est, _, n = _make_normal_estimator()
        est.fit()
        sens = est.sensitivity()
        self.assertIsInstance(sens, SensitivityResult)
        self.assertEqual(sens.param_names, ["mu", "r"])
        np.testing.assert_allclose(
            sens.std_errors, [np.sqrt(0.55 / n), 0.55 * np.sqrt(2.0 / n)], rtol=1e-3
        )
        self.assertTrue(sens.is_positive_definite)
        self.assertAlmostEqual(sens.correlation[0, 1], 0.0, places=3)

    def test_requires_fit_or_x(self):
        est, _, _ = _make_normal_estimator()
        with self.assertRaises(ValueError):
            est.sensitivity()

    def test_degenerate_point_gives_nan(self):
        est, _, _ = _make_normal_estimator()
        with self.assertLogs("ctgrowth.opt", level="WARNING"):
            with self.assertWarns(UserWarning):
                sens = est.sensitivity([1.3, 0.0])
        self.assertTrue(np.all(np.isnan(sens.std_errors)))
        self.assertEqual(sens.at_bounds, ["r"])


class TestDiagnostics:

    def test_correlated_pairs_strongest_first(self):
        corr = np.array([[1.0, 0.95, -0.92], [0.95, 1.0, -0.85], [-0.92, -0.85, 1.0]])
        r = SensitivityResult(np.linalg.inv(corr), ["a", "b", "c"], np.ones(3))
        pairs = r.correlated_pairs()
        assert [(p[0], p[1]) for p in pairs] == [("a", "b"), ("a", "c")]
        assert pairs[1][2] == pytest.approx(-0.92, abs=1e-10)
        assert r.correlated_pairs(threshold=0.99) == []

    def test_conditioning_grades(self):
        names = ["a", "b"]
        assert SensitivityResult(np.diag([1.0, 2.0]), names, np.ones(2)).conditioning == "well conditioned"
        assert SensitivityResult(np.diag([1.0, 1e4]), names, np.ones(2)).conditioning == "moderately conditioned"
        assert SensitivityResult(np.diag([1.0, 1e8]), names, np.ones(2)).conditioning.startswith("ill conditioned")


class TestDisplay:

    def test_display(self, capsys):
        r = SensitivityResult(np.diag([4.0, 100.0]), ["alpha", "beta"], np.array([1.0, 5.0]))
        r.display()
        out = capsys.readouterr().out
        assert "Precision of the estimates" in out
        assert "alpha" in out
        assert "well conditioned" in out
        assert "No pair of estimates" in out

    def test_display_reports_correlated_pairs(self, capsys):
        H = np.linalg.inv(np.array([[1.0, 0.99], [0.99, 1.0]]))
        SensitivityResult(H, ["a", "b"], np.ones(2)).display()
        out = capsys.readouterr().out
        assert "Confounded estimates" in out
        assert "a / b" in out

    def test_display_flags_bound_parameters(self, capsys):
        with pytest.warns(UserWarning):
            r = SensitivityResult(np.eye(2), ["a", "b"], np.ones(2), at_bounds=["b"])
        r.display()
        row = [l for l in capsys.readouterr().out.splitlines() if l.strip().startswith("b ")]
        assert row and row[0].rstrip().endswith("bound")
