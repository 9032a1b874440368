"""Tests for the second-stage robust inference engine."""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm
from scipy import stats as sp_stats

from micromacro import (
    DimensionMismatchError,
    InputError,
    ModelSpec,
    SingularMatrixError,
    coefficient_statistics,
    compute_leverage,
    expand_design,
    fit_micro_macro_model,
    fit_ols,
    robust_covariance,
)

FORMULA = "y ~ BLUP.x1 + BLUP.x2 + z1"


def _make_table(G=30, seed=42, heteroskedastic=True):
    """Group-level table whose error variance grows with |BLUP.x1|."""
    rng = np.random.default_rng(seed)
    t = pd.DataFrame({
        "BLUP.x1": rng.standard_normal(G),
        "BLUP.x2": rng.standard_normal(G),
        "z1": rng.standard_normal(G),
        "gid": np.arange(G),
    })
    scale = 0.2 + np.abs(t["BLUP.x1"].to_numpy()) if heteroskedastic else 0.5
    t["y"] = (
        1.0 + 0.8 * t["BLUP.x1"] - 0.5 * t["BLUP.x2"] + 0.3 * t["z1"]
        + scale * rng.standard_normal(G)
    )
    return t


class TestLeverage:
    def test_bounds_and_trace(self):
        U = expand_design(FORMULA, _make_table()).values
        h = compute_leverage(U)
        assert h.shape == (30,)
        assert np.all(h >= -1e-12)
        assert np.all(h <= 1 + 1e-12)
        np.testing.assert_allclose(h.sum(), U.shape[1])

    def test_matches_hat_matrix(self):
        U = expand_design(FORMULA, _make_table(seed=1)).values
        hat = U @ np.linalg.inv(U.T @ U) @ U.T
        np.testing.assert_allclose(compute_leverage(U), np.diag(hat), atol=1e-12)

    def test_rank_deficient_design(self):
        table = _make_table().assign(one=1.0)
        U = expand_design("y ~ one + BLUP.x1", table).values
        with pytest.raises(SingularMatrixError, match="'UtU'"):
            compute_leverage(U)


class TestRobustCovariance:
    def test_matches_statsmodels_hc2(self):
        table = _make_table()
        design = expand_design(FORMULA, table)
        model = sm.OLS(table["y"].to_numpy(), design.values).fit()
        cov, h = robust_covariance(design.values, model.resid)
        np.testing.assert_allclose(np.sqrt(np.diag(cov)), model.HC2_se, rtol=1e-8)
        np.testing.assert_allclose(cov, cov.T, atol=1e-14)

    def test_precomputed_leverage_reused(self):
        table = _make_table()
        design = expand_design(FORMULA, table)
        fit = fit_ols(design, table["y"])
        h = compute_leverage(design.values)
        cov, h_out = robust_covariance(design.values, fit.residuals, h)
        expected, _ = robust_covariance(design.values, fit.residuals)
        assert h_out is h
        np.testing.assert_array_equal(cov, expected)

    def test_residual_length_checked(self):
        U = expand_design(FORMULA, _make_table()).values
        with pytest.raises(DimensionMismatchError):
            robust_covariance(U, np.zeros(29))

    def test_leverage_one_warns(self):
        table = _make_table()
        table["d"] = 0.0
        table.loc[0, "d"] = 1.0
        design = expand_design("y ~ BLUP.x1 + d", table)
        fit = fit_ols(design, table["y"])
        with pytest.warns(UserWarning, match="leverage 1"):
            robust_covariance(design.values, fit.residuals)


class TestCoefficientStatistics:
    def test_known_values(self):
        stats = coefficient_statistics(np.array([2.0, -1.0]), np.array([1.0, 0.5]), 10)
        np.testing.assert_allclose(stats.t, [2.0, -2.0])
        expected_p = 2 * sp_stats.t.sf(2.0, 10)
        np.testing.assert_allclose(stats.p, [expected_p, expected_p])
        np.testing.assert_allclose(stats.r, np.sqrt(4.0 / 14.0))

    def test_zero_estimate(self):
        stats = coefficient_statistics(np.array([0.0]), np.array([1.0]), 5)
        assert stats.t[0] == 0.0
        np.testing.assert_allclose(stats.p, [1.0])
        assert stats.r[0] == 0.0

    def test_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            coefficient_statistics(np.zeros(2), np.ones(3), 5)


class TestFitMicroMacroModel:
    def setup_method(self):
        self.table = _make_table()

    def test_degrees_of_freedom(self):
        report = fit_micro_macro_model(FORMULA, self.table)
        assert report.df == 30 - 4
        assert report.term_names == ("(Intercept)", "BLUP.x1", "BLUP.x2", "z1")

    def test_nominal_matches_statsmodels(self):
        report = fit_micro_macro_model(FORMULA, self.table, unequal_groups=False)
        U = expand_design(FORMULA, self.table).values
        model = sm.OLS(self.table["y"].to_numpy(), U).fit()
        np.testing.assert_allclose(report.estimates, model.params, rtol=1e-10)
        np.testing.assert_allclose(report.nominal.se, model.bse, rtol=1e-10)
        np.testing.assert_allclose(report.nominal.p, model.pvalues, rtol=1e-8)
        np.testing.assert_allclose(report.robust.se, model.HC2_se, rtol=1e-8)

    @pytest.mark.parametrize(
        ("flag", "se_type"),
        [
            (None, "nominal"),
            (False, "nominal"),
            (True, "robust"),
            (np.False_, "nominal"),
            (np.True_, "robust"),
            (1, "nominal"),
            ("True", "nominal"),
            ("False", "nominal"),
        ],
    )
    def test_selection_policy(self, flag, se_type):
        report = fit_micro_macro_model(FORMULA, self.table, unequal_groups=flag)
        assert report.se_type == se_type
        assert report.unequal_groups is flag
        expected = report.robust if se_type == "robust" else report.nominal
        np.testing.assert_array_equal(report.selected.se, expected.se)

    def test_none_and_false_identical(self):
        a = fit_micro_macro_model(FORMULA, self.table, unequal_groups=None)
        b = fit_micro_macro_model(FORMULA, self.table, unequal_groups=False)
        pd.testing.assert_frame_equal(a.to_frame(), b.to_frame())

    def test_estimates_do_not_depend_on_flag(self):
        a = fit_micro_macro_model(FORMULA, self.table, unequal_groups=False)
        b = fit_micro_macro_model(FORMULA, self.table, unequal_groups=True)
        np.testing.assert_array_equal(a.estimates, b.estimates)

    def test_model_spec_and_explicit_outcome(self):
        spec = ModelSpec(None, ("BLUP.x1", "BLUP.x2", "z1"))
        report = fit_micro_macro_model(spec, self.table, outcome=self.table["y"])
        baseline = fit_micro_macro_model(FORMULA, self.table)
        np.testing.assert_allclose(report.estimates, baseline.estimates)

    def test_interaction_term(self):
        report = fit_micro_macro_model("y ~ BLUP.x1 * z1", self.table)
        assert report.term_names[-1] == "BLUP.x1:z1"
        assert report.df == 30 - 4

    def test_outcome_length_mismatch(self):
        with pytest.raises(DimensionMismatchError, match="Outcome"):
            fit_micro_macro_model(FORMULA, self.table, outcome=np.zeros(29))

    def test_missing_response(self):
        with pytest.raises(InputError, match="No outcome"):
            fit_micro_macro_model("w ~ BLUP.x1", self.table)

    def test_too_few_groups(self):
        with pytest.raises(InputError, match="residual degree"):
            fit_micro_macro_model(FORMULA, self.table.iloc[:4])

    def test_leverage_computed_once(self, monkeypatch):
        import micromacro.inference as inference

        calls = []
        original = inference.compute_leverage

        def counting(U):
            calls.append(U.shape)
            return original(U)

        monkeypatch.setattr(inference, "compute_leverage", counting)
        fit_micro_macro_model(FORMULA, self.table, unequal_groups=True)
        assert calls == [(30, 4)]

    def test_rank_deficient(self):
        table = self.table.assign(one=1.0)
        with pytest.raises(SingularMatrixError, match="UtU"):
            fit_micro_macro_model("y ~ BLUP.x1 + one", table)

    def test_diagnostics(self):
        report = fit_micro_macro_model(FORMULA, self.table, unequal_groups=True)
        diag = report.diagnostics
        assert diag["n_groups"] == 30
        assert diag["n_coefficients"] == 4
        assert 0 < diag["leverage"]["max_leverage"] <= 1
        assert set(diag["breusch_pagan"]) == {
            "lm_stat", "lm_p_value", "f_stat", "f_p_value", "warning",
        }

    def test_to_frame_nominal(self):
        frame = fit_micro_macro_model(FORMULA, self.table).to_frame()
        assert list(frame.columns) == ["Estimate", "S.E.", "df", "t", "Pr(>|t|)", "r"]
        assert list(frame.index) == ["(Intercept)", "BLUP.x1", "BLUP.x2", "z1"]

    def test_to_frame_robust(self):
        report = fit_micro_macro_model(FORMULA, self.table, unequal_groups=True)
        frame = report.to_frame()
        assert list(frame.columns) == [
            "Estimate", "Uncorrected S.E.", "Corrected S.E.", "df", "t", "Pr(>|t|)", "r",
        ]
        np.testing.assert_array_equal(frame["Corrected S.E."], report.robust.se)
        np.testing.assert_array_equal(frame["t"], report.robust.t)
