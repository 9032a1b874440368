"""Tests for the second-stage diagnostics module."""

import math

import numpy as np
import pytest

from micromacro.diagnostics import (
    compute_breusch_pagan,
    compute_leverage_summary,
    compute_shrinkage_summary,
)


# ── Fixtures ─────────────────────────────────────────────────────── #

def _make_design(G=60, seed=42, heteroskedastic=False):
    rng = np.random.default_rng(seed)
    x = rng.standard_normal(G)
    U = np.column_stack([np.ones(G), x])
    scale = np.exp(x) if heteroskedastic else 1.0
    residuals = scale * rng.standard_normal(G)
    return U, residuals - residuals.mean()


class TestBreuschPagan:
    def test_keys(self):
        U, e = _make_design()
        result = compute_breusch_pagan(U, e)
        assert set(result) == {"lm_stat", "lm_p_value", "f_stat", "f_p_value", "warning"}
        assert 0.0 <= result["lm_p_value"] <= 1.0

    def test_detects_heteroskedasticity(self):
        U, e = _make_design(G=400, heteroskedastic=True)
        result = compute_breusch_pagan(U, e)
        assert result["lm_p_value"] < 0.05
        assert "heteroskedastic" in result["warning"]

    def test_intercept_only_is_nan(self):
        U, e = _make_design()
        result = compute_breusch_pagan(U[:, :1], e)
        assert math.isnan(result["lm_stat"])
        assert result["warning"] == ""


class TestLeverageSummary:
    def test_threshold_is_exclusive(self):
        leverage = np.array([0.05, 0.1, 0.5, 0.05])
        result = compute_leverage_summary(leverage, n_coefficients=1)
        assert result["threshold"] == pytest.approx(0.5)
        assert result["max_leverage"] == pytest.approx(0.5)
        assert result["n_high_leverage"] == 0

    def test_flags_high_leverage(self):
        leverage = np.array([0.05, 0.1, 0.8, 0.05])
        result = compute_leverage_summary(leverage, n_coefficients=1)
        assert result["n_high_leverage"] == 1
        assert result["high_leverage_indices"] == [2]


class TestShrinkageSummary:
    def test_diagonal_statistics(self):
        weights = np.stack([np.diag([0.2, 0.9]), np.diag([0.4, 0.7])])
        result = compute_shrinkage_summary(weights)
        np.testing.assert_allclose(result["mean_reliability"], [0.3, 0.8])
        np.testing.assert_allclose(result["min_reliability"], [0.2, 0.7])
        np.testing.assert_allclose(result["max_reliability"], [0.4, 0.9])
