"""Tests for result dataclasses: dict access and serialisation."""

import dataclasses
import json

import numpy as np
import pandas as pd
import pytest

from micromacro import (
    AdjustedResult,
    CoefficientStatistics,
    InferenceReport,
    compute_adjusted_means,
    fit_micro_macro_model,
)
from micromacro._results import _numpy_to_python


def _make_result(seed=42):
    rng = np.random.default_rng(seed)
    sizes = rng.integers(3, 6, size=15)
    x_ids = np.repeat(np.arange(15), sizes)
    X = pd.DataFrame({
        "x1": rng.standard_normal(15)[x_ids] + 0.5 * rng.standard_normal(x_ids.shape[0]),
    })
    Z = pd.DataFrame({"z1": rng.standard_normal(15)})
    return compute_adjusted_means(X, Z, x_ids, np.arange(15)), rng


class TestDictAccess:
    def setup_method(self):
        self.result, _ = _make_result()

    def test_getitem(self):
        assert self.result["balanced"] is self.result.balanced

    def test_getitem_missing(self):
        with pytest.raises(KeyError):
            self.result["nope"]

    def test_get_default(self):
        assert self.result.get("nope", 3) == 3

    def test_contains(self):
        assert "table" in self.result
        assert "nope" not in self.result
        assert 1 not in self.result

    def test_property_access(self):
        assert self.result["unequal_groups"] is (not self.result.balanced)

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            self.result.balanced = True  # type: ignore[misc]


class TestToDict:
    def test_adjusted_result_serialisable(self):
        result, _ = _make_result()
        d = result.to_dict()
        assert "weights" not in d
        assert isinstance(d["table"], dict)
        assert d["table"]["gid"] == list(range(15))
        assert isinstance(d["components"]["sigma_xx"], list)
        json.dumps(d)

    def test_inference_report_serialisable(self):
        result, rng = _make_result()
        y = rng.standard_normal(15)
        report = fit_micro_macro_model(
            "~ BLUP.x1 + z1", result.table, outcome=y, unequal_groups=result.unequal_groups
        )
        d = report.to_dict()
        assert "robust_cov" not in d
        assert d["spec"]["main_effects"] == ("BLUP.x1", "z1")
        assert isinstance(d["nominal"]["se"], list)
        assert isinstance(d["fit"]["df_resid"], int)
        json.dumps(d)

    def test_numpy_scalars_converted(self):
        converted = _numpy_to_python(
            {"a": np.float64(1.5), "b": np.int64(2), "c": np.bool_(True), "d": (np.arange(2),)}
        )
        assert converted == {"a": 1.5, "b": 2, "c": True, "d": ([0, 1],)}
        assert type(converted["b"]) is int


class TestTypes:
    def test_return_types(self):
        result, rng = _make_result()
        assert isinstance(result, AdjustedResult)
        report = fit_micro_macro_model(
            "~ BLUP.x1", result.table, outcome=rng.standard_normal(15)
        )
        assert isinstance(report, InferenceReport)
        assert isinstance(report.nominal, CoefficientStatistics)
