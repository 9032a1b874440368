"""Typed result objects for the micro-macro pipeline.

Frozen dataclasses that provide:

* **Attribute access** — ``result.balanced``, ``report.df``, etc.
* **Dict-like access** — ``result["balanced"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax (and
  for code ported from the named-list return values of the R
  package).
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy and pandas types converted to native Python.

One type per pipeline artefact:

* :class:`VarianceComponents` — method-of-moments covariance
  estimates from the individual and group tables.
* :class:`AdjustedResult` — BLUP-adjusted group means, the
  balanced-groups flag, and the group-size table.
* :class:`DesignMatrix` — numeric second-stage design.
* :class:`FitResult` — output of the OLS primitive.
* :class:`CoefficientStatistics` — SE / t / p / r for one SE flavour.
* :class:`InferenceReport` — the final micro-macro regression report.

All types are frozen (immutable after construction): they are a
snapshot of one call and are never updated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .design import ModelSpec

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy / pandas objects to Python-native types.

    Handles nested dicts, lists, tuples, np.ndarray, np.integer,
    np.floating, DataFrames (as ``{column: list}``) and nested result
    dataclasses so that :meth:`to_dict` returns a fully
    JSON-serialisable structure.
    """
    if isinstance(obj, _DictAccessMixin):
        return obj.to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _numpy_to_python(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, pd.DataFrame):
        return {str(k): _numpy_to_python(v.to_numpy()) for k, v in obj.items()}
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test

    Subclasses may override ``_EXCLUDE_FROM_DICT`` to drop bulky or
    redundant fields from :meth:`to_dict`.
    """

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            result[f.name] = _numpy_to_python(getattr(self, f.name))
        return result


# ------------------------------------------------------------------ #
# VarianceComponents
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class VarianceComponents(_DictAccessMixin):
    """Method-of-moments covariance estimates for the two-level design.

    Produced by :func:`~micromacro.decompose_variance`.  Row ``g`` of
    :attr:`group_means` and entry ``g`` of :attr:`group_sizes`
    correspond to :attr:`group_ids`\\ ``[g]``, which follows the order
    of the group table supplied by the caller.
    """

    grand_mean: np.ndarray
    """Grand mean x̄ over all N individuals, shape ``(p,)``."""

    group_means: np.ndarray
    """Raw per-group means x̄_g, shape ``(G, p)``."""

    group_predictors: np.ndarray
    """Group-level predictor values z_g, shape ``(G, q)``."""

    z_mean: np.ndarray
    """Grand mean z̄ of the group predictors, shape ``(q,)``."""

    sigma_zz: np.ndarray
    """Covariance of the group predictors, shape ``(q, q)``."""

    sigma_xz: np.ndarray
    """Cross-covariance of group means and group predictors, ``(p, q)``."""

    sigma_zx: np.ndarray
    """Transpose of :attr:`sigma_xz`, shape ``(q, p)``."""

    sigma_xx: np.ndarray
    """Between-group (true-score) covariance estimate, ``(p, p)``."""

    sigma_vv: np.ndarray
    """Within-group covariance estimate, ``(p, p)``."""

    msa: np.ndarray
    """Between-group mean-square matrix, ``(p, p)``."""

    mse: np.ndarray
    """Within-group mean-square matrix, ``(p, p)``."""

    group_sizes: np.ndarray
    """Individuals per group n_g, shape ``(G,)``."""

    group_ids: np.ndarray
    """Group ids in group-table order, shape ``(G,)``."""

    x_names: tuple[str, ...]
    """Individual-level predictor names."""

    z_names: tuple[str, ...]
    """Group-level predictor names."""

    n_individuals: int
    """Total number of individuals N."""

    @property
    def n_groups(self) -> int:
        return int(self.group_sizes.shape[0])

    @property
    def n_predictors(self) -> int:
        return int(self.grand_mean.shape[0])

    @property
    def n_covariates(self) -> int:
        return int(self.z_mean.shape[0])


# ------------------------------------------------------------------ #
# AdjustedResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class AdjustedResult(_DictAccessMixin):
    """BLUP-adjusted group means ready for the second-stage regression.

    Returned by :func:`~micromacro.compute_adjusted_means`.
    """

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"weights"})

    table: pd.DataFrame
    """G rows in group-table order: ``BLUP.<x>`` columns, the group
    predictors, and ``gid``."""

    balanced: bool
    """``True`` iff every group has the same number of individuals."""

    group_sizes: pd.DataFrame
    """Two columns, ``gid`` and ``n``, one row per group."""

    components: VarianceComponents
    """Variance decomposition the adjustment was computed from."""

    weights: np.ndarray = field(repr=False)
    """Per-group reliability matrices W1, shape ``(G, p, p)``."""

    @property
    def unequal_groups(self) -> bool:
        """Negation of :attr:`balanced`, the flag the inference step consumes."""
        return not self.balanced


# ------------------------------------------------------------------ #
# DesignMatrix
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DesignMatrix(_DictAccessMixin):
    """Numeric second-stage design: intercept, main effects, interactions."""

    values: np.ndarray
    """Design values, shape ``(G, k)``."""

    column_names: tuple[str, ...]
    """Column labels; ``"(Intercept)"`` first, interactions as ``a:b``."""

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]


# ------------------------------------------------------------------ #
# FitResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FitResult(_DictAccessMixin):
    """Ordinary least-squares fit under i.i.d. Gaussian errors."""

    coefficients: np.ndarray
    """Coefficient estimates, shape ``(k,)``."""

    residuals: np.ndarray
    """Residuals, shape ``(G,)``."""

    fitted_values: np.ndarray
    """Fitted values, shape ``(G,)``."""

    standard_errors: np.ndarray
    """Nominal (homoskedastic) standard errors, shape ``(k,)``."""

    df_resid: int
    """Residual degrees of freedom G − k."""

    df_model: int
    """Model degrees of freedom k − 1."""

    r_squared: float
    r_squared_adj: float

    f_statistic: float
    """Overall F statistic (NaN for an intercept-only model)."""

    f_df_num: int
    f_df_denom: int
    f_p_value: float

    residual_std_error: float
    """sqrt(SSR / df_resid)."""

    aic: float
    bic: float
    n_observations: int


# ------------------------------------------------------------------ #
# Inference
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CoefficientStatistics(_DictAccessMixin):
    """Per-coefficient test statistics for one kind of standard error."""

    se: np.ndarray
    t: np.ndarray
    p: np.ndarray
    """Two-sided Student-t p-values."""

    r: np.ndarray
    """Effect size sqrt(t² / (t² + df))."""


@dataclass(frozen=True)
class InferenceReport(_DictAccessMixin):
    """Result of :func:`~micromacro.fit_micro_macro_model`.

    Both nominal and robust statistics are always computed;
    :attr:`se_type` records which of them the selection policy
    chose and :attr:`selected` returns that set.
    """

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"robust_cov"})

    spec: ModelSpec
    term_names: tuple[str, ...]
    estimates: np.ndarray
    nominal: CoefficientStatistics
    robust: CoefficientStatistics
    df: int
    se_type: str
    """``"nominal"`` or ``"robust"``."""

    unequal_groups: bool | None
    """The group-size flag exactly as supplied (``None`` preserved)."""

    leverage: np.ndarray
    robust_cov: np.ndarray = field(repr=False)
    fit: FitResult = field(repr=False)
    diagnostics: dict[str, Any] = field(default_factory=dict)

    @property
    def selected(self) -> CoefficientStatistics:
        return self.robust if self.se_type == "robust" else self.nominal

    def to_frame(self) -> pd.DataFrame:
        """Coefficient table indexed by term name.

        Nominal reports carry ``Estimate, S.E., df, t, Pr(>|t|), r``.
        Robust reports carry ``Estimate, Uncorrected S.E.,
        Corrected S.E., df, t, Pr(>|t|), r``.
        """
        stats = self.selected
        columns: dict[str, Any] = {"Estimate": self.estimates}
        if self.se_type == "robust":
            columns["Uncorrected S.E."] = self.nominal.se
            columns["Corrected S.E."] = self.robust.se
        else:
            columns["S.E."] = self.nominal.se
        columns["df"] = np.full(len(self.estimates), self.df)
        columns["t"] = stats.t
        columns["Pr(>|t|)"] = stats.p
        columns["r"] = stats.r
        return pd.DataFrame(columns, index=list(self.term_names))
