"""Heteroskedasticity-robust inference for the second-stage regression.

The second stage regresses a group-level outcome on the adjusted
group means (and any group-level predictors) by OLS.  When groups
differ in size, the adjusted means are unequally reliable and the
residual variance differs across groups, so the nominal OLS standard
errors are no longer valid.

Sandwich covariance (HC2)
-------------------------
With design U (G × k) and OLS residuals e:

    h_i = u_iᵗ (UᵗU)⁻¹ u_i                 leverage
    d_i = e_i² / (1 − h_i)                 leverage-adjusted squared residual
    V   = (UᵗU)⁻¹ Uᵗ diag(d) U (UᵗU)⁻¹     robust coefficient covariance

OLS residuals are shrunk towards zero at high-leverage points
(Var(e_i) = σ²(1 − h_i) under homoskedasticity); dividing by
(1 − h_i) undoes that shrinkage, which the plain White (HC0) estimator
does not.

Test statistics
---------------
For either kind of standard error:

    t_j = b_j / SE_j,   p_j = 2 · P(T_df > |t_j|),   r_j = sqrt(t_j² / (t_j² + df))

with df = G − k.

Selection policy
----------------
Unequal group sizes are taken as the primary source of
heteroskedasticity in this design, so the report uses the robust
statistics only when ``unequal_groups`` is the boolean ``True``.
``False``, ``None`` (not supplied) and non-boolean values all select
the nominal statistics.  Both sets are always computed and stored on
the report.

Reference:
    White, H. (1980). A heteroskedasticity-consistent covariance matrix
    estimator and a direct test for heteroskedasticity.
    *Econometrica*, 48(4), 817–838.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd
from scipy import stats as _sp_stats

from ._compat import DataFrameLike, _ensure_1d, _ensure_pandas_df
from ._exceptions import DimensionMismatchError, InputError
from ._linalg import solve
from ._results import CoefficientStatistics, InferenceReport
from .design import ModelSpec, expand_design
from .diagnostics import compute_breusch_pagan, compute_leverage_summary
from .ols import fit_ols

logger = logging.getLogger(__name__)

# 1 − h below this counts as leverage 1.
_LEVERAGE_TOL = 1e-10


def compute_leverage(U: np.ndarray) -> np.ndarray:
    """Diagonal of the hat matrix U (UᵗU)⁻¹ Uᵗ.

    Raises:
        SingularMatrixError: If UᵗU is singular (rank-deficient design).
    """
    U = np.asarray(U, dtype=np.float64)
    projector = solve(U.T @ U, U.T, name="UtU")  # (k, G)
    return np.einsum("ij,ji->i", U, projector)


def robust_covariance(
    U: np.ndarray,
    residuals: np.ndarray,
    leverage: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """HC2 sandwich covariance of the OLS coefficients.

    Args:
        U: Design matrix ``(G, k)``.
        residuals: OLS residuals ``(G,)``.
        leverage: Hat-matrix diagonal of *U* when already computed.

    Returns:
        ``(V, h)``: the ``(k, k)`` robust covariance and the leverages.

    Raises:
        DimensionMismatchError: If *residuals* does not have G entries.
        SingularMatrixError: If UᵗU is singular.
    """
    U = np.asarray(U, dtype=np.float64)
    e = np.asarray(residuals, dtype=np.float64).ravel()
    if e.shape[0] != U.shape[0]:
        raise DimensionMismatchError(
            f"{e.shape[0]} residuals for a design with {U.shape[0]} rows."
        )

    UtU = U.T @ U
    if leverage is None:
        leverage = compute_leverage(U)

    one_minus_h = 1.0 - leverage
    saturated = one_minus_h < _LEVERAGE_TOL
    if np.any(saturated):
        warnings.warn(
            f"{int(saturated.sum())} group(s) have leverage 1; their adjusted "
            f"squared residuals are undefined and the robust standard errors "
            f"will be NaN.",
            UserWarning,
            stacklevel=2,
        )
    with np.errstate(divide="ignore", invalid="ignore"):
        d = np.where(saturated, np.nan, e**2 / one_minus_h)

    # (UᵗU)⁻¹ Uᵗ diag(d) U (UᵗU)⁻¹, with the bread applied by two solves.
    meat = U.T @ (U * d[:, np.newaxis])
    half = solve(UtU, meat, name="UtU")
    cov = solve(UtU, half.T, name="UtU").T
    return cov, leverage


def coefficient_statistics(
    estimates: np.ndarray,
    se: np.ndarray,
    df: int,
) -> CoefficientStatistics:
    """t statistics, two-sided Student-t p-values and effect sizes r."""
    estimates = np.asarray(estimates, dtype=np.float64)
    se = np.asarray(se, dtype=np.float64)
    if estimates.shape != se.shape:
        raise DimensionMismatchError(
            f"{estimates.shape[0]} estimates but {se.shape[0]} standard errors."
        )
    with np.errstate(divide="ignore", invalid="ignore"):
        t = estimates / se
        p = 2.0 * _sp_stats.t.sf(np.abs(t), df)
        r = np.sqrt(t**2 / (t**2 + df))
    return CoefficientStatistics(se=se, t=t, p=p, r=r)


def _resolve_outcome(
    spec: ModelSpec,
    table: pd.DataFrame,
    outcome: object | None,
) -> np.ndarray:
    if outcome is None:
        if spec.response is None or spec.response not in table.columns:
            raise InputError(
                "No outcome supplied and the response "
                f"{spec.response!r} is not a column of the table."
            )
        outcome = table[spec.response]
    y = _ensure_1d(outcome, name="outcome")
    if y.shape[0] != len(table):
        raise DimensionMismatchError(
            f"Outcome has {y.shape[0]} values but the table has {len(table)} groups."
        )
    return y


def fit_micro_macro_model(
    spec: ModelSpec | str,
    adjusted_table: DataFrameLike,
    outcome: object | None = None,
    unequal_groups: bool | None = None,
) -> InferenceReport:
    """Fit the second-stage micro-macro regression.

    Args:
        spec: A :class:`~micromacro.ModelSpec` or a formula such as
            ``"y ~ BLUP.x1 + BLUP.x2 + z1"``.
        adjusted_table: Group-level table, usually
            :attr:`AdjustedResult.table`.
        outcome: Group-level outcome, length G.  Defaults to the
            response column of *adjusted_table*.
        unequal_groups: ``True`` when group sizes differ (see
            :attr:`AdjustedResult.unequal_groups`).  Robust statistics
            are reported only when this is a boolean ``True``; ``False``,
            ``None`` and non-boolean values such as ``1`` or ``"True"``
            report nominal statistics.

    Returns:
        An :class:`~micromacro._results.InferenceReport` holding both
        nominal and robust statistics, with the selected set recorded
        in ``se_type``.

    Raises:
        UnknownTermError: If the model references unknown terms.
        DimensionMismatchError: If the outcome length differs from the
            number of groups.
        SingularMatrixError: If the design matrix is rank deficient.
        InputError: On malformed formulas or too few groups.
    """
    if isinstance(spec, str):
        spec = ModelSpec.from_formula(spec)
    table = _ensure_pandas_df(adjusted_table, name="adjusted_table")
    y = _resolve_outcome(spec, table, outcome)

    design = expand_design(spec, table)
    U = design.values
    G, k = U.shape
    if G <= k:
        raise InputError(
            f"{G} groups cannot support {k} coefficients; at least one "
            f"residual degree of freedom is required."
        )

    # statsmodels falls back to a pseudo-inverse for rank-deficient
    # designs, so singularity is checked here before fitting.
    leverage = compute_leverage(U)
    fit = fit_ols(design, y)
    cov, leverage = robust_covariance(U, fit.residuals, leverage)

    df = G - k
    estimates = fit.coefficients
    nominal = coefficient_statistics(estimates, fit.standard_errors, df)
    robust = coefficient_statistics(estimates, np.sqrt(np.diag(cov)), df)

    # Only a genuine boolean True selects robust statistics.
    robust_selected = isinstance(unequal_groups, (bool, np.bool_)) and bool(unequal_groups)
    se_type = "robust" if robust_selected else "nominal"
    logger.debug(
        "Second stage: G=%d, k=%d, unequal_groups=%r -> %s standard errors",
        G, k, unequal_groups, se_type,
    )

    try:
        breusch_pagan = compute_breusch_pagan(U, fit.residuals)
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.debug("Breusch-Pagan diagnostics failed: %s", exc)
        breusch_pagan = {}

    diagnostics = {
        "n_groups": G,
        "n_coefficients": k,
        "breusch_pagan": breusch_pagan,
        "leverage": compute_leverage_summary(leverage, k),
    }

    return InferenceReport(
        spec=spec,
        term_names=design.column_names,
        estimates=estimates,
        nominal=nominal,
        robust=robust,
        df=df,
        se_type=se_type,
        unequal_groups=unequal_groups,
        leverage=leverage,
        robust_cov=cov,
        fit=fit,
        diagnostics=diagnostics,
    )
