"""Ordinary least-squares fitting primitive.

Thin wrapper around :class:`statsmodels.regression.linear_model.OLS`
that takes an already-expanded :class:`DesignMatrix` (the intercept
column is part of the design, so no ``add_constant`` is needed) and
returns a frozen :class:`FitResult` with the quantities the
inferential layer and the renderer consume.
"""

from __future__ import annotations

import numpy as np
import statsmodels.api as sm

from ._exceptions import DimensionMismatchError, InputError
from ._results import DesignMatrix, FitResult


def fit_ols(design: DesignMatrix, y: object) -> FitResult:
    """Fit ``y = U b + e`` by least squares.

    Args:
        design: Second-stage design matrix ``U``, shape ``(G, k)``.
        y: Outcome vector, length G.

    Returns:
        :class:`~micromacro._results.FitResult` with nominal
        (homoskedastic) standard errors.

    Raises:
        DimensionMismatchError: If ``len(y)`` differs from the number
            of design rows.
        InputError: If there are no residual degrees of freedom or
            *y* contains non-finite values.
    """
    U = np.asarray(design.values, dtype=np.float64)
    y_values = np.asarray(y, dtype=np.float64).ravel()
    G, k = U.shape

    if y_values.shape[0] != G:
        raise DimensionMismatchError(
            f"Outcome has {y_values.shape[0]} values but the design has {G} rows."
        )
    if not np.all(np.isfinite(y_values)):
        raise InputError("Outcome contains NaN or Inf; missing data is not supported.")
    if G <= k:
        raise InputError(
            f"{G} groups cannot support {k} coefficients; at least one "
            f"residual degree of freedom is required."
        )

    model = sm.OLS(y_values, U).fit()

    df_model = k - 1
    if df_model > 0:
        f_statistic = float(model.fvalue)
        f_p_value = float(model.f_pvalue)
    else:
        f_statistic = float("nan")
        f_p_value = float("nan")

    return FitResult(
        coefficients=np.asarray(model.params),
        residuals=np.asarray(model.resid),
        fitted_values=np.asarray(model.fittedvalues),
        standard_errors=np.asarray(model.bse),
        df_resid=G - k,
        df_model=df_model,
        r_squared=float(model.rsquared),
        r_squared_adj=float(model.rsquared_adj),
        f_statistic=f_statistic,
        f_df_num=df_model,
        f_df_denom=G - k,
        f_p_value=f_p_value,
        residual_std_error=float(np.sqrt(model.scale)),
        aic=float(model.aic),
        bic=float(model.bic),
        n_observations=G,
    )
