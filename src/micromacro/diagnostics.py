"""Second-stage regression diagnostics.

These checks are informational: they never change which standard
errors the report uses (that is governed by the group-size flag), but
they help users judge whether the choice was sensible.

* **Breusch-Pagan** — tests H₀: constant residual variance in the
  second-stage regression.  Unequal group sizes make the adjusted
  means unequally reliable, which shows up as heteroskedastic
  residuals; a small p-value with balanced groups suggests another
  source of heteroskedasticity.
* **Leverage** — the largest diagonal element of the hat matrix,
  and the conventional 2k/G flag for high-leverage groups.
* **Shrinkage summary** — the mean diagonal of the per-group
  reliability matrices W1, i.e. how much of each raw group mean
  survives the adjustment on average.
"""

from __future__ import annotations

import math

import numpy as np
from statsmodels.stats.diagnostic import het_breuschpagan


def compute_breusch_pagan(U: np.ndarray, residuals: np.ndarray) -> dict:
    """Run the Breusch-Pagan test on second-stage residuals.

    Args:
        U: Design matrix including the intercept column, ``(G, k)``.
        residuals: OLS residuals, ``(G,)``.

    Returns:
        Dictionary with ``lm_stat``, ``lm_p_value``, ``f_stat``,
        ``f_p_value``, and a ``warning`` string (empty if no issue).
        All values are NaN when the design has only an intercept,
        since there is nothing to regress the squared residuals on.
    """
    nan = float("nan")
    if U.shape[1] < 2:
        return {
            "lm_stat": nan,
            "lm_p_value": nan,
            "f_stat": nan,
            "f_p_value": nan,
            "warning": "",
        }

    # The auxiliary regression of e² on U: n · R² ~ χ²(k − 1).
    lm_stat, lm_p, f_stat, f_p = het_breuschpagan(residuals, U)

    warning = ""
    if lm_p < 0.05:
        warning = (
            f"Breusch-Pagan p = {lm_p:.4f}: second-stage residuals may be "
            f"heteroskedastic."
        )
    return {
        "lm_stat": float(np.round(lm_stat, 4)),
        "lm_p_value": float(lm_p),
        "f_stat": float(np.round(f_stat, 4)),
        "f_p_value": float(f_p),
        "warning": warning,
    }


def compute_leverage_summary(leverage: np.ndarray, n_coefficients: int) -> dict:
    """Summarise hat-matrix leverages.

    Groups with h_i > 2k/G are counted as high-leverage.
    """
    G = leverage.shape[0]
    threshold = 2.0 * n_coefficients / G
    high = np.flatnonzero(leverage > threshold)
    return {
        "max_leverage": float(np.max(leverage)) if G else math.nan,
        "threshold": threshold,
        "n_high_leverage": int(high.size),
        "high_leverage_indices": high.tolist(),
    }


def compute_shrinkage_summary(weights: np.ndarray) -> dict:
    """Average reliability (diagonal of W1) per predictor and overall.

    Args:
        weights: Per-group W1 matrices, ``(G, p, p)``.
    """
    diag = np.diagonal(weights, axis1=1, axis2=2)
    return {
        "mean_reliability": diag.mean(axis=0),
        "min_reliability": diag.min(axis=0),
        "max_reliability": diag.max(axis=0),
    }
