"""Between- and within-group variance decomposition.

Given N individual records with p predictors nested in G groups, and
q group-level predictors measured once per group, this module
estimates the covariance structure the BLUP adjustment needs
(Croon & van Veldhoven, 2007):

    x_ig = ξ_g + v_ig,    Cov(ξ_g) = Σ_xx,   Cov(v_ig) = Σ_vv

Method-of-moments estimators
----------------------------
Let x̄_g be the raw mean of group g, x̄ the grand mean over all N
individuals, and n_g the group size.

* Between-group mean square, weighted by the individual count:

      MSA = N · Σ_g (x̄_g − x̄)(x̄_g − x̄)ᵗ / (N − G)

* Within-group mean square:

      SSE = Σ_i (x_i − x̄_g(i))(x_i − x̄_g(i))ᵗ,   MSE = SSE / (G − 1)

  Σ_vv is estimated by MSE.

* True-score covariance, debiased by the group-size structure:

      Σ_xx = N (G − 1) / (N² − Σ n_g²) · (MSA − MSE)

* Group predictors: z̄ and Σ_zz = Cov(Z) over the G groups, and the
  cross-covariance Σ_xz = Cov(x̄_g, z_g).

Known fragility
---------------
MSA − MSE is a difference of two noisy matrices, so Σ_xx can come
out indefinite when G is small or group sizes are very unequal.
The estimate is returned unchanged; a ``UserWarning`` reports the
smallest eigenvalue so that callers can judge whether the downstream
shrinkage weights are trustworthy.  Near-singular matrices are not
flagged separately.

Reference:
    Croon, M. A., & van Veldhoven, M. J. (2007). Predicting
    group-level outcome variables from variables measured at the
    individual level: A latent variable multilevel model.
    *Psychological Methods*, 12(1), 45–57.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_1d, _ensure_pandas_df, _numeric_values
from ._exceptions import InputError
from ._results import VarianceComponents

logger = logging.getLogger(__name__)


def _group_positions(x_gid: np.ndarray, z_gid: np.ndarray) -> np.ndarray:
    """Map each individual's group id to its row in the group table.

    Raises:
        InputError: On duplicate group-table ids or unknown individual ids.
    """
    index = pd.Index(z_gid)
    if index.has_duplicates:
        dups = index[index.duplicated()].unique().tolist()
        raise InputError(f"Group ids in 'z_ids' must be unique; duplicated: {dups[:10]}.")

    positions = index.get_indexer(x_gid)
    unknown = positions < 0
    if unknown.any():
        missing = pd.unique(x_gid[unknown]).tolist()
        raise InputError(
            f"{len(missing)} group id(s) in 'x_ids' do not appear in 'z_ids': "
            f"{missing[:10]}."
        )
    return positions


def _check_sigma_xx(sigma_xx: np.ndarray, stacklevel: int) -> None:
    """Warn when the true-score covariance estimate is indefinite."""
    eigvals = np.linalg.eigvalsh(sigma_xx)
    scale = max(1.0, float(np.max(np.abs(eigvals))))
    tol = sigma_xx.shape[0] * np.finfo(np.float64).eps * scale
    if eigvals[0] < -tol:
        warnings.warn(
            f"Estimated between-group covariance sigma_xx is not positive "
            f"semi-definite (smallest eigenvalue {eigvals[0]:.4g}).  This is "
            f"common with few groups or very unequal group sizes; adjusted "
            f"means may be unreliable.",
            UserWarning,
            stacklevel=stacklevel,
        )


def decompose_variance(
    X: DataFrameLike,
    Z: DataFrameLike | None,
    x_ids: object,
    z_ids: object,
) -> VarianceComponents:
    """Estimate within- and between-group covariance matrices.

    Args:
        X: Individual-level predictors, ``(N, p)``.  Accepts pandas or
            Polars DataFrames or a NumPy array.
        Z: Group-level predictors, ``(G, q)``, or ``None`` when there
            are no group-level predictors (q = 0).
        x_ids: Group id of each row of *X*, length N.
        z_ids: Unique group id of each row of *Z*, length G.

    Returns:
        A :class:`~micromacro._results.VarianceComponents` with rows
        ordered as in *Z*.

    Raises:
        InputError: On row-count mismatches, non-finite values,
            duplicate or unknown group ids, empty groups, fewer than
            two groups, or when no group has more than one individual.
    """
    return _decompose(X, Z, x_ids, z_ids, stacklevel=4)


def _decompose(
    X: DataFrameLike,
    Z: DataFrameLike | None,
    x_ids: object,
    z_ids: object,
    *,
    stacklevel: int,
) -> VarianceComponents:
    # stacklevel counts from the Sigma_xx check to the public caller.
    X_df = _ensure_pandas_df(X, name="X", prefix="x")
    x_gid = _ensure_1d(x_ids, name="x_ids")
    z_gid = _ensure_1d(z_ids, name="z_ids")
    if Z is None:
        Z_df = pd.DataFrame(index=range(len(z_gid)))
    else:
        Z_df = _ensure_pandas_df(Z, name="Z", prefix="z")

    x_vals = _numeric_values(X_df, name="X")
    z_vals = _numeric_values(Z_df, name="Z")
    n, p = x_vals.shape
    G, q = z_vals.shape

    if p == 0:
        raise InputError("'X' must contain at least one individual-level predictor.")
    if len(x_gid) != n:
        raise InputError(
            f"Row-count mismatch: 'X' has {n} rows but 'x_ids' has {len(x_gid)}."
        )
    if len(z_gid) != G:
        raise InputError(
            f"Row-count mismatch: 'Z' has {G} rows but 'z_ids' has {len(z_gid)}."
        )
    if G < 2:
        raise InputError(f"At least two groups are required, got {G}.")

    positions = _group_positions(x_gid, z_gid)
    sizes = np.bincount(positions, minlength=G)
    if np.any(sizes == 0):
        empty = z_gid[sizes == 0].tolist()
        raise InputError(f"Group(s) with no individuals: {empty[:10]}.")
    if n == G:
        raise InputError(
            "Every group has exactly one individual; the within-group "
            "variance cannot be estimated."
        )

    logger.debug("Variance decomposition: N=%d, G=%d, p=%d, q=%d", n, G, p, q)

    # Raw group means, accumulated in group-table order.
    sums = np.zeros((G, p))
    np.add.at(sums, positions, x_vals)
    group_means = sums / sizes[:, np.newaxis]
    grand_mean = x_vals.mean(axis=0)

    z_mean = z_vals.mean(axis=0)
    dz = z_vals - z_mean
    sigma_zz = dz.T @ dz / (G - 1)
    dm = group_means - group_means.mean(axis=0)
    sigma_xz = dm.T @ dz / (G - 1)
    sigma_zx = sigma_xz.T.copy()

    dev = group_means - grand_mean
    msa = n * (dev.T @ dev) / (n - G)

    within = x_vals - group_means[positions]
    mse = (within.T @ within) / (G - 1)

    sigma_vv = mse.copy()
    sigma_xx = (n * (G - 1) / (n**2 - float(np.sum(sizes.astype(np.float64) ** 2)))) * (
        msa - mse
    )
    _check_sigma_xx(sigma_xx, stacklevel)

    return VarianceComponents(
        grand_mean=grand_mean,
        group_means=group_means,
        group_predictors=z_vals,
        z_mean=z_mean,
        sigma_zz=sigma_zz,
        sigma_xz=sigma_xz,
        sigma_zx=sigma_zx,
        sigma_xx=sigma_xx,
        sigma_vv=sigma_vv,
        msa=msa,
        mse=mse,
        group_sizes=sizes,
        group_ids=z_gid,
        x_names=tuple(str(c) for c in X_df.columns),
        z_names=tuple(str(c) for c in Z_df.columns),
        n_individuals=n,
    )
