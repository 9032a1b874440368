"""Empirical-Bayes shrinkage of raw group means (BLUP adjustment).

Regressing a group-level outcome on raw group means x̄_g of
individual-level predictors is biased: x̄_g measures the latent group
score ξ_g with sampling error Σ_vv / n_g, and the error is larger in
small groups.  The best linear unbiased predictor of ξ_g blends the
group's own mean with the grand mean, net of what the group-level
predictors z_g already explain:

    B   = Σ_xz Σ_zz⁻¹ Σ_zx
    W1  = [Σ_xx + Σ_vv / n_g + B]⁻¹ [Σ_xx + B]
    W2  = Σ_zz⁻¹ Σ_zx (I − W1)

    ξ̂_gᵗ = x̄ᵗ (I − W1) + x̄_gᵗ W1 + (z_g − z̄)ᵗ W2

Without group-level predictors (q = 0) B and W2 vanish and
W1 = [Σ_xx + Σ_vv / n_g]⁻¹ Σ_xx.

As n_g grows Σ_vv / n_g shrinks and W1 approaches the identity, so
large groups keep (almost) their own mean.  As Σ_xx → 0 (and q = 0)
W1 → 0 and every group collapses onto the grand mean.

Σ_zz⁻¹Σ_zx and B are computed once per call; only the composite
matrix changes from group to group.  Groups are independent of one
another, so the per-group solves can run on a thread pool
(``n_jobs != 1``) with results identical to the sequential loop.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ._compat import DataFrameLike
from ._config import get_solver
from ._exceptions import DimensionMismatchError, InputError
from ._linalg import solve
from ._results import AdjustedResult, VarianceComponents
from .decomposition import _decompose

logger = logging.getLogger(__name__)


def is_balanced(group_sizes: object) -> bool:
    """Return ``True`` iff every group has the same number of individuals.

    Args:
        group_sizes: Array-like of per-group counts n_g, or a table
            with an ``n`` column such as :attr:`AdjustedResult.group_sizes`.

    Raises:
        InputError: If *group_sizes* is empty or not one-dimensional.
    """
    if isinstance(group_sizes, pd.DataFrame) and "n" in group_sizes.columns:
        group_sizes = group_sizes["n"]
    sizes = np.asarray(group_sizes)
    if sizes.ndim != 1:
        raise InputError(
            f"Group sizes must be one-dimensional, got shape {sizes.shape}."
        )
    if sizes.size == 0:
        raise InputError("At least one group size is required.")
    return bool(sizes.min() == sizes.max())


def _check_shapes(components: VarianceComponents) -> None:
    """Verify the component matrices agree on p, q and G."""
    p = components.n_predictors
    q = components.n_covariates
    G = components.n_groups
    expected = {
        "group_means": (G, p),
        "group_predictors": (G, q),
        "sigma_zz": (q, q),
        "sigma_xz": (p, q),
        "sigma_zx": (q, p),
        "sigma_xx": (p, p),
        "sigma_vv": (p, p),
    }
    for name, shape in expected.items():
        actual = np.shape(getattr(components, name))
        if actual != shape:
            raise DimensionMismatchError(
                f"'{name}' has shape {actual}, expected {shape} "
                f"(p={p}, q={q}, G={G})."
            )


def shrink_group_means(
    components: VarianceComponents,
    *,
    n_jobs: int = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute BLUP-adjusted group means from a variance decomposition.

    Args:
        components: Output of :func:`~micromacro.decompose_variance`.
        n_jobs: Number of worker threads for the per-group solves.
            ``1`` runs sequentially; ``-1`` uses every core.

    Returns:
        ``(adjusted, weights)`` where *adjusted* has shape ``(G, p)``
        and *weights* stacks the per-group W1 matrices, ``(G, p, p)``.

    Raises:
        DimensionMismatchError: If the component shapes disagree.
        SingularMatrixError: If Σ_zz or a per-group composite matrix
            cannot be inverted.
    """
    _check_shapes(components)

    p = components.n_predictors
    q = components.n_covariates
    G = components.n_groups
    eye = np.eye(p)
    sizes = components.group_sizes
    ids = components.group_ids
    sigma_xx = components.sigma_xx
    sigma_vv = components.sigma_vv

    if q > 0:
        # Σ_zz⁻¹Σ_zx, shared by W2 and the composite term B.
        zz_inv_zx = solve(components.sigma_zz, components.sigma_zx, name="sigma_zz")
        explained = components.sigma_xz @ zz_inv_zx
        z_dev = components.group_predictors - components.z_mean
    else:
        zz_inv_zx = None
        explained = np.zeros((p, p))
        z_dev = None

    numerator = sigma_xx + explained

    logger.debug(
        "Shrinking %d group means (p=%d, q=%d, solver=%s, n_jobs=%d)",
        G, p, q, get_solver(), n_jobs,
    )

    def _shrink_one(g: int) -> tuple[np.ndarray, np.ndarray]:
        composite = sigma_xx + sigma_vv / sizes[g] + explained
        w1 = solve(composite, numerator, name="composite", group=ids[g], index=g)
        adjusted = components.grand_mean @ (eye - w1) + components.group_means[g] @ w1
        if zz_inv_zx is not None:
            w2 = zz_inv_zx @ (eye - w1)
            adjusted = adjusted + z_dev[g] @ w2
        return adjusted, w1

    if n_jobs == 1:
        results = [_shrink_one(g) for g in range(G)]
    else:
        results = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_shrink_one)(g) for g in range(G)
        )

    adjusted = np.vstack([r[0] for r in results])
    weights = np.stack([r[1] for r in results])
    return adjusted, weights


def compute_adjusted_means(
    X: DataFrameLike,
    Z: DataFrameLike | None,
    x_ids: object,
    z_ids: object,
    *,
    n_jobs: int = 1,
) -> AdjustedResult:
    """Compute the adjusted group means of individual-level predictors.

    This is the first stage of a micro-macro regression: the returned
    table replaces raw group averages by their BLUPs and can be passed
    straight to :func:`~micromacro.fit_micro_macro_model`, together
    with :attr:`AdjustedResult.unequal_groups`.

    Args:
        X: Individual-level predictors, ``(N, p)``.
        Z: Group-level predictors, ``(G, q)``, or ``None`` for q = 0.
        x_ids: Group id of each individual, length N.
        z_ids: Unique group ids in the order of *Z*, length G.
        n_jobs: Worker threads for the per-group solves.

    Returns:
        An :class:`~micromacro._results.AdjustedResult` whose table has
        one row per group in *Z* order, with columns ``BLUP.<x>`` for
        each individual predictor, the group predictors, and ``gid``.

    Raises:
        InputError: On invalid inputs (see
            :func:`~micromacro.decompose_variance`) or when output
            column names collide.
        SingularMatrixError: If a required inverse does not exist.
    """
    components = _decompose(X, Z, x_ids, z_ids, stacklevel=4)
    adjusted, weights = shrink_group_means(components, n_jobs=n_jobs)

    blup_names = [f"BLUP.{name}" for name in components.x_names]
    columns = blup_names + list(components.z_names) + ["gid"]
    if len(set(columns)) != len(columns):
        raise InputError(f"Output column names collide: {columns}.")

    table = pd.DataFrame(adjusted, columns=blup_names)
    for j, name in enumerate(components.z_names):
        table[name] = components.group_predictors[:, j]
    table["gid"] = components.group_ids

    group_sizes = pd.DataFrame({"gid": components.group_ids, "n": components.group_sizes})

    return AdjustedResult(
        table=table,
        balanced=is_balanced(components.group_sizes),
        group_sizes=group_sizes,
        components=components,
        weights=weights,
    )
