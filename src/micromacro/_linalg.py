"""Linear solves used in place of explicit matrix inversion.

All inverses in the package go through :func:`solve`, which
dispatches on the configured solver (see :mod:`micromacro._config`)
and converts LAPACK failures into :class:`SingularMatrixError` with
the name of the matrix that failed.  A pseudo-inverse is never
substituted.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import scipy.linalg

from ._config import get_solver
from ._exceptions import SingularMatrixError


def solve(
    A: np.ndarray,
    B: np.ndarray,
    *,
    name: str,
    group: Any = None,
    index: int | None = None,
) -> np.ndarray:
    """Return ``A⁻¹ B`` without forming ``A⁻¹``.

    Args:
        A: Square ``(m, m)`` coefficient matrix.
        B: Right-hand side ``(m,)`` or ``(m, r)``.
        name: Label for *A* used in error messages.
        group: Group id when *A* is a per-group matrix.
        index: Group position when *A* is a per-group matrix.

    Returns:
        Solution with the shape of *B*.

    Raises:
        SingularMatrixError: If *A* cannot be solved against.
    """
    where: dict[str, Any] = {}
    if index is not None:
        where = {"group": group, "index": index}

    A = np.atleast_2d(np.asarray(A, dtype=np.float64))
    B = np.asarray(B, dtype=np.float64)
    # Only A is checked; a non-finite right-hand side propagates into the result.
    if not np.all(np.isfinite(A)):
        raise SingularMatrixError(name, "matrix contains non-finite entries", **where)

    if get_solver() == "cholesky":
        try:
            factor = scipy.linalg.cho_factor(A, check_finite=False)
        except np.linalg.LinAlgError as exc:
            raise SingularMatrixError(
                name, "matrix is not positive definite", **where
            ) from exc
        return np.asarray(scipy.linalg.cho_solve(factor, B, check_finite=False))

    try:
        return np.asarray(scipy.linalg.solve(A, B, check_finite=False))
    except np.linalg.LinAlgError as exc:
        raise SingularMatrixError(name, str(exc).rstrip("."), **where) from exc
