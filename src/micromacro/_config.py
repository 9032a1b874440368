"""Linear-solver configuration for the micromacro package.

Every matrix inverse in the estimator (Σ_zz⁻¹, the per-group
composite inverse, and (UᵗU)⁻¹) is evaluated as a linear solve.  This
module controls which factorisation performs those solves.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_solver`.
    2. The ``MICROMACRO_SOLVER`` environment variable.
    3. The default, ``"lu"``.

Valid solver names are ``"lu"`` and ``"cholesky"`` (case-insensitive):

* ``"lu"`` — ``scipy.linalg.solve``, LU with partial pivoting.  Works
  for any non-singular matrix, including the indefinite composite
  matrices an indefinite Σ_xx estimate can produce.
* ``"cholesky"`` — ``scipy.linalg.cho_factor`` / ``cho_solve``.  About
  twice as fast for symmetric positive-definite matrices; a matrix that
  is not positive definite is reported as singular.

Examples:
    Use Cholesky solves from the shell::

        export MICROMACRO_SOLVER=cholesky

    Use Cholesky programmatically::

        import micromacro
        micromacro.set_solver("cholesky")

    Re-enable the default resolution order::

        micromacro.set_solver("auto")
"""

from __future__ import annotations

import os

_VALID_SOLVERS = {"lu", "cholesky", "auto"}

# Sentinel indicating "no programmatic override has been set".
_solver_override: str | None = None


def get_solver() -> str:
    """Return the active solver name (``"lu"`` or ``"cholesky"``).

    Resolution order:
        1. Value set by :func:`set_solver` (unless ``"auto"``).
        2. ``MICROMACRO_SOLVER`` environment variable.
        3. ``"lu"``.

    Returns:
        ``"lu"`` or ``"cholesky"``.
    """
    # 1. Programmatic override
    if _solver_override is not None and _solver_override != "auto":
        return _solver_override

    # 2. Environment variable
    env = os.environ.get("MICROMACRO_SOLVER", "").strip().lower()
    if env in ("lu", "cholesky"):
        return env

    # 3. Default
    return "lu"


def set_solver(name: str) -> None:
    """Override the solver selection.

    Args:
        name: One of ``"lu"``, ``"cholesky"``, or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised solver.
    """
    global _solver_override
    normalised = name.strip().lower()
    if normalised not in _VALID_SOLVERS:
        raise ValueError(
            f"Unknown solver '{name}'. Choose from: {sorted(_VALID_SOLVERS)}"
        )
    _solver_override = normalised
