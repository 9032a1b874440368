"""Exception hierarchy for the micromacro package.

Every error raised on purpose by the package derives from
:class:`MicroMacroError`, which itself subclasses ``ValueError`` so
callers that already guard against ``ValueError`` keep working.

* :class:`InputError` — malformed or inconsistent inputs (row-count
  mismatch, unknown or duplicate group ids, empty groups, non-finite
  values, malformed formulas).
* :class:`SingularMatrixError` — a covariance or design matrix could
  not be inverted.  The offending matrix is named and, for per-group
  matrices, the group is identified.
* :class:`UnknownTermError` — a model term references a name that is
  not declared or not present in the data.
* :class:`DimensionMismatchError` — shapes disagree between stages
  (p, q, k, or G).

None of these are retried anywhere: every computation is
deterministic, so a retry would reproduce the failure.
"""

from __future__ import annotations

from typing import Any


class MicroMacroError(ValueError):
    """Base class for all micromacro errors."""


class InputError(MicroMacroError):
    """Inputs violate a precondition of the estimator."""


class UnknownTermError(MicroMacroError):
    """A model term references an undeclared or missing name."""

    def __init__(self, term: str, message: str | None = None) -> None:
        self.term = term
        super().__init__(message or f"Unknown term '{term}'.")


class DimensionMismatchError(MicroMacroError):
    """Array shapes disagree between two stages of the pipeline."""


class SingularMatrixError(MicroMacroError):
    """A matrix that must be inverted is singular (or not positive definite).

    Attributes:
        matrix: Name of the matrix that failed (e.g. ``"sigma_zz"``).
        group: Group id for per-group matrices, else ``None``.
        index: Zero-based group position for per-group matrices,
            else ``None``.
    """

    def __init__(
        self,
        matrix: str,
        reason: str = "matrix is singular",
        *,
        group: Any = None,
        index: int | None = None,
    ) -> None:
        self.matrix = matrix
        self.group = group
        self.index = index
        location = ""
        if index is not None:
            location = f" for group {group!r} (index {index})"
        super().__init__(f"Cannot invert '{matrix}'{location}: {reason}.")
