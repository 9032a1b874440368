"""Model specification and second-stage design-matrix expansion.

A :class:`ModelSpec` is an explicit, already-parsed description of the
second-stage regression: an optional response name, an ordered tuple
of main effects, and an ordered tuple of interactions (each a tuple of
two or more main-effect names whose columns multiply elementwise).

:meth:`ModelSpec.from_formula` is a thin adapter for the familiar
Wilkinson notation::

    "y ~ x1 + x2 + z1 + x1:z1"      # explicit interaction
    "y ~ x1 * z1"                    # x1 + z1 + x1:z1

Only ``+``, ``:`` and ``*`` are understood.  The intercept is always
part of the model, so ``1``, ``0`` and ``-1`` are rejected rather than
silently ignored.

:func:`expand_design` is purely numeric: it looks the names up in a
table and lays the columns out as

    [ (Intercept) | main effects … | interactions … ]

in declared order, giving 1 + |main effects| + |interactions| columns.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass

import numpy as np

from ._compat import DataFrameLike, _ensure_pandas_df, _numeric_values
from ._exceptions import InputError, UnknownTermError
from ._results import DesignMatrix

INTERCEPT = "(Intercept)"

_FORBIDDEN = set("()^/|-%")


def _term_name(raw: str, formula: str) -> str:
    name = raw.strip()
    if not name:
        raise InputError(f"Empty term in formula {formula!r}.")
    if name in {"0", "1"}:
        raise InputError(
            f"Formula {formula!r} manipulates the intercept; the intercept is "
            f"always included and cannot be added or removed."
        )
    if _FORBIDDEN & set(name) or any(ch.isspace() for ch in name):
        raise InputError(f"Unsupported formula syntax in term {name!r} of {formula!r}.")
    return name


@dataclass(frozen=True)
class ModelSpec:
    """Explicit term specification for the second-stage regression.

    Duplicate main effects are dropped (first appearance wins), and an
    interaction that repeats an earlier one in any order (``b:a`` after
    ``a:b``) is dropped too.

    Raises:
        InputError: If an interaction has fewer than two components
            or repeats a component.
    """

    response: str | None
    main_effects: tuple[str, ...]
    interactions: tuple[tuple[str, ...], ...] = ()

    def __post_init__(self) -> None:
        main = tuple(dict.fromkeys(str(m) for m in self.main_effects))

        seen: set[frozenset[str]] = set()
        interactions: list[tuple[str, ...]] = []
        for term in self.interactions:
            parts = tuple(str(t) for t in term)
            if len(parts) < 2:
                raise InputError(
                    f"Interaction {parts} must combine at least two main effects."
                )
            key = frozenset(parts)
            if len(key) != len(parts):
                raise InputError(f"Interaction {':'.join(parts)} repeats a component.")
            if key in seen:
                continue
            seen.add(key)
            interactions.append(parts)

        object.__setattr__(self, "main_effects", main)
        object.__setattr__(self, "interactions", tuple(interactions))

    @classmethod
    def from_formula(cls, formula: str) -> ModelSpec:
        """Parse ``"y ~ a + b + a:b"`` style formulas.

        Raises:
            InputError: On malformed formulas or unsupported syntax.
        """
        if formula.count("~") != 1:
            raise InputError(f"Formula {formula!r} must contain exactly one '~'.")
        lhs, rhs = (side.strip() for side in formula.split("~"))
        response = _term_name(lhs, formula) if lhs else None

        main: list[str] = []
        interactions: list[tuple[str, ...]] = []
        for raw in rhs.split("+"):
            term = raw.strip()
            if "*" in term:
                parts = [_term_name(part, formula) for part in term.split("*")]
                main.extend(parts)
                for order in range(2, len(parts) + 1):
                    interactions.extend(itertools.combinations(parts, order))
            elif ":" in term:
                interactions.append(tuple(_term_name(part, formula) for part in term.split(":")))
            else:
                main.append(_term_name(term, formula))

        return cls(response=response, main_effects=tuple(main), interactions=tuple(interactions))

    @property
    def term_names(self) -> tuple[str, ...]:
        """Design column labels, intercept first."""
        return (
            (INTERCEPT,)
            + self.main_effects
            + tuple(":".join(term) for term in self.interactions)
        )

    @property
    def formula(self) -> str:
        terms = list(self.term_names[1:]) or ["1"]
        return f"{self.response or ''} ~ {' + '.join(terms)}".strip()

    def __str__(self) -> str:
        return self.formula


def expand_design(spec: ModelSpec | str, table: DataFrameLike) -> DesignMatrix:
    """Build the numeric design matrix for *spec* from *table*.

    Args:
        spec: A :class:`ModelSpec` or a formula string.
        table: Group-level table (typically
            :attr:`AdjustedResult.table`), one row per group.

    Returns:
        A :class:`~micromacro._results.DesignMatrix` with
        ``1 + len(main_effects) + len(interactions)`` columns.

    Raises:
        UnknownTermError: If an interaction uses a name that is not a
            declared main effect, or a main effect is not a column of
            *table*.
        InputError: If a referenced column is non-numeric or
            non-finite.
    """
    if isinstance(spec, str):
        spec = ModelSpec.from_formula(spec)
    df = _ensure_pandas_df(table, name="table")

    declared = set(spec.main_effects)
    for term in spec.interactions:
        for name in term:
            if name not in declared:
                raise UnknownTermError(
                    name,
                    f"Interaction '{':'.join(term)}' references '{name}', which "
                    f"is not a declared main effect.",
                )
    available = {str(c) for c in df.columns}
    for name in spec.main_effects:
        if name not in available:
            raise UnknownTermError(
                name, f"Term '{name}' is not a column of the table."
            )

    n_rows = len(df)
    renamed = df.rename(columns=str)
    main = _numeric_values(renamed[list(spec.main_effects)], name="table")
    position = {name: j for j, name in enumerate(spec.main_effects)}

    blocks = [np.ones((n_rows, 1)), main]
    for term in spec.interactions:
        cols = [position[name] for name in term]
        blocks.append(np.prod(main[:, cols], axis=1, keepdims=True))

    return DesignMatrix(values=np.hstack(blocks), column_names=spec.term_names)
