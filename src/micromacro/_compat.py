"""Input compatibility layer.

The public API accepts pandas DataFrames, Polars DataFrames or
LazyFrames, and plain 2-D NumPy arrays for the predictor tables, and
any 1-D array-like for group ids and outcomes.  Everything is
converted to pandas / NumPy at the boundary so that the estimators
operate on a single representation.

Polars is **not** a required dependency.  If it is not installed, the
converter simply passes pandas objects through untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

from ._exceptions import InputError

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame | np.ndarray
else:
    DataFrameLike: TypeAlias = pd.DataFrame | np.ndarray

# Runtime detection; Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(
    obj: DataFrameLike,
    *,
    name: str = "input",
    prefix: str = "x",
) -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Accepted types:
        * ``pandas.DataFrame`` — returned as-is.
        * ``polars.DataFrame`` — converted via ``.to_pandas()``.
        * ``polars.LazyFrame`` — collected then converted.
        * ``numpy.ndarray`` — 1-D arrays become a single column, 2-D
          arrays keep their columns; columns are named
          ``{prefix}1 … {prefix}p``.

    Args:
        obj: Table to convert.
        name: Label used in error messages (e.g. ``"X"`` or ``"Z"``).
        prefix: Column-name prefix for NumPy input.

    Raises:
        TypeError: If *obj* is not a recognised table type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if isinstance(obj, np.ndarray):
        arr = obj.reshape(-1, 1) if obj.ndim == 1 else obj
        if arr.ndim != 2:
            raise TypeError(f"'{name}' must be a 2-D array, got {obj.ndim} dimensions.")
        columns = [f"{prefix}{j + 1}" for j in range(arr.shape[1])]
        return pd.DataFrame(arr, columns=columns)

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    raise TypeError(
        f"'{name}' must be a pandas DataFrame, a NumPy array"
        + (" or a Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _numeric_values(df: pd.DataFrame, *, name: str) -> np.ndarray:
    """Return the values of *df* as a finite float64 matrix.

    Raises:
        InputError: If a column is not numeric or any value is NaN/Inf.
    """
    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise InputError(f"'{name}' has non-numeric columns: {non_numeric}.")
    values = df.to_numpy(dtype=np.float64)
    if not np.all(np.isfinite(values)):
        raise InputError(
            f"'{name}' contains NaN or Inf; missing data is not supported."
        )
    return values


def _ensure_1d(obj: object, *, name: str) -> np.ndarray:
    """Flatten an array-like (list, Series, 1-column frame) to 1-D."""
    if _HAS_POLARS and isinstance(obj, (pl.DataFrame, pl.LazyFrame)):
        obj = _ensure_pandas_df(obj, name=name)
    if isinstance(obj, pd.DataFrame):
        if obj.shape[1] != 1:
            raise InputError(
                f"'{name}' must have exactly one column, got {obj.shape[1]}."
            )
        obj = obj.iloc[:, 0]
    arr = np.asarray(obj)
    if arr.ndim == 2 and 1 in arr.shape:
        arr = arr.ravel()
    if arr.ndim != 1:
        raise InputError(f"'{name}' must be one-dimensional, got shape {arr.shape}.")
    return arr
