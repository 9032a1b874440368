"""micromacro — Micro-macro regression with BLUP-adjusted group means.

Implements the two-stage estimator of Croon & van Veldhoven (2007) for
regressing a group-level outcome on individual-level predictors:
method-of-moments variance decomposition, empirical-Bayes shrinkage of
the raw group means, and an OLS second stage with HC2
heteroskedasticity-consistent standard errors when group sizes differ.

Public API:
    .. autosummary::
        decompose_variance
        shrink_group_means
        compute_adjusted_means
        is_balanced
        ModelSpec
        expand_design
        fit_ols
        compute_leverage
        robust_covariance
        coefficient_statistics
        fit_micro_macro_model
        render_summary
        print_summary
        print_adjusted_means_table
        get_solver
        set_solver
        VarianceComponents
        AdjustedResult
        DesignMatrix
        FitResult
        CoefficientStatistics
        InferenceReport
        MicroMacroError
        InputError
        SingularMatrixError
        UnknownTermError
        DimensionMismatchError
"""

from ._config import get_solver, set_solver
from ._exceptions import (
    DimensionMismatchError,
    InputError,
    MicroMacroError,
    SingularMatrixError,
    UnknownTermError,
)
from ._results import (
    AdjustedResult,
    CoefficientStatistics,
    DesignMatrix,
    FitResult,
    InferenceReport,
    VarianceComponents,
)
from .decomposition import decompose_variance
from .design import ModelSpec, expand_design
from .display import print_adjusted_means_table, print_summary, render_summary
from .inference import (
    coefficient_statistics,
    compute_leverage,
    fit_micro_macro_model,
    robust_covariance,
)
from .ols import fit_ols
from .shrinkage import compute_adjusted_means, is_balanced, shrink_group_means

__all__ = [
    "AdjustedResult",
    "CoefficientStatistics",
    "DesignMatrix",
    "FitResult",
    "InferenceReport",
    "VarianceComponents",
    "MicroMacroError",
    "InputError",
    "SingularMatrixError",
    "UnknownTermError",
    "DimensionMismatchError",
    "decompose_variance",
    "shrink_group_means",
    "compute_adjusted_means",
    "is_balanced",
    "ModelSpec",
    "expand_design",
    "fit_ols",
    "compute_leverage",
    "robust_covariance",
    "coefficient_statistics",
    "fit_micro_macro_model",
    "render_summary",
    "print_summary",
    "print_adjusted_means_table",
    "get_solver",
    "set_solver",
]

__version__ = "0.1.0"
