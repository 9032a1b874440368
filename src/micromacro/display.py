"""Formatted ASCII summaries of micro-macro regression results.

The summary follows the layout of an R ``lm`` summary (call,
residual quantiles, coefficient table, fit statistics) inside the
80-column banner style used throughout the package, so that a report
can be compared line by line with the output of the R package the
method was first published with.
"""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import numpy as np

from .diagnostics import compute_shrinkage_summary

if TYPE_CHECKING:
    from ._results import AdjustedResult, InferenceReport

_WIDTH = 80

# (threshold, marker) pairs, most stringent first.
_SIGNIFICANCE = ((0.001, "***"), (0.01, "**"), (0.05, "*"))


def _truncate(name: str, max_len: int) -> str:
    """Truncate *name* to *max_len*, appending ``'...'`` if needed."""
    if len(name) <= max_len:
        return name
    return name[: max_len - 3] + "..."


def _wrap(text: str, width: int = _WIDTH, indent: int = 2) -> str:
    """Word-wrap *text*, indenting only the continuation lines."""
    return textwrap.fill(
        text,
        width=width,
        initial_indent="",
        subsequent_indent=" " * indent,
    )


def _significance_marker(p: float) -> str:
    if not np.isfinite(p):
        return ""
    for threshold, marker in _SIGNIFICANCE:
        if p < threshold:
            return marker
    return "ns"


def _fmt(value: float, spec: str = ".4f") -> str:
    """Format a float, rendering NaN as ``'N/A'``."""
    if value is None or not np.isfinite(value):
        return "N/A"
    return format(value, spec)


def _fmt_p(p: float) -> str:
    if not np.isfinite(p):
        return "N/A"
    if p < 1e-4:
        return "< 1e-04"
    return f"{p:.4f}"


def _banner(title: str) -> list[str]:
    lines = ["=" * _WIDTH]
    lines.extend(f"{line:^{_WIDTH}}" for line in textwrap.wrap(title, width=_WIDTH - 2))
    lines.append("=" * _WIDTH)
    return lines


def render_summary(
    report: InferenceReport,
    *,
    title: str = "Micro-Macro Regression Results",
) -> str:
    """Render *report* as an R-style regression summary.

    Args:
        report: Result of :func:`~micromacro.fit_micro_macro_model`.
        title: Banner title.

    Returns:
        The summary as a single newline-joined string.
    """
    fit = report.fit
    stats = report.selected
    robust = report.se_type == "robust"

    lines = _banner(title)

    lines.append("Call:")
    lines.append(_wrap(f"fit_micro_macro_model( {report.spec.formula}, ...)", indent=4))
    lines.append("-" * _WIDTH)

    # ── Residuals ──────────────────────────────────────────────── #
    lines.append("Residuals:")
    labels = ("Min", "1Q", "Median", "3Q", "Max")
    quantiles = np.quantile(fit.residuals, [0.0, 0.25, 0.5, 0.75, 1.0])
    lines.append("".join(f"{label:>12}" for label in labels))
    lines.append("".join(f"{_fmt(q):>12}" for q in quantiles))
    lines.append("-" * _WIDTH)

    # ── Coefficients ───────────────────────────────────────────── #
    #
    #   Term (20, left) | Estimate (11) | S.E. (11) | df (5)
    #   | t (9) | Pr(>|t|) (11) | r (8) | marker (5)
    #   Total: 20 + 11 + 11 + 5 + 9 + 11 + 8 + 5 = 80
    tc = 20
    se_hdr = "Robust S.E." if robust else "Std. Error"
    lines.append("Coefficients:")
    lines.append(
        f"{'':<{tc}}{'Estimate':>11}{se_hdr:>11}{'df':>5}"
        f"{'t value':>9}{'Pr(>|t|)':>11}{'r':>8}"
    )
    for i, term in enumerate(report.term_names):
        marker = _significance_marker(float(stats.p[i]))
        lines.append(
            f"{_truncate(term, tc - 1):<{tc}}"
            f"{_fmt(float(report.estimates[i])):>11}"
            f"{_fmt(float(stats.se[i])):>11}"
            f"{report.df:>5d}"
            f"{_fmt(float(stats.t[i]), '.3f'):>9}"
            f"{_fmt_p(float(stats.p[i])):>11}"
            f"{_fmt(float(stats.r[i]), '.3f'):>8}"
            f" {marker:<4}"
        )
    lines.append("-" * _WIDTH)

    # ── Fit statistics ─────────────────────────────────────────── #
    lines.append(
        f"Residual standard error: {_fmt(fit.residual_std_error)} "
        f"on {fit.df_resid} degrees of freedom"
    )
    lines.append(
        f"Multiple R-squared: {_fmt(fit.r_squared)},  "
        f"Adjusted R-squared: {_fmt(fit.r_squared_adj)}"
    )
    if np.isfinite(fit.f_statistic):
        lines.append(
            f"F-statistic: {_fmt(fit.f_statistic)} on {fit.f_df_num} and "
            f"{fit.f_df_denom} DF,  p-value: {_fmt_p(fit.f_p_value)}"
        )
    else:
        lines.append("F-statistic: N/A (intercept-only model)")

    # ── Notes ──────────────────────────────────────────────────── #
    notes: list[str] = []
    if robust:
        notes.append(
            "Group sizes are unequal: standard errors, t and p-values use "
            "the HC2 heteroskedasticity-consistent covariance."
        )
    else:
        notes.append("Standard errors assume homoskedastic second-stage errors.")
    bp_warning = report.diagnostics.get("breusch_pagan", {}).get("warning", "")
    if bp_warning:
        notes.append(bp_warning)

    lines.append("-" * _WIDTH)
    lines.append("Notes")
    lines.append("-" * _WIDTH)
    for note in notes:
        lines.append(_wrap(f"  [!] {note}", indent=6))

    lines.append("=" * _WIDTH)
    lines.append("(***) p < 0.001   (**) p < 0.01   (*) p < 0.05   (ns) p >= 0.05")
    return "\n".join(lines)


def print_summary(
    report: InferenceReport,
    *,
    title: str = "Micro-Macro Regression Results",
) -> None:
    """Print :func:`render_summary` followed by a blank line."""
    print(render_summary(report, title=title))
    print()


def print_adjusted_means_table(
    result: AdjustedResult,
    *,
    title: str = "Adjusted Group Means",
) -> None:
    """Print a summary of the first-stage adjustment.

    Shows the number of groups and individuals, the group-size range,
    whether the groups are balanced, and the average reliability
    (diagonal of W1) for each individual-level predictor.
    """
    components = result.components
    sizes = components.group_sizes
    col1 = 40
    col2 = 38

    for line in _banner(title):
        print(line)
    print(
        f"{'No. Groups:':<16}{components.n_groups:<{col1 - 16}}"
        f"{'No. Individuals:':>{col2 - 11}} {components.n_individuals:>10}"
    )
    size_range = f"{int(sizes.min())} - {int(sizes.max())}"
    print(
        f"{'Group Sizes:':<16}{size_range:<{col1 - 16}}"
        f"{'Balanced:':>{col2 - 11}} {'Yes' if result.balanced else 'No':>10}"
    )
    print("-" * _WIDTH)

    fc = 22
    print(f"{'Predictor':<{fc}}{'Mean W1':>12}{'Min W1':>12}{'Max W1':>12}")
    print("-" * _WIDTH)
    summary = compute_shrinkage_summary(result.weights)
    for j, name in enumerate(components.x_names):
        print(
            f"{_truncate(name, fc - 1):<{fc}}"
            f"{_fmt(float(summary['mean_reliability'][j])):>12}"
            f"{_fmt(float(summary['min_reliability'][j])):>12}"
            f"{_fmt(float(summary['max_reliability'][j])):>12}"
        )

    if not result.balanced:
        print("-" * _WIDTH)
        print(
            _wrap(
                "  [!] Group sizes differ; pass unequal_groups=True to "
                "fit_micro_macro_model to obtain robust standard errors.",
                indent=6,
            )
        )
    print("=" * _WIDTH)
    print()
