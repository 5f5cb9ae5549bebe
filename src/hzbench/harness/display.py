"""Terminal display formatting for case reports and comparisons.

Produces benchmark.js style summary lines, aligned tables and
comparison listings.  Read-only: nothing here changes a report.
"""

from __future__ import annotations

import math

from hzbench.formatting import (
    format_duration,
    format_pct,
    format_rate,
    format_section_header,
    format_sparkline,
    format_table,
)
from hzbench.harness.compare import ComparisonResult, Verdict
from hzbench.harness.results import CaseReport, RunMeta
from hzbench.harness.stats import describe
from hzbench.harness.system import format_environment


def _format_moe(report: CaseReport) -> str:
    rme = report.relative_margin_of_error
    if math.isnan(rme):
        return "N/A"
    if math.isinf(rme):
        return "±∞"
    return f"±{rme:.2f}%"


# ---------------------------------------------------------------------------
# Single report
# ---------------------------------------------------------------------------


def format_report_line(report: CaseReport) -> str:
    """One-line summary, e.g. ``name x 1,234,567 ops/sec ±1.23% (57 runs sampled)``.

    A status suffix is appended for anything but a clean run.
    """
    runs = "run" if report.sample_count == 1 else "runs"
    line = (
        f"{report.name} x {format_rate(report.operations_per_second)} ops/sec "
        f"{_format_moe(report)} ({report.sample_count} {runs} sampled)"
    )
    flags: list[str] = []
    if report.status != "ok":
        flags.append(report.status)
    if report.trimmed_count:
        flags.append(f"{report.trimmed_count} trimmed ({report.trim_method})")
    if report.drift_suspected:
        flags.append("drift")
    if flags:
        line += f" [{', '.join(flags)}]"
    return line


def format_report_detail(report: CaseReport) -> str:
    """Multi-line detail block for one report."""
    lo = report.mean_duration - report.margin_of_error
    hi = report.mean_duration + report.margin_of_error
    lines = [
        format_report_line(report),
        f"  mean:      {format_duration(report.mean_duration)} per iteration",
        f"  interval:  [{format_duration(lo)}, {format_duration(hi)}] "
        f"at {report.confidence_level:.0%} confidence",
        f"  stdev:     {format_duration(report.standard_deviation)}",
        f"  total:     {format_duration(report.total_elapsed)} over "
        f"{report.total_iterations:,} iterations "
        f"({format_duration(report.run_duration)} wall)",
    ]
    if report.outlier_candidates:
        lines.append(f"  outliers:  {report.outlier_candidates} candidate(s) (IQR)")
    if report.samples:
        per_iteration = [s.per_iteration for s in report.samples]
        desc = describe(per_iteration)
        lines.append(
            f"  spread:    median {format_duration(desc.median)}, "
            f"min {format_duration(desc.min)}, max {format_duration(desc.max)}"
        )
        lines.append(f"  trend:     {format_sparkline(per_iteration, width=20)}")
    if report.failure:
        lines.append(f"  failure:   {report.failure}")
    for w in report.warnings:
        lines.append(f"  warning:   {w}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------


def format_report_table(reports: list[CaseReport]) -> str:
    """Aligned table of reports, one row per case."""
    headers = ["Case", "ops/sec", "±", "Mean", "Samples", "Status"]
    rows = [
        [
            r.name,
            format_rate(r.operations_per_second),
            _format_moe(r),
            format_duration(r.mean_duration),
            str(r.sample_count),
            r.status,
        ]
        for r in reports
    ]
    return format_table(
        headers,
        rows,
        alignments=["l", "r", "r", "r", "r", "l"],
        max_col_width={0: 40},
    )


def format_run(
    meta: RunMeta,
    reports: list[CaseReport],
    *,
    show_environment: bool = True,
) -> str:
    """Format a complete run for display.

    Shows the header, environment, a report table, and every
    failure and warning.
    """
    lines: list[str] = []

    title = meta.name or meta.run_id
    lines.append(title)
    lines.append("─" * len(title))
    if meta.start_time:
        lines.append(f"Started: {meta.start_time}")
    lines.append(
        f"Cases: {meta.cases_total} total, {meta.cases_complete} complete, "
        f"{meta.cases_failed} failed"
    )
    lines.append("")

    if show_environment:
        lines.append(format_environment(meta.environment))
        lines.append("")

    if not reports:
        lines.append("No case reports.")
        return "\n".join(lines)

    lines.append(format_report_table(reports))

    notes = [(r.name, r.failure, r.warnings) for r in reports if r.failure or r.warnings]
    if notes:
        lines.append("")
        lines.append(format_section_header("Warnings"))
        for name, failure, warnings in notes:
            if failure:
                lines.append(f"  {name}: FAILED: {failure}")
            for w in warnings:
                if w != failure:
                    lines.append(f"  {name}: {w}")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def format_comparison(result: ComparisonResult) -> str:
    """Format a comparison: ranking, then pairwise verdicts."""
    lines = [format_section_header("Ranking")]
    rows = [
        [
            str(e.rank),
            e.name,
            format_rate(e.operations_per_second),
            "N/A" if math.isnan(e.relative_margin_of_error) else f"±{e.relative_margin_of_error:.2f}%",
        ]
        for e in result.ranking
    ]
    lines.append(format_table(["#", "Case", "ops/sec", "±"], rows, alignments=["r", "l", "r", "r"]))
    lines.append("")

    lines.append(format_section_header("Pairwise"))
    for pair in result.pairs:
        marker = " " if pair.verdict is Verdict.INDISTINGUISHABLE else "*"
        detail = f"  {marker} {pair.describe()}"
        if not math.isnan(pair.p_value):
            detail += f" (Welch p={pair.p_value:.3g})"
        lines.append(detail)
    lines.append("")

    # Overlap is not transitive: every pair must overlap, not just pairs with the top case.
    if not any(pair.significant for pair in result.pairs):
        lines.append("All cases are statistically indistinguishable.")
    else:
        lines.append(f"Fastest is {', '.join(result.fastest)}")
        lines.append(f"Slowest is {', '.join(result.slowest)}")
    return "\n".join(lines)


def format_rejected(reports: list[CaseReport]) -> str:
    """List reports excluded from comparison because they are incomplete."""
    lines = ["Not compared (incomplete):"]
    for r in reports:
        reason = r.failure or "; ".join(r.warnings) or "incomplete"
        lines.append(f"  {r.name}: {reason}")
    return "\n".join(lines)


def format_history(rows: list[tuple[RunMeta, CaseReport]]) -> str:
    """Table of one case's reports across runs."""
    headers = ["Run", "Started", "ops/sec", "±", "Samples", "Status", "Fingerprint"]
    table_rows = [
        [
            meta.name or meta.run_id,
            meta.start_time,
            format_rate(r.operations_per_second),
            _format_moe(r),
            str(r.sample_count),
            r.status,
            meta.fingerprint,
        ]
        for meta, r in rows
    ]
    lines = [
        format_table(
            headers,
            table_rows,
            alignments=["l", "l", "r", "r", "r", "l", "l"],
            max_col_width={0: 32},
        )
    ]
    rates = [r.operations_per_second for _, r in rows if r.complete]
    if len(rates) >= 2:
        change = (rates[-1] - rates[0]) / rates[0] * 100 if rates[0] else float("nan")
        lines.append("")
        lines.append(f"  Change since first complete run: {format_pct(change)}")
    return "\n".join(lines)
