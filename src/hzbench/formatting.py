"""Shared text formatting helpers for hzbench.

Provides functions for formatting durations, rates, percentages,
tables and sparklines used by the report display and the CLI.
"""

from __future__ import annotations

import math


def format_duration(seconds: float, precision: int = 2) -> str:
    """Format a duration with adaptive units.

    Examples: ``'35.20ns'``, ``'1.25µs'``, ``'750.00ms'``, ``'1.50s'``.
    """
    if math.isnan(seconds):
        return "N/A"
    if math.isinf(seconds):
        return "∞"
    magnitude = abs(seconds)
    if magnitude < 1e-6:
        return f"{seconds * 1e9:.{precision}f}ns"
    if magnitude < 1e-3:
        return f"{seconds * 1e6:.{precision}f}µs"
    if magnitude < 1:
        return f"{seconds * 1e3:.{precision}f}ms"
    return f"{seconds:.{precision}f}s"


def format_rate(ops_per_second: float) -> str:
    """Format an operations-per-second rate with thousands separators.

    Rates of 100 and above are shown as whole numbers; smaller rates
    keep two decimals so slow cases still read meaningfully.
    """
    if math.isnan(ops_per_second):
        return "N/A"
    if math.isinf(ops_per_second):
        return "∞"
    if ops_per_second >= 100:
        return f"{ops_per_second:,.0f}"
    return f"{ops_per_second:,.2f}"


def format_pct(value: float, precision: int = 1) -> str:
    """Format a percentage with sign."""
    if math.isnan(value):
        return "N/A"
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.{precision}f}%"


def format_table(
    headers: list[str],
    rows: list[list[str]],
    *,
    alignments: list[str] | None = None,
    max_col_width: dict[int, int] | None = None,
    indent: int = 2,
) -> str:
    """Format a list of rows as an aligned text table.

    Auto-calculates column widths from content. Truncates columns that
    exceed *max_col_width* (with ``'...'`` suffix). Right-aligns columns
    marked ``'r'`` in *alignments*.

    Args:
        headers: Column header strings.
        rows: List of rows, each a list of cell strings.
        alignments: Per-column alignment: ``'l'``, ``'r'``, or ``'c'``.
        max_col_width: Column index to max width mapping.
        indent: Number of leading spaces per line.

    Returns:
        The formatted table as a string.
    """
    if not headers:
        return ""

    ncols = len(headers)
    if alignments is None:
        alignments = ["l"] * ncols
    alignments = list(alignments)
    while len(alignments) < ncols:
        alignments.append("l")

    max_widths = max_col_width or {}

    proc_headers = list(headers)
    proc_rows: list[list[str]] = []
    for row in rows:
        padded = list(row) + [""] * (ncols - len(row))
        proc_rows.append(padded[:ncols])

    for ci, max_w in max_widths.items():
        if ci < ncols:
            proc_headers[ci] = truncate(proc_headers[ci], max_w)
            for row in proc_rows:
                row[ci] = truncate(row[ci], max_w)

    widths = [len(h) for h in proc_headers]
    for row in proc_rows:
        for ci, cell in enumerate(row):
            widths[ci] = max(widths[ci], len(cell))

    prefix = " " * indent

    def _format_cell(text: str, width: int, align: str) -> str:
        if align == "r":
            return text.rjust(width)
        if align == "c":
            return text.center(width)
        return text.ljust(width)

    lines: list[str] = []
    header_line = "  ".join(
        _format_cell(proc_headers[i], widths[i], alignments[i]) for i in range(ncols)
    )
    lines.append(prefix + header_line.rstrip())
    lines.append(prefix + "  ".join("─" * w for w in widths))

    for row in proc_rows:
        row_line = "  ".join(_format_cell(row[i], widths[i], alignments[i]) for i in range(ncols))
        lines.append(prefix + row_line.rstrip())

    return "\n".join(lines)


_SPARK_CHARS = "▁▂▃▄▅▆▇█"


def format_sparkline(values: list[float], width: int = 10) -> str:
    """Format a series of values as a sparkline using block characters.

    Used to show per-iteration durations in cycle order, where a
    staircase usually means state is leaking from one cycle into the
    next.
    """
    if not values:
        return ""

    # Resample to width if needed.
    if len(values) > width:
        step = len(values) / width
        sampled = [values[int(i * step)] for i in range(width)]
    else:
        sampled = list(values)

    lo = min(sampled)
    hi = max(sampled)
    span = hi - lo

    result: list[str] = []
    for v in sampled:
        if span == 0:
            idx = len(_SPARK_CHARS) // 2
        else:
            idx = int((v - lo) / span * (len(_SPARK_CHARS) - 1))
        idx = max(0, min(idx, len(_SPARK_CHARS) - 1))
        result.append(_SPARK_CHARS[idx])

    return "".join(result)


def format_section_header(title: str, width: int = 72) -> str:
    """Format a section header: ``'─── Title ──...'``."""
    prefix = "─── "
    suffix_len = width - len(prefix) - len(title) - 1
    suffix = " " + "─" * max(0, suffix_len)
    return prefix + title + suffix


def truncate(text: str, max_len: int, suffix: str = "...") -> str:
    """Truncate text to *max_len*, adding *suffix* if truncated."""
    if len(text) <= max_len:
        return text
    if max_len <= len(suffix):
        return suffix[:max_len]
    return text[: max_len - len(suffix)] + suffix
