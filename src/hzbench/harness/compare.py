"""Comparison of completed case reports.

Ranks cases by operations per second and gives a verdict for every
pair.  Two cases are only called faster or slower when their
confidence intervals do not overlap; otherwise they are
indistinguishable, however far apart the nominal means are.

Verdicts are read from the first case's point of view.  The
percentage difference is measured against the faster case and is
positive when the second case is slower, so swapping the pair inverts
the verdict and negates the percentage.
"""

from __future__ import annotations

import enum
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from hzbench.errors import IncompleteRun
from hzbench.harness.stats import welch_ttest

if TYPE_CHECKING:
    from hzbench.harness.results import CaseReport

log = logging.getLogger("hzbench")


class Verdict(str, enum.Enum):
    """Outcome of comparing a first case against a second."""

    FASTER = "faster"
    SLOWER = "slower"
    INDISTINGUISHABLE = "indistinguishable"

    def inverse(self) -> Verdict:
        if self is Verdict.FASTER:
            return Verdict.SLOWER
        if self is Verdict.SLOWER:
            return Verdict.FASTER
        return self


# ---------------------------------------------------------------------------
# Pairwise rules
# ---------------------------------------------------------------------------


def intervals_overlap(
    mean_a: float,
    moe_a: float,
    mean_b: float,
    moe_b: float,
) -> bool:
    """True if ``[mean - moe, mean + moe]`` intervals share any point.

    Touching endpoints count as overlap.  An infinite margin overlaps
    everything.
    """
    return mean_a - moe_a <= mean_b + moe_b and mean_b - moe_b <= mean_a + moe_a


def percent_difference(mean_a: float, mean_b: float) -> float:
    """Relative difference between two mean durations, in percent.

    The magnitude is measured against the faster (smaller) mean; the
    sign is positive when *mean_b* is the slower one.
    """
    if mean_a == mean_b:
        return 0.0
    fast, slow = min(mean_a, mean_b), max(mean_a, mean_b)
    if fast <= 0:
        magnitude = float("inf")
    else:
        magnitude = (slow - fast) / fast * 100
    return magnitude if mean_b > mean_a else -magnitude


@dataclass
class PairwiseComparison:
    """Verdict for one ordered pair of cases."""

    first: str
    second: str
    verdict: Verdict
    percent_difference: float
    overlap: bool
    p_value: float = float("nan")  # Welch's t-test, informational only

    @property
    def significant(self) -> bool:
        return self.verdict is not Verdict.INDISTINGUISHABLE

    def reversed(self) -> PairwiseComparison:
        """The same comparison seen from the second case."""
        return PairwiseComparison(
            first=self.second,
            second=self.first,
            verdict=self.verdict.inverse(),
            percent_difference=-self.percent_difference,
            overlap=self.overlap,
            p_value=self.p_value,
        )

    def describe(self) -> str:
        """One-line human-readable summary."""
        if self.verdict is Verdict.INDISTINGUISHABLE:
            return (
                f"{self.first} and {self.second} are indistinguishable "
                f"(nominal difference {abs(self.percent_difference):.2f}%)"
            )
        if self.verdict is Verdict.FASTER:
            return f"{self.first} is {abs(self.percent_difference):.2f}% faster than {self.second}"
        return f"{self.first} is {abs(self.percent_difference):.2f}% slower than {self.second}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "first": self.first,
            "second": self.second,
            "verdict": self.verdict.value,
            "percent_difference": self.percent_difference,
            "overlap": self.overlap,
            "p_value": None if math.isnan(self.p_value) else self.p_value,
        }


def _check_complete(report: CaseReport) -> None:
    if not report.complete:
        reason = "; ".join(report.warnings) or "report is marked incomplete"
        raise IncompleteRun(report.name, reason)


def compare_pair(a: CaseReport, b: CaseReport) -> PairwiseComparison:
    """Compare two complete reports, from *a*'s point of view.

    Raises:
        IncompleteRun: If either report is incomplete.
    """
    _check_complete(a)
    _check_complete(b)

    overlap = intervals_overlap(a.mean_duration, a.margin_of_error, b.mean_duration, b.margin_of_error)
    if overlap:
        verdict = Verdict.INDISTINGUISHABLE
    elif a.mean_duration < b.mean_duration:
        verdict = Verdict.FASTER
    else:
        verdict = Verdict.SLOWER

    p_value = float("nan")
    if a.samples and b.samples:
        p_value = welch_ttest(
            [s.per_iteration for s in a.samples],
            [s.per_iteration for s in b.samples],
        ).p_value

    return PairwiseComparison(
        first=a.name,
        second=b.name,
        verdict=verdict,
        percent_difference=percent_difference(a.mean_duration, b.mean_duration),
        overlap=overlap,
        p_value=p_value,
    )


# ---------------------------------------------------------------------------
# Multi-case comparison
# ---------------------------------------------------------------------------


@dataclass
class RankEntry:
    """One row of the ranking."""

    rank: int  # 1-based
    name: str
    operations_per_second: float
    relative_margin_of_error: float


@dataclass
class ComparisonResult:
    """Ranking plus a verdict for every pair of the compared cases."""

    ranking: list[RankEntry] = field(default_factory=list)
    pairs: list[PairwiseComparison] = field(default_factory=list)

    def get(self, first: str, second: str) -> PairwiseComparison:
        """Comparison of *first* against *second*, in either stored orientation.

        Raises:
            KeyError: If the pair was not compared.
        """
        for pair in self.pairs:
            if pair.first == first and pair.second == second:
                return pair
            if pair.first == second and pair.second == first:
                return pair.reversed()
        raise KeyError(f"No comparison between '{first}' and '{second}'")

    @property
    def fastest(self) -> list[str]:
        """Top-ranked case plus every case indistinguishable from it."""
        if not self.ranking:
            return []
        top = self.ranking[0].name
        return [top] + [
            e.name
            for e in self.ranking[1:]
            if self.get(top, e.name).verdict is Verdict.INDISTINGUISHABLE
        ]

    @property
    def slowest(self) -> list[str]:
        """Bottom-ranked case plus every case indistinguishable from it."""
        if not self.ranking:
            return []
        bottom = self.ranking[-1].name
        return [
            e.name
            for e in self.ranking[:-1]
            if self.get(bottom, e.name).verdict is Verdict.INDISTINGUISHABLE
        ] + [bottom]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "ranking": [
                {
                    "rank": e.rank,
                    "name": e.name,
                    "operations_per_second": e.operations_per_second,
                    "relative_margin_of_error": e.relative_margin_of_error,
                }
                for e in self.ranking
            ],
            "pairs": [p.to_dict() for p in self.pairs],
            "fastest": self.fastest,
            "slowest": self.slowest,
        }


def compare_reports(reports: Sequence[CaseReport]) -> ComparisonResult:
    """Rank complete reports and compare every pair.

    Args:
        reports: Two or more complete reports with distinct names.

    Returns:
        ComparisonResult ranked by operations per second (descending,
        ties broken by name).  Pairs are listed in ranking order.

    Raises:
        ValueError: If fewer than two reports are given or names repeat.
        IncompleteRun: If any report is incomplete.
    """
    if len(reports) < 2:
        raise ValueError(f"Need at least two reports to compare (got {len(reports)})")
    names = [r.name for r in reports]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate case names in comparison: {', '.join(duplicates)}")
    for r in reports:
        _check_complete(r)

    ordered = sorted(reports, key=lambda r: (-r.operations_per_second, r.name))
    result = ComparisonResult(
        ranking=[
            RankEntry(
                rank=i,
                name=r.name,
                operations_per_second=r.operations_per_second,
                relative_margin_of_error=r.relative_margin_of_error,
            )
            for i, r in enumerate(ordered, 1)
        ],
    )
    for a, b in itertools.combinations(ordered, 2):
        result.pairs.append(compare_pair(a, b))

    significant = sum(1 for p in result.pairs if p.significant)
    log.debug(
        "Compared %d cases: %d of %d pairs significantly different",
        len(ordered),
        significant,
        len(result.pairs),
    )
    return result
