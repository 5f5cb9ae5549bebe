"""Statistics for cycle samples.

Turns a sample set into a mean per-iteration duration, its variance
and standard deviation, a margin of error at a stated confidence level
and an operations-per-second rate.  Also provides descriptive
statistics, IQR outlier flagging, optional trimming, Welch's t-test,
and a drift check that looks for a trend across cycles.

The margin of error is ``critical * s / sqrt(n)``.  The critical value
comes from Student's t with ``n - 1`` degrees of freedom up to 30, and
from the normal distribution beyond that.  For a fixed standard
deviation both factors shrink as n grows, so the margin never widens
when samples are added.

Trimming is never implicit: the method and the number of samples
removed are carried on every Statistics snapshot.

References:
    Welch's t-test: Welch, B. L. (1947). "The generalization of
        'Student's' problem when several different population
        variances are involved." Biometrika 34(1-2): 28-35.
"""

from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass
from typing import Any, Sequence

from scipy import stats as sps

from hzbench.harness.sampler import Sample

log = logging.getLogger("hzbench")

# Above this many degrees of freedom the normal quantile is used.
T_DISTRIBUTION_MAX_DF = 30

# Drift: significance of the slope, and the fitted change across the
# whole run relative to the mean that makes it worth reporting.
DRIFT_P_VALUE = 0.01
DRIFT_MIN_RELATIVE_CHANGE = 0.05


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------


@dataclass
class DescriptiveStats:
    """Summary statistics for a sample."""

    n: int
    mean: float
    median: float
    stdev: float
    min: float
    max: float
    q1: float  # 25th percentile
    q3: float  # 75th percentile
    iqr: float  # interquartile range
    cv: float  # coefficient of variation (stdev/mean)


def describe(values: Sequence[float]) -> DescriptiveStats:
    """Compute descriptive statistics for a sample.

    Returns:
        DescriptiveStats with all fields populated.  If n < 2, stdev
        and CV are 0.0; if n == 0, every field is NaN.
    """
    if not values:
        nan = float("nan")
        return DescriptiveStats(0, nan, nan, nan, nan, nan, nan, nan, nan, nan)

    sorted_v = sorted(values)
    n = len(sorted_v)
    mean = statistics.fmean(sorted_v)
    median = statistics.median(sorted_v)

    if n >= 2:
        stdev = statistics.stdev(sorted_v)
        cv = stdev / mean if mean != 0 else float("inf")
    else:
        stdev = 0.0
        cv = 0.0

    q1 = _percentile(sorted_v, 0.25)
    q3 = _percentile(sorted_v, 0.75)

    return DescriptiveStats(
        n=n,
        mean=mean,
        median=median,
        stdev=stdev,
        min=sorted_v[0],
        max=sorted_v[-1],
        q1=q1,
        q3=q3,
        iqr=q3 - q1,
        cv=cv,
    )


def _percentile(sorted_values: list[float], p: float) -> float:
    """Compute the p-th percentile using linear interpolation.

    Equivalent to numpy.percentile with interpolation='linear'.
    Assumes sorted_values is already sorted in ascending order.
    """
    n = len(sorted_values)
    if n == 0:
        return float("nan")
    if n == 1:
        return sorted_values[0]

    k = (n - 1) * p
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_values[int(k)]
    d = k - f
    return sorted_values[int(f)] * (1 - d) + sorted_values[int(c)] * d


# ---------------------------------------------------------------------------
# Outliers and trimming
# ---------------------------------------------------------------------------


def detect_outliers(
    values: Sequence[float],
    *,
    factor: float = 1.5,
) -> list[bool]:
    """Detect outliers using the IQR method.

    A value is an outlier if it falls below Q1 - factor*IQR or above
    Q3 + factor*IQR.  Fewer than 4 values are never flagged.

    Returns:
        A list of booleans, True for outlier positions.
    """
    if len(values) < 4:
        return [False] * len(values)

    sorted_v = sorted(values)
    q1 = _percentile(sorted_v, 0.25)
    q3 = _percentile(sorted_v, 0.75)
    iqr = q3 - q1

    lower = q1 - factor * iqr
    upper = q3 + factor * iqr

    return [v < lower or v > upper for v in values]


def trim_mask(values: Sequence[float], method: str, threshold: float | None) -> list[bool]:
    """Return a keep-mask for *values* under a trimming method.

    Methods:
        none:        keep everything.
        stdev:       drop values more than ``threshold`` standard
                     deviations from the mean (default K=3).
        iqr:         drop IQR outliers with factor ``threshold``.
        percentile:  drop values below the ``threshold`` quantile or
                     above the ``1 - threshold`` quantile.
    """
    n = len(values)
    if method == "none" or n == 0:
        return [True] * n
    if threshold is None:
        raise ValueError(f"Trimming method '{method}' needs a threshold")

    if method == "stdev":
        if n < 3:
            return [True] * n
        mean = statistics.fmean(values)
        sd = statistics.stdev(values)
        if sd == 0:
            return [True] * n
        return [abs(v - mean) <= threshold * sd for v in values]
    if method == "iqr":
        return [not flagged for flagged in detect_outliers(values, factor=threshold)]
    if method == "percentile":
        sorted_v = sorted(values)
        lower = _percentile(sorted_v, threshold)
        upper = _percentile(sorted_v, 1 - threshold)
        return [lower <= v <= upper for v in values]
    raise ValueError(f"Unknown trimming method: {method}")


# ---------------------------------------------------------------------------
# Margin of error
# ---------------------------------------------------------------------------


def critical_value(confidence_level: float, sample_count: int) -> float:
    """Two-sided critical value for a mean estimated from *sample_count* values.

    Returns +inf when fewer than 2 values exist.
    """
    if not 0 < confidence_level < 1:
        raise ValueError(f"confidence_level must be in (0, 1) (got {confidence_level})")
    df = sample_count - 1
    if df < 1:
        return float("inf")
    q = (1 + confidence_level) / 2
    if df > T_DISTRIBUTION_MAX_DF:
        return float(sps.norm.ppf(q))
    return float(sps.t.ppf(q, df))


def margin_of_error(stdev: float, sample_count: int, confidence_level: float = 0.95) -> float:
    """Half-width of the confidence interval around a sample mean."""
    if sample_count < 2:
        return float("inf")
    return critical_value(confidence_level, sample_count) * stdev / math.sqrt(sample_count)


# ---------------------------------------------------------------------------
# Statistics snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Statistics:
    """Read-only statistics computed from one case's sample set.

    ``mean`` and the spread measures describe the per-iteration
    duration in seconds.
    """

    sample_count: int  # after trimming
    mean: float
    variance: float
    standard_deviation: float
    standard_error: float
    margin_of_error: float
    critical_value: float
    confidence_level: float
    total_elapsed: float  # sum of all accepted cycle durations, untrimmed
    total_iterations: int
    trim_method: str = "none"
    trimmed_count: int = 0
    outlier_candidates: int = 0

    @property
    def operations_per_second(self) -> float:
        if math.isnan(self.mean):
            return float("nan")
        if self.mean <= 0:
            return float("inf")
        return 1.0 / self.mean

    @property
    def relative_margin_of_error(self) -> float:
        """Margin of error as a percentage of the mean."""
        if math.isnan(self.mean) or self.mean <= 0:
            return float("nan")
        return self.margin_of_error / self.mean * 100

    @property
    def interval(self) -> tuple[float, float]:
        """Confidence interval ``(mean - moe, mean + moe)``."""
        return (self.mean - self.margin_of_error, self.mean + self.margin_of_error)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict, including the derived rates."""
        return {
            "sample_count": self.sample_count,
            "mean": self.mean,
            "variance": self.variance,
            "standard_deviation": self.standard_deviation,
            "standard_error": self.standard_error,
            "margin_of_error": self.margin_of_error,
            "relative_margin_of_error": self.relative_margin_of_error,
            "critical_value": self.critical_value,
            "confidence_level": self.confidence_level,
            "operations_per_second": self.operations_per_second,
            "total_elapsed": self.total_elapsed,
            "total_iterations": self.total_iterations,
            "trim_method": self.trim_method,
            "trimmed_count": self.trimmed_count,
            "outlier_candidates": self.outlier_candidates,
        }


def compute_statistics(
    samples: Sequence[Sample],
    *,
    confidence_level: float = 0.95,
    trim_outliers: str = "none",
    trim_threshold: float | None = None,
) -> Statistics:
    """Compute statistics over the per-iteration durations of *samples*.

    Args:
        samples: Accepted cycle samples, in cycle order.
        confidence_level: Confidence level of the margin of error.
        trim_outliers: Trimming method (none, stdev, iqr, percentile).
        trim_threshold: Threshold for the trimming method.

    Returns:
        A Statistics snapshot.  With no samples every estimate is NaN.
        Trimming is skipped (and reported as ``none``) if it would
        leave fewer than 2 samples.
    """
    total_elapsed = math.fsum(s.elapsed for s in samples)
    total_iterations = sum(s.iterations for s in samples)
    values = [s.per_iteration for s in samples]
    outliers = sum(detect_outliers(values))

    method = trim_outliers
    kept = values
    if method != "none" and values:
        mask = trim_mask(values, method, trim_threshold)
        candidate = [v for v, keep in zip(values, mask) if keep]
        if len(candidate) < 2:
            log.warning(
                "Trimming (%s) would leave %d of %d samples; not trimming",
                method,
                len(candidate),
                len(values),
            )
            method = "none"
        else:
            kept = candidate
            if len(kept) < len(values):
                log.info(
                    "Trimmed %d of %d samples (%s, threshold %g)",
                    len(values) - len(kept),
                    len(values),
                    method,
                    trim_threshold,
                )

    n = len(kept)
    if n == 0:
        nan = float("nan")
        return Statistics(
            sample_count=0,
            mean=nan,
            variance=nan,
            standard_deviation=nan,
            standard_error=nan,
            margin_of_error=nan,
            critical_value=nan,
            confidence_level=confidence_level,
            total_elapsed=total_elapsed,
            total_iterations=total_iterations,
            trim_method=method,
            outlier_candidates=outliers,
        )

    mean = statistics.fmean(kept)
    variance = statistics.variance(kept, xbar=mean) if n >= 2 else 0.0
    sd = math.sqrt(variance)
    sem = sd / math.sqrt(n)
    critical = critical_value(confidence_level, n)
    moe = margin_of_error(sd, n, confidence_level)

    return Statistics(
        sample_count=n,
        mean=mean,
        variance=variance,
        standard_deviation=sd,
        standard_error=sem,
        margin_of_error=moe,
        critical_value=critical,
        confidence_level=confidence_level,
        total_elapsed=total_elapsed,
        total_iterations=total_iterations,
        trim_method=method,
        trimmed_count=len(values) - n,
        outlier_candidates=outliers,
    )


# ---------------------------------------------------------------------------
# Drift across cycles
# ---------------------------------------------------------------------------


@dataclass
class DriftResult:
    """Linear trend of per-iteration duration over cycle order."""

    slope: float  # seconds per cycle
    p_value: float
    relative_change: float  # fitted change over the run / mean
    suspected: bool


def detect_drift(values: Sequence[float]) -> DriftResult:
    """Look for a trend in per-iteration durations across cycles.

    A steady climb or fall usually means state is leaking from one
    cycle into the next (a collection that setup never resets, for
    example).  Fewer than 3 values, or values with no spread, never
    show drift.
    """
    n = len(values)
    if n < 3 or len(set(values)) == 1:
        return DriftResult(slope=0.0, p_value=float("nan"), relative_change=0.0, suspected=False)

    fit = sps.linregress(range(n), list(values))
    mean = statistics.fmean(values)
    change = abs(fit.slope * (n - 1)) / mean if mean > 0 else float("inf")
    p_value = float(fit.pvalue)
    suspected = p_value < DRIFT_P_VALUE and change > DRIFT_MIN_RELATIVE_CHANGE
    return DriftResult(
        slope=float(fit.slope),
        p_value=p_value,
        relative_change=change,
        suspected=bool(suspected),
    )


# ---------------------------------------------------------------------------
# Welch's t-test
# ---------------------------------------------------------------------------


@dataclass
class TTestResult:
    """Result of Welch's t-test comparing two independent samples."""

    t_statistic: float
    degrees_of_freedom: float
    p_value: float


def welch_ttest(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
) -> TTestResult:
    """Perform Welch's t-test for two independent samples.

    Tests the null hypothesis that the two populations have equal
    means, without assuming equal variances.

    If either sample has fewer than 2 values, returns NaN values.
    """
    na, nb = len(sample_a), len(sample_b)
    nan = float("nan")

    if na < 2 or nb < 2:
        return TTestResult(nan, nan, nan)

    mean_a = statistics.fmean(sample_a)
    mean_b = statistics.fmean(sample_b)
    var_a = statistics.variance(sample_a)
    var_b = statistics.variance(sample_b)

    se_a = var_a / na
    se_b = var_b / nb
    se_diff = math.sqrt(se_a + se_b)

    if se_diff == 0:
        if mean_a == mean_b:
            return TTestResult(0.0, float("inf"), 1.0)
        # Means differ with zero variance: infinite t-statistic.
        return TTestResult(math.copysign(float("inf"), mean_a - mean_b), 0.0, 0.0)

    t = (mean_a - mean_b) / se_diff

    # Welch-Satterthwaite degrees of freedom.
    numerator = (se_a + se_b) ** 2
    denominator = (se_a**2 / (na - 1)) + (se_b**2 / (nb - 1))
    df = numerator / denominator if denominator else float("inf")

    p = float(2.0 * sps.t.sf(abs(t), df))
    return TTestResult(t_statistic=t, degrees_of_freedom=df, p_value=min(max(p, 0.0), 1.0))
