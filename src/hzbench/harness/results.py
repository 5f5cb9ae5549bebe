"""Report data structures and persistence.

Hierarchy::

    RunMeta (top level: one execution of a suite)
      -> environment: EnvironmentProfile
      -> clock: implementation and resolution

    CaseReport (per case)
      -> samples: list[Sample]
      -> statistics fields, recomputed from the samples on load

Files produced::

    run_meta.json        RunMeta (environment, clock, counts)
    case_reports.jsonl   one CaseReport per line

History is keyed by case name and environment fingerprint: every run
directory below a results directory is scanned and the matching
reports are returned oldest first.
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hzbench.harness.config import CaseConfig, config_from_mapping
from hzbench.harness.cycle import CaseRun
from hzbench.harness.sampler import Sample
from hzbench.harness.stats import Statistics, compute_statistics, detect_drift
from hzbench.harness.system import EnvironmentProfile

log = logging.getLogger("hzbench")

META_FILENAME = "run_meta.json"
REPORTS_FILENAME = "case_reports.jsonl"


def _float_or_none(value: float) -> float | None:
    """JSON has no NaN or infinity; store them as null."""
    return value if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Case report
# ---------------------------------------------------------------------------


@dataclass
class CaseReport:
    """Everything measured for one case in one run."""

    name: str
    sample_count: int = 0
    mean_duration: float = float("nan")  # seconds per iteration
    variance: float = float("nan")
    standard_deviation: float = float("nan")
    margin_of_error: float = float("nan")
    confidence_level: float = 0.95
    operations_per_second: float = float("nan")
    complete: bool = False

    relative_margin_of_error: float = float("nan")  # percent of the mean
    total_elapsed: float = 0.0
    total_iterations: int = 0
    run_duration: float = 0.0  # wall time of the case, sizing cycles included
    time_limited: bool = False
    trim_method: str = "none"
    trimmed_count: int = 0
    outlier_candidates: int = 0
    undersized_samples: int = 0
    drift_suspected: bool = False
    failure: str | None = None
    warnings: list[str] = field(default_factory=list)
    samples: list[Sample] = field(default_factory=list)
    config: CaseConfig = field(default_factory=CaseConfig)
    environment_fingerprint: str = ""

    def apply_statistics(self, stats: Statistics) -> None:
        """Copy a statistics snapshot into the report fields."""
        self.sample_count = stats.sample_count
        self.mean_duration = stats.mean
        self.variance = stats.variance
        self.standard_deviation = stats.standard_deviation
        self.margin_of_error = stats.margin_of_error
        self.confidence_level = stats.confidence_level
        self.operations_per_second = stats.operations_per_second
        self.relative_margin_of_error = stats.relative_margin_of_error
        self.total_elapsed = stats.total_elapsed
        self.total_iterations = stats.total_iterations
        self.trim_method = stats.trim_method
        self.trimmed_count = stats.trimmed_count
        self.outlier_candidates = stats.outlier_candidates

    def recompute(self) -> Statistics:
        """Recompute statistics from the stored samples and config."""
        stats = compute_statistics(
            self.samples,
            confidence_level=self.config.confidence_level,
            trim_outliers=self.config.trim_outliers,
            trim_threshold=self.config.effective_trim_threshold,
        )
        self.apply_statistics(stats)
        self.undersized_samples = sum(1 for s in self.samples if s.undersized)
        self.drift_suspected = detect_drift([s.per_iteration for s in self.samples]).suspected
        return stats

    @classmethod
    def from_run(
        cls,
        case_run: CaseRun,
        config: CaseConfig,
        *,
        environment_fingerprint: str = "",
    ) -> CaseReport:
        """Build the report for a finished case run.

        Advisory findings (time limit, trimming skipped, undersized
        samples, drift) become warnings; a work failure or missed
        minimum sample count marks the report incomplete.
        """
        report = cls(
            name=case_run.case,
            samples=list(case_run.samples),
            config=config,
            complete=case_run.complete,
            time_limited=case_run.time_limited,
            run_duration=case_run.run_duration,
            environment_fingerprint=environment_fingerprint,
        )
        report.recompute()

        if case_run.incomplete is not None:
            report.warnings.append(case_run.incomplete.reason)
        if case_run.failure is not None:
            report.failure = case_run.failure.describe()
        if report.complete and case_run.time_limited:
            report.warnings.append(
                f"time-limited: stopped at the maximum run duration of "
                f"{config.max_run_duration:g}s"
            )
        if config.trim_outliers != "none" and report.trim_method == "none":
            report.warnings.append(
                f"trimming ({config.trim_outliers}) skipped: it would leave fewer than 2 samples"
            )
        if report.undersized_samples:
            report.warnings.append(
                f"{report.undersized_samples} sample(s) hit max_iterations "
                f"({config.max_iterations}) before reaching the required cycle duration"
            )
        if report.drift_suspected:
            report.warnings.append(
                "per-iteration duration trends across cycles; state may be leaking "
                "between cycles"
            )
            log.warning("Case '%s': suspected drift across cycles", report.name)
        return report

    @property
    def status(self) -> str:
        """Short status label: ok, time-limited, incomplete or failed."""
        if self.failure:
            return "failed"
        if not self.complete:
            return "incomplete"
        if self.time_limited:
            return "time-limited"
        return "ok"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "name": self.name,
            "sample_count": self.sample_count,
            "mean_duration": _float_or_none(self.mean_duration),
            "variance": _float_or_none(self.variance),
            "standard_deviation": _float_or_none(self.standard_deviation),
            "margin_of_error": _float_or_none(self.margin_of_error),
            "confidence_level": self.confidence_level,
            "operations_per_second": _float_or_none(self.operations_per_second),
            "complete": self.complete,
            "relative_margin_of_error": _float_or_none(self.relative_margin_of_error),
            "total_elapsed": self.total_elapsed,
            "total_iterations": self.total_iterations,
            "run_duration": self.run_duration,
            "time_limited": self.time_limited,
            "trim_method": self.trim_method,
            "trimmed_count": self.trimmed_count,
            "outlier_candidates": self.outlier_candidates,
            "undersized_samples": self.undersized_samples,
            "drift_suspected": self.drift_suspected,
            "failure": self.failure,
            "warnings": list(self.warnings),
            "samples": [s.to_dict() for s in self.samples],
            "config": self.config.to_dict(),
            "environment_fingerprint": self.environment_fingerprint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CaseReport:
        """Deserialize from a dict.  Recomputes statistics for consistency."""
        report = cls(
            name=data["name"],
            complete=data.get("complete", False),
            time_limited=data.get("time_limited", False),
            run_duration=data.get("run_duration", 0.0),
            failure=data.get("failure"),
            warnings=list(data.get("warnings", [])),
            samples=[Sample.from_dict(s) for s in data.get("samples", [])],
            config=config_from_mapping(data.get("config", {})),
            environment_fingerprint=data.get("environment_fingerprint", ""),
        )
        # Recompute stats rather than deserializing them.
        report.recompute()
        return report

    def to_jsonl_line(self) -> str:
        """Serialize to a single JSONL line."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_jsonl_line(cls, line: str) -> CaseReport:
        """Deserialize from a single JSONL line."""
        return cls.from_dict(json.loads(line))


# ---------------------------------------------------------------------------
# Run-level metadata
# ---------------------------------------------------------------------------


def new_run_id() -> str:
    """Sortable run id: UTC timestamp plus a short random suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"run_{stamp}_{uuid.uuid4().hex[:6]}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class RunMeta:
    """Metadata for one execution of a suite."""

    run_id: str
    name: str = ""
    environment: EnvironmentProfile = field(default_factory=EnvironmentProfile)
    clock: dict[str, Any] = field(default_factory=dict)
    start_time: str = ""
    end_time: str = ""
    cases_total: int = 0
    cases_complete: int = 0
    cases_failed: int = 0

    @property
    def fingerprint(self) -> str:
        return self.environment.fingerprint()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "run_id": self.run_id,
            "name": self.name,
            "environment": self.environment.to_dict(),
            "clock": self.clock,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "cases_total": self.cases_total,
            "cases_complete": self.cases_complete,
            "cases_failed": self.cases_failed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunMeta:
        """Deserialize from a dict."""
        meta = cls(run_id=data["run_id"])
        meta.name = data.get("name", "")
        meta.environment = EnvironmentProfile.from_dict(data.get("environment", {}))
        meta.clock = data.get("clock", {})
        meta.start_time = data.get("start_time", "")
        meta.end_time = data.get("end_time", "")
        meta.cases_total = data.get("cases_total", 0)
        meta.cases_complete = data.get("cases_complete", 0)
        meta.cases_failed = data.get("cases_failed", 0)
        return meta


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def save_run(
    output_dir: Path,
    meta: RunMeta,
    reports: list[CaseReport],
) -> None:
    """Save a complete run to disk.

    Creates ``output_dir/run_meta.json`` and
    ``output_dir/case_reports.jsonl``.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    meta_path = output_dir / META_FILENAME
    meta_path.write_text(json.dumps(meta.to_dict(), indent=2) + "\n")
    log.info("Wrote %s", meta_path)

    reports_path = output_dir / REPORTS_FILENAME
    with open(reports_path, "w") as f:
        for report in reports:
            f.write(report.to_jsonl_line() + "\n")
    log.info("Wrote %d case reports to %s", len(reports), reports_path)


def load_run(run_dir: Path) -> tuple[RunMeta, list[CaseReport]]:
    """Load a run from disk.

    Args:
        run_dir: Directory containing ``run_meta.json`` and
            ``case_reports.jsonl``.

    Returns:
        Tuple of (RunMeta, list of CaseReport).

    Raises:
        FileNotFoundError: If ``run_meta.json`` is missing.
    """
    meta_path = run_dir / META_FILENAME
    if not meta_path.exists():
        raise FileNotFoundError(f"No {META_FILENAME} in {run_dir}")

    meta = RunMeta.from_dict(json.loads(meta_path.read_text()))

    reports: list[CaseReport] = []
    reports_path = run_dir / REPORTS_FILENAME
    if reports_path.exists():
        for line in reports_path.read_text().splitlines():
            line = line.strip()
            if line:
                reports.append(CaseReport.from_jsonl_line(line))

    return meta, reports


def append_report(reports_path: Path, report: CaseReport) -> None:
    """Append a single case report to the JSONL file.

    Used for incremental writing during a run so that finished cases
    are preserved if the process is interrupted.
    """
    with open(reports_path, "a") as f:
        f.write(report.to_jsonl_line() + "\n")


def find_runs(results_dir: Path) -> list[Path]:
    """Run directories directly below *results_dir*, oldest first."""
    if not results_dir.is_dir():
        return []
    runs = [p for p in results_dir.iterdir() if (p / META_FILENAME).is_file()]
    return sorted(runs, key=lambda p: p.name)


def load_history(
    results_dir: Path,
    case_name: str,
    *,
    fingerprint: str | None = None,
) -> list[tuple[RunMeta, CaseReport]]:
    """Historical reports for one case across every saved run.

    Args:
        results_dir: Directory whose subdirectories are saved runs.
        case_name: Case to collect.
        fingerprint: If given, only runs from this environment.

    Returns:
        (RunMeta, CaseReport) pairs ordered by run start time.
    """
    history: list[tuple[RunMeta, CaseReport]] = []
    for run_dir in find_runs(results_dir):
        meta, reports = load_run(run_dir)
        if fingerprint is not None and meta.fingerprint != fingerprint:
            continue
        for report in reports:
            if report.name == case_name:
                history.append((meta, report))
    history.sort(key=lambda item: (item[0].start_time, item[0].run_id))
    return history
