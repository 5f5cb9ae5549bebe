"""Command-line interface for hzbench.

Subcommands:
    hzbench run       Run the cases of a bench file
    hzbench show      Display a saved run
    hzbench compare   Compare cases within or across saved runs
    hzbench clock     Print the clock resolution and required cycle time
    hzbench history   List saved reports of one case
"""

from __future__ import annotations

import dataclasses
import importlib.util
import json
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

import click

from hzbench import __version__
from hzbench.errors import ClockError, ConfigurationError, HarnessError, IncompleteRun
from hzbench.logging import setup_logging

log = logging.getLogger("hzbench")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """hzbench: measure throughput of small units of work with confidence bounds."""


# ---------------------------------------------------------------------------
# Bench file loading
# ---------------------------------------------------------------------------


def _import_bench_file(path: Path) -> ModuleType:
    """Import a Python file as a throwaway module."""
    module_name = f"_hzbench_bench_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise click.UsageError(f"Cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    # Let the bench file import siblings.
    sys.path.insert(0, str(path.parent.resolve()))
    try:
        spec.loader.exec_module(module)
    except HarnessError as exc:
        raise click.ClickException(f"{path}: {exc}") from exc
    except Exception as exc:
        raise click.ClickException(
            f"Importing {path} failed: {type(exc).__name__}: {exc}"
        ) from exc
    finally:
        sys.path.pop(0)
    return module


def find_suite(module: ModuleType, attr: str | None = None) -> Any:
    """Return the Suite named *attr*, or the first Suite defined in *module*."""
    from hzbench.harness.runner import Suite

    if attr is not None:
        suite = getattr(module, attr, None)
        if not isinstance(suite, Suite):
            raise click.UsageError(f"'{attr}' is not a Suite in {module.__file__}")
        return suite
    for value in vars(module).values():
        if isinstance(value, Suite):
            return value
    raise click.UsageError(f"No Suite found in {module.__file__}")


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command()
@click.argument("bench_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--suite", "suite_attr", type=str, default=None, help="Name of the Suite variable.")
@click.option("--case", "case_names", type=str, multiple=True, help="Case to run (repeatable).")
@click.option(
    "--profile",
    "profile_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML profile with defaults and per-case settings.",
)
@click.option("--target-error", type=float, default=None, help="Target relative timer error.")
@click.option("--min-samples", type=int, default=None, help="Minimum samples per case.")
@click.option("--min-time", type=float, default=None, help="Minimum accumulated cycle time (s).")
@click.option("--max-time", type=float, default=None, help="Maximum run time per case (s).")
@click.option("--confidence", type=float, default=None, help="Confidence level, e.g. 0.95.")
@click.option(
    "--trim",
    type=click.Choice(["none", "stdev", "iqr", "percentile"]),
    default=None,
    help="Outlier trimming method.",
)
@click.option("--trim-threshold", type=float, default=None, help="Threshold for --trim.")
@click.option(
    "--clock-resolution",
    type=float,
    default=None,
    help="Quantize the clock to this many seconds (simulates a coarse timer).",
)
@click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Save the run below this directory.",
)
@click.option("--name", type=str, default="", help="Human-readable run name.")
@click.option("--compare/--no-compare", default=True, show_default=True)
@click.option("-v", "--verbose", is_flag=True, help="Show sizing details.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None)
def run(  # noqa: PLR0913
    bench_file: Path,
    suite_attr: str | None,
    case_names: tuple[str, ...],
    profile_path: Path | None,
    target_error: float | None,
    min_samples: int | None,
    min_time: float | None,
    max_time: float | None,
    confidence: float | None,
    trim: str | None,
    trim_threshold: float | None,
    clock_resolution: float | None,
    results_dir: Path | None,
    name: str,
    compare: bool,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Run the cases registered on a Suite in BENCH_FILE.

    \b
    Examples:
        # Everything, with defaults
        hzbench run bench_dicts.py

        # Two cases, tighter bounds, saved for later comparison
        hzbench run bench_dicts.py --case get --case setdefault \\
            --target-error 0.005 --min-samples 20 --results-dir results

        # How would this look on a 15 ms timer?
        hzbench run bench_dicts.py --clock-resolution 0.015
    """
    from hzbench.harness.clock import QuantizedClock
    from hzbench.harness.config import load_profile
    from hzbench.harness.display import (
        format_comparison,
        format_rejected,
        format_report_detail,
        format_run,
    )

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    suite = find_suite(_import_bench_file(bench_file), suite_attr)
    if clock_resolution is not None:
        try:
            suite.clock = QuantizedClock(suite.clock, clock_resolution)
        except ClockError as exc:
            raise click.BadParameter(str(exc), param_hint="--clock-resolution") from exc

    flags: dict[str, Any] = {
        "target_relative_error": target_error,
        "min_samples": min_samples,
        "min_total_duration": min_time,
        "max_run_duration": max_time,
        "confidence_level": confidence,
        "trim_outliers": trim,
        "trim_threshold": trim_threshold,
    }
    flags = {k: v for k, v in flags.items() if v is not None}

    names = list(case_names) or suite.case_names
    # Unknown names are left for the suite to reject.
    known = [n for n in names if n in suite.case_names]
    case_overrides: dict[str, dict[str, Any]] = {n: {} for n in known}
    try:
        if profile_path is not None:
            profile = load_profile(profile_path)
            for case_name in profile.cases:
                if case_name not in suite.case_names:
                    log.warning("Profile settings for unknown case '%s' ignored", case_name)
            for case_name in known:
                case_overrides[case_name] = profile.overrides_for(case_name)
        for settings in case_overrides.values():
            settings.update(flags)

        result = suite.run(
            names,
            case_overrides=case_overrides,
            results_dir=results_dir,
            name=name,
        )
    except ConfigurationError as exc:
        raise click.UsageError(str(exc)) from exc
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        click.echo("\nRun interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904

    click.echo()
    for report in result.reports:
        click.echo(format_report_detail(report))
    click.echo()
    click.echo(format_run(result.meta, result.reports, show_environment=verbose))

    if compare and len(result.complete_reports) >= 2:
        click.echo()
        click.echo(format_comparison(result.compare()))
    if compare and result.incomplete_reports:
        click.echo()
        click.echo(format_rejected(result.incomplete_reports))

    if result.output_dir is not None:
        click.echo()
        click.echo(f"Results saved to: {result.output_dir}")


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command("show")
@click.argument("run_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--details", is_flag=True, help="Show per-case detail blocks.")
def show(run_dir: Path, details: bool) -> None:
    """Display a saved run.

    RUN_DIR is a run directory containing run_meta.json and
    case_reports.jsonl.
    """
    from hzbench.harness.display import format_report_detail, format_run
    from hzbench.harness.results import load_run

    try:
        meta, reports = load_run(run_dir)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(format_run(meta, reports))
    if details:
        for report in reports:
            click.echo()
            click.echo(format_report_detail(report))


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------


@main.command("compare")
@click.argument(
    "run_dirs",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option("--case", "case_names", type=str, multiple=True, help="Only these cases.")
@click.option("--json", "as_json", is_flag=True, help="Print the comparison as JSON.")
def compare(run_dirs: tuple[Path, ...], case_names: tuple[str, ...], as_json: bool) -> None:
    """Compare cases within one saved run or across several.

    With more than one RUN_DIR, case names are prefixed with the run
    name, or with the run id when run names repeat, so the same case
    from different runs can be told apart.
    Incomplete reports are listed and left out.

    \b
    Examples:
        hzbench compare results/run_20260301T101500Z_1a2b3c
        hzbench compare results/run_a results/run_b --case get
    """
    from hzbench.harness.compare import compare_reports
    from hzbench.harness.display import format_comparison, format_rejected
    from hzbench.harness.results import load_run

    loaded = []
    for rd in run_dirs:
        try:
            loaded.append(load_run(rd))
        except (FileNotFoundError, ValueError) as exc:
            raise click.ClickException(str(exc)) from exc

    # Run names label the runs unless two runs share one (or have none).
    run_names = [meta.name for meta, _ in loaded]
    use_names = all(run_names) and len(set(run_names)) == len(run_names)

    candidates = []
    fingerprints: set[str] = set()
    for meta, reports in loaded:
        fingerprints.add(meta.fingerprint)
        label = meta.name if use_names else meta.run_id
        for report in reports:
            if case_names and report.name not in case_names:
                continue
            if len(loaded) > 1:
                report = dataclasses.replace(report, name=f"{label}:{report.name}")
            candidates.append(report)

    if len(fingerprints) > 1:
        log.warning("Runs come from %d different environments", len(fingerprints))

    complete = [r for r in candidates if r.complete]
    rejected = [r for r in candidates if not r.complete]
    if len(complete) < 2:
        if rejected:
            click.echo(format_rejected(rejected), err=True)
        raise click.ClickException(
            f"Need at least two complete reports to compare (found {len(complete)})."
        )

    try:
        result = compare_reports(complete)
    except (ValueError, IncompleteRun) as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    click.echo(format_comparison(result))
    if rejected:
        click.echo()
        click.echo(format_rejected(rejected))


# ---------------------------------------------------------------------------
# clock
# ---------------------------------------------------------------------------


@main.command("clock")
@click.option("--target-error", type=float, default=0.01, show_default=True)
@click.option(
    "--resolution",
    type=float,
    default=None,
    help="Use this resolution (s) instead of measuring the clock.",
)
@click.option("--json", "as_json", is_flag=True, help="Print as JSON.")
def clock(target_error: float, resolution: float | None, as_json: bool) -> None:
    """Print the clock resolution and the cycle duration it requires.

    \b
    Examples:
        hzbench clock
        hzbench clock --resolution 0.015      # 750ms per cycle at 1%
    """
    from hzbench.formatting import format_duration
    from hzbench.harness.clock import MonotonicClock, check_resolution, clock_implementation
    from hzbench.harness.sampler import required_cycle_duration

    try:
        if resolution is None:
            source = MonotonicClock()
            resolution = source.resolution()
            implementation = clock_implementation(source)
        else:
            resolution = check_resolution(resolution)
            implementation = "given"
        required = required_cycle_duration(resolution, target_error)
    except ConfigurationError as exc:
        raise click.BadParameter(str(exc), param_hint="--target-error") from exc
    except ClockError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(
            json.dumps(
                {
                    "implementation": implementation,
                    "resolution_s": resolution,
                    "target_relative_error": target_error,
                    "required_cycle_s": required,
                },
                indent=2,
            )
        )
        return
    click.echo(f"Clock:          {implementation}")
    click.echo(f"Resolution:     {format_duration(resolution, 3)}")
    click.echo(f"Target error:   {target_error:.2%}")
    click.echo(f"Minimum cycle:  {format_duration(required, 3)}")


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@main.command("history")
@click.argument("results_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("case_name")
@click.option("--fingerprint", type=str, default=None, help="Only runs from this environment.")
def history(results_dir: Path, case_name: str, fingerprint: str | None) -> None:
    """List saved reports of CASE_NAME across the runs in RESULTS_DIR."""
    from hzbench.harness.display import format_history
    from hzbench.harness.results import load_history

    rows = load_history(results_dir, case_name, fingerprint=fingerprint)
    if not rows:
        click.echo(f"No saved reports for '{case_name}' in {results_dir}.")
        return
    click.echo(format_history(rows))
