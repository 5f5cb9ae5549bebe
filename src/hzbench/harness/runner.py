"""Case registration and run orchestration.

Orchestrates:
1. Configuration resolution for every selected case (fails before any
   cycle runs)
2. Clock resolution and environment capture (fails the whole run)
3. Sequential execution of each case's cycles
4. Report building, with work failures isolated per case
5. Optional incremental result writing

Cases run one after another, never concurrently: parallel hot loops
on shared hardware interfere with each other's timings.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from hzbench.errors import ConfigurationError
from hzbench.harness.case import Case
from hzbench.harness.clock import Clock, MonotonicClock
from hzbench.harness.compare import ComparisonResult, compare_reports
from hzbench.harness.config import CaseConfig, check_config, config_from_mapping
from hzbench.harness.cycle import Blackhole, CycleProgress, CycleRunner, ProgressCallback
from hzbench.harness.results import (
    META_FILENAME,
    REPORTS_FILENAME,
    CaseReport,
    RunMeta,
    append_report,
    new_run_id,
    save_run,
    utc_timestamp,
)
from hzbench.harness.system import capture_environment

log = logging.getLogger("hzbench")


def _default_progress(progress: CycleProgress) -> None:
    """Default progress callback: log each accepted sample."""
    log.info(
        "  %-30s sample %d/%d  N=%-10d %9.3fms",
        progress.case,
        progress.sample_index,
        progress.min_samples,
        progress.iterations,
        progress.elapsed * 1000,
    )


# ---------------------------------------------------------------------------
# RunResult
# ---------------------------------------------------------------------------


@dataclass
class RunResult:
    """Reports of one run, in execution order."""

    meta: RunMeta
    reports: list[CaseReport] = field(default_factory=list)
    output_dir: Path | None = None

    def report(self, name: str) -> CaseReport:
        """Report for one case.

        Raises:
            KeyError: If the case was not part of this run.
        """
        for r in self.reports:
            if r.name == name:
                return r
        raise KeyError(f"No report for case '{name}'")

    @property
    def complete_reports(self) -> list[CaseReport]:
        return [r for r in self.reports if r.complete]

    @property
    def incomplete_reports(self) -> list[CaseReport]:
        return [r for r in self.reports if not r.complete]

    def compare(self, names: Iterable[str] | None = None) -> ComparisonResult:
        """Compare cases of this run.

        Without *names*, every complete report is compared and
        incomplete ones are left out.  Naming an incomplete case
        raises IncompleteRun.
        """
        if names is None:
            for r in self.incomplete_reports:
                log.warning("Not comparing '%s': report is incomplete", r.name)
            return compare_reports(self.complete_reports)
        return compare_reports([self.report(n) for n in names])


# ---------------------------------------------------------------------------
# Suite
# ---------------------------------------------------------------------------


class Suite:
    """A named collection of cases and the entry point for running them.

    Usage::

        suite = Suite("dict-vs-list")

        @suite.case(setup=lambda: list(range(1000)))
        def list_index(data):
            return data.index(999)

        result = suite.run()
        print(result.report("list_index").operations_per_second)
    """

    def __init__(
        self,
        name: str = "",
        *,
        clock: Clock | None = None,
        defaults: CaseConfig | Mapping[str, Any] | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.name = name
        self.clock: Clock = clock or MonotonicClock()
        if defaults is None:
            defaults = CaseConfig()
        elif isinstance(defaults, CaseConfig):
            defaults = check_config(defaults, context=f"suite '{name}' defaults")
        else:
            defaults = config_from_mapping(defaults, context=f"suite '{name}' defaults")
        self.defaults: CaseConfig = defaults
        self.progress = progress_callback or _default_progress
        self.sink = Blackhole()
        self._cases: dict[str, Case] = {}
        self._last: RunResult | None = None

    # -- registration ------------------------------------------------------

    def register(
        self,
        name: str,
        work: Callable[..., Any],
        setup: Callable[..., Any] | None = None,
        teardown: Callable[..., Any] | None = None,
        config: CaseConfig | Mapping[str, Any] | None = None,
        inputs: Iterable[Any] | None = None,
    ) -> str:
        """Register a case and return its id (the case name).

        Args:
            name: Unique case name.
            work: The measured operation.  Takes the setup's state when
                a setup is given, no arguments otherwise.
            setup: Builds the case's scratch state once per cycle.
            teardown: Releases the state once per cycle.
            config: A CaseConfig, or a mapping of overrides applied to
                the suite defaults.
            inputs: Values passed to setup in turn, one per cycle.

        Raises:
            ConfigurationError: On a duplicate name or invalid settings.
        """
        if name in self._cases:
            raise ConfigurationError(f"Case '{name}' is already registered.")
        if config is None:
            resolved = self.defaults
        elif isinstance(config, CaseConfig):
            resolved = check_config(config, context=f"case '{name}'")
        else:
            resolved = config_from_mapping(config, base=self.defaults, context=f"case '{name}'")

        case = Case(
            name=name,
            work=work,
            setup=setup,
            teardown=teardown,
            config=resolved,
            inputs=tuple(inputs) if inputs is not None else None,
        )
        self._cases[name] = case
        log.debug("Registered case '%s'", name)
        return name

    def case(
        self,
        name: str | Callable[..., Any] | None = None,
        *,
        setup: Callable[..., Any] | None = None,
        teardown: Callable[..., Any] | None = None,
        config: CaseConfig | Mapping[str, Any] | None = None,
        inputs: Iterable[Any] | None = None,
    ) -> Any:
        """Decorator form of :meth:`register`.

        Usable bare (``@suite.case``) or with arguments
        (``@suite.case("name", setup=...)``).  The function is returned
        unchanged.
        """
        if callable(name):
            func = name
            self.register(func.__name__, func)
            return func

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(
                name or func.__name__,
                func,
                setup=setup,
                teardown=teardown,
                config=config,
                inputs=inputs,
            )
            return func

        return decorator

    @property
    def case_names(self) -> list[str]:
        return list(self._cases)

    def get_case(self, name: str) -> Case:
        try:
            return self._cases[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown case '{name}'. Registered: {', '.join(self._cases) or '(none)'}."
            ) from None

    # -- running -----------------------------------------------------------

    def resolve_cases(
        self,
        names: Iterable[str] | None = None,
        overrides: Mapping[str, Any] | None = None,
        case_overrides: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[Case]:
        """Select cases and apply overrides, validating everything up front.

        *overrides* apply to every selected case; *case_overrides*
        entries apply on top for the named case.

        Raises:
            ConfigurationError: For unknown cases, unknown keys or
                invalid values.
        """
        selected = list(dict.fromkeys(names)) if names is not None else self.case_names
        if not selected:
            raise ConfigurationError("No cases to run.")
        cases = [self.get_case(n) for n in selected]

        case_overrides = case_overrides or {}
        unknown = sorted(set(case_overrides) - set(self._cases))
        if unknown:
            raise ConfigurationError(f"Overrides given for unknown case(s): {', '.join(unknown)}.")

        resolved: list[Case] = []
        for case in cases:
            config = case.config
            if overrides:
                config = config_from_mapping(overrides, base=config, context=f"case '{case.name}'")
            if case.name in case_overrides:
                config = config_from_mapping(
                    case_overrides[case.name], base=config, context=f"case '{case.name}'"
                )
            resolved.append(dataclasses.replace(case, config=config))
        return resolved

    def run(
        self,
        names: Iterable[str] | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
        case_overrides: Mapping[str, Mapping[str, Any]] | None = None,
        results_dir: Path | None = None,
        name: str = "",
    ) -> RunResult:
        """Run the selected cases (all by default) one after another.

        Args:
            names: Case names to run, in order.
            overrides: Settings applied to every case.
            case_overrides: Per-case settings, applied last.
            results_dir: If given, the run is saved to a new
                subdirectory named after the run id.
            name: Run name (defaults to the suite name).

        Returns:
            RunResult with one report per case.  A case whose work
            fails gets an incomplete report; the other cases still run.

        Raises:
            ConfigurationError: Before any cycle runs, if settings are
                invalid.
            ClockError: If the clock's resolution cannot be determined.
        """
        cases = self.resolve_cases(names, overrides, case_overrides)

        environment = capture_environment(self.clock)
        fingerprint = environment.fingerprint()
        log.info(
            "Clock %s, resolution %.3gs; environment %s",
            environment.clock_implementation,
            environment.clock_resolution_s,
            fingerprint,
        )

        meta = RunMeta(
            run_id=new_run_id(),
            name=name or self.name,
            environment=environment,
            clock={
                "implementation": environment.clock_implementation,
                "resolution_s": environment.clock_resolution_s,
            },
            start_time=utc_timestamp(),
            cases_total=len(cases),
        )

        output_dir: Path | None = None
        reports_path: Path | None = None
        if results_dir is not None:
            output_dir = results_dir / meta.run_id
            output_dir.mkdir(parents=True, exist_ok=True)
            # Initial metadata; rewritten with final counts at the end.
            (output_dir / META_FILENAME).write_text(json.dumps(meta.to_dict(), indent=2) + "\n")
            reports_path = output_dir / REPORTS_FILENAME

        reports: list[CaseReport] = []
        for i, case in enumerate(cases, 1):
            log.info("[%d/%d] %s", i, len(cases), case.name)
            runner = CycleRunner(case, self.clock, sink=self.sink, progress_callback=self.progress)
            case_run = runner.run()
            report = CaseReport.from_run(case_run, case.config, environment_fingerprint=fingerprint)
            reports.append(report)
            if reports_path is not None:
                append_report(reports_path, report)

        meta.end_time = utc_timestamp()
        meta.cases_complete = sum(1 for r in reports if r.complete)
        meta.cases_failed = sum(1 for r in reports if r.failure)
        if output_dir is not None:
            save_run(output_dir, meta, reports)

        result = RunResult(meta=meta, reports=reports, output_dir=output_dir)
        self._last = result
        return result

    def report(self, case_id: str) -> CaseReport:
        """Report for *case_id* from the most recent run.

        Raises:
            KeyError: If no run has happened or the case was not in it.
        """
        if self._last is None:
            raise KeyError("No run has been executed yet")
        return self._last.report(case_id)
