"""Cycle execution and the per-case stopping rule.

A cycle is the atomic unit of measurement: ``setup`` once, then N
back-to-back calls of the work, then ``teardown`` once.  Setup and
teardown are never run per iteration.  Any state the work mutates
keeps accumulating for all N iterations of a cycle and is only reset
by the next cycle's setup.

Each iteration's result is handed to a ``Blackhole`` sink right away.
That is the only code between iterations, and it keeps the result
observable so an optimizer cannot discard the work as dead code.  It
is a mitigation, not a guarantee: inlining and trace specialization
can still make a micro-benchmark unrepresentative of real use.

``CycleRunner.run`` keeps requesting samples until the stopping rule
is satisfied (minimum sample count and minimum accumulated cycle
time) or the maximum run duration is reached.  The deadline is only
checked between cycles; a running cycle always finishes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from hzbench.errors import IncompleteRun, WorkFailure
from hzbench.harness.case import Case
from hzbench.harness.clock import Clock
from hzbench.harness.config import CaseConfig
from hzbench.harness.sampler import Sample, Sampler

log = logging.getLogger("hzbench")


class Blackhole:
    """Sink for the results of measured work."""

    __slots__ = ("last",)

    def __init__(self) -> None:
        self.last: Any = None

    def consume(self, value: Any) -> None:
        self.last = value


@dataclass
class CycleProgress:
    """Progress info passed to the callback after each accepted sample."""

    case: str
    sample_index: int  # 1-based
    iterations: int
    elapsed: float
    total_elapsed: float
    min_samples: int


ProgressCallback = Callable[[CycleProgress], None]


@dataclass
class CaseRun:
    """Raw outcome of running one case: its sample set and how it ended."""

    case: str
    samples: list[Sample] = field(default_factory=list)
    total_elapsed: float = 0.0  # sum of accepted cycle durations
    run_duration: float = 0.0  # wall time including sizing cycles
    cycles_run: int = 0  # accepted plus discarded sizing cycles
    time_limited: bool = False
    complete: bool = False
    failure: WorkFailure | None = None
    incomplete: IncompleteRun | None = None

    @property
    def per_iteration(self) -> list[float]:
        """Per-iteration durations of the accepted samples, in cycle order."""
        return [s.per_iteration for s in self.samples]


def stopping_rule_met(sample_count: int, total_elapsed: float, config: CaseConfig) -> bool:
    """True once enough samples and enough accumulated cycle time exist."""
    return sample_count >= config.min_samples and total_elapsed >= config.min_total_duration


class CycleRunner:
    """Runs cycles of one case and accumulates its sample set.

    Usage::

        runner = CycleRunner(case, clock)
        case_run = runner.run()
    """

    def __init__(
        self,
        case: Case,
        clock: Clock,
        *,
        sink: Blackhole | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.case = case
        self.clock = clock
        self.sink = sink or Blackhole()
        self.progress = progress_callback
        self.cycles_run = 0

    def run_cycle(self, n: int) -> float:
        """Run one cycle of *n* iterations and return its elapsed time.

        Raises:
            WorkFailure: If setup, any iteration, or teardown raises.
        """
        case = self.case
        self.cycles_run += 1
        cycle = self.cycles_run

        state: Any = None
        if case.setup is not None:
            try:
                if case.inputs is not None:
                    state = case.setup(case.cycle_input(cycle - 1))
                else:
                    state = case.setup()
            except Exception as exc:
                raise WorkFailure(case.name, phase="setup", cycle=cycle, cause=exc) from exc

        work = case.work
        consume = self.sink.consume
        now = self.clock.now
        i = 0
        try:
            if case.has_state:
                start = now()
                for i in range(n):
                    consume(work(state))
                end = now()
            else:
                start = now()
                for i in range(n):
                    consume(work())
                end = now()
        except Exception as exc:
            failure = WorkFailure(case.name, phase="work", cycle=cycle, iteration=i + 1, cause=exc)
            try:
                self._teardown(state, cycle)
            except WorkFailure as teardown_failure:
                log.error("%s (after work failure)", teardown_failure)
            raise failure from exc

        self._teardown(state, cycle)
        return end - start

    def _teardown(self, state: Any, cycle: int) -> None:
        case = self.case
        if case.teardown is None:
            return
        try:
            if case.has_state:
                case.teardown(state)
            else:
                case.teardown()
        except Exception as exc:
            raise WorkFailure(case.name, phase="teardown", cycle=cycle, cause=exc) from exc

    def run(self) -> CaseRun:
        """Collect samples until the stopping rule or the deadline is reached.

        Work failures end the case and are recorded on the returned
        CaseRun rather than raised.

        Raises:
            ClockError: If the clock's resolution cannot be determined.
        """
        case = self.case
        config = case.config
        sampler = Sampler(
            self.clock.resolution(),
            config.target_relative_error,
            initial_iterations=config.initial_iterations,
            max_iterations=config.max_iterations,
        )
        log.debug(
            "Case '%s': cycles must last at least %.3gs (resolution %.3gs, target error %g)",
            case.name,
            sampler.required,
            sampler.resolution,
            config.target_relative_error,
        )

        result = CaseRun(case=case.name)
        started = self.clock.now()
        deadline = started + config.max_run_duration

        def deadline_reached() -> bool:
            return self.clock.now() >= deadline

        while not stopping_rule_met(len(result.samples), result.total_elapsed, config):
            if deadline_reached():
                result.time_limited = True
                break
            try:
                sample = sampler.sample(self.run_cycle, deadline_reached=deadline_reached)
            except WorkFailure as exc:
                log.error("%s", exc)
                result.failure = exc
                break
            if sample is None:
                result.time_limited = True
                break

            result.samples.append(sample)
            result.total_elapsed += sample.elapsed
            if self.progress is not None:
                self.progress(
                    CycleProgress(
                        case=case.name,
                        sample_index=len(result.samples),
                        iterations=sample.iterations,
                        elapsed=sample.elapsed,
                        total_elapsed=result.total_elapsed,
                        min_samples=config.min_samples,
                    )
                )
            if config.cycle_delay:
                time.sleep(config.cycle_delay)

        result.run_duration = self.clock.now() - started
        result.cycles_run = self.cycles_run
        result.complete = result.failure is None and len(result.samples) >= config.min_samples
        log.debug(
            "Case '%s': %d samples from %d cycles in %.3gs",
            case.name,
            len(result.samples),
            result.cycles_run,
            result.run_duration,
        )

        if result.failure is not None:
            result.incomplete = IncompleteRun(case.name, result.failure.describe())
        elif not result.complete:
            result.incomplete = IncompleteRun(
                case.name,
                f"maximum run duration of {config.max_run_duration:g}s reached with "
                f"{len(result.samples)} of {config.min_samples} required samples",
            )
        elif result.time_limited:
            log.info(
                "Case '%s' was time-limited after %d samples (%.3gs of %.3gs requested)",
                case.name,
                len(result.samples),
                result.total_elapsed,
                config.min_total_duration,
            )

        if result.incomplete is not None:
            log.warning("%s", result.incomplete)
        return result
