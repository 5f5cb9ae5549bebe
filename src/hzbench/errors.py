"""Error taxonomy for hzbench.

Configuration and clock errors surface to the caller immediately and
stop a run before (or instead of) measuring anything.  Work failures
are scoped to one case: the runner catches them, marks that case's
report incomplete, and moves on to the next case.  An incomplete run is
advisory while measuring, but the comparison engine refuses to compare
it.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class ConfigurationError(HarnessError, ValueError):
    """Invalid or missing configuration, detected before any cycle runs."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors or [])


class ClockError(HarnessError, RuntimeError):
    """The clock's resolution cannot be determined.

    Every timing guarantee depends on the resolution, so this is fatal
    for the whole run.
    """


class WorkFailure(HarnessError):
    """The measured operation (or its setup/teardown) raised during a cycle."""

    def __init__(
        self,
        case_name: str,
        *,
        phase: str,
        cycle: int,
        iteration: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.case_name = case_name
        self.phase = phase  # "setup", "work" or "teardown"
        self.cycle = cycle  # 1-based, counts sizing cycles too
        self.iteration = iteration  # 1-based, work phase only
        self.cause = cause
        super().__init__(self.describe())

    def describe(self) -> str:
        """One-line description suitable for a report."""
        where = f"{self.phase} of cycle {self.cycle}"
        if self.iteration is not None:
            where += f", iteration {self.iteration}"
        text = f"Case '{self.case_name}' failed during {where}"
        if self.cause is not None:
            text += f": {type(self.cause).__name__}: {self.cause}"
        return text


class IncompleteRun(HarnessError):
    """A case stopped before its stopping rule was satisfied."""

    def __init__(self, case_name: str, reason: str) -> None:
        self.case_name = case_name
        self.reason = reason
        super().__init__(f"Case '{case_name}' is incomplete: {reason}")
