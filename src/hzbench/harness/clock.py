"""Clock abstraction for cycle timing.

A clock exposes a monotonically non-decreasing ``now()`` and the
smallest increment it can reliably distinguish, ``resolution()``.
The resolution is the sole input to cycle sizing, so it is measured
rather than assumed: ``MonotonicClock`` spins on ``time.perf_counter``
until the reading changes and averages the observed steps.  If the
reading never changes, the clock is unusable and ``ClockError`` is
raised instead of guessing a value.

``QuantizedClock`` floors another clock's readings to a fixed step.
It reproduces the behaviour of coarse platform timers (the 15 ms
timers of older Windows browsers are the classic example) and pins
the resolution for tests.
"""

from __future__ import annotations

import logging
import math
import statistics
import time
from typing import Any, Callable, Protocol, runtime_checkable

from hzbench.errors import ClockError

log = logging.getLogger("hzbench")

DEFAULT_PROBES = 30
DEFAULT_MAX_SPINS = 1_000_000


@runtime_checkable
class Clock(Protocol):
    """Time source used by the sampler."""

    def now(self) -> float:
        """Current reading in seconds; never decreases."""
        ...

    def resolution(self) -> float:
        """Smallest distinguishable increment in seconds."""
        ...


def measure_resolution(
    now: Callable[[], float],
    *,
    probes: int = DEFAULT_PROBES,
    max_spins: int = DEFAULT_MAX_SPINS,
) -> float:
    """Empirically measure the resolution of a time source.

    Each probe reads ``now()`` and spins until the reading changes,
    recording the size of the step.  The result is the mean step.

    Raises:
        ClockError: If the reading does not change within *max_spins*
            reads, or goes backwards.
    """
    if probes < 1:
        raise ValueError(f"probes must be at least 1 (got {probes})")

    steps: list[float] = []
    for _ in range(probes):
        start = now()
        for _ in range(max_spins):
            step = now() - start
            if step > 0:
                steps.append(step)
                break
            if step < 0:
                raise ClockError(f"Clock went backwards by {-step!r}s while measuring resolution.")
        else:
            raise ClockError(
                f"Clock did not advance after {max_spins} reads; its resolution cannot be determined."
            )
    return check_resolution(statistics.mean(steps))


def check_resolution(value: float) -> float:
    """Return *value* if it is a usable resolution, else raise ClockError."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ClockError(f"Clock resolution must be a number (got {type(value).__name__}).")
    if not math.isfinite(value) or value <= 0:
        raise ClockError(f"Clock resolution must be positive and finite (got {value!r}).")
    return float(value)


class MonotonicClock:
    """``time.perf_counter`` with an empirically measured resolution.

    The resolution is measured on first use and cached for the
    lifetime of the clock.
    """

    def __init__(self, *, probes: int = DEFAULT_PROBES) -> None:
        self._probes = probes
        self._resolution: float | None = None
        info = time.get_clock_info("perf_counter")
        self.implementation = info.implementation
        self.advertised_resolution = info.resolution

    def now(self) -> float:
        return time.perf_counter()

    def resolution(self) -> float:
        if self._resolution is None:
            self._resolution = measure_resolution(self.now, probes=self._probes)
            log.debug(
                "Measured clock resolution %.3gs (%s advertises %.3gs)",
                self._resolution,
                self.implementation,
                self.advertised_resolution,
            )
        return self._resolution


class QuantizedClock:
    """Floors another clock's readings to multiples of a fixed step."""

    def __init__(self, base: Clock, resolution: float) -> None:
        self.base = base
        self._resolution = check_resolution(resolution)
        self.implementation = f"quantized({clock_implementation(base)}, {self._resolution:g}s)"

    def now(self) -> float:
        return math.floor(self.base.now() / self._resolution) * self._resolution

    def resolution(self) -> float:
        return self._resolution


def clock_implementation(clock: Any) -> str:
    """Best-effort name of a clock's underlying implementation."""
    return getattr(clock, "implementation", type(clock).__name__)


def clock_info(clock: Clock) -> dict[str, Any]:
    """Describe a clock for run metadata.

    Calls ``clock.resolution()``, so it raises ClockError for an
    unusable clock.
    """
    return {
        "implementation": clock_implementation(clock),
        "resolution_s": check_resolution(clock.resolution()),
    }
