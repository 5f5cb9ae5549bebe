"""Adaptive cycle sizing.

A single clock reading is uncertain by up to half a tick, so a
duration ``D`` measured on a clock of resolution ``R`` carries a
relative quantization error of about ``R / (2 * D)``.  Bounding that
error by a target ``e`` requires ``D >= R / (2 * e)``: 750 ms on a
15 ms timer and 50 ms on a 1 ms timer, for ``e = 1%``.

The sampler finds an iteration count N whose cycle is at least that
long.  It starts from its previous estimate (1 on first use), doubles
N while a cycle is too short to register a single tick, then projects
N linearly from the observed per-iteration period.  Cycles that fall
short are discarded; only a cycle that meets the bound becomes a
Sample.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

from hzbench.errors import ClockError, ConfigurationError

log = logging.getLogger("hzbench")

DEFAULT_MAX_ITERATIONS = 1_000_000_000


# ---------------------------------------------------------------------------
# Sample
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """Result of one measured cycle."""

    iterations: int  # N, back-to-back invocations of the work
    elapsed: float  # seconds for all N iterations
    sizing_rounds: int = 1  # cycles run to settle on N, including this one
    undersized: bool = False  # N hit max_iterations before the bound was met

    def __post_init__(self) -> None:
        if self.iterations < 1:
            raise ValueError(f"Sample iterations must be >= 1 (got {self.iterations})")
        if not self.elapsed >= 0:
            raise ValueError(f"Sample elapsed time must be >= 0 (got {self.elapsed})")

    @property
    def per_iteration(self) -> float:
        """Mean duration of one iteration within this cycle."""
        return self.elapsed / self.iterations

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict (sparse: omits defaults)."""
        d: dict[str, Any] = {"iterations": self.iterations, "elapsed": self.elapsed}
        if self.sizing_rounds != 1:
            d["sizing_rounds"] = self.sizing_rounds
        if self.undersized:
            d["undersized"] = True
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Sample:
        """Deserialize from a dict."""
        return cls(
            iterations=int(data["iterations"]),
            elapsed=float(data["elapsed"]),
            sizing_rounds=int(data.get("sizing_rounds", 1)),
            undersized=bool(data.get("undersized", False)),
        )


def required_cycle_duration(resolution: float, target_relative_error: float) -> float:
    """Minimum cycle duration that bounds quantization error by the target.

    Raises:
        ClockError: If *resolution* is not positive.
        ConfigurationError: If *target_relative_error* is not positive.
    """
    if not resolution > 0:
        raise ClockError(f"Clock resolution must be positive (got {resolution!r}).")
    if not target_relative_error > 0:
        raise ConfigurationError(
            f"target_relative_error must be positive (got {target_relative_error!r})."
        )
    return resolution / (2.0 * target_relative_error)


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------


class Sampler:
    """Chooses N per cycle so that each cycle outlasts the quantization bound.

    Usage::

        sampler = Sampler(clock.resolution(), 0.01)
        sample = sampler.sample(run_cycle)  # run_cycle(n) -> elapsed seconds
    """

    def __init__(
        self,
        resolution: float,
        target_relative_error: float = 0.01,
        *,
        initial_iterations: int = 1,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if initial_iterations < 1:
            raise ConfigurationError(
                f"initial_iterations must be >= 1 (got {initial_iterations})."
            )
        if max_iterations < initial_iterations:
            raise ConfigurationError(
                f"max_iterations ({max_iterations}) is below initial_iterations "
                f"({initial_iterations})."
            )
        self.resolution = resolution
        self.required = required_cycle_duration(resolution, target_relative_error)
        self.max_iterations = max_iterations
        # Reused as the starting N of the next cycle.
        self.estimate = initial_iterations

    def next_count(self, n: int, elapsed: float) -> int:
        """Propose the iteration count to try after a cycle that fell short."""
        if elapsed < self.resolution:
            # Not a single tick observed: no usable period yet.
            proposal = n * 2
        else:
            proposal = max(n + 1, math.ceil(n * self.required / elapsed))
        return min(proposal, self.max_iterations)

    def sample(
        self,
        run_cycle: Callable[[int], float],
        *,
        deadline_reached: Callable[[], bool] | None = None,
    ) -> Sample | None:
        """Run cycles, growing N, until one meets the required duration.

        Args:
            run_cycle: Runs one complete cycle of N iterations and
                returns its elapsed time in seconds.
            deadline_reached: Checked between sizing rounds; when it
                returns True, sizing is abandoned.

        Returns:
            The accepted Sample, or None if the deadline interrupted
            sizing before any cycle met the bound.
        """
        n = self.estimate
        rounds = 0
        while True:
            elapsed = run_cycle(n)
            rounds += 1
            if elapsed >= self.required:
                self.estimate = n
                return Sample(iterations=n, elapsed=elapsed, sizing_rounds=rounds)
            if n >= self.max_iterations:
                log.warning(
                    "Cycle of %d iterations took %.3gs, below the required %.3gs; "
                    "max_iterations reached, accepting an undersized sample",
                    n,
                    elapsed,
                    self.required,
                )
                self.estimate = n
                return Sample(iterations=n, elapsed=elapsed, sizing_rounds=rounds, undersized=True)
            if deadline_reached is not None and deadline_reached():
                log.debug("Deadline reached while sizing (N=%d, %.3gs)", n, elapsed)
                return None
            next_n = self.next_count(n, elapsed)
            log.debug(
                "Sizing: N=%d took %.3gs (< %.3gs required), trying N=%d",
                n,
                elapsed,
                self.required,
                next_n,
            )
            n = next_n
