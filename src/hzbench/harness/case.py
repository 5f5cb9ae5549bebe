"""Case definition: the unit of work being measured.

A case owns its scratch state explicitly.  ``setup()`` builds the state
for one cycle and returns it; ``work(state)`` and ``teardown(state)``
receive that same value.  State that the work mutates therefore flows
visibly from setup into every iteration of the cycle, and is rebuilt
by the next cycle's setup instead of leaking across cycles through
globals.  A case without a setup calls ``work()`` and ``teardown()``
with no arguments.

When ``inputs`` is given, cycle k calls ``setup(inputs[k % len(inputs)])``
so that successive cycles see different data.  That discourages an
engine from specializing on one input, but it cannot rule such
specialization out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from hzbench.errors import ConfigurationError
from hzbench.harness.config import CaseConfig


@dataclass(frozen=True)
class Case:
    """A registered unit of work.  Immutable once registered."""

    name: str
    work: Callable[..., Any]
    setup: Callable[..., Any] | None = None
    teardown: Callable[..., Any] | None = None
    config: CaseConfig = field(default_factory=CaseConfig)
    inputs: tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError("Case names must be non-empty strings.")
        if not callable(self.work):
            raise ConfigurationError(f"Case '{self.name}': work must be callable.")
        if self.setup is not None and not callable(self.setup):
            raise ConfigurationError(f"Case '{self.name}': setup must be callable.")
        if self.teardown is not None and not callable(self.teardown):
            raise ConfigurationError(f"Case '{self.name}': teardown must be callable.")
        if self.inputs is not None:
            if self.setup is None:
                raise ConfigurationError(
                    f"Case '{self.name}': inputs are passed to setup, so a setup is required."
                )
            if not self.inputs:
                raise ConfigurationError(f"Case '{self.name}': inputs must not be empty.")

    @property
    def has_state(self) -> bool:
        """True if work and teardown receive the state built by setup."""
        return self.setup is not None

    def cycle_input(self, cycle_index: int) -> Any:
        """Input for the given 0-based cycle.

        Raises:
            ConfigurationError: If the case has no ``inputs``.
        """
        if self.inputs is None:
            raise ConfigurationError(f"Case '{self.name}' has no inputs.")
        return self.inputs[cycle_index % len(self.inputs)]
