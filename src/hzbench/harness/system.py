"""Environment characterization for report fingerprinting.

Captures the hardware, OS, interpreter and clock that produced a run
so historical reports can be grouped by environment.  Reports from
different fingerprints should not be compared directly.

Supports Linux and macOS for the CPU model; other platforms get
defaults.  Capture is best-effort: a field that cannot be read keeps
its default value.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import platform
import subprocess
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from hzbench.formatting import format_duration
from hzbench.harness.clock import Clock, clock_info

log = logging.getLogger("hzbench")

# Fields that identify an environment.  Hostname, capture time and the
# measured clock resolution vary between otherwise identical runs.
FINGERPRINT_FIELDS = (
    "python_implementation",
    "python_version",
    "os_name",
    "os_release",
    "machine",
    "cpu_model",
    "cpu_count",
    "clock_implementation",
)


@dataclass
class EnvironmentProfile:
    """The environment a run was measured in."""

    # Interpreter
    python_implementation: str = ""
    python_version: str = ""

    # OS and hardware
    os_name: str = ""
    os_release: str = ""
    machine: str = ""
    cpu_model: str = "unknown"
    cpu_count: int = 0

    # Clock
    clock_implementation: str = ""
    clock_resolution_s: float = 0.0

    hostname: str = ""

    def fingerprint(self) -> str:
        """Stable 16-hex-digit identifier of the environment."""
        identity = {name: getattr(self, name) for name in FINGERPRINT_FIELDS}
        digest = hashlib.sha256(json.dumps(identity, sort_keys=True).encode())
        return digest.hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d = asdict(self)
        d["fingerprint"] = self.fingerprint()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvironmentProfile:
        """Deserialize from a dict, ignoring unknown fields."""
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def _sysctl(key: str) -> str | None:
    """Read a sysctl string value. Returns None on failure."""
    try:
        proc = subprocess.run(
            ["sysctl", "-n", key],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        log.debug("sysctl %s failed: %s", key, exc)
        return None
    if proc.returncode == 0 and proc.stdout.strip():
        return proc.stdout.strip()
    return None


def _cpu_model_linux() -> str | None:
    """First ``model name`` entry of /proc/cpuinfo."""
    try:
        cpuinfo = Path("/proc/cpuinfo").read_text()
    except OSError as exc:
        log.debug("Cannot read /proc/cpuinfo: %s", exc)
        return None
    for line in cpuinfo.splitlines():
        # x86 reports "model name"; some ARM kernels only "Processor".
        if line.startswith(("model name", "Processor")):
            return line.split(":", 1)[1].strip()
    return None


def _cpu_model() -> str | None:
    if sys.platform == "linux":
        return _cpu_model_linux()
    if sys.platform == "darwin":
        return _sysctl("machdep.cpu.brand_string")
    log.debug("CPU model capture not supported on %s", sys.platform)
    return None


def capture_environment(clock: Clock) -> EnvironmentProfile:
    """Capture the current environment, including *clock*'s resolution.

    Raises:
        ClockError: If the clock's resolution cannot be determined.
    """
    info = clock_info(clock)
    return EnvironmentProfile(
        python_implementation=platform.python_implementation(),
        python_version=platform.python_version(),
        os_name=platform.system(),
        os_release=platform.release(),
        machine=platform.machine(),
        cpu_model=_cpu_model() or "unknown",
        cpu_count=os.cpu_count() or 0,
        clock_implementation=info["implementation"],
        clock_resolution_s=info["resolution_s"],
        hostname=platform.node(),
    )


def format_environment(profile: EnvironmentProfile) -> str:
    """Format an environment profile for terminal display."""
    lines = [
        "Environment",
        "───────────",
        f"Python:      {profile.python_version} ({profile.python_implementation})",
        f"OS:          {profile.os_name} {profile.os_release} ({profile.machine})",
        f"CPU:         {profile.cpu_model} ({profile.cpu_count} logical CPUs)",
        f"Clock:       {profile.clock_implementation}, "
        f"resolution {format_duration(profile.clock_resolution_s)}",
        f"Host:        {profile.hostname}",
        f"Fingerprint: {profile.fingerprint()}",
    ]
    return "\n".join(lines)
