"""Case configuration and profile loading.

Handles:
- The enumerated, validated per-case configuration (``CaseConfig``).
- Building configurations from plain mappings, rejecting unknown keys
  instead of silently ignoring them.
- Loading YAML profiles that set defaults and per-case overrides.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from hzbench.errors import ConfigurationError
from hzbench.harness.sampler import DEFAULT_MAX_ITERATIONS

log = logging.getLogger("hzbench")

TRIM_METHODS = ("none", "stdev", "iqr", "percentile")

# Default threshold per trimming method: K standard deviations, IQR
# factor, and the fraction cut from each tail.
DEFAULT_TRIM_THRESHOLDS: dict[str, float] = {
    "stdev": 3.0,
    "iqr": 1.5,
    "percentile": 0.05,
}


# ---------------------------------------------------------------------------
# CaseConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CaseConfig:
    """Measurement settings for one case."""

    # Sizing
    target_relative_error: float = 0.01
    initial_iterations: int = 1
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    # Stopping rule
    min_samples: int = 5
    min_total_duration: float = 0.0  # seconds of accumulated cycle time
    max_run_duration: float = 5.0  # wall-clock seconds for the whole case
    cycle_delay: float = 0.0  # pause between cycles, in seconds

    # Statistics
    confidence_level: float = 0.95
    trim_outliers: str = "none"
    trim_threshold: float | None = None  # None = method default

    @property
    def effective_trim_threshold(self) -> float | None:
        """The trimming threshold in force, or None when trimming is off."""
        if self.trim_outliers == "none":
            return None
        if self.trim_threshold is not None:
            return self.trim_threshold
        return DEFAULT_TRIM_THRESHOLDS[self.trim_outliers]

    def replace(self, **changes: Any) -> CaseConfig:
        """Return a validated copy with *changes* applied."""
        return config_from_mapping(changes, base=self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return dataclasses.asdict(self)


CONFIG_FIELDS: tuple[str, ...] = tuple(f.name for f in dataclasses.fields(CaseConfig))

_INT_FIELDS = {"initial_iterations", "max_iterations", "min_samples"}
_STR_FIELDS = {"trim_outliers"}
_OPTIONAL_FIELDS = {"trim_threshold"}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation issue."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_config(config: CaseConfig) -> list[ValidationError]:
    """Validate a case configuration.

    Returns a list of validation issues.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    def _err(field: str, message: str) -> None:
        errors.append(ValidationError(field=field, message=message))

    # Comparisons are written so that NaN fails them.
    if not 0 < config.target_relative_error < 1:
        _err(
            "target_relative_error",
            f"Target relative error must be in (0, 1) (got {config.target_relative_error}).",
        )

    if config.initial_iterations < 1:
        _err(
            "initial_iterations",
            f"Initial iterations must be at least 1 (got {config.initial_iterations}).",
        )
    if config.max_iterations < max(config.initial_iterations, 1):
        _err(
            "max_iterations",
            f"max_iterations ({config.max_iterations}) must be at least "
            f"initial_iterations ({config.initial_iterations}).",
        )

    if config.min_samples < 2:
        _err(
            "min_samples",
            f"Need at least 2 samples to estimate variance (got {config.min_samples}).",
        )

    if not (config.min_total_duration >= 0 and math.isfinite(config.min_total_duration)):
        _err(
            "min_total_duration",
            f"Minimum total duration must be finite and >= 0 (got {config.min_total_duration}).",
        )

    if not config.max_run_duration > 0:
        _err(
            "max_run_duration",
            f"Maximum run duration must be positive (got {config.max_run_duration}).",
        )

    if not (config.cycle_delay >= 0 and math.isfinite(config.cycle_delay)):
        _err(
            "cycle_delay",
            f"Cycle delay must be finite and >= 0 (got {config.cycle_delay}).",
        )

    if not 0 < config.confidence_level < 1:
        _err(
            "confidence_level",
            f"Confidence level must be in (0, 1) (got {config.confidence_level}).",
        )

    if config.trim_outliers not in TRIM_METHODS:
        _err(
            "trim_outliers",
            f"Unknown trimming method '{config.trim_outliers}'. "
            f"Valid methods: {', '.join(TRIM_METHODS)}.",
        )
    elif config.trim_threshold is not None:
        if config.trim_outliers == "percentile":
            if not 0 < config.trim_threshold < 0.5:
                _err(
                    "trim_threshold",
                    "Percentile trimming cuts a fraction from each tail and needs a "
                    f"threshold in (0, 0.5) (got {config.trim_threshold}).",
                )
        elif not (config.trim_threshold > 0 and math.isfinite(config.trim_threshold)):
            _err(
                "trim_threshold",
                f"Trim threshold must be positive and finite (got {config.trim_threshold}).",
            )

    if (
        config.min_total_duration > config.max_run_duration
        and math.isfinite(config.max_run_duration)
    ):
        errors.append(
            ValidationError(
                field="min_total_duration",
                message=(
                    f"min_total_duration ({config.min_total_duration}s) exceeds "
                    f"max_run_duration ({config.max_run_duration}s); every run will "
                    f"be time-limited."
                ),
                severity="warning",
            )
        )

    return errors


def check_config(config: CaseConfig, *, context: str = "") -> CaseConfig:
    """Validate *config*, logging warnings and raising on errors.

    Raises:
        ConfigurationError: If any error-severity issue is found.
    """
    issues = validate_config(config)
    label = f" for {context}" if context else ""
    for w in issues:
        if w.severity == "warning":
            log.warning("Config warning%s: %s: %s", label, w.field, w.message)
    fatal = [e for e in issues if e.severity == "error"]
    if fatal:
        messages = [f"{e.field}: {e.message}" for e in fatal]
        raise ConfigurationError(
            f"Invalid configuration{label}:\n" + "\n".join(f"  {m}" for m in messages),
            errors=messages,
        )
    return config


# ---------------------------------------------------------------------------
# Mapping conversion
# ---------------------------------------------------------------------------


def _coerce(field: str, value: Any) -> Any:
    """Check the type of a single configuration value."""
    if field in _OPTIONAL_FIELDS and value is None:
        return None
    if field in _STR_FIELDS:
        if not isinstance(value, str):
            raise ConfigurationError(
                f"'{field}' must be a string (got {type(value).__name__})."
            )
        return value.strip().lower()
    # bool is an int subclass; True is never a sensible sample count.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"'{field}' must be a number (got {type(value).__name__}).")
    if field in _INT_FIELDS:
        if isinstance(value, float) and not value.is_integer():
            raise ConfigurationError(f"'{field}' must be an integer (got {value}).")
        return int(value)
    return float(value)


def config_from_mapping(
    data: Mapping[str, Any],
    *,
    base: CaseConfig | None = None,
    context: str = "",
) -> CaseConfig:
    """Build a validated CaseConfig from a mapping of field overrides.

    Args:
        data: Field name -> value.  Unknown field names are rejected.
        base: Configuration the overrides apply to (default: CaseConfig()).
        context: Label used in error messages, e.g. a case name.

    Raises:
        ConfigurationError: On unknown keys, wrong types, or invalid values.
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"Configuration must be a mapping (got {type(data).__name__})."
        )
    unknown = sorted(str(k) for k in data if k not in CONFIG_FIELDS)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration key(s): {', '.join(unknown)}. "
            f"Valid keys: {', '.join(CONFIG_FIELDS)}.",
            errors=[f"{k}: unknown key" for k in unknown],
        )
    changes = {key: _coerce(key, value) for key, value in data.items()}
    config = dataclasses.replace(base or CaseConfig(), **changes)
    return check_config(config, context=context)


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------

_PROFILE_KEYS = {"defaults", "cases"}


@dataclass
class Profile:
    """Parsed configuration profile: defaults plus per-case overrides."""

    defaults: dict[str, Any] = dataclasses.field(default_factory=dict)
    cases: dict[str, dict[str, Any]] = dataclasses.field(default_factory=dict)

    def overrides_for(self, case_name: str) -> dict[str, Any]:
        """Merged overrides for one case (per-case entries win)."""
        merged = dict(self.defaults)
        merged.update(self.cases.get(case_name, {}))
        return merged


def load_profile(profile_path: Path) -> Profile:
    """Load a configuration profile from a YAML file.

    Profile format::

        defaults:
          target_relative_error: 0.01
          min_samples: 10
          max_run_duration: 3.0

        cases:
          dict-lookup:
            trim_outliers: iqr
          list-append:
            confidence_level: 0.99

    Keys are validated eagerly so that a typo fails before any case
    runs.

    Raises:
        FileNotFoundError: If the profile does not exist.
        ConfigurationError: If the profile is malformed.
    """
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    try:
        data = yaml.safe_load(profile_path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Profile {profile_path} is not valid YAML: {exc}") from exc

    return profile_from_dict(data if data is not None else {})


def profile_from_dict(data: Any) -> Profile:
    """Build a Profile from parsed YAML data.

    Raises:
        ConfigurationError: If the structure or any key is invalid.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"Profile must be a YAML mapping, got {type(data).__name__}")

    unknown = sorted(str(k) for k in data if k not in _PROFILE_KEYS)
    if unknown:
        raise ConfigurationError(
            f"Unknown profile section(s): {', '.join(unknown)}. Expected: defaults, cases."
        )

    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ConfigurationError("Profile 'defaults' must be a mapping of setting -> value")
    # Validates keys and values.
    config_from_mapping(defaults, context="profile defaults")

    cases_data = data.get("cases") or {}
    if not isinstance(cases_data, dict):
        raise ConfigurationError("Profile 'cases' must be a mapping of case_name -> settings")

    cases: dict[str, dict[str, Any]] = {}
    for name, case_data in cases_data.items():
        if case_data is None:
            case_data = {}
        if not isinstance(case_data, dict):
            raise ConfigurationError(
                f"Case '{name}' must be a mapping, got {type(case_data).__name__}"
            )
        merged = dict(defaults)
        merged.update(case_data)
        config_from_mapping(merged, context=f"case '{name}'")
        cases[str(name)] = dict(case_data)

    return Profile(defaults=dict(defaults), cases=cases)
