"""Tests for hzbench.harness.system — environment fingerprinting."""

from __future__ import annotations

import json
import subprocess
import unittest
from unittest.mock import MagicMock, patch

from hzbench.errors import ClockError
from hzbench.harness.system import (
    FINGERPRINT_FIELDS,
    EnvironmentProfile,
    _cpu_model_linux,
    _sysctl,
    capture_environment,
    format_environment,
)

from harness_test_helpers import StepClock, make_environment


class TestFingerprint(unittest.TestCase):
    def test_stable(self) -> None:
        self.assertEqual(make_environment().fingerprint(), make_environment().fingerprint())
        self.assertRegex(make_environment().fingerprint(), r"^[0-9a-f]{16}$")

    def test_identity_fields_change_it(self) -> None:
        base = make_environment().fingerprint()
        changes = {
            "python_implementation": "PyPy",
            "python_version": "3.13.0",
            "os_name": "Darwin",
            "os_release": "23.4.0",
            "machine": "arm64",
            "cpu_model": "Apple M2",
            "cpu_count": 8,
            "clock_implementation": "mach_absolute_time()",
        }
        self.assertEqual(set(changes), set(FINGERPRINT_FIELDS))
        for name, value in changes.items():
            with self.subTest(field=name):
                self.assertNotEqual(make_environment(**{name: value}).fingerprint(), base)

    def test_incidental_fields_do_not(self) -> None:
        base = make_environment().fingerprint()
        self.assertEqual(make_environment(hostname="other-host").fingerprint(), base)
        self.assertEqual(make_environment(clock_resolution_s=2e-7).fingerprint(), base)


class TestSerialization(unittest.TestCase):
    def test_round_trip(self) -> None:
        env = make_environment()
        data = json.loads(json.dumps(env.to_dict()))
        self.assertEqual(data["fingerprint"], env.fingerprint())
        self.assertEqual(EnvironmentProfile.from_dict(data), env)

    def test_unknown_fields_ignored(self) -> None:
        env = EnvironmentProfile.from_dict({"os_name": "Linux", "gpu": "none"})
        self.assertEqual(env.os_name, "Linux")
        self.assertEqual(env.cpu_model, "unknown")


class TestCapture(unittest.TestCase):
    def test_capture_with_clock(self) -> None:
        env = capture_environment(StepClock(0.015))
        self.assertEqual(env.clock_implementation, "step")
        self.assertEqual(env.clock_resolution_s, 0.015)
        self.assertNotEqual(env.python_implementation, "")
        self.assertNotEqual(env.python_version, "")
        self.assertGreaterEqual(env.cpu_count, 0)

    def test_bad_clock_raises(self) -> None:
        with self.assertRaises(ClockError):
            capture_environment(StepClock(0.0))

    @patch("hzbench.harness.system.Path.read_text")
    def test_cpu_model_from_cpuinfo(self, mock_read: MagicMock) -> None:
        mock_read.return_value = (
            "processor\t: 0\nvendor_id\t: AuthenticAMD\n"
            "model name\t: AMD Ryzen 9 7950X 16-Core Processor\n"
        )
        self.assertEqual(_cpu_model_linux(), "AMD Ryzen 9 7950X 16-Core Processor")

    @patch("hzbench.harness.system.Path.read_text", side_effect=FileNotFoundError)
    def test_cpu_model_missing_cpuinfo(self, _mock: MagicMock) -> None:
        self.assertIsNone(_cpu_model_linux())

    @patch("hzbench.harness.system.sys.platform", "linux")
    @patch("hzbench.harness.system.Path.read_text", side_effect=FileNotFoundError)
    def test_capture_defaults_unknown_cpu(self, _mock: MagicMock) -> None:
        self.assertEqual(capture_environment(StepClock()).cpu_model, "unknown")


class TestSysctl(unittest.TestCase):
    @patch("hzbench.harness.system.subprocess.run")
    def test_returns_value(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(returncode=0, stdout="Apple M2\n")
        self.assertEqual(_sysctl("machdep.cpu.brand_string"), "Apple M2")

    @patch("hzbench.harness.system.subprocess.run")
    def test_returns_none_on_failure(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(returncode=1, stdout="")
        self.assertIsNone(_sysctl("nonexistent.key"))

    @patch("hzbench.harness.system.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary(self, _mock: MagicMock) -> None:
        self.assertIsNone(_sysctl("some.key"))

    @patch(
        "hzbench.harness.system.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="sysctl", timeout=5),
    )
    def test_timeout(self, _mock: MagicMock) -> None:
        self.assertIsNone(_sysctl("some.key"))


class TestFormatEnvironment(unittest.TestCase):
    def test_contains_key_facts(self) -> None:
        env = make_environment()
        text = format_environment(env)
        self.assertIn("3.12.4 (CPython)", text)
        self.assertIn("AMD Ryzen 9", text)
        self.assertIn(env.fingerprint(), text)
        self.assertIn("clock_gettime(CLOCK_MONOTONIC)", text)
