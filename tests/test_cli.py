"""Tests for hzbench.cli — Click CLI commands."""

from __future__ import annotations

import json
import logging
import tempfile
import textwrap
import unittest
from pathlib import Path

from click.testing import CliRunner

from hzbench.cli import main
from hzbench.harness.results import find_runs, load_run

BENCH_FILE = textwrap.dedent(
    """
    from hzbench.harness.runner import Suite

    suite = Suite("cli-demo")


    @suite.case
    def small():
        return sum(range(50))


    @suite.case("large", setup=lambda: list(range(2000)))
    def large(data):
        return sum(data)
    """
)

FAST_FLAGS = [
    "--clock-resolution",
    "0.001",
    "--target-error",
    "0.05",
    "--min-samples",
    "3",
    "--max-time",
    "10",
    "-q",
]


def _reset_logging() -> None:
    # setup_logging binds a handler to the CliRunner's stderr.
    logging.getLogger("hzbench").handlers.clear()


class TestHelp(unittest.TestCase):
    def test_group_help(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        self.assertEqual(result.exit_code, 0)
        for command in ("run", "show", "compare", "clock", "history"):
            self.assertIn(command, result.output)

    def test_run_help(self) -> None:
        result = CliRunner().invoke(main, ["run", "--help"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("--target-error", result.output)
        self.assertIn("--clock-resolution", result.output)
        self.assertIn("--profile", result.output)

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("0.1.0", result.output)


class TestClock(unittest.TestCase):
    def test_given_resolution_json(self) -> None:
        result = CliRunner().invoke(main, ["clock", "--resolution", "0.015", "--json"])
        self.assertEqual(result.exit_code, 0, result.output)
        data = json.loads(result.output)
        self.assertAlmostEqual(data["required_cycle_s"], 0.75)
        self.assertEqual(data["implementation"], "given")

    def test_text_output(self) -> None:
        result = CliRunner().invoke(main, ["clock", "--resolution", "0.001"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Minimum cycle:  50.000ms", result.output)

    def test_measured_clock(self) -> None:
        result = CliRunner().invoke(main, ["clock", "--json"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertGreater(json.loads(result.output)["resolution_s"], 0)

    def test_bad_resolution(self) -> None:
        result = CliRunner().invoke(main, ["clock", "--resolution", "0"])
        self.assertEqual(result.exit_code, 1)

    def test_bad_target_error(self) -> None:
        result = CliRunner().invoke(main, ["clock", "--resolution", "0.001", "--target-error", "0"])
        self.assertEqual(result.exit_code, 2)


class TestRunAndInspect(unittest.TestCase):
    """A real run on a quantized clock, then show, compare and history."""

    @classmethod
    def setUpClass(cls) -> None:
        cls._tmp = tempfile.TemporaryDirectory()
        cls.root = Path(cls._tmp.name)
        cls.bench = cls.root / "bench_demo.py"
        cls.bench.write_text(BENCH_FILE)
        cls.results = cls.root / "results"
        cls.run_result = CliRunner().invoke(
            main,
            ["run", str(cls.bench), *FAST_FLAGS, "--results-dir", str(cls.results), "--name", "first"],
        )
        _reset_logging()
        runs = find_runs(cls.results)
        cls.run_dir = runs[0] if runs else cls.results

    @classmethod
    def tearDownClass(cls) -> None:
        cls._tmp.cleanup()

    def tearDown(self) -> None:
        _reset_logging()

    def test_run_output(self) -> None:
        self.assertEqual(self.run_result.exit_code, 0, self.run_result.output)
        self.assertIn("ops/sec", self.run_result.output)
        self.assertIn("small x", self.run_result.output)
        self.assertIn("large x", self.run_result.output)
        self.assertIn("Ranking", self.run_result.output)
        self.assertIn("Results saved to:", self.run_result.output)

    def test_run_saved(self) -> None:
        meta, reports = load_run(self.run_dir)
        self.assertEqual(meta.name, "first")
        self.assertEqual(meta.clock["resolution_s"], 0.001)
        self.assertEqual({r.name for r in reports}, {"small", "large"})
        for report in reports:
            self.assertTrue(report.complete)
            self.assertEqual(report.config.min_samples, 3)
            self.assertTrue(all(s.elapsed >= 0.0099 for s in report.samples))

    def test_show(self) -> None:
        result = CliRunner().invoke(main, ["show", str(self.run_dir), "--details"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("first", result.output)
        self.assertIn("Environment", result.output)
        self.assertIn("interval:", result.output)

    def test_compare_json(self) -> None:
        result = CliRunner().invoke(main, ["compare", str(self.run_dir), "--json"])
        self.assertEqual(result.exit_code, 0, result.output)
        data = json.loads(result.output)
        self.assertEqual({e["name"] for e in data["ranking"]}, {"small", "large"})
        self.assertEqual(len(data["pairs"]), 1)

    def test_compare_needs_two_reports(self) -> None:
        result = CliRunner().invoke(main, ["compare", str(self.run_dir), "--case", "small"])
        self.assertEqual(result.exit_code, 1)

    def test_history(self) -> None:
        result = CliRunner().invoke(main, ["history", str(self.results), "small"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("first", result.output)

    def test_history_unknown_case(self) -> None:
        result = CliRunner().invoke(main, ["history", str(self.results), "missing"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("No saved reports", result.output)


class TestCrossRunCompare(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.bench = self.root / "bench_twice.py"
        self.bench.write_text(BENCH_FILE)
        self.results = self.root / "results"

    def tearDown(self) -> None:
        _reset_logging()
        self._tmp.cleanup()

    def _run(self, *extra: str) -> None:
        args = ["run", str(self.bench), *FAST_FLAGS, "--case", "small"]
        result = CliRunner().invoke(main, [*args, "--results-dir", str(self.results), *extra])
        _reset_logging()
        self.assertEqual(result.exit_code, 0, result.output)

    def test_same_suite_name_labels_by_run_id(self) -> None:
        # Both runs take the suite name "cli-demo".
        self._run()
        self._run()
        run_dirs = find_runs(self.results)
        self.assertEqual(len(run_dirs), 2)
        result = CliRunner().invoke(
            main, ["compare", *map(str, run_dirs), "--case", "small", "--json"]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        data = json.loads(result.output)
        self.assertEqual(
            {e["name"] for e in data["ranking"]},
            {f"{load_run(rd)[0].run_id}:small" for rd in run_dirs},
        )

    def test_distinct_run_names_label_by_name(self) -> None:
        self._run("--name", "before")
        self._run("--name", "after")
        result = CliRunner().invoke(
            main, ["compare", *map(str, find_runs(self.results)), "--json"]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        names = {e["name"] for e in json.loads(result.output)["ranking"]}
        self.assertEqual(names, {"before:small", "after:small"})


class TestRunErrors(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        _reset_logging()
        self._tmp.cleanup()

    def test_invalid_setting_is_usage_error(self) -> None:
        bench = self.root / "bench_bad.py"
        bench.write_text(BENCH_FILE)
        result = CliRunner().invoke(main, ["run", str(bench), "--min-samples", "1", "-q"])
        self.assertEqual(result.exit_code, 2)
        self.assertIn("min_samples", result.output)

    def test_unknown_case(self) -> None:
        bench = self.root / "bench_case.py"
        bench.write_text(BENCH_FILE)
        result = CliRunner().invoke(main, ["run", str(bench), "--case", "nope", "-q"])
        self.assertEqual(result.exit_code, 2)

    def test_no_suite(self) -> None:
        bench = self.root / "bench_empty.py"
        bench.write_text("x = 1\n")
        result = CliRunner().invoke(main, ["run", str(bench), "-q"])
        self.assertEqual(result.exit_code, 2)
        self.assertIn("No Suite found", result.output)

    def test_import_error(self) -> None:
        bench = self.root / "bench_broken.py"
        bench.write_text("raise RuntimeError('bench file is broken')\n")
        result = CliRunner().invoke(main, ["run", str(bench), "-q"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("bench file is broken", result.output)

    def test_show_missing_meta(self) -> None:
        result = CliRunner().invoke(main, ["show", str(self.root)])
        self.assertEqual(result.exit_code, 1)

    def test_show_nonexistent(self) -> None:
        result = CliRunner().invoke(main, ["show", "/nonexistent/path"])
        self.assertNotEqual(result.exit_code, 0)

    def test_profile(self) -> None:
        bench = self.root / "bench_profiled.py"
        bench.write_text(BENCH_FILE)
        profile = self.root / "profile.yaml"
        profile.write_text("defaults:\n  min_samples: 3\ncases:\n  small:\n    confidence_level: 0.99\n")
        results = self.root / "results"
        result = CliRunner().invoke(
            main,
            [
                "run",
                str(bench),
                "--profile",
                str(profile),
                "--clock-resolution",
                "0.001",
                "--target-error",
                "0.05",
                "--case",
                "small",
                "--results-dir",
                str(results),
                "-q",
            ],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        _, reports = load_run(find_runs(results)[0])
        self.assertEqual(reports[0].config.confidence_level, 0.99)
        self.assertEqual(reports[0].config.min_samples, 3)
        # The command-line flag wins over the profile.
        self.assertEqual(reports[0].config.target_relative_error, 0.05)

    def test_profile_for_unknown_case_is_ignored(self) -> None:
        bench = self.root / "bench_extra.py"
        bench.write_text(BENCH_FILE)
        profile = self.root / "profile.yaml"
        profile.write_text("defaults:\n  min_samples: 3\ncases:\n  ghost:\n    min_samples: 4\n")
        result = CliRunner().invoke(
            main,
            [
                "run",
                str(bench),
                "--profile",
                str(profile),
                *FAST_FLAGS,
                "--case",
                "small",
                "--no-compare",
            ],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Profile settings for unknown case 'ghost' ignored", result.output)
