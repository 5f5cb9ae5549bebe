"""Tests for hzbench.formatting — shared text formatting helpers."""

from __future__ import annotations

import math
import unittest

from hzbench.formatting import (
    format_duration,
    format_pct,
    format_rate,
    format_section_header,
    format_sparkline,
    format_table,
    truncate,
)


class TestFormatDuration(unittest.TestCase):
    def test_nanoseconds(self) -> None:
        self.assertEqual(format_duration(35.2e-9), "35.20ns")

    def test_microseconds(self) -> None:
        self.assertEqual(format_duration(1.25e-6), "1.25µs")

    def test_milliseconds(self) -> None:
        self.assertEqual(format_duration(0.75), "750.00ms")

    def test_seconds(self) -> None:
        self.assertEqual(format_duration(1.5), "1.50s")

    def test_precision(self) -> None:
        self.assertEqual(format_duration(0.015, 3), "15.000ms")

    def test_non_finite(self) -> None:
        self.assertEqual(format_duration(math.nan), "N/A")
        self.assertEqual(format_duration(math.inf), "∞")


class TestFormatRate(unittest.TestCase):
    def test_thousands_separators(self) -> None:
        self.assertEqual(format_rate(1234567.4), "1,234,567")

    def test_slow_rates_keep_decimals(self) -> None:
        self.assertEqual(format_rate(12.5), "12.50")

    def test_non_finite(self) -> None:
        self.assertEqual(format_rate(math.nan), "N/A")
        self.assertEqual(format_rate(math.inf), "∞")


class TestFormatPct(unittest.TestCase):
    def test_sign(self) -> None:
        self.assertEqual(format_pct(12.34), "+12.3%")
        self.assertEqual(format_pct(-5.0), "-5.0%")
        self.assertEqual(format_pct(0.0), "+0.0%")

    def test_nan(self) -> None:
        self.assertEqual(format_pct(math.nan), "N/A")


class TestFormatTable(unittest.TestCase):
    def test_basic(self) -> None:
        headers = ["Name", "Value"]
        rows = [["alpha", "100"], ["beta", "200"]]
        text = format_table(headers, rows)
        self.assertIn("Name", text)
        self.assertIn("alpha", text)
        self.assertIn("200", text)
        lines = text.splitlines()
        self.assertEqual(len(lines), 4)  # header + rule + 2 rows

    def test_truncation(self) -> None:
        headers = ["Name", "Value"]
        rows = [["a" * 50, "short"]]
        text = format_table(headers, rows, max_col_width={0: 10})
        self.assertIn("...", text)
        self.assertNotIn("a" * 50, text)

    def test_right_alignment(self) -> None:
        text = format_table(["Name", "Count"], [["alpha", "100"], ["beta", "2"]], alignments=["l", "r"])
        lines = text.splitlines()
        self.assertTrue(lines[2].endswith("100"))
        self.assertTrue(lines[3].endswith("    2"))

    def test_empty_rows(self) -> None:
        text = format_table(["Name", "Value"], [])
        self.assertEqual(len(text.splitlines()), 2)

    def test_empty_headers(self) -> None:
        self.assertEqual(format_table([], [["a", "b"]]), "")


class TestFormatSparkline(unittest.TestCase):
    def test_basic(self) -> None:
        result = format_sparkline([0.0, 0.5, 1.0], width=3)
        self.assertEqual(len(result), 3)
        self.assertEqual(result[0], "▁")
        self.assertEqual(result[-1], "█")

    def test_constant(self) -> None:
        result = format_sparkline([5.0, 5.0, 5.0], width=3)
        self.assertEqual(len(set(result)), 1)

    def test_empty(self) -> None:
        self.assertEqual(format_sparkline([]), "")

    def test_resampled_to_width(self) -> None:
        self.assertEqual(len(format_sparkline([float(i) for i in range(100)], width=20)), 20)


class TestTruncate(unittest.TestCase):
    def test_short(self) -> None:
        self.assertEqual(truncate("hello", 10), "hello")

    def test_long(self) -> None:
        result = truncate("hello world", 8)
        self.assertEqual(len(result), 8)
        self.assertTrue(result.endswith("..."))

    def test_tiny_limit(self) -> None:
        self.assertEqual(truncate("hello", 2), "..")


class TestFormatSectionHeader(unittest.TestCase):
    def test_basic(self) -> None:
        header = format_section_header("Test")
        self.assertIn("Test", header)
        self.assertIn("─", header)

    def test_width(self) -> None:
        self.assertEqual(len(format_section_header("Title", width=40)), 40)


if __name__ == "__main__":
    unittest.main()
