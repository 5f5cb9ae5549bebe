"""hzbench — statistical micro-benchmarks with quantified confidence."""

from __future__ import annotations

__version__ = "0.1.0"
