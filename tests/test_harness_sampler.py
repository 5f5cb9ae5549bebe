"""Tests for hzbench.harness.sampler — adaptive cycle sizing."""

from __future__ import annotations

import unittest

from hzbench.errors import ClockError, ConfigurationError
from hzbench.harness.sampler import Sample, Sampler, required_cycle_duration


def linear_cycle(per_iteration: float, calls: list[int]):
    """A run_cycle whose elapsed time is exactly N * per_iteration."""

    def run_cycle(n: int) -> float:
        calls.append(n)
        return n * per_iteration

    return run_cycle


class TestRequiredCycleDuration(unittest.TestCase):
    def test_coarse_timer(self) -> None:
        self.assertAlmostEqual(required_cycle_duration(0.015, 0.01), 0.75)

    def test_millisecond_timer(self) -> None:
        self.assertAlmostEqual(required_cycle_duration(0.001, 0.01), 0.05)

    def test_tighter_target_needs_longer_cycles(self) -> None:
        self.assertGreater(
            required_cycle_duration(0.001, 0.001),
            required_cycle_duration(0.001, 0.01),
        )

    def test_invalid_resolution(self) -> None:
        with self.assertRaises(ClockError):
            required_cycle_duration(0.0, 0.01)

    def test_invalid_target(self) -> None:
        for bad in (0.0, -0.01):
            with self.subTest(target=bad):
                with self.assertRaises(ConfigurationError):
                    required_cycle_duration(0.001, bad)


class TestSample(unittest.TestCase):
    def test_per_iteration(self) -> None:
        self.assertAlmostEqual(Sample(iterations=4, elapsed=0.2).per_iteration, 0.05)

    def test_rejects_bad_values(self) -> None:
        with self.assertRaises(ValueError):
            Sample(iterations=0, elapsed=1.0)
        with self.assertRaises(ValueError):
            Sample(iterations=1, elapsed=-0.001)
        Sample(iterations=1, elapsed=0.0)

    def test_sparse_dict(self) -> None:
        self.assertEqual(Sample(10, 0.5).to_dict(), {"iterations": 10, "elapsed": 0.5})
        d = Sample(10, 0.5, sizing_rounds=3, undersized=True).to_dict()
        self.assertEqual(d["sizing_rounds"], 3)
        self.assertTrue(d["undersized"])
        self.assertEqual(Sample.from_dict(d), Sample(10, 0.5, sizing_rounds=3, undersized=True))


class TestSampler(unittest.TestCase):
    def test_meets_required_duration(self) -> None:
        """Every accepted cycle lasts at least R / (2e)."""
        for resolution, per_iteration in ((0.015, 0.0003), (0.001, 0.00001), (0.001, 0.2)):
            with self.subTest(resolution=resolution, per_iteration=per_iteration):
                sampler = Sampler(resolution, 0.01)
                sample = sampler.sample(linear_cycle(per_iteration, []))
                assert sample is not None
                self.assertGreaterEqual(sample.elapsed, sampler.required)
                self.assertFalse(sample.undersized)

    def test_coarse_timer_needs_750ms(self) -> None:
        sampler = Sampler(0.015, 0.01)
        sample = sampler.sample(linear_cycle(0.001, []))
        assert sample is not None
        self.assertGreaterEqual(sample.elapsed, 0.75)
        self.assertIn(sample.iterations, (750, 751))

    def test_doubles_until_a_tick_is_seen(self) -> None:
        calls: list[int] = []
        sampler = Sampler(0.001, 0.01)
        sampler.sample(linear_cycle(0.0001, calls))
        # 1, 2, 4, 8 are below one tick; 16 gives a usable period.
        self.assertEqual(calls[:5], [1, 2, 4, 8, 16])
        self.assertIn(calls[-1], (500, 501))

    def test_estimate_is_reused(self) -> None:
        calls: list[int] = []
        sampler = Sampler(0.001, 0.01)
        first = sampler.sample(linear_cycle(0.0001, calls))
        assert first is not None
        self.assertGreater(first.sizing_rounds, 1)

        calls.clear()
        second = sampler.sample(linear_cycle(0.0001, calls))
        assert second is not None
        self.assertEqual(calls, [first.iterations])
        self.assertEqual(second.sizing_rounds, 1)

    def test_slow_work_needs_one_iteration(self) -> None:
        calls: list[int] = []
        sample = Sampler(0.001, 0.01).sample(linear_cycle(0.1, calls))
        assert sample is not None
        self.assertEqual(calls, [1])
        self.assertEqual(sample.iterations, 1)

    def test_projection_always_grows(self) -> None:
        sampler = Sampler(0.001, 0.01)
        # Elapsed already close to the requirement: still N + 1 at least.
        self.assertEqual(sampler.next_count(100, 0.0499999), 101)

    def test_max_iterations_gives_undersized_sample(self) -> None:
        calls: list[int] = []
        sampler = Sampler(0.001, 0.01, max_iterations=10)
        sample = sampler.sample(linear_cycle(0.00001, calls))
        assert sample is not None
        self.assertTrue(sample.undersized)
        self.assertEqual(sample.iterations, 10)
        self.assertEqual(calls[-1], 10)
        self.assertTrue(all(n <= 10 for n in calls))

    def test_deadline_abandons_sizing(self) -> None:
        calls: list[int] = []
        sampler = Sampler(0.001, 0.01)
        sample = sampler.sample(linear_cycle(0.0, calls), deadline_reached=lambda: len(calls) >= 3)
        self.assertIsNone(sample)
        self.assertEqual(calls, [1, 2, 4])

    def test_initial_iterations(self) -> None:
        calls: list[int] = []
        Sampler(0.001, 0.01, initial_iterations=64).sample(linear_cycle(0.001, calls))
        self.assertEqual(calls[0], 64)

    def test_invalid_bounds(self) -> None:
        with self.assertRaises(ConfigurationError):
            Sampler(0.001, 0.01, initial_iterations=0)
        with self.assertRaises(ConfigurationError):
            Sampler(0.001, 0.01, initial_iterations=10, max_iterations=5)
        with self.assertRaises(ClockError):
            Sampler(0.0, 0.01)
