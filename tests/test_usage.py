import unittest

from llm_relay.usage import UsageTracker


class UsageTrackerTests(unittest.TestCase):
    def test_totals_accumulate_over_successful_calls(self) -> None:
        tracker = UsageTracker()
        tokens = [10, 25, 7]
        costs = [0.01, 0.02, 0.005]
        for t, c in zip(tokens, costs):
            tracker.record(t, c, 100.0)

        stats = tracker.snapshot()
        self.assertEqual(stats.total_requests, 3)
        self.assertEqual(stats.total_tokens, 42)
        self.assertAlmostEqual(stats.total_cost, 0.035)
        self.assertEqual(stats.error_rate, 0.0)

    def test_error_rate_is_exact_fraction(self) -> None:
        tracker = UsageTracker()
        outcomes = [True, False, False, True, False, False, False]
        for is_error in outcomes:
            tracker.record(0, 0.0, 10.0, is_error=is_error)

        self.assertEqual(tracker.snapshot().error_rate, 2 / 7)

    def test_error_rate_does_not_drift_over_long_runs(self) -> None:
        tracker = UsageTracker()
        for i in range(3000):
            tracker.record(1, 0.0, 1.0, is_error=i % 3 == 0)

        stats = tracker.snapshot()
        self.assertEqual(stats.total_errors, 1000)
        self.assertEqual(stats.error_rate, 1000 / 3000)

    def test_average_response_time_is_running_mean(self) -> None:
        tracker = UsageTracker()
        for ms in (100.0, 200.0, 600.0):
            tracker.record(0, 0.0, ms)

        self.assertAlmostEqual(tracker.snapshot().average_response_time_ms, 300.0)

    def test_reset_zeroes_everything(self) -> None:
        tracker = UsageTracker()
        tracker.record(5, 1.0, 50.0, is_error=True)
        tracker.reset()

        stats = tracker.snapshot()
        self.assertEqual(stats.total_requests, 0)
        self.assertEqual(stats.total_tokens, 0)
        self.assertEqual(stats.total_cost, 0.0)
        self.assertEqual(stats.error_rate, 0.0)


if __name__ == "__main__":
    unittest.main()
