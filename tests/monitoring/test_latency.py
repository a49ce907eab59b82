"""
Tests for the latency tracker.

============================================================
PURPOSE
============================================================
- Histogram bookkeeping matches the sample count
- Approximate percentiles land in the right bucket
- Cache is served until a write or expiry
- Empty trackers never divide by zero

============================================================
"""

import random
import threading

import pytest

from pubsub_monitoring.metrics.latency import LatencyTracker
from pubsub_monitoring.models import (
    PerformanceStatus,
    HISTOGRAM_BOUNDS_MICROS,
)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def tracker(clock):
    """Tracker with the default 5s alert threshold."""
    return LatencyTracker(clock=clock)


# ============================================================
# RECORDING & STATS
# ============================================================

class TestLatencyStats:
    """Tests for LatencyTracker.get_stats."""

    def test_one_to_hundred_ms(self, tracker):
        """1ms..100ms: average 50.5, p99 in the <=100ms bucket."""
        for ms in range(1, 101):
            tracker.record_latency(ms)

        stats = tracker.get_stats()

        assert stats.sample_count == 100
        assert stats.average == pytest.approx(50.5)
        assert stats.minimum == pytest.approx(1.0)
        assert stats.maximum == pytest.approx(100.0)
        # Bucket (50ms, 100ms] midpoint
        assert stats.p99 == pytest.approx(75.0)
        assert 50.0 < stats.p99 <= 100.0

    def test_percentiles_are_ordered(self, tracker):
        rng = random.Random(42)
        for _ in range(500):
            tracker.record_latency(rng.expovariate(1 / 80.0))

        stats = tracker.get_stats()

        assert stats.p50 <= stats.p95 <= stats.p99

    def test_histogram_counts_sum_to_sample_count(self, tracker):
        rng = random.Random(7)
        for _ in range(1_234):
            tracker.record_latency(rng.uniform(0, 8_000))

        stats = tracker.get_stats()

        assert stats.histogram.total == stats.sample_count == 1_234
        assert len(stats.histogram.counts) == len(HISTOGRAM_BOUNDS_MICROS)

    def test_bucket_bound_is_inclusive(self, tracker):
        """A sample equal to a bound lands in that bound's bucket."""
        tracker.record_latency(5.0)

        counts = tracker.histogram().counts

        assert counts[1] == 1  # <=5ms
        assert sum(counts) == 1

    def test_overflow_bucket_reports_max(self, tracker):
        tracker.record_latency(6_000)
        tracker.record_latency(9_000)

        stats = tracker.get_stats()

        assert stats.histogram.counts[-1] == 2
        assert stats.p50 == pytest.approx(9_000)
        assert stats.p99 == pytest.approx(9_000)

    def test_empty_tracker_returns_empty_stats(self, tracker):
        stats = tracker.get_stats()

        assert stats.sample_count == 0
        assert stats.average == 0.0
        assert stats.p50 == stats.p95 == stats.p99 == 0.0
        assert stats.histogram.total == 0

    def test_threshold_violations(self, clock):
        tracker = LatencyTracker(alert_threshold_ms=100, clock=clock)

        tracker.record_latency(50)
        tracker.record_latency(100)
        tracker.record_latency(150)

        assert tracker.get_stats().threshold_violations == 1

    def test_set_alert_threshold(self, tracker):
        tracker.set_alert_threshold(10)
        tracker.record_latency(20)

        stats = tracker.get_stats()

        assert stats.alert_threshold_ms == 10
        assert stats.threshold_violations == 1

    def test_recent_average_uses_ring_buffer(self, clock):
        tracker = LatencyTracker(buffer_size=3, clock=clock)

        for ms in (1, 2, 3, 4):
            tracker.record_latency(ms)

        stats = tracker.get_stats()

        assert stats.recent_average == pytest.approx(3.0)
        assert stats.average == pytest.approx(2.5)

    def test_record_micros(self, tracker):
        tracker.record_latency_micros(2_500)

        assert tracker.get_stats().average == pytest.approx(2.5)

    def test_reset(self, tracker):
        tracker.record_latency(10)
        tracker.reset()

        assert tracker.sample_count == 0
        assert tracker.get_stats().sample_count == 0

    def test_performance_status(self, tracker):
        for _ in range(10):
            tracker.record_latency(20)
        assert tracker.get_stats().performance_status == PerformanceStatus.EXCELLENT

        tracker.reset()
        for _ in range(10):
            tracker.record_latency(3_000)
        assert tracker.get_stats().performance_status == PerformanceStatus.POOR


# ============================================================
# CACHE
# ============================================================

class TestLatencyCache:
    """Tests for the stats cache."""

    def test_cached_until_write(self, tracker):
        tracker.record_latency(10)

        first = tracker.get_stats()
        second = tracker.get_stats()
        tracker.record_latency(20)
        third = tracker.get_stats()

        assert first is second
        assert third is not first
        assert third.sample_count == 2

    def test_cache_expires(self, tracker, clock):
        tracker.record_latency(10)
        first = tracker.get_stats()

        clock.advance(seconds=11)

        assert tracker.get_stats() is not first


# ============================================================
# CONCURRENCY
# ============================================================

class TestLatencyConcurrency:
    """Concurrent writers."""

    def test_concurrent_writers_keep_exact_extrema(self, tracker):
        def worker(offset):
            for i in range(1_000):
                tracker.record_latency(offset + i * 0.001)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = tracker.get_stats()

        assert stats.sample_count == 8_000
        assert stats.histogram.total == 8_000
        assert stats.minimum == pytest.approx(1.0)
        assert stats.maximum == pytest.approx(8.999)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
