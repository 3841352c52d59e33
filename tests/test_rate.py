"""
Unit tests for burn rate estimation.
"""

from datetime import timedelta

import pytest

from ai_usage_guard.core.rate import DEFAULT_SAMPLE_WINDOW, estimate_rate


class TestEstimateRate:
    """Test tokens-per-hour estimation."""

    def test_no_events(self, now):
        rate = estimate_rate([], now)
        assert rate.tokens_per_hour == 0
        assert rate.sample_tokens == 0
        assert rate.sample_window == DEFAULT_SAMPLE_WINDOW

    def test_rate_over_actual_span(self, now, make_event):
        """Verify the rate uses the span since the oldest sample, not the full hour."""
        rate = estimate_rate([make_event(now - timedelta(minutes=5), 8_000, 2_000)], now)

        # 10,000 tokens over 5 minutes
        assert rate.tokens_per_hour == pytest.approx(120_000)
        assert rate.sample_tokens == 10_000

    def test_multiple_events(self, now, make_event):
        events = [
            make_event(now - timedelta(minutes=30), 20_000, 0),
            make_event(now - timedelta(minutes=10), 30_000, 0),
        ]
        rate = estimate_rate(events, now)

        # 50,000 tokens over 30 minutes
        assert rate.tokens_per_hour == pytest.approx(100_000)

    def test_events_outside_sample_are_ignored(self, now, make_event):
        events = [
            make_event(now - timedelta(hours=2), 1_000_000, 0),
            make_event(now + timedelta(minutes=1), 1_000_000, 0),
            make_event(now - timedelta(minutes=15), 5_000, 0),
        ]
        rate = estimate_rate(events, now)

        assert rate.sample_tokens == 5_000
        assert rate.tokens_per_hour == pytest.approx(20_000)

    def test_zero_elapsed_gives_zero_rate(self, now, make_event):
        """Verify an event exactly at now cannot produce a division by zero."""
        rate = estimate_rate([make_event(now, 500, 0)], now)

        assert rate.tokens_per_hour == 0
        assert rate.sample_tokens == 500

    def test_zero_token_events_give_zero_rate(self, now, make_event):
        rate = estimate_rate([make_event(now - timedelta(minutes=20), 0, 0)], now)
        assert rate.tokens_per_hour == 0

    def test_custom_sample_window(self, now, make_event):
        events = [make_event(now - timedelta(minutes=90), 30_000, 0)]

        assert estimate_rate(events, now).tokens_per_hour == 0
        wide = estimate_rate(events, now, sample_window=timedelta(hours=2))
        assert wide.tokens_per_hour == pytest.approx(20_000)
        assert wide.sample_window == timedelta(hours=2)
