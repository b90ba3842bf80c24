"""Tests for display formatting helpers."""

from datetime import datetime, timezone

from chronometry.ui.formatting import format_duration, format_time, format_timer_display


class TestFormatDuration:
    def test_hours(self):
        assert format_duration(3723) == "1h 2m 3s"

    def test_minutes(self):
        assert format_duration(123) == "2m 3s"

    def test_seconds(self):
        assert format_duration(5) == "5s"

    def test_zero_and_none(self):
        assert format_duration(0) == "0s"
        assert format_duration(None) == "0s"
        assert format_duration(-10) == "0s"

    def test_whole_hours_keep_parts(self):
        assert format_duration(7200) == "2h 0m 0s"


class TestFormatTimerDisplay:
    def test_padding(self):
        assert format_timer_display(3723) == "01:02:03"

    def test_zero(self):
        assert format_timer_display(0) == "00:00:00"
        assert format_timer_display(None) == "00:00:00"

    def test_over_a_day(self):
        assert format_timer_display(100 * 3600) == "100:00:00"


class TestFormatTime:
    def test_none(self):
        assert format_time(None) == "--:--"

    def test_local_time(self):
        value = datetime(2026, 3, 2, 9, 5, tzinfo=timezone.utc)

        assert format_time(value) == value.astimezone().strftime("%H:%M")
