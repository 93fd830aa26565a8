"""Tests for utility functions."""

import pytest

from scoutcache.utils import format_age, now_ms


class TestNowMs:
    """Test the wall-clock helper."""

    def test_returns_milliseconds(self):
        value = now_ms()
        assert isinstance(value, int)
        # After 2020-01-01 in milliseconds
        assert value > 1_577_836_800_000


class TestFormatAge:
    """Test human-readable ages."""

    @pytest.mark.parametrize(
        "age_ms, expected",
        [
            (0, "0s"),
            (999, "0s"),
            (42_000, "42s"),
            (303_000, "5m 3s"),
            (7_800_000, "2h 10m"),
            (-5000, "0s"),
        ],
    )
    def test_format_age(self, age_ms, expected):
        assert format_age(age_ms) == expected
