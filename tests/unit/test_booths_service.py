"""Unit tests for booth connectivity classification."""

from datetime import UTC, datetime, timedelta

import pytest

from urna.services.booths import connection_status

NOW = datetime(2026, 10, 4, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "status, ping_age, expected",
    [
        ("active", timedelta(seconds=30), "online"),
        ("active", timedelta(minutes=5), "online"),
        ("active", timedelta(minutes=5, seconds=1), "warning"),
        ("active", timedelta(minutes=15), "warning"),
        ("active", timedelta(minutes=15, seconds=1), "offline"),
        ("maintenance", timedelta(seconds=30), "warning"),
        ("inactive", timedelta(hours=2), "offline"),
    ],
)
def test_connection_status(status, ping_age, expected):
    booth = {"status": status, "last_ping": NOW - ping_age}
    assert connection_status(booth, NOW) == expected


def test_never_pinged_is_offline():
    assert connection_status({"status": "active", "last_ping": None}, NOW) == "offline"


def test_custom_thresholds():
    booth = {"status": "active", "last_ping": NOW - timedelta(minutes=2)}
    assert connection_status(booth, NOW, online_minutes=1, warning_minutes=3) == "warning"
