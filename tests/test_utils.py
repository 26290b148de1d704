"""Tests for utility modules."""

from datetime import date, datetime, time

import pandas as pd
import pytz

from bar_store.utils.timezone import (
    EXCHANGE_TZ,
    exchange_datetime,
    exchange_today,
    from_epoch_ms,
    parse_wall_time,
    to_epoch_ms,
)


class TestTimezone:
    """Tests for timezone utilities."""

    def test_summer_and_winter_offsets(self):
        """Test that 09:30 exchange time maps to the right UTC instant."""
        summer = to_epoch_ms(exchange_datetime(date(2024, 7, 1), time(9, 30)))
        winter = to_epoch_ms(exchange_datetime(date(2024, 1, 2), time(9, 30)))
        assert summer == int(pd.Timestamp("2024-07-01 13:30", tz="UTC").value // 1_000_000)
        assert winter == int(pd.Timestamp("2024-01-02 14:30", tz="UTC").value // 1_000_000)

    def test_naive_is_exchange_time(self):
        """Test that naive datetimes are read as exchange time."""
        naive = datetime(2024, 7, 1, 9, 30)
        assert to_epoch_ms(naive) == to_epoch_ms(EXCHANGE_TZ.localize(naive))
        assert to_epoch_ms(pd.Timestamp(naive)) == to_epoch_ms(naive)

    def test_round_trip(self):
        """Test conversion back to exchange-local time."""
        ms = to_epoch_ms(exchange_datetime(date(2024, 3, 11), time(4, 0)))
        local = from_epoch_ms(ms)
        assert (local.hour, local.minute) == (4, 0)
        assert local.utcoffset().total_seconds() == -4 * 3600

    def test_exchange_today(self):
        """Test that the exchange date lags UTC in the evening."""
        late = pytz.UTC.localize(datetime(2024, 7, 2, 2, 0))
        assert exchange_today(late) == date(2024, 7, 1)

    def test_parse_wall_time(self):
        """Test HH:MM parsing."""
        assert parse_wall_time("13:00") == time(13, 0)
        assert parse_wall_time("9") == time(9, 0)
        assert parse_wall_time(None) is None
        assert parse_wall_time("") is None
        assert parse_wall_time(time(1, 2)) == time(1, 2)
