"""Tests for date and schedule helpers."""

from datetime import date
from unittest.mock import patch

import pytest

from farmtrack.scheduler import schedule_trigger, trigger_to_cron
from farmtrack.utils import format_day, get_today, is_valid_schedule, parse_day, time_to_cron


class TestScheduleFormat:
    @pytest.mark.parametrize('value', ['00:00', '06:30', '6:30', '21:00', '23:59'])
    def test_accepts_24_hour_times(self, value):
        assert is_valid_schedule(value)

    @pytest.mark.parametrize('value', ['24:00', '12:60', '9pm', '21', '', None, '21:00:00'])
    def test_rejects_malformed_times(self, value):
        assert not is_valid_schedule(value)


class TestTimeToCron:
    def test_daily_at_hour_and_minute(self):
        assert time_to_cron('06:30') == '30 6 * * *'

    def test_default_night_check_time(self):
        assert time_to_cron('21:00') == '0 21 * * *'

    def test_midnight(self):
        assert time_to_cron('00:00') == '0 0 * * *'


class TestScheduleTrigger:
    def test_trigger_round_trips_to_cron(self):
        assert trigger_to_cron(schedule_trigger('06:30')) == '30 6 * * *'

    def test_trigger_fires_any_day(self):
        fields = {f.name: str(f) for f in schedule_trigger('21:00').fields}
        assert fields['day'] == '*'
        assert fields['month'] == '*'
        assert fields['day_of_week'] == '*'

    def test_invalid_time_raises(self):
        with pytest.raises(ValueError):
            schedule_trigger('25:00')


class TestDays:
    def test_format_day_is_zero_padded(self):
        assert format_day(date(2024, 3, 7)) == '2024-03-07'

    def test_parse_day(self):
        assert parse_day('2024-03-07') == date(2024, 3, 7)

    def test_parse_day_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_day('07/03/2024')

    def test_today_is_local_calendar_date(self):
        with patch('farmtrack.utils.date') as mock_date:
            mock_date.today.return_value = date(2024, 12, 31)
            assert get_today() == date(2024, 12, 31)
