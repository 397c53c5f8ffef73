from datetime import date, datetime
import re

from .models import Animal

# 24-hour "HH:MM" as accepted by the settings API.
SCHEDULE_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')


def get_today():
    """
    Returns today's calendar date in the host's local timezone.
    date.today() reads the local clock, so a check running at 23:30 in a
    UTC-3 zone still evaluates the local day, not the already-started UTC one.
    """
    return date.today()


def format_day(day):
    """Renders a calendar date as 'YYYY-MM-DD'."""
    return day.strftime('%Y-%m-%d')


def parse_day(value):
    """Parses 'YYYY-MM-DD' into a date. Raises ValueError on bad input."""
    return datetime.strptime(value, '%Y-%m-%d').date()


def is_valid_schedule(value):
    """True if value is a 24-hour 'HH:MM' time string."""
    return isinstance(value, str) and SCHEDULE_PATTERN.match(value) is not None


def time_to_cron(value):
    """
    Converts an 'HH:MM' time into a five-field crontab expression that fires
    once a day at that hour and minute, e.g. '06:30' -> '30 6 * * *'.
    """
    hour, minute = (int(part) for part in value.split(':'))
    return f'{minute} {hour} * * *'


def find_animal_by_tag(farm_id, tag_number):
    """Finds an animal by tag number within a specific farm."""
    return Animal.query.filter_by(farm_id=farm_id, tag_number=tag_number).first()
