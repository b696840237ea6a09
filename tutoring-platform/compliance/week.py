"""
Week window for the low lecture check.

A week runs Saturday 00:00:00.000 through the following Friday 23:59:59.999
in the configured TIME_ZONE. The window returned is always the most recently
completed week, so it lies entirely before "now".
"""
from datetime import datetime, time, timedelta
from typing import NamedTuple

from django.utils import timezone

_END_OF_DAY = time(23, 59, 59, 999000)


class WeekWindow(NamedTuple):
    start: datetime
    end: datetime

    def contains(self, moment) -> bool:
        """Inclusive on both bounds."""
        return moment is not None and self.start <= moment <= self.end


def days_since_saturday(now) -> int:
    """
    Days back to the most recent Saturday strictly before today's date.
    Saturday itself maps to 7, not 0, so the current day is never included.
    """
    # Python: Monday=0 .. Sunday=6; shift to Sunday=0 .. Saturday=6.
    dow = (now.weekday() + 1) % 7
    return (dow + 1) % 7 or 7


def previous_week_window(now=None) -> WeekWindow:
    """Boundaries of the last completed Saturday-to-Friday week, as aware datetimes."""
    tz = timezone.get_current_timezone()
    now = timezone.localtime(now or timezone.now(), tz)
    previous_saturday = now.date() - timedelta(days=days_since_saturday(now))

    start = datetime.combine(previous_saturday - timedelta(days=7), time.min)
    end = datetime.combine(previous_saturday - timedelta(days=1), _END_OF_DAY)
    return WeekWindow(
        start=timezone.make_aware(start, tz),
        end=timezone.make_aware(end, tz),
    )
