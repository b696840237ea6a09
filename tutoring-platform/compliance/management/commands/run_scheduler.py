"""
Long-running process that fires the weekly low lecture check.

The job runs on COMPLIANCE_SCHEDULE_DAY at COMPLIANCE_SCHEDULE_TIME in
TIME_ZONE (Saturday 00:00 Asia/Riyadh by default).
"""

import logging
import time

import schedule
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from compliance.services import EvaluationInProgress, run_weekly_check

logger = logging.getLogger(__name__)

_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def weekly_low_lecture_job():
    """Scheduled job body. Errors are logged so the scheduler keeps running."""
    logger.info("Starting weekly low lecture check")
    try:
        result = run_weekly_check()
    except EvaluationInProgress:
        logger.warning("Previous low lecture check still running; skipping this trigger")
        return
    except Exception:
        logger.exception("Error in weekly low lecture check")
        return
    logger.info(
        "Weekly low lecture check completed: %s member(s) flagged",
        result["debug"]["membersWithLowLectures"],
    )


def register_weekly_job(scheduler, day, at, tz):
    day = day.strip().lower()
    if day not in _DAYS:
        raise ValueError(f"Unknown schedule day: {day!r}")
    return getattr(scheduler.every(), day).at(at, tz).do(weekly_low_lecture_job)


class Command(BaseCommand):
    help = "Run the scheduler that triggers the weekly low lecture check."

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval",
            type=int,
            default=60,
            help="Seconds between checks for pending jobs (default: 60)",
        )

    def handle(self, *args, **options):
        scheduler = schedule.Scheduler()
        try:
            job = register_weekly_job(
                scheduler,
                settings.COMPLIANCE_SCHEDULE_DAY,
                settings.COMPLIANCE_SCHEDULE_TIME,
                settings.TIME_ZONE,
            )
        except (ValueError, schedule.ScheduleValueError) as exc:
            raise CommandError(str(exc))

        self.stdout.write(
            self.style.SUCCESS(f"Scheduler started. Next low lecture check at {job.next_run}.")
        )
        try:
            while True:
                scheduler.run_pending()
                time.sleep(options["interval"])
        except KeyboardInterrupt:
            self.stdout.write("Scheduler stopped.")
