"""
Management command for the weekly low lecture check:
- counts lectures per student and subject for the last completed week
- notifies volunteers about subjects below their weekly minimum
- updates the rolling low lecture week counter and stores a report

With --dry-run the check is read-only and the result is printed instead.
"""

import json
import logging

from django.core.management.base import BaseCommand, CommandError

from compliance.services import EvaluationInProgress, evaluate_low_lectures, run_weekly_check

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = (
        "Check weekly lecture counts for every approved volunteer, notify those "
        "below the minimum and store the weekly report."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Compute the result without touching counters, notifications or reports",
        )

    def handle(self, *args, **options):
        verbosity = options["verbosity"]
        dry_run = options["dry_run"]

        if verbosity >= 1:
            self.stdout.write("Running low lecture check%s..." % (" (dry run)" if dry_run else ""))

        try:
            if dry_run:
                result = evaluate_low_lectures(scheduled=False)
            else:
                result = run_weekly_check()
        except EvaluationInProgress as exc:
            raise CommandError(str(exc))
        except Exception as exc:
            logger.exception("Weekly low lecture check failed")
            raise CommandError(f"Low lecture check failed: {exc}")

        debug = result["debug"]
        if verbosity >= 2 or dry_run:
            for member in result["members"]:
                subjects = sum(len(s["underTargetSubjects"]) for s in member["underTargetStudents"])
                self.stdout.write(
                    f"  {member['email']}: {len(member['underTargetStudents'])} student(s), "
                    f"{subjects} subject(s) under target, "
                    f"{member['lowLectureWeekCount']} low week(s)"
                )
        if dry_run and verbosity >= 3:
            self.stdout.write(json.dumps(result, indent=2, ensure_ascii=False))

        if verbosity >= 1:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Low lecture check complete for {debug['weekStart']} - {debug['weekEnd']}. "
                    f"{debug['membersWithLowLectures']} of {debug['totalUsersProcessed']} member(s) flagged."
                )
            )
