"""
Weekly low lecture check.

For every approved volunteer, counts the lectures delivered to each student in
each assigned subject during the last completed week and flags the
(student, subject) pairs below their weekly minimum.

The scheduled run also maintains the rolling low_lecture_week_count counter,
emits low lecture notifications and stores a ComplianceReport, all inside one
transaction. The on-demand path only reads.
"""

import logging
import uuid
from contextlib import contextmanager

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.utils import timezone

from members.models import MembershipRecord, Volunteer
from members.services import serialize_lecture
from notifications.services import notify_low_lecture_count
from .models import ComplianceReport
from .week import previous_week_window

logger = logging.getLogger(__name__)

RUN_LOCK_KEY = 'compliance:low-lecture-check:running'


class EvaluationInProgress(Exception):
    """Another scheduled low lecture check holds the run lock."""


@contextmanager
def run_lock(timeout=None):
    """Hold the run lock for the duration of the block, or raise EvaluationInProgress."""
    if timeout is None:
        timeout = settings.COMPLIANCE_LOCK_TIMEOUT
    token = uuid.uuid4().hex
    if not cache.add(RUN_LOCK_KEY, token, timeout):
        raise EvaluationInProgress('A scheduled low lecture check is already running')
    try:
        yield
    finally:
        if cache.get(RUN_LOCK_KEY) == token:
            cache.delete(RUN_LOCK_KEY)


def count_delivered(lectures, window, student_email, subject_name) -> int:
    """
    Lectures inside window (inclusive) for this student and subject.
    Student email matches case-insensitively, subject name exactly.
    """
    student_email = (student_email or '').strip().lower()
    return sum(
        1
        for lecture in lectures
        if window.contains(lecture.created_at)
        and (lecture.student_email or '').strip().lower() == student_email
        and lecture.subject == subject_name
    )


def _result_message(flagged_count):
    if flagged_count:
        return f"Found {flagged_count} member(s) with lectures below the weekly minimum"
    return 'All members meet the weekly lecture minimum'


def _debug(total, week_start, week_end, flagged):
    # Stored datetimes come back in UTC; both paths report the local zone.
    return {
        'totalUsersProcessed': total,
        'weekStart': timezone.localtime(week_start).isoformat(),
        'weekEnd': timezone.localtime(week_end).isoformat(),
        'membersWithLowLectures': flagged,
    }


def _reset_counter(volunteer):
    volunteer.low_lecture_week_count = 0
    volunteer.last_low_lecture_week = None
    volunteer.save(update_fields=['low_lecture_week_count', 'last_low_lecture_week'])
    logger.info("Reset low_lecture_week_count for %s", volunteer.email)


def _evaluate_volunteer(volunteer, membership, window, scheduled):
    """
    Check one volunteer. Returns (member_entry or None, notifications_created).
    Mutates the volunteer's counters only when scheduled is True.
    """
    students = list(volunteer.students.all())
    if not students:
        logger.debug("Skipping %s: no students", volunteer.email)
        if scheduled and volunteer.low_lecture_week_count > 0:
            _reset_counter(volunteer)
        return None, 0

    lectures = list(volunteer.lectures.all())
    under_target_students = []
    created = 0

    for student in students:
        subjects = list(student.subjects.all())
        if not subjects:
            logger.debug("Student %s of %s has no subjects", student.email, volunteer.email)
            continue

        under_target_subjects = []
        for subject in subjects:
            delivered = count_delivered(lectures, window, student.email, subject.name)
            logger.debug(
                "%s / %s / %s: delivered=%s required=%s",
                volunteer.email, student.email, subject.name, delivered, subject.min_lectures,
            )
            if delivered >= subject.min_lectures:
                continue

            under_target_subjects.append({
                'name': subject.name,
                'minLectures': subject.min_lectures,
                'deliveredLectures': delivered,
            })
            if scheduled and notify_low_lecture_count(
                volunteer, student, subject.name, subject.min_lectures, delivered,
            ):
                created += 1

        if under_target_subjects:
            under_target_students.append({
                'studentName': student.name or 'Name not available',
                'studentEmail': student.email.strip().lower(),
                'academicLevel': student.grade or 'Not specified',
                'underTargetSubjects': under_target_subjects,
            })

    if not under_target_students:
        logger.debug("%s meets all requirements", volunteer.email)
        if scheduled and volunteer.low_lecture_week_count > 0:
            _reset_counter(volunteer)
        return None, created

    last = volunteer.last_low_lecture_week
    if scheduled and (last is None or last < window.start):
        volunteer.low_lecture_week_count += 1
        volunteer.last_low_lecture_week = window.start
        volunteer.save(update_fields=['low_lecture_week_count', 'last_low_lecture_week'])
        logger.info(
            "Incremented low_lecture_week_count for %s: %s",
            volunteer.email, volunteer.low_lecture_week_count,
        )

    member = {
        'id': volunteer.pk,
        'name': membership.name or volunteer.email,
        'email': volunteer.email,
        'lowLectureWeekCount': volunteer.low_lecture_week_count,
        'underTargetStudents': under_target_students,
        'lectures': [
            serialize_lecture(lecture) for lecture in lectures if window.contains(lecture.created_at)
        ],
    }
    return member, created


def evaluate_low_lectures(now=None, scheduled=False) -> dict:
    """
    Run the low lecture check for the last completed week.

    With scheduled=True, counters, notifications and the ComplianceReport are
    written in a single transaction; any error rolls all of it back. With
    scheduled=False nothing is written.
    """
    window = previous_week_window(now)
    logger.info(
        "Checking lectures from %s to %s (scheduled=%s)",
        window.start.isoformat(), window.end.isoformat(), scheduled,
    )

    try:
        with transaction.atomic():
            volunteers = (
                Volunteer.objects.filter(role=Volunteer.Role.USER)
                .prefetch_related('students__subjects', 'lectures')
                .order_by('pk')
            )
            if scheduled:
                volunteers = volunteers.select_for_update()
            volunteers = list(volunteers)

            memberships = {
                m.email: m
                for m in MembershipRecord.objects.filter(
                    email__in=[v.email for v in volunteers],
                    status=MembershipRecord.Status.APPROVED,
                )
            }

            members = []
            notifications_created = 0
            for volunteer in volunteers:
                membership = memberships.get(volunteer.email)
                if membership is None:
                    logger.debug("Skipping %s: no approved join request", volunteer.email)
                    continue
                member, created = _evaluate_volunteer(volunteer, membership, window, scheduled)
                notifications_created += created
                if member is not None:
                    members.append(member)

            if scheduled:
                report = ComplianceReport.objects.create(
                    week_start=window.start,
                    week_end=window.end,
                    members=members,
                    total_users_processed=len(volunteers),
                    members_with_low_lectures=len(members),
                )
                logger.info(
                    "Saved low lecture report %s: week_start=%s flagged=%s notifications=%s",
                    report.pk, window.start.isoformat(), len(members), notifications_created,
                )
    except Exception:
        logger.exception("Low lecture check failed; changes rolled back")
        raise

    logger.info("Low lecture check finished: %s member(s) flagged", len(members))
    return {
        'success': True,
        'message': _result_message(len(members)),
        'members': members,
        'debug': _debug(len(volunteers), window.start, window.end, len(members)),
    }


def run_weekly_check(now=None) -> dict:
    """Scheduled entry point: one run at a time, counters and report persisted."""
    with run_lock():
        return evaluate_low_lectures(now=now, scheduled=True)


def report_result(report: ComplianceReport) -> dict:
    return {
        'success': True,
        'message': _result_message(len(report.members)),
        'members': report.members,
        'debug': _debug(
            report.total_users_processed,
            report.week_start,
            report.week_end,
            report.members_with_low_lectures,
        ),
    }


def get_low_lecture_members(now=None) -> dict:
    """
    On-demand read. Returns the latest stored report for the last completed
    week if there is one, otherwise a live read-only check.
    """
    window = previous_week_window(now)
    report = (
        ComplianceReport.objects.filter(week_start=window.start)
        .order_by('-created_at', '-id')
        .first()
    )
    if report is not None:
        logger.info("Returning stored low lecture report for week %s", window.start.isoformat())
        return report_result(report)
    return evaluate_low_lectures(now=now, scheduled=False)
