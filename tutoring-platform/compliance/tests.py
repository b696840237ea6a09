import os
import subprocess
import sys
from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from unittest import mock

import schedule
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.cache import cache, caches
from django.core.management import call_command
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from members.models import Lecture, MembershipRecord, Student, SubjectAssignment, Volunteer
from notifications.models import Notification
from .management.commands.run_scheduler import register_weekly_job, weekly_low_lecture_job
from .models import ComplianceReport
from .services import (
    RUN_LOCK_KEY,
    EvaluationInProgress,
    evaluate_low_lectures,
    get_low_lecture_members,
    run_lock,
    run_weekly_check,
)
from .week import days_since_saturday, previous_week_window

User = get_user_model()


def local(*args):
    """Aware datetime in the configured TIME_ZONE."""
    return timezone.make_aware(datetime(*args))


# Wednesday; the last completed week is Sat 2024-06-01 .. Fri 2024-06-07.
NOW = local(2024, 6, 12, 10, 0)
WEEK_START = local(2024, 6, 1)
WEEK_END = local(2024, 6, 7, 23, 59, 59, 999000)
NEXT_WEEK_NOW = NOW + timedelta(days=7)


def make_volunteer(email, status=MembershipRecord.Status.APPROVED, role=Volunteer.Role.USER, name=''):
    MembershipRecord.objects.create(
        name=name or email.split('@')[0],
        email=email,
        number='0500000000',
        academic_specialization='Math',
        address='Riyadh',
        status=status,
    )
    return Volunteer.objects.create(email=email, role=role, name=name)


def add_student(volunteer, email, subjects=(), name='Student', grade=''):
    student = Student.objects.create(
        volunteer=volunteer, name=name, email=email, phone='0511111111', grade=grade,
    )
    for subject, min_lectures in subjects:
        SubjectAssignment.objects.create(student=student, name=subject, min_lectures=min_lectures)
    return student


def add_lecture(volunteer, student_email, subject, created_at):
    return Lecture.objects.create(
        volunteer=volunteer,
        link='https://meet.example.com/x',
        name='Session',
        subject=subject,
        student_email=student_email,
        created_at=created_at,
    )


class WeekWindowTest(TestCase):
    """Last completed Saturday-to-Friday week."""

    def test_window_for_midweek(self):
        window = previous_week_window(NOW)
        self.assertEqual(window.start, WEEK_START)
        self.assertEqual(window.end, WEEK_END)

    def test_saturday_excludes_current_day(self):
        saturday = local(2024, 6, 8, 0, 30)
        self.assertEqual(days_since_saturday(saturday), 7)
        window = previous_week_window(saturday)
        self.assertEqual(window.start, local(2024, 5, 25))
        self.assertEqual(window.end, local(2024, 5, 31, 23, 59, 59, 999000))

    def test_friday_and_sunday(self):
        self.assertEqual(previous_week_window(local(2024, 6, 7, 23, 0)).start, local(2024, 5, 25))
        self.assertEqual(previous_week_window(local(2024, 6, 9, 1, 0)).start, local(2024, 6, 1))

    def test_window_shape_for_every_day(self):
        tz = timezone.get_current_timezone()
        for offset in range(14):
            now = NOW + timedelta(days=offset, hours=offset)
            window = previous_week_window(now)
            start = timezone.localtime(window.start, tz)
            end = timezone.localtime(window.end, tz)
            self.assertEqual(start.weekday(), 5)
            self.assertEqual((start.hour, start.minute, start.second, start.microsecond), (0, 0, 0, 0))
            self.assertEqual(end.weekday(), 4)
            self.assertEqual((end.hour, end.minute, end.second, end.microsecond), (23, 59, 59, 999000))
            self.assertEqual(window.end - window.start, timedelta(days=7) - timedelta(milliseconds=1))
            self.assertLess(window.end, now)

    def test_utc_input_is_converted_to_local_zone(self):
        # 2024-06-07 22:00 UTC is already Saturday 01:00 in Riyadh.
        utc_now = datetime(2024, 6, 7, 22, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(previous_week_window(utc_now).start, local(2024, 5, 25))

    def test_contains_is_inclusive(self):
        window = previous_week_window(NOW)
        self.assertTrue(window.contains(WEEK_START))
        self.assertTrue(window.contains(WEEK_END))
        self.assertFalse(window.contains(WEEK_START - timedelta(microseconds=1)))
        self.assertFalse(window.contains(WEEK_END + timedelta(milliseconds=1)))
        self.assertFalse(window.contains(None))


class LowLectureEvaluationTest(TestCase):
    """Per-student, per-subject weekly counts and the flagged members list."""

    def setUp(self):
        cache.clear()
        self.volunteer = make_volunteer('v@x.com', name='Volunteer V')
        self.student = add_student(self.volunteer, 's@x.com', [('Math', 2)], name='Student S', grade='Grade 7')

    def _run(self, now=NOW, scheduled=True):
        if scheduled:
            return run_weekly_check(now=now)
        return evaluate_low_lectures(now=now, scheduled=False)

    def test_zero_lectures_flags_member_and_notifies(self):
        result = self._run()
        self.assertEqual(len(result['members']), 1)
        member = result['members'][0]
        self.assertEqual(member['email'], 'v@x.com')
        self.assertEqual(member['name'], 'Volunteer V')
        self.assertEqual(member['lowLectureWeekCount'], 1)
        self.assertEqual(member['underTargetStudents'], [{
            'studentName': 'Student S',
            'studentEmail': 's@x.com',
            'academicLevel': 'Grade 7',
            'underTargetSubjects': [{'name': 'Math', 'minLectures': 2, 'deliveredLectures': 0}],
        }])
        notification = Notification.objects.get(type=Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT)
        self.assertEqual(notification.user, self.volunteer)
        self.assertEqual(notification.subject, 'Math')
        self.assertEqual(notification.student_email, 's@x.com')
        self.assertEqual(notification.details['minLectures'], 2)
        self.assertEqual(notification.details['currentLectures'], 0)

    def test_lecture_at_week_start_counts(self):
        add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START)
        result = self._run()
        subjects = result['members'][0]['underTargetStudents'][0]['underTargetSubjects']
        self.assertEqual(subjects, [{'name': 'Math', 'minLectures': 2, 'deliveredLectures': 1}])

    def test_two_lectures_meet_target(self):
        add_lecture(self.volunteer, 'S@X.com', 'Math', WEEK_START)
        add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_END)
        result = self._run()
        self.assertEqual(result['members'], [])
        self.assertEqual(result['debug']['membersWithLowLectures'], 0)
        self.assertFalse(Notification.objects.exists())

    def test_lectures_outside_window_or_mismatched_are_ignored(self):
        add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START - timedelta(microseconds=1))
        add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_END + timedelta(milliseconds=1))
        add_lecture(self.volunteer, 's@x.com', 'math', WEEK_START + timedelta(days=1))
        add_lecture(self.volunteer, 'other@x.com', 'Math', WEEK_START + timedelta(days=1))
        add_lecture(self.volunteer, '', 'Math', WEEK_START + timedelta(days=1))
        result = self._run(scheduled=False)
        subjects = result['members'][0]['underTargetStudents'][0]['underTargetSubjects']
        self.assertEqual(subjects[0]['deliveredLectures'], 0)
        # Only the three lectures inside the window are listed.
        self.assertEqual(len(result['members'][0]['lectures']), 3)

    def test_other_volunteers_lectures_do_not_count(self):
        other = make_volunteer('o@x.com')
        add_lecture(other, 's@x.com', 'Math', WEEK_START)
        add_lecture(other, 's@x.com', 'Math', WEEK_START)
        result = self._run(scheduled=False)
        emails = [m['email'] for m in result['members']]
        self.assertEqual(emails, ['v@x.com'])

    def test_only_under_target_subjects_are_listed(self):
        SubjectAssignment.objects.create(student=self.student, name='Science', min_lectures=1)
        add_lecture(self.volunteer, 's@x.com', 'Science', WEEK_START + timedelta(days=2))
        result = self._run(scheduled=False)
        subjects = result['members'][0]['underTargetStudents'][0]['underTargetSubjects']
        self.assertEqual([s['name'] for s in subjects], ['Math'])

    def test_zero_minimum_is_never_under_target(self):
        self.student.subjects.update(min_lectures=0)
        self.assertEqual(self._run(scheduled=False)['members'], [])

    def test_student_without_subjects_contributes_nothing(self):
        other = make_volunteer('n@x.com')
        add_student(other, 'a@x.com')
        add_student(other, 'b@x.com')
        result = self._run(scheduled=False)
        self.assertNotIn('n@x.com', [m['email'] for m in result['members']])

    def test_missing_grade_and_name_fall_back(self):
        other = make_volunteer('g@x.com')
        add_student(other, 'c@x.com', [('Art', 1)], name='')
        result = self._run(scheduled=False)
        member = next(m for m in result['members'] if m['email'] == 'g@x.com')
        self.assertEqual(member['underTargetStudents'][0]['academicLevel'], 'Not specified')
        self.assertEqual(member['underTargetStudents'][0]['studentName'], 'Name not available')

    def test_unapproved_and_missing_memberships_are_skipped(self):
        pending = make_volunteer('p@x.com', status=MembershipRecord.Status.PENDING)
        add_student(pending, 'q@x.com', [('Math', 3)])
        orphan = Volunteer.objects.create(email='orphan@x.com')
        add_student(orphan, 'r@x.com', [('Math', 3)])

        result = self._run()
        self.assertEqual([m['email'] for m in result['members']], ['v@x.com'])
        self.assertEqual(result['debug']['totalUsersProcessed'], 3)
        orphan.refresh_from_db()
        self.assertEqual(orphan.low_lecture_week_count, 0)
        self.assertFalse(Notification.objects.filter(user__in=[pending, orphan]).exists())

    def test_only_user_role_is_evaluated(self):
        for role in (Volunteer.Role.ADMIN, Volunteer.Role.LEADER):
            v = make_volunteer(f"{role.value}@x.com", role=role)
            add_student(v, f"{role.value}-s@x.com", [('Math', 5)])
        result = self._run(scheduled=False)
        self.assertEqual([m['email'] for m in result['members']], ['v@x.com'])
        self.assertEqual(result['debug']['totalUsersProcessed'], 1)

    def test_debug_block(self):
        result = self._run(scheduled=False)
        self.assertTrue(result['success'])
        self.assertEqual(result['debug'], {
            'totalUsersProcessed': 1,
            'weekStart': WEEK_START.isoformat(),
            'weekEnd': WEEK_END.isoformat(),
            'membersWithLowLectures': 1,
        })


class RollingCounterTest(TestCase):
    """low_lecture_week_count / last_low_lecture_week maintenance."""

    def setUp(self):
        cache.clear()
        self.volunteer = make_volunteer('v@x.com')
        add_student(self.volunteer, 's@x.com', [('Math', 2)])

    def test_same_week_counts_once(self):
        run_weekly_check(now=NOW)
        run_weekly_check(now=NOW + timedelta(hours=5))
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 1)
        self.assertEqual(self.volunteer.last_low_lecture_week, WEEK_START)
        self.assertEqual(Notification.objects.count(), 1)
        self.assertEqual(ComplianceReport.objects.count(), 2)

    def test_next_week_increments_by_one(self):
        run_weekly_check(now=NOW)
        result = run_weekly_check(now=NEXT_WEEK_NOW)
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 2)
        self.assertEqual(self.volunteer.last_low_lecture_week, WEEK_START + timedelta(days=7))
        self.assertEqual(result['members'][0]['lowLectureWeekCount'], 2)

    def test_compliance_resets_counter(self):
        run_weekly_check(now=NOW)
        for day in (1, 2):
            add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START + timedelta(days=7 + day))
        result = run_weekly_check(now=NEXT_WEEK_NOW)
        self.assertEqual(result['members'], [])
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 0)
        self.assertIsNone(self.volunteer.last_low_lecture_week)

    def test_no_students_resets_counter(self):
        self.volunteer.students.all().delete()
        self.volunteer.low_lecture_week_count = 3
        self.volunteer.last_low_lecture_week = WEEK_START - timedelta(days=7)
        self.volunteer.save()

        result = run_weekly_check(now=NOW)
        self.assertEqual(result['members'], [])
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 0)
        self.assertIsNone(self.volunteer.last_low_lecture_week)

    def test_existing_notification_is_not_duplicated(self):
        run_weekly_check(now=NOW)
        run_weekly_check(now=NEXT_WEEK_NOW)
        self.assertEqual(
            Notification.objects.filter(
                user=self.volunteer, type=Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT,
            ).count(),
            1,
        )

    def test_on_demand_check_never_writes(self):
        self.volunteer.low_lecture_week_count = 4
        self.volunteer.last_low_lecture_week = WEEK_START - timedelta(days=14)
        self.volunteer.save()

        result = evaluate_low_lectures(now=NOW, scheduled=False)
        self.assertEqual(result['members'][0]['lowLectureWeekCount'], 4)
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 4)
        self.assertEqual(self.volunteer.last_low_lecture_week, WEEK_START - timedelta(days=14))
        self.assertFalse(Notification.objects.exists())
        self.assertFalse(ComplianceReport.objects.exists())

    def test_report_snapshot(self):
        run_weekly_check(now=NOW)
        report = ComplianceReport.objects.get()
        self.assertEqual(report.week_start, WEEK_START)
        self.assertEqual(report.week_end, WEEK_END)
        self.assertEqual(report.total_users_processed, 1)
        self.assertEqual(report.members_with_low_lectures, 1)
        self.assertEqual(report.members[0]['email'], 'v@x.com')

    def test_failure_rolls_back_everything(self):
        with mock.patch(
            'compliance.services.ComplianceReport.objects.create',
            side_effect=DatabaseError('disk full'),
        ):
            with self.assertRaises(DatabaseError):
                run_weekly_check(now=NOW)
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 0)
        self.assertIsNone(self.volunteer.last_low_lecture_week)
        self.assertFalse(Notification.objects.exists())
        self.assertFalse(ComplianceReport.objects.exists())
        # The lock is released after a failed run.
        run_weekly_check(now=NOW)


class RunLockTest(TestCase):

    def setUp(self):
        cache.clear()

    def test_overlapping_scheduled_runs_are_rejected(self):
        with run_lock():
            with self.assertRaises(EvaluationInProgress):
                run_weekly_check(now=NOW)
        self.assertFalse(ComplianceReport.objects.exists())

    def test_on_demand_read_ignores_lock(self):
        with run_lock():
            result = get_low_lecture_members(now=NOW)
        self.assertTrue(result['success'])

    def test_lock_is_released(self):
        with run_lock():
            pass
        run_weekly_check(now=NOW)
        self.assertEqual(ComplianceReport.objects.count(), 1)

    def test_lock_is_stored_in_the_shared_cache_table(self):
        table = settings.CACHES['default']['LOCATION']
        with run_lock():
            with connection.cursor() as cursor:
                cursor.execute('SELECT cache_key FROM %s' % connection.ops.quote_name(table))
                keys = [row[0] for row in cursor.fetchall()]
            self.assertIn(cache.make_key(RUN_LOCK_KEY), keys)
            # A fresh backend instance has no in-process state to share.
            other = caches.create_connection('default')
            self.assertFalse(other.add(RUN_LOCK_KEY, 'other', 60))
        self.assertIsNone(cache.get(RUN_LOCK_KEY))


_TRY_LOCK = """
import django
django.setup()
from compliance.services import EvaluationInProgress, run_lock
try:
    with run_lock():
        print('acquired')
except EvaluationInProgress:
    print('busy')
"""


class RunLockAcrossProcessesTest(TransactionTestCase):
    """The run lock is visible to a separate manage.py process on the same database."""

    def _try_lock_in_child(self):
        env = dict(
            os.environ,
            DJANGO_SETTINGS_MODULE='config.settings',
            DATABASE_PATH=str(connection.settings_dict['NAME']),
        )
        completed = subprocess.run(
            [sys.executable, '-c', _TRY_LOCK],
            cwd=str(settings.BASE_DIR),
            env=env,
            capture_output=True,
            text=True,
            timeout=120,
        )
        self.assertEqual(completed.returncode, 0, completed.stderr)
        return completed.stdout.strip().splitlines()[-1]

    def setUp(self):
        if connection.vendor == 'sqlite' and connection.is_in_memory_db():
            self.skipTest('needs an on-disk test database')
        cache.clear()

    def test_second_process_is_refused_while_lock_is_held(self):
        with run_lock():
            self.assertEqual(self._try_lock_in_child(), 'busy')
        self.assertEqual(self._try_lock_in_child(), 'acquired')


class ReportLookupTest(TestCase):
    """Stored report first, live read-only check otherwise."""

    def setUp(self):
        cache.clear()
        self.volunteer = make_volunteer('v@x.com')
        add_student(self.volunteer, 's@x.com', [('Math', 2)])

    def test_falls_back_to_live_check_without_storing(self):
        result = get_low_lecture_members(now=NOW)
        self.assertEqual(len(result['members']), 1)
        self.assertFalse(ComplianceReport.objects.exists())
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.low_lecture_week_count, 0)

    def test_returns_stored_report_verbatim(self):
        run_weekly_check(now=NOW)
        # Data changes after the run do not alter the stored answer.
        for day in (1, 2):
            add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START + timedelta(days=day))
        result = get_low_lecture_members(now=NOW + timedelta(days=1))
        self.assertEqual(len(result['members']), 1)
        self.assertEqual(result['members'][0]['lowLectureWeekCount'], 1)
        self.assertEqual(result['debug']['weekStart'], WEEK_START.isoformat())

    def test_stored_and_live_reads_report_the_same_window(self):
        live = get_low_lecture_members(now=NOW)
        run_weekly_check(now=NOW)
        stored = get_low_lecture_members(now=NOW)
        self.assertTrue(ComplianceReport.objects.exists())
        self.assertEqual(stored['debug']['weekStart'], live['debug']['weekStart'])
        self.assertEqual(stored['debug']['weekEnd'], live['debug']['weekEnd'])
        self.assertEqual(stored['debug']['weekEnd'], WEEK_END.isoformat())

    def test_stored_members_only_list_lectures_of_the_week(self):
        add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START - timedelta(days=3))
        in_week = add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START + timedelta(days=2))
        run_weekly_check(now=NOW)
        report = ComplianceReport.objects.get()
        self.assertEqual([lec['id'] for lec in report.members[0]['lectures']], [in_week.pk])

    def test_latest_report_for_week_wins(self):
        run_weekly_check(now=NOW)
        for day in (1, 2):
            add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START + timedelta(days=day))
        run_weekly_check(now=NOW)
        self.assertEqual(get_low_lecture_members(now=NOW)['members'], [])

    def test_report_for_other_week_is_not_used(self):
        run_weekly_check(now=NOW)
        for day in (8, 9):
            add_lecture(self.volunteer, 's@x.com', 'Math', WEEK_START + timedelta(days=day))
        result = get_low_lecture_members(now=NEXT_WEEK_NOW)
        self.assertEqual(result['members'], [])
        self.assertEqual(ComplianceReport.objects.count(), 1)


class LowLectureMembersViewTest(TestCase):

    def setUp(self):
        cache.clear()
        self.url = '/api/lectures/low-lecture-members/'
        admin_user = User.objects.create_user(username='admin@x.com', password='pw')
        Volunteer.objects.create(email='admin@x.com', user=admin_user, role=Volunteer.Role.ADMIN)
        self.admin_user = admin_user
        member_user = User.objects.create_user(username='v@x.com', password='pw')
        self.volunteer = make_volunteer('v@x.com')
        self.volunteer.user = member_user
        self.volunteer.save()
        self.member_user = member_user
        add_student(self.volunteer, 's@x.com', [('Math', 2)])

    def test_requires_authentication(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 401)

    def test_rejects_non_admin(self):
        self.client.force_login(self.member_user)
        with mock.patch('compliance.views.get_low_lecture_members') as lookup:
            response = self.client.get(self.url)
        self.assertEqual(response.status_code, 403)
        lookup.assert_not_called()

    def test_admin_gets_members(self):
        self.client.force_login(self.admin_user)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['success'])
        self.assertEqual(data['members'][0]['email'], 'v@x.com')
        self.assertEqual(set(data['debug']), {
            'totalUsersProcessed', 'weekStart', 'weekEnd', 'membersWithLowLectures',
        })
        self.assertFalse(ComplianceReport.objects.exists())

    def test_store_failure_returns_500(self):
        self.client.force_login(self.admin_user)
        with mock.patch(
            'compliance.views.get_low_lecture_members',
            side_effect=DatabaseError('unreachable'),
        ):
            response = self.client.get(self.url)
        self.assertEqual(response.status_code, 500)
        self.assertFalse(response.json()['success'])


class CommandTest(TestCase):

    def setUp(self):
        cache.clear()
        volunteer = make_volunteer('v@x.com')
        add_student(volunteer, 's@x.com', [('Math', 2)])

    def test_check_low_lectures_persists_report(self):
        out = StringIO()
        call_command('check_low_lectures', stdout=out)
        self.assertEqual(ComplianceReport.objects.count(), 1)
        self.assertIn('1 of 1 member(s) flagged', out.getvalue())

    def test_dry_run_writes_nothing(self):
        out = StringIO()
        call_command('check_low_lectures', '--dry-run', stdout=out)
        self.assertFalse(ComplianceReport.objects.exists())
        self.assertFalse(Notification.objects.exists())
        self.assertIn('v@x.com', out.getvalue())

    def test_scheduled_job_skips_when_locked(self):
        with run_lock():
            weekly_low_lecture_job()
        self.assertFalse(ComplianceReport.objects.exists())
        weekly_low_lecture_job()
        self.assertEqual(ComplianceReport.objects.count(), 1)

    def test_register_weekly_job(self):
        scheduler = schedule.Scheduler()
        job = register_weekly_job(scheduler, 'Saturday', '00:00', 'Asia/Riyadh')
        self.assertEqual(job.start_day, 'saturday')
        self.assertEqual(job.unit, 'weeks')
        self.assertIsNotNone(job.next_run)
        with self.assertRaises(ValueError):
            register_weekly_job(scheduler, 'someday', '00:00', 'Asia/Riyadh')
