from django.contrib.auth import get_user_model
from django.core import mail
from django.db import IntegrityError, transaction
from django.test import TestCase

from members.models import Student, Volunteer
from .models import Notification
from .services import (
    notify_low_lecture_count,
    retract_low_lecture_notifications,
    send_email,
)

User = get_user_model()


class LowLectureNotificationTest(TestCase):
    """One active low lecture notification per (volunteer, subject, student)."""

    def setUp(self):
        self.volunteer = Volunteer.objects.create(email='v@x.com')
        self.student = Student.objects.create(
            volunteer=self.volunteer, name='Student S', email='S@x.com', phone='1',
        )

    def test_created_once(self):
        first = notify_low_lecture_count(self.volunteer, self.student, 'Math', 2, 0)
        second = notify_low_lecture_count(self.volunteer, self.student, 'Math', 2, 1)
        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(Notification.objects.count(), 1)
        self.assertEqual(first.student_email, 's@x.com')
        self.assertIn('Student S', first.message)

    def test_other_subject_is_separate(self):
        notify_low_lecture_count(self.volunteer, self.student, 'Math', 2, 0)
        notify_low_lecture_count(self.volunteer, self.student, 'Science', 1, 0)
        self.assertEqual(Notification.objects.count(), 2)

    def test_database_rejects_duplicates(self):
        notify_low_lecture_count(self.volunteer, self.student, 'Math', 2, 0)
        with self.assertRaises(IntegrityError), transaction.atomic():
            Notification.objects.create(
                user=self.volunteer,
                type=Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT,
                subject='Math',
                student_email='s@x.com',
                message='dup',
            )

    def test_lecture_added_notifications_are_not_deduplicated(self):
        for _ in range(2):
            Notification.objects.create(
                user=self.volunteer,
                type=Notification.Type.LECTURE_ADDED,
                subject='Math',
                student_email='s@x.com',
                message='added',
            )
        self.assertEqual(Notification.objects.count(), 2)

    def test_retract_matches_email_case_insensitively(self):
        notify_low_lecture_count(self.volunteer, self.student, 'Math', 2, 0)
        self.assertEqual(retract_low_lecture_notifications(self.volunteer, 'Math', 'S@X.COM'), 1)
        self.assertEqual(retract_low_lecture_notifications(self.volunteer, 'Math', 's@x.com'), 0)


class InboxViewTest(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='v@x.com', password='pw')
        self.volunteer = Volunteer.objects.create(email='v@x.com', user=self.user)
        other = Volunteer.objects.create(email='o@x.com')
        self.mine = [
            Notification.objects.create(user=self.volunteer, type=Notification.Type.LECTURE_ADDED, message=f'n{i}')
            for i in range(2)
        ]
        self.theirs = Notification.objects.create(user=other, type=Notification.Type.LECTURE_ADDED, message='x')
        self.client.force_login(self.user)

    def test_list_newest_first(self):
        response = self.client.get('/api/lectures/notifications/')
        self.assertEqual(response.status_code, 200)
        ids = [n['id'] for n in response.json()['notifications']]
        self.assertEqual(ids, [self.mine[1].pk, self.mine[0].pk])

    def test_mark_read(self):
        response = self.client.post('/api/lectures/notifications/mark-read/')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(all(n['read'] for n in response.json()['notifications']))
        self.theirs.refresh_from_db()
        self.assertFalse(self.theirs.read)

    def test_delete_own(self):
        response = self.client.delete(f'/api/lectures/notifications/{self.mine[0].pk}/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Notification.objects.filter(pk=self.mine[0].pk).exists())

    def test_cannot_delete_others(self):
        response = self.client.delete(f'/api/lectures/notifications/{self.theirs.pk}/')
        self.assertEqual(response.status_code, 404)
        self.assertTrue(Notification.objects.filter(pk=self.theirs.pk).exists())

    def test_requires_login(self):
        self.client.logout()
        self.assertEqual(self.client.get('/api/lectures/notifications/').status_code, 401)


class SendEmailTest(TestCase):

    def test_send_email(self):
        self.assertEqual(send_email('a@x.com', 'Hello', 'Body'), 1)
        self.assertEqual(mail.outbox[0].subject, 'Hello')
        self.assertEqual(mail.outbox[0].to, ['a@x.com'])
