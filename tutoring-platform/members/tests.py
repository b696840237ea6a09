import json
import re
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core import mail
from django.db import IntegrityError, transaction
from django.test import TestCase
from django.utils import timezone

from notifications.models import Notification
from .decorators import get_user_role
from .models import (
    AdminMessage,
    Lecture,
    Meeting,
    MembershipRecord,
    Student,
    SubjectAssignment,
    Volunteer,
)
from .profile_services import send_admin_message
from .services import LectureError, record_lecture

User = get_user_model()


def post_json(client, url, data, method='post'):
    return getattr(client, method)(url, data=json.dumps(data), content_type='application/json')


class ApiTestCase(TestCase):
    """Shared fixtures: an admin and one approved volunteer with a login."""

    def setUp(self):
        self.admin_user = User.objects.create_user(username='admin@x.com', password='pw')
        Volunteer.objects.create(email='admin@x.com', user=self.admin_user, role=Volunteer.Role.ADMIN)

        self.membership = MembershipRecord.objects.create(
            name='Volunteer V',
            email='v@x.com',
            number='0500000000',
            academic_specialization='Math',
            address='Riyadh',
            status=MembershipRecord.Status.APPROVED,
        )
        self.user = User.objects.create_user(username='v@x.com', password='pw')
        self.volunteer = Volunteer.objects.create(email='v@x.com', user=self.user, name='Volunteer V')
        self.student = Student.objects.create(
            volunteer=self.volunteer, name='Student S', email='s@x.com', phone='0511111111',
        )
        SubjectAssignment.objects.create(student=self.student, name='Math', min_lectures=2)


class JoinRequestTest(ApiTestCase):
    """Join request submission and the approval workflow."""

    payload = {
        'name': 'New Member',
        'email': 'New@X.com',
        'number': '0522222222',
        'academicSpecialization': 'Physics',
        'address': 'Jeddah',
        'subjects': ['Physics', 'Math'],
    }

    def test_submit_join_request(self):
        response = post_json(self.client, '/api/join-requests/', self.payload)
        self.assertEqual(response.status_code, 201)
        record = MembershipRecord.objects.get(pk=response.json()['id'])
        self.assertEqual(record.email, 'new@x.com')
        self.assertEqual(record.status, MembershipRecord.Status.PENDING)
        self.assertEqual(record.subjects, ['Physics', 'Math'])

    def test_duplicate_email_rejected(self):
        post_json(self.client, '/api/join-requests/', self.payload)
        response = post_json(self.client, '/api/join-requests/', dict(self.payload, email='new@x.com'))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(MembershipRecord.objects.filter(email='new@x.com').count(), 1)

    def test_missing_fields_rejected(self):
        response = post_json(self.client, '/api/join-requests/', {'name': 'Only name'})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()['success'])

    def test_invalid_json_rejected(self):
        response = self.client.post('/api/join-requests/', data='{nope', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_approve_creates_account_and_emails_password(self):
        post_json(self.client, '/api/join-requests/', self.payload)
        record = MembershipRecord.objects.get(email='new@x.com')
        self.client.force_login(self.admin_user)

        response = self.client.post(f'/api/join-requests/{record.pk}/approve/')
        self.assertEqual(response.status_code, 200)
        record.refresh_from_db()
        self.assertEqual(record.status, MembershipRecord.Status.APPROVED)
        volunteer = Volunteer.objects.get(email='new@x.com')
        self.assertEqual(volunteer.role, Volunteer.Role.USER)
        self.assertEqual(volunteer.subjects, ['Physics', 'Math'])
        self.assertIsNotNone(volunteer.user)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['new@x.com'])

        again = self.client.post(f'/api/join-requests/{record.pk}/approve/')
        self.assertEqual(again.status_code, 400)

    def test_approve_requires_admin(self):
        post_json(self.client, '/api/join-requests/', self.payload)
        record = MembershipRecord.objects.get(email='new@x.com')
        self.client.force_login(self.user)
        response = self.client.post(f'/api/join-requests/{record.pk}/approve/')
        self.assertEqual(response.status_code, 403)
        record.refresh_from_db()
        self.assertEqual(record.status, MembershipRecord.Status.PENDING)

    def test_reject(self):
        post_json(self.client, '/api/join-requests/', self.payload)
        record = MembershipRecord.objects.get(email='new@x.com')
        self.client.force_login(self.admin_user)
        response = self.client.post(f'/api/join-requests/{record.pk}/reject/')
        self.assertEqual(response.status_code, 200)
        record.refresh_from_db()
        self.assertEqual(record.status, MembershipRecord.Status.REJECTED)
        self.assertEqual(self.client.post(f'/api/join-requests/{record.pk}/reject/').status_code, 400)

    def test_unknown_request_is_404(self):
        self.client.force_login(self.admin_user)
        self.assertEqual(self.client.post('/api/join-requests/9999/approve/').status_code, 404)


class RosterTest(ApiTestCase):
    """Adding students to an approved member."""

    def _add(self, data, pk=None):
        self.client.force_login(self.admin_user)
        return post_json(self.client, f'/api/members/{pk or self.membership.pk}/add-student/', data)

    def test_add_student_with_subjects(self):
        response = self._add({
            'name': 'Student T',
            'email': 'T@x.com',
            'phone': '0533333333',
            'grade': 'Grade 9',
            'subjects': ['English', {'name': 'Physics', 'minLectures': 3}],
        })
        self.assertEqual(response.status_code, 200)
        student = Student.objects.get(volunteer=self.volunteer, email='t@x.com')
        self.assertEqual(
            sorted(student.subjects.values_list('name', 'min_lectures')),
            [('English', 1), ('Physics', 3)],
        )
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.number_of_students, 1)
        self.assertEqual(self.volunteer.subjects, ['English', 'Physics'])

    def test_duplicate_student_email_is_case_insensitive(self):
        response = self._add({'name': 'Dup', 'email': 'S@X.COM', 'phone': '1'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.volunteer.students.count(), 1)

    def test_student_email_unique_per_volunteer_in_database(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            Student.objects.create(volunteer=self.volunteer, name='Dup', email='S@x.com', phone='1')

    def test_invalid_subject_rejected(self):
        response = self._add({'name': 'X', 'email': 'x@x.com', 'phone': '1', 'subjects': ['']})
        self.assertEqual(response.status_code, 400)

    def test_member_must_be_approved(self):
        pending = MembershipRecord.objects.create(
            name='P', email='p@x.com', number='1', academic_specialization='A', address='B',
        )
        response = self._add({'name': 'X', 'email': 'x@x.com', 'phone': '1'}, pk=pending.pk)
        self.assertEqual(response.status_code, 400)

    def test_member_detail_and_list(self):
        self.client.force_login(self.admin_user)
        detail = self.client.get(f'/api/members/{self.membership.pk}/').json()['member']
        self.assertEqual(detail['students'][0]['subjects'], [{'name': 'Math', 'minLectures': 2}])
        members = self.client.get('/api/approved-members/').json()['members']
        self.assertEqual([m['email'] for m in members], ['v@x.com'])

    def test_delete_member(self):
        self.client.force_login(self.admin_user)
        response = self.client.delete(f'/api/members/{self.membership.pk}/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Volunteer.objects.filter(email='v@x.com').exists())
        self.assertFalse(User.objects.filter(username='v@x.com').exists())
        self.assertFalse(MembershipRecord.objects.filter(email='v@x.com').exists())


class LectureSubmissionTest(ApiTestCase):
    """Lecture recording and its notification side effects."""

    def setUp(self):
        super().setUp()
        Student.objects.create(volunteer=self.volunteer, name='Other', email='o@x.com', phone='1')
        self.stale = Notification.objects.create(
            user=self.volunteer,
            type=Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT,
            subject='Math',
            student_email='s@x.com',
            message='below minimum',
        )
        self.unrelated = [
            Notification.objects.create(
                user=self.volunteer,
                type=Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT,
                subject='Science',
                student_email='s@x.com',
                message='below minimum',
            ),
            Notification.objects.create(
                user=self.volunteer,
                type=Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT,
                subject='Math',
                student_email='o@x.com',
                message='below minimum',
            ),
        ]

    def _submit(self, **overrides):
        data = {
            'link': 'https://meet.example.com/abc',
            'name': 'Fractions',
            'subject': 'Math',
            'studentEmail': 'S@x.com',
        }
        data.update(overrides)
        self.client.force_login(self.user)
        return post_json(self.client, '/api/lectures/', data)

    def test_submission_records_lecture_and_retracts_matching_notification(self):
        response = self._submit()
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['lectureCount'], 1)
        self.assertEqual(body['volunteerHours'], 2)
        self.assertEqual(body['lecture']['studentEmail'], 's@x.com')

        self.assertFalse(Notification.objects.filter(pk=self.stale.pk).exists())
        for notification in self.unrelated:
            self.assertTrue(Notification.objects.filter(pk=notification.pk).exists())
        self.assertTrue(
            Notification.objects.filter(user=self.volunteer, type=Notification.Type.LECTURE_ADDED).exists()
        )
        self.membership.refresh_from_db()
        self.assertEqual(self.membership.volunteer_hours, 2)

    def test_unknown_student_rejected(self):
        response = self._submit(studentEmail='nobody@x.com')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Lecture.objects.exists())
        self.assertTrue(Notification.objects.filter(pk=self.stale.pk).exists())

    def test_invalid_link_rejected(self):
        self.assertEqual(self._submit(link='not a url').status_code, 400)

    def test_long_subject_rejected(self):
        self.assertEqual(self._submit(subject='x' * 101).status_code, 400)

    def test_requires_login(self):
        response = post_json(self.client, '/api/lectures/', {'link': 'https://a.b'})
        self.assertEqual(response.status_code, 401)

    def test_missing_membership_rolls_back(self):
        self.membership.delete()
        with self.assertRaises(LectureError):
            record_lecture(self.volunteer, 'https://a.example.com', 'L', 'Math', 's@x.com')
        self.assertFalse(Lecture.objects.exists())
        self.volunteer.refresh_from_db()
        self.assertEqual(self.volunteer.lecture_count, 0)

    def test_admin_deletes_lecture(self):
        self._submit()
        lecture = Lecture.objects.get()
        self.client.force_login(self.admin_user)
        response = self.client.delete(f'/api/lectures/{lecture.pk}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['lectureCount'], 0)
        self.assertEqual(response.json()['volunteerHours'], 0)
        self.assertFalse(Lecture.objects.exists())

    def test_delete_lecture_requires_admin(self):
        self._submit()
        lecture = Lecture.objects.get()
        response = self.client.delete(f'/api/lectures/{lecture.pk}/')
        self.assertEqual(response.status_code, 403)
        self.assertTrue(Lecture.objects.exists())


class UserRoleTest(TestCase):

    def test_roles(self):
        self.assertIsNone(get_user_role(None))
        staff = User.objects.create_user(username='staff', password='pw', is_staff=True)
        self.assertEqual(get_user_role(staff), 'admin')
        plain = User.objects.create_user(username='plain', password='pw')
        self.assertIsNone(get_user_role(plain))
        Volunteer.objects.create(email='leader@x.com', user=plain, role=Volunteer.Role.LEADER)
        plain.refresh_from_db()
        self.assertEqual(get_user_role(plain), 'leader')


class SessionTest(ApiTestCase):
    """JSON login, logout and password change."""

    def _login(self, email, password):
        return post_json(self.client, '/api/auth/login/', {'email': email, 'password': password})

    def test_login_starts_session(self):
        response = self._login('V@x.com', 'pw')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['role'], 'user')
        self.assertEqual(self.client.get('/api/profile/').status_code, 200)

    def test_wrong_password(self):
        response = self._login('v@x.com', 'nope')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get('/api/profile/').status_code, 401)

    def test_login_validates_payload(self):
        self.assertEqual(self._login('not-an-email', 'pw').status_code, 400)
        self.assertEqual(post_json(self.client, '/api/auth/login/', {'email': 'v@x.com'}).status_code, 400)

    def test_logout(self):
        self._login('v@x.com', 'pw')
        self.assertEqual(self.client.post('/api/auth/logout/').status_code, 200)
        self.assertEqual(self.client.get('/api/lectures/notifications/').status_code, 401)

    def test_approved_volunteer_logs_in_with_emailed_password(self):
        post_json(self.client, '/api/join-requests/', JoinRequestTest.payload)
        record = MembershipRecord.objects.get(email='new@x.com')
        self.client.force_login(self.admin_user)
        self.client.post(f'/api/join-requests/{record.pk}/approve/')
        self.client.logout()

        password = re.search(r'Password: (\S+)', mail.outbox[0].body).group(1)
        response = self._login('new@x.com', password)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get('/api/profile/').json()['data']['user']['email'], 'new@x.com')

    def test_change_password(self):
        self._login('v@x.com', 'pw')
        response = post_json(
            self.client, '/api/profile/password/',
            {'currentPassword': 'pw', 'newPassword': 'secret123'}, method='put',
        )
        self.assertEqual(response.status_code, 200)
        # The session survives the password change.
        self.assertEqual(self.client.get('/api/profile/').status_code, 200)
        self.client.logout()
        self.assertEqual(self._login('v@x.com', 'pw').status_code, 400)
        self.assertEqual(self._login('v@x.com', 'secret123').status_code, 200)

    def test_change_password_rejections(self):
        self.client.force_login(self.user)
        wrong = post_json(
            self.client, '/api/profile/password/',
            {'currentPassword': 'bad', 'newPassword': 'secret123'}, method='put',
        )
        self.assertEqual(wrong.status_code, 400)
        short = post_json(
            self.client, '/api/profile/password/',
            {'currentPassword': 'pw', 'newPassword': '12345'}, method='put',
        )
        self.assertEqual(short.status_code, 400)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('pw'))

    def test_change_password_requires_login(self):
        response = post_json(
            self.client, '/api/profile/password/',
            {'currentPassword': 'pw', 'newPassword': 'secret123'}, method='put',
        )
        self.assertEqual(response.status_code, 401)


class ProfileTest(ApiTestCase):

    def test_profile_contents(self):
        Meeting.objects.create(
            volunteer=self.volunteer, title='Sync', date='2024-06-20', start_time='10:00', end_time='11:00',
        )
        now = timezone.now()
        AdminMessage.objects.create(volunteer=self.volunteer, content='old', display_until=now - timedelta(days=1))
        active = AdminMessage.objects.create(
            volunteer=self.volunteer, content='hello', display_until=now + timedelta(days=2),
        )
        self.client.force_login(self.user)
        data = self.client.get('/api/profile/').json()['data']

        user = data['user']
        self.assertEqual(user['students'][0]['email'], 's@x.com')
        self.assertEqual(user['meetings'][0]['startTime'], '10:00')
        self.assertEqual([m['id'] for m in user['messages']], [active.pk])
        self.assertEqual(data['joinRequest']['status'], MembershipRecord.Status.APPROVED)

    def test_profile_requires_volunteer(self):
        staff = User.objects.create_user(username='staff@x.com', password='pw', is_staff=True)
        self.client.force_login(staff)
        self.assertEqual(self.client.get('/api/profile/').status_code, 404)


class MeetingTest(ApiTestCase):
    """Calendar meetings on the volunteer's profile."""

    meeting = {'title': 'Parents call', 'date': '2024-06-20', 'startTime': '17:00', 'endTime': '18:00'}

    def setUp(self):
        super().setUp()
        self.client.force_login(self.user)

    def test_add_meeting(self):
        response = post_json(self.client, '/api/profile/meetings/', self.meeting)
        self.assertEqual(response.status_code, 201)
        meetings = response.json()['meetings']
        self.assertEqual(meetings, [{
            'id': Meeting.objects.get().pk,
            'title': 'Parents call',
            'date': '2024-06-20',
            'startTime': '17:00',
            'endTime': '18:00',
            'reminded': False,
        }])

    def test_invalid_meetings_rejected(self):
        for bad in (
            dict(self.meeting, date='20/06/2024'),
            dict(self.meeting, title=''),
            dict(self.meeting, endTime='16:00'),
        ):
            self.assertEqual(post_json(self.client, '/api/profile/meetings/', bad).status_code, 400)
        self.assertFalse(Meeting.objects.exists())

    def test_update_clears_reminder(self):
        meeting = Meeting.objects.create(
            volunteer=self.volunteer, title='Old', date='2024-06-19', start_time='09:00', end_time='10:00',
            reminded=True,
        )
        response = post_json(self.client, f'/api/profile/meetings/{meeting.pk}/', self.meeting, method='put')
        self.assertEqual(response.status_code, 200)
        meeting.refresh_from_db()
        self.assertEqual(meeting.title, 'Parents call')
        self.assertFalse(meeting.reminded)

    def test_remind_sends_email(self):
        meeting = Meeting.objects.create(
            volunteer=self.volunteer, title='Sync', date='2024-06-20', start_time='17:00', end_time='18:00',
        )
        response = self.client.post(f'/api/profile/meetings/{meeting.pk}/remind/')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['meetings'][0]['reminded'])
        self.assertEqual(mail.outbox[0].to, ['v@x.com'])
        self.assertIn('Sync', mail.outbox[0].body)

    def test_delete_and_ownership(self):
        other = Volunteer.objects.create(email='o@x.com')
        theirs = Meeting.objects.create(
            volunteer=other, title='Theirs', date='2024-06-20', start_time='17:00', end_time='18:00',
        )
        self.assertEqual(self.client.delete(f'/api/profile/meetings/{theirs.pk}/').status_code, 404)
        self.assertEqual(self.client.post(f'/api/profile/meetings/{theirs.pk}/remind/').status_code, 404)
        self.assertTrue(Meeting.objects.filter(pk=theirs.pk).exists())

        mine = Meeting.objects.create(
            volunteer=self.volunteer, title='Mine', date='2024-06-20', start_time='17:00', end_time='18:00',
        )
        response = self.client.delete(f'/api/profile/meetings/{mine.pk}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['meetings'], [])


class MemberDetailsTest(ApiTestCase):
    """Admin bulk edit of a member's roster."""

    def _update(self, data, pk=None):
        self.client.force_login(self.admin_user)
        url = f'/api/members/{pk or self.membership.pk}/update-details/'
        return post_json(self.client, url, data, method='put')

    def test_replaces_roster(self):
        Student.objects.create(volunteer=self.volunteer, name='Gone', email='gone@x.com', phone='1')
        response = self._update({
            'volunteerHours': 10,
            'numberOfStudents': 2,
            'subjects': ['Math', 'Science'],
            'students': [
                {'name': 'Student S', 'email': 'S@x.com', 'phone': '2', 'subjects': ['Math', 'Science']},
                {'name': 'New', 'email': 'n@x.com', 'phone': '3', 'grade': 'Grade 5',
                 'subjects': [{'name': 'Math', 'minLectures': 3}]},
            ],
        })
        self.assertEqual(response.status_code, 200)

        self.assertEqual(
            sorted(self.volunteer.students.values_list('email', flat=True)), ['n@x.com', 's@x.com'],
        )
        # Plain names keep the existing minimum; new subjects default to 1.
        self.assertEqual(
            sorted(self.student.subjects.values_list('name', 'min_lectures')),
            [('Math', 2), ('Science', 1)],
        )
        new = Student.objects.get(email='n@x.com')
        self.assertEqual(list(new.subjects.values_list('name', 'min_lectures')), [('Math', 3)])

        self.volunteer.refresh_from_db()
        self.membership.refresh_from_db()
        self.assertEqual(self.volunteer.number_of_students, 2)
        self.assertEqual(self.volunteer.subjects, ['Math', 'Science'])
        self.assertEqual(self.membership.volunteer_hours, 10)

    def test_validation(self):
        base = {'volunteerHours': 1, 'numberOfStudents': 0, 'subjects': [], 'students': []}
        for bad in (
            dict(base, volunteerHours=-1),
            dict(base, students=None),
            dict(base, students=[{'name': 'No email', 'phone': '1'}]),
            dict(base, students=[
                {'name': 'A', 'email': 'a@x.com', 'phone': '1'},
                {'name': 'B', 'email': 'A@x.com', 'phone': '1'},
            ]),
        ):
            self.assertEqual(self._update(bad).status_code, 400)
        self.assertTrue(self.volunteer.students.exists())

    def test_requires_admin(self):
        self.client.force_login(self.user)
        response = post_json(
            self.client, f'/api/members/{self.membership.pk}/update-details/',
            {'volunteerHours': 0, 'numberOfStudents': 0, 'subjects': [], 'students': []}, method='put',
        )
        self.assertEqual(response.status_code, 403)
        self.assertTrue(self.volunteer.students.exists())


class AdminMessageTest(ApiTestCase):
    """One active admin message per member, shown until it expires."""

    def setUp(self):
        super().setUp()
        self.client.force_login(self.admin_user)
        self.url = f'/api/members/{self.membership.pk}/messages/'

    def test_send_message(self):
        response = post_json(self.client, self.url, {'content': 'Hi', 'displayDays': 3})
        self.assertEqual(response.status_code, 201)
        message = AdminMessage.objects.get()
        self.assertEqual(message.volunteer, self.volunteer)
        self.assertAlmostEqual(
            (message.display_until - timezone.now()).total_seconds(), 3 * 86400, delta=60,
        )

    def test_only_one_active_message(self):
        first = post_json(self.client, self.url, {'content': 'Hi', 'displayDays': 3}).json()
        response = post_json(self.client, self.url, {'content': 'Again', 'displayDays': 1})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['activeMessage']['id'], first['data']['id'])
        self.assertEqual(AdminMessage.objects.count(), 1)

    def test_expired_message_allows_new_one(self):
        now = timezone.now()
        send_admin_message(self.membership.pk, 'Old', 1, now=now - timedelta(days=2))
        send_admin_message(self.membership.pk, 'New', 1, now=now)
        self.assertEqual(AdminMessage.objects.count(), 2)

    def test_display_days_bounds(self):
        for days in (0, 31, 'x'):
            response = post_json(self.client, self.url, {'content': 'Hi', 'displayDays': days})
            self.assertEqual(response.status_code, 400)

    def test_edit_and_delete(self):
        message_id = post_json(self.client, self.url, {'content': 'Hi', 'displayDays': 3}).json()['data']['id']
        edited = post_json(
            self.client, f'{self.url}{message_id}/', {'content': 'Updated', 'displayDays': 1}, method='put',
        )
        self.assertEqual(edited.status_code, 200)
        self.assertEqual(AdminMessage.objects.get().content, 'Updated')

        self.assertEqual(self.client.delete(f'{self.url}{message_id}/').status_code, 200)
        self.assertFalse(AdminMessage.objects.exists())
        self.assertEqual(self.client.delete(f'{self.url}{message_id}/').status_code, 404)

    def test_requires_admin(self):
        self.client.force_login(self.user)
        self.assertEqual(post_json(self.client, self.url, {'content': 'Hi', 'displayDays': 3}).status_code, 403)
