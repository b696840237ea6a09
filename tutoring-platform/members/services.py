"""
Membership workflow, roster management and lecture submission.

Every multi-row change runs inside transaction.atomic() so a failure leaves
nothing half-written.
"""

import logging
import secrets

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from notifications.services import (
    notify_lecture_added,
    retract_low_lecture_notifications,
    send_email,
)
from .models import Lecture, MembershipRecord, Student, SubjectAssignment, Volunteer

logger = logging.getLogger(__name__)

User = get_user_model()

HOURS_PER_LECTURE = 2
_PASSWORD_LENGTH = 12


class ServiceError(Exception):
    """Domain error with the HTTP status the API should answer with."""
    status = 400

    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class MembershipError(ServiceError):
    pass


class LectureError(ServiceError):
    pass


def _get_membership(membership_id) -> MembershipRecord:
    try:
        return MembershipRecord.objects.get(pk=membership_id)
    except (MembershipRecord.DoesNotExist, ValueError):
        raise MembershipError('Member not found', status=404)


def approve_join_request(membership_id) -> Volunteer:
    """
    Approve a pending join request: create the login account and Volunteer,
    then email the generated password. Email failure rolls everything back.
    """
    with transaction.atomic():
        membership = _get_membership(membership_id)
        if membership.status != MembershipRecord.Status.PENDING:
            raise MembershipError('Request has already been processed')

        password = secrets.token_urlsafe(_PASSWORD_LENGTH)[:_PASSWORD_LENGTH]
        user = User.objects.filter(username=membership.email).first()
        if user is None:
            user = User.objects.create_user(
                username=membership.email,
                email=membership.email,
                password=password,
            )
        else:
            user.set_password(password)
            user.save()

        volunteer, created = Volunteer.objects.get_or_create(
            email=membership.email,
            defaults={
                'user': user,
                'name': membership.name,
                'subjects': list(membership.subjects or []),
            },
        )
        if not created and volunteer.user_id is None:
            volunteer.user = user
            volunteer.save(update_fields=['user'])

        membership.status = MembershipRecord.Status.APPROVED
        membership.save(update_fields=['status'])

        send_email(
            to=membership.email,
            subject='Your volunteer account has been approved',
            text=(
                f"Hello {membership.name},\n\n"
                "Your join request has been approved.\n"
                f"Email: {membership.email}\n"
                f"Password: {password}\n\n"
                "Please change your password after logging in."
            ),
        )

    logger.info("Approved join request %s (%s)", membership.pk, membership.email)
    return volunteer


def reject_join_request(membership_id) -> MembershipRecord:
    membership = _get_membership(membership_id)
    if membership.status != MembershipRecord.Status.PENDING:
        raise MembershipError('Request has already been processed')
    membership.status = MembershipRecord.Status.REJECTED
    membership.save(update_fields=['status'])
    logger.info("Rejected join request %s (%s)", membership.pk, membership.email)
    return membership


def get_approved_volunteer(membership_id):
    membership = _get_membership(membership_id)
    if membership.status != MembershipRecord.Status.APPROVED:
        raise MembershipError('Member must be approved first')
    volunteer = Volunteer.objects.filter(email=membership.email).first()
    if volunteer is None:
        raise MembershipError('User account not found', status=404)
    return membership, volunteer


def delete_member(membership_id):
    """Delete an approved member together with the volunteer and login account."""
    with transaction.atomic():
        membership, volunteer = get_approved_volunteer(membership_id)
        user = volunteer.user
        membership.delete()
        volunteer.delete()
        if user is not None:
            user.delete()
    logger.info("Deleted member %s (%s)", membership_id, membership.email)


def add_student(membership_id, name, email, phone, grade='', subjects=()):
    """
    Add a student to an approved member's roster.

    subjects is a list of (name, min_lectures) pairs. Subject names are also
    merged into the volunteer's flat subject list.
    """
    email = email.strip().lower()
    with transaction.atomic():
        membership, volunteer = get_approved_volunteer(membership_id)
        if volunteer.students.filter(email__iexact=email).exists():
            raise MembershipError('Student email is already in use')

        student = Student.objects.create(
            volunteer=volunteer,
            name=name,
            email=email,
            phone=phone,
            grade=grade or '',
        )
        SubjectAssignment.objects.bulk_create([
            SubjectAssignment(student=student, name=subject, min_lectures=min_lectures)
            for subject, min_lectures in subjects
        ])

        names = [subject for subject, _ in subjects]
        volunteer.subjects = _merge_names(volunteer.subjects, names)
        volunteer.number_of_students += 1
        volunteer.save(update_fields=['subjects', 'number_of_students'])

        membership.subjects = _merge_names(membership.subjects, names)
        membership.save(update_fields=['subjects'])

    logger.info("Added student %s to volunteer %s", email, volunteer.pk)
    return student


def update_member_details(membership_id, volunteer_hours, number_of_students, students, subjects):
    """
    Replace an approved member's roster and counters in one go.

    students is a list of dicts with name, email, phone, grade and
    subjects [(name, min_lectures or None)]. Students missing from the list are
    removed. A None minimum keeps the existing one, or 1 for a new subject.
    """
    with transaction.atomic():
        membership, volunteer = get_approved_volunteer(membership_id)
        emails = [entry['email'] for entry in students]
        stale = volunteer.students.exclude(email__in=emails)
        removed = stale.count()
        stale.delete()

        for entry in students:
            student, _ = Student.objects.update_or_create(
                volunteer=volunteer,
                email=entry['email'],
                defaults={
                    'name': entry['name'],
                    'phone': entry['phone'],
                    'grade': entry.get('grade') or '',
                },
            )
            current = dict(student.subjects.values_list('name', 'min_lectures'))
            student.subjects.all().delete()
            SubjectAssignment.objects.bulk_create([
                SubjectAssignment(
                    student=student,
                    name=name,
                    min_lectures=current.get(name, 1) if min_lectures is None else min_lectures,
                )
                for name, min_lectures in entry.get('subjects', [])
            ])

        volunteer.number_of_students = number_of_students
        volunteer.subjects = list(subjects)
        volunteer.save(update_fields=['number_of_students', 'subjects'])
        membership.volunteer_hours = volunteer_hours
        membership.subjects = list(subjects)
        membership.save(update_fields=['volunteer_hours', 'subjects'])

    logger.info(
        "Updated details of member %s: %s students (%s removed), hours=%s",
        membership.pk, len(students), removed, volunteer_hours,
    )
    return membership, volunteer


def _merge_names(existing, new):
    merged = list(existing or [])
    for name in new:
        if name not in merged:
            merged.append(name)
    return merged


def record_lecture(volunteer, link, name, subject, student_email) -> Lecture:
    """
    Record a lecture delivered by volunteer.

    Any low lecture notification for the same (subject, student) is deleted
    straight away; the weekly check recomputes the real state.
    """
    student_email = student_email.strip().lower()
    with transaction.atomic():
        volunteer = Volunteer.objects.select_for_update().get(pk=volunteer.pk)
        if not volunteer.students.filter(email__iexact=student_email).exists():
            raise LectureError('Student not found')

        membership = MembershipRecord.objects.select_for_update().filter(email=volunteer.email).first()
        if membership is None:
            raise LectureError('Join request not found', status=404)

        lecture = Lecture.objects.create(
            volunteer=volunteer,
            link=link,
            name=name,
            subject=subject,
            student_email=student_email,
            created_at=timezone.now(),
        )
        volunteer.lecture_count += 1
        volunteer.save(update_fields=['lecture_count'])
        membership.volunteer_hours += HOURS_PER_LECTURE
        membership.save(update_fields=['volunteer_hours'])

        retract_low_lecture_notifications(volunteer, subject, student_email)
        notify_lecture_added(volunteer, lecture)

    logger.info(
        "Lecture recorded: volunteer=%s subject=%s student=%s lecture_count=%s",
        volunteer.pk, subject, student_email, volunteer.lecture_count,
    )
    return lecture


def delete_lecture(lecture_id):
    """Remove a lecture and roll back the counters it contributed. Returns (volunteer, membership)."""
    with transaction.atomic():
        try:
            lecture = Lecture.objects.select_related('volunteer').get(pk=lecture_id)
        except (Lecture.DoesNotExist, ValueError):
            raise LectureError('Lecture not found', status=404)

        volunteer = Volunteer.objects.select_for_update().get(pk=lecture.volunteer_id)
        membership = MembershipRecord.objects.select_for_update().filter(email=volunteer.email).first()
        if membership is None:
            raise LectureError('Join request not found', status=404)

        lecture.delete()
        volunteer.lecture_count = max(0, volunteer.lecture_count - 1)
        volunteer.save(update_fields=['lecture_count'])
        membership.volunteer_hours = max(0, membership.volunteer_hours - HOURS_PER_LECTURE)
        membership.save(update_fields=['volunteer_hours'])

    logger.info("Lecture %s deleted for volunteer %s", lecture_id, volunteer.pk)
    return volunteer, membership


def serialize_lecture(lecture: Lecture) -> dict:
    return {
        'id': lecture.pk,
        'name': lecture.name,
        'subject': lecture.subject,
        'studentEmail': lecture.student_email,
        'link': lecture.link,
        'createdAt': lecture.created_at.isoformat(),
    }


def serialize_student(student: Student) -> dict:
    return {
        'name': student.name,
        'email': student.email,
        'phone': student.phone,
        'grade': student.grade,
        'subjects': [
            {'name': s.name, 'minLectures': s.min_lectures}
            for s in student.subjects.all()
        ],
    }


def serialize_member(membership: MembershipRecord, volunteer=None) -> dict:
    """Join request merged with its volunteer details, as listed to admins."""
    data = {
        'id': membership.pk,
        'name': membership.name,
        'email': membership.email,
        'phone': membership.number,
        'address': membership.address,
        'academicSpecialization': membership.academic_specialization,
        'volunteerHours': membership.volunteer_hours,
        'status': membership.status,
        'createdAt': membership.created_at.isoformat(),
        'numberOfStudents': 0,
        'subjects': [],
        'students': [],
        'lectures': [],
        'lectureCount': 0,
        'profileImage': None,
    }
    if volunteer is not None:
        data.update({
            'numberOfStudents': volunteer.number_of_students,
            'subjects': list(volunteer.subjects or []),
            'students': [serialize_student(s) for s in volunteer.students.all()],
            'lectures': [serialize_lecture(lec) for lec in volunteer.lectures.all()],
            'lectureCount': volunteer.lecture_count,
            'profileImage': volunteer.profile_image,
        })
    return data
