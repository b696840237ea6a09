"""Services for a volunteer's own profile: password, calendar meetings and admin messages."""

import logging
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from notifications.services import send_email
from .models import AdminMessage, Meeting, MembershipRecord
from .services import (
    ServiceError,
    get_approved_volunteer,
    serialize_lecture,
    serialize_student,
)

logger = logging.getLogger(__name__)


class AccountError(ServiceError):
    pass


class MeetingError(ServiceError):
    pass


class MessageError(ServiceError):
    def __init__(self, message, status=None, active_message=None):
        super().__init__(message, status=status)
        self.active_message = active_message


def change_password(user, current_password: str, new_password: str):
    if not user.check_password(current_password):
        raise AccountError('Current password is incorrect')
    user.set_password(new_password)
    user.save(update_fields=['password'])
    logger.info("Password changed for user %s", user.pk)


# Meetings

def _get_meeting(volunteer, meeting_id) -> Meeting:
    try:
        return volunteer.meetings.get(pk=meeting_id)
    except (Meeting.DoesNotExist, ValueError):
        raise MeetingError('Meeting not found', status=404)


def add_meeting(volunteer, title, date, start_time, end_time) -> Meeting:
    meeting = Meeting.objects.create(
        volunteer=volunteer,
        title=title,
        date=date,
        start_time=start_time,
        end_time=end_time,
    )
    logger.info("Meeting %s added for volunteer %s", meeting.pk, volunteer.pk)
    return meeting


def update_meeting(volunteer, meeting_id, title, date, start_time, end_time) -> Meeting:
    """Edit a meeting. The reminder flag is cleared so the new time gets its own reminder."""
    meeting = _get_meeting(volunteer, meeting_id)
    meeting.title = title
    meeting.date = date
    meeting.start_time = start_time
    meeting.end_time = end_time
    meeting.reminded = False
    meeting.save()
    logger.info("Meeting %s updated for volunteer %s", meeting.pk, volunteer.pk)
    return meeting


def delete_meeting(volunteer, meeting_id):
    meeting = _get_meeting(volunteer, meeting_id)
    meeting.delete()
    logger.info("Meeting %s deleted for volunteer %s", meeting_id, volunteer.pk)


def send_meeting_reminder(volunteer, meeting_id) -> Meeting:
    """Email the volunteer a reminder now and mark the meeting reminded."""
    meeting = _get_meeting(volunteer, meeting_id)
    send_email(
        to=volunteer.email,
        subject='Meeting reminder',
        text=(
            "Hello,\n\n"
            f'This is a reminder of your meeting "{meeting.title}" on '
            f"{meeting.date:%Y-%m-%d} at {meeting.start_time:%H:%M}.\n"
        ),
    )
    meeting.reminded = True
    meeting.save(update_fields=['reminded'])
    return meeting


def serialize_meeting(meeting: Meeting) -> dict:
    return {
        'id': meeting.pk,
        'title': meeting.title,
        'date': meeting.date.isoformat(),
        'startTime': meeting.start_time.strftime('%H:%M'),
        'endTime': meeting.end_time.strftime('%H:%M'),
        'reminded': meeting.reminded,
    }


# Admin messages

def active_messages(volunteer, now=None):
    return volunteer.messages.filter(display_until__gt=now or timezone.now())


def _get_message(volunteer, message_id) -> AdminMessage:
    try:
        return volunteer.messages.get(pk=message_id)
    except (AdminMessage.DoesNotExist, ValueError):
        raise MessageError('Message not found', status=404)


def send_admin_message(membership_id, content, display_days, now=None) -> AdminMessage:
    """
    Post a message to an approved member's profile for display_days days.

    Only one active message per member; an active one must be edited or
    deleted first.
    """
    now = now or timezone.now()
    with transaction.atomic():
        _, volunteer = get_approved_volunteer(membership_id)
        current = active_messages(volunteer, now).first()
        if current is not None:
            raise MessageError(
                'An active message already exists, edit or delete it first',
                active_message=serialize_message(current),
            )
        message = AdminMessage.objects.create(
            volunteer=volunteer,
            content=content,
            display_until=now + timedelta(days=display_days),
        )
    logger.info("Message %s sent to %s until %s", message.pk, volunteer.email, message.display_until)
    return message


def edit_admin_message(membership_id, message_id, content, display_days, now=None) -> AdminMessage:
    now = now or timezone.now()
    _, volunteer = get_approved_volunteer(membership_id)
    message = _get_message(volunteer, message_id)
    message.content = content
    message.display_until = now + timedelta(days=display_days)
    message.save(update_fields=['content', 'display_until'])
    logger.info("Message %s edited for %s", message.pk, volunteer.email)
    return message


def delete_admin_message(membership_id, message_id):
    _, volunteer = get_approved_volunteer(membership_id)
    _get_message(volunteer, message_id).delete()
    logger.info("Message %s deleted for %s", message_id, volunteer.email)


def serialize_message(message: AdminMessage) -> dict:
    return {
        'id': message.pk,
        'content': message.content,
        'displayUntil': message.display_until.isoformat(),
        'createdAt': message.created_at.isoformat(),
    }


def serialize_profile(volunteer, now=None) -> dict:
    """The volunteer's own view: roster, calendar, lectures and active messages."""
    membership = MembershipRecord.objects.filter(email=volunteer.email).first()
    lectures = [serialize_lecture(lec) for lec in volunteer.lectures.all()]
    students = [serialize_student(s) for s in volunteer.students.prefetch_related('subjects')]
    return {
        'user': {
            'id': volunteer.pk,
            'email': volunteer.email,
            'name': volunteer.name,
            'role': volunteer.role,
            'profileImage': volunteer.profile_image,
            'numberOfStudents': volunteer.number_of_students,
            'subjects': list(volunteer.subjects or []),
            'students': students,
            'meetings': [serialize_meeting(m) for m in volunteer.meetings.all()],
            'lectures': lectures,
            'lectureCount': volunteer.lecture_count,
            'lowLectureWeekCount': volunteer.low_lecture_week_count,
            'messages': [serialize_message(m) for m in active_messages(volunteer, now)],
        },
        'joinRequest': None if membership is None else {
            'name': membership.name,
            'phone': membership.number,
            'academicSpecialization': membership.academic_specialization,
            'address': membership.address,
            'volunteerHours': membership.volunteer_hours,
            'status': membership.status,
        },
    }
