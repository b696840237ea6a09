"""Notification emission and retraction, plus the outbound email wrapper."""

import logging

from django.conf import settings
from django.core.mail import send_mail

from .models import Notification

logger = logging.getLogger(__name__)

LOW_LECTURE = Notification.Type.LOW_LECTURE_COUNT_PER_SUBJECT


def _normalize_email(email) -> str:
    return (email or "").strip().lower()


def low_lecture_notification_exists(volunteer, subject: str, student_email: str) -> bool:
    return Notification.objects.filter(
        user=volunteer,
        type=LOW_LECTURE,
        subject=subject,
        student_email=_normalize_email(student_email),
    ).exists()


def notify_low_lecture_count(volunteer, student, subject: str, min_lectures: int, delivered: int):
    """
    Create a low_lecture_count_per_subject notification for (volunteer, subject, student)
    unless one is already present. Returns the new Notification, or None if skipped.
    """
    student_email = _normalize_email(student.email)
    if low_lecture_notification_exists(volunteer, subject, student_email):
        logger.debug(
            "Low lecture notification already present: volunteer=%s subject=%s student=%s",
            volunteer.pk, subject, student_email,
        )
        return None

    message = (
        f"Weekly lectures for student {student.name} in {subject} are below the minimum "
        f"({delivered}/{min_lectures})"
    )
    notification = Notification.objects.create(
        user=volunteer,
        type=LOW_LECTURE,
        subject=subject,
        student_email=student_email,
        message=message,
        details={
            "studentEmail": student_email,
            "subject": subject,
            "minLectures": min_lectures,
            "currentLectures": delivered,
        },
    )
    logger.info(
        "Created low lecture notification: volunteer=%s subject=%s student=%s (%s/%s)",
        volunteer.pk, subject, student_email, delivered, min_lectures,
    )
    return notification


def retract_low_lecture_notifications(volunteer, subject: str, student_email: str) -> int:
    """Delete every low lecture notification for (volunteer, subject, student). Returns the count."""
    deleted, _ = Notification.objects.filter(
        user=volunteer,
        type=LOW_LECTURE,
        subject=subject,
        student_email=_normalize_email(student_email),
    ).delete()
    if deleted:
        logger.info(
            "Retracted %s low lecture notification(s): volunteer=%s subject=%s student=%s",
            deleted, volunteer.pk, subject, student_email,
        )
    return deleted


def notify_lecture_added(volunteer, lecture) -> Notification:
    message = (
        f"New lecture added by {volunteer.email}: {lecture.name} "
        f"({lecture.subject}) - {lecture.link}"
    )
    return Notification.objects.create(
        user=volunteer,
        type=Notification.Type.LECTURE_ADDED,
        subject=lecture.subject,
        student_email=lecture.student_email,
        message=message,
        details={
            "link": lecture.link,
            "name": lecture.name,
            "subject": lecture.subject,
            "studentEmail": lecture.student_email,
        },
    )


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.pk,
        "user": {
            "id": notification.user_id,
            "email": notification.user.email,
        },
        "message": notification.message,
        "type": notification.type,
        "createdAt": notification.created_at.isoformat(),
        "read": notification.read,
        "lectureDetails": notification.details,
    }


def send_email(to: str, subject: str, text: str) -> int:
    """Send a plain-text email. Failures propagate to the caller."""
    try:
        sent = send_mail(
            subject,
            text,
            settings.DEFAULT_FROM_EMAIL,
            [to],
            fail_silently=False,
        )
    except Exception:
        logger.exception("Failed to send email to %s", to)
        raise
    logger.info("Email sent to %s: %s", to, subject)
    return sent
