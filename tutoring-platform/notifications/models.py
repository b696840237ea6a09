from django.db import models

from members.models import Volunteer


class Notification(models.Model):
    """Alert shown in a volunteer's inbox."""

    class Type(models.TextChoices):
        LOW_LECTURE_COUNT_PER_SUBJECT = "low_lecture_count_per_subject", "Low lecture count per subject"
        LECTURE_ADDED = "lecture_added", "Lecture added"

    user = models.ForeignKey(
        Volunteer,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    message = models.TextField()
    type = models.CharField(max_length=50, choices=Type.choices, db_index=True)
    # Denormalised from details so the (user, type, subject, student) lookup stays indexed.
    subject = models.CharField(max_length=100, blank=True)
    student_email = models.EmailField(blank=True)
    details = models.JSONField(default=dict, blank=True)
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "subject", "student_email"],
                condition=models.Q(type="low_lecture_count_per_subject"),
                name="unique_low_lecture_notification",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "type", "subject", "student_email"], name="notif_user_type_subject_idx"),
            models.Index(fields=["user", "read"], name="notif_user_read_idx"),
        ]

    def __str__(self):
        return f"{self.type}: {self.user.email} @ {self.created_at}"
