from django.db import models
from django.db.models.functions import Lower
from django.conf import settings
from django.utils import timezone


class MembershipRecord(models.Model):
    """Join request submitted by a prospective volunteer. Only approved records are evaluated."""

    class Status(models.TextChoices):
        PENDING = 'Pending', 'Pending'
        APPROVED = 'Approved', 'Approved'
        REJECTED = 'Rejected', 'Rejected'

    name = models.CharField(max_length=200)
    email = models.EmailField(unique=True)
    number = models.CharField(max_length=20)
    academic_specialization = models.CharField(max_length=200)
    address = models.TextField()
    subjects = models.JSONField(default=list, blank=True)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
    )
    volunteer_hours = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.email} ({self.status})"

    def save(self, *args, **kwargs):
        self.email = (self.email or '').strip().lower()
        super().save(*args, **kwargs)


class Volunteer(models.Model):
    """Tutor account holding the roster, the lecture history and the low-lecture counters."""

    class Role(models.TextChoices):
        USER = 'user', 'User'
        ADMIN = 'admin', 'Admin'
        LEADER = 'leader', 'Leader'

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='volunteer_profile',
    )
    email = models.EmailField(unique=True)
    name = models.CharField(max_length=200, blank=True)
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.USER)
    profile_image = models.URLField(blank=True, null=True)
    number_of_students = models.PositiveIntegerField(default=0)
    # Legacy flat list of subject names taught across the roster.
    subjects = models.JSONField(default=list, blank=True)
    lecture_count = models.PositiveIntegerField(default=0)
    low_lecture_week_count = models.PositiveIntegerField(default=0)
    last_low_lecture_week = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['email']

    def __str__(self):
        return self.name or self.email

    def save(self, *args, **kwargs):
        self.email = (self.email or '').strip().lower()
        super().save(*args, **kwargs)

    @property
    def membership(self):
        return MembershipRecord.objects.filter(email=self.email).first()


class Student(models.Model):
    """Student on a volunteer's roster."""
    volunteer = models.ForeignKey(
        Volunteer,
        on_delete=models.CASCADE,
        related_name='students',
    )
    name = models.CharField(max_length=200)
    email = models.EmailField()
    phone = models.CharField(max_length=20)
    grade = models.CharField(max_length=50, blank=True)

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                Lower('email'),
                'volunteer',
                name='unique_student_email_per_volunteer',
            ),
        ]

    def __str__(self):
        return f"{self.name} <{self.email}>"

    def save(self, *args, **kwargs):
        self.email = (self.email or '').strip().lower()
        super().save(*args, **kwargs)


class SubjectAssignment(models.Model):
    """Subject a student is tutored in, with the weekly minimum of lectures."""
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='subjects',
    )
    name = models.CharField(max_length=100)
    min_lectures = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ['name']
        unique_together = ['student', 'name']

    def __str__(self):
        return f"{self.student.name}: {self.name} (min {self.min_lectures})"


class Lecture(models.Model):
    """Lecture delivered by a volunteer. created_at decides which week it counts toward."""
    volunteer = models.ForeignKey(
        Volunteer,
        on_delete=models.CASCADE,
        related_name='lectures',
    )
    link = models.URLField(max_length=500)
    name = models.CharField(max_length=100)
    subject = models.CharField(max_length=100)
    student_email = models.EmailField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['volunteer', 'created_at'], name='lecture_volunteer_created_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.subject}) - {self.created_at}"


class Meeting(models.Model):
    """Meeting on a volunteer's calendar."""
    volunteer = models.ForeignKey(
        Volunteer,
        on_delete=models.CASCADE,
        related_name='meetings',
    )
    title = models.CharField(max_length=200)
    date = models.DateField()
    start_time = models.TimeField()
    end_time = models.TimeField()
    # Cleared whenever the meeting is edited.
    reminded = models.BooleanField(default=False)

    class Meta:
        ordering = ['date', 'start_time']

    def __str__(self):
        return f"{self.title} on {self.date} at {self.start_time:%H:%M}"


class AdminMessage(models.Model):
    """Message from an admin shown on a volunteer's profile until display_until."""
    volunteer = models.ForeignKey(
        Volunteer,
        on_delete=models.CASCADE,
        related_name='messages',
    )
    content = models.TextField(max_length=1000)
    display_until = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Message to {self.volunteer.email} until {self.display_until}"
