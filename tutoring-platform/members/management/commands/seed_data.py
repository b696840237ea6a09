"""
Management command to seed the database with sample data for testing.

Creates an admin, approved volunteers with login accounts, their students and
subject assignments, and a few lectures inside last week's window so the low
lecture check has something to flag.
"""

from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from compliance.week import previous_week_window
from members.models import (
    Lecture,
    Meeting,
    MembershipRecord,
    Student,
    SubjectAssignment,
    Volunteer,
)

User = get_user_model()

SEED_PASSWORD = "testpass123"
SEED_ADMIN_EMAIL = "admin@example.com"

# (name, email, phone, specialization)
SEED_VOLUNTEERS = [
    ("Sara Ahmed", "sara.ahmed@example.com", "+966-555-0101", "Mathematics"),
    ("Omar Khalid", "omar.khalid@example.com", "+966-555-0202", "Physics"),
]

# volunteer email -> [(student name, student email, phone, grade, [(subject, min_lectures)])]
SEED_STUDENTS = {
    "sara.ahmed@example.com": [
        ("Lina Saad", "lina.saad@example.com", "+966-555-1001", "Grade 8", [("Math", 2), ("English", 1)]),
        ("Yousef Ali", "yousef.ali@example.com", "+966-555-1002", "Grade 9", [("Math", 1)]),
    ],
    "omar.khalid@example.com": [
        ("Huda Nasser", "huda.nasser@example.com", "+966-555-2001", "", [("Physics", 2)]),
    ],
}

# (volunteer email, student email, subject, days after week start)
SEED_LECTURES = [
    ("sara.ahmed@example.com", "lina.saad@example.com", "Math", 1),
    ("sara.ahmed@example.com", "lina.saad@example.com", "English", 2),
    ("sara.ahmed@example.com", "yousef.ali@example.com", "Math", 3),
    ("omar.khalid@example.com", "huda.nasser@example.com", "Physics", 4),
]


class Command(BaseCommand):
    help = "Seed the database with sample volunteers, students and lectures for testing."

    def add_arguments(self, parser):
        parser.add_argument(
            "--clear",
            action="store_true",
            help="Remove seed data before seeding (resets to empty state for seed objects).",
        )

    def handle(self, *args, **options):
        if options["clear"]:
            self._clear_seed_data()
        self._seed_data()
        self.stdout.write(self.style.SUCCESS("Seed data created successfully."))

    def _clear_seed_data(self):
        emails = [email for _, email, _, _ in SEED_VOLUNTEERS] + [SEED_ADMIN_EMAIL]
        deleted, _ = Volunteer.objects.filter(email__in=emails).delete()
        self.stdout.write(f"Deleted {deleted} volunteer rows (students, lectures, notifications included).")
        MembershipRecord.objects.filter(email__in=emails).delete()
        User.objects.filter(username__in=emails).delete()
        self.stdout.write("Deleted seed join requests and users.")

    def _user(self, email, **extra):
        user, created = User.objects.get_or_create(
            username=email,
            defaults={"email": email, "is_active": True, **extra},
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
            self.stdout.write(f"Created user: {email} (password: {SEED_PASSWORD})")
        return user

    def _seed_data(self):
        admin_user = self._user(SEED_ADMIN_EMAIL, is_staff=True)
        Volunteer.objects.get_or_create(
            email=SEED_ADMIN_EMAIL,
            defaults={"user": admin_user, "name": "Admin", "role": Volunteer.Role.ADMIN},
        )

        window = previous_week_window()
        num_students = 0
        for name, email, phone, specialization in SEED_VOLUNTEERS:
            MembershipRecord.objects.get_or_create(
                email=email,
                defaults={
                    "name": name,
                    "number": phone,
                    "academic_specialization": specialization,
                    "address": "Riyadh",
                    "status": MembershipRecord.Status.APPROVED,
                },
            )
            volunteer, _ = Volunteer.objects.get_or_create(
                email=email,
                defaults={"user": self._user(email), "name": name},
            )
            subject_names = []
            for s_name, s_email, s_phone, grade, subjects in SEED_STUDENTS[email]:
                student, created = Student.objects.get_or_create(
                    volunteer=volunteer,
                    email=s_email,
                    defaults={"name": s_name, "phone": s_phone, "grade": grade},
                )
                num_students += int(created)
                for subject, min_lectures in subjects:
                    SubjectAssignment.objects.get_or_create(
                        student=student,
                        name=subject,
                        defaults={"min_lectures": min_lectures},
                    )
                    if subject not in subject_names:
                        subject_names.append(subject)
            volunteer.subjects = subject_names
            volunteer.number_of_students = volunteer.students.count()
            volunteer.save(update_fields=["subjects", "number_of_students"])

        for v_email, s_email, subject, offset in SEED_LECTURES:
            volunteer = Volunteer.objects.get(email=v_email)
            _, created = Lecture.objects.get_or_create(
                volunteer=volunteer,
                student_email=s_email,
                subject=subject,
                created_at=window.start + timedelta(days=offset, hours=17),
                defaults={
                    "name": f"{subject} session",
                    "link": "https://meet.example.com/session",
                },
            )
            if created:
                volunteer.lecture_count += 1
                volunteer.save(update_fields=["lecture_count"])

        sara = Volunteer.objects.get(email=SEED_VOLUNTEERS[0][1])
        Meeting.objects.get_or_create(
            volunteer=sara,
            title="Monthly volunteer meeting",
            defaults={
                "date": (window.end + timedelta(days=14)).date(),
                "start_time": "18:00",
                "end_time": "19:00",
            },
        )

        self.stdout.write(
            f"Seeded: 1 admin, {len(SEED_VOLUNTEERS)} volunteers, {num_students} new students, "
            f"{len(SEED_LECTURES)} lectures in the week starting {window.start:%Y-%m-%d}."
        )
