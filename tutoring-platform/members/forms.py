from django import forms

from .models import Meeting, MembershipRecord


class JoinRequestForm(forms.ModelForm):
    """Validates a join request submitted by a prospective volunteer."""

    class Meta:
        model = MembershipRecord
        fields = [
            'name',
            'email',
            'number',
            'academic_specialization',
            'address',
        ]

    def __init__(self, *args, subjects=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._subjects = subjects

    def clean_email(self):
        email = self.cleaned_data['email'].strip().lower()
        if MembershipRecord.objects.filter(email=email).exists():
            raise forms.ValidationError('This email is already in use.')
        return email

    def clean(self):
        data = super().clean()
        subjects = self._subjects
        if subjects is None:
            subjects = []
        if not isinstance(subjects, list) or not all(isinstance(s, str) for s in subjects):
            raise forms.ValidationError('Subjects must be a list of names.')
        self.instance.subjects = [s.strip() for s in subjects if s.strip()]
        return data


def _clean_subject_entries(entries, default_min=1):
    """
    Normalize a student's subject list. Entries may be plain names or
    {"name": ..., "minLectures": ...} objects; returns [(name, min_lectures)].
    Plain names get default_min.
    """
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise forms.ValidationError('Subjects must be a list.')
    cleaned = []
    seen = set()
    for entry in entries:
        if isinstance(entry, str):
            name, min_lectures = entry, default_min
        elif isinstance(entry, dict):
            name = entry.get('name')
            min_lectures = entry.get('minLectures')
            if min_lectures is None:
                min_lectures = default_min
        else:
            raise forms.ValidationError('Each subject must be a name or an object with a name.')
        if not isinstance(name, str) or not 1 <= len(name.strip()) <= 100:
            raise forms.ValidationError('Each subject must be between 1 and 100 characters.')
        if min_lectures is not None and (
            isinstance(min_lectures, bool) or not isinstance(min_lectures, int) or min_lectures < 0
        ):
            raise forms.ValidationError('minLectures must be a non-negative integer.')
        name = name.strip()
        if name in seen:
            continue
        seen.add(name)
        cleaned.append((name, min_lectures))
    return cleaned


class StudentForm(forms.Form):
    """Student added to a volunteer's roster."""
    name = forms.CharField(max_length=200)
    email = forms.EmailField()
    phone = forms.CharField(max_length=20)
    grade = forms.CharField(max_length=50, required=False)

    def __init__(self, *args, subjects=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._subjects = subjects

    def clean_email(self):
        return self.cleaned_data['email'].strip().lower()

    def clean(self):
        data = super().clean()
        data['subjects'] = _clean_subject_entries(self._subjects)
        return data


class LectureForm(forms.Form):
    """Lecture submitted by a volunteer."""
    link = forms.URLField(max_length=500)
    name = forms.CharField(max_length=100)
    subject = forms.CharField(max_length=100)
    student_email = forms.EmailField()

    def clean_student_email(self):
        return self.cleaned_data['student_email'].strip().lower()


class MemberDetailsForm(forms.Form):
    """Admin bulk edit of a member: hours, student count, full roster and subject list."""
    volunteer_hours = forms.IntegerField(min_value=0)
    number_of_students = forms.IntegerField(min_value=0)

    def __init__(self, *args, students=None, subjects=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._students = students
        self._subjects = subjects

    def clean(self):
        data = super().clean()
        if not isinstance(self._students, list) or not isinstance(self._subjects, list):
            raise forms.ValidationError('Students and subjects lists are required.')
        if not all(isinstance(s, str) and 1 <= len(s.strip()) <= 100 for s in self._subjects):
            raise forms.ValidationError('Each subject must be between 1 and 100 characters.')

        students = []
        for entry in self._students:
            if not isinstance(entry, dict):
                raise forms.ValidationError('Each student must be an object.')
            form = StudentForm(
                {
                    'name': entry.get('name'),
                    'email': entry.get('email'),
                    'phone': entry.get('phone'),
                    'grade': entry.get('grade') or '',
                },
            )
            if not form.is_valid():
                raise forms.ValidationError('Students need a name, a valid email and a phone.')
            student = dict(form.cleaned_data)
            # Plain subject names keep the student's current minimum.
            student['subjects'] = _clean_subject_entries(entry.get('subjects'), default_min=None)
            students.append(student)

        emails = [s['email'] for s in students]
        if len(set(emails)) != len(emails):
            raise forms.ValidationError('Student emails must be unique.')
        data['students'] = students
        data['subjects'] = [s.strip() for s in self._subjects]
        return data


class LoginForm(forms.Form):
    email = forms.EmailField()
    password = forms.CharField(strip=False)

    def clean_email(self):
        return self.cleaned_data['email'].strip().lower()


class PasswordChangeForm(forms.Form):
    current_password = forms.CharField(strip=False)
    new_password = forms.CharField(strip=False, min_length=6)


class MeetingForm(forms.ModelForm):
    """Calendar meeting; date as YYYY-MM-DD, times as HH:MM."""

    class Meta:
        model = Meeting
        fields = ['title', 'date', 'start_time', 'end_time']

    def clean(self):
        data = super().clean()
        start, end = data.get('start_time'), data.get('end_time')
        if start and end and end <= start:
            raise forms.ValidationError('End time must be after start time.')
        return data


class AdminMessageForm(forms.Form):
    content = forms.CharField(max_length=1000)
    display_days = forms.IntegerField(min_value=1, max_value=30)
