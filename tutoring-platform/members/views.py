"""JSON views for sessions, profiles, join requests, member rosters and lectures."""

import json
import logging

from django.contrib.auth import authenticate, login, logout, update_session_auth_hash
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .decorators import admin_required, get_user_role, login_required_json, volunteer_required
from .forms import (
    AdminMessageForm,
    JoinRequestForm,
    LectureForm,
    LoginForm,
    MeetingForm,
    MemberDetailsForm,
    PasswordChangeForm,
    StudentForm,
)
from .models import MembershipRecord, Volunteer
from . import profile_services, services
from .services import ServiceError

logger = logging.getLogger(__name__)


def _parse_json_body(request):
    """Parse JSON from request body. Return (data, error_response) tuple."""
    if not request.body:
        return None, JsonResponse({'success': False, 'message': 'Request body is required'}, status=400)
    try:
        data = json.loads(request.body.decode('utf-8'))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, JsonResponse({'success': False, 'message': 'Invalid JSON'}, status=400)
    if not isinstance(data, dict):
        return None, JsonResponse({'success': False, 'message': 'JSON object expected'}, status=400)
    return data, None


def _form_error(form):
    errors = form.errors.get_json_data()
    first = next(iter(errors.values()))[0]['message'] if errors else 'Invalid data'
    return JsonResponse({'success': False, 'message': first, 'errors': errors}, status=400)


def _service_error(exc: ServiceError):
    return JsonResponse({'success': False, 'message': exc.message}, status=exc.status)


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def join_requests(request):
    """
    GET: list all join requests.
    POST: submit a join request
       {"name", "email", "number", "academicSpecialization", "address", "subjects": [...]}
    """
    if request.method == 'GET':
        return JsonResponse({
            'success': True,
            'joinRequests': [services.serialize_member(m) for m in MembershipRecord.objects.all()],
        })

    data, err = _parse_json_body(request)
    if err:
        return err
    form = JoinRequestForm(
        {
            'name': data.get('name'),
            'email': data.get('email'),
            'number': data.get('number'),
            'academic_specialization': data.get('academicSpecialization'),
            'address': data.get('address'),
        },
        subjects=data.get('subjects'),
    )
    if not form.is_valid():
        return _form_error(form)
    membership = form.save()
    logger.info("Join request submitted: %s", membership.email)
    return JsonResponse(
        {'success': True, 'message': 'Join request submitted', 'id': membership.pk},
        status=201,
    )


@csrf_exempt
@require_http_methods(['POST'])
@admin_required
def approve_join_request(request, pk):
    try:
        volunteer = services.approve_join_request(pk)
    except ServiceError as exc:
        return _service_error(exc)
    return JsonResponse({
        'success': True,
        'message': 'Request approved, account created and password emailed',
        'email': volunteer.email,
    })


@csrf_exempt
@require_http_methods(['POST'])
@admin_required
def reject_join_request(request, pk):
    try:
        services.reject_join_request(pk)
    except ServiceError as exc:
        return _service_error(exc)
    return JsonResponse({'success': True, 'message': 'Request rejected'})


@require_http_methods(['GET'])
@admin_required
def approved_members(request):
    """All approved members with their roster and lecture history."""
    memberships = MembershipRecord.objects.filter(status=MembershipRecord.Status.APPROVED)
    volunteers = {
        v.email: v
        for v in Volunteer.objects.filter(
            email__in=[m.email for m in memberships]
        ).prefetch_related('students__subjects', 'lectures')
    }
    return JsonResponse({
        'success': True,
        'members': [services.serialize_member(m, volunteers.get(m.email)) for m in memberships],
    })


@csrf_exempt
@require_http_methods(['GET', 'DELETE'])
@admin_required
def member_detail(request, pk):
    """GET: member details. DELETE: remove an approved member and their account."""
    if request.method == 'DELETE':
        try:
            services.delete_member(pk)
        except ServiceError as exc:
            return _service_error(exc)
        return JsonResponse({'success': True, 'message': 'Member deleted'})

    membership = MembershipRecord.objects.filter(pk=pk).first()
    if membership is None:
        return JsonResponse({'success': False, 'message': 'Member not found'}, status=404)
    volunteer = (
        Volunteer.objects.filter(email=membership.email)
        .prefetch_related('students__subjects', 'lectures')
        .first()
    )
    return JsonResponse({'success': True, 'member': services.serialize_member(membership, volunteer)})


@csrf_exempt
@require_http_methods(['POST'])
@admin_required
def add_student(request, pk):
    """
    Add a student to an approved member.

    {"name", "email", "phone", "grade", "subjects": ["Math", {"name": "Physics", "minLectures": 2}]}
    """
    data, err = _parse_json_body(request)
    if err:
        return err
    form = StudentForm(
        {
            'name': data.get('name'),
            'email': data.get('email'),
            'phone': data.get('phone'),
            'grade': data.get('grade') or '',
        },
        subjects=data.get('subjects'),
    )
    if not form.is_valid():
        return _form_error(form)
    cd = form.cleaned_data
    try:
        student = services.add_student(
            pk,
            name=cd['name'],
            email=cd['email'],
            phone=cd['phone'],
            grade=cd['grade'],
            subjects=cd['subjects'],
        )
    except ServiceError as exc:
        return _service_error(exc)
    volunteer = student.volunteer
    return JsonResponse({
        'success': True,
        'message': 'Student added',
        'student': services.serialize_student(student),
        'numberOfStudents': volunteer.number_of_students,
        'subjects': volunteer.subjects,
    })


@csrf_exempt
@require_http_methods(['POST'])
@volunteer_required
def add_lecture(request):
    """Record a lecture: {"link", "name", "subject", "studentEmail"}."""
    data, err = _parse_json_body(request)
    if err:
        return err
    form = LectureForm({
        'link': data.get('link'),
        'name': data.get('name'),
        'subject': data.get('subject'),
        'student_email': data.get('studentEmail'),
    })
    if not form.is_valid():
        return _form_error(form)
    cd = form.cleaned_data
    try:
        lecture = services.record_lecture(
            request.user.volunteer_profile,
            link=cd['link'],
            name=cd['name'],
            subject=cd['subject'],
            student_email=cd['student_email'],
        )
    except ServiceError as exc:
        return _service_error(exc)

    volunteer = lecture.volunteer
    membership = volunteer.membership
    return JsonResponse({
        'success': True,
        'message': 'Lecture added',
        'lecture': services.serialize_lecture(lecture),
        'lectureCount': volunteer.lecture_count,
        'volunteerHours': membership.volunteer_hours if membership else 0,
    })


@csrf_exempt
@require_http_methods(['DELETE'])
@admin_required
def delete_lecture(request, pk):
    try:
        volunteer, membership = services.delete_lecture(pk)
    except ServiceError as exc:
        return _service_error(exc)
    return JsonResponse({
        'success': True,
        'message': 'Lecture deleted',
        'lectureCount': volunteer.lecture_count,
        'volunteerHours': membership.volunteer_hours,
    })


@csrf_exempt
@require_http_methods(['PUT'])
@admin_required
def update_member_details(request, pk):
    """
    Replace a member's roster and counters:
    {"volunteerHours", "numberOfStudents", "students": [...], "subjects": [...]}
    """
    data, err = _parse_json_body(request)
    if err:
        return err
    form = MemberDetailsForm(
        {
            'volunteer_hours': data.get('volunteerHours'),
            'number_of_students': data.get('numberOfStudents'),
        },
        students=data.get('students'),
        subjects=data.get('subjects'),
    )
    if not form.is_valid():
        return _form_error(form)
    cd = form.cleaned_data
    try:
        membership, volunteer = services.update_member_details(
            pk,
            volunteer_hours=cd['volunteer_hours'],
            number_of_students=cd['number_of_students'],
            students=cd['students'],
            subjects=cd['subjects'],
        )
    except ServiceError as exc:
        return _service_error(exc)
    return JsonResponse({
        'success': True,
        'message': 'Details updated',
        'member': services.serialize_member(membership, volunteer),
    })


# Admin messages

def _message_form(data):
    return AdminMessageForm({
        'content': data.get('content'),
        'display_days': data.get('displayDays'),
    })


@csrf_exempt
@require_http_methods(['POST'])
@admin_required
def member_messages(request, pk):
    """Send a message to a member: {"content", "displayDays": 1..30}."""
    data, err = _parse_json_body(request)
    if err:
        return err
    form = _message_form(data)
    if not form.is_valid():
        return _form_error(form)
    try:
        message = profile_services.send_admin_message(
            pk, form.cleaned_data['content'], form.cleaned_data['display_days'],
        )
    except profile_services.MessageError as exc:
        body = {'success': False, 'message': exc.message}
        if exc.active_message:
            body['activeMessage'] = exc.active_message
        return JsonResponse(body, status=exc.status)
    except ServiceError as exc:
        return _service_error(exc)
    return JsonResponse(
        {'success': True, 'message': 'Message sent', 'data': profile_services.serialize_message(message)},
        status=201,
    )


@csrf_exempt
@require_http_methods(['PUT', 'DELETE'])
@admin_required
def member_message_detail(request, pk, message_id):
    """PUT: edit content and display period. DELETE: remove the message."""
    if request.method == 'DELETE':
        try:
            profile_services.delete_admin_message(pk, message_id)
        except ServiceError as exc:
            return _service_error(exc)
        return JsonResponse({'success': True, 'message': 'Message deleted'})

    data, err = _parse_json_body(request)
    if err:
        return err
    form = _message_form(data)
    if not form.is_valid():
        return _form_error(form)
    try:
        message = profile_services.edit_admin_message(
            pk, message_id, form.cleaned_data['content'], form.cleaned_data['display_days'],
        )
    except ServiceError as exc:
        return _service_error(exc)
    return JsonResponse({
        'success': True,
        'message': 'Message updated',
        'data': profile_services.serialize_message(message),
    })


# Session and profile

@csrf_exempt
@require_http_methods(['POST'])
def login_view(request):
    """Start a session: {"email", "password"}."""
    data, err = _parse_json_body(request)
    if err:
        return err
    form = LoginForm({'email': data.get('email'), 'password': data.get('password')})
    if not form.is_valid():
        return _form_error(form)
    user = authenticate(
        request,
        username=form.cleaned_data['email'],
        password=form.cleaned_data['password'],
    )
    if user is None:
        logger.info("Failed login for %s", form.cleaned_data['email'])
        return JsonResponse({'success': False, 'message': 'Invalid email or password'}, status=400)
    login(request, user)
    logger.info("User %s logged in", user.pk)
    return JsonResponse({
        'success': True,
        'message': 'Logged in',
        'email': form.cleaned_data['email'],
        'role': get_user_role(user),
    })


@csrf_exempt
@require_http_methods(['POST'])
def logout_view(request):
    logout(request)
    return JsonResponse({'success': True, 'message': 'Logged out'})


@require_http_methods(['GET'])
@volunteer_required
def profile(request):
    return JsonResponse({
        'success': True,
        'message': 'Profile fetched',
        'data': profile_services.serialize_profile(request.user.volunteer_profile),
    })


@csrf_exempt
@require_http_methods(['PUT'])
@login_required_json
def change_password(request):
    """{"currentPassword", "newPassword"}; the new password needs at least 6 characters."""
    data, err = _parse_json_body(request)
    if err:
        return err
    form = PasswordChangeForm({
        'current_password': data.get('currentPassword'),
        'new_password': data.get('newPassword'),
    })
    if not form.is_valid():
        return _form_error(form)
    try:
        profile_services.change_password(
            request.user,
            form.cleaned_data['current_password'],
            form.cleaned_data['new_password'],
        )
    except ServiceError as exc:
        return _service_error(exc)
    update_session_auth_hash(request, request.user)
    return JsonResponse({'success': True, 'message': 'Password updated'})


# Meetings

def _meetings_response(volunteer, message, status=200):
    return JsonResponse(
        {
            'success': True,
            'message': message,
            'meetings': [profile_services.serialize_meeting(m) for m in volunteer.meetings.all()],
        },
        status=status,
    )


def _meeting_form(data):
    return MeetingForm({
        'title': data.get('title'),
        'date': data.get('date'),
        'start_time': data.get('startTime'),
        'end_time': data.get('endTime'),
    })


@csrf_exempt
@require_http_methods(['GET', 'POST'])
@volunteer_required
def meetings(request):
    """
    GET: the caller's meetings.
    POST: add one {"title", "date": "YYYY-MM-DD", "startTime": "HH:MM", "endTime": "HH:MM"}.
    """
    volunteer = request.user.volunteer_profile
    if request.method == 'GET':
        return _meetings_response(volunteer, 'Meetings fetched')

    data, err = _parse_json_body(request)
    if err:
        return err
    form = _meeting_form(data)
    if not form.is_valid():
        return _form_error(form)
    profile_services.add_meeting(volunteer, **form.cleaned_data)
    return _meetings_response(volunteer, 'Meeting added', status=201)


@csrf_exempt
@require_http_methods(['PUT', 'DELETE'])
@volunteer_required
def meeting_detail(request, pk):
    volunteer = request.user.volunteer_profile
    if request.method == 'DELETE':
        try:
            profile_services.delete_meeting(volunteer, pk)
        except ServiceError as exc:
            return _service_error(exc)
        return _meetings_response(volunteer, 'Meeting deleted')

    data, err = _parse_json_body(request)
    if err:
        return err
    form = _meeting_form(data)
    if not form.is_valid():
        return _form_error(form)
    try:
        profile_services.update_meeting(volunteer, pk, **form.cleaned_data)
    except ServiceError as exc:
        return _service_error(exc)
    return _meetings_response(volunteer, 'Meeting updated')


@csrf_exempt
@require_http_methods(['POST'])
@volunteer_required
def meeting_remind(request, pk):
    """Email a reminder for the meeting right away."""
    volunteer = request.user.volunteer_profile
    try:
        profile_services.send_meeting_reminder(volunteer, pk)
    except ServiceError as exc:
        return _service_error(exc)
    return _meetings_response(volunteer, 'Reminder sent')
