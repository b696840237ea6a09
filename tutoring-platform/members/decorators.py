"""Role-based auth decorators for the JSON API."""

from functools import wraps

from django.http import JsonResponse


def get_user_role(user):
    """
    Return user role: 'admin', 'leader', 'user', or None.
    The volunteer profile role takes precedence over is_staff.
    """
    if not user or not user.is_authenticated:
        return None
    profile = getattr(user, 'volunteer_profile', None)
    if profile is not None:
        return profile.role
    if user.is_staff:
        return 'admin'
    return None


def _unauthenticated():
    return JsonResponse(
        {'success': False, 'message': 'Access denied, please log in'},
        status=401,
    )


def volunteer_required(view_func):
    """Restrict view to authenticated users with a volunteer profile."""

    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return _unauthenticated()
        if getattr(request.user, 'volunteer_profile', None) is None:
            return JsonResponse(
                {'success': False, 'message': 'Volunteer account not found'},
                status=404,
            )
        return view_func(request, *args, **kwargs)

    return _wrapped


def admin_required(view_func):
    """Restrict view to admins. Runs before any work in the view."""

    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return _unauthenticated()
        if get_user_role(request.user) == 'admin':
            return view_func(request, *args, **kwargs)
        return JsonResponse(
            {'success': False, 'message': 'Admin access required'},
            status=403,
        )

    return _wrapped


def login_required_json(view_func):
    """Restrict view to any authenticated user."""

    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return _unauthenticated()
        return view_func(request, *args, **kwargs)

    return _wrapped
