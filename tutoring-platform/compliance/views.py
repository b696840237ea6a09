"""On-demand low lecture report for admins."""

import logging

from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from members.decorators import admin_required
from .services import get_low_lecture_members

logger = logging.getLogger(__name__)


@require_http_methods(['GET'])
@admin_required
def low_lecture_members(request):
    """
    Members with (student, subject) pairs below the weekly minimum for the
    last completed week. Served from the stored report when one exists.
    """
    try:
        result = get_low_lecture_members()
    except Exception as exc:
        logger.exception("low-lecture-members failed")
        return JsonResponse(
            {'success': False, 'message': 'Server error', 'error': str(exc)},
            status=500,
        )
    return JsonResponse(result)
