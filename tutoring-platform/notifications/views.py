"""Views for the notification inbox."""

import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from members.decorators import volunteer_required
from .models import Notification
from .services import serialize_notification

logger = logging.getLogger(__name__)


def _inbox(volunteer):
    return [
        serialize_notification(n)
        for n in Notification.objects.filter(user=volunteer).select_related('user')
    ]


@require_http_methods(['GET'])
@volunteer_required
def notification_list(request):
    """The caller's notifications, newest first."""
    volunteer = request.user.volunteer_profile
    notifications = _inbox(volunteer)
    logger.debug("Fetched %s notifications for volunteer %s", len(notifications), volunteer.pk)
    return JsonResponse({
        'success': True,
        'message': 'Notifications fetched',
        'notifications': notifications,
    })


@require_http_methods(['POST'])
@csrf_exempt
@volunteer_required
def mark_read(request):
    """Mark all of the caller's unread notifications as read and return the inbox."""
    volunteer = request.user.volunteer_profile
    updated = Notification.objects.filter(user=volunteer, read=False).update(read=True)
    logger.info("Marked %s notifications read for volunteer %s", updated, volunteer.pk)
    return JsonResponse({
        'success': True,
        'message': 'Notifications marked as read',
        'notifications': _inbox(volunteer),
    })


@require_http_methods(['DELETE'])
@csrf_exempt
@volunteer_required
def delete_notification(request, pk):
    """Delete one of the caller's notifications."""
    volunteer = request.user.volunteer_profile
    deleted, _ = Notification.objects.filter(pk=pk, user=volunteer).delete()
    if not deleted:
        return JsonResponse(
            {'success': False, 'message': 'Notification not found or does not belong to the user'},
            status=404,
        )
    return JsonResponse({'success': True, 'message': 'Notification deleted'})
