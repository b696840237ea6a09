from django.contrib import admin

from .models import ComplianceReport


@admin.register(ComplianceReport)
class ComplianceReportAdmin(admin.ModelAdmin):
    list_display = ('week_start', 'week_end', 'total_users_processed', 'members_with_low_lectures', 'created_at')
    date_hierarchy = 'week_start'
    readonly_fields = (
        'week_start',
        'week_end',
        'members',
        'total_users_processed',
        'members_with_low_lectures',
        'created_at',
    )

    def has_change_permission(self, request, obj=None):
        return False
