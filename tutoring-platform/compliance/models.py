from django.db import models


class ComplianceReport(models.Model):
    """Snapshot of one scheduled low lecture check. Written once, never updated."""
    week_start = models.DateTimeField(db_index=True)
    week_end = models.DateTimeField()
    # Same shape as the members list returned by the live check.
    members = models.JSONField(default=list)
    total_users_processed = models.PositiveIntegerField(default=0)
    members_with_low_lectures = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        get_latest_by = 'created_at'

    def __str__(self):
        return f"{self.week_start:%Y-%m-%d} - {self.week_end:%Y-%m-%d} ({self.members_with_low_lectures} flagged)"
