# booking-backend/scheduling/models.py
from django.conf import settings
from django.db import models
from django.db.models import F, Q


class ManualBlock(models.Model):
    """
    Administrative closure of a resource for [start_time, end_time).

    Absolute: hours it overlaps are unavailable whatever the schedule or
    reservations say. Created and deleted, never edited.
    """
    resource = models.ForeignKey("catalog.Resource", on_delete=models.CASCADE, related_name="manual_blocks")
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.SET_NULL, related_name="manual_blocks")
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    reason = models.CharField(max_length=255, blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["start_time", "id"]
        constraints = [
            models.CheckConstraint(check=Q(end_time__gt=F("start_time")), name="block_end_after_start"),
        ]
        indexes = [
            models.Index(fields=["resource", "start_time", "end_time"], name="block_window_idx"),
        ]

    def __str__(self):
        return f"Block {self.resource_id} {self.start_time:%Y-%m-%d %H:%M}-{self.end_time:%H:%M}"
