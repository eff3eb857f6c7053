from django.contrib import admin

from common.admin_mixins import BranchScopedAdmin
from .models import ManualBlock


@admin.register(ManualBlock)
class ManualBlockAdmin(BranchScopedAdmin):
    list_display = ("resource", "start_time", "end_time", "reason", "created_by", "created_at")
    list_filter = ("branch", "resource")
    search_fields = ("reason", "resource__name")
    readonly_fields = ("created_by", "created_at")
    date_hierarchy = "start_time"

    def save_model(self, request, obj, form, change):
        if not change and obj.created_by_id is None:
            obj.created_by = request.user
        if obj.branch_id is None and obj.resource_id:
            obj.branch_id = obj.resource.branch_id
        super().save_model(request, obj, form, change)
