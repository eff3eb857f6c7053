from django.contrib import admin

from branches.models import Profile
from common.roles import BookingRole


class BranchScopedAdmin(admin.ModelAdmin):
    """
    Filter admin queryset to the staff user's branch.
    Superusers, super admins and staff without a branch see all.
    """
    branch_field = "branch"  # override for resource-linked models

    def _profile(self, request):
        return Profile.objects.filter(user=request.user).first()

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        if request.user.is_superuser:
            return qs
        profile = self._profile(request)
        if profile is None or profile.role == BookingRole.CLIENT:
            return qs.none()
        if profile.role == BookingRole.SUPER_ADMIN or profile.branch_id is None:
            return qs
        return qs.filter(**{f"{self.branch_field}_id": profile.branch_id})

    def save_model(self, request, obj, form, change):
        if not change and self.branch_field and getattr(obj, f"{self.branch_field}_id", None) is None:
            profile = self._profile(request)
            if profile and profile.branch_id:
                setattr(obj, f"{self.branch_field}_id", profile.branch_id)
        super().save_model(request, obj, form, change)
