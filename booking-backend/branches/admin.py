from django.contrib import admin

from .models import Branch, Profile


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "city", "is_active")
    search_fields = ("name", "code", "city")
    list_filter = ("is_active",)


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "branch", "created_at")
    list_filter = ("role", "branch")
    search_fields = ("user__username", "user__email", "phone")
