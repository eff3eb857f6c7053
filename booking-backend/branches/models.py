# booking-backend/branches/models.py
from django.conf import settings
from django.db import models

from common.models import TimeStampedModel
from common.roles import BookingRole


class Branch(TimeStampedModel):
    """A physical location; resources, orders and blocks belong to one."""
    name = models.CharField(max_length=120)
    code = models.SlugField(unique=True)
    city = models.CharField(max_length=100, blank=True, default="", db_index=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["code", "id"]

    def __str__(self):
        return self.code


class Profile(TimeStampedModel):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="profile")
    role = models.CharField(max_length=16, choices=BookingRole.choices, default=BookingRole.CLIENT)
    branch = models.ForeignKey(Branch, null=True, blank=True, on_delete=models.SET_NULL, related_name="profiles")
    phone = models.CharField(max_length=20, blank=True, default="")

    def __str__(self):
        return f"{self.user} ({self.role})"
