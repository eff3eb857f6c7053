# booking-backend/cart/models.py
from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from common.models import TimeStampedModel


class ItemType(models.TextChoices):
    ROOM = "room", "Room"
    EQUIPMENT = "equipment", "Equipment"
    PRODUCT = "product", "Product"


BOOKABLE_ITEM_TYPES = frozenset({ItemType.ROOM, ItemType.EQUIPMENT})


class CartHoldQuerySet(models.QuerySet):
    def active(self, now=None):
        """Holds that still claim capacity: status active and not past expires_at."""
        return self.filter(status=CartHold.STATUS_ACTIVE, expires_at__gt=now or timezone.now())

    def overlapping(self, start, end):
        return self.filter(start_time__lt=end, end_time__gt=start)


class CartHold(TimeStampedModel):
    """
    A time-limited soft claim on capacity (or stock) sitting in a user's cart.

    Leaves the active state exactly once: consumed by checkout, removed by the
    user, or expired by the sweep. An active row past expires_at is ignored
    everywhere even before the sweep flips it.
    """
    STATUS_ACTIVE = "active"
    STATUS_CONSUMED = "consumed"
    STATUS_REMOVED = "removed"
    STATUS_EXPIRED = "expired"
    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_CONSUMED, "Consumed"),
        (STATUS_REMOVED, "Removed"),
        (STATUS_EXPIRED, "Expired"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="cart_holds")
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.SET_NULL, related_name="cart_holds")
    item_type = models.CharField(max_length=16, choices=ItemType.choices)
    resource = models.ForeignKey("catalog.Resource", null=True, blank=True, on_delete=models.CASCADE, related_name="cart_holds")
    product = models.ForeignKey("catalog.Product", null=True, blank=True, on_delete=models.CASCADE, related_name="cart_holds")
    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField(null=True, blank=True)
    quantity = models.PositiveIntegerField(default=1)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    metadata = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    expires_at = models.DateTimeField(db_index=True)

    objects = CartHoldQuerySet.as_manager()

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(check=Q(quantity__gte=1), name="hold_quantity_positive"),
        ]
        indexes = [
            models.Index(fields=["resource", "status", "expires_at"], name="hold_resource_active_idx"),
            models.Index(fields=["user", "status"], name="hold_user_status_idx"),
        ]

    @property
    def is_bookable(self) -> bool:
        return self.item_type in BOOKABLE_ITEM_TYPES

    def is_active(self, now=None) -> bool:
        return self.status == self.STATUS_ACTIVE and self.expires_at > (now or timezone.now())

    def __str__(self):
        target = self.resource_id if self.is_bookable else self.product_id
        return f"Hold {self.item_type}:{target} x{self.quantity} ({self.status})"
