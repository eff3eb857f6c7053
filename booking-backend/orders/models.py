# booking-backend/orders/models.py
import uuid
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from common.models import TimeStampedModel
from .status import OrderStatus


User = settings.AUTH_USER_MODEL


class PaymentMethod(models.TextChoices):
    PIX = "pix", "PIX"
    CARD = "card", "Credit card"
    BOLETO = "boleto", "Boleto"
    CASH = "cash", "Cash"


class RefundStatus(models.TextChoices):
    NONE = "none", "None"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


def new_external_identifier(prefix="order"):
    ts = int(timezone.now().timestamp() * 1000)
    return f"{prefix}_{ts}_{uuid.uuid4().hex[:8]}"


class Order(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name="booking_orders")
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.PROTECT, related_name="orders")
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+")

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    coupon = models.ForeignKey("coupons.Coupon", null=True, blank=True, on_delete=models.SET_NULL, related_name="orders")
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)
    payment_method = models.CharField(max_length=10, choices=PaymentMethod.choices)

    external_identifier = models.CharField(max_length=64, unique=True, default=new_external_identifier)
    click2pay_tid = models.CharField(max_length=64, blank=True, default="", db_index=True)
    payment_data = models.JSONField(default=dict, blank=True)

    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+")
    cancellation_reason = models.TextField(blank=True, default="")

    refund_status = models.CharField(max_length=12, choices=RefundStatus.choices, default=RefundStatus.NONE)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_date = models.DateTimeField(null=True, blank=True)
    refund_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "expires_at"], name="order_status_expiry_idx"),
            models.Index(fields=["user", "created_at"], name="order_user_created_idx"),
        ]

    def __str__(self):
        return f"{self.external_identifier} ({self.status})"

    def payment_window_elapsed(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or timezone.now()) >= self.expires_at

    def start_payment_window(self, now=None):
        seconds = settings.PAYMENT_WINDOW_SECONDS.get(self.payment_method)
        self.expires_at = (now or timezone.now()) + timedelta(seconds=seconds) if seconds else None


class OrderItem(models.Model):
    """Product line of an order; bookable time lives on Reservation."""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name="order_items")
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    quantity = models.PositiveIntegerField(default=1)
    price_per_unit = models.DecimalField(max_digits=10, decimal_places=2)
    stock_restored = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    @property
    def line_total(self):
        return self.price_per_unit * self.quantity

    def __str__(self):
        return f"{self.product_id} x{self.quantity}"


class Reservation(TimeStampedModel):
    """
    A committed claim on a resource's capacity for [start_time, end_time).

    Counts against availability until its status is cancelled or recused.
    """
    resource = models.ForeignKey("catalog.Resource", on_delete=models.PROTECT, related_name="reservations")
    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name="booking_reservations")
    order = models.ForeignKey(Order, null=True, blank=True, on_delete=models.CASCADE, related_name="reservations")
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.PROTECT, related_name="reservations")
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    quantity = models.PositiveIntegerField(default=1)
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        ordering = ["start_time", "id"]
        constraints = [
            models.CheckConstraint(check=Q(end_time__gt=F("start_time")), name="reservation_end_after_start"),
            models.CheckConstraint(check=Q(quantity__gte=1), name="reservation_quantity_positive"),
        ]
        indexes = [
            models.Index(fields=["resource", "start_time", "end_time"], name="reservation_window_idx"),
        ]

    def __str__(self):
        return f"{self.resource_id} {self.start_time:%Y-%m-%d %H:%M}-{self.end_time:%H:%M} ({self.status})"


class AuditLog(models.Model):
    SEVERITY_CHOICES = [
        ("info", "Info"),
        ("warning", "Warning"),
        ("critical", "Critical"),
    ]

    branch = models.ForeignKey("branches.Branch", on_delete=models.SET_NULL, null=True, blank=True, related_name="audit_logs")
    order = models.ForeignKey(Order, on_delete=models.SET_NULL, null=True, blank=True, related_name="audit_logs")
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="booking_audit_logs")
    action = models.CharField(max_length=64)
    severity = models.CharField(max_length=16, choices=SEVERITY_CHOICES, default="info")
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.action} @ {self.created_at}"

    @classmethod
    def record(cls, *, action, user=None, user_id=None, order=None, branch=None, severity="info", metadata=None):
        if order and not branch:
            branch = order.branch
        return cls.objects.create(
            action=action,
            user_id=user.pk if user is not None else user_id,
            order=order,
            branch=branch,
            severity=severity,
            metadata=metadata or {},
        )
