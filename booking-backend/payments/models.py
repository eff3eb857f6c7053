# payments/models.py
from django.db import models


class PaymentEvent(models.Model):
    """
    Every gateway notification or status read applied to an order.

    Webhook events carry a dedupe key (sha256 of the raw body); a repeated
    delivery finds its key taken and is dropped.
    """
    SOURCE_CHOICES = [
        ("webhook", "Webhook"),
        ("poll", "Poll"),
        ("checkout", "Checkout"),
        ("capture", "Capture"),
        ("refund", "Refund"),
        ("expiry", "Expiry"),
        ("admin", "Admin"),
    ]

    order = models.ForeignKey("orders.Order", null=True, blank=True, on_delete=models.CASCADE, related_name="payment_events")
    source = models.CharField(max_length=16, choices=SOURCE_CHOICES)
    event_type = models.CharField(max_length=64, blank=True, default="")
    gateway_status = models.CharField(max_length=32, blank=True, default="")
    previous_status = models.CharField(max_length=20, blank=True, default="")
    local_status = models.CharField(max_length=20, blank=True, default="")
    applied = models.BooleanField(default=False)
    dedupe_key = models.CharField(max_length=64, unique=True, null=True, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.source}:{self.event_type or self.gateway_status} -> {self.local_status}"
