# payments/urls.py
from django.urls import path

from .api import (
    CancelCashView,
    CancelExpiredView,
    CaptureView,
    OrderStatusView,
    PaymentEventListView,
    RefundView,
    WebhookView,
)


app_name = "payments"

urlpatterns = [
    path("webhook", WebhookView.as_view(), name="webhook"),
    path("orders/<uuid:pk>/status", OrderStatusView.as_view(), name="order-status"),
    path("orders/<uuid:pk>/cancel-expired", CancelExpiredView.as_view(), name="order-cancel-expired"),
    path("orders/<uuid:pk>/capture", CaptureView.as_view(), name="order-capture"),
    path("orders/<uuid:pk>/refund", RefundView.as_view(), name="order-refund"),
    path("orders/<uuid:pk>/cancel-cash", CancelCashView.as_view(), name="order-cancel-cash"),
    path("orders/<uuid:pk>/events", PaymentEventListView.as_view(), name="order-events"),
]
