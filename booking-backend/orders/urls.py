# booking-backend/orders/urls.py
from django.urls import path

from .views import AuditLogListView, CashOrderView, CheckoutView, OrderDetailView, OrderListView


app_name = "orders"

urlpatterns = [
    path("", OrderListView.as_view(), name="order-list"),
    path("checkout", CheckoutView.as_view(), name="checkout"),
    path("cash", CashOrderView.as_view(), name="cash-order"),
    path("audit/logs", AuditLogListView.as_view(), name="audit-logs"),
    path("<uuid:pk>", OrderDetailView.as_view(), name="order-detail"),
]
