# booking-backend/coupons/urls.py
from django.urls import path

from .api import CouponLookupView, CouponUsageListView


app_name = "coupons"

urlpatterns = [
    path("validate", CouponLookupView.as_view(), name="validate"),
    path("usage", CouponUsageListView.as_view(), name="usage"),
]
