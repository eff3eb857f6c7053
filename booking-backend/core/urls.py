# booking-backend/core/urls.py
"""
URL configuration for the booking backend.

Every API lives under /api/v1/; auth, docs and the payment webhook are the
only routes ClaimsMiddleware lets through without a bearer token.
"""

from django.contrib import admin
from django.urls import path, include
from django.views.generic import RedirectView
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework_simplejwt.views import TokenRefreshView, TokenVerifyView

from common.auth_views import BranchAwareTokenObtainPairView


urlpatterns = [
    path("", RedirectView.as_view(url="/admin/", permanent=False)),
    path("admin/", admin.site.urls),

    # Auth
    path("api/v1/auth/token/", BranchAwareTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/v1/auth/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/v1/auth/verify/", TokenVerifyView.as_view(), name="token_verify"),

    # API & docs
    path("api/v1/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/v1/docs/", SpectacularSwaggerView.as_view(url_name="schema")),

    path("api/v1/catalog/", include("catalog.urls", namespace="catalog")),
    path("api/v1/scheduling/", include("scheduling.urls", namespace="scheduling")),
    path("api/v1/cart/", include("cart.urls", namespace="cart")),
    path("api/v1/coupons/", include("coupons.urls", namespace="coupons")),
    path("api/v1/orders/", include("orders.urls", namespace="orders")),
    path("api/v1/payments/", include("payments.urls", namespace="payments")),
]
