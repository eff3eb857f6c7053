# booking-backend/cart/urls.py
from django.urls import path

from .api import CartItemView, CartView


app_name = "cart"

urlpatterns = [
    path("", CartView.as_view(), name="cart"),
    path("<int:pk>", CartItemView.as_view(), name="cart-item"),
]
