# booking-backend/catalog/urls.py
from django.urls import path

from .api import ProductListView, ResourceDetailView, ResourceListView


app_name = "catalog"

urlpatterns = [
    path("resources", ResourceListView.as_view(), name="resource-list"),
    path("resources/<int:pk>", ResourceDetailView.as_view(), name="resource-detail"),
    path("products", ProductListView.as_view(), name="product-list"),
]
