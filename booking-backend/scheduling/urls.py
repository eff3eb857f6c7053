# booking-backend/scheduling/urls.py
from django.urls import path

from .api import BlockDetailView, ResourceAvailabilityView, ResourceBlocksView


app_name = "scheduling"

urlpatterns = [
    path("resources/<int:pk>/availability", ResourceAvailabilityView.as_view(), name="availability"),
    path("resources/<int:pk>/blocks", ResourceBlocksView.as_view(), name="resource-blocks"),
    path("blocks/<int:pk>", BlockDetailView.as_view(), name="block-detail"),
]
