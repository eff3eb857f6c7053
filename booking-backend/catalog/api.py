# booking-backend/catalog/api.py
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.generics import ListAPIView, RetrieveAPIView
from rest_framework.permissions import IsAuthenticated

from .models import Product, Resource
from .serializers import ProductSerializer, ResourceDetailSerializer, ResourceListSerializer


class ResourceListView(ListAPIView):
    """
    GET /api/v1/catalog/resources?resource_type=room&branch=<id>&search=<q>
    Active rooms and equipment.
    """
    permission_classes = [IsAuthenticated]
    serializer_class = ResourceListSerializer
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]
    filterset_fields = ["resource_type", "branch", "capacity"]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "price_per_hour", "capacity"]

    def get_queryset(self):
        return Resource.objects.filter(is_active=True).select_related("branch")


class ResourceDetailView(RetrieveAPIView):
    """
    GET /api/v1/catalog/resources/<id>
    Includes open weekdays and the weekly schedule.
    """
    permission_classes = [IsAuthenticated]
    serializer_class = ResourceDetailSerializer

    def get_queryset(self):
        return Resource.objects.filter(is_active=True).select_related("branch").prefetch_related("schedule_entries")


class ProductListView(ListAPIView):
    """
    GET /api/v1/catalog/products?branch=<id>
    """
    permission_classes = [IsAuthenticated]
    serializer_class = ProductSerializer
    filter_backends = [DjangoFilterBackend, SearchFilter]
    filterset_fields = ["branch"]
    search_fields = ["name"]

    def get_queryset(self):
        return Product.objects.filter(is_active=True)
