# booking-backend/catalog/services.py
"""
Read-side helpers over the resource catalog.
"""
from datetime import datetime

from django.utils import timezone

from common.errors import NotFound
from .models import Product, Resource


def get_resource(resource_id, *, lock=False) -> Resource:
    qs = Resource.objects.filter(is_active=True)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=resource_id)
    except (Resource.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Resource {resource_id} not found", resource_id=resource_id)


def get_product(product_id, *, lock=False) -> Product:
    qs = Product.objects.filter(is_active=True)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=product_id)
    except (Product.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Product {product_id} not found", product_id=product_id)


def list_open_days(resource: Resource) -> set:
    """Weekdays (0=Mon..6=Sun) the resource is open on."""
    return resource.weekdays()


def is_operating_at(resource: Resource, timestamp: datetime) -> bool:
    if timezone.is_aware(timestamp):
        timestamp = timezone.localtime(timestamp)
    weekday = timestamp.weekday()
    if not resource.is_open_on(weekday):
        return False
    moment = timestamp.time()
    return resource.schedule_entries.filter(
        weekday=weekday,
        start_time__lte=moment,
        end_time__gt=moment,
    ).exists()
