# booking-backend/common/testing.py
"""Fixture builders shared by the app test suites."""
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from branches.models import Branch, Profile
from catalog.models import Product, Resource, ResourceType, WeeklyScheduleEntry, days_to_mask
from common.roles import BookingRole


User = get_user_model()


def make_branch(code="centro", name="Centro"):
    return Branch.objects.create(name=name, code=code, city="São Paulo")


def make_user(username, role=BookingRole.CLIENT, branch=None):
    user = User.objects.create_user(username=username, password="pass")
    Profile.objects.filter(user=user).update(role=role, branch=branch)
    return User.objects.get(pk=user.pk)


def make_resource(name="Sala 1", resource_type=ResourceType.ROOM, capacity=1, branch=None,
                  weekdays=range(7), start=time(8, 0), end=time(12, 0),
                  open_time=time(8, 0), close_time=time(12, 0), price=Decimal("50.00")):
    resource = Resource.objects.create(
        name=name,
        resource_type=resource_type,
        capacity=capacity,
        branch=branch,
        open_time=open_time,
        close_time=close_time,
        open_days=days_to_mask(weekdays),
        price_per_hour=price,
    )
    for day in weekdays:
        WeeklyScheduleEntry.objects.create(resource=resource, weekday=day, start_time=start, end_time=end)
    return resource


def make_product(name="Água", stock=10, price=Decimal("4.50"), branch=None):
    return Product.objects.create(name=name, stock=stock, price=price, branch=branch)


def future_weekday(weekday: int, weeks_ahead: int = 1) -> date:
    """A date on the given weekday, at least a week from today."""
    today = timezone.localdate()
    delta = (weekday - today.weekday()) % 7
    return today + timedelta(days=delta + 7 * weeks_ahead)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware local datetime for day/hour."""
    return timezone.make_aware(datetime.combine(day, time(hour, minute)))
