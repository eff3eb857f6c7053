# booking-backend/catalog/models.py
from datetime import time

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from common.models import TimeStampedModel


class ResourceType(models.TextChoices):
    ROOM = "room", "Room"
    EQUIPMENT = "equipment", "Equipment"


class Weekday(models.IntegerChoices):
    MONDAY = 0, "Monday"
    TUESDAY = 1, "Tuesday"
    WEDNESDAY = 2, "Wednesday"
    THURSDAY = 3, "Thursday"
    FRIDAY = 4, "Friday"
    SATURDAY = 5, "Saturday"
    SUNDAY = 6, "Sunday"


def days_to_mask(days) -> int:
    mask = 0
    for d in days:
        mask |= 1 << int(d)
    return mask


WEEKDAYS_MASK = days_to_mask(range(0, 5))


class Resource(TimeStampedModel):
    """
    A bookable room or piece of equipment.

    Rooms are exclusive (capacity 1); equipment has a unit count that several
    overlapping reservations may share.
    """
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.PROTECT, related_name="resources")
    name = models.CharField(max_length=160)
    resource_type = models.CharField(max_length=16, choices=ResourceType.choices, default=ResourceType.ROOM, db_index=True)
    description = models.TextField(blank=True, default="")
    capacity = models.PositiveIntegerField(default=1)
    price_per_hour = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    open_time = models.TimeField(default=time(8, 0))
    close_time = models.TimeField(default=time(22, 0))
    # bit 0 = Monday ... bit 6 = Sunday
    open_days = models.PositiveSmallIntegerField(default=WEEKDAYS_MASK)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["name", "id"]
        constraints = [
            models.CheckConstraint(check=Q(capacity__gte=1), name="resource_capacity_positive"),
            models.CheckConstraint(check=Q(close_time__gt=F("open_time")), name="resource_close_after_open"),
        ]
        indexes = [
            models.Index(fields=["branch", "resource_type", "is_active"], name="resource_branch_type_idx"),
        ]

    def clean(self):
        super().clean()
        if self.capacity is not None and self.capacity < 1:
            raise ValidationError({"capacity": "Capacity must be at least 1"})
        if self.resource_type == ResourceType.ROOM and self.capacity != 1:
            raise ValidationError({"capacity": "Rooms always have capacity 1"})
        if self.open_time and self.close_time and self.close_time <= self.open_time:
            raise ValidationError({"close_time": "Closing time must be after opening time"})

    @property
    def is_room(self) -> bool:
        return self.resource_type == ResourceType.ROOM

    def weekdays(self) -> set:
        return {d for d in range(7) if self.open_days & (1 << d)}

    def is_open_on(self, weekday: int) -> bool:
        return bool(self.open_days & (1 << int(weekday)))

    def __str__(self):
        return f"{self.name} ({self.resource_type})"


class WeeklyScheduleEntry(TimeStampedModel):
    """An operating window for a resource on one weekday; several may overlap."""
    resource = models.ForeignKey(Resource, on_delete=models.CASCADE, related_name="schedule_entries")
    weekday = models.PositiveSmallIntegerField(choices=Weekday.choices)
    start_time = models.TimeField()
    end_time = models.TimeField()

    class Meta:
        ordering = ["resource_id", "weekday", "start_time"]
        constraints = [
            models.CheckConstraint(check=Q(end_time__gt=F("start_time")), name="schedule_entry_end_after_start"),
        ]
        indexes = [
            models.Index(fields=["resource", "weekday"], name="schedule_resource_day_idx"),
        ]
        verbose_name_plural = "Weekly schedule entries"

    def clean(self):
        super().clean()
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValidationError({"end_time": "End time must be after start time"})

    def __str__(self):
        return f"{self.resource_id}:{self.get_weekday_display()} {self.start_time:%H:%M}-{self.end_time:%H:%M}"


class Product(TimeStampedModel):
    """A stock-tracked item sold through the same cart as bookable resources."""
    branch = models.ForeignKey("branches.Branch", null=True, blank=True, on_delete=models.PROTECT, related_name="products")
    name = models.CharField(max_length=160)
    description = models.TextField(blank=True, default="")
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    stock = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["name", "id"]
        constraints = [
            models.CheckConstraint(check=Q(stock__gte=0), name="product_stock_non_negative"),
        ]

    def __str__(self):
        return self.name
