# booking-backend/scheduling/availability.py
"""
Availability calculator.

``compute_availability`` decides, from plain inputs, whether each hour of a
day can be booked. ``get_availability`` loads those inputs from the database
for the read API, and ``check_window`` runs the same computation for writers
(cart, checkout) at the moment of the write.
"""
import logging
from datetime import datetime, time, timedelta

from django.utils import timezone

from catalog.services import get_resource
from common.errors import CapacityExceeded, InvalidRange

logger = logging.getLogger(__name__)


REASON_PAST = "past"
REASON_CLOSED = "closed"
REASON_BLOCKED = "blocked"
REASON_FULLY_BOOKED = "fully_booked"
REASON_INSUFFICIENT = "insufficient_quantity"

MINUTES_PER_DAY = 24 * 60


def _minutes(t: time) -> int:
    # 23:59[:59] is how end-of-day is usually stored
    if t.hour == 23 and t.minute == 59:
        return MINUTES_PER_DAY
    return t.hour * 60 + t.minute


def _ceil_hour(t: time) -> int:
    return (_minutes(t) + 59) // 60


def _overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and a_end > b_start


def _hour_span(open_time, close_time, schedule):
    hours = set()
    if open_time is not None and close_time is not None:
        hours.update(range(open_time.hour, _ceil_hour(close_time)))
    for start, end in schedule:
        hours.update(range(start.hour, _ceil_hour(end)))
    return sorted(h for h in hours if 0 <= h < 24)


def _covered(hour, schedule) -> bool:
    lo, hi = hour * 60, (hour + 1) * 60
    return any(_minutes(start) <= lo and _minutes(end) >= hi for start, end in schedule)


def compute_availability(*, day, capacity, schedule, blocks=(), commitments=(),
                         requested_quantity=1, open_time=None, close_time=None,
                         open_on_day=True, now=None, tz=None):
    """
    Hour-by-hour availability for one resource on one local date.

    schedule     -- (start_time, end_time) windows for the day's weekday, unioned
    blocks       -- (start, end) aware datetimes of manual blocks
    commitments  -- (start, end, quantity) of live reservations and active holds
    Returns a list of {hour, is_available, available_quantity, blocked_reason}.
    Reasons follow the precedence past > closed > blocked > fully_booked >
    insufficient_quantity.
    """
    tz = tz or timezone.get_current_timezone()
    now = now or timezone.now()
    schedule = list(schedule) if open_on_day else []
    blocks = list(blocks)
    commitments = list(commitments)

    table = []
    for hour in _hour_span(open_time, close_time, schedule):
        slot_start = timezone.make_aware(datetime.combine(day, time(hour)), tz)
        slot_end = slot_start + timedelta(hours=1)

        reason = None
        available = 0
        if slot_start <= now:
            reason = REASON_PAST
        elif not _covered(hour, schedule):
            reason = REASON_CLOSED
        elif any(_overlaps(slot_start, slot_end, b_start, b_end) for b_start, b_end in blocks):
            reason = REASON_BLOCKED
        else:
            committed = sum(
                qty for c_start, c_end, qty in commitments
                if _overlaps(slot_start, slot_end, c_start, c_end)
            )
            available = max(capacity - committed, 0)
            if available == 0:
                reason = REASON_FULLY_BOOKED
            elif available < requested_quantity:
                reason = REASON_INSUFFICIENT

        table.append({
            "hour": hour,
            "is_available": reason is None,
            "available_quantity": available,
            "blocked_reason": reason,
        })
    return table


def _day_bounds(day, tz):
    start = timezone.make_aware(datetime.combine(day, time.min), tz)
    return start, start + timedelta(days=1)


def load_commitments(resource, start, end, *, exclude_hold_id=None, now=None):
    """(start, end, quantity) of every live reservation and active hold overlapping [start, end)."""
    from cart.models import CartHold
    from orders.models import Reservation
    from orders.status import RELEASED_STATUSES

    reservations = (
        Reservation.objects
        .filter(resource=resource, start_time__lt=end, end_time__gt=start)
        .exclude(status__in=RELEASED_STATUSES)
        .values_list("start_time", "end_time", "quantity")
    )
    holds = CartHold.objects.active(now).filter(resource=resource).overlapping(start, end)
    if exclude_hold_id is not None:
        holds = holds.exclude(pk=exclude_hold_id)
    return list(reservations) + list(holds.values_list("start_time", "end_time", "quantity"))


def get_availability(resource_id, day, requested_quantity=1, *, resource=None,
                     exclude_hold_id=None, now=None):
    if requested_quantity is None or int(requested_quantity) < 1:
        raise InvalidRange("Requested quantity must be at least 1")
    resource = resource or get_resource(resource_id)
    tz = timezone.get_current_timezone()
    day_start, day_end = _day_bounds(day, tz)
    weekday = day.weekday()

    schedule = list(
        resource.schedule_entries.filter(weekday=weekday).values_list("start_time", "end_time")
    )
    blocks = list(
        resource.manual_blocks.filter(start_time__lt=day_end, end_time__gt=day_start)
        .values_list("start_time", "end_time")
    )
    commitments = load_commitments(resource, day_start, day_end, exclude_hold_id=exclude_hold_id, now=now)

    return compute_availability(
        day=day,
        capacity=resource.capacity,
        schedule=schedule,
        blocks=blocks,
        commitments=commitments,
        requested_quantity=int(requested_quantity),
        open_time=resource.open_time,
        close_time=resource.close_time,
        open_on_day=resource.is_open_on(weekday),
        now=now,
        tz=tz,
    )


def consecutive_end_hours(table, start_hour):
    """End hours reachable from start_hour without crossing an unavailable hour."""
    rows = {row["hour"]: row for row in table}
    ends = []
    hour = start_hour
    while rows.get(hour, {}).get("is_available"):
        hour += 1
        ends.append(hour)
    return ends


def check_window(resource, start, end, quantity, *, exclude_hold_id=None, now=None):
    """
    Validate that [start, end) can take ``quantity`` more units of ``resource``.

    Raises InvalidRange for malformed or out-of-hours windows and
    CapacityExceeded when blocks or commitments leave too little room.
    Callers hold the resource row lock.
    """
    if start is None or end is None or start >= end:
        raise InvalidRange("start must be before end")
    if quantity is None or quantity < 1:
        raise InvalidRange("quantity must be at least 1")

    local_start = timezone.localtime(start)
    local_end = timezone.localtime(end)
    if local_start.minute or local_start.second or local_end.minute or local_end.second:
        raise InvalidRange("Bookings start and end on the hour")

    day = local_start.date()
    if local_end.date() == day:
        end_hour = local_end.hour
    elif local_end.date() == day + timedelta(days=1) and local_end.hour == 0:
        end_hour = 24
    else:
        raise InvalidRange("A booking cannot span more than one day")

    if quantity > resource.capacity:
        raise CapacityExceeded(
            f"Requested {quantity} exceeds capacity {resource.capacity}",
            available_quantity=resource.capacity,
        )

    table = get_availability(resource.pk, day, quantity, resource=resource,
                             exclude_hold_id=exclude_hold_id, now=now)
    rows = {row["hour"]: row for row in table}
    for hour in range(local_start.hour, end_hour):
        row = rows.get(hour)
        if row is None or row["blocked_reason"] == REASON_CLOSED:
            raise InvalidRange(f"{hour:02d}:00 is outside operating hours", hour=hour)
        if row["blocked_reason"] == REASON_PAST:
            raise InvalidRange(f"{hour:02d}:00 is in the past", hour=hour)
        if not row["is_available"]:
            logger.info(
                "Window rejected resource=%s hour=%s reason=%s available=%s requested=%s",
                resource.pk, hour, row["blocked_reason"], row["available_quantity"], quantity,
            )
            raise CapacityExceeded(
                f"{hour:02d}:00 is not available ({row['blocked_reason']})",
                hour=hour,
                reason=row["blocked_reason"],
                available_quantity=row["available_quantity"],
            )
    return table
