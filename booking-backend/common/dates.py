# common/dates.py
from datetime import date, datetime
from typing import Optional

from dateutil.parser import parse as parse_datetime
from django.utils import timezone
from django.utils.dateparse import parse_date as django_parse_date

from common.errors import InvalidRange


def to_aware(val) -> Optional[datetime]:
    """Parse an ISO datetime string (or accept a datetime); make timezone-aware in the current TZ."""
    if val in (None, ""):
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        try:
            dt = parse_datetime(str(val))
        except (ValueError, OverflowError):
            raise InvalidRange(f"Invalid datetime: {val!r}")
    # If a datetime was provided but is naive, localize it; otherwise keep its tzinfo
    return timezone.make_aware(dt, timezone.get_current_timezone()) if timezone.is_naive(dt) else dt


def to_date(val) -> Optional[date]:
    """YYYY-MM-DD -> date; InvalidRange on garbage."""
    if val in (None, ""):
        return None
    if isinstance(val, datetime):
        return timezone.localtime(val).date() if timezone.is_aware(val) else val.date()
    if isinstance(val, date):
        return val
    try:
        d = django_parse_date(str(val))
    except ValueError:
        d = None
    if d is None:
        raise InvalidRange(f"Invalid date: {val!r}")
    return d
