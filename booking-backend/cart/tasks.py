# cart/tasks.py
"""
Celery tasks for cart hold housekeeping.
"""
from celery import shared_task

from .holds import sweep_expired_holds


@shared_task
def sweep_expired_holds_task():
    """
    Periodic eager expiry of stale holds; reads already ignore them lazily.
    """
    return sweep_expired_holds()
