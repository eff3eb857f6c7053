# payments/tasks.py
"""
Celery tasks enforcing payment windows and recovering lost webhooks.
"""
import logging

from celery import shared_task

from .reconciler import expire_stale_orders, poll_pending_orders

logger = logging.getLogger(__name__)


@shared_task
def expire_stale_orders_task():
    return expire_stale_orders()


@shared_task
def poll_pending_orders_task():
    """
    Ask the gateway about every open order with a transaction id.
    Gateway outages are logged per order; the next run retries.
    """
    stats = poll_pending_orders()
    if stats["errors"]:
        logger.warning("Payment status poll: %s", stats)
    return stats
