# booking-backend/scheduling/blocks.py
"""
Manual block store: administrative closures of a resource.

Adding a block never touches existing reservations; the block only removes
the hours from what can be booked from now on.
"""
import logging

from django.db import transaction

from catalog.services import get_resource
from common.errors import InvalidRange, NotFound
from orders.models import AuditLog
from .models import ManualBlock

logger = logging.getLogger(__name__)


def add_block(resource_id, start, end, reason=None, actor=None):
    if start is None or end is None or start >= end:
        raise InvalidRange("Block start must be before end")
    resource = get_resource(resource_id)
    with transaction.atomic():
        block = ManualBlock.objects.create(
            resource=resource,
            branch_id=resource.branch_id,
            start_time=start,
            end_time=end,
            reason=reason or "",
            created_by_id=actor.user_id if actor else None,
        )
        AuditLog.record(
            action="block.created",
            user_id=actor.user_id if actor else None,
            branch=resource.branch,
            metadata={
                "block_id": block.id,
                "resource_id": resource.id,
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "reason": block.reason,
            },
        )
    logger.info("Manual block %s added on resource %s [%s, %s)", block.id, resource.id, start, end)
    return block


def remove_block(block_id, actor=None):
    with transaction.atomic():
        try:
            block = ManualBlock.objects.select_for_update().get(pk=block_id)
        except ManualBlock.DoesNotExist:
            raise NotFound(f"Block {block_id} not found", block_id=block_id)
        AuditLog.record(
            action="block.removed",
            user_id=actor.user_id if actor else None,
            branch=block.branch,
            metadata={
                "block_id": block.id,
                "resource_id": block.resource_id,
                "start_time": block.start_time.isoformat(),
                "end_time": block.end_time.isoformat(),
            },
        )
        block.delete()
    logger.info("Manual block %s removed", block_id)


def list_blocks(resource_id, start=None, end=None):
    qs = ManualBlock.objects.filter(resource_id=resource_id)
    if start is not None:
        qs = qs.filter(end_time__gt=start)
    if end is not None:
        qs = qs.filter(start_time__lt=end)
    return qs.order_by("start_time", "id")
