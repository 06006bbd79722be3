"""
Super-admin review of pending church registrations.
"""

import logging

from django.utils import timezone

from .exceptions import ChurchNotFound, InvalidStatusTransition
from .models import Church, ChurchStatus

logger = logging.getLogger(__name__)


def transition_church_status(church_id, new_status: str, reviewer=None) -> Church:
    """
    Move a pending church to approved or rejected.

    The update is conditional on the row still being pending, so two
    reviewers acting at once cannot both win. Approval also marks the
    church verified; rejection leaves is_verified alone.
    """
    if new_status not in (ChurchStatus.APPROVED, ChurchStatus.REJECTED):
        raise InvalidStatusTransition(f"Cannot move a church to '{new_status}'.")

    updates = {'status': new_status, 'updated_at': timezone.now()}
    if new_status == ChurchStatus.APPROVED:
        updates['is_verified'] = True
    updated = Church.objects.filter(pk=church_id, status=ChurchStatus.PENDING).update(**updates)

    if not updated:
        current = Church.objects.filter(pk=church_id).values_list('status', flat=True).first()
        if current is None:
            raise ChurchNotFound(church_id=church_id)
        logger.info(f"Church {church_id} is already {current}; not moving to {new_status}")
        raise InvalidStatusTransition(church_id=church_id, status=current)

    reviewer_id = getattr(reviewer, 'pk', None)
    logger.info(
        f"Church {church_id} {new_status} by user {reviewer_id}",
        extra={'operation': 'approval.transition', 'church_id': church_id, 'user_id': reviewer_id}
    )
    return Church.objects.get(pk=church_id)


def approve_church(church_id, reviewer=None) -> Church:
    return transition_church_status(church_id, ChurchStatus.APPROVED, reviewer)


def reject_church(church_id, reviewer=None) -> Church:
    return transition_church_status(church_id, ChurchStatus.REJECTED, reviewer)
