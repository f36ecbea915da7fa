"""
Approver-chain builder.

Materialises a request's approver slots from the approval-level template:
one slot per active level, in (order, id) order, role copied by value.

Usage:
    from moc.services.approver_chain import build_chain, ensure_chain

    slots = build_chain(request.id, ApprovalLevel.query.all())
"""

import logging

from moc.models import db
from moc.models.approval_level import ApprovalLevel
from moc.models.moc_request import MocApprover

logger = logging.getLogger(__name__)


def _level_sort_key(level):
    # id breaks ties between equal orders; unsaved rows sort after saved ones
    return (level.order, level.id if level.id is not None else float("inf"))


def build_chain(moc_request_id: str, approval_levels) -> list[MocApprover]:
    """
    Build (but do not persist) the approver slots for a request.

    Args:
        moc_request_id: Owning request.
        approval_levels: All ApprovalLevel rows; inactive ones are skipped.

    Returns:
        Ordered list of new MocApprover instances. Empty when no level is
        active: the request then has no gating approvers and the engine's
        empty-chain policy decides what stage advancement requires.
    """
    active = sorted((lvl for lvl in approval_levels if lvl.is_active), key=_level_sort_key)
    return [
        MocApprover(
            moc_request_id=moc_request_id,
            sequence=position,
            level_order=level.order,
            role_key=level.role_key,
            is_completed=False,
            is_approved=None,
        )
        for position, level in enumerate(active, 1)
    ]


def ensure_chain(moc_request) -> list[MocApprover]:
    """
    Attach a chain to *moc_request* unless it already has one.

    Reads the current template, so the chain reflects the levels active at
    this instant. Returns the request's slots either way.
    """
    if moc_request.approvers:
        return list(moc_request.approvers)

    levels = ApprovalLevel.query.all()
    slots = build_chain(moc_request.id, levels)
    for slot in slots:
        moc_request.approvers.append(slot)
    db.session.flush()

    logger.info(
        "Approver chain built",
        extra={
            "moc_request_id": moc_request.id,
            "slot_count": len(slots),
            "roles": [s.role_key for s in slots],
        },
    )
    return slots
