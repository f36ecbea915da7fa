"""
Approval Level Service — admin CRUD for the approver-chain template.

Changes here only affect requests submitted afterwards: approver slots copy
the role when a chain is built.
"""

import logging

from sqlalchemy import func

from moc.core.exceptions import NotFoundError, ValidationError
from moc.models import db
from moc.models.approval_level import ApprovalLevel
from moc.models.enums import DEFAULT_APPROVAL_CHAIN, RoleKey
from moc.utils.helpers import parse_bool

logger = logging.getLogger(__name__)


def _parse_role(value) -> str:
    role = RoleKey.parse(value)
    if role is None:
        allowed = ", ".join(r.value for r in RoleKey)
        raise ValidationError(
            f"Unknown role_key '{value}'",
            details={"role_key": f"must be one of {allowed}"},
        )
    return role.value


def _parse_order(value) -> int:
    try:
        order = int(value)
    except (TypeError, ValueError):
        raise ValidationError("order must be an integer", details={"order": "must be an integer"}) from None
    if order < 1:
        raise ValidationError("order must be >= 1", details={"order": "must be >= 1"})
    return order


def _next_order() -> int:
    current = db.session.query(func.max(ApprovalLevel.order)).scalar()
    return (current or 0) + 1


def list_levels(active_only: bool = False) -> list[ApprovalLevel]:
    """Levels in effective chain order: (order, id)."""
    q = ApprovalLevel.query
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(ApprovalLevel.order, ApprovalLevel.id).all()


def get_level(level_id: int) -> ApprovalLevel:
    level = db.session.get(ApprovalLevel, level_id)
    if level is None:
        raise NotFoundError(resource="ApprovalLevel", resource_id=level_id)
    return level


def create_level(data: dict) -> ApprovalLevel:
    """
    Add a level. ``order`` defaults to one past the current maximum.

    Raises:
        ValidationError: unknown role_key, bad order or is_active.
    """
    role_key = _parse_role(data.get("role_key"))
    order = _parse_order(data["order"]) if data.get("order") is not None else _next_order()
    try:
        is_active = parse_bool(data.get("is_active"), default=True)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"is_active": "must be a boolean"}) from None

    level = ApprovalLevel(order=order, role_key=role_key, is_active=is_active)
    db.session.add(level)
    db.session.commit()
    logger.info("Approval level created", extra={"level_id": level.id, "role_key": role_key, "order": order})
    return level


def update_level(level_id: int, data: dict) -> ApprovalLevel:
    """Change order, role or active flag. In-flight approver slots are untouched."""
    level = get_level(level_id)
    changes = {}
    if "role_key" in data:
        changes["role_key"] = _parse_role(data["role_key"])
    if "order" in data:
        changes["order"] = _parse_order(data["order"])
    if "is_active" in data:
        try:
            changes["is_active"] = parse_bool(data["is_active"], default=level.is_active)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"is_active": "must be a boolean"}) from None

    for name, value in changes.items():
        setattr(level, name, value)
    db.session.commit()
    logger.info("Approval level updated", extra={"level_id": level.id, "fields": sorted(changes)})
    return level


def delete_level(level_id: int) -> None:
    level = get_level(level_id)
    db.session.delete(level)
    db.session.commit()
    logger.info("Approval level deleted", extra={"level_id": level_id})


def seed_defaults() -> int:
    """
    Insert the default chain when no level exists yet.

    Returns:
        Number of levels created (0 if the table was not empty).
    """
    if ApprovalLevel.query.count():
        return 0
    for order, role in enumerate(DEFAULT_APPROVAL_CHAIN, 1):
        db.session.add(ApprovalLevel(order=order, role_key=role.value, is_active=True))
    db.session.commit()
    return len(DEFAULT_APPROVAL_CHAIN)
