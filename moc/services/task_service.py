"""
Task Service — open work items per role.

Tasks are created by the workflow event dispatcher. Approval tasks close
with their approver slot; stage tasks are completed, cancelled or handed to
another role here, or closed by the dispatcher when the stage is left.
"""

import logging

from moc.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from moc.models import db
from moc.models.enums import RoleKey, TaskStatus, TaskType
from moc.models.task import TaskItem

logger = logging.getLogger(__name__)


# ── Dispatcher helpers (no commit) ───────────────────────────────────────


def create_task_once(*, dedupe_key: str, **fields) -> tuple[TaskItem, bool]:
    """
    Create a task unless *dedupe_key* already exists. Does not commit.

    A concurrent creator can still win between the check and the commit;
    the unique index then raises IntegrityError at commit time.
    """
    existing = TaskItem.query.filter_by(dedupe_key=dedupe_key).first()
    if existing:
        return existing, False

    task = TaskItem(dedupe_key=dedupe_key, **fields)
    db.session.add(task)
    db.session.flush()
    return task, True


def complete_slot_task(approver_id: str, *, by: str | None = None, remarks: str | None = None) -> int:
    """Complete the open approval task of a slot. Returns rows touched."""
    tasks = TaskItem.query.filter_by(approver_id=approver_id, status=TaskStatus.OPEN.value).all()
    for task in tasks:
        task.complete(by=by, remarks=remarks)
    return len(tasks)


def cancel_open_tasks(moc_request_id: str) -> int:
    """Cancel every open task of a request that has ended."""
    tasks = TaskItem.query.filter_by(moc_request_id=moc_request_id, status=TaskStatus.OPEN.value).all()
    for task in tasks:
        task.cancel()
    return len(tasks)


# ── Manual task actions ──────────────────────────────────────────────────


def get_task(task_id: int) -> TaskItem:
    task = db.session.get(TaskItem, task_id)
    if task is None:
        raise NotFoundError(resource="TaskItem", resource_id=task_id)
    return task


def _open_stage_task(task_id: int, action: str) -> TaskItem:
    task = get_task(task_id)
    if not task.is_open:
        raise InvalidStateError(
            f"Task {task.id} is {task.status}; only open tasks can be changed",
            current_status=task.status,
            action=action,
        )
    if task.task_type == TaskType.APPROVAL.value:
        raise InvalidStateError(
            f"Task {task.id} closes when its approver slot is completed",
            current_status=task.status,
            action=action,
            details={"approver_id": task.approver_id},
        )
    return task


def complete_task(task_id: int, *, by: str | None = None, remarks: str | None = None) -> TaskItem:
    """Mark an open stage task done. The request itself does not move."""
    task = _open_stage_task(task_id, "complete_task")
    task.complete(by=by, remarks=remarks)
    db.session.commit()
    logger.info("Task completed", extra={"task_id": task.id, "actor": by,
                                         "moc_request_id": task.moc_request_id})
    return task


def cancel_task(task_id: int, *, by: str | None = None, remarks: str | None = None) -> TaskItem:
    task = _open_stage_task(task_id, "cancel_task")
    task.cancel(by=by, remarks=remarks)
    db.session.commit()
    logger.info("Task cancelled", extra={"task_id": task.id, "actor": by,
                                         "moc_request_id": task.moc_request_id})
    return task


def reassign_task(task_id: int, role_key, *, by: str | None = None) -> TaskItem:
    """
    Hand an open stage task to another role.

    Raises:
        ValidationError: role_key is not a known role.
        InvalidStateError: task is closed or is an approval task.
    """
    role = RoleKey.parse(role_key)
    if role is None:
        raise ValidationError(
            f"Unknown role_key '{role_key}'",
            details={"role_key": f"must be one of {', '.join(r.value for r in RoleKey)}"},
        )
    task = _open_stage_task(task_id, "reassign_task")
    previous = task.assigned_role_key
    task.assigned_role_key = role.value
    db.session.commit()
    logger.info(
        "Task reassigned %s → %s", previous, role.value,
        extra={"task_id": task.id, "actor": by, "moc_request_id": task.moc_request_id},
    )
    return task


# ── Queries ──────────────────────────────────────────────────────────────


def list_open_tasks(role_key: str, limit: int = 50, offset: int = 0):
    """Open tasks assigned to *role_key*, oldest first."""
    q = TaskItem.query.filter_by(assigned_role_key=role_key, status=TaskStatus.OPEN.value)
    total = q.count()
    items = q.order_by(TaskItem.created_at, TaskItem.id).offset(offset).limit(limit).all()
    return items, total


def list_request_tasks(moc_request_id: str) -> list[TaskItem]:
    return (
        TaskItem.query
        .filter_by(moc_request_id=moc_request_id)
        .order_by(TaskItem.id)
        .all()
    )
