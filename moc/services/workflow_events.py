"""
Workflow event dispatch.

The workflow engine describes what happened as WorkflowEvent values; this
module turns them into TaskItem and Notification rows. The engine never
writes those rows itself.

Delivery contract:
    - one event per logically distinct cause
    - at-least-once: dispatching the same events again creates nothing new
      (rows are keyed by request id + event type + role + subject)
    - runs after the workflow transaction has committed

Rules:
    slot_awaiting_action  → approval task + notification for the slot role
    slot_completed        → the slot's approval task is completed
    stage_entered         → open tasks of earlier stages completed; stage task
                            for the owner role when the stage carries work
    request_rejected      → open tasks cancelled; originator notified
    request_cancelled     → open tasks cancelled; originator notified
    request_closed        → open tasks cancelled; originator notified
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.exc import IntegrityError

from moc.models import db
from moc.models.enums import MocStage, RoleKey, TaskStatus, TaskType, WorkflowEventType
from moc.models.moc_request import MocRequest
from moc.models.task import TaskItem
from moc.services import task_service
from moc.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Stages that carry their own work item. Validation and final approval are
# covered by the approver slots' tasks.
STAGE_TASK_TYPES = {
    MocStage.EVALUATION: TaskType.EVALUATION,
    MocStage.PRE_IMPLEMENTATION: TaskType.DOCUMENTATION,
    MocStage.IMPLEMENTATION: TaskType.IMPLEMENTATION,
    MocStage.RESTORATION_OR_CLOSEOUT: TaskType.RESTORATION,
}

_ENDING_MESSAGES = {
    WorkflowEventType.REQUEST_REJECTED: "{label} was rejected by {role}.",
    WorkflowEventType.REQUEST_CANCELLED: "{label} was cancelled.",
    WorkflowEventType.REQUEST_CLOSED: "{label} was closed.",
}


@dataclass(frozen=True)
class WorkflowEvent:
    """Something the workflow did that other parts of the system react to."""

    event_type: str
    moc_request_id: str
    status: str
    stage: str
    role_key: str
    subject: str = ""
    actor: str | None = None

    @property
    def dedupe_key(self) -> str:
        return f"{self.moc_request_id}:{self.event_type}:{self.role_key}:{self.subject}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["dedupe_key"] = self.dedupe_key
        return data


def _label(moc_request: MocRequest) -> str:
    return f"{moc_request.control_number or 'Draft'} ({moc_request.title})"


def _stage_title(stage: MocStage) -> str:
    return stage.value.replace("_", " ").title()


# ── Handlers ─────────────────────────────────────────────────────────────


def _on_slot_awaiting(event, moc_request, counts):
    label = _label(moc_request)
    _, created = task_service.create_task_once(
        dedupe_key=event.dedupe_key,
        moc_request_id=event.moc_request_id,
        approver_id=event.subject,
        assigned_role_key=event.role_key,
        task_type=TaskType.APPROVAL.value,
        title=f"Approve {label}",
        description=f"Approval required while the request is at {_stage_title(MocStage(event.stage))}.",
    )
    counts["tasks_created"] += int(created)
    _, created = NotificationService.create_once(
        dedupe_key=event.dedupe_key,
        type=event.event_type,
        message=f"{label} is awaiting your approval.",
        recipient_role_key=event.role_key,
        moc_request_id=event.moc_request_id,
    )
    counts["notifications_created"] += int(created)


def _on_slot_completed(event, moc_request, counts):
    counts["tasks_closed"] += task_service.complete_slot_task(event.subject, by=event.actor)


def _on_stage_entered(event, moc_request, counts):
    stale = (
        TaskItem.query
        .filter(
            TaskItem.moc_request_id == event.moc_request_id,
            TaskItem.status == TaskStatus.OPEN.value,
            TaskItem.stage.isnot(None),
            TaskItem.stage != event.stage,
        )
        .all()
    )
    for task in stale:
        task.complete(by=event.actor, remarks=f"Stage left for {event.stage}")
    counts["tasks_closed"] += len(stale)

    stage = MocStage(event.stage)
    task_type = STAGE_TASK_TYPES.get(stage)
    if task_type is None:
        return
    _, created = task_service.create_task_once(
        dedupe_key=event.dedupe_key,
        moc_request_id=event.moc_request_id,
        stage=event.stage,
        assigned_role_key=event.role_key,
        task_type=task_type.value,
        title=f"{_stage_title(stage)}: {_label(moc_request)}",
    )
    counts["tasks_created"] += int(created)


def _on_request_ended(event, moc_request, counts):
    counts["tasks_closed"] += task_service.cancel_open_tasks(event.moc_request_id)
    template = _ENDING_MESSAGES[WorkflowEventType(event.event_type)]
    originator = RoleKey.ORIGINATOR.value
    _, created = NotificationService.create_once(
        dedupe_key=f"{event.moc_request_id}:{event.event_type}:{originator}:{event.subject}",
        type=event.event_type,
        message=template.format(label=_label(moc_request), role=event.role_key),
        recipient_role_key=originator,
        recipient=moc_request.originator,
        moc_request_id=event.moc_request_id,
    )
    counts["notifications_created"] += int(created)


_HANDLERS = {
    WorkflowEventType.SLOT_AWAITING_ACTION: _on_slot_awaiting,
    WorkflowEventType.SLOT_COMPLETED: _on_slot_completed,
    WorkflowEventType.STAGE_ENTERED: _on_stage_entered,
    WorkflowEventType.REQUEST_REJECTED: _on_request_ended,
    WorkflowEventType.REQUEST_CANCELLED: _on_request_ended,
    WorkflowEventType.REQUEST_CLOSED: _on_request_ended,
}


def _apply(event: WorkflowEvent, counts: dict) -> None:
    moc_request = db.session.get(MocRequest, event.moc_request_id)
    if moc_request is None:
        logger.warning("Event for unknown request dropped: %s", event.dedupe_key)
        return
    _HANDLERS[WorkflowEventType(event.event_type)](event, moc_request, counts)


# ── Entry point ──────────────────────────────────────────────────────────


def dispatch(events) -> dict:
    """
    Turn *events* into task and notification rows and commit.

    A unique-key race with a concurrent dispatcher rolls back and replays
    once; the replay finds the winner's rows and skips them.

    Returns:
        {"tasks_created", "tasks_closed", "notifications_created"}
    """
    events = list(events)
    for attempt in (1, 2):
        counts = {"tasks_created": 0, "tasks_closed": 0, "notifications_created": 0}
        try:
            for event in events:
                _apply(event, counts)
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise
            logger.info("Dispatch raced on a dedupe key; replaying %d event(s)", len(events))

    if events:
        logger.debug(
            "Workflow events dispatched",
            extra={"moc_request_id": events[0].moc_request_id, **counts},
        )
    return counts
