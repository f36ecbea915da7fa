"""
MOC Workflow Service
TaskItem — work item derived from a pending workflow step.

Task status is tracked separately from the request: a task can be completed
or cancelled while its request stays open for further steps.
"""

from datetime import datetime, timezone

from moc.models import db
from moc.models.enums import TaskStatus, TaskType


class TaskItem(db.Model):
    """
    Open work for a role.

    dedupe_key makes creation idempotent under at-least-once event delivery:
    {request_id}:{event_type}:{role_key}:{subject}.
    """

    __tablename__ = "task_items"
    __table_args__ = (
        db.Index("idx_task_role_status", "assigned_role_key", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    approver_id = db.Column(
        db.String(36), db.ForeignKey("moc_approvers.id", ondelete="CASCADE"),
        nullable=True, comment="Set for approval tasks",
    )
    stage = db.Column(db.String(30), nullable=True, comment="Set for stage tasks")

    approver = db.relationship("MocApprover")

    assigned_role_key = db.Column(db.String(100), nullable=False)
    task_type = db.Column(db.String(20), nullable=False, default=TaskType.GENERAL.value)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=TaskStatus.OPEN.value)
    completion_remarks = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(100), nullable=True)

    dedupe_key = db.Column(db.String(200), nullable=False, unique=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_open(self) -> bool:
        return self.status == TaskStatus.OPEN.value

    def complete(self, by=None, remarks=None):
        self.status = TaskStatus.COMPLETED.value
        self.completed_at = datetime.now(timezone.utc)
        self.completed_by = by
        self.completion_remarks = remarks

    def cancel(self, by=None, remarks=None):
        self.status = TaskStatus.CANCELLED.value
        self.completed_at = datetime.now(timezone.utc)
        self.completed_by = by
        self.completion_remarks = remarks

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "approver_id": self.approver_id,
            "approver_sequence": self.approver.sequence if self.approver else None,
            "stage": self.stage,
            "assigned_role_key": self.assigned_role_key,
            "task_type": self.task_type,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "completion_remarks": self.completion_remarks,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TaskItem {self.id}: {self.task_type} for {self.assigned_role_key} ({self.status})>"
