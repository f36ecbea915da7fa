"""
MOC Workflow Service
Request aggregate — MocRequest and the rows it owns.

Models:
    - MocRequest:     the change record (one table for every request type)
    - MocApprover:    per-request approver slot, copied from ApprovalLevel
    - MocActionItem:  follow-up action tracked against the request
    - MocDocument:    document metadata (storage lives elsewhere)

Status and stage are separate columns: a request can be paused (inactive)
or cancelled without losing its place in the stage pipeline.
"""

import uuid
from datetime import date, datetime, timezone

from moc.models import db
from moc.models.enums import MocStage, MocStatus, RequestType


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# Fields a draft may change through create/update. request_type is set once
# at creation; workflow columns are never client-editable.
EDITABLE_FIELDS = (
    "title",
    "originator",
    "area_code",
    "category_code",
    "scope_description",
    "reason_for_change",
    "equipment_tag",
    "units_affected",
    "is_temporary",
    "target_implementation_date",
    "planned_end_date",
    "risk_level",
    "risk_tool_used",
    "bypass_type",
    "is_bypass_emergency",
)

_OPEN_STATUSES = {s.value for s in MocStatus if not s.is_terminal}

# action → {"from": statuses the action is legal in, "to": resulting status}
# "to" is None where the result depends on the request (type, stage, policy).
MOC_TRANSITIONS = {
    "update_draft": {"from": {MocStatus.DRAFT.value}, "to": None},
    "delete_draft": {"from": {MocStatus.DRAFT.value}, "to": None},
    "submit": {"from": {MocStatus.DRAFT.value}, "to": MocStatus.SUBMITTED.value},
    "complete_approver_slot": {
        "from": {MocStatus.SUBMITTED.value, MocStatus.ACTIVE.value},
        "to": None,
    },
    "advance_stage": {
        "from": {MocStatus.SUBMITTED.value, MocStatus.ACTIVE.value, MocStatus.APPROVED.value},
        "to": None,
    },
    "mark_inactive": {"from": {MocStatus.ACTIVE.value}, "to": MocStatus.INACTIVE.value},
    "reactivate": {"from": {MocStatus.INACTIVE.value}, "to": MocStatus.ACTIVE.value},
    "mark_restored": {"from": {MocStatus.FOR_RESTORATION.value}, "to": MocStatus.RESTORED.value},
    "close": {
        "from": {MocStatus.ACTIVE.value, MocStatus.APPROVED.value, MocStatus.RESTORED.value},
        "to": MocStatus.CLOSED.value,
    },
    "cancel": {"from": _OPEN_STATUSES, "to": MocStatus.CANCELLED.value},
}


class MocRequest(db.Model):
    """
    Management-of-Change request.

    Lifecycle:  draft → submitted → active ⇄ inactive → approved →
                for_restoration → restored → closed   (cancelled from any
                non-terminal status)
    Stages:     initiation → validation → evaluation → final_approval →
                pre_implementation → implementation → restoration_or_closeout

    control_number is null while the request is a draft and is assigned
    exactly once by submit. version_id is the optimistic concurrency token;
    SQLAlchemy bumps it on every UPDATE and refuses stale writes.
    """

    __tablename__ = "moc_requests"
    __table_args__ = (
        db.Index("idx_moc_status_stage", "status", "current_stage"),
        db.Index("idx_moc_type_year", "request_type", "control_number_year"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    control_number = db.Column(
        db.String(50), nullable=True, unique=True,
        comment="Assigned on submit: {PREFIX}-{AREA}-{CATEGORY}-{YYYY}-{NNNN}",
    )
    control_number_year = db.Column(db.Integer, nullable=True)
    control_number_seq = db.Column(db.Integer, nullable=True)

    request_type = db.Column(
        db.String(20), nullable=False, default=RequestType.STANDARD_EMOC.value,
        comment="standard_emoc | bypass_emoc | omoc | dmoc",
    )
    title = db.Column(db.String(500), nullable=False)
    originator = db.Column(db.String(100), nullable=False, default="system")
    area_code = db.Column(db.String(50), nullable=True)
    category_code = db.Column(db.String(50), nullable=True)
    scope_description = db.Column(db.Text, nullable=True)
    reason_for_change = db.Column(db.Text, nullable=True)
    equipment_tag = db.Column(db.String(100), nullable=True)
    units_affected = db.Column(db.String(200), nullable=True)

    # Temporal policy: temporary changes must carry a planned end date
    is_temporary = db.Column(db.Boolean, nullable=False, default=False)
    target_implementation_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(
        db.Date, nullable=True,
        comment="Planned restoration (EMOC) or end date (DMOC) of a temporary change",
    )

    risk_level = db.Column(db.String(10), nullable=True, comment="green | yellow | red")
    risk_tool_used = db.Column(db.String(100), nullable=True)
    bypass_type = db.Column(db.String(100), nullable=True)
    is_bypass_emergency = db.Column(db.Boolean, nullable=True)

    # Workflow axes
    current_stage = db.Column(db.String(30), nullable=False, default=MocStage.INITIATION.value)
    status = db.Column(db.String(20), nullable=False, default=MocStatus.DRAFT.value, index=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    marked_inactive_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = db.Column(db.String(100), nullable=False, default="system")
    modified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    modified_by = db.Column(db.String(100), nullable=True)

    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    # ── Owned collections (cascade-deleted with the request) ─────────────
    approvers = db.relationship(
        "MocApprover", backref="moc_request",
        cascade="all, delete-orphan", order_by="MocApprover.sequence",
    )
    action_items = db.relationship(
        "MocActionItem", backref="moc_request",
        cascade="all, delete-orphan", order_by="MocActionItem.due_date",
    )
    documents = db.relationship(
        "MocDocument", backref="moc_request", cascade="all, delete-orphan",
    )
    activity_logs = db.relationship(
        "ActivityLog", backref="moc_request", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ActivityLog.id",
    )
    tasks = db.relationship(
        "TaskItem", backref="moc_request", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    notifications = db.relationship(
        "Notification", backref="moc_request", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    # ── Typed accessors ──────────────────────────────────────────────────

    @property
    def type_enum(self) -> RequestType:
        return RequestType(self.request_type)

    @property
    def status_enum(self) -> MocStatus:
        return MocStatus(self.status)

    @property
    def stage_enum(self) -> MocStage:
        return MocStage(self.current_stage)

    @property
    def is_overdue(self) -> bool:
        """Active temporary change whose planned end date has passed."""
        return bool(
            self.is_temporary
            and self.planned_end_date is not None
            and self.planned_end_date < date.today()
            and self.status_enum is MocStatus.ACTIVE
        )

    # ── Approver chain helpers ───────────────────────────────────────────

    def first_incomplete_slot(self):
        """Return the slot whose turn it is, or None when the chain is done."""
        for slot in self.approvers:
            if not slot.is_completed:
                return slot
        return None

    @property
    def is_chain_halted(self) -> bool:
        """A single rejection halts the chain for good."""
        return any(s.is_completed and s.is_approved is False for s in self.approvers)

    @property
    def is_chain_approved(self) -> bool:
        return all(s.is_completed and s.is_approved is True for s in self.approvers)

    def to_dict(self, include_children=True) -> dict:
        result = {
            "id": self.id,
            "control_number": self.control_number,
            "request_type": self.request_type,
            "title": self.title,
            "originator": self.originator,
            "area_code": self.area_code,
            "category_code": self.category_code,
            "scope_description": self.scope_description,
            "reason_for_change": self.reason_for_change,
            "equipment_tag": self.equipment_tag,
            "units_affected": self.units_affected,
            "is_temporary": self.is_temporary,
            "target_implementation_date": _iso(self.target_implementation_date),
            "planned_end_date": _iso(self.planned_end_date),
            "is_overdue": self.is_overdue,
            "risk_level": self.risk_level,
            "risk_tool_used": self.risk_tool_used,
            "bypass_type": self.bypass_type,
            "is_bypass_emergency": self.is_bypass_emergency,
            "current_stage": self.current_stage,
            "status": self.status,
            "submitted_at": _iso(self.submitted_at),
            "marked_inactive_at": _iso(self.marked_inactive_at),
            "rejected_at": _iso(self.rejected_at),
            "closed_at": _iso(self.closed_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": _iso(self.created_at),
            "created_by": self.created_by,
            "modified_at": _iso(self.modified_at),
            "modified_by": self.modified_by,
            "version": self.version_id,
        }
        if include_children:
            result["approvers"] = [a.to_dict() for a in self.approvers]
            result["action_items"] = [i.to_dict() for i in self.action_items]
            result["documents"] = [d.to_dict() for d in self.documents]
        return result

    def __repr__(self):
        return f"<MocRequest {self.control_number or self.id}: {self.status}/{self.current_stage}>"


class MocApprover(db.Model):
    """
    One approver slot of a request's chain.

    role_key and level_order are copied from the ApprovalLevel at submission
    time, so later edits to the level template never touch in-flight
    requests. A slot moves from incomplete to completed exactly once.
    """

    __tablename__ = "moc_approvers"
    __table_args__ = (
        db.UniqueConstraint("moc_request_id", "sequence", name="uq_moc_approver_request_seq"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False, comment="1-based position in the chain")
    level_order = db.Column(db.Integer, nullable=False, comment="ApprovalLevel.order at build time")
    role_key = db.Column(db.String(100), nullable=False)

    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    is_approved = db.Column(db.Boolean, nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "sequence": self.sequence,
            "level_order": self.level_order,
            "role_key": self.role_key,
            "is_completed": self.is_completed,
            "is_approved": self.is_approved,
            "remarks": self.remarks,
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
        }

    def __repr__(self):
        return f"<MocApprover #{self.sequence} {self.role_key} done={self.is_completed}>"


class MocActionItem(db.Model):
    __tablename__ = "moc_action_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    description = db.Column(db.Text, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "is_completed": self.is_completed,
            "completed_at": _iso(self.completed_at),
        }


class MocDocument(db.Model):
    """Document metadata only; file storage is handled outside this service."""

    __tablename__ = "moc_documents"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    document_group = db.Column(db.String(100), nullable=False, default="")
    document_type = db.Column(db.String(100), nullable=False, default="")
    name = db.Column(db.String(300), nullable=False)
    is_link = db.Column(db.Boolean, nullable=False, default=False)
    url = db.Column(db.String(1000), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_group": self.document_group,
            "document_type": self.document_type,
            "name": self.name,
            "is_link": self.is_link,
            "url": self.url,
        }
