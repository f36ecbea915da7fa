"""
MOC Workflow Engine.

Validates and executes the request lifecycle:
  - draft editing (create / update / delete)
  - submission (control number + approver chain)
  - sequential approver-slot completion
  - stage advancement with approval gates (EMOC / OMOC)
  - inactivation, restoration, closure and cancellation

Every operation:
  1. loads the request with SELECT ... FOR UPDATE
  2. checks MOC_TRANSITIONS and the operation's own guards
  3. validates input before touching any attribute
  4. mutates, writes exactly one ActivityLog row, commits once
  5. hands its WorkflowEvents to the dispatcher after the commit

A failed operation rolls the session back and leaves the request as it was.

Usage:
    from moc.services import moc_workflow

    result = moc_workflow.submit(request_id, actor="j.doe")
    result.request.control_number
    result.events
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from moc.core.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from moc.models import db
from moc.models.activity_log import list_activity, write_activity
from moc.models.enums import (
    MocStage,
    MocStatus,
    RequestType,
    RiskLevel,
    RoleKey,
    WorkflowEventType,
)
from moc.models.moc_request import (
    EDITABLE_FIELDS,
    MOC_TRANSITIONS,
    MocApprover,
    MocRequest,
)
from moc.services.approver_chain import ensure_chain
from moc.services.control_number import generate_control_number
from moc.services.workflow_events import WorkflowEvent, dispatch
from moc.utils.helpers import parse_bool, parse_date

logger = logging.getLogger(__name__)

# Role that owns the work of each stage; carried on stage_entered events.
STAGE_RESPONSIBLE_ROLE = {
    MocStage.INITIATION: RoleKey.ORIGINATOR,
    MocStage.VALIDATION: RoleKey.DEPARTMENT_MANAGER,
    MocStage.EVALUATION: RoleKey.ORIGINATOR,
    MocStage.FINAL_APPROVAL: RoleKey.DIVISION_MANAGER,
    MocStage.PRE_IMPLEMENTATION: RoleKey.ORIGINATOR,
    MocStage.IMPLEMENTATION: RoleKey.ORIGINATOR,
    MocStage.RESTORATION_OR_CLOSEOUT: RoleKey.ORIGINATOR,
}

# Slots up to and including this role must approve before leaving validation.
VALIDATION_GATE_ROLE = RoleKey.DEPARTMENT_MANAGER

_STRING_LIMITS = {
    "title": 500,
    "originator": 100,
    "area_code": 50,
    "category_code": 50,
    "equipment_tag": 100,
    "units_affected": 200,
    "risk_tool_used": 100,
    "bypass_type": 100,
}
_DATE_FIELDS = ("target_implementation_date", "planned_end_date")
_TEXT_FIELDS = ("scope_description", "reason_for_change")


@dataclass
class WorkflowResult:
    """Outcome of one workflow operation."""

    request: MocRequest
    events: list = field(default_factory=list)
    activity_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(),
            "events": [e.to_dict() for e in self.events],
            "activity_id": self.activity_id,
        }


# ═════════════════════════════════════════════════════════════════════════
# Policies
# ═════════════════════════════════════════════════════════════════════════


def _rejection_policy() -> str:
    return current_app.config.get("MOC_REJECTION_POLICY", "cancel")


def _empty_chain_policy() -> str:
    return current_app.config.get("MOC_EMPTY_CHAIN_POLICY", "allow")


def _max_temporary_days(request_type: RequestType):
    limits = current_app.config.get("MOC_TEMPORARY_MAX_DAYS") or {}
    return limits.get(request_type.value)


# ═════════════════════════════════════════════════════════════════════════
# Input validation
# ═════════════════════════════════════════════════════════════════════════


def _parse_request_type(value) -> RequestType:
    try:
        return RequestType(value or RequestType.STANDARD_EMOC.value)
    except ValueError:
        allowed = ", ".join(t.value for t in RequestType)
        raise ValidationError(
            f"Unknown request_type '{value}'",
            details={"request_type": f"must be one of {allowed}"},
        ) from None


def _clean_fields(fields: dict) -> dict:
    """Coerce editable fields to column types. Unknown keys are ignored."""
    errors = {}
    cleaned = {}
    for name in EDITABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]

        if name in _DATE_FIELDS:
            try:
                value = parse_date(value)
            except ValueError as exc:
                errors[name] = str(exc)
                continue
        elif name == "is_temporary":
            try:
                value = parse_bool(value, default=False)
            except ValueError as exc:
                errors[name] = str(exc)
                continue
        elif name == "is_bypass_emergency":
            try:
                value = parse_bool(value, default=None)
            except ValueError as exc:
                errors[name] = str(exc)
                continue
        elif name == "risk_level":
            if value in (None, ""):
                value = None
            else:
                try:
                    value = RiskLevel(str(value).strip().lower()).value
                except ValueError:
                    errors[name] = "must be one of green, yellow, red"
                    continue
        else:
            if value is not None:
                value = str(value).strip() or None
            limit = _STRING_LIMITS.get(name)
            if value and limit and len(value) > limit:
                errors[name] = f"must be at most {limit} characters"
                continue

        cleaned[name] = value

    if errors:
        raise ValidationError("Invalid request fields", details=errors)
    return cleaned


def _values_of(req: MocRequest) -> dict:
    return {name: getattr(req, name) for name in EDITABLE_FIELDS}


def _check_rules(request_type: RequestType, values: dict, *, for_submit=False) -> None:
    """Business rules on the merged field values. Raises ValidationError."""
    errors = {}
    target = values.get("target_implementation_date")
    end = values.get("planned_end_date")

    if not values.get("title"):
        errors["title"] = "is required"

    if values.get("is_temporary"):
        if end is None:
            errors["planned_end_date"] = "is required for a temporary change"
        elif target is not None:
            max_days = _max_temporary_days(request_type)
            if end < target:
                errors["planned_end_date"] = "must not be before target_implementation_date"
            elif max_days is not None and (end - target).days > max_days:
                errors["planned_end_date"] = (
                    f"must be within {max_days} days of target_implementation_date"
                )

    if for_submit:
        if target is None:
            errors["target_implementation_date"] = "is required to submit"
        for name in _TEXT_FIELDS:
            if not values.get(name):
                errors[name] = "is required to submit"
        if request_type is RequestType.BYPASS_EMOC and not values.get("bypass_type"):
            errors["bypass_type"] = "is required for a bypass request"

    if errors:
        raise ValidationError("Request failed validation", details=errors)


# ═════════════════════════════════════════════════════════════════════════
# Transition plumbing
# ═════════════════════════════════════════════════════════════════════════


def validate_transition(req: MocRequest, action: str) -> dict:
    """
    Check *action* against MOC_TRANSITIONS for the request's status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = MOC_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": req.status, "to": None,
                "reason": f"Unknown action: {action}"}
    if req.status not in rule["from"]:
        return {"valid": False, "from": req.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{req.status}'"}
    return {"valid": True, "from": req.status, "to": rule["to"], "reason": None}


def get_available_actions(req: MocRequest) -> list[str]:
    """Actions whose status precondition holds (other guards not evaluated)."""
    return [action for action, rule in MOC_TRANSITIONS.items() if req.status in rule["from"]]


def _require(req: MocRequest, action: str) -> None:
    check = validate_transition(req, action)
    if not check["valid"]:
        raise InvalidStateError(
            f"{req.control_number or req.id}: {check['reason']}",
            current_status=req.status,
            current_stage=req.current_stage,
            action=action,
        )


def _conflict(req: MocRequest, action: str, message: str, **details) -> InvalidStateError:
    return InvalidStateError(
        f"{req.control_number or req.id}: {message}",
        current_status=req.status,
        current_stage=req.current_stage,
        action=action,
        details=details or None,
    )


def _load_for_update(request_id: str) -> MocRequest:
    stmt = (
        db.select(MocRequest)
        .where(MocRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    req = db.session.execute(stmt).scalar_one_or_none()
    if req is None:
        raise NotFoundError(resource="MocRequest", resource_id=request_id)
    return req


@contextmanager
def _atomic(action: str, request_id: str | None):
    """Commit on success; roll back and re-raise on any failure."""
    try:
        yield
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        logger.warning(
            "Concurrent write rejected",
            extra={"moc_request_id": request_id, "action": action},
        )
        raise ConcurrencyConflictError(request_id, action) from exc
    except Exception:
        db.session.rollback()
        raise


def _utcnow():
    return datetime.now(timezone.utc)


def _touch(req: MocRequest, actor: str) -> None:
    req.modified_at = _utcnow()
    req.modified_by = actor


def _record(req, action, actor, before, *, acting_role=None, remarks=None) -> int:
    db.session.flush()
    log = write_activity(
        moc_request_id=req.id,
        action=f"moc.{action}",
        actor=actor,
        acting_role=acting_role,
        before=before,
        after=req.to_dict(),
        remarks=remarks,
    )
    return log.id


def _event(req, event_type: WorkflowEventType, role, subject="", actor=None) -> WorkflowEvent:
    return WorkflowEvent(
        event_type=event_type.value,
        moc_request_id=req.id,
        status=req.status,
        stage=req.current_stage,
        role_key=role.value if isinstance(role, RoleKey) else str(role),
        subject=subject or "",
        actor=actor,
    )


def _deliver(events) -> None:
    """Dispatch after commit. The workflow change stands even if this fails."""
    if not events:
        return
    try:
        dispatch(events)
    except Exception:
        db.session.rollback()
        logger.exception(
            "Event dispatch failed after commit",
            extra={"moc_request_id": events[0].moc_request_id},
        )


def _log(action, req_id, actor, **extra):
    logger.info(
        "MOC %s", action,
        extra={"moc_request_id": req_id, "action": action, "actor": actor, **extra},
    )


# ═════════════════════════════════════════════════════════════════════════
# Draft editing
# ═════════════════════════════════════════════════════════════════════════


def create_draft(fields: dict, *, actor: str = "system") -> WorkflowResult:
    """Create a draft request. ``request_type`` defaults to standard_emoc."""
    fields = fields or {}
    request_type = _parse_request_type(fields.get("request_type"))
    cleaned = _clean_fields(fields)
    values = {name: None for name in EDITABLE_FIELDS}
    values.update(cleaned)
    _check_rules(request_type, values)

    if not cleaned.get("originator"):
        cleaned["originator"] = actor
    if cleaned.get("is_temporary") is None:
        cleaned["is_temporary"] = False

    req = MocRequest(
        request_type=request_type.value,
        status=MocStatus.DRAFT.value,
        current_stage=MocStage.INITIATION.value,
        created_by=actor,
        **cleaned,
    )
    with _atomic("create_draft", req.id):
        db.session.add(req)
        activity_id = _record(req, "create_draft", actor, before=None)

    _log("create_draft", req.id, actor, request_type=request_type.value)
    return WorkflowResult(req, [], activity_id)


def update_draft(request_id: str, fields: dict, *, actor: str = "system") -> WorkflowResult:
    """Change editable fields of a draft. request_type may still change."""
    fields = fields or {}
    with _atomic("update_draft", request_id):
        req = _load_for_update(request_id)
        _require(req, "update_draft")

        request_type = req.type_enum
        if "request_type" in fields:
            request_type = _parse_request_type(fields["request_type"])
        cleaned = _clean_fields(fields)
        if "originator" in cleaned and not cleaned["originator"]:
            del cleaned["originator"]
        if "is_temporary" in cleaned and cleaned["is_temporary"] is None:
            cleaned["is_temporary"] = False
        values = _values_of(req)
        values.update(cleaned)
        _check_rules(request_type, values)

        before = req.to_dict()
        req.request_type = request_type.value
        for name, value in cleaned.items():
            setattr(req, name, value)
        _touch(req, actor)
        activity_id = _record(req, "update_draft", actor, before)

    _log("update_draft", request_id, actor, fields=sorted(cleaned))
    return WorkflowResult(req, [], activity_id)


def delete_draft(request_id: str, *, actor: str = "system") -> None:
    """Delete a draft with everything it owns. Only the log line remains."""
    with _atomic("delete_draft", request_id):
        req = _load_for_update(request_id)
        _require(req, "delete_draft")
        db.session.delete(req)

    _log("delete_draft", request_id, actor)


# ═════════════════════════════════════════════════════════════════════════
# Submission and approvals
# ═════════════════════════════════════════════════════════════════════════


def submit(request_id: str, *, actor: str = "system") -> WorkflowResult:
    """
    Submit a draft.

    Assigns the control number, builds the approver chain from the active
    approval levels and (EMOC/OMOC) moves the request into validation.
    A DMOC without approvers is approved at once unless the empty-chain
    policy is "block".
    """
    with _atomic("submit", request_id):
        req = _load_for_update(request_id)
        _require(req, "submit")
        _check_rules(req.type_enum, _values_of(req), for_submit=True)

        before = req.to_dict()
        now = _utcnow()
        if req.control_number is None:
            number, year, seq = generate_control_number(req, now)
            req.control_number = number
            req.control_number_year = year
            req.control_number_seq = seq
        req.status = MocStatus.SUBMITTED.value
        req.submitted_at = now

        slots = ensure_chain(req)
        if req.type_enum.has_stage_pipeline:
            req.current_stage = MocStage.VALIDATION.value
        elif not slots and _empty_chain_policy() == "allow":
            req.status = MocStatus.APPROVED.value
        _touch(req, actor)

        events = []
        if req.type_enum.has_stage_pipeline:
            events.append(_event(
                req, WorkflowEventType.STAGE_ENTERED,
                STAGE_RESPONSIBLE_ROLE[MocStage.VALIDATION],
                subject=MocStage.VALIDATION.value, actor=actor,
            ))
        if slots:
            first = slots[0]
            events.append(_event(
                req, WorkflowEventType.SLOT_AWAITING_ACTION, first.role_key,
                subject=first.id, actor=actor,
            ))
        activity_id = _record(req, "submit", actor, before)

    _log("submit", request_id, actor,
         control_number=req.control_number, slot_count=len(slots))
    _deliver(events)
    return WorkflowResult(req, events, activity_id)


def complete_approver_slot(
    request_id: str,
    slot_id: str,
    approved: bool,
    remarks: str | None = None,
    acting_role: str | None = None,
    *,
    actor: str = "system",
) -> WorkflowResult:
    """
    Record one approver's decision.

    Guards, in order: slot belongs to the request; request status allows
    approvals; chain not halted; slot still open; acting_role matches the
    slot's role (AuthorizationError); slot is the first open one.

    A rejection halts the chain. Under the "cancel" rejection policy the
    request is cancelled as well; under "freeze" it keeps its status.
    """
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false", details={"approved": "must be a boolean"})

    with _atomic("complete_approver_slot", request_id):
        req = _load_for_update(request_id)
        slot = db.session.get(MocApprover, slot_id)
        if slot is None or slot.moc_request_id != req.id:
            raise NotFoundError(resource="MocApprover", resource_id=slot_id)

        action = "complete_approver_slot"
        _require(req, action)
        if req.is_chain_halted:
            raise _conflict(req, action, "approval chain was halted by a rejection")
        if slot.is_completed:
            raise _conflict(req, action, f"slot {slot.sequence} ({slot.role_key}) is already completed")

        role = RoleKey.parse(acting_role)
        if role is None or role.value != slot.role_key:
            raise AuthorizationError(
                f"Slot {slot.sequence} must be completed by {slot.role_key}",
                acting_role=acting_role,
                required_role=slot.role_key,
            )

        current = req.first_incomplete_slot()
        if current.id != slot.id:
            raise _conflict(
                req, action,
                f"slot {slot.sequence} is out of turn; slot {current.sequence} "
                f"({current.role_key}) must act first",
                next_slot_id=current.id,
            )

        before = req.to_dict()
        now = _utcnow()
        slot.is_completed = True
        slot.is_approved = approved
        slot.remarks = remarks
        slot.completed_at = now
        slot.completed_by = actor

        next_slot = req.first_incomplete_slot() if approved else None
        if approved:
            if next_slot is None and not req.type_enum.has_stage_pipeline:
                req.status = MocStatus.APPROVED.value
        else:
            req.rejected_at = now
            if _rejection_policy() == "cancel":
                req.status = MocStatus.CANCELLED.value
                req.cancelled_at = now
                req.cancellation_reason = remarks or f"Rejected by {slot.role_key}"
        _touch(req, actor)

        events = [_event(req, WorkflowEventType.SLOT_COMPLETED, slot.role_key,
                         subject=slot.id, actor=actor)]
        if not approved:
            events.append(_event(req, WorkflowEventType.REQUEST_REJECTED, slot.role_key,
                                 subject=slot.id, actor=actor))
        elif next_slot is not None:
            events.append(_event(req, WorkflowEventType.SLOT_AWAITING_ACTION, next_slot.role_key,
                                 subject=next_slot.id, actor=actor))

        verb = "approver_approved" if approved else "approver_rejected"
        activity_id = _record(req, verb, actor, before, acting_role=slot.role_key, remarks=remarks)

    _log(verb, request_id, actor, role_key=slot.role_key, sequence=slot.sequence)
    _deliver(events)
    return WorkflowResult(req, events, activity_id)


# ═════════════════════════════════════════════════════════════════════════
# Stage pipeline
# ═════════════════════════════════════════════════════════════════════════


def _gate_slots(req: MocRequest, stage: MocStage):
    """Slots that must be approved before leaving *stage*; None when ungated."""
    if stage is MocStage.VALIDATION:
        limit = VALIDATION_GATE_ROLE.precedence
        gated = []
        for slot in req.approvers:
            role = RoleKey.parse(slot.role_key)
            if role is not None and role.precedence <= limit:
                gated.append(slot)
        return gated
    if stage is MocStage.FINAL_APPROVAL:
        return list(req.approvers)
    return None


def _check_gate(req: MocRequest, stage: MocStage) -> None:
    gated = _gate_slots(req, stage)
    if gated is None:
        return
    if not req.approvers:
        if _empty_chain_policy() == "block":
            raise _conflict(req, "advance_stage",
                            f"no approvers on the chain; leaving {stage.value} is blocked")
        return
    pending = [s for s in gated if not (s.is_completed and s.is_approved)]
    if pending:
        roles = ", ".join(s.role_key for s in pending)
        raise _conflict(
            req, "advance_stage",
            f"cannot leave {stage.value} until approved by: {roles}",
            pending_slot_ids=[s.id for s in pending],
        )


def advance_stage(request_id: str, remarks: str | None = None, *, actor: str = "system") -> WorkflowResult:
    """
    Move an EMOC/OMOC request to the next stage.

    Status follows the pipeline: leaving validation → active, leaving final
    approval → approved, entering implementation → active, entering
    restoration/closeout → for_restoration when the change is temporary.
    """
    with _atomic("advance_stage", request_id):
        req = _load_for_update(request_id)
        if not req.type_enum.has_stage_pipeline:
            raise _conflict(req, "advance_stage", f"{req.request_type} requests have no stage pipeline")
        _require(req, "advance_stage")
        if req.is_chain_halted:
            raise _conflict(req, "advance_stage", "approval chain was halted by a rejection")

        current = req.stage_enum
        target = current.next_stage
        if target is None:
            raise _conflict(req, "advance_stage", f"{current.value} is the final stage")
        _check_gate(req, current)

        before = req.to_dict()
        req.current_stage = target.value
        if current is MocStage.VALIDATION:
            req.status = MocStatus.ACTIVE.value
        elif current is MocStage.FINAL_APPROVAL:
            req.status = MocStatus.APPROVED.value
        if target is MocStage.IMPLEMENTATION:
            req.status = MocStatus.ACTIVE.value
        elif target is MocStage.RESTORATION_OR_CLOSEOUT and req.is_temporary:
            req.status = MocStatus.FOR_RESTORATION.value
        _touch(req, actor)

        events = [_event(req, WorkflowEventType.STAGE_ENTERED, STAGE_RESPONSIBLE_ROLE[target],
                         subject=target.value, actor=actor)]
        activity_id = _record(req, "advance_stage", actor, before, remarks=remarks)

    _log("advance_stage", request_id, actor, from_stage=current.value, to_stage=target.value)
    _deliver(events)
    return WorkflowResult(req, events, activity_id)


# ═════════════════════════════════════════════════════════════════════════
# Status-only transitions
# ═════════════════════════════════════════════════════════════════════════


def _status_transition(request_id, action, actor, remarks=None, mutate=None) -> WorkflowResult:
    with _atomic(action, request_id):
        req = _load_for_update(request_id)
        _require(req, action)
        before = req.to_dict()
        req.status = MOC_TRANSITIONS[action]["to"]
        if mutate is not None:
            mutate(req)
        _touch(req, actor)
        activity_id = _record(req, action, actor, before, remarks=remarks)

    _log(action, request_id, actor, status=req.status)
    return WorkflowResult(req, [], activity_id)


def mark_inactive(request_id: str, remarks: str | None = None, *, actor: str = "system") -> WorkflowResult:
    """Pause an active request. Stage is kept."""
    def _stamp(req):
        req.marked_inactive_at = _utcnow()
    return _status_transition(request_id, "mark_inactive", actor, remarks, _stamp)


def reactivate(request_id: str, remarks: str | None = None, *, actor: str = "system") -> WorkflowResult:
    """Resume an inactive request at the stage it was paused in."""
    def _clear(req):
        req.marked_inactive_at = None
    return _status_transition(request_id, "reactivate", actor, remarks, _clear)


def mark_restored(request_id: str, remarks: str | None = None, *, actor: str = "system") -> WorkflowResult:
    """Confirm a temporary change has been reverted."""
    return _status_transition(request_id, "mark_restored", actor, remarks)


def close(request_id: str, remarks: str | None = None, *, actor: str = "system") -> WorkflowResult:
    """
    Close a request (terminal).

    EMOC/OMOC: stage must be restoration_or_closeout; a temporary change
    must be restored first. DMOC: status must be approved.
    """
    with _atomic("close", request_id):
        req = _load_for_update(request_id)
        _require(req, "close")
        if req.type_enum.has_stage_pipeline:
            if req.stage_enum is not MocStage.RESTORATION_OR_CLOSEOUT:
                raise _conflict(req, "close", "only requests at restoration_or_closeout can be closed")
        elif req.status != MocStatus.APPROVED.value:
            raise _conflict(req, "close", "a DMOC must be approved before closing")

        before = req.to_dict()
        req.status = MocStatus.CLOSED.value
        req.closed_at = _utcnow()
        _touch(req, actor)
        events = [_event(req, WorkflowEventType.REQUEST_CLOSED, RoleKey.ORIGINATOR, actor=actor)]
        activity_id = _record(req, "close", actor, before, remarks=remarks)

    _log("close", request_id, actor)
    _deliver(events)
    return WorkflowResult(req, events, activity_id)


def cancel(request_id: str, reason: str | None = None, *, actor: str = "system") -> WorkflowResult:
    """Cancel from any non-terminal status."""
    with _atomic("cancel", request_id):
        req = _load_for_update(request_id)
        _require(req, "cancel")
        before = req.to_dict()
        now = _utcnow()
        req.status = MocStatus.CANCELLED.value
        req.cancelled_at = now
        req.cancellation_reason = reason
        _touch(req, actor)
        events = [_event(req, WorkflowEventType.REQUEST_CANCELLED, RoleKey.ORIGINATOR, actor=actor)]
        activity_id = _record(req, "cancel", actor, before, remarks=reason)

    _log("cancel", request_id, actor)
    _deliver(events)
    return WorkflowResult(req, events, activity_id)


# ═════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════


def get_request(request_id: str) -> MocRequest:
    req = db.session.get(MocRequest, request_id)
    if req is None:
        raise NotFoundError(resource="MocRequest", resource_id=request_id)
    return req


def list_requests(*, status=None, request_type=None, stage=None, originator=None,
                  overdue=False, limit=50, offset=0):
    """Filtered request list, newest first. Returns (items, total)."""
    q = MocRequest.query
    if status:
        q = q.filter(MocRequest.status == status)
    if request_type:
        q = q.filter(MocRequest.request_type == request_type)
    if stage:
        q = q.filter(MocRequest.current_stage == stage)
    if originator:
        q = q.filter(MocRequest.originator == originator)
    if overdue:
        q = q.filter(
            MocRequest.is_temporary.is_(True),
            MocRequest.planned_end_date < date.today(),
            MocRequest.status == MocStatus.ACTIVE.value,
        )
    total = q.count()
    items = (
        q.order_by(MocRequest.created_at.desc(), MocRequest.id)
        .offset(offset).limit(limit).all()
    )
    return items, total


def get_activity(request_id: str):
    """Activity rows of an existing request, oldest first."""
    get_request(request_id)
    return list_activity(request_id)
