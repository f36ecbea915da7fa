"""
MOC workflow engine tests (service layer).

Tests cover:
  - Draft create / update / delete with field validation
  - Submission: control number, approver chain, one-shot semantics
  - Sequential approver-slot completion, role checks, rejection policies
  - Stage advancement gates and status side effects
  - Inactive / reactivate, restoration, close, cancel
  - Activity log: exactly one row per successful transition
  - Concurrency: stale writes and control-number races
  - Overdue tracking of active temporary changes
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from moc.core.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from moc.models import db
from moc.models.activity_log import ActivityLog, write_activity
from moc.models.approval_level import ApprovalLevel
from moc.models.moc_request import MocActionItem, MocApprover, MocRequest
from moc.services import moc_workflow as wf


# ── Helpers ──────────────────────────────────────────────────────────────

ROLES = ("Supervisor", "DepartmentManager", "AVP")
YEAR = datetime.now(timezone.utc).year


def _levels(*roles):
    for order, role in enumerate(roles, 1):
        db.session.add(ApprovalLevel(order=order, role_key=role, is_active=True))
    db.session.commit()


def _fields(**overrides):
    data = {
        "title": "Replace relief valve PSV-101",
        "area_code": "Plant1",
        "category_code": "Proc",
        "scope_description": "Swap the PSV on the crude charge line",
        "reason_for_change": "Existing valve is obsolete",
        "target_implementation_date": "2026-11-02",
    }
    data.update(overrides)
    return data


def _create(**overrides):
    return wf.create_draft(_fields(**overrides), actor="originator.one").request


def _submitted(*roles, **overrides):
    _levels(*roles)
    req = _create(**overrides)
    return wf.submit(req.id, actor="originator.one").request


def _approve(req, sequence, approved=True, remarks=None):
    slot = req.approvers[sequence - 1]
    return wf.complete_approver_slot(
        req.id, slot.id, approved, remarks,
        acting_role=slot.role_key, actor=f"{slot.role_key.lower()}.user",
    )


def _approve_all(req):
    for slot in list(req.approvers):
        if not slot.is_completed:
            _approve(req, slot.sequence)


def _activity(req_id):
    return (
        ActivityLog.query.filter_by(moc_request_id=req_id)
        .order_by(ActivityLog.id).all()
    )


def _reload(req_id):
    db.session.expire_all()
    return db.session.get(MocRequest, req_id)


# ═════════════════════════════════════════════════════════════════════════
# DRAFTS
# ═════════════════════════════════════════════════════════════════════════

class TestCreateDraft:
    def test_defaults(self):
        result = wf.create_draft(_fields(), actor="originator.one")
        req = result.request

        assert req.status == "draft"
        assert req.current_stage == "initiation"
        assert req.control_number is None
        assert req.request_type == "standard_emoc"
        assert req.originator == "originator.one"
        assert req.created_by == "originator.one"
        assert req.target_implementation_date == date(2026, 11, 2)
        assert req.approvers == []
        assert result.events == []

    def test_writes_one_activity_row(self):
        req = _create()
        logs = _activity(req.id)
        assert len(logs) == 1
        assert logs[0].action == "moc.create_draft"
        assert logs[0].before is None
        assert logs[0].after["status"] == "draft"
        assert logs[0].timestamp is not None

    def test_request_type_and_risk_level(self):
        req = _create(request_type="omoc", risk_level="RED")
        assert req.request_type == "omoc"
        assert req.risk_level == "red"

    def test_title_required(self):
        with pytest.raises(ValidationError) as exc:
            wf.create_draft(_fields(title="  "))
        assert "title" in exc.value.details
        assert MocRequest.query.count() == 0

    def test_unknown_request_type(self):
        with pytest.raises(ValidationError):
            wf.create_draft(_fields(request_type="xmoc"))

    def test_unknown_risk_level(self):
        with pytest.raises(ValidationError) as exc:
            wf.create_draft(_fields(risk_level="purple"))
        assert "risk_level" in exc.value.details

    def test_bad_date(self):
        with pytest.raises(ValidationError) as exc:
            wf.create_draft(_fields(target_implementation_date="next week"))
        assert "target_implementation_date" in exc.value.details

    def test_european_date_format(self):
        req = _create(target_implementation_date="02.11.2026")
        assert req.target_implementation_date == date(2026, 11, 2)

    def test_temporary_change_requires_end_date(self):
        with pytest.raises(ValidationError) as exc:
            wf.create_draft(_fields(is_temporary=True))
        assert "planned_end_date" in exc.value.details
        assert MocRequest.query.count() == 0

    def test_temporary_end_before_target(self):
        with pytest.raises(ValidationError):
            wf.create_draft(_fields(is_temporary=True, planned_end_date="2026-11-01"))

    def test_dmoc_temporary_window_is_90_days(self):
        target = date(2026, 11, 2)
        ok = _create(
            request_type="dmoc", is_temporary=True,
            planned_end_date=str(target + timedelta(days=90)),
        )
        assert ok.planned_end_date == target + timedelta(days=90)

        with pytest.raises(ValidationError) as exc:
            wf.create_draft(_fields(
                request_type="dmoc", is_temporary=True,
                planned_end_date=str(target + timedelta(days=91)),
            ))
        assert "90 days" in exc.value.details["planned_end_date"]
        assert MocRequest.query.count() == 1

    def test_emoc_temporary_has_no_window_by_default(self):
        req = _create(is_temporary=True, planned_end_date="2027-11-02")
        assert req.is_temporary is True


class TestUpdateDraft:
    def test_updates_fields_and_logs_snapshots(self, draft):
        result = wf.update_draft(draft.id, {"title": "Replace PSV-102"}, actor="originator.one")

        assert result.request.title == "Replace PSV-102"
        logs = _activity(draft.id)
        assert [log.action for log in logs] == ["moc.create_draft", "moc.update_draft"]
        assert logs[1].before["title"] == "Replace relief valve PSV-101"
        assert logs[1].after["title"] == "Replace PSV-102"

    def test_version_bumps(self, draft):
        version = draft.version_id
        wf.update_draft(draft.id, {"units_affected": "CDU-1"})
        assert _reload(draft.id).version_id == version + 1

    def test_validation_failure_changes_nothing(self, draft):
        with pytest.raises(ValidationError):
            wf.update_draft(draft.id, {"title": "Changed", "is_temporary": True})

        req = _reload(draft.id)
        assert req.title == "Replace relief valve PSV-101"
        assert req.is_temporary is False
        assert len(_activity(draft.id)) == 1

    def test_request_type_can_change_while_draft(self, draft):
        wf.update_draft(draft.id, {"request_type": "bypass_emoc", "bypass_type": "Interlock"})
        assert _reload(draft.id).request_type == "bypass_emoc"

    def test_rejected_after_submit(self, draft):
        wf.submit(draft.id)
        with pytest.raises(InvalidStateError):
            wf.update_draft(draft.id, {"title": "Too late"})

    def test_unknown_request(self):
        with pytest.raises(NotFoundError):
            wf.update_draft("missing", {"title": "x"})


class TestDeleteDraft:
    def test_cascades_to_owned_rows(self, draft):
        db.session.add(MocActionItem(moc_request_id=draft.id, description="Update P&ID"))
        db.session.commit()

        wf.delete_draft(draft.id, actor="originator.one")

        assert MocRequest.query.count() == 0
        assert MocActionItem.query.count() == 0
        assert ActivityLog.query.count() == 0

    def test_rejected_after_submit(self, draft):
        wf.submit(draft.id)
        with pytest.raises(InvalidStateError):
            wf.delete_draft(draft.id)
        assert MocRequest.query.count() == 1


# ═════════════════════════════════════════════════════════════════════════
# SUBMISSION
# ═════════════════════════════════════════════════════════════════════════

class TestSubmit:
    def test_assigns_control_number_and_chain(self):
        req = _submitted(*ROLES)

        assert req.control_number == f"EMOC-PLANT1-PROC-{YEAR}-0001"
        assert req.status == "submitted"
        assert req.current_stage == "validation"
        assert req.submitted_at is not None
        assert [a.role_key for a in req.approvers] == list(ROLES)
        assert [a.sequence for a in req.approvers] == [1, 2, 3]
        assert all(a.is_completed is False and a.is_approved is None for a in req.approvers)

    def test_chain_length_matches_active_levels(self):
        db.session.add_all([
            ApprovalLevel(order=1, role_key="Supervisor", is_active=True),
            ApprovalLevel(order=2, role_key="DepartmentManager", is_active=False),
            ApprovalLevel(order=3, role_key="DivisionManager", is_active=True),
            ApprovalLevel(order=4, role_key="AVP", is_active=True),
        ])
        db.session.commit()
        req = wf.submit(_create().id).request
        assert [a.role_key for a in req.approvers] == ["Supervisor", "DivisionManager", "AVP"]

    def test_sequence_per_type(self):
        _levels("Supervisor")
        first = wf.submit(_create().id).request
        second = wf.submit(_create().id).request
        dmoc = wf.submit(_create(request_type="dmoc").id).request
        omoc = wf.submit(_create(request_type="omoc", area_code=None, category_code=None).id).request

        assert first.control_number.endswith(f"{YEAR}-0001")
        assert second.control_number.endswith(f"{YEAR}-0002")
        assert dmoc.control_number == f"DMOC-PLANT1-PROC-{YEAR}-0001"
        assert omoc.control_number == f"OMOC-{YEAR}-0001"

    def test_bypass_requires_bypass_type(self):
        req = _create(request_type="bypass_emoc")
        with pytest.raises(ValidationError) as exc:
            wf.submit(req.id)
        assert "bypass_type" in exc.value.details

        wf.update_draft(req.id, {"bypass_type": "Trip override"})
        submitted = wf.submit(req.id).request
        assert submitted.control_number.startswith("BYPASS-")

    def test_second_submit_fails_and_keeps_number(self):
        req = _submitted(*ROLES)
        number = req.control_number

        with pytest.raises(InvalidStateError):
            wf.submit(req.id)

        req = _reload(req.id)
        assert req.control_number == number
        assert len(req.approvers) == 3

    def test_validation_failure_leaves_draft(self):
        _levels(*ROLES)
        req = _create(target_implementation_date=None)

        with pytest.raises(ValidationError) as exc:
            wf.submit(req.id)

        assert "target_implementation_date" in exc.value.details
        req = _reload(req.id)
        assert req.status == "draft"
        assert req.control_number is None
        assert MocApprover.query.count() == 0

    def test_emits_stage_and_first_slot_events(self):
        _levels(*ROLES)
        result = wf.submit(_create().id)

        assert [e.event_type for e in result.events] == ["stage_entered", "slot_awaiting_action"]
        assert result.events[0].stage == "validation"
        assert result.events[1].role_key == "Supervisor"
        assert result.events[1].subject == result.request.approvers[0].id

    def test_emoc_with_empty_chain(self):
        result = wf.submit(_create().id)
        assert result.request.approvers == []
        assert [e.event_type for e in result.events] == ["stage_entered"]

    def test_dmoc_empty_chain_allowed_is_approved(self):
        req = wf.submit(_create(request_type="dmoc").id).request
        assert req.status == "approved"
        assert req.current_stage == "initiation"

    def test_dmoc_empty_chain_blocked_stays_submitted(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "MOC_EMPTY_CHAIN_POLICY", "block")
        req = wf.submit(_create(request_type="dmoc").id).request
        assert req.status == "submitted"


# ═════════════════════════════════════════════════════════════════════════
# APPROVER SLOTS
# ═════════════════════════════════════════════════════════════════════════

class TestCompleteApproverSlot:
    def test_in_order_completion(self):
        req = _submitted(*ROLES)
        result = _approve(req, 1, remarks="Looks fine")

        slot = result.request.approvers[0]
        assert slot.is_completed is True
        assert slot.is_approved is True
        assert slot.remarks == "Looks fine"
        assert slot.completed_by == "supervisor.user"
        assert slot.completed_at is not None
        assert result.request.first_incomplete_slot().role_key == "DepartmentManager"
        assert [e.event_type for e in result.events] == ["slot_completed", "slot_awaiting_action"]
        assert result.events[1].role_key == "DepartmentManager"

    def test_strict_order_succeeds_to_the_end(self):
        req = _submitted(*ROLES)
        _approve_all(req)
        req = _reload(req.id)
        assert req.is_chain_approved
        assert req.first_incomplete_slot() is None
        assert req.status == "submitted"

    def test_out_of_order_fails(self):
        req = _submitted(*ROLES)
        avp_slot = req.approvers[2]
        with pytest.raises(InvalidStateError):
            wf.complete_approver_slot(req.id, avp_slot.id, True, acting_role="AVP")
        assert _reload(req.id).approvers[2].is_completed is False

    def test_wrong_role_is_unauthorized(self):
        req = _submitted(*ROLES)
        with pytest.raises(AuthorizationError) as exc:
            wf.complete_approver_slot(req.id, req.approvers[0].id, True, acting_role="AVP")
        assert exc.value.required_role == "Supervisor"

    @pytest.mark.parametrize("role", [None, "", "Janitor", "supervisor"])
    def test_unknown_role_is_unauthorized(self, role):
        req = _submitted(*ROLES)
        with pytest.raises(AuthorizationError):
            wf.complete_approver_slot(req.id, req.approvers[0].id, True, acting_role=role)

    def test_already_completed(self):
        req = _submitted(*ROLES)
        _approve(req, 1)
        with pytest.raises(InvalidStateError):
            _approve(req, 1)

    def test_slot_from_another_request(self):
        req = _submitted(*ROLES)
        other = wf.submit(_create().id).request
        with pytest.raises(NotFoundError):
            wf.complete_approver_slot(other.id, req.approvers[0].id, True, acting_role="Supervisor")

    def test_unknown_request(self):
        with pytest.raises(NotFoundError):
            wf.complete_approver_slot("missing", "slot", True, acting_role="Supervisor")

    def test_approved_must_be_boolean(self):
        req = _submitted(*ROLES)
        with pytest.raises(ValidationError):
            wf.complete_approver_slot(req.id, req.approvers[0].id, "yes", acting_role="Supervisor")

    def test_failed_completion_writes_nothing(self):
        req = _submitted(*ROLES)
        before = len(_activity(req.id))
        with pytest.raises(AuthorizationError):
            wf.complete_approver_slot(req.id, req.approvers[0].id, True, acting_role="AVP")
        assert len(_activity(req.id)) == before

    def test_rejection_cancels_by_default(self):
        req = _submitted(*ROLES)
        result = _approve(req, 1, approved=False, remarks="Scope unclear")

        req = result.request
        assert req.status == "cancelled"
        assert req.rejected_at is not None
        assert req.cancellation_reason == "Scope unclear"
        assert req.is_chain_halted
        assert [e.event_type for e in result.events] == ["slot_completed", "request_rejected"]
        assert _activity(req.id)[-1].action == "moc.approver_rejected"

    def test_rejection_halts_chain_under_cancel_policy(self):
        req = _submitted(*ROLES)
        _approve(req, 1, approved=False)

        with pytest.raises(InvalidStateError):
            _approve(req, 2)
        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)

    def test_rejection_freeze_policy(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "MOC_REJECTION_POLICY", "freeze")
        req = _submitted(*ROLES)
        _approve(req, 1)
        _approve(req, 2, approved=False)

        req = _reload(req.id)
        assert req.status == "submitted"
        assert req.is_chain_halted
        with pytest.raises(InvalidStateError):
            _approve(req, 3)
        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)

        assert wf.cancel(req.id, reason="Withdrawn").request.status == "cancelled"

    def test_dmoc_chain_completion_approves(self):
        req = _submitted("Supervisor", "DepartmentManager", request_type="dmoc")
        _approve(req, 1)
        assert _reload(req.id).status == "submitted"
        result = _approve(req, 2)
        assert result.request.status == "approved"
        assert [e.event_type for e in result.events] == ["slot_completed"]

    def test_scenario_three_levels_with_rejection(self):
        req = _submitted("Supervisor", "DepartmentManager", "AVP")
        assert req.control_number is not None
        assert [a.role_key for a in req.approvers] == ["Supervisor", "DepartmentManager", "AVP"]

        _approve(req, 1)
        req = _reload(req.id)
        assert req.approvers[0].is_completed
        assert req.first_incomplete_slot().sequence == 2

        with pytest.raises((AuthorizationError, InvalidStateError)):
            wf.complete_approver_slot(
                req.id, req.approvers[2].id, True, acting_role="DepartmentManager",
            )

        _approve(req, 2, approved=False, remarks="Not justified")
        req = _reload(req.id)
        assert req.is_chain_halted
        for _ in range(3):
            with pytest.raises(InvalidStateError):
                wf.advance_stage(req.id)


# ═════════════════════════════════════════════════════════════════════════
# STAGE PIPELINE
# ═════════════════════════════════════════════════════════════════════════

class TestAdvanceStage:
    def test_validation_gate_needs_supervisor_and_department_manager(self):
        req = _submitted(*ROLES)
        with pytest.raises(InvalidStateError) as exc:
            wf.advance_stage(req.id)
        assert "Supervisor" in str(exc.value)

        _approve(req, 1)
        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)

        _approve(req, 2)
        result = wf.advance_stage(req.id, remarks="Validated", actor="dm.user")
        assert result.request.current_stage == "evaluation"
        assert result.request.status == "active"
        assert result.events[0].event_type == "stage_entered"
        assert result.events[0].stage == "evaluation"
        assert result.events[0].role_key == "Originator"

    def test_final_approval_gate_needs_full_chain(self):
        req = _submitted(*ROLES)
        _approve(req, 1)
        _approve(req, 2)
        wf.advance_stage(req.id)                      # → evaluation
        wf.advance_stage(req.id)                      # → final_approval
        assert _reload(req.id).current_stage == "final_approval"

        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)

        _approve(req, 3)
        result = wf.advance_stage(req.id)
        assert result.request.current_stage == "pre_implementation"
        assert result.request.status == "approved"

    def test_permanent_change_walks_every_stage_once(self):
        req = _submitted(*ROLES)
        _approve_all(req)

        seen = [_reload(req.id).stage_enum.position]
        statuses = []
        while _reload(req.id).current_stage != "restoration_or_closeout":
            result = wf.advance_stage(req.id)
            seen.append(result.request.stage_enum.position)
            statuses.append(result.request.status)

        assert seen == [2, 3, 4, 5, 6, 7]
        assert statuses == ["active", "active", "approved", "active", "active"]

        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)
        assert _reload(req.id).current_stage == "restoration_or_closeout"

    def test_temporary_change_needs_restoration_before_close(self):
        req = _submitted(*ROLES, is_temporary=True, planned_end_date="2027-01-15")
        _approve_all(req)
        for _ in range(5):
            wf.advance_stage(req.id)

        req = _reload(req.id)
        assert req.status == "for_restoration"
        with pytest.raises(InvalidStateError):
            wf.close(req.id)

        assert wf.mark_restored(req.id).request.status == "restored"
        result = wf.close(req.id, remarks="Original valve reinstated")
        assert result.request.status == "closed"
        assert result.request.closed_at is not None
        assert [e.event_type for e in result.events] == ["request_closed"]

    def test_dmoc_has_no_pipeline(self):
        req = _submitted("Supervisor", request_type="dmoc")
        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)

    def test_draft_cannot_advance(self, draft):
        with pytest.raises(InvalidStateError):
            wf.advance_stage(draft.id)

    def test_empty_chain_allow_policy(self):
        req = _submitted()
        for _ in range(5):
            wf.advance_stage(req.id)
        assert _reload(req.id).current_stage == "restoration_or_closeout"

    def test_empty_chain_block_policy(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "MOC_EMPTY_CHAIN_POLICY", "block")
        req = _submitted()
        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)
        assert _reload(req.id).current_stage == "validation"

    def test_validation_gate_ignores_senior_roles(self):
        req = _submitted("DivisionManager", "AVP")
        result = wf.advance_stage(req.id)
        assert result.request.current_stage == "evaluation"


# ═════════════════════════════════════════════════════════════════════════
# STATUS TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════

def _active_request():
    req = _submitted(*ROLES)
    _approve(req, 1)
    _approve(req, 2)
    wf.advance_stage(req.id)
    return _reload(req.id)


class TestInactiveReactivate:
    def test_round_trip_keeps_stage(self):
        req = _active_request()
        stage = req.current_stage

        inactive = wf.mark_inactive(req.id, remarks="Waiting on vendor").request
        assert inactive.status == "inactive"
        assert inactive.marked_inactive_at is not None
        assert inactive.current_stage == stage

        active = wf.reactivate(req.id).request
        assert active.status == "active"
        assert active.marked_inactive_at is None
        assert active.current_stage == stage

    def test_mark_inactive_requires_active(self):
        req = _submitted(*ROLES)
        with pytest.raises(InvalidStateError):
            wf.mark_inactive(req.id)

    def test_reactivate_requires_inactive(self):
        req = _active_request()
        with pytest.raises(InvalidStateError):
            wf.reactivate(req.id)

    def test_inactive_request_is_frozen(self):
        req = _active_request()
        wf.mark_inactive(req.id)
        with pytest.raises(InvalidStateError):
            wf.advance_stage(req.id)
        with pytest.raises(InvalidStateError):
            _approve(_reload(req.id), 3)

    def test_mark_restored_requires_for_restoration(self):
        req = _active_request()
        with pytest.raises(InvalidStateError):
            wf.mark_restored(req.id)


class TestCloseAndCancel:
    def test_close_before_closeout_fails(self):
        req = _active_request()
        with pytest.raises(InvalidStateError):
            wf.close(req.id)

    def test_dmoc_close_after_approval(self):
        req = _submitted("Supervisor", request_type="dmoc")
        with pytest.raises(InvalidStateError):
            wf.close(req.id)
        _approve(req, 1)
        assert wf.close(req.id).request.status == "closed"

    def test_cancel_from_draft(self, draft):
        result = wf.cancel(draft.id, reason="Duplicate")
        assert result.request.status == "cancelled"
        assert result.request.cancellation_reason == "Duplicate"
        assert result.events[0].event_type == "request_cancelled"

    def test_cancel_is_terminal(self):
        req = _active_request()
        wf.cancel(req.id)
        with pytest.raises(InvalidStateError):
            wf.cancel(req.id)
        with pytest.raises(InvalidStateError):
            wf.reactivate(req.id)

    def test_closed_cannot_be_cancelled(self):
        req = _submitted("Supervisor", request_type="dmoc")
        _approve(req, 1)
        wf.close(req.id)
        with pytest.raises(InvalidStateError):
            wf.cancel(req.id)

    def test_available_actions(self, draft):
        assert set(wf.get_available_actions(draft)) == {
            "update_draft", "delete_draft", "submit", "cancel",
        }


# ═════════════════════════════════════════════════════════════════════════
# ACTIVITY LOG
# ═════════════════════════════════════════════════════════════════════════

class TestActivityLog:
    def test_one_row_per_transition(self):
        _levels("Supervisor", "DepartmentManager")
        req = _create()
        steps = [
            lambda: wf.submit(req.id, actor="originator.one"),
            lambda: _approve(req, 1),
            lambda: _approve(req, 2),
            lambda: wf.advance_stage(req.id),
            lambda: wf.mark_inactive(req.id),
            lambda: wf.reactivate(req.id),
            lambda: wf.cancel(req.id, reason="Scope merged elsewhere"),
        ]
        for expected, step in enumerate(steps, start=2):
            result = step()
            assert len(_activity(req.id)) == expected
            assert result.activity_id == _activity(req.id)[-1].id

        actions = [log.action for log in _activity(req.id)]
        assert actions == [
            "moc.create_draft", "moc.submit", "moc.approver_approved",
            "moc.approver_approved", "moc.advance_stage", "moc.mark_inactive",
            "moc.reactivate", "moc.cancel",
        ]
        assert all(log.timestamp is not None for log in _activity(req.id))

    def test_snapshots_capture_before_and_after(self):
        req = _submitted(*ROLES)
        log = _activity(req.id)[-1]
        assert log.action == "moc.submit"
        assert log.actor == "originator.one"
        assert log.before["status"] == "draft"
        assert log.before["control_number"] is None
        assert log.after["status"] == "submitted"
        assert log.after["control_number"] == req.control_number
        assert len(log.after["approvers"]) == 3

    def test_approval_row_records_role(self):
        req = _submitted(*ROLES)
        _approve(req, 1, remarks="ok")
        log = _activity(req.id)[-1]
        assert log.acting_role == "Supervisor"
        assert log.remarks == "ok"
        assert log.actor == "supervisor.user"

    def test_unknown_action_is_refused(self, draft):
        with pytest.raises(ValueError):
            write_activity(moc_request_id=draft.id, action="moc.teleport")
        assert len(_activity(draft.id)) == 1

    def test_get_activity_unknown_request(self):
        with pytest.raises(NotFoundError):
            wf.get_activity("missing")


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENCY
# ═════════════════════════════════════════════════════════════════════════

def _bump_version_after_load(monkeypatch):
    """Simulate another writer committing between our locked read and our write."""
    load = wf._load_for_update

    def _racing_load(request_id):
        req = load(request_id)
        db.session.execute(
            text("UPDATE moc_requests SET version_id = version_id + 1 WHERE id = :id"),
            {"id": request_id},
        )
        return req

    monkeypatch.setattr(wf, "_load_for_update", _racing_load)


class TestConcurrency:
    def test_concurrent_version_bump_rejects_slot_completion(self, monkeypatch):
        req = _submitted(*ROLES)
        slot_id = req.approvers[0].id
        _bump_version_after_load(monkeypatch)

        with pytest.raises(ConcurrencyConflictError) as exc:
            wf.complete_approver_slot(req.id, slot_id, True, acting_role="Supervisor")
        assert exc.value.action == "complete_approver_slot"
        assert isinstance(exc.value, InvalidStateError)

        monkeypatch.undo()
        req = _reload(req.id)
        assert req.approvers[0].is_completed is False
        assert req.approvers[0].is_approved is None
        assert [log.action for log in _activity(req.id)] == ["moc.create_draft", "moc.submit"]

    def test_concurrent_version_bump_rejects_stage_advance(self, monkeypatch):
        req = _submitted()
        _bump_version_after_load(monkeypatch)

        with pytest.raises(ConcurrencyConflictError):
            wf.advance_stage(req.id)

        monkeypatch.undo()
        assert _reload(req.id).current_stage == "validation"

    def test_control_number_race_rolls_back(self, monkeypatch):
        winner = _submitted(*ROLES)
        loser = _create()
        taken = (winner.control_number, winner.control_number_year, winner.control_number_seq)
        monkeypatch.setattr(wf, "generate_control_number", lambda req, now=None: taken)

        with pytest.raises(ConcurrencyConflictError):
            wf.submit(loser.id)

        loser = _reload(loser.id)
        assert loser.status == "draft"
        assert loser.control_number is None
        assert MocApprover.query.filter_by(moc_request_id=loser.id).count() == 0
        assert len(_activity(loser.id)) == 1

    def test_every_transition_bumps_version(self):
        req = _submitted(*ROLES)
        versions = [_reload(req.id).version_id]
        _approve(req, 1)
        versions.append(_reload(req.id).version_id)
        _approve(req, 2)
        versions.append(_reload(req.id).version_id)
        wf.advance_stage(req.id)
        versions.append(_reload(req.id).version_id)
        assert versions == sorted(set(versions))


# ═════════════════════════════════════════════════════════════════════════
# OVERDUE
# ═════════════════════════════════════════════════════════════════════════

def _active_temporary(end):
    req = _submitted(
        is_temporary=True,
        target_implementation_date=str(end - timedelta(days=30)),
        planned_end_date=str(end),
    )
    wf.advance_stage(req.id)
    return _reload(req.id)


class TestOverdue:
    def test_active_temporary_past_end_is_overdue(self):
        req = _active_temporary(date.today() - timedelta(days=1))
        assert req.status == "active"
        assert req.is_overdue is True
        assert req.to_dict()["is_overdue"] is True

    def test_end_date_today_is_not_overdue(self):
        req = _active_temporary(date.today())
        assert req.is_overdue is False

    def test_permanent_change_is_never_overdue(self):
        req = _submitted(target_implementation_date="2024-01-01")
        wf.advance_stage(req.id)
        assert _reload(req.id).is_overdue is False

    def test_inactive_request_is_not_overdue(self):
        req = _active_temporary(date.today() - timedelta(days=1))
        wf.mark_inactive(req.id)
        assert _reload(req.id).is_overdue is False

    def test_list_filter(self):
        overdue = _active_temporary(date.today() - timedelta(days=5))
        _active_temporary(date.today() + timedelta(days=5))
        _create(is_temporary=True, target_implementation_date="2024-01-01",
                planned_end_date="2024-02-01")

        items, total = wf.list_requests(overdue=True)
        assert total == 1
        assert items[0].id == overdue.id
        assert wf.list_requests()[1] == 3
