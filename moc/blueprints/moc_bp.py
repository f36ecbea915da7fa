"""
MOC Workflow Service
MOC Request Blueprint.

Endpoint groups:
  Requests        GET/POST          /api/v1/moc-requests
                  GET/PUT/DELETE    /api/v1/moc-requests/<id>
  Workflow        POST /api/v1/moc-requests/<id>/submit
                  POST /api/v1/moc-requests/<id>/approvers/<slot_id>/complete
                  POST /api/v1/moc-requests/<id>/advance-stage
                  POST /api/v1/moc-requests/<id>/mark-inactive
                  POST /api/v1/moc-requests/<id>/reactivate
                  POST /api/v1/moc-requests/<id>/mark-restored
                  POST /api/v1/moc-requests/<id>/close
                  POST /api/v1/moc-requests/<id>/cancel
  History         GET  /api/v1/moc-requests/<id>/activity
                  GET  /api/v1/moc-requests/<id>/tasks

Actor comes from X-User; the acting role for approvals from the body's
acting_role or the X-Role header. Service layer owns all commits.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from moc.blueprints import current_actor, json_body, paginate_args, register_error_handlers
from moc.models.enums import MocStage, MocStatus, RequestType
from moc.services import moc_workflow, task_service
from moc.utils.helpers import parse_bool

moc_bp = Blueprint("moc_bp", __name__, url_prefix="/api/v1")
register_error_handlers(moc_bp)

_FILTERS = {
    "status": MocStatus,
    "request_type": RequestType,
    "stage": MocStage,
}


def _detail(req) -> dict:
    data = req.to_dict()
    data["available_actions"] = moc_workflow.get_available_actions(req)
    return data


# ═════════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════════


@moc_bp.route("/moc-requests", methods=["GET"])
def list_requests():
    """List requests, newest first.

    Query params: status, request_type, stage, originator, overdue, limit, offset
    """
    filters = {}
    for name, enum_cls in _FILTERS.items():
        value = request.args.get(name)
        if not value:
            continue
        if value not in {e.value for e in enum_cls}:
            return jsonify({"error": f"Invalid {name}. Must be one of: {[e.value for e in enum_cls]}"}), 400
        filters[name] = value
    try:
        overdue = parse_bool(request.args.get("overdue"), default=False)
    except ValueError:
        return jsonify({"error": "overdue must be true or false"}), 400
    limit, offset = paginate_args()
    items, total = moc_workflow.list_requests(
        originator=request.args.get("originator"), overdue=overdue,
        limit=limit, offset=offset, **filters,
    )
    return jsonify({
        "items": [r.to_dict(include_children=False) for r in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@moc_bp.route("/moc-requests", methods=["POST"])
def create_request():
    """Create a draft. Body: editable fields plus optional request_type."""
    result = moc_workflow.create_draft(json_body(), actor=current_actor())
    return jsonify(result.to_dict()), 201


@moc_bp.route("/moc-requests/<request_id>", methods=["GET"])
def get_request(request_id):
    return jsonify(_detail(moc_workflow.get_request(request_id)))


@moc_bp.route("/moc-requests/<request_id>", methods=["PUT", "PATCH"])
def update_request(request_id):
    result = moc_workflow.update_draft(request_id, json_body(), actor=current_actor())
    return jsonify(result.to_dict())


@moc_bp.route("/moc-requests/<request_id>", methods=["DELETE"])
def delete_request(request_id):
    moc_workflow.delete_draft(request_id, actor=current_actor())
    return jsonify({"deleted": True, "id": request_id})


# ═════════════════════════════════════════════════════════════════════════
# Workflow actions
# ═════════════════════════════════════════════════════════════════════════


@moc_bp.route("/moc-requests/<request_id>/submit", methods=["POST"])
def submit_request(request_id):
    result = moc_workflow.submit(request_id, actor=current_actor())
    return jsonify(result.to_dict())


@moc_bp.route("/moc-requests/<request_id>/approvers/<slot_id>/complete", methods=["POST"])
def complete_slot(request_id, slot_id):
    """Record an approver decision.

    Body: {approved: bool, remarks?, acting_role?}
    acting_role falls back to the X-Role header.
    """
    data = json_body()
    if "approved" not in data:
        return jsonify({"error": "approved is required"}), 400
    acting_role = data.get("acting_role") or request.headers.get("X-Role")
    result = moc_workflow.complete_approver_slot(
        request_id,
        slot_id,
        data["approved"],
        remarks=data.get("remarks"),
        acting_role=acting_role,
        actor=current_actor(),
    )
    return jsonify(result.to_dict())


@moc_bp.route("/moc-requests/<request_id>/advance-stage", methods=["POST"])
def advance_stage(request_id):
    result = moc_workflow.advance_stage(
        request_id, remarks=json_body().get("remarks"), actor=current_actor(),
    )
    return jsonify(result.to_dict())


def _status_action(operation, request_id):
    result = operation(request_id, remarks=json_body().get("remarks"), actor=current_actor())
    return jsonify(result.to_dict())


@moc_bp.route("/moc-requests/<request_id>/mark-inactive", methods=["POST"])
def mark_inactive(request_id):
    """Body: {remarks?}"""
    return _status_action(moc_workflow.mark_inactive, request_id)


@moc_bp.route("/moc-requests/<request_id>/reactivate", methods=["POST"])
def reactivate(request_id):
    return _status_action(moc_workflow.reactivate, request_id)


@moc_bp.route("/moc-requests/<request_id>/mark-restored", methods=["POST"])
def mark_restored(request_id):
    return _status_action(moc_workflow.mark_restored, request_id)


@moc_bp.route("/moc-requests/<request_id>/close", methods=["POST"])
def close_request(request_id):
    return _status_action(moc_workflow.close, request_id)


@moc_bp.route("/moc-requests/<request_id>/cancel", methods=["POST"])
def cancel_request(request_id):
    """Body: {reason?}"""
    result = moc_workflow.cancel(request_id, reason=json_body().get("reason"), actor=current_actor())
    return jsonify(result.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# History
# ═════════════════════════════════════════════════════════════════════════


@moc_bp.route("/moc-requests/<request_id>/activity", methods=["GET"])
def request_activity(request_id):
    logs = moc_workflow.get_activity(request_id)
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)})


@moc_bp.route("/moc-requests/<request_id>/tasks", methods=["GET"])
def request_tasks(request_id):
    moc_workflow.get_request(request_id)
    tasks = task_service.list_request_tasks(request_id)
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})
