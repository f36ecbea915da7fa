"""
MOC Workflow Service
Approval Level Blueprint — admin CRUD for the approver-chain template.

Endpoints:
  GET    /api/v1/approval-levels?active_only=true
  POST   /api/v1/approval-levels
  GET    /api/v1/approval-levels/<id>
  PUT    /api/v1/approval-levels/<id>
  DELETE /api/v1/approval-levels/<id>
"""

from flask import Blueprint, jsonify, request

from moc.blueprints import json_body, register_error_handlers
from moc.services import approval_level_service as levels
from moc.utils.helpers import parse_bool

approval_level_bp = Blueprint("approval_level_bp", __name__, url_prefix="/api/v1")
register_error_handlers(approval_level_bp)


@approval_level_bp.route("/approval-levels", methods=["GET"])
def list_levels():
    try:
        active_only = parse_bool(request.args.get("active_only"), default=False)
    except ValueError:
        return jsonify({"error": "active_only must be true or false"}), 400
    items = levels.list_levels(active_only=active_only)
    return jsonify({"items": [lvl.to_dict() for lvl in items], "total": len(items)})


@approval_level_bp.route("/approval-levels", methods=["POST"])
def create_level():
    """Body: {role_key, order?, is_active?}"""
    data = json_body()
    level = levels.create_level(data)
    return jsonify(level.to_dict()), 201


@approval_level_bp.route("/approval-levels/<int:level_id>", methods=["GET"])
def get_level(level_id):
    return jsonify(levels.get_level(level_id).to_dict())


@approval_level_bp.route("/approval-levels/<int:level_id>", methods=["PUT", "PATCH"])
def update_level(level_id):
    data = json_body()
    return jsonify(levels.update_level(level_id, data).to_dict())


@approval_level_bp.route("/approval-levels/<int:level_id>", methods=["DELETE"])
def delete_level(level_id):
    levels.delete_level(level_id)
    return jsonify({"deleted": True, "id": level_id})
