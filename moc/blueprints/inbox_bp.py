"""
MOC Workflow Service
Inbox Blueprint — open tasks and notifications per role.

Endpoints:
  GET  /api/v1/tasks?role=Supervisor
  GET  /api/v1/tasks/<id>
  POST /api/v1/tasks/<id>/complete
  POST /api/v1/tasks/<id>/cancel
  POST /api/v1/tasks/<id>/reassign
  GET  /api/v1/notifications?role=Supervisor&unread_only=true
  GET  /api/v1/notifications/unread-count?role=Supervisor
  POST /api/v1/notifications/<id>/read
  POST /api/v1/notifications/<id>/dismiss

role falls back to the X-Role header.
"""

from flask import Blueprint, jsonify, request

from moc.blueprints import current_actor, json_body, paginate_args, register_error_handlers
from moc.models.enums import RoleKey
from moc.services import task_service
from moc.services.notification_service import NotificationService
from moc.utils.helpers import parse_bool

inbox_bp = Blueprint("inbox_bp", __name__, url_prefix="/api/v1")
register_error_handlers(inbox_bp)


def _role():
    """Return (role_key, error_response)."""
    role = RoleKey.parse(request.args.get("role") or request.headers.get("X-Role"))
    if role is None:
        return None, (jsonify({"error": f"role is required. Must be one of: {[r.value for r in RoleKey]}"}), 400)
    return role.value, None


@inbox_bp.route("/tasks", methods=["GET"])
def list_tasks():
    role, err = _role()
    if err:
        return err
    limit, offset = paginate_args()
    items, total = task_service.list_open_tasks(role, limit=limit, offset=offset)
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@inbox_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(task_service.get_task(task_id).to_dict())


@inbox_bp.route("/tasks/<int:task_id>/complete", methods=["POST"])
def complete_task(task_id):
    """Body: {remarks?}"""
    task = task_service.complete_task(task_id, by=current_actor(), remarks=json_body().get("remarks"))
    return jsonify(task.to_dict())


@inbox_bp.route("/tasks/<int:task_id>/cancel", methods=["POST"])
def cancel_task(task_id):
    task = task_service.cancel_task(task_id, by=current_actor(), remarks=json_body().get("remarks"))
    return jsonify(task.to_dict())


@inbox_bp.route("/tasks/<int:task_id>/reassign", methods=["POST"])
def reassign_task(task_id):
    """Body: {role_key}"""
    role_key = json_body().get("role_key")
    if not role_key:
        return jsonify({"error": "role_key is required"}), 400
    task = task_service.reassign_task(task_id, role_key, by=current_actor())
    return jsonify(task.to_dict())


@inbox_bp.route("/notifications", methods=["GET"])
def list_notifications():
    role, err = _role()
    if err:
        return err
    try:
        unread_only = parse_bool(request.args.get("unread_only"), default=False)
    except ValueError:
        return jsonify({"error": "unread_only must be true or false"}), 400
    limit, offset = paginate_args()
    items, total = NotificationService.list_for_role(
        role, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@inbox_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    role, err = _role()
    if err:
        return err
    return jsonify({"role": role, "unread_count": NotificationService.unread_count(role)})


@inbox_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_read(nid):
    return jsonify(NotificationService.mark_read(nid).to_dict())


@inbox_bp.route("/notifications/<int:nid>/dismiss", methods=["POST"])
def dismiss(nid):
    return jsonify(NotificationService.dismiss(nid).to_dict())
