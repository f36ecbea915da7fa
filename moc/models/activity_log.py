"""
MOC Workflow Service
Activity log — append-only trail of workflow actions.

Models:
    - ActivityLog: one immutable row per successful workflow action, with
      before/after JSON snapshots of the request.
"""

import json
from datetime import datetime, timezone

from moc.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ACTIONS = {
    "moc.create_draft",
    "moc.update_draft",
    "moc.submit",
    "moc.approver_approved",
    "moc.approver_rejected",
    "moc.advance_stage",
    "moc.mark_inactive",
    "moc.reactivate",
    "moc.mark_restored",
    "moc.close",
    "moc.cancel",
}


def _loads(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


class ActivityLog(db.Model):
    """
    Immutable activity row.

    Rows are never updated or deleted on their own; they only go away with
    their parent request (cascade).
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_request_ts", "moc_request_id", "timestamp"),
        db.Index("idx_activity_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False,
    )

    action = db.Column(db.String(60), nullable=False, comment="moc.submit | moc.advance_stage | …")
    actor = db.Column(db.String(150), nullable=False, default="system")
    acting_role = db.Column(db.String(100), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    before_snapshot = db.Column(db.Text, nullable=True, comment="JSON of the request before the action")
    after_snapshot = db.Column(db.Text, nullable=True, comment="JSON of the request after the action")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def before(self):
        return _loads(self.before_snapshot)

    @property
    def after(self):
        return _loads(self.after_snapshot)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "action": self.action,
            "actor": self.actor,
            "acting_role": self.acting_role,
            "remarks": self.remarks,
            "before": self.before,
            "after": self.after,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.moc_request_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(
    *,
    moc_request_id: str,
    action: str,
    actor: str = "system",
    acting_role: str | None = None,
    before: dict | None = None,
    after: dict | None = None,
    remarks: str | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back with the action.
    """
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown activity action: {action}")
    log = ActivityLog(
        moc_request_id=moc_request_id,
        action=action,
        actor=actor or "system",
        acting_role=acting_role,
        remarks=remarks,
        before_snapshot=json.dumps(before, default=str) if before is not None else None,
        after_snapshot=json.dumps(after, default=str) if after is not None else None,
    )
    db.session.add(log)
    db.session.flush()
    return log


def list_activity(moc_request_id: str) -> list[ActivityLog]:
    """Return the request's activity, oldest first."""
    return (
        ActivityLog.query
        .filter_by(moc_request_id=moc_request_id)
        .order_by(ActivityLog.timestamp, ActivityLog.id)
        .all()
    )
