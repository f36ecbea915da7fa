"""
MOC Workflow Service
Notification domain model.

Models:
    - Notification: in-app message addressed to a role (and optionally a
      named recipient), with read/dismiss tracking.
"""

from datetime import datetime, timezone

from moc.models import db
from moc.models.enums import NotificationStatus


class Notification(db.Model):
    """
    In-app notification entity.

    One record per target role per event; dedupe_key keeps redelivered
    events from creating duplicates.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_role_status", "recipient_role_key", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False, comment="Workflow event type")
    message = db.Column(db.Text, nullable=False, default="")

    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    recipient_role_key = db.Column(db.String(100), nullable=False)
    recipient = db.Column(db.String(150), nullable=True, comment="Named user, if known")

    status = db.Column(db.String(20), nullable=False, default=NotificationStatus.UNREAD.value)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    dedupe_key = db.Column(db.String(200), nullable=False, unique=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def mark_read(self):
        self.status = NotificationStatus.READ.value
        self.read_at = datetime.now(timezone.utc)

    def dismiss(self):
        self.status = NotificationStatus.DISMISSED.value

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "moc_request_id": self.moc_request_id,
            "recipient_role_key": self.recipient_role_key,
            "recipient": self.recipient,
            "status": self.status,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} → {self.recipient_role_key}>"
