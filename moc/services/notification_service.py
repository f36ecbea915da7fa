"""
MOC Workflow Service
Notification Service.

Central service for creating and querying role-targeted notifications.
Creation is idempotent on dedupe_key so workflow events can be delivered
more than once.
"""

from moc.core.exceptions import NotFoundError
from moc.models import db
from moc.models.enums import NotificationStatus
from moc.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create_once(*, dedupe_key, type, message, recipient_role_key,
                    moc_request_id=None, recipient=None):
        """
        Create a notification unless one with *dedupe_key* already exists.

        Does not commit; the caller owns the transaction. A concurrent
        dispatcher racing on the same key surfaces as IntegrityError at
        flush or commit.

        Returns:
            (notification, created); created is False for a duplicate.
        """
        existing = Notification.query.filter_by(dedupe_key=dedupe_key).first()
        if existing:
            return existing, False

        notif = Notification(
            dedupe_key=dedupe_key,
            type=type,
            message=message,
            recipient_role_key=recipient_role_key,
            recipient=recipient,
            moc_request_id=moc_request_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif, True

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_role(role_key, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a role, newest first. Dismissed ones are hidden.
        """
        q = Notification.query.filter(
            Notification.recipient_role_key == role_key,
            Notification.status != NotificationStatus.DISMISSED.value,
        )
        if unread_only:
            q = q.filter_by(status=NotificationStatus.UNREAD.value)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(role_key):
        """Return count of unread notifications."""
        return Notification.query.filter_by(
            recipient_role_key=role_key, status=NotificationStatus.UNREAD.value,
        ).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if not notif:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def dismiss(notification_id):
        """Hide a notification from the role's list."""
        notif = db.session.get(Notification, notification_id)
        if not notif:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.dismiss()
        db.session.commit()
        return notif
