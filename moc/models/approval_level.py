"""
MOC Workflow Service
ApprovalLevel — admin-maintained template for approver chains.

The template is read once per submission; approver slots copy what they
need, so editing a level never changes a request already in flight.
"""

from datetime import datetime, timezone

from moc.models import db


class ApprovalLevel(db.Model):
    """
    One step of the approval-chain template.

    order need not be contiguous; iteration by (order, id) is the effective
    approval order. Inactive levels are skipped when a chain is built.
    """

    __tablename__ = "approval_levels"

    id = db.Column(db.Integer, primary_key=True)
    order = db.Column(db.Integer, nullable=False, index=True, comment="1-based position")
    role_key = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    modified_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order": self.order,
            "role_key": self.role_key,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalLevel {self.order}: {self.role_key} active={self.is_active}>"
