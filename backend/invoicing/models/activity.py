from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z


class ActivityLog(db.Model):
    """
    Append-only audit trail.

    user_id NULL marks a system-originated entry. Rows are never updated and
    only removed in bulk by age-based retention pruning.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_created_at", "created_at"),
        db.Index("ix_activity_logs_user_created", "user_id", "created_at"),
        db.Index("ix_activity_logs_entity_type", "entity_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    action = db.Column(db.String(100), nullable=False)
    entity_type = db.Column(db.String(50), nullable=True)
    entity_id = db.Column(db.String(64), nullable=True)
    details = db.Column(db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self, username: str | None = None, full_name: str | None = None) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": username,
            "full_name": full_name,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }
