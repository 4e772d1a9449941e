from __future__ import annotations

from ..extensions import db
from ..permissions import permission_map
from invoicing.time_utils import to_utc_z

class User(db.Model):
    """
    User accounts for authentication and attribution.

    WHY: Every action must be attributable. No shared logins.

    PERMISSIONS: One boolean column per feature flag (see permissions.Permission).
    role="admin" implies every flag.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(50), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True, unique=True)
    full_name = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default="user")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    perm_clients = db.Column(db.Boolean, nullable=False, default=True)
    perm_products = db.Column(db.Boolean, nullable=False, default=True)
    perm_invoices = db.Column(db.Boolean, nullable=False, default=True)
    perm_deliveries = db.Column(db.Boolean, nullable=False, default=True)
    perm_statistics = db.Column(db.Boolean, nullable=False, default=True)
    perm_warehouse = db.Column(db.Boolean, nullable=False, default=True)
    perm_edit_user = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "permissions": permission_map(self),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Bearer session tokens.

    SECURITY: Only the SHA-256 hash of the token is stored. The plaintext
    token is returned to the client once at login.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_revoked", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship(
        "User",
        backref=db.backref("sessions", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_reason": self.revoked_reason,
        }
