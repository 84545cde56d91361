"""User and session models.

Stores authentication credentials and profile info. Flask-Login
integration via UserMixin: the id handed to Flask-Login is the opaque
token of a UserSession row, never the user's primary key, so deleting the
row revokes the login.
"""

import secrets
import uuid
from datetime import timedelta

from flask_login import UserMixin

from billdesk.extensions import db
from billdesk.utils import as_utc, utcnow


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    is_admin = db.Column(db.Boolean, default=False)  # platform owner, sees metrics
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    memberships = db.relationship(
        "Membership",
        back_populates="user",
        lazy="dynamic",
        foreign_keys="Membership.user_id",
    )
    sessions = db.relationship(
        "UserSession",
        back_populates="user",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    # Set by auth_service when the user is bound to a live session.
    session_token = None

    def get_id(self):
        return self.session_token

    def membership_for(self, account_id):
        """Accepted membership of this user in the given account, or None."""
        if account_id is None:
            return None
        from billdesk.models.membership import Membership

        return (
            self.memberships
            .filter(
                Membership.account_id == account_id,
                Membership.accepted_at.isnot(None),
            )
            .first()
        )

    def first_account(self):
        """The earliest joined non-discarded account, or None."""
        from billdesk.models.account import Account
        from billdesk.models.membership import Membership

        return (
            Account.kept()
            .join(Membership, Membership.account_id == Account.id)
            .filter(
                Membership.user_id == self.id,
                Membership.accepted_at.isnot(None),
            )
            .order_by(Membership.created_at, Account.created_at)
            .first()
        )

    def __repr__(self):
        return f"<User {self.email}>"


class UserSession(db.Model):
    __tablename__ = "user_sessions"

    DEFAULT_MAX_AGE_DAYS = 30

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token = db.Column(
        db.String(64),
        unique=True,
        nullable=False,
        default=lambda: secrets.token_urlsafe(32),
    )
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    last_active_at = db.Column(
        db.DateTime(timezone=True), nullable=True, default=utcnow
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="sessions")

    def is_expired(self, max_age_days=DEFAULT_MAX_AGE_DAYS):
        if self.created_at is None:
            return False
        return as_utc(self.created_at) < utcnow() - timedelta(days=max_age_days)

    def touch(self):
        self.last_active_at = utcnow()

    @property
    def device_info(self):
        agent = (self.user_agent or "").lower()
        for needle, label in (
            ("iphone", "iPhone"),
            ("ipad", "iPad"),
            ("android", "Android"),
            ("mac", "Mac"),
            ("windows", "Windows"),
            ("linux", "Linux"),
        ):
            if needle in agent:
                return label
        return "Unknown"

    @property
    def browser_info(self):
        agent = (self.user_agent or "").lower()
        # Edge and Chrome both advertise Safari; check the specific ones first.
        for needle, label in (
            ("edg", "Edge"),
            ("opr", "Opera"),
            ("chrome", "Chrome"),
            ("firefox", "Firefox"),
            ("safari", "Safari"),
        ):
            if needle in agent:
                return label
        return "Unknown"

    def __repr__(self):
        return f"<UserSession user={self.user_id}>"
