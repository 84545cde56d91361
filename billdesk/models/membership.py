"""Membership model.

Join table linking users to accounts with a role. A row with a null
user_id is a pending invitation, addressed by invitation_email and claimed
through invitation_token.

Exactly one owner per account is enforced by a partial unique index as
well as by MembershipPolicy.
"""

import secrets
import uuid
from datetime import timedelta

from billdesk.extensions import db
from billdesk.utils import as_utc, utcnow

INVITATION_EXPIRY_DAYS = 7


class Membership(db.Model):
    __tablename__ = "memberships"

    ROLES = ["owner", "admin", "member", "guest"]
    ROLE_RANK = {"owner": 4, "admin": 3, "member": 2, "guest": 1}

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    account_id = db.Column(
        db.String(36), db.ForeignKey("accounts.id"), nullable=False, index=True
    )
    role = db.Column(db.String(50), nullable=False, default="member")
    invitation_email = db.Column(db.String(255), nullable=True)
    invitation_token = db.Column(db.String(64), unique=True, nullable=True)
    invited_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    invited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "account_id", name="uq_user_account"),
        db.Index(
            "uq_memberships_single_owner",
            "account_id",
            unique=True,
            sqlite_where=db.text("role = 'owner'"),
            postgresql_where=db.text("role = 'owner'"),
        ),
    )

    # --- Relationships ---
    user = db.relationship(
        "User", back_populates="memberships", foreign_keys=[user_id]
    )
    invited_by = db.relationship("User", foreign_keys=[invited_by_id])
    account = db.relationship("Account", back_populates="memberships")

    @classmethod
    def new_invitation(cls, account_id, email, role, invited_by_id=None):
        return cls(
            account_id=account_id,
            role=role,
            invitation_email=email.lower().strip(),
            invitation_token=secrets.token_urlsafe(32),
            invited_by_id=invited_by_id,
            invited_at=utcnow(),
        )

    @property
    def rank(self):
        return self.ROLE_RANK.get(self.role, 0)

    @property
    def is_owner(self):
        return self.role == "owner"

    @property
    def is_pending(self):
        """Invitation sent but not yet accepted."""
        return self.accepted_at is None and self.invitation_email is not None

    @property
    def is_invitation_expired(self):
        if not self.is_pending or self.invited_at is None:
            return False
        expires = as_utc(self.invited_at) + timedelta(days=INVITATION_EXPIRY_DAYS)
        return utcnow() > expires

    def accept(self, user):
        self.user_id = user.id
        self.accepted_at = utcnow()
        self.invitation_token = None

    def __repr__(self):
        return f"<Membership user={self.user_id} account={self.account_id} ({self.role})>"
