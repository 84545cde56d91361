"""Tests for the auth blueprint and the server-side session store.

Covers:
- Registration creates a user, an owned trialing account and an audit event
- Registration validation (duplicate email, short password, missing name)
- Login / logout, including revocation of the session row
- Deleting a UserSession row logs the browser out
- Session listing and revocation
- Account switching (members only)
- Invitation lookup and acceptance
- Expired session sweep
"""

from datetime import timedelta

from billdesk.extensions import db
from billdesk.models.account import Account
from billdesk.models.audit import AuditEvent
from billdesk.models.membership import Membership
from billdesk.models.user import User, UserSession
from billdesk.services import auth_service
from billdesk.utils import utcnow


class TestRegistration:
    """Tests for POST /auth/register."""

    def test_register_creates_user_and_owned_account(self, client, seed_data):
        """A new user owns a fresh trialing account and is signed in."""
        resp = client.post("/auth/register", json={
            "email": "New.Person@Example.com",
            "password": "longenough1",
            "full_name": "New Person",
            "account_name": "Person Co",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["user"]["email"] == "new.person@example.com"
        assert len(data["user"]["accounts"]) == 1
        assert data["user"]["accounts"][0]["role"] == "owner"

        account = Account.query.filter_by(name="Person Co").first()
        assert account is not None
        assert account.subscription_status == "trialing"
        assert account.plan_id == seed_data["plans"]["free"].id
        assert data["user"]["current_account_id"] == account.id

        me = client.get("/auth/me")
        assert me.status_code == 200

    def test_register_writes_audit_event(self, client, seed_data):
        client.post("/auth/register", json={
            "email": "audit@example.com",
            "password": "longenough1",
            "full_name": "Audit Me",
        })
        user = User.query.filter_by(email="audit@example.com").first()
        event = AuditEvent.query.filter_by(action="user.registered", actor_user_id=user.id).first()
        assert event is not None
        assert event.metadata_["email"] == "audit@example.com"

    def test_register_default_account_name(self, client, seed_data):
        client.post("/auth/register", json={
            "email": "solo@example.com",
            "password": "longenough1",
            "full_name": "Solo",
        })
        assert Account.query.filter_by(name="Solo's Account").first() is not None

    def test_duplicate_email_rejected(self, client, seed_data):
        resp = client.post("/auth/register", json={
            "email": "owner@acme.test",
            "password": "longenough1",
            "full_name": "Again",
        })
        assert resp.status_code == 422
        assert "email" in resp.get_json()["errors"]

    def test_short_password_and_missing_name(self, client, seed_data):
        resp = client.post("/auth/register", json={
            "email": "short@example.com",
            "password": "short",
        })
        assert resp.status_code == 422
        errors = resp.get_json()["errors"]
        assert "password" in errors
        assert "full_name" in errors
        assert User.query.filter_by(email="short@example.com").first() is None

    def test_html_stripped_from_name(self, client, seed_data):
        client.post("/auth/register", json={
            "email": "xss@example.com",
            "password": "longenough1",
            "full_name": "<script>alert(1)</script>Eve",
        })
        user = User.query.filter_by(email="xss@example.com").first()
        assert "<script>" not in user.full_name
        assert user.full_name.endswith("Eve")


class TestLogin:
    """Tests for POST /auth/login and /auth/logout."""

    def test_login_success_creates_session_row(self, client, seed_data, login):
        resp = login(client, "owner@acme.test")
        data = resp.get_json()
        assert data["user"]["current_account_id"] == seed_data["acme"].id
        assert UserSession.query.filter_by(user_id=seed_data["owner"].id).count() == 1

    def test_login_wrong_password(self, client, seed_data):
        resp = client.post("/auth/login", json={
            "email": "owner@acme.test", "password": "wrong-password",
        })
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password."

    def test_login_unknown_email(self, client, seed_data):
        resp = client.post("/auth/login", json={
            "email": "nobody@example.com", "password": "whatever123",
        })
        assert resp.status_code == 401

    def test_login_deactivated_user(self, client, seed_data):
        seed_data["member"].is_active = False
        db.session.commit()
        resp = client.post("/auth/login", json={
            "email": "member@acme.test", "password": "password123",
        })
        assert resp.status_code == 401
        assert "deactivated" in resp.get_json()["error"]

    def test_logout_revokes_session_row(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/auth/logout")
        assert resp.status_code == 200
        assert UserSession.query.filter_by(user_id=seed_data["owner"].id).count() == 0
        assert client.get("/auth/me").status_code == 401

    def test_me_requires_login(self, client, seed_data):
        resp = client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Unauthorized"


class TestServerSideSessions:
    """The cookie holds only a token; the row is the session."""

    def test_deleting_row_logs_out(self, client, seed_data, login):
        login(client, "owner@acme.test")
        assert client.get("/auth/me").status_code == 200

        UserSession.query.filter_by(user_id=seed_data["owner"].id).delete()
        db.session.commit()

        assert client.get("/auth/me").status_code == 401

    def test_two_browsers_two_sessions(self, app, seed_data, login):
        first, second = app.test_client(), app.test_client()
        login(first, "owner@acme.test")
        login(second, "owner@acme.test")
        assert UserSession.query.filter_by(user_id=seed_data["owner"].id).count() == 2

        first.post("/auth/logout")
        assert first.get("/auth/me").status_code == 401
        assert second.get("/auth/me").status_code == 200

    def test_list_and_revoke_sessions(self, app, seed_data, login):
        first, second = app.test_client(), app.test_client()
        login(first, "owner@acme.test")
        login(second, "owner@acme.test")

        resp = first.get("/auth/sessions")
        sessions = resp.get_json()["sessions"]
        assert len(sessions) == 2
        assert sum(1 for s in sessions if s["current"]) == 1

        other = next(s for s in sessions if not s["current"])
        assert first.delete(f"/auth/sessions/{other['id']}").status_code == 200
        assert second.get("/auth/me").status_code == 401

    def test_cannot_revoke_another_users_session(self, app, seed_data, login):
        mine, theirs = app.test_client(), app.test_client()
        login(mine, "owner@acme.test")
        login(theirs, "owner@globex.test")
        foreign = UserSession.query.filter_by(user_id=seed_data["outsider"].id).first()

        assert mine.delete(f"/auth/sessions/{foreign.id}").status_code == 404
        assert db.session.get(UserSession, foreign.id) is not None

    def test_expired_but_unswept_session_still_valid(self, client, seed_data, login):
        login(client, "owner@acme.test")
        row = UserSession.query.filter_by(user_id=seed_data["owner"].id).first()
        row.created_at = utcnow() - timedelta(days=90)
        db.session.commit()
        assert client.get("/auth/me").status_code == 200

    def test_cleanup_expired_sessions(self, seed_data):
        now = utcnow()
        owner_id = seed_data["owner"].id
        db.session.add_all([
            UserSession(user_id=owner_id, created_at=now - timedelta(days=45), last_active_at=now),
            UserSession(user_id=owner_id, created_at=now - timedelta(days=2),
                        last_active_at=now - timedelta(days=10)),
            UserSession(user_id=owner_id, created_at=now, last_active_at=now),
        ])
        db.session.commit()

        result = auth_service.cleanup_expired_sessions(expiry_days=30, inactive_days=7)
        assert result == {"deleted_count": 2, "old_sessions": 1, "inactive_sessions": 1}
        assert UserSession.query.count() == 1


class TestAccountSwitching:
    """Tests for POST /auth/accounts/<id>/switch."""

    def test_switch_to_non_member_account_forbidden(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post(f"/auth/accounts/{seed_data['globex'].id}/switch")
        assert resp.status_code == 403
        assert client.get("/account").get_json()["account"]["id"] == seed_data["acme"].id

    def test_switch_between_own_accounts(self, client, seed_data, login):
        db.session.add(Membership(
            user_id=seed_data["outsider"].id,
            account_id=seed_data["acme"].id,
            role="member",
            accepted_at=utcnow(),
        ))
        db.session.commit()
        login(client, "owner@globex.test")

        resp = client.post(f"/auth/accounts/{seed_data['acme'].id}/switch")
        assert resp.status_code == 200
        assert client.get("/account").get_json()["account"]["id"] == seed_data["acme"].id

    def test_switch_to_discarded_account_forbidden(self, client, seed_data, login):
        seed_data["globex"].discard()
        db.session.commit()
        login(client, "owner@globex.test")
        resp = client.post(f"/auth/accounts/{seed_data['globex'].id}/switch")
        assert resp.status_code == 403


class TestInvitations:
    """Tests for /auth/invitations/<token>/accept."""

    def _invite(self, seed_data, email="newbie@example.com", role="member"):
        membership = Membership.new_invitation(
            seed_data["acme"].id, email, role, invited_by_id=seed_data["owner"].id
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    def _register(self, client, email):
        return client.post("/auth/register", json={
            "email": email, "password": "longenough1", "full_name": "Newbie",
        })

    def test_show_invitation(self, client, seed_data):
        invitation = self._invite(seed_data)
        resp = client.get(f"/auth/invitations/{invitation.invitation_token}/accept")
        assert resp.status_code == 200
        assert resp.get_json()["invitation"]["account_name"] == "Acme"

    def test_unknown_token(self, client, seed_data):
        resp = client.get("/auth/invitations/not-a-token/accept")
        assert resp.status_code == 404

    def test_expired_invitation(self, client, seed_data):
        invitation = self._invite(seed_data)
        invitation.invited_at = utcnow() - timedelta(days=8)
        db.session.commit()
        resp = client.get(f"/auth/invitations/{invitation.invitation_token}/accept")
        assert resp.status_code == 404
        assert "expired" in resp.get_json()["error"]

    def test_accept_joins_account_and_switches(self, client, seed_data):
        invitation = self._invite(seed_data)
        token = invitation.invitation_token
        self._register(client, "newbie@example.com")

        resp = client.post(f"/auth/invitations/{token}/accept")
        assert resp.status_code == 200
        assert resp.get_json()["role"] == "member"

        db.session.refresh(invitation)
        assert invitation.accepted_at is not None
        assert invitation.invitation_token is None
        assert client.get("/account").get_json()["account"]["id"] == seed_data["acme"].id

    def test_accept_with_other_email_rejected(self, client, seed_data, login):
        invitation = self._invite(seed_data)
        login(client, "owner@globex.test")
        resp = client.post(f"/auth/invitations/{invitation.invitation_token}/accept")
        assert resp.status_code == 422
        assert invitation.accepted_at is None

    def test_accept_requires_login(self, client, seed_data):
        invitation = self._invite(seed_data)
        resp = client.post(f"/auth/invitations/{invitation.invitation_token}/accept")
        assert resp.status_code == 401
