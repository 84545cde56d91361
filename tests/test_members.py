"""Tests for the members blueprint and membership service.

Covers:
- Listing members and pending invitations
- Inviting (validation, duplicates, role limits) and the invitation job
- Role changes and their limits
- Removing members, cancelling invitations, leaving
- Ownership transfer and the single-owner rule
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from billdesk.extensions import db
from billdesk.models.membership import Membership
from billdesk.utils import utcnow

INVITE_JOB = "billdesk.jobs.send_account_invitation.delay"


class TestListMembers:
    def test_lists_every_role(self, client, seed_data, login):
        login(client, "guest@acme.test")
        resp = client.get("/members")
        assert resp.status_code == 200
        roles = sorted(m["role"] for m in resp.get_json()["members"])
        assert roles == ["admin", "guest", "member", "owner"]

    def test_assignable_roles(self, client, seed_data, login):
        login(client, "owner@acme.test")
        assert client.get("/members").get_json()["assignable_roles"] == ["admin", "member", "guest"]
        client.post("/auth/logout")
        login(client, "admin@acme.test")
        assert client.get("/members").get_json()["assignable_roles"] == ["member", "guest"]


class TestInvite:
    def test_invite_creates_pending_row_and_enqueues(self, client, seed_data, login):
        login(client, "admin@acme.test")
        with patch(INVITE_JOB) as mock_delay:
            resp = client.post("/members", json={"email": "New@Example.com", "role": "member"})
        assert resp.status_code == 201
        member = resp.get_json()["member"]
        assert member["pending"] is True
        assert member["email"] == "new@example.com"
        mock_delay.assert_called_once_with(member["id"])

    def test_invite_runs_job_inline(self, client, seed_data, login):
        login(client, "owner@acme.test")
        with patch("billdesk.services.mailers.send_invitation_email") as mock_send:
            client.post("/members", json={"email": "inline@example.com", "role": "guest"})
        mock_send.assert_called_once()
        assert mock_send.call_args[0][0].invitation_email == "inline@example.com"

    def test_enqueue_failure_keeps_invitation(self, client, seed_data, login):
        login(client, "owner@acme.test")
        with patch(INVITE_JOB, side_effect=ConnectionError("broker down")):
            resp = client.post("/members", json={"email": "later@example.com"})
        assert resp.status_code == 201
        assert Membership.query.filter_by(invitation_email="later@example.com").count() == 1

    def test_admin_cannot_invite_admin(self, client, seed_data, login):
        login(client, "admin@acme.test")
        resp = client.post("/members", json={"email": "boss@example.com", "role": "admin"})
        assert resp.status_code == 422
        assert resp.get_json()["errors"]["role"] == "Invalid role selected."

    def test_nobody_invites_an_owner(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/members", json={"email": "boss@example.com", "role": "owner"})
        assert resp.status_code == 422

    def test_invalid_email(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/members", json={"email": "nope"})
        assert "email" in resp.get_json()["errors"]

    def test_existing_member(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/members", json={"email": "member@acme.test"})
        assert resp.get_json()["errors"]["email"] == "This user is already a member of this account."

    def test_duplicate_pending_invitation(self, client, seed_data, login):
        login(client, "owner@acme.test")
        with patch(INVITE_JOB):
            client.post("/members", json={"email": "twice@example.com"})
            resp = client.post("/members", json={"email": "twice@example.com"})
        assert resp.status_code == 422
        assert "already been sent" in resp.get_json()["errors"]["email"]

    def test_member_cannot_invite(self, client, seed_data, login):
        login(client, "member@acme.test")
        resp = client.post("/members", json={"email": "friend@example.com"})
        assert resp.status_code == 403


class TestResendAndCancel:
    def _pending(self, seed_data):
        membership = Membership.new_invitation(
            seed_data["acme"].id, "pending@example.com", "member",
            invited_by_id=seed_data["owner"].id,
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    def test_resend_refreshes_expired_token(self, client, seed_data, login):
        membership = self._pending(seed_data)
        membership.invited_at = utcnow() - timedelta(days=10)
        db.session.commit()
        old_token = membership.invitation_token

        login(client, "owner@acme.test")
        with patch(INVITE_JOB) as mock_delay:
            resp = client.post(f"/members/{membership.id}/resend")
        assert resp.status_code == 200
        assert membership.invitation_token != old_token
        assert resp.get_json()["member"]["invitation_expired"] is False
        mock_delay.assert_called_once_with(membership.id)

    def test_resend_keeps_fresh_token(self, client, seed_data, login):
        membership = self._pending(seed_data)
        token = membership.invitation_token
        login(client, "owner@acme.test")
        with patch(INVITE_JOB):
            client.post(f"/members/{membership.id}/resend")
        assert membership.invitation_token == token

    def test_cancel_invitation(self, client, seed_data, login):
        membership = self._pending(seed_data)
        login(client, "admin@acme.test")
        assert client.delete(f"/members/{membership.id}").status_code == 200
        assert db.session.get(Membership, membership.id) is None


class TestRoleChanges:
    def test_owner_promotes_member_to_admin(self, client, seed_data, login):
        target = seed_data["memberships"]["member"]
        login(client, "owner@acme.test")
        resp = client.patch(f"/members/{target.id}", json={"role": "admin"})
        assert resp.status_code == 200
        assert target.role == "admin"

    def test_admin_cannot_promote_to_admin(self, client, seed_data, login):
        target = seed_data["memberships"]["member"]
        login(client, "admin@acme.test")
        resp = client.patch(f"/members/{target.id}", json={"role": "admin"})
        assert resp.status_code == 422
        assert target.role == "member"

    def test_admin_demotes_member_to_guest(self, client, seed_data, login):
        target = seed_data["memberships"]["member"]
        login(client, "admin@acme.test")
        assert client.patch(f"/members/{target.id}", json={"role": "guest"}).status_code == 200

    def test_owner_role_never_assigned(self, client, seed_data, login):
        target = seed_data["memberships"]["admin"]
        login(client, "owner@acme.test")
        resp = client.patch(f"/members/{target.id}", json={"role": "owner"})
        assert resp.get_json()["errors"]["role"] == "Cannot assign owner role."

    def test_owner_row_untouchable(self, client, seed_data, login):
        owner_row = seed_data["memberships"]["owner"]
        login(client, "admin@acme.test")
        assert client.patch(f"/members/{owner_row.id}", json={"role": "guest"}).status_code == 403
        assert client.delete(f"/members/{owner_row.id}").status_code == 403

    def test_foreign_membership_is_404(self, client, seed_data, login):
        foreign = Membership.query.filter_by(account_id=seed_data["globex"].id).first()
        login(client, "owner@acme.test")
        assert client.patch(f"/members/{foreign.id}", json={"role": "guest"}).status_code == 404


class TestRemoveAndLeave:
    def test_admin_removes_member(self, client, seed_data, login):
        target = seed_data["memberships"]["member"]
        login(client, "admin@acme.test")
        assert client.delete(f"/members/{target.id}").status_code == 200
        assert db.session.get(Membership, target.id) is None

    def test_member_leaves(self, client, seed_data, login):
        login(client, "member@acme.test")
        resp = client.delete("/members/leave")
        assert resp.status_code == 200
        assert resp.get_json()["current_account_id"] is None
        assert Membership.query.filter_by(user_id=seed_data["member"].id).count() == 0

    def test_owner_cannot_leave(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.delete("/members/leave")
        assert resp.status_code == 409
        assert "Transfer ownership" in resp.get_json()["error"]


class TestOwnershipTransfer:
    def test_transfer(self, client, seed_data, login):
        memberships = seed_data["memberships"]
        login(client, "owner@acme.test")
        resp = client.post("/account/transfer-ownership", json={
            "membership_id": memberships["admin"].id,
        })
        assert resp.status_code == 200
        assert memberships["admin"].role == "owner"
        assert memberships["owner"].role == "admin"
        assert Membership.query.filter_by(
            account_id=seed_data["acme"].id, role="owner"
        ).count() == 1

    def test_admin_cannot_transfer(self, client, seed_data, login):
        login(client, "admin@acme.test")
        resp = client.post("/account/transfer-ownership", json={
            "membership_id": seed_data["memberships"]["member"].id,
        })
        assert resp.status_code == 403

    def test_pending_invitation_cannot_own(self, client, seed_data, login):
        pending = Membership.new_invitation(seed_data["acme"].id, "p@example.com", "member")
        db.session.add(pending)
        db.session.commit()
        login(client, "owner@acme.test")
        resp = client.post("/account/transfer-ownership", json={"membership_id": pending.id})
        assert resp.status_code == 422
        assert seed_data["memberships"]["owner"].role == "owner"

    def test_database_enforces_single_owner(self, seed_data):
        seed_data["memberships"]["admin"].role = "owner"
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
