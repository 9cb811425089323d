"""Invitation endpoints end to end over HTTP (camelCase JSON bodies)."""

import pytest

from datacop_api.db.models import Invitation, Organization, UserProfile
from datacop_api.errors import PROBLEM_BASE_URI

PASSWORD = "correct-horse-9"


@pytest.fixture
def as_admin(act_as, admin):
    return act_as(admin)


def _invite(client, email="alice@x.com", role="installer", **body):
    payload = {"email": email, "name": body.pop("name", "Alice"), "role": role, **body}
    return client.post("/invitations", json=payload)


class TestCreateInvitation:
    def test_returns_id_and_token(self, client, as_admin, email_sender, load):
        resp = _invite(client)
        assert resp.status_code == 201
        body = resp.json()
        assert set(body) == {"invitationId", "token"}
        assert body["token"].startswith("inv_")

        stored = load(Invitation, body["invitationId"])
        assert stored.inviter_id == as_admin.uid
        assert stored.inviter_name == "Platform Admin"
        assert [m["to"] for m in email_sender.sent] == ["alice@x.com"]

    def test_accepts_camel_case_fields(self, client, as_admin, load):
        resp = _invite(client, role="distributor", companyName="Acme Distribution")
        assert resp.status_code == 201
        assert load(Invitation, resp.json()["invitationId"]).company_name == "Acme Distribution"

    def test_client_supplied_inviter_is_ignored(self, client, as_admin, load):
        resp = _invite(client, inviterId="someone_else")
        assert resp.status_code == 201
        assert load(Invitation, resp.json()["invitationId"]).inviter_id == as_admin.uid

    def test_duplicate_pending_invitation_conflicts(self, client, as_admin):
        assert _invite(client).status_code == 201
        resp = _invite(client, email="ALICE@x.com")
        assert resp.status_code == 409
        assert resp.json()["type"] == f"{PROBLEM_BASE_URI}/duplicate-invitation"

    def test_admin_role_cannot_be_invited(self, client, as_admin):
        resp = _invite(client, role="admin")
        assert resp.status_code == 422

    def test_installer_cannot_invite(self, client, act_as, make_user):
        act_as(make_user("installer"))
        resp = _invite(client)
        assert resp.status_code == 403
        assert resp.json()["type"] == f"{PROBLEM_BASE_URI}/permission-denied"

    def test_email_failure_does_not_fail_creation(self, client, as_admin, email_sender):
        email_sender.error = RuntimeError("smtp down")
        resp = _invite(client)
        assert resp.status_code == 201


class TestVerifyAndAccept:
    def test_verify_valid_token(self, client, as_admin):
        token = _invite(client, role="user", name="Uma").json()["token"]
        resp = client.get("/invitations/verify", params={"token": token})
        assert resp.status_code == 200
        assert resp.json() == {"valid": True, "role": "user", "email": "alice@x.com", "name": "Uma"}

    def test_verify_unknown_token(self, client):
        resp = client.get("/invitations/verify", params={"token": "inv_does_not_exist"})
        assert resp.status_code == 200
        assert resp.json() == {"valid": False}

    def test_accept_creates_account_once(self, client, as_admin, identity, load):
        body = _invite(client).json()

        resp = client.post("/invitations/accept", json={"token": body["token"], "password": PASSWORD})
        assert resp.status_code == 200
        account = resp.json()
        assert account["role"] == "installer"
        assert identity.identities[account["uid"]] == "alice@x.com"

        profile = load(UserProfile, account["uid"])
        assert profile.role == "installer"
        assert profile.created_by == as_admin.uid
        stored = load(Invitation, body["invitationId"])
        assert stored.status == "accepted"
        assert stored.accepted_uid == account["uid"]

        again = client.post("/invitations/accept", json={"token": body["token"], "password": PASSWORD})
        assert again.status_code == 409
        assert again.json()["type"] == f"{PROBLEM_BASE_URI}/already-consumed"
        assert len(identity.identities) == 1

        verify = client.get("/invitations/verify", params={"token": body["token"]})
        assert verify.json()["valid"] is False

    def test_expired_invitation_is_gone(self, client, as_admin, clock, identity, load):
        body = _invite(client).json()
        clock.advance(days=7)

        resp = client.post("/invitations/accept", json={"token": body["token"], "password": PASSWORD})
        assert resp.status_code == 410
        assert resp.json()["type"] == f"{PROBLEM_BASE_URI}/expired-invitation"
        assert identity.identities == {}
        assert load(Invitation, body["invitationId"]).status == "pending"

        assert client.get("/invitations/verify", params={"token": body["token"]}).json() == {"valid": False}

    def test_accept_with_existing_account_conflicts(self, client, as_admin, make_user):
        token = _invite(client).json()["token"]
        make_user("user", email="alice@x.com")

        resp = client.post("/invitations/accept", json={"token": token, "password": PASSWORD})
        assert resp.status_code == 409
        assert resp.json()["type"] == f"{PROBLEM_BASE_URI}/duplicate-email"

    def test_distributor_admin_invites_into_own_organization(self, client, act_as, make_org, make_user, load):
        org = make_org(team_members=["dist_boss"], admin_members=["dist_boss"])
        act_as(make_user("distributor", uid="dist_boss", distributor_id=org.id, is_distributor_admin=True))

        token = _invite(client, email="rep@x.com", role="distributor", name="Rep").json()["token"]
        uid = client.post("/invitations/accept", json={"token": token, "password": PASSWORD}).json()["uid"]

        stored = load(Organization, org.id)
        assert stored.team_members == ["dist_boss", uid]
        assert stored.admin_members == ["dist_boss"]
        assert load(UserProfile, uid).distributor_id == org.id


class TestResendCancelList:
    def test_resend_restarts_window(self, client, as_admin, clock, email_sender, load):
        body = _invite(client).json()
        clock.advance(days=6)

        resp = client.post(f"/invitations/{body['invitationId']}/resend")
        assert resp.status_code == 204
        assert load(Invitation, body["invitationId"]).created_at == clock.now
        assert len(email_sender.sent) == 2

        clock.advance(days=2)
        assert client.get("/invitations/verify", params={"token": body["token"]}).json()["valid"] is True

    def test_resend_of_someone_elses_invitation_is_404(self, client, act_as, admin, make_org, make_user):
        act_as(admin)
        invitation_id = _invite(client).json()["invitationId"]

        org = make_org()
        act_as(make_user("distributor", distributor_id=org.id, is_distributor_admin=True))
        resp = client.post(f"/invitations/{invitation_id}/resend")
        assert resp.status_code == 404
        assert resp.json()["type"] == f"{PROBLEM_BASE_URI}/invitation-not-found"

    def test_cancel_is_idempotent(self, client, as_admin, load):
        body = _invite(client).json()

        assert client.delete(f"/invitations/{body['invitationId']}").status_code == 204
        assert load(Invitation, body["invitationId"]) is None
        assert client.delete(f"/invitations/{body['invitationId']}").status_code == 204

        resp = client.post("/invitations/accept", json={"token": body["token"], "password": PASSWORD})
        assert resp.status_code == 404

    def test_list_newest_first_with_derived_status(self, client, as_admin, clock):
        first = _invite(client, email="first@x.com").json()
        clock.advance(days=1)
        second = _invite(client, email="second@x.com").json()
        clock.advance(days=6, minutes=1)

        resp = client.get("/invitations")
        assert resp.status_code == 200
        items = resp.json()["invitations"]
        assert [item["id"] for item in items] == [second["invitationId"], first["invitationId"]]
        assert [item["status"] for item in items] == ["pending", "expired"]
        assert "token" not in items[0]
        assert {"createdAt", "expiresAt", "companyName", "organizationId"} <= set(items[0])
