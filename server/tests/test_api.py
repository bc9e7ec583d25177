"""Tests for the REST surface.

Runs the full app (middleware, error mapping, health checks) against the
per-test SQLite database. The caller is named by the user header, as the
authenticating proxy would set it.
"""
import sys
import os
import logging
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from modelhub.main import MAX_PAYLOAD_BYTES, create_app

HEADER = "X-Authenticated-User"


def _as(username):
    return {HEADER: username}


@pytest.fixture
def client(db):
    return TestClient(create_app())


@pytest.fixture
def tree(client):
    """acme (alice admin) / rover (alice admin) / wheel."""
    assert client.post("/api/orgs", json={"id": "acme", "name": "Acme"},
                       headers=_as("admin")).status_code == 201
    client.post("/api/orgs/acme/members/alice", json={"role": "admin"}, headers=_as("admin"))
    client.post("/api/orgs/acme/projects", json={"id": "rover", "name": "Rover"},
                headers=_as("alice"))
    client.post("/api/orgs/acme/projects/rover/elements", json={"id": "wheel", "name": "Wheel"},
                headers=_as("alice"))
    return client


class TestAuthentication:

    def test_missing_header_is_401(self, client):
        assert client.get("/api/me").status_code == 401

    def test_unknown_user_is_401(self, client):
        assert client.get("/api/me", headers=_as("mallory")).status_code == 401

    def test_me(self, client):
        resp = client.get("/api/me", headers=_as("alice"))
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"


class TestResources:

    def test_create_org_returns_201(self, client):
        resp = client.post("/api/orgs", json={"id": "acme", "name": "Acme"}, headers=_as("admin"))
        assert resp.status_code == 201
        assert resp.json()["permissions"]["admin"] == ["admin"]

    def test_duplicate_org_is_409(self, tree):
        resp = tree.post("/api/orgs", json={"id": "acme", "name": "Again"}, headers=_as("admin"))
        assert resp.status_code == 409
        assert resp.json()["code"] == "ALREADY_EXISTS"

    def test_bad_body_is_422(self, client):
        resp = client.post("/api/orgs", json={"id": "Not Valid", "name": "x"}, headers=_as("admin"))
        assert resp.status_code == 422

    def test_hidden_org_is_404(self, tree):
        resp = tree.get("/api/orgs/acme", headers=_as("bob"))
        assert resp.status_code == 404
        assert resp.json() == {"error": True, "code": "NOT_FOUND", "message": "Resource not found"}

    def test_missing_and_hidden_look_the_same(self, tree):
        hidden = tree.get("/api/orgs/acme/projects/rover", headers=_as("bob"))
        missing = tree.get("/api/orgs/acme/projects/ghost", headers=_as("alice"))
        assert hidden.status_code == missing.status_code == 404
        assert hidden.json() == missing.json()

    def test_readable_but_not_allowed_is_403(self, tree):
        tree.post("/api/orgs/acme/members/bob", json={"role": "read"}, headers=_as("alice"))
        resp = tree.patch("/api/orgs/acme", json={"name": "Mine"}, headers=_as("bob"))
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    def test_patch_only_sends_set_fields(self, tree):
        resp = tree.patch("/api/orgs/acme/projects/rover", json={"visibility": "internal"},
                          headers=_as("alice"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["visibility"] == "internal"
        assert body["name"] == "Rover"

    def test_archived_is_400(self, tree):
        tree.patch("/api/orgs/acme/projects/rover/elements/wheel", json={"archived": True},
                   headers=_as("alice"))
        resp = tree.patch("/api/orgs/acme/projects/rover/elements/wheel", json={"name": "Tyre"},
                          headers=_as("alice"))
        assert resp.status_code == 400
        assert resp.json()["code"] == "ARCHIVED"

    def test_list_elements(self, tree):
        resp = tree.get("/api/orgs/acme/projects/rover/elements", headers=_as("alice"))
        assert resp.json()["count"] == 1
        assert resp.json()["elements"][0]["id"] == "acme:rover:wheel"

    def test_delete_org_cascades(self, tree):
        resp = tree.delete("/api/orgs/acme", headers=_as("admin"))
        assert resp.status_code == 200
        assert resp.json()["elements"] == 1
        assert tree.get("/api/orgs/acme", headers=_as("admin")).status_code == 404


class TestMembers:

    def test_grant_propagates_read(self, tree):
        resp = tree.post("/api/orgs/acme/projects/rover/elements/wheel/members/bob",
                         json={"role": "write"}, headers=_as("alice"))
        assert resp.status_code == 200
        assert resp.json()["members"]["bob"] == ["read", "write"]
        org = tree.get("/api/orgs/acme/members/bob", headers=_as("alice")).json()
        assert org["roles"] == ["read"]
        project = tree.get("/api/orgs/acme/projects/rover/members/bob", headers=_as("alice")).json()
        assert project["roles"] == ["read"]

    def test_list_members(self, tree):
        resp = tree.get("/api/orgs/acme/members", headers=_as("alice"))
        assert resp.status_code == 200
        assert resp.json()["members"]["alice"] == ["read", "write", "admin"]
        assert resp.json()["kind"] == "organization"

    def test_invalid_tier_is_400(self, tree):
        resp = tree.post("/api/orgs/acme/members/bob", json={"role": "owner"},
                         headers=_as("alice"))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_TIER"

    def test_unknown_target_user(self, tree):
        resp = tree.post("/api/orgs/acme/members/nobody", json={"role": "read"},
                         headers=_as("alice"))
        assert resp.status_code == 404

    def test_self_demotion_is_403(self, tree):
        resp = tree.post("/api/orgs/acme/members/alice", json={"role": "read"},
                         headers=_as("alice"))
        assert resp.status_code == 403
        assert resp.json()["code"] == "SELF_DEMOTION_FORBIDDEN"

    def test_last_admin_is_400(self, tree):
        resp = tree.post("/api/orgs/acme/projects/rover/members/alice", json={"role": "write"},
                         headers=_as("admin"))
        assert resp.status_code == 400
        assert resp.json()["code"] == "LAST_ADMIN_PROTECTED"

    def test_non_member_change_looks_missing(self, tree):
        resp = tree.post("/api/orgs/acme/members/bob", json={"role": "admin"},
                         headers=_as("bob"))
        assert resp.status_code == 404

    def test_reader_change_is_403(self, tree):
        tree.post("/api/orgs/acme/members/bob", json={"role": "read"}, headers=_as("alice"))
        resp = tree.post("/api/orgs/acme/members/bob", json={"role": "admin"},
                         headers=_as("bob"))
        assert resp.status_code == 403

    def test_remove_member(self, tree):
        tree.post("/api/orgs/acme/members/bob", json={"role": "write"}, headers=_as("alice"))
        resp = tree.delete("/api/orgs/acme/members/bob", headers=_as("alice"))
        assert resp.status_code == 200
        assert "bob" not in resp.json()["members"]

    def test_list_all_projects(self, tree):
        assert [p["id"] for p in tree.get("/api/projects", headers=_as("alice")).json()["projects"]] \
            == ["acme:rover"]
        assert tree.get("/api/projects", headers=_as("bob")).json()["count"] == 0

    def test_internal_project_members_visible_to_org_reader(self, tree):
        tree.post("/api/orgs/acme/members/bob", json={"role": "read"}, headers=_as("alice"))
        assert tree.get("/api/orgs/acme/projects/rover/members",
                        headers=_as("bob")).status_code == 404
        tree.patch("/api/orgs/acme/projects/rover", json={"visibility": "internal"},
                   headers=_as("alice"))
        assert tree.get("/api/orgs/acme/projects/rover", headers=_as("bob")).status_code == 200
        resp = tree.get("/api/orgs/acme/projects/rover/members", headers=_as("bob"))
        assert resp.status_code == 200
        assert resp.json()["members"] == {"alice": ["read", "write", "admin"]}
        resp = tree.get("/api/orgs/acme/projects/rover/members/alice", headers=_as("bob"))
        assert resp.json()["roles"] == ["read", "write", "admin"]


class TestUsersEndpoints:

    def test_create_user_201(self, client):
        resp = client.post("/api/users", json={"username": "carol"}, headers=_as("admin"))
        assert resp.status_code == 201
        assert client.get("/api/users/carol", headers=_as("alice")).status_code == 200

    def test_create_user_forbidden(self, client):
        resp = client.post("/api/users", json={"username": "carol"}, headers=_as("alice"))
        assert resp.status_code == 403

    def test_delete_sole_admin_refused(self, tree):
        resp = tree.delete("/api/users/alice", headers=_as("admin"))
        assert resp.status_code == 400
        assert resp.json()["code"] == "LAST_ADMIN_PROTECTED"

    def test_patch_own_profile(self, client):
        resp = client.patch("/api/users/bob", json={"fname": "Robert"}, headers=_as("bob"))
        assert resp.status_code == 200
        assert resp.json()["fname"] == "Robert"
        assert resp.json()["email"] == "bob@example.com"

    def test_patch_other_user_is_403(self, client):
        resp = client.patch("/api/users/bob", json={"fname": "Mallory"}, headers=_as("alice"))
        assert resp.status_code == 403

    def test_patch_admin_flag_needs_global_admin(self, client):
        assert client.patch("/api/users/bob", json={"admin": True},
                            headers=_as("bob")).status_code == 403
        resp = client.patch("/api/users/bob", json={"admin": True}, headers=_as("admin"))
        assert resp.status_code == 200
        assert resp.json()["admin"] is True

    def test_patch_bad_email_is_422(self, client):
        resp = client.patch("/api/users/bob", json={"email": "not-an-email"}, headers=_as("bob"))
        assert resp.status_code == 422


class TestServerPlumbing:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_ready(self, client):
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["database"] == "connected"

    def test_not_ready_is_503(self, db):
        with patch("modelhub.database.test_connection", side_effect=RuntimeError("down")):
            resp = TestClient(create_app()).get("/health/ready")
        assert resp.status_code == 503

    def test_oversized_payload_is_413(self, client):
        resp = client.post("/api/orgs", content=b"x" * (MAX_PAYLOAD_BYTES + 1),
                           headers={**_as("admin"), "Content-Type": "application/json"})
        assert resp.status_code == 413
        assert resp.json()["code"] == "PAYLOAD_TOO_LARGE"

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"

    def test_requests_are_logged(self, client, caplog):
        with caplog.at_level(logging.DEBUG, logger="modelhub.api"):
            client.get("/health")
        messages = [r.getMessage() for r in caplog.records if r.name == "modelhub.api"]
        assert messages == ["Request", "Response"]
        response = [r for r in caplog.records if r.getMessage() == "Response"][0]
        assert (response.path, response.status) == ("/health", 200)
