from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from supportdesk.api.errors import status_code_for
from supportdesk.core.config import get_settings
from supportdesk.dependencies.auth import SessionClaims
from supportdesk.domain.errors import (
    ConcurrentModificationError,
    ConflictingConversionRequestError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    ReferencedEntityError,
)
from supportdesk.main import create_app
from supportdesk.security.roles import Role

ADMIN = {"Authorization": "Bearer admin-token"}


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setenv("SUPPORTDESK_BOOTSTRAP_ADMIN_TOKEN", "admin-token")
    monkeypatch.delenv("SUPPORTDESK_POSTGRES_DSN", raising=False)
    get_settings.cache_clear()
    app = create_app()
    try:
        with TestClient(app) as client:
            yield client
    finally:
        get_settings.cache_clear()


def _register(client: TestClient, token: str, **payload) -> dict:
    response = client.post("/api/users", json=payload, headers=ADMIN)
    assert response.status_code == 201, response.text
    user = response.json()
    client.app.state.session_verifier.add_token(token, user["id"])
    return user


@pytest.fixture
def seeded(api):
    org_a = api.post(
        "/api/organizations",
        json={"name": "Acme", "plan": "enterprise", "contact_email": "ops@acme.test"},
        headers=ADMIN,
    ).json()
    org_b = api.post(
        "/api/organizations",
        json={"name": "Globex", "contact_email": "it@globex.test"},
        headers=ADMIN,
    ).json()
    _register(api, "lead-token", name="Lee Lead", email="lee@desk.test", role="support-lead")
    _register(api, "staff-token", name="Sam Staff", email="sam@desk.test", role="support-staff")
    _register(api, "client-a-token", name="Carla Client", email="carla@acme.test", role="client", organization_id=org_a["id"])
    _register(api, "client-b-token", name="Bob Buyer", email="bob@globex.test", role="client", organization_id=org_b["id"])
    return api, org_a, org_b


def _create_ticket(client: TestClient, organization_id: str, token: str = "staff-token", **overrides) -> dict:
    payload = {
        "title": "Export crashes",
        "description": "CSV export fails on large files",
        "priority": "high",
        "category": "bug",
        "organization_id": organization_id,
    }
    payload.update(overrides)
    response = client.post("/api/tickets", json=payload, headers=_auth(token))
    assert response.status_code == 201, response.text
    return response.json()


def test_health_probe(api):
    response = api.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requests_without_valid_token_are_rejected(api):
    assert api.get("/api/tickets").status_code == 401
    assert api.get("/api/tickets", headers=_auth("nope")).status_code == 401


def test_bootstrap_admin_profile(api):
    response = api.get("/api/auth/me", headers=ADMIN)
    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "admin"
    assert body["avatar"] == "SA"

    updated = api.put("/api/auth/me", json={"name": "Root Operator"}, headers=ADMIN)
    assert updated.status_code == 200
    assert updated.json()["avatar"] == "RO"
    assert api.put("/api/auth/me", json={}, headers=ADMIN).status_code == 400


def test_ticket_lifecycle_over_http(seeded):
    client, org_a, _ = seeded
    ticket = _create_ticket(client, org_a["id"])
    assert ticket["status"] == "open"
    assert ticket["hours_worked"] == 0

    note = client.post(
        f"/api/tickets/{ticket['id']}/messages",
        json={"content": "Legacy exporter", "is_internal": True},
        headers=_auth("staff-token"),
    )
    assert note.status_code == 201
    forbidden_note = client.post(
        f"/api/tickets/{ticket['id']}/messages",
        json={"content": "Let me in", "is_internal": True},
        headers=_auth("client-a-token"),
    )
    assert forbidden_note.status_code == 403

    bad_hours = client.post(
        f"/api/tickets/{ticket['id']}/time-entries",
        json={"hours": 0, "description": "nothing"},
        headers=_auth("staff-token"),
    )
    assert bad_hours.status_code == 400
    entry = client.post(
        f"/api/tickets/{ticket['id']}/time-entries",
        json={"hours": 2, "description": "Repro", "date": "2024-03-05"},
        headers=_auth("staff-token"),
    )
    assert entry.status_code == 201
    assert entry.json()["date"] == "2024-03-05"

    assert client.put(
        f"/api/tickets/{ticket['id']}/status", json={"status": "resolved"}, headers=_auth("client-a-token")
    ).status_code == 403
    resolved = client.put(
        f"/api/tickets/{ticket['id']}/status", json={"status": "resolved"}, headers=_auth("staff-token")
    )
    assert resolved.status_code == 200
    assert resolved.json()["hours_worked"] == 2
    reopened = client.put(
        f"/api/tickets/{ticket['id']}/status", json={"status": "open"}, headers=_auth("staff-token")
    )
    assert reopened.status_code == 409

    client_view = client.get(f"/api/tickets/{ticket['id']}", headers=_auth("client-a-token")).json()
    assert client_view["messages"] == []
    assert client.get(f"/api/tickets/{ticket['id']}", headers=_auth("client-b-token")).status_code == 404
    assert client.get("/api/tickets/missing", headers=_auth("staff-token")).status_code == 404


def test_conversion_approval_over_http(seeded):
    client, org_a, _ = seeded
    ticket = _create_ticket(client, org_a["id"])

    proposal = client.post(
        f"/api/tickets/{ticket['id']}/conversion",
        json={"proposed_type": "feature", "reason": "Roadmap item"},
        headers=_auth("staff-token"),
    )
    assert proposal.status_code == 201
    request_id = proposal.json()["id"]
    duplicate = client.post(
        f"/api/tickets/{ticket['id']}/conversion",
        json={"proposed_type": "enhancement", "reason": "Again"},
        headers=_auth("lead-token"),
    )
    assert duplicate.status_code == 409

    pending = client.get("/api/approvals", headers=_auth("client-a-token")).json()
    assert [item["id"] for item in pending] == [request_id]

    internal = client.post(
        f"/api/approvals/{request_id}/decision",
        json={"side": "internal", "decision": "approved"},
        headers=_auth("lead-token"),
    )
    assert internal.status_code == 200
    wrong_org = client.post(
        f"/api/approvals/{request_id}/decision",
        json={"side": "client", "decision": "approved"},
        headers=_auth("client-b-token"),
    )
    assert wrong_org.status_code == 403
    final = client.post(
        f"/api/approvals/{request_id}/decision",
        json={"side": "client", "decision": "approved"},
        headers=_auth("client-a-token"),
    )
    assert final.status_code == 200
    assert final.json()["client_approval"] == "approved"

    converted = client.get(f"/api/tickets/{ticket['id']}", headers=_auth("staff-token")).json()
    assert converted["category"] == "feature"
    assert client.get("/api/approvals", headers=_auth("client-a-token")).json() == []

    activities = client.get("/api/activities", headers=_auth("client-a-token")).json()
    assert activities[0]["type"] == "conversion-approved"


def test_listing_dashboard_and_activity_scope(seeded):
    client, org_a, org_b = seeded
    _create_ticket(client, org_a["id"], title="Printer offline", category="support", priority="low")
    _create_ticket(client, org_b["id"], token="client-b-token", title="Invoice question", category="question")

    staff_list = client.get("/api/tickets", params={"search": "printer"}, headers=_auth("staff-token")).json()
    assert [ticket["title"] for ticket in staff_list] == ["Printer offline"]
    client_list = client.get("/api/tickets", headers=_auth("client-b-token")).json()
    assert [ticket["title"] for ticket in client_list] == ["Invoice question"]

    stats = client.get("/api/dashboard/stats", headers=_auth("lead-token")).json()
    assert stats["total_tickets"] == 2
    assert stats["open_tickets"] == 2
    assert stats["avg_response_hours"] is None

    org_tickets = client.get(f"/api/organizations/{org_b['id']}/tickets", headers=_auth("client-a-token"))
    assert org_tickets.status_code == 404
    feed = client.get("/api/activities", params={"limit": 1}, headers=_auth("admin-token")).json()
    assert len(feed) == 1


def test_directory_management_over_http(seeded):
    client, org_a, _ = seeded

    assert client.post(
        "/api/users",
        json={"name": "Orphan", "email": "orphan@x.test", "role": "client"},
        headers=ADMIN,
    ).status_code == 400
    assert client.post(
        "/api/users",
        json={"name": "Nope", "email": "nope@x.test", "role": "support-staff"},
        headers=_auth("lead-token"),
    ).status_code == 403

    referenced = client.delete(f"/api/organizations/{org_a['id']}", headers=ADMIN)
    assert referenced.status_code == 409

    users = client.get("/api/users", headers=_auth("client-a-token")).json()
    assert "bob@globex.test" not in {user["email"] for user in users}

    staff_id = next(user["id"] for user in client.get("/api/users", headers=ADMIN).json() if user["email"] == "sam@desk.test")
    deleted = client.delete(f"/api/users/{staff_id}", headers=ADMIN)
    assert deleted.status_code == 200
    assert deleted.json()["is_active"] is False
    assert client.get("/api/tickets", headers=_auth("staff-token")).status_code == 401


def test_invoices_and_rate_over_http(seeded):
    client, org_a, _ = seeded

    assert client.put("/api/billing/rate", json={"rate_per_hour": 90}, headers=_auth("lead-token")).status_code == 403
    assert client.put("/api/billing/rate", json={"rate_per_hour": 90}, headers=ADMIN).json() == {"rate_per_hour": 90.0}

    created = client.post(
        "/api/invoices",
        json={"organization_id": org_a["id"], "month": 3, "year": 2024, "tickets_closed": 1, "total_hours": 4},
        headers=ADMIN,
    )
    assert created.status_code == 201
    invoice = created.json()
    assert invoice["total_amount"] == 360.0
    assert invoice["status"] == "draft"

    assert client.post(
        "/api/invoices",
        json={"organization_id": org_a["id"], "month": 0, "year": 2024},
        headers=ADMIN,
    ).status_code == 400

    own = client.get("/api/invoices", headers=_auth("client-a-token")).json()
    assert [item["id"] for item in own] == [invoice["id"]]
    assert client.get("/api/invoices", headers=_auth("client-b-token")).json() == []
    assert client.get("/api/invoices", headers=_auth("staff-token")).status_code == 403

    sent = client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "sent"}, headers=ADMIN)
    assert sent.json()["status"] == "sent"
    back = client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "draft"}, headers=ADMIN)
    assert back.status_code == 409

    summary = client.get(
        "/api/invoices/summary",
        params={"organization_id": org_a["id"], "month": 3, "year": 2024},
        headers=ADMIN,
    )
    assert summary.status_code == 200
    assert summary.json()["tickets_closed"] == 0


def test_stale_session_claims_are_rejected(api):
    admin_id = api.get("/api/auth/me", headers=ADMIN).json()["id"]

    class StaleVerifier:
        async def verify(self, token: str) -> SessionClaims | None:
            return SessionClaims(user_id=admin_id, role=Role.CLIENT, organization_id="org-x")

    api.app.state.session_verifier = StaleVerifier()
    assert api.get("/api/auth/me", headers=ADMIN).status_code == 401


def test_unconfigured_services_answer_503():
    client = TestClient(create_app())
    assert client.get("/api/health").json() == {"status": "degraded"}
    assert client.get("/api/tickets", headers=ADMIN).status_code == 503


@pytest.mark.parametrize(
    "error,expected",
    [
        (NotFoundError("x"), 404),
        (ForbiddenError("x"), 403),
        (InvalidStateTransitionError("x"), 409),
        (ConflictingConversionRequestError("x"), 409),
        (InvalidArgumentError("x"), 400),
        (ReferencedEntityError("x"), 409),
        (ConcurrentModificationError("x"), 409),
    ],
)
def test_domain_errors_map_to_status_codes(error, expected):
    assert status_code_for(error) == expected
