# tests/test_http_app.py
"""HTTP-level tests for app/transport/http_app.py with in-memory services."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.admin.service import get_admin_service
from app.config import settings
from app.core.dispatch.domain import JobStatus
from app.core.dispatch.use_cases import get_dispatch_service
from app.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from app.transport.http_app import app, portal_rate_limit

from conftest import make_job, make_subcontractor

TOKEN = "aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) Mobile/15E148"


def _staff(actor_id: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {TOKEN}", "X-Actor-Id": actor_id}


@pytest.fixture
def client(monkeypatch, dispatch_service, admin_service):
    monkeypatch.setattr(settings, "admin_token", TOKEN)
    monkeypatch.setattr(settings, "admin_notifications_enabled", False)
    app.dependency_overrides[get_dispatch_service] = lambda: dispatch_service
    app.dependency_overrides[get_admin_service] = lambda: admin_service
    app.dependency_overrides[portal_rate_limit] = lambda: None
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(job_repo, subcontractor_repo):
    sub = make_subcontractor()
    subcontractor_repo.items[sub.id] = sub
    job_repo.rows["job-row-1"] = make_job(subcontractor_id=sub.id, region="North")
    return job_repo


# ============================================================================
# Health
# ============================================================================

class TestHealth:
    def test_liveness(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_metrics_need_token(self, client):
        assert client.get("/metrics").status_code == 401
        resp = client.get("/metrics", headers={"Authorization": f"Bearer {TOKEN}"})
        assert resp.status_code == 200

    def test_unknown_route(self, client):
        resp = client.get("/wp-admin")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not found"}


# ============================================================================
# Subcontractor portal
# ============================================================================

class TestPortal:
    def test_get_job(self, client, seeded):
        resp = client.get("/api/jobs/Job-ABC123")
        assert resp.status_code == 200
        body = resp.json()
        assert body["job_id"] == "Job-ABC123"
        assert body["status"] == "pending"
        assert body["subcontractor"]["name"] == "Mike Rivera"
        assert "X-Request-ID" in resp.headers

    def test_get_job_navigation_follows_platform(self, client, seeded):
        desktop = client.get("/api/jobs/Job-ABC123").json()["navigation"]
        assert [n["app"] for n in desktop] == ["google_maps", "waze"]
        assert desktop[0]["primary_link"].startswith("https://www.google.com/maps/search/")
        assert desktop[0]["fallback_link"] is None

        ios = client.get("/api/jobs/Job-ABC123", headers={"User-Agent": IPHONE_UA}).json()["navigation"]
        assert [n["app"] for n in ios] == ["google_maps", "waze", "apple_maps"]
        assert ios[0]["primary_link"] == "comgooglemaps://?q=12%20Oak%20St%2C%20Springfield"
        assert ios[0]["fallback_delay_ms"] == 1500

        android = client.get("/api/jobs/Job-ABC123?platform=android").json()["navigation"]
        assert android[-1]["primary_link"] == "geo:0,0?q=12%20Oak%20St%2C%20Springfield"

    def test_unknown_job(self, client):
        resp = client.get("/api/jobs/Job-NOPE00")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Job not found: Job-NOPE00"}

    def test_update_money(self, client, seeded):
        resp = client.put("/api/jobs/Job-ABC123", json={"price": 100, "parts_cost": "40"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["job"]["job_profit"] == 60.0
        assert {u["field_name"] for u in body["updates"]} == {"price", "parts_cost", "job_profit"}
        assert body["warnings"] == []

    def test_amount_beyond_column_precision_rejected(self, client, seeded):
        resp = client.put("/api/jobs/Job-ABC123", json={"price": "100000000000"})
        assert resp.status_code == 400
        resp = client.put("/api/jobs/Job-ABC123", json={"parts_cost": "10.005"})
        assert resp.status_code == 400
        assert seeded.rows["job-row-1"].price is None

    def test_completion_requires_receipt(self, client, seeded):
        resp = client.put("/api/jobs/Job-ABC123", json={"status": "completed"})
        assert resp.status_code == 400
        assert "receipt" in resp.json()["error"]
        assert seeded.rows["job-row-1"].status == JobStatus.PENDING

    def test_customer_fields_rejected(self, client, seeded):
        resp = client.put("/api/jobs/Job-ABC123", json={"customer_name": "Mallory"})
        assert resp.status_code == 400
        assert "customer_name" in resp.json()["error"]

    def test_non_object_body(self, client, seeded):
        resp = client.put("/api/jobs/Job-ABC123", json=["status", "completed"])
        assert resp.status_code == 400

    def test_rate_limited(self, client, seeded):
        app.dependency_overrides[portal_rate_limit] = RateLimitDependency(InMemoryRateLimiter(1, 60))
        assert client.get("/api/jobs/Job-ABC123").status_code == 200

        resp = client.get("/api/jobs/Job-ABC123")

        assert resp.status_code == 429
        assert resp.json() == {"error": "Rate limit exceeded"}
        assert "Retry-After" in resp.headers


# ============================================================================
# Staff authentication
# ============================================================================

class TestStaffAuth:
    def test_missing_token(self, client):
        resp = client.get("/api/dashboard/jobs")
        assert resp.status_code == 401

    def test_missing_actor(self, client):
        resp = client.get("/api/dashboard/jobs", headers={"Authorization": f"Bearer {TOKEN}"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "X-Actor-Id header required"}

    def test_unknown_actor(self, client):
        resp = client.get("/api/dashboard/jobs", headers=_staff("nobody"))
        assert resp.status_code == 403

    def test_unconfigured_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", None)
        resp = client.get("/api/dashboard/jobs", headers=_staff())
        assert resp.status_code == 503


# ============================================================================
# Dashboard
# ============================================================================

class TestDashboard:
    def test_list_with_filters(self, client, seeded):
        resp = client.get(
            "/api/dashboard/jobs",
            params={"status": "all", "region": "North", "search": "jane"},
            headers=_staff(),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert [j["job_id"] for j in body["jobs"]] == ["Job-ABC123"]
        assert body["stats"] == {"total": 1, "pending": 1, "in_progress": 0, "completed": 0}
        assert body["regions"] == ["North"]
        assert body["week_label"] == "Jun 25 - Jul 1"

    def test_bad_filter_value(self, client):
        resp = client.get("/api/dashboard/jobs", params={"date_range": "fortnight"}, headers=_staff())
        assert resp.status_code == 400

    def test_export_csv(self, client, seeded):
        resp = client.get("/api/dashboard/jobs/export", headers=_staff())
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["content-disposition"].startswith('attachment; filename="jobs-export-')
        assert resp.text.startswith('"Job ID"')

    def test_create_job_on_iphone(self, client, subcontractor_repo):
        subcontractor_repo.items["sub-1"] = make_subcontractor()
        payload = {
            "customer_name": "Jane Smith",
            "customer_phone": "5559876543",
            "customer_address": "12 Oak St",
            "customer_issue": "Leak",
            "subcontractor_id": "sub-1",
            "price": 150,
            "parts_cost": 75,
        }

        resp = client.post("/api/dashboard/jobs", json=payload,
                           headers={**_staff(), "User-Agent": IPHONE_UA})

        assert resp.status_code == 201
        body = resp.json()
        assert body["job"]["job_profit"] == 75.0
        assert body["dispatch"]["ok"] is True
        assert body["dispatch"]["primary_link"].startswith("whatsapp://send?phone=15551234567")
        assert body["dispatch"]["fallback_delay_ms"] == 2000

    def test_create_job_missing_fields(self, client):
        resp = client.post("/api/dashboard/jobs", json={"customer_name": "Jane"}, headers=_staff())
        assert resp.status_code == 400

    def test_notify_with_platform_override(self, client, seeded):
        resp = client.post(
            "/api/dashboard/jobs/Job-ABC123/notify",
            params={"platform": "desktop"},
            headers={**_staff(), "User-Agent": IPHONE_UA},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["kind"] == "update"
        assert body["primary_link"].startswith("https://wa.me/15551234567?text=")
        assert body["fallback_link"] is None

    def test_unassign(self, client, seeded):
        resp = client.put("/api/dashboard/jobs/Job-ABC123/subcontractor",
                          json={"subcontractor_id": None}, headers=_staff())
        assert resp.status_code == 200
        assert resp.json()["job"]["subcontractor"] is None
        assert "dispatch" not in resp.json()

    def test_history(self, client, seeded):
        client.patch("/api/dashboard/jobs/Job-ABC123", json={"notes": "gate code 4321"}, headers=_staff())
        resp = client.get("/api/dashboard/jobs/Job-ABC123/updates", headers=_staff())
        assert resp.status_code == 200
        updates = resp.json()["updates"]
        assert updates[0]["field_name"] == "notes"
        assert updates[0]["updated_by"] == "Dana Dispatcher"

    def test_user_cannot_delete(self, client, seeded):
        resp = client.delete("/api/dashboard/jobs/Job-ABC123", headers=_staff("user-1"))
        assert resp.status_code == 403
        assert "job-row-1" in seeded.rows

    def test_admin_deletes(self, client, seeded):
        resp = client.delete("/api/dashboard/jobs/Job-ABC123", headers=_staff("admin-1"))
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "job_id": "Job-ABC123"}
        assert seeded.rows == {}


# ============================================================================
# Subcontractors and admin
# ============================================================================

class TestSubcontractorRoutes:
    def test_delete_reports_unassigned_jobs(self, client, seeded):
        resp = client.delete("/api/subcontractors/sub-1", headers=_staff("admin-1"))
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "id": "sub-1", "jobs_unassigned": 1}

    def test_user_cannot_create(self, client):
        payload = {"name": "Sam", "phone": "5551112222", "email": "sam@example.com", "region": "East"}
        resp = client.post("/api/subcontractors", json=payload, headers=_staff("user-1"))
        assert resp.status_code == 403


class TestAdminRoutes:
    def test_list_users(self, client):
        resp = client.get("/api/admin/users", headers=_staff("admin-1"))
        assert resp.status_code == 200
        emails = {u["email"] for u in resp.json()["users"]}
        assert emails == {"admin@example.com", "dana@example.com"}

    def test_cannot_delete_self(self, client):
        resp = client.delete("/api/admin/users/admin-1", headers=_staff("admin-1"))
        assert resp.status_code == 400

    def test_invitation_signup(self, client):
        created = client.post("/api/admin/invitations", json={"email": "olive@example.com"},
                              headers=_staff("admin-1"))
        assert created.status_code == 201
        token = created.json()["invite_url"].split("token=", 1)[1]

        check = client.get(f"/api/invitations/{token}")
        assert check.status_code == 200
        assert check.json()["email"] == "olive@example.com"

        signup = client.post("/api/signup", json={"token": token, "password": "olive-pass-1"})
        assert signup.status_code == 201
        assert signup.json()["role"] == "admin"

        assert client.get(f"/api/invitations/{token}").status_code == 400
