"""
Tests for the HTTP API.

Covers:
- Authentication (401 without a valid Bearer token) and public health checks
- Scoring endpoints, including the per-risk appetite decision
- Tolerance metric CRUD, KRI link and threshold lock (409)
- Observation intake → breach → lifecycle endpoints
- Board exception endpoints
- Status, statistics, coverage report and recalculation
- Error body shape and cross-tenant 404
"""

import uuid
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from riskgov.db.models import Risk


@pytest_asyncio.fixture
async def breach_id(client, kri_a, metric_a):
    """An open RED breach on metric_a created through the API."""
    resp = await client.post(f"/api/v1/kris/{kri_a.id}/observations", json={"value": 12.0})
    assert resp.status_code == 201
    return resp.json()["evaluations"][0]["breach_id"]


# ── Auth & health ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health_is_public(client):
    resp = await client.get("/health", headers={"Authorization": ""})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client):
    resp = await client.get("/api/v1/appetite/status", headers={"Authorization": ""})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_is_rejected(client):
    resp = await client.get("/api/v1/breaches", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_responses_carry_request_id(client):
    resp = await client.get("/api/v1/appetite/status", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


# ── Scoring ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_effectiveness_endpoint(client):
    resp = await client.post(
        "/api/v1/scoring/effectiveness",
        json={"design": 2, "implementation": 2, "monitoring": 1, "evaluation": 1},
    )
    assert resp.status_code == 200
    assert resp.json()["effectiveness"] == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_effectiveness_rejects_out_of_range_score(client):
    resp = await client.post(
        "/api/v1/scoring/effectiveness",
        json={"design": 4, "implementation": 2, "monitoring": 1, "evaluation": 1},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_residual_endpoint(client):
    resp = await client.post(
        "/api/v1/scoring/residual",
        json={
            "inherent_likelihood": 4,
            "inherent_impact": 5,
            "controls": [
                {"design": 3, "implementation": 3, "monitoring": 3, "evaluation": 3, "target": "likelihood"},
            ],
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["inherent_score"] == 20
    assert (data["residual_likelihood"], data["residual_impact"], data["residual_score"]) == (1, 5, 5)


@pytest.mark.asyncio
async def test_unknown_risk_is_404(client):
    resp = await client.post(f"/api/v1/risks/{uuid.uuid4()}/residual")
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "E2000"


@pytest.mark.asyncio
async def test_risk_appetite_endpoint(client, session_factory, org_a, breach_id, metric_a):
    async with session_factory() as session:
        risk = Risk(id=uuid.uuid4(), organization_id=org_a.id, title="Card fraud", category="Operational",
                    inherent_likelihood=4, inherent_impact=5)
        session.add(risk)
        await session.commit()

    resp = await client.post(f"/api/v1/risks/{risk.id}/appetite")
    assert resp.status_code == 200
    data = resp.json()
    assert data["appetite_level"] == "LOW"
    assert data["reason"] == "HARD_LIMIT_BREACH"
    assert data["out_of_appetite"] is True
    assert data["adjusted_score"] == 30.0
    assert data["impacted_metrics"] == [{"metric_id": str(metric_a.id), "name": "Failed payments"}]
    assert data["explanation"] == "OUT OF APPETITE: HARD_LIMIT_BREACH - Failed payments"

    resp = await client.post(f"/api/v1/risks/{uuid.uuid4()}/appetite")
    assert resp.status_code == 404


# ── Tolerance metrics ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_and_lock_tolerance_metric(client, category_a, kri_a):
    resp = await client.post(
        "/api/v1/tolerances",
        json={
            "category_id": str(category_a.id),
            "name": "Settlement failures",
            "metric_type": "MAXIMUM",
            "green_max": 5,
            "amber_max": 10,
            "breach_rule": "SUSTAINED",
            "breach_periods": 3,
            "escalation_rules": {"red": {"notify": ["cro@alpha.test"], "sla_days": 1}},
        },
    )
    assert resp.status_code == 201
    metric = resp.json()
    assert metric["thresholds_locked"] is False
    assert metric["escalation_rules"]["red"]["notify"] == ["cro@alpha.test"]

    resp = await client.post(f"/api/v1/tolerances/{metric['id']}/kri", json={"kri_id": str(kri_a.id)})
    assert resp.status_code == 200
    assert resp.json()["thresholds_locked"] is True
    assert resp.json()["kri_id"] == str(kri_a.id)

    resp = await client.patch(f"/api/v1/tolerances/{metric['id']}", json={"green_max": 6})
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "E3001"

    resp = await client.patch(f"/api/v1/tolerances/{metric['id']}", json={"description": "Daily count"})
    assert resp.status_code == 200
    assert resp.json()["description"] == "Daily count"


@pytest.mark.asyncio
async def test_create_metric_with_inverted_thresholds_is_422(client, category_a):
    resp = await client.post(
        "/api/v1/tolerances",
        json={
            "category_id": str(category_a.id),
            "name": "Inverted",
            "metric_type": "MAXIMUM",
            "green_max": 12,
            "amber_max": 10,
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "E1001"


@pytest.mark.asyncio
async def test_create_metric_in_other_tenants_category_is_404(client, category_b):
    resp = await client.post(
        "/api/v1/tolerances",
        json={"category_id": str(category_b.id), "name": "X", "metric_type": "MAXIMUM", "green_max": 1, "amber_max": 2},
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_and_coverage_report(client, metric_a):
    resp = await client.get("/api/v1/tolerances")
    assert [m["id"] for m in resp.json()] == [str(metric_a.id)]

    resp = await client.get("/api/v1/tolerances/coverage/report")
    assert resp.status_code == 200
    report = resp.json()
    assert report["total_metrics"] == 1
    # metric_a has its feed KRI set directly, without a coverage row
    assert report["gap_count"] == 1


# ── Observations & breaches ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_observation_reports_evaluations(client, kri_a, metric_a):
    resp = await client.post(f"/api/v1/kris/{kri_a.id}/observations", json={"value": 7.0})
    assert resp.status_code == 201
    [evaluation] = resp.json()["evaluations"]
    assert evaluation["metric_id"] == str(metric_a.id)
    assert evaluation["zone"] == "AMBER"
    assert evaluation["breached"] is True
    assert evaluation["breach_created"] is True
    assert evaluation["threshold_value"] == 5.0


@pytest.mark.asyncio
async def test_bad_quality_observation_reports_no_evaluations(client, kri_a, metric_a):
    resp = await client.post(
        f"/api/v1/kris/{kri_a.id}/observations", json={"value": 99.0, "data_quality_ok": False}
    )
    assert resp.status_code == 201
    assert resp.json()["data_quality_ok"] is False
    assert resp.json()["evaluations"] == []


@pytest.mark.asyncio
async def test_breach_detail_includes_event_trail(client, breach_id):
    resp = await client.get(f"/api/v1/breaches/{breach_id}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "OPEN"
    assert data["severity"] == "RED"
    assert {e["event_type"] for e in data["events"]} == {"DETECTED", "OPENED", "ESCALATED"}


@pytest.mark.asyncio
async def test_breach_lifecycle_endpoints(client, breach_id):
    resp = await client.post(f"/api/v1/breaches/{breach_id}/acknowledge")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACKNOWLEDGED"
    assert resp.json()["acknowledged_by"] == "manager@alpha.test"

    resp = await client.post(f"/api/v1/breaches/{breach_id}/acknowledge")
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "E3000"

    resp = await client.post(
        f"/api/v1/breaches/{breach_id}/remediation",
        json={"plan": "Switch to secondary processor", "owner": "ops@alpha.test"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "IN_PROGRESS"

    resp = await client.post(f"/api/v1/breaches/{breach_id}/resolve", json={"notes": ""})
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "E1001"

    resp = await client.post(f"/api/v1/breaches/{breach_id}/resolve", json={"notes": "Processor restored"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "RESOLVED"

    resp = await client.get("/api/v1/breaches", params={"active_only": True})
    assert resp.json() == []


@pytest.mark.asyncio
async def test_other_tenant_gets_404(client, breach_id, token_b):
    headers = {"Authorization": f"Bearer {token_b}"}
    resp = await client.get(f"/api/v1/breaches/{breach_id}", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "E2000"

    resp = await client.post(f"/api/v1/breaches/{breach_id}/acknowledge", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_board_exception_endpoints(client, breach_id):
    valid_until = (datetime.utcnow() + timedelta(days=30)).isoformat()
    resp = await client.post(
        f"/api/v1/breaches/{breach_id}/exceptions",
        json={"rationale": "Vendor migration window", "valid_until": valid_until, "green_max": 13, "amber_max": 20},
    )
    assert resp.status_code == 201
    exc = resp.json()
    assert exc["status"] == "PENDING"
    assert exc["temporary_thresholds"] == {"green_max": 13.0, "amber_max": 20.0}

    resp = await client.post(f"/api/v1/breaches/exceptions/{exc['id']}/approve", json={"notes": "Agreed"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"

    resp = await client.get(f"/api/v1/breaches/{breach_id}")
    assert resp.json()["status"] == "BOARD_ACCEPTED"

    resp = await client.post(f"/api/v1/breaches/exceptions/{exc['id']}/reject")
    assert resp.status_code == 409


# ── Status & recalculation ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_status_and_stats(client, breach_id, category_a):
    resp = await client.get("/api/v1/appetite/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["overall_status"] == "RED"
    assert data["summary"]["red_count"] == 1
    assert data["recalculating"] is False

    resp = await client.get(f"/api/v1/appetite/categories/{category_a.id}/status")
    assert resp.json()["metrics"][0]["breach_id"] == breach_id

    resp = await client.get("/api/v1/breaches/stats")
    assert resp.json()["total"] == 1
    assert resp.json()["active"] == 1


@pytest.mark.asyncio
async def test_recalculate_endpoint(client, breach_id):
    resp = await client.post("/api/v1/appetite/recalculate")
    assert resp.status_code == 200
    data = resp.json()
    assert data["metrics_evaluated"] == 1
    assert data["breaches_updated"] == 1
    assert data["breaches_opened"] == 0
    assert data["risks_out_of_appetite"] == 0
