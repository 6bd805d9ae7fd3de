import httpx
from fastapi.testclient import TestClient

from adpilot.auth.dependencies import AuthContext, get_current_user
from adpilot.db.enums import AgentTypeEnum
from adpilot.db.models import Lead
from adpilot.db.repositories import AgentRunsRepository
from adpilot.main import app
from adpilot.services.dispatcher import AgentDispatcher, get_agent_dispatcher

AUTH_HEADERS = {"Authorization": "Bearer user-token"}
CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def _launch(client: TestClient, business_id: str, **fields):
    body = {"business_id": business_id, "headline": "Burst pipe?", "body": "Same-day plumber.", "cta": "Get Quote"}
    body.update(fields)
    return client.post("/campaigns/launch", headers=AUTH_HEADERS, json=body)


def test_health_endpoints():
    with TestClient(app) as client:
        health = client.get("/health")
        db_health = client.get("/health/db")

    assert health.status_code == 200
    assert health.json() == {"ok": True}
    assert db_health.status_code == 200
    assert "db" in db_health.json()


def test_user_routes_require_auth():
    app.dependency_overrides.clear()
    with TestClient(app) as client:
        resp = client.post("/campaigns/launch", json={})
    assert resp.status_code == 401


def test_cron_rejects_missing_or_wrong_secret(override_dependencies):
    with TestClient(app) as client:
        missing = client.post("/cron/dispatch-agents")
        wrong = client.post("/cron/dispatch-agents", headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Unauthorized. Invalid CRON_SECRET."


def test_cron_dispatch_rejects_other_methods(override_dependencies):
    with TestClient(app) as client:
        resp = client.get("/cron/dispatch-agents", headers=CRON_HEADERS)
    assert resp.status_code == 405


def test_cron_dispatch_returns_report(override_dependencies, automation_config, business):
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(202, json={"accepted": True})

    dispatcher = AgentDispatcher(base_url="http://agents.test", transport=httpx.MockTransport(handler))
    app.dependency_overrides[get_agent_dispatcher] = lambda: dispatcher

    with TestClient(app) as client:
        resp = client.post("/cron/dispatch-agents", headers=CRON_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["dispatched"] == 3
    assert body["skipped"] == 0
    assert body["errors"] == 0
    assert body["message"] == "Dispatch complete. 3 dispatched, 0 skipped, 0 errors."
    assert {item["agent"] for item in body["results"]} == {
        "competitor_analyst",
        "review_scout",
        "creative_director",
    }
    assert all(item["business_name"] == business.name for item in body["results"])


def test_launch_missing_fields_is_400(override_dependencies):
    with TestClient(app) as client:
        resp = client.post("/campaigns/launch", headers=AUTH_HEADERS, json={"business_id": "biz"})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required fields: headline, body, cta"}


def test_launch_unknown_business_is_404(override_dependencies):
    with TestClient(app) as client:
        resp = _launch(client, "does-not-exist")
    assert resp.status_code == 404


def test_launch_for_someone_elses_business_is_403(override_dependencies, business, fake_graph):
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id="intruder")

    with TestClient(app) as client:
        resp = _launch(client, business.id)

    assert resp.status_code == 403
    assert fake_graph.calls == []


def test_launch_without_token_asks_for_reconnect(override_dependencies, business, db_session):
    business.facebook_access_token = None
    db_session.commit()

    with TestClient(app) as client:
        resp = _launch(client, business.id)

    assert resp.status_code == 400
    assert resp.json()["reconnect_required"] is True


def test_launch_success_returns_persisted_campaign(override_dependencies, business):
    with TestClient(app) as client:
        resp = _launch(client, business.id)
        fetched = client.get(f"/campaigns/{resp.json()['id']}", headers=AUTH_HEADERS)

    assert resp.status_code == 201
    campaign = resp.json()
    assert campaign["status"] == "active"
    assert campaign["daily_budget_cents"] == 1500
    assert campaign["platform_ad_ids"] == ["ad_1"]
    assert fetched.status_code == 200
    assert fetched.json()["platform_campaign_id"] == "cmp_1"


def test_launch_platform_rejection_then_retry(override_dependencies, business, fake_graph):
    fake_graph.rejections["adsets"] = {1}

    with TestClient(app) as client:
        failed = _launch(client, business.id)
        stuck = client.get("/cron/stuck-campaigns?older_than_minutes=0", headers=CRON_HEADERS)
        campaign_id = failed.json()["campaign_id"]
        retried = client.post(f"/campaigns/{campaign_id}/retry", headers=AUTH_HEADERS)

    assert failed.status_code == 502
    body = failed.json()
    assert body["step"] == "adset"
    assert body["meta_error"]["message"] == "adsets rejected"
    assert body["remote_ids"]["platform_campaign_id"] == "cmp_1"

    assert stuck.status_code == 200
    assert [c["id"] for c in stuck.json()["campaigns"]] == [campaign_id]

    assert retried.status_code == 200
    assert retried.json()["status"] == "active"
    assert len(fake_graph.of_kind("campaigns")) == 1


def test_pause_resume_and_budget(override_dependencies, business, fake_graph):
    with TestClient(app) as client:
        campaign_id = _launch(client, business.id).json()["id"]
        paused = client.post(f"/campaigns/{campaign_id}/pause", headers=AUTH_HEADERS)
        resumed = client.post(f"/campaigns/{campaign_id}/resume", headers=AUTH_HEADERS)
        budget = client.post(
            f"/campaigns/{campaign_id}/budget", headers=AUTH_HEADERS, json={"daily_budget_cents": 3000}
        )

    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"
    assert resumed.json()["status"] == "active"
    assert budget.status_code == 200
    assert budget.json()["daily_budget_cents"] == 3000

    status_calls = fake_graph.of_kind("status")
    assert status_calls[-2] == ("/v21.0/cmp_1", {"status": "PAUSED", "access_token": "EAAB-test-token"})
    assert status_calls[-1][1]["status"] == "ACTIVE"
    assert fake_graph.of_kind("budget")[0] == (
        "/v21.0/adset_1",
        {"daily_budget": "3000", "access_token": "EAAB-test-token"},
    )


def test_pause_rejected_for_errored_campaign(override_dependencies, business, fake_graph):
    fake_graph.rejections["adsets"] = {1}

    with TestClient(app) as client:
        campaign_id = _launch(client, business.id).json()["campaign_id"]
        resp = client.post(f"/campaigns/{campaign_id}/pause", headers=AUTH_HEADERS)

    assert resp.status_code == 409


def test_lead_quality_feedback(override_dependencies, business, db_session, fake_graph):
    lead = Lead(business_id=business.id, email="a@b.test", platform_lead_id="fb_1")
    db_session.add(lead)
    db_session.commit()

    with TestClient(app) as client:
        resp = client.post(f"/leads/{lead.id}/quality", headers=AUTH_HEADERS, json={"quality": "good"})

    assert resp.status_code == 200
    assert resp.json()["sent"] is True
    assert resp.json()["quality"] == "good"
    assert len(fake_graph.of_kind("events")) == 1


def test_agent_run_report_closes_window(override_dependencies, business, db_session):
    with TestClient(app) as client:
        unauthorized = client.post(
            "/agent-runs",
            json={"business_id": business.id, "agent_type": "review_scout", "outcome": "completed"},
        )
        resp = client.post(
            "/agent-runs",
            headers=CRON_HEADERS,
            json={"business_id": business.id, "agent_type": "review_scout", "outcome": "completed"},
        )

    assert unauthorized.status_code == 401
    assert resp.status_code == 200
    assert resp.json()["last_outcome"] == "completed"
    run = AgentRunsRepository(db_session).get(business_id=business.id, agent_type=AgentTypeEnum.review_scout)
    assert run.last_run_at is not None
