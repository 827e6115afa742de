"""Tests for the FastAPI API endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from autopilot_kernel.api.app import create_app
from autopilot_kernel.core.config import Settings
from autopilot_kernel.generator.adapter import ProposalGeneratorAdapter
from autopilot_kernel.models.thresholds import ThresholdConfig, TimeRestrictions

PERFECT_HISTORY = {"similar_actions_count": 40, "success_rate": 100, "avg_effectiveness_score": 100}
ALL_RULES_PASS = {"timing_appropriate": True, "resources_available": True, "no_conflicts": True}


def _candidate(candidate_id: str = "cand_1", **overrides) -> dict:
    candidate = {
        "id": candidate_id,
        "type": "borrower_call",
        "urgency": "this_week",
        "borrower_id": "bor_1",
        "facility_id": f"fac_{candidate_id}",
        "title": "Call CFO about Q3 leverage",
    }
    candidate.update(overrides)
    return candidate


@pytest.fixture
def client():
    """Create a test client with fresh components and an always-open window."""
    config = ThresholdConfig(time_restrictions=TimeRestrictions(business_hours_only=False))
    app = create_app(
        settings=Settings(execution_delay_seconds=0),
        threshold_config=config,
    )
    return TestClient(app)


def _admit(client, candidate_id="cand_1", confident=True):
    body = {"candidate": _candidate(candidate_id)}
    if confident:
        body["historical_data"] = PERFECT_HISTORY
        body["rule_based_factors"] = ALL_RULES_PASS
    response = client.post("/candidates", json=body)
    assert response.status_code == 200
    return response.json()


class TestHealthAndThresholds:
    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["config_version"] == "1"
        assert data["fail_closed"] is False

    def test_get_thresholds(self, client):
        data = client.get("/thresholds").json()
        assert data["global_threshold"] == 85
        assert data["type_thresholds"]["amendment_draft"] == 95

    def test_replace_thresholds(self, client):
        response = client.put("/thresholds?actor=risk_ops", json={
            "version": "2",
            "global_threshold": 90,
            "time_restrictions": {"business_hours_only": False},
        })
        assert response.status_code == 200
        assert client.get("/health").json()["config_version"] == "2"

        events = client.get("/audit", params={"kind": "config_change"}).json()
        assert events[0]["payload"]["actor"] == "risk_ops"

    def test_incomplete_thresholds_refused(self, client):
        response = client.put("/thresholds", json={"type_thresholds": {"borrower_call": 70}})
        assert response.status_code == 422
        assert client.get("/health").json()["config_version"] == "1"

    def test_invalid_schedule_refused_whole(self, client):
        response = client.put("/thresholds", json={
            "version": "2",
            "global_threshold": 10,
            "time_restrictions": {"business_hours_schedule": "not a cron", "max_actions_per_hour": 1},
        })
        assert response.status_code == 422
        assert client.get("/thresholds").json()["global_threshold"] == 85
        assert client.get("/queue/metrics").json()["rate_limit"]["max_per_hour"] == 10

    def test_unreadable_config_runs_fail_closed(self, tmp_path):
        app = create_app(settings=Settings(
            threshold_config_path=str(tmp_path / "missing.json"),
        ))
        client = TestClient(app)
        assert client.get("/health").json()["fail_closed"] is True
        assert client.get("/thresholds").status_code == 503

        outcome = _admit(client)
        assert outcome["item"]["status"] == "pending_review"
        assert outcome["error_kind"] == "config_incomplete"


class TestGovernanceEvaluate:
    def test_dry_run_does_not_admit(self, client):
        response = client.post("/governance/evaluate", json={
            "candidate": _candidate(),
            "historical_data": PERFECT_HISTORY,
            "rule_based_factors": ALL_RULES_PASS,
        })
        data = response.json()
        assert data["is_eligible"] is True
        assert data["recommendation"] == "auto_approve"
        assert client.get("/queue").json() == []

    def test_waiver_needs_manual_approval(self, client):
        response = client.post("/governance/evaluate", json={
            "candidate": _candidate(type="waiver_request"),
            "historical_data": PERFECT_HISTORY,
            "rule_based_factors": ALL_RULES_PASS,
        })
        data = response.json()
        assert data["is_eligible"] is False
        assert data["blocker_codes"] == ["manual_approval_required"]

    def test_malformed_candidate(self, client):
        response = client.post("/governance/evaluate", json={"candidate": {"type": "borrower_call"}})
        assert response.status_code == 422


class TestCandidateAdmission:
    def test_confident_candidate_auto_approved(self, client):
        outcome = _admit(client)
        assert outcome["status"] == "admitted"
        assert outcome["decision"]["confidence_score"] == 100
        assert outcome["item"]["status"] == "auto_approved"

    def test_malformed_candidate_rejected(self, client):
        response = client.post("/candidates", json={"candidate": {"urgency": "today"}})
        assert response.status_code == 422

    def test_execute_once(self, client):
        item_id = _admit(client)["item"]["id"]

        response = client.post(f"/queue/{item_id}/execute")
        assert response.status_code == 200
        assert response.json()["result"]["success"] is True
        assert response.json()["item"]["status"] == "executed"

        assert client.post(f"/queue/{item_id}/execute").status_code == 409


class FakeModelClient:
    def __init__(self, response: str = "", error: Exception = None):
        self.response = response
        self.error = error

    def complete(self, prompt: str) -> str:
        if self.error is not None:
            raise self.error
        return self.response


GENERATION_CONTEXT = {
    "prediction": {
        "id": "pred_1", "borrower_id": "bor_1", "facility_id": "fac_1", "breach_probability": 68,
    },
    "portfolio": {"total_exposure": 60_000_000},
}


def _generator_client(model_client) -> TestClient:
    app = create_app(
        settings=Settings(execution_delay_seconds=0),
        generator=ProposalGeneratorAdapter(model_client),
    )
    return TestClient(app)


class TestGeneratorEndpoint:
    def test_proposals_are_admitted(self):
        proposal = {
            "type": "borrower_call",
            "title": "Call CFO about Q3 leverage",
            "urgency": "this_week",
            "borrower_id": "bor_1",
            "facility_id": "fac_1",
        }
        client = _generator_client(FakeModelClient(json.dumps({"actions": [proposal]})))
        outcomes = client.post("/generator/proposals", json=GENERATION_CONTEXT).json()
        assert [o["status"] for o in outcomes] == ["admitted"]
        assert outcomes[0]["item"]["candidate"]["source"] == "generator"

    def test_generator_failures_are_unavailable(self):
        down = _generator_client(FakeModelClient(error=ConnectionError("refused")))
        assert down.post("/generator/proposals", json=GENERATION_CONTEXT).status_code == 503

        garbled = _generator_client(FakeModelClient("Sure! Here are some actions."))
        assert garbled.post("/generator/proposals", json=GENERATION_CONTEXT).status_code == 503
        assert garbled.get("/queue").json() == []

    def test_no_generator_configured(self, client):
        assert client.post("/generator/proposals", json=GENERATION_CONTEXT).status_code == 503


class TestReviewEndpoints:
    def test_approve_flow(self, client):
        item = _admit(client, confident=False)["item"]
        assert item["status"] == "pending_review"
        assert client.post(f"/queue/{item['id']}/execute").status_code == 409

        response = client.post(f"/queue/{item['id']}/approve", json={
            "actor": "officer_1", "reason": "spoke to RM", "expected_version": item["version"],
        })
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        again = client.post(f"/queue/{item['id']}/approve", json={"actor": "officer_2"})
        assert again.status_code == 409

    def test_reject_and_cancel(self, client):
        a = _admit(client, "c1", confident=False)["item"]
        b = _admit(client, "c2")["item"]
        assert client.post(f"/queue/{a['id']}/reject", json={}).json()["status"] == "rejected"
        assert client.post(f"/queue/{b['id']}/cancel", json={}).json()["status"] == "expired"

    def test_unknown_item(self, client):
        assert client.get("/queue/q_missing").status_code == 404
        assert client.post("/queue/q_missing/approve", json={}).status_code == 404

    def test_list_filter_and_metrics(self, client):
        _admit(client, "c1")
        _admit(client, "c2", confident=False)
        pending = client.get("/queue", params={"status": "pending_review"}).json()
        assert [i["candidate_id"] for i in pending] == ["c2"]

        metrics = client.get("/queue/metrics").json()
        assert metrics["total"] == 2
        assert metrics["deferred"] == 0
        assert metrics["rate_limit"]["last_hour"] == 2

    def test_batch_approve(self, client):
        a = _admit(client, "c1", confident=False)["item"]
        b = _admit(client, "c2", confident=False)["item"]
        data = client.post("/queue/batch-approve", json={
            "item_ids": [a["id"], b["id"], "q_missing"], "actor": "officer_1",
        }).json()
        assert data["approved"] == [a["id"], b["id"]]
        assert list(data["failed"]) == ["q_missing"]

    def test_prioritize(self, client):
        for n, urgency in enumerate(["immediate", "this_week", "this_month"]):
            client.post("/candidates", json={"candidate": _candidate(f"c{n}", urgency=urgency)})
        data = client.post("/queue/prioritize", json={
            "constraints": {"max_simultaneous": 2, "available_resources": "moderate"},
        }).json()
        assert [p["candidate_id"] for p in data["prioritized"]] == ["c0", "c1"]
        assert data["excluded"][0]["reason"] == "resource_constraint"


class TestEscalationEndpoints:
    def test_prediction_escalates_and_resolves(self, client):
        response = client.post("/escalation/predictions", json={
            "id": "pred_1",
            "borrower_id": "bor_1",
            "facility_id": "fac_1",
            "breach_probability": 60,
        })
        data = response.json()
        assert data["observation"]["current_level"] == "engagement"
        assert data["admissions"][0]["item"]["candidate"]["source"] == "escalation_monitor"

        state = client.get("/escalation/bor_1/fac_1").json()
        assert state["level"] == "engagement"

        resolved = client.post("/escalation/bor_1/fac_1/resolve", json={"reason": "cured"}).json()
        assert resolved["level"] == "monitoring"


class TestAuditEndpoints:
    def test_trail_and_verify(self, client):
        item = _admit(client, confident=False)["item"]
        client.post(f"/queue/{item['id']}/approve", json={"actor": "officer_1"})

        trail = client.get("/audit", params={"subject_id": item["id"]}).json()
        assert [e["payload"]["transition"]["to_status"] for e in trail] == [
            "pending_review", "approved",
        ]

        verify = client.get("/audit/verify").json()
        assert verify["integrity_valid"] is True
        assert verify["total_records"] == 3
