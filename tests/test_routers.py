from unittest.mock import AsyncMock, MagicMock

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from callwatch.exceptions import CallwatchError, ProviderProtocolError
from callwatch.services.orchestrator import EvaluationOrchestrator
from conftest import MODEL, make_metadata


def _evaluate_body(transcript: str, **metadata) -> dict:
    return {
        "metadata": make_metadata(**metadata).model_dump(),
        "transcript": transcript,
        "use_llm": False,
    }


def _alert_body(alert_id: str, rule_id: str = "DNC-001") -> dict:
    return {
        "alert": {
            "id": alert_id,
            "rule_id": rule_id,
            "title": "Customer Requested No Further Calls",
            "severity": "high",
            "confidence": 90,
            "evidence": {"quote": "don't call me", "start_char": 7, "end_char": 20},
            "rationale": "Verbal revocation.",
            "remediation": "Confirm DNC placement.",
        },
        "metadata": make_metadata().model_dump(),
    }


class TestEvaluationRouter:
    def test_evaluate(self, client: TestClient):
        resp = client.post(
            "/api/v1/evaluate",
            json=_evaluate_body("Hello, don't call me again", is_dnc_listed=True),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert [a["rule_id"] for a in data["alerts"]] == ["DNC-001", "DNC-003"]
        assert data["llm_used"] is False
        assert len(data["suggested_next_lines"]) == 2
        assert data["evaluation_time_ms"] >= 0

    def test_evaluate_is_idempotent_per_call(self, client: TestClient):
        body = _evaluate_body("Customer: don't call me")
        assert len(client.post("/api/v1/evaluate", json=body).json()["alerts"]) == 1
        assert client.post("/api/v1/evaluate", json=body).json()["alerts"] == []

    def test_empty_transcript_still_checks_metadata(self, client: TestClient):
        resp = client.post("/api/v1/evaluate", json=_evaluate_body("", is_dnc_listed=True))
        assert resp.status_code == 200
        assert [a["rule_id"] for a in resp.json()["alerts"]] == ["DNC-003"]

    def test_whitespace_transcript(self, client: TestClient):
        resp = client.post("/api/v1/evaluate", json=_evaluate_body("   ", is_prerecorded=True))
        assert resp.status_code == 200
        assert [a["rule_id"] for a in resp.json()["alerts"]] == ["PREC-001"]

    def test_invalid_metadata(self, client: TestClient):
        resp = client.post(
            "/api/v1/evaluate", json={"metadata": {"call_id": "x"}, "transcript": "hi"}
        )
        assert resp.status_code == 422

    def test_session_lifecycle(self, client: TestClient):
        body = _evaluate_body("Customer: don't call me")
        client.post("/api/v1/evaluate", json=body)

        resp = client.post("/api/v1/sessions", json=make_metadata().model_dump())
        assert resp.status_code == 200
        assert resp.json() == {"call_id": "call-1"}
        # Fresh session: the rule can fire again
        assert len(client.post("/api/v1/evaluate", json=body).json()["alerts"]) == 1

        resp = client.post("/api/v1/sessions/call-1/end")
        assert resp.json() == {"ok": True}

    def test_reset_evaluator(self, client: TestClient):
        body = _evaluate_body("Customer: don't call me")
        client.post("/api/v1/evaluate", json=body)

        assert client.post("/api/v1/evaluator/reset", params={"call_id": "call-1"}).json() == {"ok": True}
        assert len(client.post("/api/v1/evaluate", json=body).json()["alerts"]) == 1

    def test_health(self, client: TestClient):
        assert client.get("/api/v1/health").json() == {
            "status": "ok",
            "rules_enabled": 11,
            "llm_available": False,
        }

    def test_store_error_maps_to_500(self, test_app: FastAPI):
        from callwatch.main import callwatch_error_handler

        test_app.add_exception_handler(CallwatchError, callwatch_error_handler)
        with TestClient(test_app) as client:
            metadata = make_metadata().model_dump()
            client.post("/api/v1/sessions", json=metadata)
            resp = client.post("/api/v1/sessions", json=metadata)
        assert resp.status_code == 500
        assert "start call session" in resp.json()["detail"]


class TestRulesRouter:
    def test_list_rules(self, client: TestClient):
        data = client.get("/api/v1/rules").json()
        assert data["version"] == "1.0.0"
        assert len(data["rules"]) == 11

    def test_filter_by_category(self, client: TestClient):
        data = client.get("/api/v1/rules", params={"category": "do_not_call"}).json()
        assert [r["id"] for r in data["rules"]] == ["DNC-001", "DNC-002", "DNC-003"]

    def test_unknown_category(self, client: TestClient):
        assert client.get("/api/v1/rules", params={"category": "spam"}).status_code == 422

    def test_get_rule(self, client: TestClient):
        data = client.get("/api/v1/rules/CONS-001").json()
        assert data["severity"] == "high"
        assert "opt me out" in data["triggers"]

    def test_get_unknown_rule(self, client: TestClient):
        assert client.get("/api/v1/rules/NOPE-1").status_code == 404

    def test_prompt_text(self, client: TestClient, orchestrator: EvaluationOrchestrator):
        resp = client.get("/api/v1/rules/prompt")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text == orchestrator.catalog.render_for_prompt()


class TestLlmRouter:
    def test_status(self, client: TestClient):
        assert client.get("/api/v1/llm/status").json() == {
            "available": False,
            "model": MODEL,
            "endpoint": "http://localhost:11434",
        }

    def test_check(self, client: TestClient):
        assert client.post("/api/v1/llm/check").json()["available"] is True
        assert client.get("/api/v1/llm/status").json()["available"] is True

    def test_check_unreachable(self, client: TestClient, mock_client: MagicMock):
        mock_client.list_models = AsyncMock(side_effect=httpx.ConnectError("refused"))
        assert client.post("/api/v1/llm/check").json()["available"] is False

    def test_check_garbled_tag_list(self, client: TestClient, mock_client: MagicMock):
        mock_client.list_models = AsyncMock(side_effect=ProviderProtocolError("not JSON"))
        resp = client.post("/api/v1/llm/check")
        assert resp.status_code == 200
        assert resp.json()["available"] is False

    def test_set_model(self, client: TestClient, mock_client: MagicMock):
        mock_client.list_models = AsyncMock(return_value=["qwen2:7b"])
        data = client.put("/api/v1/llm/model", json={"model": "qwen2:7b"}).json()
        assert data == {"available": True, "model": "qwen2:7b", "endpoint": "http://localhost:11434"}

    def test_set_empty_model(self, client: TestClient):
        assert client.put("/api/v1/llm/model", json={"model": ""}).status_code == 422


class TestAlertsRouter:
    def test_store_and_list(self, client: TestClient):
        resp = client.post("/api/v1/alerts", json=_alert_body("a1"))
        assert resp.status_code == 201
        assert resp.json() == {"id": "a1"}
        client.post("/api/v1/alerts", json=_alert_body("a2", "CONS-001"))

        rows = client.get("/api/v1/alerts", params={"rule_id": "CONS-001"}).json()
        assert [r["id"] for r in rows] == ["a2"]
        assert rows[0]["agent_name"] == "Jordan"

    def test_invalid_severity_filter(self, client: TestClient):
        assert client.get("/api/v1/alerts", params={"severity": "critical"}).status_code == 422

    def test_export(self, client: TestClient):
        client.post("/api/v1/alerts", json=_alert_body("a1"))
        resp = client.get("/api/v1/alerts/export")
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]
        assert [a["id"] for a in resp.json()] == ["a1"]

    def test_analytics(self, client: TestClient):
        client.post("/api/v1/alerts", json=_alert_body("a1"))
        data = client.get(
            "/api/v1/analytics", params={"start_date": "2000-01-01", "end_date": "2999-12-31"}
        ).json()
        assert data["total_alerts"] == 1
        assert data["alerts_by_severity"]["high"] == 1

    def test_analytics_requires_window(self, client: TestClient):
        assert client.get("/api/v1/analytics").status_code == 422

    def test_store_not_configured(self, orchestrator: EvaluationOrchestrator):
        from callwatch.routers import alerts

        app = FastAPI()
        app.state.orchestrator = orchestrator
        app.include_router(alerts.router)
        with TestClient(app) as client:
            assert client.get("/api/v1/alerts").status_code == 503
