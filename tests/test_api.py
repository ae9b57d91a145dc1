"""HTTP-level tests for the routing and analysis endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import pytest
from fastapi import Request
from httpx import ASGITransport, AsyncClient

from conftest import TEAM_ID, add_decisions
from deskrouter.api.deps import get_analysis_summarizer, get_desk_scorer
from deskrouter.core.exceptions import InvalidRuleError, LLMUnavailableError, RuleNotFoundError
from deskrouter.database import get_db
from deskrouter.main import app, routing_error_handler
from deskrouter.services import ledger as ledger_module

HEADERS = {"X-Team-Id": TEAM_ID}


@pytest.fixture
async def client(session_factory, desks):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_desk_scorer] = lambda: None
    app.dependency_overrides[get_analysis_summarizer] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def test_team_header_is_required(client):
    response = await client.get("/api/routing/rules")

    assert response.status_code == 400


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_rule_classify_decision_flow(client):
    created = await client.post(
        "/api/routing/rules",
        json={
            "condition": {"type": "category_match", "category": "code"},
            "action": {"desk_id": "desk-code"},
        },
        headers=HEADERS,
    )
    assert created.status_code == 201
    rule = created.json()
    assert rule["is_active"] is True
    assert rule["source"] == "manual"

    classified = await client.post(
        "/api/routing/classify",
        json={"title": "Refactor the auth module"},
        headers=HEADERS,
    )
    assert classified.status_code == 200
    body = classified.json()
    assert body["used_llm"] is False
    top = body["suggestions"][0]
    assert top["desk_id"] == "desk-code"
    assert top["matched_rule_ids"] == [rule["id"]]
    assert top["model_name"] == "Claude Opus 4"

    recorded = await client.post(
        "/api/routing/decision",
        json={
            "task_title": "Refactor the auth module",
            "suggested_desk_id": top["desk_id"],
            "suggested_model_id": top["model_id"],
            "confidence": top["confidence"],
            "decision": "accepted",
            "matched_rules": top["matched_rule_ids"],
        },
        headers=HEADERS,
    )
    assert recorded.status_code == 200
    assert recorded.json()["ok"] is True

    rules = (await client.get("/api/routing/rules", headers=HEADERS)).json()
    assert rules[0]["hit_count"] == 1
    assert rules[0]["success_count"] == 1

    stats = (await client.get("/api/routing/stats?days=7", headers=HEADERS)).json()
    assert stats["total_suggestions"] == 1
    assert stats["acceptance_rate"] == 1.0
    assert stats["active_rules"] == 1


async def test_rule_toggle_and_delete(client):
    rule = (
        await client.post(
            "/api/routing/rules",
            json={"condition": {"type": "keyword_match", "keywords": ["invoice"]}, "action": {"desk_id": "desk-finance"}},
            headers=HEADERS,
        )
    ).json()

    toggled = await client.patch(
        f"/api/routing/rules/{rule['id']}/toggle", json={"is_active": False}, headers=HEADERS
    )
    assert toggled.status_code == 200
    assert toggled.json()["is_active"] is False

    active = await client.get("/api/routing/rules?is_active=true", headers=HEADERS)
    assert active.json() == []

    assert (await client.delete(f"/api/routing/rules/{rule['id']}", headers=HEADERS)).status_code == 204
    assert (await client.delete(f"/api/routing/rules/{rule['id']}", headers=HEADERS)).status_code == 404


async def test_invalid_inputs(client):
    empty_title = await client.post("/api/routing/classify", json={"title": "  "}, headers=HEADERS)
    bad_condition = await client.post(
        "/api/routing/rules",
        json={"condition": {"type": "regex_match", "pattern": "x"}, "action": {"desk_id": "desk-code"}},
        headers=HEADERS,
    )
    bad_decision = await client.post(
        "/api/routing/decision",
        json={"task_title": "x", "decision": "maybe"},
        headers=HEADERS,
    )
    missing_toggle = await client.patch(
        f"/api/routing/rules/{uuid.uuid4()}/toggle", json={"is_active": True}, headers=HEADERS
    )

    assert empty_title.status_code == 400
    assert bad_condition.status_code == 422
    assert bad_decision.status_code == 422
    assert missing_toggle.status_code == 404


async def test_analysis_review_flow(client, db):
    add_decisions(db, desk_id="desk-code", model_id="claude-opus-4", decision="accepted", count=10)
    add_decisions(db, desk_id="desk-finance", model_id="claude-sonnet-4", decision="accepted", count=10)
    await db.commit()

    triggered = await client.post("/api/routing/analysis/trigger?run_type=weekly", headers=HEADERS)
    assert triggered.status_code == 200
    run = triggered.json()
    assert run["status"] == "completed"
    assert run["tasks_analyzed"] == 20
    [pending] = run["related_rules"]
    assert pending["is_active"] is False
    assert pending["analysis_run_id"] == run["id"]

    again = await client.post("/api/routing/analysis/trigger?run_type=weekly", headers=HEADERS)
    assert again.json()["id"] == run["id"]

    approved = await client.post(
        f"/api/routing/analysis/{run['id']}/approve-rule/{pending['id']}", headers=HEADERS
    )
    assert approved.status_code == 200
    assert approved.json()["is_active"] is True

    rejected = await client.post(
        f"/api/routing/analysis/{run['id']}/reject-rule/{pending['id']}", headers=HEADERS
    )
    assert rejected.json() == {"ok": True, "deleted_rule_id": None}

    detail = (await client.get(f"/api/routing/analysis/{run['id']}", headers=HEADERS)).json()
    assert detail["user_reviewed"] is True
    assert detail["related_rules"][0]["is_active"] is True

    listing = (await client.get("/api/routing/analysis", headers=HEADERS)).json()
    assert listing["total"] == 1
    assert listing["runs"][0]["id"] == run["id"]


async def test_analysis_not_found(client):
    missing = await client.get(f"/api/routing/analysis/{uuid.uuid4()}", headers=HEADERS)
    approve = await client.post(
        f"/api/routing/analysis/{uuid.uuid4()}/approve-rule/{uuid.uuid4()}", headers=HEADERS
    )

    assert missing.status_code == 404
    assert approve.status_code == 404


async def test_escaped_domain_errors_map_to_status_codes():
    request = Request({"type": "http", "method": "GET", "path": "/api/routing/rules", "headers": [], "query_string": b""})

    not_found = await routing_error_handler(request, RuleNotFoundError("gone"))
    invalid = await routing_error_handler(request, InvalidRuleError("bad condition"))
    unexpected = await routing_error_handler(request, LLMUnavailableError("down"))

    assert not_found.status_code == 404
    assert invalid.status_code == 400
    assert unexpected.status_code == 500


async def test_stats_default_to_configured_window(client, db, monkeypatch):
    monkeypatch.setattr(ledger_module.settings, "stats_window_days", 1)
    add_decisions(db, desk_id="desk-finance", model_id="claude-sonnet-4", decision="accepted", count=1)
    add_decisions(db, desk_id="desk-finance", model_id="claude-sonnet-4", decision="accepted", count=1,
                  created_at=datetime.utcnow() - timedelta(days=3))
    await db.commit()

    default = (await client.get("/api/routing/stats", headers=HEADERS)).json()
    week = (await client.get("/api/routing/stats?days=7", headers=HEADERS)).json()
    too_wide = await client.get("/api/routing/stats?days=365", headers=HEADERS)

    assert default["total_suggestions"] == 1
    assert week["total_suggestions"] == 2
    assert too_wide.status_code == 422
