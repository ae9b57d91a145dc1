"""Tests for the decision ledger and routing stats."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from conftest import TEAM_ID, make_rule
from deskrouter.core.exceptions import InvalidTaskError
from deskrouter.schemas.routing import RoutingDecisionCreate
from deskrouter.services.ledger import DecisionLedger
from deskrouter.services.rules import RuleStore


def decision(decision="accepted", **overrides) -> RoutingDecisionCreate:
    data = {
        "task_title": "Fix invoice rounding bug",
        "suggested_desk_id": "desk-finance",
        "suggested_model_id": "claude-sonnet-4",
        "confidence": 0.95,
        "decision": decision,
        "classifier_cost_usd": 0.001,
        "classifier_latency_ms": 12,
        "matched_rules": [],
    }
    data.update(overrides)
    return RoutingDecisionCreate(**data)


async def test_decisions_feed_rule_counters(db):
    store = RuleStore(db, TEAM_ID)
    rule = await store.create_rule({"type": "keyword_match", "keywords": ["invoice"]}, {"desk_id": "desk-finance"})
    ledger = DecisionLedger(db, TEAM_ID)

    for _ in range(6):
        await ledger.record(decision("accepted", matched_rules=[str(rule.id)]))
    for _ in range(2):
        await ledger.record(decision("modified", final_model_id="claude-haiku-3-5", matched_rules=[str(rule.id)]))
    for _ in range(2):
        await ledger.record(decision("rejected", matched_rules=[str(rule.id)]))

    refreshed = await store.get_rule(rule.id)
    assert refreshed.hit_count == 10
    assert refreshed.success_count == 8
    assert refreshed.success_count <= refreshed.hit_count


async def test_modified_decision_counts_as_success(db):
    store = RuleStore(db, TEAM_ID)
    rule = await store.create_rule({"type": "keyword_match", "keywords": ["invoice"]}, {"desk_id": "desk-finance"})
    ledger = DecisionLedger(db, TEAM_ID)

    await ledger.record(decision("modified", final_model_id="claude-haiku-3-5", matched_rules=[str(rule.id)]))
    await ledger.record(decision("skipped", matched_rules=[str(rule.id)]))

    refreshed = await store.get_rule(rule.id)
    assert (refreshed.hit_count, refreshed.success_count) == (2, 1)


async def test_duplicate_rule_ids_in_one_decision_count_once(db):
    store = RuleStore(db, TEAM_ID)
    rule = await store.create_rule({"type": "keyword_match", "keywords": ["invoice"]}, {"desk_id": "desk-finance"})

    row = await DecisionLedger(db, TEAM_ID).record(decision(matched_rules=[str(rule.id), str(rule.id)]))

    assert row.matched_rules == [str(rule.id)]
    assert (await store.get_rule(rule.id)).hit_count == 1


async def test_pending_rules_do_not_collect_hits(db):
    pending = make_rule({"type": "keyword_match", "keywords": ["invoice"]}, {"desk_id": "desk-finance"},
                        is_active=False, source="analysis")
    db.add(pending)
    await db.commit()

    await DecisionLedger(db, TEAM_ID).record(decision(matched_rules=[str(pending.id)]))

    refreshed = await RuleStore(db, TEAM_ID).get_rule(pending.id)
    assert (refreshed.hit_count, refreshed.success_count) == (0, 0)


async def test_duplicate_submissions_are_stored_separately(db):
    ledger = DecisionLedger(db, TEAM_ID)

    first = await ledger.record(decision(task_id="task-1"))
    second = await ledger.record(decision(task_id="task-1"))

    assert first.id != second.id
    rows = await ledger.list_decisions(datetime.utcnow() - timedelta(days=1))
    assert len(rows) == 2


async def test_blank_title_is_rejected(db):
    with pytest.raises(InvalidTaskError):
        await DecisionLedger(db, TEAM_ID).record(decision(task_title="   "))


async def test_decisions_are_team_scoped(db):
    await DecisionLedger(db, "team-2").record(decision())

    rows = await DecisionLedger(db, TEAM_ID).list_decisions(datetime.utcnow() - timedelta(days=1))

    assert rows == []


async def test_stats(db, desks):
    await RuleStore(db, TEAM_ID).create_rule({"type": "keyword_match", "keywords": ["x"]}, {"desk_id": "desk-code"})
    ledger = DecisionLedger(db, TEAM_ID)
    for _ in range(3):
        await ledger.record(decision("accepted"))
    await ledger.record(decision("rejected", final_desk_id="desk-code"))
    await ledger.record(decision("skipped", suggested_desk_id="desk-code", confidence=0.55))

    stats = await ledger.get_stats(7)

    assert stats["total_suggestions"] == 5
    assert stats["accepted"] == 3
    assert stats["rejected"] == 1
    assert stats["skipped"] == 1
    assert stats["modified"] == 0
    assert stats["acceptance_rate"] == pytest.approx(0.6)
    assert stats["total_classifier_cost"] == pytest.approx(0.005)
    assert stats["avg_confidence"] == pytest.approx(0.87)
    assert stats["active_rules"] == 1
    assert [d["desk_id"] for d in stats["top_desks"]] == ["desk-finance", "desk-code"]
    assert stats["top_desks"][0]["desk_name"] == "Finance Desk"
    assert stats["top_desks"][0]["accepted_count"] == 3
    assert len(stats["daily_activity"]) == 1
    assert stats["daily_activity"][0]["suggestions"] == 5


async def test_stats_for_empty_ledger(db):
    stats = await DecisionLedger(db, TEAM_ID).get_stats()

    assert stats["total_suggestions"] == 0
    assert stats["acceptance_rate"] == 0.0
    assert stats["top_desks"] == []
