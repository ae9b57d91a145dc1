"""Tests for rule condition parsing, matching and evaluation order."""

from __future__ import annotations

from datetime import datetime

import pytest

from conftest import make_rule
from deskrouter.core.code_detection import is_code_task
from deskrouter.core.exceptions import InvalidRuleError
from deskrouter.core.pricing import PricingTable
from deskrouter.core.rules import (
    CategoryMatch,
    KeywordMatch,
    TaskContext,
    compile_rules,
    match_rules,
    parse_action,
    parse_condition,
    rule_type_for,
)


class TestConditions:
    def test_keyword_condition_is_normalized(self):
        condition = parse_condition({"type": "keyword_match", "keywords": [" Invoice ", "", "BILLING"]})

        assert isinstance(condition, KeywordMatch)
        assert condition.keywords == ["invoice", "billing"]
        assert rule_type_for(condition) == "keyword_routing"

    def test_category_condition(self):
        condition = parse_condition({"type": "category_match", "category": "Finance"})

        assert isinstance(condition, CategoryMatch)
        assert condition.category == "finance"
        assert rule_type_for(condition) == "category_routing"

    @pytest.mark.parametrize(
        "data",
        [
            {"type": "regex_match", "pattern": ".*"},
            {"type": "keyword_match", "keywords": []},
            {"type": "keyword_match", "keywords": ["  "]},
            {"type": "category_match", "category": ""},
            {"keywords": ["invoice"]},
            "invoice",
        ],
    )
    def test_invalid_conditions_are_rejected(self, data):
        with pytest.raises(InvalidRuleError):
            parse_condition(data)

    def test_keyword_matching_is_case_insensitive_over_title_and_description(self):
        condition = KeywordMatch(keywords=["refund"])

        assert condition.matches(TaskContext.build("Customer email", "Please process the REFUND"))
        assert not condition.matches(TaskContext.build("Customer email", "Please reply"))

    def test_category_matching_uses_attached_categories(self):
        condition = CategoryMatch(category="code")

        assert condition.matches(TaskContext.build("Anything", categories=["Code"]))
        assert not condition.matches(TaskContext.build("code review notes"))
        assert condition.matches(TaskContext.build("Anything").with_category("code"))


class TestActions:
    @pytest.mark.parametrize(
        "data, kind",
        [
            ({"desk_id": "desk-finance"}, "prefer_desk"),
            ({"model_id": "gpt-4o-mini"}, "prefer_model"),
            ({"desk_id": "desk-finance", "model_id": "claude-haiku-3-5"}, "prefer_desk_model"),
        ],
    )
    def test_action_kinds(self, data, kind):
        assert parse_action(data).kind == kind

    def test_action_without_target_is_rejected(self):
        with pytest.raises(InvalidRuleError):
            parse_action({})


class TestEvaluationOrder:
    def test_lower_priority_value_evaluates_first(self):
        second = make_rule({"type": "keyword_match", "keywords": ["a"]}, {"desk_id": "x"}, priority=2)
        first = make_rule({"type": "keyword_match", "keywords": ["a"]}, {"desk_id": "y"}, priority=1)

        compiled = compile_rules([second, first])

        assert [r.id for r in compiled] == [str(first.id), str(second.id)]

    def test_equal_priority_orders_by_creation_time(self):
        newer = make_rule(
            {"type": "keyword_match", "keywords": ["a"]},
            {"desk_id": "x"},
            created_at=datetime(2026, 5, 1),
        )
        older = make_rule(
            {"type": "keyword_match", "keywords": ["a"]},
            {"desk_id": "y"},
            created_at=datetime(2026, 4, 1),
        )

        compiled = compile_rules([newer, older])

        assert [r.id for r in compiled] == [str(older.id), str(newer.id)]

    def test_inactive_and_malformed_rules_are_excluded(self):
        active = make_rule({"type": "keyword_match", "keywords": ["a"]}, {"desk_id": "x"})
        pending = make_rule({"type": "keyword_match", "keywords": ["a"]}, {"desk_id": "x"}, is_active=False)
        broken = make_rule({"type": "keyword_match", "keywords": ["a"]}, {"priority": 3})

        compiled = compile_rules([active, pending, broken])

        assert [r.id for r in compiled] == [str(active.id)]

    def test_match_rules_preserves_order(self):
        rules = compile_rules([
            make_rule({"type": "keyword_match", "keywords": ["tax"]}, {"desk_id": "x"}, priority=3),
            make_rule({"type": "keyword_match", "keywords": ["zzz"]}, {"desk_id": "y"}, priority=1),
            make_rule({"type": "category_match", "category": "finance"}, {"desk_id": "z"}, priority=2),
        ])

        matched = match_rules(TaskContext.build("File tax return", categories=["finance"]), rules)

        assert [r.action.desk_id for r in matched] == ["z", "x"]


class TestCodeDetection:
    @pytest.mark.parametrize(
        "title, description",
        [
            ("Refactor the payments module", ""),
            ("Look at main.py", ""),
            ("Why does `foo()` hang?", ""),
            ("Quick question", "There is a bug in checkout"),
        ],
    )
    def test_code_tasks(self, title, description):
        assert is_code_task(title, description)

    @pytest.mark.parametrize(
        "title",
        ["Book flights to Lisbon", "Summarize the board meeting", "Send invoice to ACME"],
    )
    def test_non_code_tasks(self, title):
        assert not is_code_task(title)


class TestPricing:
    def test_dated_snapshot_resolves_to_base_model(self):
        table = PricingTable()

        assert table.display_name("claude-sonnet-4-20250514") == "Claude Sonnet 4"
        assert table.estimate_cost("claude-sonnet-4-20250514", 1000, 1000) == pytest.approx(0.018)

    def test_unknown_model_costs_nothing(self):
        table = PricingTable()

        assert table.estimate_cost("mystery-model", 1000, 1000) == 0.0
        assert table.display_name("mystery-model") == "mystery-model"
