"""
Core routing logic: rule evaluation, classification, and LLM capabilities.
"""
from deskrouter.core.classifier import (
    Classifier,
    ClassificationResult,
    RoutingSuggestion,
    TaskDraft,
)
from deskrouter.core.rules import CategoryMatch, KeywordMatch, RuleAction
from deskrouter.core.pricing import PricingTable, pricing_table

__all__ = [
    "Classifier",
    "ClassificationResult",
    "RoutingSuggestion",
    "TaskDraft",
    "CategoryMatch",
    "KeywordMatch",
    "RuleAction",
    "PricingTable",
    "pricing_table",
]
