"""
Pydantic schemas for API request/response validation.
"""
from deskrouter.schemas.routing import (
    ClassifyRequest,
    ClassifyResponse,
    RoutingSuggestionResponse,
    RoutingDecisionCreate,
    DecisionAck,
    RoutingRuleCreate,
    RoutingRuleResponse,
    RuleToggleRequest,
    RoutingStatsResponse,
)
from deskrouter.schemas.analysis import (
    Finding,
    ProposedRule,
    AnalysisFindings,
    AnalysisRunResponse,
    AnalysisListResponse,
    RejectRuleResponse,
)

__all__ = [
    "ClassifyRequest",
    "ClassifyResponse",
    "RoutingSuggestionResponse",
    "RoutingDecisionCreate",
    "DecisionAck",
    "RoutingRuleCreate",
    "RoutingRuleResponse",
    "RuleToggleRequest",
    "RoutingStatsResponse",
    "Finding",
    "ProposedRule",
    "AnalysisFindings",
    "AnalysisRunResponse",
    "AnalysisListResponse",
    "RejectRuleResponse",
]
