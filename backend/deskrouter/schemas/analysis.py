"""
Routing analysis schemas.
"""
from datetime import datetime
from typing import Literal, Optional, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from deskrouter.core.rules import RuleAction, RuleCondition
from deskrouter.schemas.routing import RoutingRuleResponse

FindingType = Literal["cost_saving", "routing_pattern", "model_mismatch", "underused_desk", "general"]
Impact = Literal["high", "medium", "low"]


class Finding(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    type: FindingType
    title: str
    description: str
    impact: Impact
    estimated_savings_usd: Optional[float] = None
    desk_id: Optional[str] = None
    model_id: Optional[str] = None
    category: Optional[str] = None
    sample_size: int = 0


class ProposedRule(BaseModel):
    rule_type: str
    condition: RuleCondition
    action: RuleAction
    reasoning: str
    confidence: float = Field(ge=0, le=1)
    estimated_impact: str


class AnalysisFindings(BaseModel):
    findings: List[Finding] = []
    summary: str = ""
    error: Optional[str] = None
    notes: List[str] = []


class AnalysisRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    team_id: str
    run_type: str
    period_start: datetime
    period_end: datetime
    status: str
    analysis_model: Optional[str] = None
    analysis_cost_usd: float
    findings: Optional[AnalysisFindings] = None
    proposed_rules: Optional[List[ProposedRule]] = None
    tasks_analyzed: int
    total_cost_analyzed: float
    estimated_savings_usd: float
    user_reviewed: bool
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    related_rules: Optional[List[RoutingRuleResponse]] = None


class AnalysisListResponse(BaseModel):
    runs: List[AnalysisRunResponse]
    total: int
    limit: int
    offset: int


class RejectRuleResponse(BaseModel):
    ok: bool
    deleted_rule_id: Optional[UUID] = None
