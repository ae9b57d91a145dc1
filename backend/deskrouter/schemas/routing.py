"""
Task routing schemas.
"""
from datetime import datetime
from typing import Literal, Optional, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from deskrouter.core.rules import RuleAction, RuleCondition

DecisionType = Literal["accepted", "rejected", "modified", "skipped"]


class ClassifyRequest(BaseModel):
    title: str
    description: Optional[str] = None
    is_code_task: Optional[bool] = None
    pre_selected_desk_id: Optional[str] = None
    category: Optional[str] = None


class RoutingSuggestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    desk_id: str
    desk_name: str
    agent_name: str
    model_id: str
    model_name: str
    confidence: float
    reasoning: str
    estimated_cost_usd: float
    matched_category: Optional[str] = None
    matched_rule_ids: List[str] = []


class ClassifyResponse(BaseModel):
    suggestions: List[RoutingSuggestionResponse]
    used_llm: bool
    classifier_model: Optional[str] = None
    classifier_cost_usd: float = 0.0
    latency_ms: int


class RoutingDecisionCreate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    task_id: Optional[str] = None
    task_title: str
    task_description: Optional[str] = None
    suggested_desk_id: Optional[str] = None
    suggested_model_id: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    reasoning: Optional[str] = None
    decision: DecisionType
    final_desk_id: Optional[str] = None
    final_model_id: Optional[str] = None
    classifier_model: Optional[str] = None
    classifier_cost_usd: Optional[float] = Field(default=None, ge=0)
    classifier_latency_ms: Optional[int] = Field(default=None, ge=0)
    matched_rules: List[str] = []


class DecisionAck(BaseModel):
    ok: bool
    id: UUID


class RoutingRuleCreate(BaseModel):
    condition: RuleCondition
    action: RuleAction
    priority: Optional[int] = None
    rule_type: Optional[str] = None


class RuleToggleRequest(BaseModel):
    is_active: bool


class RoutingRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    team_id: str
    rule_type: str
    source: str
    condition: dict
    action: dict
    priority: int
    is_active: bool
    hit_count: int
    success_count: int
    analysis_run_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class TopDesk(BaseModel):
    desk_id: str
    desk_name: str
    agent_name: str
    suggestion_count: int
    accepted_count: int


class DailyActivity(BaseModel):
    date: str
    suggestions: int
    accepted: int


class RoutingStatsResponse(BaseModel):
    total_suggestions: int
    accepted: int
    rejected: int
    modified: int
    skipped: int
    acceptance_rate: float
    total_classifier_cost: float
    avg_confidence: float
    top_desks: List[TopDesk]
    active_rules: int
    daily_activity: List[DailyActivity]
