"""
Task routing endpoints: classification, decisions, rules, and stats.
"""
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from deskrouter.api.deps import get_desk_scorer, get_team_id
from deskrouter.core.classifier import TaskDraft
from deskrouter.core.exceptions import InvalidRuleError, InvalidTaskError, RuleNotFoundError
from deskrouter.core.llm import DeskScorer
from deskrouter.database import get_db
from deskrouter.schemas.routing import (
    ClassifyRequest,
    ClassifyResponse,
    DecisionAck,
    RoutingDecisionCreate,
    RoutingRuleCreate,
    RoutingRuleResponse,
    RoutingStatsResponse,
    RoutingSuggestionResponse,
    RuleToggleRequest,
)
from deskrouter.services.ledger import DecisionLedger
from deskrouter.services.routing import RoutingService
from deskrouter.services.rules import RuleStore

router = APIRouter()


@router.post("/classify", response_model=ClassifyResponse)
async def classify_task(
    request: ClassifyRequest,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
    scorer: Optional[DeskScorer] = Depends(get_desk_scorer),
):
    """Rank desks/models for a task draft."""
    service = RoutingService(db, team_id, scorer=scorer)
    task = TaskDraft(
        title=request.title,
        description=request.description,
        is_code_task=request.is_code_task,
        pre_selected_desk_id=request.pre_selected_desk_id,
        category=request.category,
    )

    try:
        result = await service.classify(task)
    except InvalidTaskError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ClassifyResponse(
        suggestions=[RoutingSuggestionResponse.model_validate(s) for s in result.suggestions],
        used_llm=result.used_llm,
        classifier_model=result.classifier_model,
        classifier_cost_usd=result.classifier_cost_usd,
        latency_ms=result.latency_ms,
    )


@router.post("/decision", response_model=DecisionAck)
async def record_decision(
    request: RoutingDecisionCreate,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Record the user's routing decision."""
    ledger = DecisionLedger(db, team_id)
    try:
        decision = await ledger.record(request)
    except InvalidTaskError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return DecisionAck(ok=True, id=decision.id)


@router.get("/rules", response_model=List[RoutingRuleResponse])
async def list_rules(
    source: Optional[Literal["manual", "analysis"]] = None,
    is_active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """List the team's routing rules in evaluation order."""
    store = RuleStore(db, team_id)
    return await store.list_rules(source=source, is_active=is_active)


@router.post("/rules", response_model=RoutingRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: RoutingRuleCreate,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Create a manual rule (active immediately)."""
    store = RuleStore(db, team_id)
    try:
        return await store.create_rule(
            condition=request.condition,
            action=request.action,
            priority=request.priority,
            rule_type=request.rule_type,
        )
    except InvalidRuleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.patch("/rules/{rule_id}/toggle", response_model=RoutingRuleResponse)
async def toggle_rule(
    rule_id: UUID,
    request: RuleToggleRequest,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Enable or disable a rule."""
    store = RuleStore(db, team_id)
    try:
        return await store.toggle_rule(rule_id, request.is_active)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Delete a rule permanently."""
    store = RuleStore(db, team_id)
    try:
        await store.delete_rule(rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/stats", response_model=RoutingStatsResponse)
async def get_routing_stats(
    days: Optional[int] = Query(None, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Routing stats for the cost dashboard."""
    ledger = DecisionLedger(db, team_id)
    return await ledger.get_stats(days)
