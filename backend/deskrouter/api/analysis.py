"""
Routing analysis endpoints: runs, triggers, and proposed-rule review.
"""
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from deskrouter.api.deps import get_analysis_summarizer, get_team_id
from deskrouter.core.exceptions import AnalysisRunNotFoundError, RuleNotFoundError
from deskrouter.core.llm import AnalysisSummarizer
from deskrouter.database import get_db
from deskrouter.models.analysis import AnalysisRun
from deskrouter.models.routing import RoutingRule
from deskrouter.schemas.analysis import (
    AnalysisListResponse,
    AnalysisRunResponse,
    RejectRuleResponse,
)
from deskrouter.schemas.routing import RoutingRuleResponse
from deskrouter.services.analysis import AnalysisEngine
from deskrouter.services.rules import RuleLifecycleManager, RuleStore

router = APIRouter()


def _run_response(run: AnalysisRun, related: Optional[List[RoutingRule]] = None) -> AnalysisRunResponse:
    response = AnalysisRunResponse.model_validate(run)
    if related is not None:
        response.related_rules = [RoutingRuleResponse.model_validate(r) for r in related]
    return response


@router.get("", response_model=AnalysisListResponse)
async def list_analysis_runs(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """List analysis runs, newest first."""
    engine = AnalysisEngine(db, team_id)
    runs, total = await engine.list_runs(limit=limit, offset=offset)
    return AnalysisListResponse(
        runs=[_run_response(run) for run in runs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/trigger", response_model=AnalysisRunResponse)
async def trigger_analysis(
    run_type: Literal["daily", "weekly"] = Query("weekly"),
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
    summarizer: Optional[AnalysisSummarizer] = Depends(get_analysis_summarizer),
):
    """Run an analysis now, or return the run already covering this period."""
    engine = AnalysisEngine(db, team_id, summarizer=summarizer)
    run = await engine.trigger(run_type)
    related = await RuleStore(db, team_id).rules_for_run(run.id)
    return _run_response(run, related)


@router.get("/{run_id}", response_model=AnalysisRunResponse)
async def get_analysis_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Get an analysis run with the rules it proposed."""
    engine = AnalysisEngine(db, team_id)
    try:
        run = await engine.get_run(run_id)
    except AnalysisRunNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    related = await RuleStore(db, team_id).rules_for_run(run_id)
    return _run_response(run, related)


@router.post("/{run_id}/approve-rule/{rule_id}", response_model=RoutingRuleResponse)
async def approve_rule(
    run_id: UUID,
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Activate a rule proposed by an analysis run."""
    manager = RuleLifecycleManager(db, team_id)
    try:
        return await manager.approve_pending(run_id, rule_id)
    except (AnalysisRunNotFoundError, RuleNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{run_id}/reject-rule/{rule_id}", response_model=RejectRuleResponse)
async def reject_rule(
    run_id: UUID,
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    team_id: str = Depends(get_team_id),
):
    """Discard a rule proposed by an analysis run."""
    manager = RuleLifecycleManager(db, team_id)
    try:
        deleted = await manager.reject_pending(run_id, rule_id)
    except AnalysisRunNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return RejectRuleResponse(ok=True, deleted_rule_id=rule_id if deleted else None)
