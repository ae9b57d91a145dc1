"""
Shared FastAPI dependencies.
"""
from typing import Optional

from fastapi import Header, HTTPException, status

from deskrouter.core.llm import (
    AnalysisSummarizer,
    DeskScorer,
    get_analysis_summarizer as build_analysis_summarizer,
    get_desk_scorer as build_desk_scorer,
)


async def get_team_id(x_team_id: Optional[str] = Header(default=None)) -> str:
    """Team scope for the request; authentication happens upstream."""
    if not x_team_id or not x_team_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Team-Id header is required",
        )
    return x_team_id.strip()


def get_desk_scorer() -> Optional[DeskScorer]:
    return build_desk_scorer()


def get_analysis_summarizer() -> Optional[AnalysisSummarizer]:
    return build_analysis_summarizer()
