"""
Analysis run model for periodic routing-history mining.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, Boolean, Float, Integer, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column
import uuid

from deskrouter.database import Base, JSONType

IN_PROGRESS_STATUSES = ("pending", "running")
_IN_PROGRESS_CLAUSE = text("status IN ('pending', 'running')")


class AnalysisRun(Base):
    __tablename__ = "analysis_runs"
    __table_args__ = (
        # At most one in-progress run per team, across every service instance
        Index(
            "uq_analysis_runs_team_in_progress",
            "team_id",
            unique=True,
            postgresql_where=_IN_PROGRESS_CLAUSE,
            sqlite_where=_IN_PROGRESS_CLAUSE,
        ),
        Index("ix_analysis_runs_team_period", "team_id", "run_type", "period_end"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    team_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_type: Mapped[str] = mapped_column(String(20), nullable=False)  # 'daily', 'weekly'
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    analysis_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    analysis_cost_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    findings: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    proposed_rules: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    tasks_analyzed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cost_analyzed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    estimated_savings_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    user_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
