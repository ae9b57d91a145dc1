"""
Routing rule and routing decision models.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, DateTime, Boolean, Float, Integer, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column
import uuid

from deskrouter.database import Base, JSONType


class RoutingRule(Base):
    __tablename__ = "routing_rules"
    __table_args__ = (
        Index("ix_routing_rules_team_priority", "team_id", "priority", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    team_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)  # 'keyword_routing', 'category_routing'
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")  # 'manual', 'analysis'
    condition: Mapped[dict] = mapped_column(JSONType, nullable=False)
    action: Mapped[dict] = mapped_column(JSONType, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analysis_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("analysis_runs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class RoutingDecision(Base):
    """Append-only ledger row; never updated after insert."""

    __tablename__ = "routing_decisions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    team_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    task_title: Mapped[str] = mapped_column(Text, nullable=False)
    task_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggested_desk_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    suggested_model_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)  # 'accepted', 'rejected', 'modified', 'skipped'
    final_desk_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    final_model_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    classifier_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    classifier_cost_usd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    classifier_latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    matched_rules: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
