"""Shared fixtures: in-memory database, desk roster, and fake LLM capabilities."""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import datetime, timedelta
from typing import Any

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ANTHROPIC_API_KEY"] = ""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import deskrouter.models  # noqa: F401
from deskrouter.core.llm import AnalysisSummary, DeskScores
from deskrouter.database import Base
from deskrouter.models.desk import Desk
from deskrouter.models.routing import RoutingDecision, RoutingRule

TEAM_ID = "team-1"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def file_session_factory(tmp_path):
    """Sessions on separate connections to one database file, with the roster loaded."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'router.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        session.add_all(make_roster())
        await session.commit()
    yield factory
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def make_roster(team_id: str = TEAM_ID) -> list[Desk]:
    return [
        Desk(
            id="desk-finance",
            team_id=team_id,
            name="Finance Desk",
            agent_name="Penny",
            model_id="claude-sonnet-4",
            category="finance",
            is_active=True,
            created_at=datetime(2026, 1, 1),
        ),
        Desk(
            id="desk-code",
            team_id=team_id,
            name="Code Desk",
            agent_name="Ada",
            model_id="claude-opus-4",
            category="code",
            is_active=True,
            created_at=datetime(2026, 1, 2),
        ),
        Desk(
            id="desk-support",
            team_id=team_id,
            name="Support Desk",
            agent_name="Sam",
            model_id="gpt-4o-mini",
            category=None,
            is_active=True,
            created_at=datetime(2026, 1, 3),
        ),
    ]


@pytest.fixture
def roster() -> list[Desk]:
    return make_roster()


@pytest.fixture
async def desks(db) -> dict[str, Desk]:
    roster = make_roster()
    db.add_all(roster)
    await db.commit()
    return {desk.id: desk for desk in roster}


def make_rule(
    condition: dict,
    action: dict,
    *,
    priority: int = 1,
    is_active: bool = True,
    created_at: datetime | None = None,
    source: str = "manual",
    team_id: str = TEAM_ID,
) -> RoutingRule:
    return RoutingRule(
        id=uuid.uuid4(),
        team_id=team_id,
        rule_type="keyword_routing" if condition.get("type") == "keyword_match" else "category_routing",
        source=source,
        condition=condition,
        action=action,
        priority=priority,
        is_active=is_active,
        hit_count=0,
        success_count=0,
        created_at=created_at or datetime(2026, 1, 1),
        updated_at=created_at or datetime(2026, 1, 1),
    )


def add_decisions(
    db,
    *,
    desk_id: str,
    model_id: str,
    decision: str,
    count: int,
    title: str = "Routine task",
    final_desk_id: str | None = None,
    final_model_id: str | None = None,
    created_at: datetime | None = None,
    team_id: str = TEAM_ID,
) -> None:
    """Insert ledger rows directly (bypassing counters) for analysis tests."""
    created_at = created_at or datetime.utcnow() - timedelta(hours=1)
    for _ in range(count):
        db.add(
            RoutingDecision(
                team_id=team_id,
                task_title=title,
                suggested_desk_id=desk_id,
                suggested_model_id=model_id,
                confidence=0.8,
                decision=decision,
                final_desk_id=final_desk_id,
                final_model_id=final_model_id,
                matched_rules=[],
                created_at=created_at,
            )
        )


class FakeScorer:
    """A DeskScorer that returns configured scores and records invocations."""

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        reasoning: dict[str, str] | None = None,
        category: str | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.scores = scores or {}
        self.reasoning = reasoning or {}
        self.category = category
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def score(self, task_text, candidates):
        self.calls.append({"task_text": task_text, "candidates": [c.desk_id for c in candidates]})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return DeskScores(
            scores=dict(self.scores),
            reasoning=dict(self.reasoning),
            category=self.category,
            model="fake-classifier",
            cost_usd=0.0001,
        )


class FakeSummarizer:
    """An AnalysisSummarizer with a canned reply (or failure)."""

    def __init__(
        self,
        summary: str = "Routing looks healthy.",
        findings: list[dict] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.summary = summary
        self.findings = findings or []
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def summarize(self, facts):
        self.calls.append(facts)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return AnalysisSummary(
            summary=self.summary,
            findings=list(self.findings),
            model="fake-analyst",
            cost_usd=0.002,
        )
