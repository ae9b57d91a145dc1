"""
Decision ledger: append-only record of routing suggestions and outcomes.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from deskrouter.config import settings
from deskrouter.core.exceptions import InvalidTaskError
from deskrouter.models.desk import Desk
from deskrouter.models.routing import RoutingDecision, RoutingRule
from deskrouter.schemas.routing import RoutingDecisionCreate
from deskrouter.services.rules import RuleStore

logger = logging.getLogger(__name__)

DECISIONS = ("accepted", "rejected", "modified", "skipped")

# A modified decision kept the suggested desk or model for at least one dimension
SUCCESS_DECISIONS = frozenset({"accepted", "modified"})


class DecisionLedger:
    """
    Writes routing decisions and feeds rule hit counters.

    Duplicate submissions are stored as distinct rows; the ledger feeds
    aggregate statistics, so exactly-once delivery is not enforced.
    """

    def __init__(self, db: AsyncSession, team_id: str):
        self.db = db
        self.team_id = team_id
        self.rules = RuleStore(db, team_id)

    async def record(self, data: RoutingDecisionCreate) -> RoutingDecision:
        """
        Append a decision and bump counters of every rule it references.

        The insert and the counter increments commit in one transaction.
        """
        if not data.task_title or not data.task_title.strip():
            raise InvalidTaskError("Task title must not be empty")
        if data.decision not in DECISIONS:
            raise InvalidTaskError(f"Unknown decision '{data.decision}'")

        matched_rules = list(dict.fromkeys(str(r) for r in data.matched_rules))

        decision = RoutingDecision(
            team_id=self.team_id,
            task_id=data.task_id,
            task_title=data.task_title.strip(),
            task_description=data.task_description,
            suggested_desk_id=data.suggested_desk_id,
            suggested_model_id=data.suggested_model_id,
            confidence=data.confidence,
            reasoning=data.reasoning,
            decision=data.decision,
            final_desk_id=data.final_desk_id,
            final_model_id=data.final_model_id,
            classifier_model=data.classifier_model,
            classifier_cost_usd=data.classifier_cost_usd,
            classifier_latency_ms=data.classifier_latency_ms,
            matched_rules=matched_rules,
        )
        self.db.add(decision)

        await self.rules.record_hits(matched_rules, succeeded=data.decision in SUCCESS_DECISIONS)
        await self.db.commit()

        logger.debug(
            "Recorded %s decision for team %s (%d rules)",
            data.decision,
            self.team_id,
            len(matched_rules),
        )
        return decision

    async def list_decisions(
        self,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> List[RoutingDecision]:
        """Decisions in [start, end), oldest first."""
        conditions = [
            RoutingDecision.team_id == self.team_id,
            RoutingDecision.created_at >= start,
        ]
        if end is not None:
            conditions.append(RoutingDecision.created_at < end)

        result = await self.db.execute(
            select(RoutingDecision)
            .where(and_(*conditions))
            .order_by(RoutingDecision.created_at, RoutingDecision.id)
        )
        return list(result.scalars().all())

    async def get_stats(self, days: Optional[int] = None) -> dict:
        """Aggregate routing stats for the dashboard; defaults to the configured window."""
        days = days or settings.stats_window_days
        since = datetime.utcnow() - timedelta(days=days)
        decisions = await self.list_decisions(since)

        counts = {name: 0 for name in DECISIONS}
        confidences = []
        classifier_cost = 0.0
        by_desk: Dict[str, Dict[str, int]] = {}
        daily: Dict[str, Dict[str, int]] = {}

        for d in decisions:
            counts[d.decision] = counts.get(d.decision, 0) + 1
            if d.confidence is not None:
                confidences.append(d.confidence)
            classifier_cost += d.classifier_cost_usd or 0.0

            if d.suggested_desk_id:
                desk_stats = by_desk.setdefault(
                    d.suggested_desk_id, {"suggestion_count": 0, "accepted_count": 0}
                )
                desk_stats["suggestion_count"] += 1
                if d.decision == "accepted":
                    desk_stats["accepted_count"] += 1

            day = d.created_at.date().isoformat()
            day_stats = daily.setdefault(day, {"date": day, "suggestions": 0, "accepted": 0})
            day_stats["suggestions"] += 1
            if d.decision == "accepted":
                day_stats["accepted"] += 1

        desks_result = await self.db.execute(
            select(Desk).where(Desk.team_id == self.team_id)
        )
        desks = {desk.id: desk for desk in desks_result.scalars().all()}

        top = sorted(
            by_desk.items(),
            key=lambda item: (-item[1]["suggestion_count"], item[0]),
        )[:5]
        top_desks = []
        for desk_id, desk_stats in top:
            desk = desks.get(desk_id)
            top_desks.append({
                "desk_id": desk_id,
                "desk_name": desk.name if desk else desk_id,
                "agent_name": desk.agent_name if desk else "",
                **desk_stats,
            })

        active_result = await self.db.execute(
            select(func.count(RoutingRule.id)).where(
                RoutingRule.team_id == self.team_id,
                RoutingRule.is_active.is_(True),
            )
        )

        total = len(decisions)
        return {
            "total_suggestions": total,
            "accepted": counts["accepted"],
            "rejected": counts["rejected"],
            "modified": counts["modified"],
            "skipped": counts["skipped"],
            "acceptance_rate": round(counts["accepted"] / total, 4) if total else 0.0,
            "total_classifier_cost": round(classifier_cost, 6),
            "avg_confidence": round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
            "top_desks": top_desks,
            "active_rules": active_result.scalar() or 0,
            "daily_activity": sorted(daily.values(), key=lambda x: x["date"]),
        }
