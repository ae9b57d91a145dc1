"""
Routing rule persistence and the pending-rule approval lifecycle.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from deskrouter.core.exceptions import AnalysisRunNotFoundError, RuleNotFoundError
from deskrouter.core.rules import parse_action, parse_condition, rule_type_for
from deskrouter.models.analysis import AnalysisRun
from deskrouter.models.routing import RoutingRule

logger = logging.getLogger(__name__)


def _to_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class RuleStore:
    """Team-scoped access to routing rules."""

    def __init__(self, db: AsyncSession, team_id: str):
        self.db = db
        self.team_id = team_id

    def _ordered(self, query):
        return query.order_by(
            RoutingRule.priority,
            RoutingRule.created_at,
            RoutingRule.id,
        ).execution_options(populate_existing=True)

    async def list_rules(
        self,
        source: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[RoutingRule]:
        query = select(RoutingRule).where(RoutingRule.team_id == self.team_id)
        if source:
            query = query.where(RoutingRule.source == source)
        if is_active is not None:
            query = query.where(RoutingRule.is_active == is_active)

        result = await self.db.execute(self._ordered(query))
        return list(result.scalars().all())

    async def active_rules(self) -> List[RoutingRule]:
        return await self.list_rules(is_active=True)

    async def get_rule(self, rule_id: UUID) -> Optional[RoutingRule]:
        result = await self.db.execute(
            select(RoutingRule)
            .where(
                RoutingRule.id == rule_id,
                RoutingRule.team_id == self.team_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def next_priority(self) -> int:
        result = await self.db.execute(
            select(func.max(RoutingRule.priority)).where(RoutingRule.team_id == self.team_id)
        )
        current = result.scalar()
        return (current or 0) + 1

    async def create_rule(
        self,
        condition: Any,
        action: Any,
        priority: Optional[int] = None,
        rule_type: Optional[str] = None,
    ) -> RoutingRule:
        """Create a manual rule; it is active immediately."""
        parsed_condition = parse_condition(condition)
        parsed_action = parse_action(action)

        if priority is None:
            priority = await self.next_priority()

        rule = RoutingRule(
            team_id=self.team_id,
            rule_type=rule_type or rule_type_for(parsed_condition),
            source="manual",
            condition=parsed_condition.model_dump(),
            action=parsed_action.model_dump(exclude_none=True),
            priority=priority,
            is_active=True,
            hit_count=0,
            success_count=0,
        )
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info("Created manual routing rule %s for team %s", rule.id, self.team_id)
        return rule

    async def toggle_rule(self, rule_id: UUID, is_active: bool) -> RoutingRule:
        rule = await self.get_rule(rule_id)
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found")

        if rule.is_active != is_active:
            rule.is_active = is_active
            rule.updated_at = datetime.utcnow()
            await self.db.commit()
        return rule

    async def delete_rule(self, rule_id: UUID) -> None:
        rule = await self.get_rule(rule_id)
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found")

        await self.db.delete(rule)
        await self.db.commit()
        logger.info("Deleted routing rule %s for team %s", rule_id, self.team_id)

    async def record_hits(self, rule_ids: Iterable[Any], succeeded: bool) -> None:
        """
        Increment hit (and success) counters in a single UPDATE statement.

        Does not commit: callers make the increment part of their own
        transaction. Unknown, foreign and inactive (pending) rule ids are
        ignored, since the classifier never matches those.
        """
        ids = []
        for rule_id in rule_ids:
            parsed = _to_uuid(rule_id)
            if parsed is None:
                logger.debug("Ignoring non-UUID rule id %r in decision", rule_id)
            elif parsed not in ids:
                ids.append(parsed)
        if not ids:
            return

        await self.db.execute(
            update(RoutingRule)
            .where(
                RoutingRule.id.in_(ids),
                RoutingRule.team_id == self.team_id,
                RoutingRule.is_active.is_(True),
            )
            .values(
                hit_count=RoutingRule.hit_count + 1,
                success_count=RoutingRule.success_count + (1 if succeeded else 0),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def add_pending_rules(self, run_id: UUID, proposals: Iterable[Any]) -> List[RoutingRule]:
        """
        Stage analysis-sourced rules as inactive rows linked to their run.

        Does not commit; the rows become visible together with the run's
        completion.
        """
        priority = await self.next_priority()
        rules = []
        for proposal in proposals:
            condition = parse_condition(proposal.condition)
            action = parse_action(proposal.action)
            rule = RoutingRule(
                team_id=self.team_id,
                rule_type=proposal.rule_type or rule_type_for(condition),
                source="analysis",
                condition=condition.model_dump(),
                action=action.model_dump(exclude_none=True),
                priority=priority,
                is_active=False,
                hit_count=0,
                success_count=0,
                analysis_run_id=run_id,
            )
            self.db.add(rule)
            rules.append(rule)
            priority += 1
        return rules

    async def rules_for_run(self, run_id: UUID) -> List[RoutingRule]:
        query = select(RoutingRule).where(
            RoutingRule.team_id == self.team_id,
            RoutingRule.analysis_run_id == run_id,
        )
        result = await self.db.execute(self._ordered(query))
        return list(result.scalars().all())


class RuleLifecycleManager:
    """Approve/reject transitions for analysis-proposed rules."""

    def __init__(self, db: AsyncSession, team_id: str):
        self.db = db
        self.team_id = team_id
        self.store = RuleStore(db, team_id)

    async def _get_run(self, run_id: UUID) -> AnalysisRun:
        result = await self.db.execute(
            select(AnalysisRun).where(
                AnalysisRun.id == run_id,
                AnalysisRun.team_id == self.team_id,
            )
        )
        run = result.scalar_one_or_none()
        if not run:
            raise AnalysisRunNotFoundError(f"Analysis run {run_id} not found")
        return run

    async def _get_run_rule(self, run_id: UUID, rule_id: UUID) -> Optional[RoutingRule]:
        result = await self.db.execute(
            select(RoutingRule)
            .where(
                RoutingRule.id == rule_id,
                RoutingRule.team_id == self.team_id,
                RoutingRule.analysis_run_id == run_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _mark_reviewed(self, run: AnalysisRun) -> None:
        if not run.user_reviewed:
            run.user_reviewed = True
            run.reviewed_at = datetime.utcnow()

    async def approve_pending(self, run_id: UUID, rule_id: UUID) -> RoutingRule:
        """Activate a pending rule. Approving an active rule is a no-op."""
        run = await self._get_run(run_id)
        rule = await self._get_run_rule(run_id, rule_id)
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found for analysis run {run_id}")

        if not rule.is_active:
            rule.is_active = True
            rule.updated_at = datetime.utcnow()
            logger.info("Approved analysis rule %s from run %s", rule_id, run_id)
        self._mark_reviewed(run)
        await self.db.commit()
        return rule

    async def reject_pending(self, run_id: UUID, rule_id: UUID) -> bool:
        """
        Delete a pending rule.

        Returns False (no-op) when the rule is already gone or was already
        approved.
        """
        run = await self._get_run(run_id)
        rule = await self._get_run_rule(run_id, rule_id)

        deleted = False
        if rule and not rule.is_active:
            await self.db.delete(rule)
            deleted = True
            logger.info("Rejected analysis rule %s from run %s", rule_id, run_id)

        self._mark_reviewed(run)
        await self.db.commit()
        return deleted
