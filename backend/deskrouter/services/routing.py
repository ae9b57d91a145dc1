"""
Routing service: classifies tasks against the team's roster and active rules.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deskrouter.core.classifier import Classifier, ClassificationResult, TaskDraft
from deskrouter.core.llm import DeskScorer
from deskrouter.models.desk import Desk
from deskrouter.services.rules import RuleStore


class RoutingService:
    def __init__(self, db: AsyncSession, team_id: str, scorer: Optional[DeskScorer] = None):
        self.db = db
        self.team_id = team_id
        self.rules = RuleStore(db, team_id)
        self.classifier = Classifier(scorer=scorer)

    async def roster(self) -> List[Desk]:
        result = await self.db.execute(
            select(Desk)
            .where(
                Desk.team_id == self.team_id,
                Desk.is_active.is_(True),
            )
            .order_by(Desk.created_at, Desk.id)
        )
        return list(result.scalars().all())

    async def classify(self, task: TaskDraft) -> ClassificationResult:
        roster = await self.roster()
        rules = await self.rules.active_rules()
        return await self.classifier.classify(task, roster, rules)
