"""
Analysis engine: mines the decision ledger for findings and proposed rules.

A run moves pending -> running -> completed|failed. At most one run per
team is in progress at any time; the gate is the partial unique index on
analysis_runs, so it holds across service instances.
"""
import asyncio
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from deskrouter.config import Settings, settings
from deskrouter.core.exceptions import AnalysisRunNotFoundError, LLMUnavailableError
from deskrouter.core.llm import AnalysisSummarizer
from deskrouter.core.pricing import PricingTable, pricing_table
from deskrouter.core.rules import CategoryMatch, KeywordMatch, RuleAction, rule_type_for
from deskrouter.models.analysis import AnalysisRun, IN_PROGRESS_STATUSES
from deskrouter.models.desk import Desk
from deskrouter.models.routing import RoutingDecision
from deskrouter.schemas.analysis import AnalysisFindings, Finding, ProposedRule
from deskrouter.services.ledger import DecisionLedger, SUCCESS_DECISIONS
from deskrouter.services.rules import RuleStore

logger = logging.getLogger(__name__)

RUN_PERIODS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}

PROPOSAL_FINDING_TYPES = ("cost_saving", "model_mismatch")

_WORD_RE = re.compile(r"[a-z][a-z0-9]{2,}")
_STOPWORDS = {
    "the", "and", "for", "with", "from", "this", "that", "into", "our", "your",
    "new", "add", "update", "make", "create", "about", "all", "any", "are",
    "can", "need", "needs", "please", "task", "some", "more", "out", "get",
}


def period_bounds(run_type: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Calendar period covered by a run: it ends at the next UTC midnight, so
    every run triggered on the same day shares the same period.
    """
    now = now or datetime.utcnow()
    end = now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return end - RUN_PERIODS[run_type], end


def _rule_key(condition: dict, action: dict) -> str:
    return json.dumps([condition, action], sort_keys=True)


def sample_confidence(sample_size: int) -> float:
    """Confidence grows monotonically with the supporting sample size."""
    if sample_size <= 0:
        return 0.5
    return round(0.5 + 0.45 * sample_size / (sample_size + 10), 3)


@dataclass
class DeskStats:
    desk_id: str
    suggestions: int = 0
    accepted: int = 0
    modified: int = 0
    rejected: int = 0
    skipped: int = 0
    executed: int = 0
    model_swaps: Counter = field(default_factory=Counter)
    titles: List[str] = field(default_factory=list)

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.suggestions if self.suggestions else 0.0

    @property
    def success_rate(self) -> float:
        return (self.accepted + self.modified) / self.suggestions if self.suggestions else 0.0

    def as_fact(self, desk: Optional[Desk]) -> dict:
        return {
            "desk_id": self.desk_id,
            "desk_name": desk.name if desk else self.desk_id,
            "model_id": desk.model_id if desk else None,
            "suggestions": self.suggestions,
            "accepted": self.accepted,
            "modified": self.modified,
            "rejected": self.rejected,
            "skipped": self.skipped,
            "acceptance_rate": round(self.acceptance_rate, 3),
        }


class AnalysisEngine:
    """Runs and reads routing analysis for one team."""

    def __init__(
        self,
        db: AsyncSession,
        team_id: str,
        summarizer: Optional[AnalysisSummarizer] = None,
        pricing: PricingTable = pricing_table,
        config: Settings = settings,
    ):
        self.db = db
        self.team_id = team_id
        self.summarizer = summarizer
        self.pricing = pricing
        self.config = config

    # ── Reads ───────────────────────────────────────────────

    async def get_run(self, run_id: UUID) -> AnalysisRun:
        result = await self.db.execute(
            select(AnalysisRun)
            .where(
                AnalysisRun.id == run_id,
                AnalysisRun.team_id == self.team_id,
            )
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if not run:
            raise AnalysisRunNotFoundError(f"Analysis run {run_id} not found")
        return run

    async def list_runs(self, limit: int = 10, offset: int = 0) -> Tuple[List[AnalysisRun], int]:
        count_result = await self.db.execute(
            select(func.count(AnalysisRun.id)).where(AnalysisRun.team_id == self.team_id)
        )
        total = count_result.scalar() or 0

        result = await self.db.execute(
            select(AnalysisRun)
            .where(AnalysisRun.team_id == self.team_id)
            .order_by(AnalysisRun.created_at.desc(), AnalysisRun.id)
            .offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total

    async def _in_progress_run(self) -> Optional[AnalysisRun]:
        result = await self.db.execute(
            select(AnalysisRun)
            .where(
                AnalysisRun.team_id == self.team_id,
                AnalysisRun.status.in_(IN_PROGRESS_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _existing_run(self, run_type: str, period_end: datetime) -> Optional[AnalysisRun]:
        """In-progress run for the team, else a finished run for the same period."""
        run = await self._in_progress_run()
        if run:
            return run

        result = await self.db.execute(
            select(AnalysisRun)
            .where(
                AnalysisRun.team_id == self.team_id,
                AnalysisRun.run_type == run_type,
                AnalysisRun.period_end == period_end,
                AnalysisRun.status == "completed",
            )
            .order_by(AnalysisRun.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    # ── Trigger ─────────────────────────────────────────────

    async def trigger(self, run_type: str = "weekly", now: Optional[datetime] = None) -> AnalysisRun:
        """
        Start a run, or return the run that already covers this request.

        A second trigger while a run is in progress, or after a completed
        run for the same calendar period, returns that run unchanged.
        """
        if run_type not in RUN_PERIODS:
            raise ValueError(f"Unknown run type '{run_type}'")

        period_start, period_end = period_bounds(run_type, now)

        existing = await self._existing_run(run_type, period_end)
        if existing:
            logger.info(
                "Analysis for team %s already %s (run %s)",
                self.team_id,
                existing.status,
                existing.id,
            )
            return existing

        run = AnalysisRun(
            team_id=self.team_id,
            run_type=run_type,
            period_start=period_start,
            period_end=period_end,
            status="pending",
            analysis_cost_usd=0.0,
            tasks_analyzed=0,
            total_cost_analyzed=0.0,
            estimated_savings_usd=0.0,
            user_reviewed=False,
        )
        self.db.add(run)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost the race: another trigger inserted the in-progress row first.
            # The winner may already have completed by now.
            await self.db.rollback()
            existing = await self._existing_run(run_type, period_end)
            if existing:
                logger.info("Concurrent analysis trigger for team %s joined run %s", self.team_id, existing.id)
                return existing
            raise

        run.status = "running"
        await self.db.commit()
        logger.info("Started %s analysis run %s for team %s", run_type, run.id, self.team_id)

        return await self._execute(run)

    async def _execute(self, run: AnalysisRun) -> AnalysisRun:
        run_id = run.id
        try:
            await asyncio.wait_for(
                self._analyze(run),
                timeout=self.config.analysis_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("Analysis run %s timed out", run_id)
            return await self._fail(
                run_id, f"Analysis timed out after {self.config.analysis_timeout_seconds:g}s"
            )
        except Exception as e:
            # Every failure must leave the run terminal, never stuck in 'running'
            logger.exception("Analysis run %s failed", run_id)
            return await self._fail(run_id, f"Analysis failed: {e}")

        logger.info(
            "Analysis run %s completed: %d tasks, %d proposed rules",
            run_id,
            run.tasks_analyzed,
            len(run.proposed_rules or []),
        )
        return run

    async def _fail(self, run_id: UUID, error: str) -> AnalysisRun:
        """Mark a run failed, discarding anything staged by the failed attempt."""
        await self.db.rollback()
        await self.db.execute(
            update(AnalysisRun)
            .where(AnalysisRun.id == run_id)
            .values(
                status="failed",
                findings=AnalysisFindings(findings=[], summary="", error=error).model_dump(mode="json"),
                proposed_rules=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return await self.get_run(run_id)

    # ── Analysis ────────────────────────────────────────────

    async def _analyze(self, run: AnalysisRun) -> None:
        ledger = DecisionLedger(self.db, self.team_id)
        decisions = await ledger.list_decisions(run.period_start, run.period_end)

        desks_result = await self.db.execute(select(Desk).where(Desk.team_id == self.team_id))
        desks = {desk.id: desk for desk in desks_result.scalars().all()}

        desk_stats = self._desk_stats(decisions)
        findings = self._build_findings(decisions, desks, desk_stats)

        summary, extra_findings, error, model, cost = await self._summarize(
            run, decisions, desks, desk_stats, findings
        )
        findings.extend(extra_findings)

        store = RuleStore(self.db, self.team_id)
        proposals, notes = await self._propose_rules(findings, desks, desk_stats, store)

        run.tasks_analyzed = len(decisions)
        run.total_cost_analyzed = round(sum(self._decision_cost(d) for d in decisions), 6)
        run.analysis_model = model
        run.analysis_cost_usd = round(cost, 6)
        run.findings = AnalysisFindings(
            findings=findings,
            summary=summary,
            error=error,
            notes=notes,
        ).model_dump(mode="json")
        run.proposed_rules = [p.model_dump(mode="json") for p in proposals]
        run.estimated_savings_usd = round(
            sum(f.estimated_savings_usd or 0.0 for f in findings), 6
        )

        await store.add_pending_rules(run.id, proposals)
        run.status = "completed"
        await self.db.commit()

    def _task_tokens(self) -> Tuple[int, int]:
        return self.config.estimate_input_tokens, self.config.estimate_output_tokens

    def _model_task_cost(self, model_id: Optional[str]) -> float:
        input_tokens, output_tokens = self._task_tokens()
        return self.pricing.estimate_cost(model_id, input_tokens, output_tokens)

    def _decision_cost(self, decision: RoutingDecision) -> float:
        """Estimated execution cost of the routed task plus the classifier call."""
        model_id = decision.final_model_id
        if not model_id and decision.decision in SUCCESS_DECISIONS:
            model_id = decision.suggested_model_id
        return self._model_task_cost(model_id) + (decision.classifier_cost_usd or 0.0)

    def _desk_stats(self, decisions: List[RoutingDecision]) -> Dict[str, DeskStats]:
        stats: Dict[str, DeskStats] = {}
        for d in decisions:
            if d.suggested_desk_id:
                s = stats.setdefault(d.suggested_desk_id, DeskStats(d.suggested_desk_id))
                s.suggestions += 1
                if d.decision == "accepted":
                    s.accepted += 1
                elif d.decision == "modified":
                    s.modified += 1
                elif d.decision == "rejected":
                    s.rejected += 1
                else:
                    s.skipped += 1

                same_desk = d.final_desk_id in (None, d.suggested_desk_id)
                if (
                    d.decision == "modified"
                    and same_desk
                    and d.final_model_id
                    and d.final_model_id != d.suggested_model_id
                ):
                    s.model_swaps[d.final_model_id] += 1

            executed_desk = d.final_desk_id
            if not executed_desk and d.decision in SUCCESS_DECISIONS:
                executed_desk = d.suggested_desk_id
            if executed_desk:
                s = stats.setdefault(executed_desk, DeskStats(executed_desk))
                s.executed += 1
                s.titles.append(d.task_title)
        return stats

    def _impact(self, savings: Optional[float], default: str = "medium") -> str:
        if savings is None:
            return default
        if savings >= self.config.analysis_high_impact_usd:
            return "high"
        if savings >= self.config.analysis_medium_impact_usd:
            return "medium"
        return "low"

    def _build_findings(
        self,
        decisions: List[RoutingDecision],
        desks: Dict[str, Desk],
        desk_stats: Dict[str, DeskStats],
    ) -> List[Finding]:
        if not decisions:
            return [
                Finding(
                    type="general",
                    title="Not enough routing history",
                    description="No routing decisions were recorded in this period.",
                    impact="low",
                )
            ]

        findings = []
        findings.extend(self._acceptance_findings(desks, desk_stats))
        findings.extend(self._cost_findings(decisions, desks, desk_stats))
        findings.extend(self._redirect_findings(decisions, desks))
        return findings

    def _acceptance_findings(
        self,
        desks: Dict[str, Desk],
        desk_stats: Dict[str, DeskStats],
    ) -> List[Finding]:
        findings = []
        low_rate = self.config.analysis_low_acceptance_rate

        for desk_id, s in sorted(desk_stats.items()):
            if s.suggestions < self.config.analysis_min_suggestions or s.acceptance_rate >= low_rate:
                continue

            desk = desks.get(desk_id)
            name = desk.name if desk else desk_id
            impact = "high" if s.acceptance_rate < low_rate / 2 else "medium"
            not_accepted = s.suggestions - s.accepted
            swaps = sum(s.model_swaps.values())

            if swaps and swaps * 2 >= not_accepted:
                preferred_model, count = s.model_swaps.most_common(1)[0]
                current_model = desk.model_id if desk else None
                delta = self._model_task_cost(current_model) - self._model_task_cost(preferred_model)
                savings = round(delta * count, 6) if delta > 0 else None
                findings.append(
                    Finding(
                        type="model_mismatch",
                        title=f"{name} is often switched to {self.pricing.display_name(preferred_model)}",
                        description=(
                            f"Only {s.accepted} of {s.suggestions} suggestions for {name} were accepted as-is; "
                            f"users kept the desk but changed the model to {preferred_model} {count} times."
                        ),
                        impact=impact,
                        estimated_savings_usd=savings,
                        desk_id=desk_id,
                        model_id=preferred_model,
                        sample_size=count,
                    )
                )
            else:
                findings.append(
                    Finding(
                        type="underused_desk",
                        title=f"{name} suggestions are rarely accepted",
                        description=(
                            f"{name} was suggested {s.suggestions} times but accepted only {s.accepted} times "
                            f"({s.acceptance_rate:.0%}). Its routing signals may be too broad."
                        ),
                        impact=impact,
                        desk_id=desk_id,
                        sample_size=s.suggestions,
                    )
                )
        return findings

    def _cost_findings(
        self,
        decisions: List[RoutingDecision],
        desks: Dict[str, Desk],
        desk_stats: Dict[str, DeskStats],
    ) -> List[Finding]:
        """Desks whose work a cheaper model handles with a similar success rate."""
        min_samples = self.config.analysis_min_model_samples

        model_totals: Dict[str, List[int]] = {}
        for d in decisions:
            if not d.suggested_model_id or d.decision == "skipped":
                continue
            totals = model_totals.setdefault(d.suggested_model_id, [0, 0])
            totals[0] += 1
            if d.decision in SUCCESS_DECISIONS:
                totals[1] += 1
        model_rates = {
            model_id: successes / samples
            for model_id, (samples, successes) in model_totals.items()
            if samples >= min_samples
        }

        findings = []
        for desk_id, s in sorted(desk_stats.items()):
            desk = desks.get(desk_id)
            if not desk or s.suggestions < min_samples or not s.executed:
                continue

            current_cost = self._model_task_cost(desk.model_id)
            if current_cost <= 0:
                continue

            best_model, best_cost = None, current_cost
            for model_id, rate in sorted(model_rates.items()):
                if model_id == desk.model_id:
                    continue
                if rate < s.success_rate - self.config.analysis_acceptance_tolerance:
                    continue
                cost = self._model_task_cost(model_id)
                if 0 < cost < best_cost:
                    best_model, best_cost = model_id, cost

            if not best_model:
                continue

            savings = round((current_cost - best_cost) * s.executed, 6)
            findings.append(
                Finding(
                    type="cost_saving",
                    title=f"{desk.name} could run on {self.pricing.display_name(best_model)}",
                    description=(
                        f"{desk.name} handled {s.executed} tasks on {desk.model_id} with a "
                        f"{s.success_rate:.0%} success rate. {best_model} reaches "
                        f"{model_rates[best_model]:.0%} on this team at lower cost."
                    ),
                    impact=self._impact(savings),
                    estimated_savings_usd=savings,
                    desk_id=desk_id,
                    model_id=best_model,
                    category=desk.category,
                    sample_size=s.executed,
                )
            )
        return findings

    def _redirect_findings(
        self,
        decisions: List[RoutingDecision],
        desks: Dict[str, Desk],
    ) -> List[Finding]:
        redirects = Counter(
            (d.suggested_desk_id, d.final_desk_id)
            for d in decisions
            if d.decision in ("rejected", "modified")
            and d.suggested_desk_id
            and d.final_desk_id
            and d.final_desk_id != d.suggested_desk_id
        )

        findings = []
        threshold = self.config.analysis_min_redirects
        for (source, target), count in sorted(redirects.items()):
            if count < threshold:
                continue
            source_name = desks[source].name if source in desks else source
            target_name = desks[target].name if target in desks else target
            findings.append(
                Finding(
                    type="routing_pattern",
                    title=f"Tasks for {source_name} often go to {target_name}",
                    description=(
                        f"{count} tasks suggested for {source_name} were reassigned to {target_name}."
                    ),
                    impact="medium" if count >= threshold * 2 else "low",
                    desk_id=source,
                    sample_size=count,
                )
            )
        return findings

    async def _summarize(
        self,
        run: AnalysisRun,
        decisions: List[RoutingDecision],
        desks: Dict[str, Desk],
        desk_stats: Dict[str, DeskStats],
        findings: List[Finding],
    ) -> Tuple[str, List[Finding], Optional[str], Optional[str], float]:
        """Returns (summary, extra findings, error, model, cost)."""
        accepted = sum(1 for d in decisions if d.decision == "accepted")
        savings = sum(f.estimated_savings_usd or 0.0 for f in findings)
        local_summary = (
            f"Analyzed {len(decisions)} routing decisions ({accepted} accepted) across "
            f"{len(desk_stats)} desks. {len(findings)} findings, estimated savings ${savings:.2f}."
        )

        if not self.summarizer or not decisions:
            return local_summary, [], None, None, 0.0

        facts = {
            "run_type": run.run_type,
            "period_start": run.period_start.isoformat(),
            "period_end": run.period_end.isoformat(),
            "tasks_analyzed": len(decisions),
            "desks": [s.as_fact(desks.get(desk_id)) for desk_id, s in sorted(desk_stats.items())],
            "findings": [f.model_dump(mode="json") for f in findings],
        }

        try:
            result = await asyncio.wait_for(
                self.summarizer.summarize(facts),
                timeout=self.config.analysis_timeout_seconds / 2,
            )
        except asyncio.TimeoutError:
            logger.warning("Analysis summary for run %s timed out", run.id)
            return local_summary, [], "Summary generation timed out", None, 0.0
        except LLMUnavailableError as e:
            logger.warning("Analysis summary for run %s unavailable: %s", run.id, e)
            return local_summary, [], f"Summary generation failed: {e}", None, 0.0

        extra = []
        for raw in result.findings:
            try:
                finding = Finding.model_validate(raw)
            except ValidationError:
                logger.debug("Dropping malformed LLM finding: %r", raw)
                continue
            # Only ledger-derived findings carry savings or drive rule proposals
            update = {"estimated_savings_usd": None}
            if finding.type in PROPOSAL_FINDING_TYPES:
                update["type"] = "general"
            extra.append(finding.model_copy(update=update))

        return result.summary, extra, None, result.model, result.cost_usd

    # ── Proposals ───────────────────────────────────────────

    def _keywords_for(self, stats: Optional[DeskStats]) -> List[str]:
        """Most common title words, preferring words that recur across tasks."""
        if not stats:
            return []
        words = Counter()
        for title in stats.titles:
            words.update(
                w for w in set(_WORD_RE.findall(title.lower())) if w not in _STOPWORDS
            )
        ranked = sorted(words.items(), key=lambda item: (-item[1], item[0]))
        recurring = [w for w, count in ranked if count >= 2][:3]
        return sorted(recurring or [w for w, _ in ranked[:3]])

    def _condition_for(
        self,
        desk_id: str,
        desk: Optional[Desk],
        stats: Optional[DeskStats],
    ) -> Union[CategoryMatch, KeywordMatch]:
        """
        Condition that reaches the desk's tasks without an LLM in the loop.

        Only the implicit ``code`` category is attached to tasks locally, so
        other desks are matched on their recurring title words.
        """
        if desk and desk.category and desk.category.strip().lower() == "code":
            return CategoryMatch(category=desk.category)

        keywords = self._keywords_for(stats)
        if keywords:
            return KeywordMatch(keywords=keywords)
        if desk and desk.category:
            return CategoryMatch(category=desk.category)
        return KeywordMatch(keywords=[desk.name if desk else desk_id])

    async def _propose_rules(
        self,
        findings: List[Finding],
        desks: Dict[str, Desk],
        desk_stats: Dict[str, DeskStats],
        store: RuleStore,
    ) -> Tuple[List[ProposedRule], List[str]]:
        """
        One proposal per actionable finding.

        Returns (proposals, notes). A proposal identical to an existing rule
        is noted instead of staged.
        """
        existing = {
            _rule_key(rule.condition, rule.action)
            for rule in await store.list_rules()
        }

        proposals = []
        notes = []
        for finding in findings:
            if finding.type not in PROPOSAL_FINDING_TYPES or finding.impact == "low":
                continue
            if not finding.desk_id:
                # Ledger-derived findings always name a desk
                logger.warning("Actionable finding without a desk: %s", finding.title)
                notes.append(f"No rule proposed for '{finding.title}': the finding names no desk.")
                continue
            desk = desks.get(finding.desk_id)

            condition = self._condition_for(finding.desk_id, desk, desk_stats.get(finding.desk_id))
            action = RuleAction(desk_id=finding.desk_id, model_id=finding.model_id)

            key = _rule_key(condition.model_dump(), action.model_dump(exclude_none=True))
            if key in existing:
                notes.append(
                    f"No rule proposed for '{finding.title}': an identical routing rule already exists."
                )
                continue
            existing.add(key)

            if finding.estimated_savings_usd:
                impact = f"~${finding.estimated_savings_usd:.2f} saved per period"
            else:
                impact = f"Based on {finding.sample_size} routing decisions"

            proposals.append(
                ProposedRule(
                    rule_type=rule_type_for(condition),
                    condition=condition,
                    action=action,
                    reasoning=finding.description,
                    confidence=sample_confidence(finding.sample_size),
                    estimated_impact=impact,
                )
            )
        return proposals, notes
