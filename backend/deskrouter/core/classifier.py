"""
Task classifier: ranks roster desks for an incoming task.

Active routing rules are evaluated first and give matching desks a fixed
confidence floor. When no rule matched (and the user has not already picked
a desk) an optional LLM scorer adds a semantic-fit signal. Everything except
the scorer call is pure and local.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from deskrouter.config import Settings, settings
from deskrouter.core.code_detection import is_code_task
from deskrouter.core.exceptions import InvalidTaskError, LLMUnavailableError
from deskrouter.core.llm import DeskCandidate, DeskScorer, DeskScores
from deskrouter.core.pricing import PricingTable, pricing_table
from deskrouter.core.rules import (
    CompiledRule,
    KeywordMatch,
    TaskContext,
    compile_rules,
    match_rules,
)

logger = logging.getLogger(__name__)


@dataclass
class TaskDraft:
    title: str
    description: Optional[str] = None
    is_code_task: Optional[bool] = None
    pre_selected_desk_id: Optional[str] = None
    category: Optional[str] = None


@dataclass
class RoutingSuggestion:
    desk_id: str
    desk_name: str
    agent_name: str
    model_id: str
    model_name: str
    confidence: float
    reasoning: str
    estimated_cost_usd: float
    matched_category: Optional[str] = None
    matched_rule_ids: List[str] = field(default_factory=list)


@dataclass
class ClassificationResult:
    suggestions: List[RoutingSuggestion]
    used_llm: bool = False
    classifier_model: Optional[str] = None
    classifier_cost_usd: float = 0.0
    latency_ms: int = 0


@dataclass
class _RuleHit:
    confidence: float
    rule_ids: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    model_id: Optional[str] = None


def _describe_rule(rule: CompiledRule) -> str:
    if isinstance(rule.condition, KeywordMatch):
        return f"keywords ({', '.join(rule.condition.keywords)})"
    return f"category '{rule.condition.category}'"


class Classifier:
    """Scores which desk/model should execute a task."""

    def __init__(
        self,
        scorer: Optional[DeskScorer] = None,
        pricing: PricingTable = pricing_table,
        config: Settings = settings,
    ):
        self.scorer = scorer
        self.pricing = pricing
        self.config = config

    async def classify(
        self,
        task: TaskDraft,
        roster: Iterable[Any],
        rules: Iterable[Any],
    ) -> ClassificationResult:
        start = time.perf_counter()

        title = (task.title or "").strip()
        if not title:
            raise InvalidTaskError("Task title must not be empty")
        description = (task.description or "").strip()

        code_task = task.is_code_task
        if code_task is None:
            code_task = is_code_task(title, description)

        categories = [task.category] if task.category else []
        if code_task:
            categories.append("code")
        context = TaskContext.build(title, description, categories)

        desks = [d for d in roster if getattr(d, "is_active", True)]
        if task.pre_selected_desk_id:
            desks = [d for d in desks if d.id == task.pre_selected_desk_id]

        compiled = compile_rules(rules)
        hits = self._apply_rules(match_rules(context, compiled), desks)
        matched_category = task.category or ("code" if code_task else None)

        scores: Optional[DeskScores] = None
        if self.scorer and desks and not task.pre_selected_desk_id and not hits:
            scores = await self._score_with_llm(title, description, desks)
            if scores and scores.category:
                # Category rules may now match on the category the LLM inferred
                context = context.with_category(scores.category)
                hits = self._apply_rules(match_rules(context, compiled), desks)
                matched_category = scores.category

        suggestions = []
        for desk in desks:
            suggestion = self._build_suggestion(
                desk,
                hits.get(desk.id),
                scores,
                preselected=bool(task.pre_selected_desk_id),
                code_task=code_task,
                matched_category=matched_category,
            )
            if suggestion:
                suggestions.append(suggestion)

        suggestions.sort(key=lambda s: (-s.confidence, s.estimated_cost_usd, s.desk_id))

        return ClassificationResult(
            suggestions=suggestions,
            used_llm=scores is not None,
            classifier_model=scores.model if scores else None,
            classifier_cost_usd=scores.cost_usd if scores else 0.0,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )

    def _apply_rules(self, matches: List[CompiledRule], desks: List[Any]) -> Dict[str, _RuleHit]:
        """
        Map matching rules onto desks.

        The n-th matching rule (in evaluation order) gets a floor of
        rule_confidence - n * rule_confidence_step, never below
        rule_confidence_min, so earlier rules win ties deterministically.
        """
        hits: Dict[str, _RuleHit] = {}
        for rank, rule in enumerate(matches):
            floor = max(
                self.config.rule_confidence - rank * self.config.rule_confidence_step,
                self.config.rule_confidence_min,
            )
            action = rule.action
            if action.desk_id:
                targets = [d for d in desks if d.id == action.desk_id]
            else:
                targets = [d for d in desks if d.model_id == action.model_id]

            for desk in targets:
                hit = hits.get(desk.id)
                if hit is None:
                    hit = hits[desk.id] = _RuleHit(confidence=floor)
                    # The first (highest-ranked) rule for a desk decides the model
                    if action.desk_id and action.model_id:
                        hit.model_id = action.model_id
                hit.confidence = max(hit.confidence, floor)
                hit.rule_ids.append(rule.id)
                hit.reasons.append(f"Matched routing rule on {_describe_rule(rule)}")
        return hits

    async def _score_with_llm(
        self,
        title: str,
        description: str,
        desks: List[Any],
    ) -> Optional[DeskScores]:
        candidates = [
            DeskCandidate(
                desk_id=d.id,
                name=d.name,
                agent_name=d.agent_name,
                model_id=d.model_id,
                category=getattr(d, "category", None),
            )
            for d in desks
        ]
        task_text = title if not description else f"{title}\n\n{description}"
        try:
            return await asyncio.wait_for(
                self.scorer.score(task_text, candidates),
                timeout=self.config.classifier_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "LLM classifier timed out after %ss; using rule-only suggestions",
                self.config.classifier_timeout_seconds,
            )
        except LLMUnavailableError as e:
            logger.warning("LLM classifier unavailable (%s); using rule-only suggestions", e)
        return None

    def _build_suggestion(
        self,
        desk: Any,
        hit: Optional[_RuleHit],
        scores: Optional[DeskScores],
        preselected: bool,
        code_task: bool,
        matched_category: Optional[str],
    ) -> Optional[RoutingSuggestion]:
        reasons = []
        confidence = 0.0

        if hit:
            confidence = hit.confidence
            reasons.extend(hit.reasons)

        if scores and desk.id in scores.scores:
            llm_confidence = scores.scores[desk.id]
            # Rules are never pulled down by a weaker heuristic signal
            confidence = max(confidence, llm_confidence)
            if desk.id in scores.reasoning:
                reasons.append(scores.reasoning[desk.id])

        if preselected:
            confidence = max(confidence, self.config.preselected_confidence)
            if not reasons:
                reasons.append("Desk was pre-selected for this task")

        confidence = min(max(confidence, 0.0), 1.0)
        if confidence <= 0.0 or confidence < self.config.min_confidence:
            return None

        model_id = hit.model_id if hit and hit.model_id else desk.model_id
        multiplier = self.config.code_task_token_multiplier if code_task else 1.0
        cost = self.pricing.estimate_cost(
            model_id,
            int(self.config.estimate_input_tokens * multiplier),
            int(self.config.estimate_output_tokens * multiplier),
        )

        return RoutingSuggestion(
            desk_id=desk.id,
            desk_name=desk.name,
            agent_name=desk.agent_name,
            model_id=model_id,
            model_name=self.pricing.display_name(model_id),
            confidence=round(confidence, 4),
            reasoning="; ".join(reasons),
            estimated_cost_usd=round(cost, 6),
            matched_category=matched_category,
            matched_rule_ids=list(hit.rule_ids) if hit else [],
        )
