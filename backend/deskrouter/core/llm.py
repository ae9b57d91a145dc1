"""
LLM capabilities used by the routing engine.

The classifier and the analysis engine depend only on the two narrow
interfaces below (``DeskScorer`` and ``AnalysisSummarizer``); the Anthropic
implementations are wired in when an API key is configured.
"""
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import anthropic

from deskrouter.config import settings
from deskrouter.core.exceptions import LLMUnavailableError
from deskrouter.core.pricing import PricingTable, pricing_table

logger = logging.getLogger(__name__)

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


@dataclass
class DeskCandidate:
    desk_id: str
    name: str
    agent_name: str
    model_id: str
    category: Optional[str] = None


@dataclass
class DeskScores:
    """Per-desk fit scores in [0, 1] plus reasoning, with call metering."""

    scores: Dict[str, float]
    reasoning: Dict[str, str] = field(default_factory=dict)
    category: Optional[str] = None
    model: Optional[str] = None
    cost_usd: float = 0.0


@dataclass
class AnalysisSummary:
    summary: str
    findings: List[Dict[str, Any]] = field(default_factory=list)
    model: Optional[str] = None
    cost_usd: float = 0.0


class DeskScorer(Protocol):
    async def score(self, task_text: str, candidates: List[DeskCandidate]) -> DeskScores:
        ...


class AnalysisSummarizer(Protocol):
    async def summarize(self, facts: Dict[str, Any]) -> AnalysisSummary:
        ...


def _extract_json(text: str) -> Dict[str, Any]:
    """Pull the first JSON object out of a model response."""
    match = _JSON_BLOCK_RE.search(text or "")
    if not match:
        raise LLMUnavailableError("LLM response did not contain JSON")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise LLMUnavailableError(f"LLM response JSON was malformed: {e}") from e
    if not isinstance(data, dict):
        raise LLMUnavailableError("LLM response JSON was not an object")
    return data


def _clamp(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(score, 0.0), 1.0)


class AnthropicDeskScorer:
    """Scores roster desks against a task with a single Claude call."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str = None,
        pricing: PricingTable = pricing_table,
    ):
        self.client = client
        self.model = model or settings.classifier_model
        self.pricing = pricing

    async def score(self, task_text: str, candidates: List[DeskCandidate]) -> DeskScores:
        desk_lines = "\n".join(
            f"- id={c.desk_id} | desk={c.name} | agent={c.agent_name} | model={c.model_id}"
            + (f" | category={c.category}" if c.category else "")
            for c in candidates
        )

        prompt = f"""You route tasks to the best-suited AI desk on a team.

Task:
{task_text}

Desks:
{desk_lines}

Score how well each desk fits the task from 0.0 (no fit) to 1.0 (perfect fit),
and name the task's category in one or two lowercase words.
Respond with JSON only:
{{"category": "<category>", "scores": [{{"desk_id": "<id>", "confidence": <0-1>, "reasoning": "<one sentence>"}}]}}"""

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=1024,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise LLMUnavailableError(f"Classifier call failed: {e}") from e

        data = _extract_json(response.content[0].text)
        known = {c.desk_id for c in candidates}

        scores = {}
        reasoning = {}
        for item in data.get("scores") or []:
            if not isinstance(item, dict):
                continue
            desk_id = str(item.get("desk_id", ""))
            if desk_id not in known:
                continue
            scores[desk_id] = _clamp(item.get("confidence"))
            if item.get("reasoning"):
                reasoning[desk_id] = str(item["reasoning"])

        category = data.get("category")
        return DeskScores(
            scores=scores,
            reasoning=reasoning,
            category=str(category) if category else None,
            model=self.model,
            cost_usd=self.pricing.estimate_cost(
                self.model,
                response.usage.input_tokens,
                response.usage.output_tokens,
            ),
        )


class AnthropicAnalysisSummarizer:
    """Turns aggregate routing facts into a readable summary and extra findings."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str = None,
        pricing: PricingTable = pricing_table,
    ):
        self.client = client
        self.model = model or settings.analysis_model
        self.pricing = pricing

    async def summarize(self, facts: Dict[str, Any]) -> AnalysisSummary:
        prompt = f"""Here are routing statistics for an AI team over one analysis period.
Desks are AI agents; each routing suggestion was accepted, rejected, modified, or skipped by a human.

{json.dumps(facts, indent=2, default=str)}

Write a 2-4 sentence summary for the team lead, and add up to 3 findings that the
statistics support but the existing findings do not already cover.
Respond with JSON only:
{{"summary": "<text>", "findings": [{{"type": "routing_pattern|general", "title": "<short>", "description": "<text>", "impact": "high|medium|low"}}]}}"""

        start = time.perf_counter()
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=2048,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise LLMUnavailableError(f"Analysis summary call failed: {e}") from e

        data = _extract_json(response.content[0].text)
        summary = data.get("summary")
        if not summary:
            raise LLMUnavailableError("Analysis summary response had no summary")

        logger.debug("Analysis summary took %.0fms", (time.perf_counter() - start) * 1000)

        findings = [f for f in data.get("findings") or [] if isinstance(f, dict)]
        return AnalysisSummary(
            summary=str(summary),
            findings=findings,
            model=self.model,
            cost_usd=self.pricing.estimate_cost(
                self.model,
                response.usage.input_tokens,
                response.usage.output_tokens,
            ),
        )


def _build_client() -> Optional[anthropic.AsyncAnthropic]:
    if not settings.anthropic_api_key:
        return None
    return anthropic.AsyncAnthropic(
        api_key=settings.anthropic_api_key,
        max_retries=settings.llm_max_retries,
    )


def get_desk_scorer() -> Optional[DeskScorer]:
    client = _build_client()
    return AnthropicDeskScorer(client) if client else None


def get_analysis_summarizer() -> Optional[AnalysisSummarizer]:
    client = _build_client()
    return AnthropicAnalysisSummarizer(client) if client else None
