"""
Routing rule conditions and actions.

Conditions and actions are closed variants. A stored rule whose JSON does not
parse into one of them is rejected on write and skipped (with a warning) on
read, so evaluation never silently treats an unknown shape as "no match".
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, FrozenSet, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from deskrouter.core.exceptions import InvalidRuleError

logger = logging.getLogger(__name__)


class KeywordMatch(BaseModel):
    """Matches when any keyword occurs in the task title or description."""

    type: Literal["keyword_match"] = "keyword_match"
    keywords: List[str]

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, value: List[str]) -> List[str]:
        keywords = [k.strip().lower() for k in value if k and k.strip()]
        if not keywords:
            raise ValueError("keywords must contain at least one non-empty keyword")
        return keywords

    def matches(self, task: "TaskContext") -> bool:
        return any(keyword in task.text for keyword in self.keywords)


class CategoryMatch(BaseModel):
    """Matches when the task carries (or contains) the given category."""

    type: Literal["category_match"] = "category_match"
    category: str

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("category must not be empty")
        return value

    def matches(self, task: "TaskContext") -> bool:
        return any(
            self.category == category or self.category in category
            for category in task.categories
        )


RuleCondition = Annotated[Union[KeywordMatch, CategoryMatch], Field(discriminator="type")]


class RuleAction(BaseModel):
    """Prefer a desk, a model, or a desk running a specific model."""

    model_config = ConfigDict(protected_namespaces=())

    desk_id: Optional[str] = None
    model_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_target(self) -> "RuleAction":
        if not self.desk_id and not self.model_id:
            raise ValueError("action must set desk_id, model_id, or both")
        return self

    @property
    def kind(self) -> str:
        if self.desk_id and self.model_id:
            return "prefer_desk_model"
        if self.desk_id:
            return "prefer_desk"
        return "prefer_model"


_condition_adapter = TypeAdapter(RuleCondition)


def parse_condition(data: Any) -> Union[KeywordMatch, CategoryMatch]:
    """Parse a stored/submitted condition into its variant."""
    if isinstance(data, (KeywordMatch, CategoryMatch)):
        return data
    try:
        return _condition_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidRuleError(f"Invalid rule condition: {e.errors()[0]['msg']}") from e


def parse_action(data: Any) -> RuleAction:
    """Parse a stored/submitted action."""
    if isinstance(data, RuleAction):
        return data
    try:
        return RuleAction.model_validate(data)
    except ValidationError as e:
        raise InvalidRuleError(f"Invalid rule action: {e.errors()[0]['msg']}") from e


def rule_type_for(condition: Union[KeywordMatch, CategoryMatch]) -> str:
    if isinstance(condition, KeywordMatch):
        return "keyword_routing"
    return "category_routing"


@dataclass(frozen=True)
class TaskContext:
    """Lower-cased task text plus every category attached to the task."""

    text: str
    categories: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        title: str,
        description: Optional[str] = None,
        categories: Iterable[str] = (),
    ) -> "TaskContext":
        text = f"{title} {description or ''}".lower()
        return cls(
            text=text,
            categories=frozenset(c.strip().lower() for c in categories if c and c.strip()),
        )

    def with_category(self, category: Optional[str]) -> "TaskContext":
        if not category or not category.strip():
            return self
        return TaskContext(text=self.text, categories=self.categories | {category.strip().lower()})


@dataclass(frozen=True)
class CompiledRule:
    id: str
    priority: int
    created_at: datetime
    condition: Union[KeywordMatch, CategoryMatch]
    action: RuleAction

    def matches(self, task: TaskContext) -> bool:
        return self.condition.matches(task)


def compile_rules(rules: Iterable[Any]) -> List[CompiledRule]:
    """
    Parse active rules and order them for evaluation.

    Lower priority values evaluate first; equal priorities fall back to
    creation time (oldest first), then id for a total order.
    """
    compiled = []
    for rule in rules:
        if not rule.is_active:
            continue
        try:
            condition = parse_condition(rule.condition)
            action = parse_action(rule.action)
        except InvalidRuleError as e:
            logger.warning("Skipping malformed routing rule %s: %s", rule.id, e)
            continue
        compiled.append(
            CompiledRule(
                id=str(rule.id),
                priority=rule.priority,
                created_at=rule.created_at or datetime.min,
                condition=condition,
                action=action,
            )
        )

    compiled.sort(key=lambda r: (r.priority, r.created_at, r.id))
    return compiled


def match_rules(task: TaskContext, rules: List[CompiledRule]) -> List[CompiledRule]:
    """Return matching rules, preserving evaluation order."""
    return [rule for rule in rules if rule.matches(task)]
