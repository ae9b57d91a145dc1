"""
Domain exceptions raised by the routing engine.
"""


class RoutingError(Exception):
    """Base class for routing engine errors."""


class InvalidTaskError(RoutingError):
    """Task draft cannot be classified (e.g. empty title)."""


class InvalidRuleError(RoutingError):
    """Rule condition or action does not match a known variant."""


class RuleNotFoundError(RoutingError):
    """Rule does not exist for this team (or run)."""


class AnalysisRunNotFoundError(RoutingError):
    """Analysis run does not exist for this team."""


class LLMUnavailableError(RoutingError):
    """LLM provider call failed, timed out, or returned unusable output."""
