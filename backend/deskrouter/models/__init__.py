"""
SQLAlchemy models for the routing engine database.
"""
from deskrouter.models.desk import Desk
from deskrouter.models.routing import RoutingRule, RoutingDecision
from deskrouter.models.analysis import AnalysisRun

__all__ = [
    "Desk",
    "RoutingRule",
    "RoutingDecision",
    "AnalysisRun",
]
