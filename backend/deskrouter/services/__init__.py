"""
Database-backed routing engine services.
"""
from deskrouter.services.rules import RuleStore, RuleLifecycleManager
from deskrouter.services.ledger import DecisionLedger
from deskrouter.services.analysis import AnalysisEngine
from deskrouter.services.routing import RoutingService

__all__ = [
    "RuleStore",
    "RuleLifecycleManager",
    "DecisionLedger",
    "AnalysisEngine",
    "RoutingService",
]
