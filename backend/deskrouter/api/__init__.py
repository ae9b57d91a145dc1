"""
API routers for the routing engine.
"""
from deskrouter.api import routing, analysis

__all__ = ["routing", "analysis"]
