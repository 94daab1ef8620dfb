"""
Canonical store models.

Usage:
    from cfb_reconcile.models import Team, Game
"""
from cfb_reconcile.models.models import Base, Team, Game

__all__ = [
    "Base",
    "Team",
    "Game",
]
