"""
Memory layer: per-video commenter rosters and the monitoring session registry
"""

from .roster import Commenter, Roster, RosterOrder

__all__ = ["Commenter", "Roster", "RosterOrder"]
