"""
Database models package
"""

from .event import Event
from .participant import Participant
from .live_stat import LiveStat

__all__ = ["Event", "Participant", "LiveStat"]
