"""
Live statistics model: incremental per-meal counters.

These rows are a cache over participant redemption flags and can be rebuilt
from participants at any time.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint

from mealpass.core.db import Base


class LiveStat(Base):
    __tablename__ = "live_stats"
    
    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(32), ForeignKey("events.id"), nullable=False, index=True)
    meal = Column(String(20), nullable=False)
    total = Column(Integer, nullable=False, default=0)
    veg = Column(Integer, nullable=False, default=0)
    nonveg = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (UniqueConstraint("event_id", "meal", name="uq_live_stats_event_meal"),)
