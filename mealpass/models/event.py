"""
Event model
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship

from mealpass.core.db import Base


def new_id() -> str:
    return uuid.uuid4().hex


class Event(Base):
    __tablename__ = "events"
    
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    date = Column(String(32), nullable=True)
    venue = Column(String(255), nullable=True)
    drive_folder_id = Column(String(128), nullable=True)
    
    # Sheet sync configuration, written back on every successful sync
    sheet_id = Column(String(128), nullable=True)
    sheet_name = Column(String(255), nullable=True)
    sync_sub_type = Column(String(20), nullable=True)  # hostel_day | other
    sync_meal_name = Column(String(50), nullable=True)
    
    created_at = Column(DateTime, default=datetime.utcnow)
    
    # Relationships
    participants = relationship("Participant", back_populates="event")
