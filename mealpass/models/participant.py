"""
Participant model
"""

from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship

from mealpass.core.db import Base
from mealpass.core.meals import MEAL_SLOTS
from mealpass.models.event import new_id


class Participant(Base):
    __tablename__ = "participants"
    
    id = Column(String(32), primary_key=True, default=new_id)
    event_id = Column(String(32), ForeignKey("events.id"), nullable=False, index=True)
    event_name = Column(String(255), nullable=True)
    sub_event_name = Column(String(255), nullable=True)
    
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)  # lowercase
    roll_no = Column(String(64), nullable=True)  # uppercase
    department = Column(String(255), nullable=True)
    college = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    year = Column(String(32), nullable=True)
    food_preference = Column(String(64), nullable=True)
    room_no = Column(String(64), nullable=True)
    
    ticket_id = Column(String(64), unique=True, nullable=False, index=True)
    token = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="generated", index=True)  # generated, sent
    source = Column(String(20), nullable=False, default="upload")  # upload, sheet, webhook
    allowed_meals = Column(JSON, nullable=False, default=list)
    other_details = Column(JSON, nullable=False, default=dict)
    
    # One flag and one timestamp per meal slot; flags only ever go false -> true
    breakfast_used = Column(Boolean, nullable=False, default=False)
    lunch_used = Column(Boolean, nullable=False, default=False)
    snacks_used = Column(Boolean, nullable=False, default=False)
    dinner_used = Column(Boolean, nullable=False, default=False)
    icecream_used = Column(Boolean, nullable=False, default=False)
    checkin_breakfast = Column(DateTime, nullable=True)
    checkin_lunch = Column(DateTime, nullable=True)
    checkin_snacks = Column(DateTime, nullable=True)
    checkin_dinner = Column(DateTime, nullable=True)
    checkin_icecream = Column(DateTime, nullable=True)
    
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    event = relationship("Event", back_populates="participants")
    
    __table_args__ = (
        Index("ix_participants_event_roll", "event_id", "roll_no"),
        Index("ix_participants_event_email", "event_id", "email"),
    )
    
    @property
    def token_usage(self) -> dict:
        return {meal: bool(getattr(self, f"{meal}_used")) for meal in MEAL_SLOTS}
    
    @property
    def check_ins(self) -> dict:
        return {
            meal: getattr(self, f"checkin_{meal}")
            for meal in MEAL_SLOTS
            if getattr(self, f"checkin_{meal}") is not None
        }
