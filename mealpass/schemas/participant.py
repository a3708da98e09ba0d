"""
Participant import and dispatch schemas
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from mealpass.core.meals import SYNC_HOSTEL_DAY

class ImportResult(BaseModel):
    """Outcome of one roster import or sync"""
    imported: int = 0
    updated: int = 0
    skipped_duplicates: int = 0
    skipped_empty: int = 0
    unnamed: int = 0
    failed: int = 0
    total_rows: int = 0
    errors: List[str] = []
    ticket_ids: List[str] = []
    
    @property
    def success(self) -> bool:
        return self.failed == 0
    
    @property
    def message(self) -> str:
        text = (
            f"Imported {self.imported} participants from {self.total_rows} rows "
            f"({self.skipped_duplicates} duplicates skipped)."
        )
        if self.updated:
            text += f" {self.updated} existing participants updated."
        if self.failed:
            text += f" {self.failed} failed to save."
        return text

class WebhookParticipant(BaseModel):
    """Single participant pushed by a form/sheet script"""
    secret: str
    event_id: str = Field(alias="eventId")
    event_name: Optional[str] = Field(default=None, alias="eventName")
    data: Dict[str, Any]
    
    class Config:
        populate_by_name = True

class DispatchRequest(BaseModel):
    """Send coupon emails to pending participants of an event"""
    event_id: str = Field(alias="eventId")
    target_roll_no: Optional[str] = Field(default=None, alias="targetRollNo")
    sub_type: str = Field(default=SYNC_HOSTEL_DAY, alias="hostelSubType")
    meal_name: Optional[str] = Field(default=None, alias="customMealName")
    cursor: Optional[str] = None
    
    class Config:
        populate_by_name = True
