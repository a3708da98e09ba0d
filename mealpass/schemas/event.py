"""
Event-related Pydantic schemas
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from mealpass.core.meals import SYNC_HOSTEL_DAY

class EventCreate(BaseModel):
    """Schema for creating an event"""
    name: str = Field(min_length=1)
    date: Optional[str] = None
    venue: Optional[str] = None
    drive_folder_id: Optional[str] = Field(default=None, alias="driveFolderId")
    
    class Config:
        populate_by_name = True

class EventResponse(BaseModel):
    """Basic event response"""
    id: str
    name: str
    date: Optional[str] = None
    venue: Optional[str] = None
    drive_folder_id: Optional[str] = None
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = None
    sync_sub_type: Optional[str] = None
    sync_meal_name: Optional[str] = None
    created_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True

class SheetSyncRequest(BaseModel):
    """Pull a roster from a Google Sheet into an event"""
    sheet_id: str = Field(alias="sheetId", min_length=1)
    sheet_name: Optional[str] = Field(default=None, alias="sheetName")
    event_name: Optional[str] = Field(default=None, alias="eventName")
    sub_event_name: Optional[str] = Field(default=None, alias="subEventName")
    sync_sub_type: str = Field(default=SYNC_HOSTEL_DAY, alias="syncSubType")
    sync_meal_name: Optional[str] = Field(default=None, alias="syncMealName")
    
    class Config:
        populate_by_name = True
