"""
Scan verification schemas
"""

from typing import Optional
from pydantic import BaseModel, Field

class VerifyRequest(BaseModel):
    """A scanned QR payload, previewed (dry run) or committed"""
    qr_payload: Optional[str] = Field(default=None, alias="qrPayload")
    dry_run: bool = Field(default=False, alias="dryRun")
    event_id: Optional[str] = Field(default=None, alias="eventId")
    
    class Config:
        populate_by_name = True

class ParticipantCard(BaseModel):
    """What the scanner shows for every verdict"""
    name: str
    food_preference: str = Field(alias="foodPreference")
    room_no: Optional[str] = Field(default=None, alias="roomNo")
    roll_no: Optional[str] = Field(default=None, alias="rollNo")
    college: Optional[str] = None
    ticket_id: str = Field(alias="ticketId")
    photo_url: Optional[str] = Field(default=None, alias="photoUrl")
    
    class Config:
        populate_by_name = True

class ScanDetails(BaseModel):
    meal_type: str = Field(alias="mealType")
    
    class Config:
        populate_by_name = True

class ScanVerdict(BaseModel):
    """Verification call output"""
    valid: bool
    status: str  # verified, used, eligible, invalid, error
    participant: Optional[ParticipantCard] = None
    scan_details: Optional[ScanDetails] = Field(default=None, alias="scanDetails")
    message: str
    
    class Config:
        populate_by_name = True
    
    def to_payload(self) -> dict:
        payload = self.model_dump(by_alias=True)
        for key in ("participant", "scanDetails"):
            if payload[key] is None:
                del payload[key]
        return payload
