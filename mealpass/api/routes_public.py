"""
Public API routes - no authentication required
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from mealpass.core.db import get_db
from mealpass.core.exceptions import NotFoundError, ValidationError
from mealpass.core.meals import MEAL_SLOTS, normalize_meal
from mealpass.services.excel_service import ExcelService
from mealpass.services.qr_service import QRService
from mealpass.services.repositories import ParticipantRepo, use_firestore

router = APIRouter()

@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "backend": "firestore" if use_firestore() else "sql"}

@router.get("/template/roster.xlsx")
async def download_roster_template():
    """Excel template with the recognised roster columns"""
    return Response(
        content=ExcelService.create_template(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=roster_template.xlsx"}
    )

@router.get("/coupons/{ticket_id}/{meal}.png")
def coupon_qr(
    ticket_id: str,
    meal: str,
    db: Session = Depends(get_db)
):
    """QR image for one meal coupon"""
    slot = normalize_meal(meal)
    if not slot:
        raise ValidationError(
            f"Unknown meal '{meal}'",
            error_code="INVALID_MEAL",
            details={"allowed": list(MEAL_SLOTS)}
        )
    
    if not ParticipantRepo.find_by_ticket_id(db, ticket_id):
        raise NotFoundError("Ticket", ticket_id)
    
    return Response(
        content=QRService.generate_coupon_qr(ticket_id, slot),
        media_type="image/png",
        headers={"Cache-Control": "public, max-age=86400"}
    )
