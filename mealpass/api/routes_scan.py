"""
Scanner API routes - meal coupon verification
"""

import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from mealpass.api.ws import websocket_manager
from mealpass.core.db import get_db
from mealpass.schemas.scan import ScanVerdict, VerifyRequest
from mealpass.services.redemption_service import ERROR, INVALID, RedemptionService

logger = logging.getLogger(__name__)

router = APIRouter()

def get_redemption_service(request: Request) -> RedemptionService:
    """Redemption engine bound to this app's photo directory"""
    return RedemptionService(
        websocket_manager,
        photo_directory=getattr(request.app.state, "photo_directory", None),
    )

@router.post("/verify")
async def verify_coupon(
    body: VerifyRequest,
    db: Session = Depends(get_db),
    service: RedemptionService = Depends(get_redemption_service)
):
    """Preview (dryRun) or redeem one scanned coupon"""
    try:
        verdict = await service.verify(db, body.qr_payload, dry_run=body.dry_run, event_id=body.event_id)
    except Exception as e:
        logger.exception(f"Verification failed for payload {body.qr_payload!r}: {e}")
        verdict = ScanVerdict(valid=False, status=ERROR, message="Internal Server Error")
        return JSONResponse(content=verdict.to_payload(), status_code=500)
    
    status_code = 400 if verdict.status == INVALID and verdict.message == "Invalid QR Format" else 200
    return JSONResponse(content=verdict.to_payload(), status_code=status_code)
