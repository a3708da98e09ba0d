"""
Webhook routes - participants pushed by forms and sheet scripts
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mealpass.core.db import get_db
from mealpass.core.exceptions import InternalError
from mealpass.schemas.participant import WebhookParticipant
from mealpass.services.import_service import ImportService
from mealpass.utils.responses import success_response
from mealpass.utils.security import verify_webhook_secret

router = APIRouter()

import_service = ImportService()

@router.post("/participants")
def ingest_participant(
    payload: WebhookParticipant,
    db: Session = Depends(get_db)
):
    """Add one participant through the roster import pipeline"""
    verify_webhook_secret(payload.secret)
    
    result = import_service.ingest_webhook(db, payload)
    if result.failed:
        raise InternalError("Participant could not be saved", details={"errors": result.errors})
    
    if not result.imported:
        reason = "duplicate" if result.skipped_duplicates else "empty"
        return success_response(
            message=f"Participant skipped ({reason})",
            data={"skipped": True, "reason": reason}
        )
    
    return success_response(
        message="Participant added",
        data={"skipped": False, "ticketId": result.ticket_ids[0] if result.ticket_ids else None},
        status_code=201
    )
