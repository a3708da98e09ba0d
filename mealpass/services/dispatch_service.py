"""
Bulk coupon email dispatch.

Each call handles at most ``DISPATCH_BATCH_SIZE`` pending participants and
reports progress as a stream of small dicts. The final record says whether
more remain (``hasMore``) and where to resume (``nextCursor``), so callers
re-invoke until ``hasMore`` is false.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterator, List, Optional

from sqlalchemy.orm import Session

from mealpass.core.config import settings
from mealpass.core.exceptions import NotFoundError, ValidationError
from mealpass.core.meals import SYNC_OTHER, meals_for_sync, normalize_meal
from mealpass.schemas.participant import DispatchRequest
from mealpass.services.coupon_renderer import CouponRenderer
from mealpass.services.email_transport import EmailTransport
from mealpass.services.repositories import EventRecord, EventRepo, ParticipantRecord, ParticipantRepo

logger = logging.getLogger(__name__)


class DispatchService:
    """Renders and emails coupons, moving participants from generated to sent"""

    def __init__(
        self,
        renderer: Optional[CouponRenderer] = None,
        transport: Optional[EmailTransport] = None,
        batch_size: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ):
        self.renderer = renderer or CouponRenderer()
        self.transport = transport or EmailTransport()
        self.batch_size = batch_size or settings.DISPATCH_BATCH_SIZE
        self.chunk_size = chunk_size or settings.DISPATCH_CHUNK_SIZE

    def dispatch(self, db: Session, request: DispatchRequest) -> Iterator[Dict]:
        """Validate up front, then return the progress stream"""
        event = EventRepo.get(db, request.event_id)
        if not event:
            raise NotFoundError("Event", request.event_id)

        meal_name = None
        if request.sub_type == SYNC_OTHER:
            meal_name = normalize_meal(request.meal_name)
            if not meal_name:
                raise ValidationError("customMealName must be a known meal", details={"customMealName": request.meal_name})

        return self._stream(db, event, request, meals_for_sync(request.sub_type, meal_name))

    def _stream(self, db: Session, event: EventRecord, request: DispatchRequest, meals: List[str]) -> Iterator[Dict]:
        roll_no = (request.target_roll_no or "").strip().upper() or None
        pending = ParticipantRepo.list_pending(
            db, event.id,
            limit=self.batch_size + 1,
            roll_no=roll_no,
            after_ticket_id=request.cursor,
        )
        has_more = len(pending) > self.batch_size
        pending = pending[:self.batch_size]
        total = len(pending)

        if not pending:
            yield {
                "status": "completed",
                "message": "No pending invitations found.",
                "total": 0, "processed": 0, "success": 0, "failed": 0,
                "hasMore": False, "nextCursor": None, "done": True,
            }
            return

        yield {"status": "started", "total": total, "processed": 0}

        processed = success = failed = 0
        cursor = request.cursor
        with ThreadPoolExecutor(max_workers=self.chunk_size) as pool:
            for start in range(0, total, self.chunk_size):
                chunk = pending[start:start + self.chunk_size]
                outcomes = list(pool.map(lambda p: self._deliver(p, event, meals, request.meal_name), chunk))

                sent_ids = []
                for participant, error in zip(chunk, outcomes):
                    if error is None:
                        sent_ids.append(participant.id)
                        success += 1
                    else:
                        failed += 1
                        logger.warning(f"Coupon dispatch failed for {participant.ticket_id}: {error}")
                        yield {
                            "status": "error",
                            "error": f"Failed for {participant.name}: {error}",
                            "participant": participant.name,
                            "ticketId": participant.ticket_id,
                        }

                try:
                    ParticipantRepo.mark_sent(db, sent_ids)
                except Exception as e:
                    logger.error(f"Could not record {len(sent_ids)} sent coupons for {event.id}: {e}")
                    # Emails went out but status did not move; they stay pending
                    yield {
                        "status": "error",
                        "error": f"Could not record sent status: {e}",
                        "total": total,
                        "processed": processed,
                        "success": success - len(sent_ids),
                        "failed": failed,
                        "hasMore": True,
                        "nextCursor": cursor,
                        "done": True,
                    }
                    return

                processed += len(chunk)
                cursor = chunk[-1].ticket_id
                yield {
                    "status": "progress",
                    "total": total,
                    "processed": processed,
                    "success": success,
                    "failed": failed,
                }

        logger.info(f"Dispatch for {event.id}: {success} sent, {failed} failed, more pending: {has_more}")
        yield {
            "status": "completed",
            "message": f"Sent {success} emails. Failed: {failed}",
            "total": total,
            "processed": processed,
            "success": success,
            "failed": failed,
            "hasMore": has_more,
            "nextCursor": cursor if has_more else None,
            "done": True,
        }

    def _deliver(
        self,
        participant: ParticipantRecord,
        event: EventRecord,
        meals: List[str],
        custom_meal_name: Optional[str],
    ) -> Optional[str]:
        """Error text, or None when the email went out"""
        if not participant.email:
            return "no email address"
        coupon_meals = [m for m in meals if not participant.allowed_meals or m in participant.allowed_meals]
        if not coupon_meals:
            return "not entitled to any requested meal"
        try:
            pdf = self.renderer.render(participant, coupon_meals, title=event.name)
            if len(meals) == 1:
                label = custom_meal_name or meals[0].title()
                subject = f"{label} Invitation"
                body = (
                    f"<p>Hello <strong>{participant.name}</strong>,</p>"
                    f"<p>You are invited for <strong>{label}</strong>.</p>"
                    f"<p>Please find your coupon attached.</p>"
                )
            else:
                subject = f"Invitation: {event.name}"
                body = (
                    f"<p>Hello <strong>{participant.name}</strong>,</p>"
                    f"<p>Here is your coupon sheet for <strong>{event.name}</strong>.</p>"
                )
            self.transport.send(
                participant.email,
                subject,
                body,
                attachment=pdf,
                attachment_name=f"Invitation-{participant.ticket_id}.pdf",
            )
        except Exception as e:
            return str(e)
        return None
