"""Payments provider webhook endpoint.

Non-2xx answers make the provider redeliver, so anything that might succeed on
a retry (provider outage, database error) returns 500. Redeliveries of an
event that already went through are short-circuited by the processed-event
ledger.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config
from .db import get_db
from .deps import get_payments_client
from .errors import ConfigurationError, InvalidSignature
from .models import ProcessedEvent
from .payments import SIGNATURE_HEADER, parse_webhook
from .projector import SubscriptionProjector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)

@router.post("/route")
async def receive(request: Request, db: Session = Depends(get_db), payments=Depends(get_payments_client)):
    signature = request.headers.get(SIGNATURE_HEADER) or ""
    body = await request.body()
    if not signature or not body:
        logger.error("webhook rejected: missing signature or body")
        return _error("Missing signature from header", 400)

    try:
        event = parse_webhook(body, signature, config.STRIPE_WEBHOOK_SECRET)
    except ConfigurationError:
        logger.error("webhook rejected: STRIPE_WEBHOOK_SECRET not configured")
        return _error("Webhook secret not configured", 500)
    except InvalidSignature as e:
        logger.warning("webhook rejected: %s", e)
        return _error("Invalid signature", 400)

    logger.info("webhook received event_id=%s event_type=%s", event.event_id, event.event_type)

    if db.get(ProcessedEvent, event.event_id) is not None:
        logger.info("webhook duplicate event_id=%s skipped", event.event_id)
        return {"status": 200, "eventName": event.event_type, "duplicate": True}

    try:
        SubscriptionProjector(db, payments).process_event(event)
        db.add(ProcessedEvent(event_id=event.event_id, event_type=event.event_type))
        db.commit()
    except IntegrityError:
        db.rollback()
        if db.get(ProcessedEvent, event.event_id) is not None:
            logger.info("webhook event_id=%s processed concurrently, skipped", event.event_id)
            return {"status": 200, "eventName": event.event_type, "duplicate": True}
        logger.exception("webhook persistence failed event_id=%s event_type=%s", event.event_id, event.event_type)
        return _error("Internal server error", 500)
    except Exception:
        db.rollback()
        logger.exception("webhook processing failed event_id=%s event_type=%s", event.event_id, event.event_type)
        return _error("Internal server error", 500)

    logger.info("webhook processed event_id=%s event_type=%s", event.event_id, event.event_type)
    return {"status": 200, "eventName": event.event_type}
