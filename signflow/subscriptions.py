import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from .customers import get_customer_ids
from .db import get_db
from .deps import get_current_user, get_payments_client
from .errors import SubscriptionNotFound, UpstreamProviderError
from .models import User
from .payments import EFFECTIVE_FROM_CHOICES, EFFECTIVE_NEXT_BILLING_PERIOD
from .plans import get_plan
from .projector import SubscriptionProjector
from .usage import get_current_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])

UNAUTHORIZED = "Unauthorized"
CANCEL_FAILED = "Failed to cancel subscription"


class CancelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    effective_from: str = Field(default=EFFECTIVE_NEXT_BILLING_PERIOD, alias="effectiveFrom")


def cancel_subscription(db: Session, payments, user: User, subscription_id: str,
                        effective_from: str = EFFECTIVE_NEXT_BILLING_PERIOD) -> Dict[str, Any]:
    """Cancel ``subscription_id`` on behalf of ``user``.

    Ownership is checked against the provider's current view of the
    subscription, not the local projection. Every ownership failure (no
    customer, unknown subscription, someone else's subscription) answers the
    same way so callers can't fish for ids.
    """
    if effective_from not in EFFECTIVE_FROM_CHOICES:
        return {"ok": False, "error": f"effective_from must be one of {', '.join(EFFECTIVE_FROM_CHOICES)}"}

    customer_ids = get_customer_ids(db, user.email)
    try:
        current = payments.get_subscription(subscription_id) if customer_ids else None
    except SubscriptionNotFound:
        current = None
    except UpstreamProviderError:
        logger.exception("subscription lookup failed subscription=%s user_id=%s", subscription_id, user.id)
        return {"ok": False, "error": CANCEL_FAILED}

    if current is None or current.customer_id not in customer_ids:
        logger.warning(
            "SECURITY cross-tenant cancel rejected user_id=%s customer=%s subscription=%s",
            user.id, ",".join(customer_ids) or "-", subscription_id,
        )
        return {"ok": False, "error": UNAUTHORIZED}

    try:
        canceled = payments.cancel_subscription(subscription_id, effective_from)
    except UpstreamProviderError:
        logger.exception("subscription cancel failed subscription=%s user_id=%s", subscription_id, user.id)
        return {"ok": False, "error": CANCEL_FAILED}

    # no provider event timestamp here; the stored ordering key is left alone
    SubscriptionProjector(db, payments).apply_snapshot(canceled)
    db.commit()
    logger.info("subscription=%s cancel requested effective_from=%s status=%s",
                subscription_id, effective_from, canceled.status)
    return {"ok": True, "status": canceled.status, "scheduledChange": canceled.scheduled_change()}


@router.get("/current")
def current(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = get_current_subscription(db, user.id)
    if sub is None:
        return {"subscription": None, "plan": get_plan(None).model_dump()}
    scheduled = None
    if sub.scheduled_action:
        effective = sub.scheduled_effective_at.isoformat() if sub.scheduled_effective_at else None
        scheduled = {"action": sub.scheduled_action, "effectiveAt": effective}
    return {
        "subscription": {
            "id": sub.provider_subscription_id,
            "status": sub.status,
            "billingCycle": {"interval": sub.billing_interval, "frequency": sub.billing_frequency},
            "scheduledChange": scheduled,
            "startedAt": sub.started_at.isoformat() if sub.started_at else None,
            "endsAt": sub.ends_at.isoformat() if sub.ends_at else None,
        },
        "plan": get_plan(sub.plan_name).model_dump(),
    }

@router.post("/{subscription_id}/cancel")
def cancel(subscription_id: str, payload: CancelIn, db: Session = Depends(get_db),
           user: User = Depends(get_current_user), payments=Depends(get_payments_client)):
    result = cancel_subscription(db, payments, user, subscription_id, payload.effective_from)
    if result["ok"]:
        return result
    if result["error"] == UNAUTHORIZED:
        raise HTTPException(status_code=403, detail=UNAUTHORIZED)
    if result["error"] == CANCEL_FAILED:
        raise HTTPException(status_code=502, detail=CANCEL_FAILED)
    raise HTTPException(status_code=400, detail=result["error"])
