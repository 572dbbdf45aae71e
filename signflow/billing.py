from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
import logging
from . import config
from .customers import get_customer_id, has_used_free_trial
from .db import get_db
from .deps import get_current_user, get_payments_client
from .errors import ConfigurationError, UpstreamProviderError
from .models import User
from .plans import is_known_price_id, visible_plans
from .usage import get_current_plan, get_current_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

class CheckoutIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    price_id: str = Field(alias="priceId")

@router.get("/status")
def status(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = get_current_subscription(db, user.id)
    return {
        "plan": get_current_plan(db, user.id).name,
        "subscription_status": sub.status if sub else None,
        "customer_id": get_customer_id(db, user.email),
    }

@router.get("/plans")
def plans():
    return {"plans": [p.model_dump(exclude={"price_ids"}) | {"priceIds": p.price_ids} for p in visible_plans()]}

@router.post("/create-checkout-session")
def create_checkout_session(payload: CheckoutIn, db: Session = Depends(get_db),
                            user: User = Depends(get_current_user), payments=Depends(get_payments_client)):
    if not is_known_price_id(payload.price_id):
        raise HTTPException(status_code=400, detail="Unknown price")
    # one trial per customer; returning customers check out without it
    trial_days = 0 if has_used_free_trial(db, user.email) else config.TRIAL_PERIOD_DAYS
    try:
        url = payments.create_checkout_session(
            price_id=payload.price_id,
            email=user.email,
            user_id=user.id,
            customer_id=get_customer_id(db, user.email),
            trial_days=trial_days,
            success_url=config.SITE_URL + "/checkout/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url=config.SITE_URL + "/pricing?canceled=true",
        )
    except ConfigurationError:
        raise HTTPException(status_code=400, detail="Payments not configured")
    except UpstreamProviderError:
        logger.exception("checkout session failed for user_id=%s", user.id)
        raise HTTPException(status_code=502, detail="Payments provider unavailable")
    return {"checkout_url": url}

class CreditCheckoutIn(BaseModel):
    quantity: int = 5

@router.post("/create-credit-checkout")
def create_credit_checkout(payload: CreditCheckoutIn, db: Session = Depends(get_db),
                           user: User = Depends(get_current_user), payments=Depends(get_payments_client)):
    if not 1 <= payload.quantity <= config.CREDIT_MAX_QUANTITY:
        raise HTTPException(status_code=400, detail=f"Quantity must be between 1 and {config.CREDIT_MAX_QUANTITY}")
    try:
        url = payments.create_checkout_session(
            price_id=config.STRIPE_CREDIT_PRICE_ID,
            email=user.email,
            user_id=user.id,
            customer_id=get_customer_id(db, user.email),
            success_url=config.SITE_URL + "/checkout/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url=config.SITE_URL + "/dashboard?credits=canceled",
            mode="payment",
            quantity=payload.quantity,
            metadata={"type": "credit", "quantity": str(payload.quantity)},
        )
    except ConfigurationError:
        raise HTTPException(status_code=400, detail="Payments not configured")
    except UpstreamProviderError:
        logger.exception("credit checkout failed for user_id=%s", user.id)
        raise HTTPException(status_code=502, detail="Payments provider unavailable")
    return {"checkout_url": url}
