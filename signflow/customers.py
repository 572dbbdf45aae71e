import logging
from typing import List, Optional
from sqlalchemy import case
from sqlalchemy.orm import Session
from .models import Customer, Subscription, User, utcnow

logger = logging.getLogger(__name__)


def _customers_for(db: Session, email: Optional[str]) -> List[Customer]:
    if not email:
        return []
    # user-linked mappings first, then newest
    return (
        db.query(Customer)
        .filter(Customer.email == email.strip().lower())
        .order_by(case((Customer.user_id.is_(None), 1), else_=0), Customer.created_at.desc(), Customer.customer_id)
        .all()
    )

def get_customer_id(db: Session, email: Optional[str]) -> str:
    """Provider customer id for ``email``, or "" when the user never checked out."""
    found = _customers_for(db, email)
    return found[0].customer_id if found else ""

def get_customer_ids(db: Session, email: Optional[str]) -> List[str]:
    return [c.customer_id for c in _customers_for(db, email)]

def has_used_free_trial(db: Session, email: Optional[str]) -> bool:
    return any(c.has_used_free_trial for c in _customers_for(db, email))

def find_user_by_email(db: Session, email: Optional[str]) -> Optional[User]:
    if not email:
        return None
    return db.query(User).filter(User.email == email.strip().lower()).first()

def link_customer(db: Session, customer_id: str, email: str, user_id: Optional[int] = None) -> Customer:
    email = email.strip().lower()
    customer = db.get(Customer, customer_id)
    if customer is None:
        customer = Customer(customer_id=customer_id, email=email, user_id=user_id)
        db.add(customer)
        db.flush()
        logger.info("customer mapping created customer_id=%s user_id=%s", customer_id, user_id)
        if db.query(Customer).filter(Customer.email == email, Customer.customer_id != customer_id).count():
            logger.info("email already mapped to another customer, customer_id=%s added alongside", customer_id)
    elif customer.email != email:
        logger.warning("customer_id=%s email change ignored, mapping is immutable", customer_id)

    if customer.user_id is None and user_id is not None:
        customer.user_id = user_id
        logger.info("customer_id=%s linked to user_id=%s", customer_id, user_id)

    if customer.user_id is not None:
        link_subscriptions(db, customer_id, customer.user_id)
    return customer

def link_subscriptions(db: Session, customer_id: str, user_id: int) -> int:
    unlinked = (
        db.query(Subscription)
        .filter(Subscription.provider_customer_id == customer_id, Subscription.user_id.is_(None))
        .all()
    )
    for sub in unlinked:
        sub.user_id = user_id
        logger.info("subscription=%s linked to user_id=%s", sub.provider_subscription_id, user_id)
    if any(sub.status == "trialing" for sub in unlinked):
        record_trial_usage(db, customer_id)
    return len(unlinked)

def record_trial_usage(db: Session, customer_id: str) -> None:
    customer = db.get(Customer, customer_id)
    if customer is None or customer.first_trial_date is not None:
        return
    customer.has_used_free_trial = True
    customer.first_trial_date = utcnow()
    logger.info("trial usage recorded customer_id=%s", customer_id)
