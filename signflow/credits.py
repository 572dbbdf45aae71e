"""Prepaid credits that stretch the usage gate past the plan limits.

A create credit pays for one document beyond the monthly allowance, a publish
credit for one active document beyond the plan's active limit. Balances move
only through conditional UPDATEs so two requests can't spend the same credit,
and every movement leaves a row in ``credit_transactions``.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import update
from sqlalchemy.orm import Session

from .db import get_db
from .deps import get_current_user
from .models import CreditBalance, CreditTransaction, User, utcnow

logger = logging.getLogger(__name__)

CREATE = "create"
PUBLISH = "publish"

router = APIRouter(prefix="/credits", tags=["credits"])


class Credits(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    create_credits: int = 0
    publish_credits: int = 0


def _column(kind: str):
    if kind == CREATE:
        return CreditBalance.create_credits
    if kind == PUBLISH:
        return CreditBalance.publish_credits
    raise ValueError(f"unknown credit kind {kind!r}")

def _ensure_balance(db: Session, user_id: int) -> None:
    if db.get(CreditBalance, user_id) is None:
        db.add(CreditBalance(user_id=user_id, create_credits=0, publish_credits=0))
        db.flush()

def _shift(db: Session, user_id: int, create: int = 0, publish: int = 0, *conditions) -> int:
    stmt = (
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id, *conditions)
        .values(
            create_credits=CreditBalance.create_credits + create,
            publish_credits=CreditBalance.publish_credits + publish,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount

def _record(db: Session, user_id: int, transaction_type: str, create: int = 0, publish: int = 0,
            document_id=None, reference=None) -> None:
    db.add(CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        create_credits=create,
        publish_credits=publish,
        related_document_id=document_id,
        provider_reference=reference,
    ))
    db.flush()

def _delta(kind: str, amount: int):
    return (amount, 0) if kind == CREATE else (0, amount)


def get_balance(db: Session, user_id: int) -> Credits:
    """Current balance. A user who never bought credits reads as zero; no row is created."""
    row = (
        db.query(CreditBalance)
        .filter(CreditBalance.user_id == user_id)
        .populate_existing()
        .first()
    )
    if row is None:
        return Credits()
    return Credits(create_credits=row.create_credits, publish_credits=row.publish_credits)

def was_charged(db: Session, user_id: int, document_id: int, kind: str) -> bool:
    """True when ``document_id`` holds an unrefunded ``kind`` credit."""
    base = db.query(CreditTransaction).filter(
        CreditTransaction.user_id == user_id,
        CreditTransaction.related_document_id == document_id,
    )
    used = base.filter(CreditTransaction.transaction_type == f"use_{kind}").count()
    refunded = base.filter(CreditTransaction.transaction_type == f"refund_{kind}").count()
    return used > refunded

def deduct_credit(db: Session, user_id: int, kind: str, document_id: int) -> bool:
    column = _column(kind)
    create, publish = _delta(kind, -1)
    if _shift(db, user_id, create, publish, column >= 1) != 1:
        logger.info("insufficient %s credits user_id=%s document_id=%s", kind, user_id, document_id)
        return False
    _record(db, user_id, f"use_{kind}", create, publish, document_id=document_id)
    logger.info("%s credit used user_id=%s document_id=%s", kind, user_id, document_id)
    return True

def refund_credit(db: Session, user_id: int, kind: str, document_id: int) -> bool:
    if not was_charged(db, user_id, document_id, kind):
        return False
    create, publish = _delta(kind, 1)
    _ensure_balance(db, user_id)
    _shift(db, user_id, create, publish)
    _record(db, user_id, f"refund_{kind}", create, publish, document_id=document_id)
    logger.info("%s credit refunded user_id=%s document_id=%s", kind, user_id, document_id)
    return True

def add_credits(db: Session, user_id: int, quantity: int, reference: str) -> bool:
    """Grant ``quantity`` create and publish credits once per provider ``reference``.

    Returns False when ``reference`` was already granted.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    if db.query(CreditTransaction).filter(CreditTransaction.provider_reference == reference).first():
        logger.info("credit purchase reference=%s already granted", reference)
        return False
    _ensure_balance(db, user_id)
    _shift(db, user_id, quantity, quantity)
    _record(db, user_id, "purchase", quantity, quantity, reference=reference)
    logger.info("credits added user_id=%s quantity=%s reference=%s", user_id, quantity, reference)
    return True


@router.get("/balance")
def balance(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return get_balance(db, user.id).model_dump(by_alias=True)
