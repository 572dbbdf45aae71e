"""Usage gate: plan limits vs. this month's counters.

Reads never create rows. Counter writes come from the document routes and are
not joined with the checks, so a concurrent create can briefly overshoot a
limit.
"""
import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .db import get_db
from .deps import get_current_user
from .models import Document, MonthlyUsage, Subscription, User, utcnow
from .plans import DEFAULT_PLAN, UNLIMITED, Plan, get_plan

ENTITLED_STATUSES = ("active", "trialing")
ACTIVE_DOCUMENT_STATUSES = ("published", "completed")

router = APIRouter(prefix="/usage", tags=["usage"])


class UsageLimits(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    can_create_new: bool
    can_publish_more: bool
    current_monthly_created: int
    current_active_documents: int
    monthly_creation_limit: int
    active_document_limit: int


def current_year_month(now: Optional[dt.datetime] = None) -> str:
    return (now or utcnow()).strftime("%Y-%m")

def within_limit(count: int, limit: int) -> bool:
    if limit == UNLIMITED:
        return True
    return count < limit

def get_current_subscription(db: Session, user_id: int) -> Optional[Subscription]:
    now = utcnow()
    return (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(ENTITLED_STATUSES),
            or_(Subscription.ends_at.is_(None), Subscription.ends_at > now),
        )
        .order_by(Subscription.started_at.desc(), Subscription.id.desc())
        .first()
    )

def get_current_plan(db: Session, user_id: int) -> Plan:
    sub = get_current_subscription(db, user_id)
    return get_plan(sub.plan_name) if sub else DEFAULT_PLAN

def get_current_month_usage(db: Session, user_id: int) -> Optional[MonthlyUsage]:
    return (
        db.query(MonthlyUsage)
        .filter(MonthlyUsage.user_id == user_id, MonthlyUsage.year_month == current_year_month())
        .first()
    )

def count_active_documents(db: Session, user_id: int) -> int:
    return (
        db.query(Document)
        .filter(Document.user_id == user_id, Document.status.in_(ACTIVE_DOCUMENT_STATUSES))
        .count()
    )

def check_limits(db: Session, user_id: int) -> UsageLimits:
    plan = get_current_plan(db, user_id)
    usage = get_current_month_usage(db, user_id)
    created = usage.documents_created if usage else 0
    active = count_active_documents(db, user_id)
    return UsageLimits(
        can_create_new=within_limit(created, plan.monthly_document_limit),
        can_publish_more=within_limit(active, plan.active_document_limit),
        current_monthly_created=created,
        current_active_documents=active,
        monthly_creation_limit=plan.monthly_document_limit,
        active_document_limit=plan.active_document_limit,
    )

def can_create_publication(db: Session, user_id: int, document_count: int = 1) -> bool:
    limits = check_limits(db, user_id)
    if limits.active_document_limit == UNLIMITED:
        return True
    return limits.current_active_documents + document_count <= limits.active_document_limit


def _usage_row(db: Session, user_id: int) -> MonthlyUsage:
    usage = get_current_month_usage(db, user_id)
    if usage is None:
        usage = MonthlyUsage(user_id=user_id, year_month=current_year_month(),
                             documents_created=0, published_completed_count=0)
        db.add(usage)
        db.flush()
    return usage

def increment_documents_created(db: Session, user_id: int) -> None:
    _usage_row(db, user_id).documents_created += 1

def decrement_documents_created(db: Session, user_id: int) -> None:
    usage = get_current_month_usage(db, user_id)
    if usage and usage.documents_created > 0:
        usage.documents_created -= 1

def increment_published_completed(db: Session, user_id: int) -> None:
    _usage_row(db, user_id).published_completed_count += 1

def reset_current_month(db: Session, user_id: int) -> None:
    usage = get_current_month_usage(db, user_id)
    if usage:
        usage.documents_created = 0
        usage.published_completed_count = 0


@router.get("/limits")
def limits(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return check_limits(db, user.id).model_dump(by_alias=True)
