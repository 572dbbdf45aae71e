"""Static plan catalogue.

Limits of ``-1`` mean unlimited. The lowest ``order`` plan is what users without
an entitled subscription get.
"""
import os
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict

UNLIMITED = -1


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    monthly_document_limit: int
    active_document_limit: int
    features: List[str] = []
    order: int = 0
    is_hidden: bool = False
    price_ids: Dict[str, str] = {}


PLANS: List[Plan] = [
    Plan(
        name="Basic",
        monthly_document_limit=5,
        active_document_limit=3,
        features=["5 documents per month", "3 active documents", "Email signing links"],
        order=0,
    ),
    Plan(
        name="Pro",
        monthly_document_limit=100,
        active_document_limit=50,
        features=["100 documents per month", "50 active documents", "Signing reminders", "Audit trail export"],
        order=1,
        price_ids={
            "month": os.getenv("STRIPE_PRICE_PRO_MONTH", "price_pro_month"),
            "year": os.getenv("STRIPE_PRICE_PRO_YEAR", "price_pro_year"),
        },
    ),
    Plan(
        name="Enterprise",
        monthly_document_limit=UNLIMITED,
        active_document_limit=UNLIMITED,
        features=["Unlimited documents", "Unlimited active documents", "Priority support"],
        order=2,
        is_hidden=True,
        price_ids={
            "month": os.getenv("STRIPE_PRICE_ENTERPRISE_MONTH", "price_enterprise_month"),
            "year": os.getenv("STRIPE_PRICE_ENTERPRISE_YEAR", "price_enterprise_year"),
        },
    ),
]

DEFAULT_PLAN = min(PLANS, key=lambda p: p.order)


def get_plan(name: Optional[str]) -> Plan:
    for plan in PLANS:
        if plan.name == name:
            return plan
    return DEFAULT_PLAN

def plan_for_price_id(price_id: Optional[str]) -> Plan:
    if price_id:
        for plan in PLANS:
            if price_id in plan.price_ids.values():
                return plan
    return DEFAULT_PLAN

def is_known_price_id(price_id: Optional[str]) -> bool:
    return bool(price_id) and any(price_id in p.price_ids.values() for p in PLANS)

def visible_plans() -> List[Plan]:
    return sorted((p for p in PLANS if not p.is_hidden), key=lambda p: p.order)

def _limit_rank(limit: int) -> float:
    return float("inf") if limit == UNLIMITED else limit

def is_upgrade(old: Plan, new: Plan) -> bool:
    """True when either limit of ``new`` is strictly more generous than ``old``."""
    return (
        _limit_rank(new.monthly_document_limit) > _limit_rank(old.monthly_document_limit)
        or _limit_rank(new.active_document_limit) > _limit_rank(old.active_document_limit)
    )
