"""Legal consent gate.

Users signing in through a provider in ``CONSENT_REQUIRED_PROVIDERS`` must have
accepted the current terms and privacy versions before they reach anything but
the consent page itself. Bumping ``LEGAL_VERSION`` puts everyone back through it.
"""
import enum
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .auth import clear_session_cookie
from .db import get_db
from .deps import token_from_request, user_from_token
from .models import User, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/consent", tags=["consent"])

CONSENT_PATH = "/auth/consent"


class ConsentState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    NO_CONSENT_REQUIRED = "authenticated_no_consent_required"
    CONSENT_PENDING = "authenticated_consent_pending"
    CONSENT_GIVEN = "authenticated_consent_given"


def requires_consent(user: User) -> bool:
    return user.auth_provider in config.CONSENT_REQUIRED_PROVIDERS

def has_valid_consent(user: User) -> bool:
    version = config.CURRENT_LEGAL_VERSION
    return (
        user.terms_accepted_at is not None
        and user.privacy_accepted_at is not None
        and user.terms_accepted_version == version
        and user.privacy_accepted_version == version
    )

def consent_state(user: Optional[User]) -> ConsentState:
    if user is None:
        return ConsentState.UNAUTHENTICATED
    if not requires_consent(user):
        return ConsentState.NO_CONSENT_REQUIRED
    if has_valid_consent(user):
        return ConsentState.CONSENT_GIVEN
    return ConsentState.CONSENT_PENDING

def safe_next_path(value: Optional[str]) -> str:
    """Only same-site relative paths survive; anything else becomes ``/``."""
    if not isinstance(value, str) or not value.startswith("/"):
        return "/"
    if value.startswith("//") or "\\" in value:
        return "/"
    return value

def consent_url(next_path: Optional[str]) -> str:
    next_path = safe_next_path(next_path)
    if next_path == "/":
        return CONSENT_PATH
    return f"{CONSENT_PATH}?{urlencode({'next': next_path})}"

def accept_consent(db: Session, user: User) -> None:
    now = utcnow()
    user.terms_accepted_at = now
    user.terms_accepted_version = config.CURRENT_LEGAL_VERSION
    user.privacy_accepted_at = now
    user.privacy_accepted_version = config.CURRENT_LEGAL_VERSION
    db.commit()


def _current_user(request: Request, db: Session) -> Optional[User]:
    return user_from_token(db, token_from_request(request))

@router.get("")
def consent_page(request: Request, next: Optional[str] = None, db: Session = Depends(get_db)):
    user = _current_user(request, db)
    state = consent_state(user)
    target = safe_next_path(next)
    if state is ConsentState.UNAUTHENTICATED:
        return RedirectResponse("/login", status_code=303)
    if state is not ConsentState.CONSENT_PENDING:
        return RedirectResponse(target, status_code=303)
    return {"state": state.value, "next": target, "legalVersion": config.CURRENT_LEGAL_VERSION}

@router.post("/accept")
def accept(request: Request, next: Optional[str] = Form(None), db: Session = Depends(get_db)):
    user = _current_user(request, db)
    if user is None:
        return RedirectResponse("/login", status_code=303)
    try:
        accept_consent(db, user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("failed to store legal consent for user_id=%s", user.id)
        return JSONResponse({"error": "consent.error"}, status_code=500)
    logger.info("legal consent accepted user_id=%s version=%s", user.id, config.CURRENT_LEGAL_VERSION)
    return RedirectResponse(safe_next_path(next), status_code=303)

@router.post("/decline")
def decline(request: Request, db: Session = Depends(get_db)):
    user = _current_user(request, db)
    if user is not None:
        logger.info("legal consent declined user_id=%s, signing out", user.id)
    response = RedirectResponse("/login?error=consent_required", status_code=303)
    clear_session_cookie(response)
    return response
