from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from passlib.context import CryptContext
import jwt, datetime as dt, logging
from pydantic import BaseModel, EmailStr
from .config import JWT_SECRET, SESSION_COOKIE
from .customers import find_user_by_email
from .db import get_db
from .models import User

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["pbkdf2_sha256","bcrypt_sha256","bcrypt"], default="pbkdf2_sha256", deprecated="auto")
TOKEN_TTL = dt.timedelta(hours=12)

router = APIRouter(prefix="/auth", tags=["auth"])

class Credentials(BaseModel):
    email: EmailStr
    password: str

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()

def issue_token(user: User) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    claims = {"sub": str(user.id), "email": user.email, "provider": user.auth_provider, "exp": now + TOKEN_TTL}
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")

def set_session_cookie(response, token: str):
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax", max_age=int(TOKEN_TTL.total_seconds()))

def clear_session_cookie(response):
    response.delete_cookie(SESSION_COOKIE)

@router.post("/register")
def register(payload: Credentials, db: Session = Depends(get_db)):
    email = payload.normalized_email
    if find_user_by_email(db, email) is not None:
        raise HTTPException(status_code=400, detail="Email already registered")
    # bcrypt only looks at the first 72 bytes
    user = User(email=email, password_hash=pwd_context.hash(payload.password[:72]), auth_provider="email")
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("registered user_id=%s", user.id)
    return {"ok": True}

@router.post("/login")
def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = find_user_by_email(db, form.username)
    # social-provider accounts have no password to check
    if user is None or not user.password_hash or not pwd_context.verify(form.password[:72], user.password_hash):
        logger.info("login failed for email=%s", (form.username or "").strip().lower())
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = issue_token(user)
    response = JSONResponse({"access_token": token, "token_type": "bearer"})
    set_session_cookie(response, token)
    return response

@router.post("/logout")
def logout():
    response = JSONResponse({"ok": True})
    clear_session_cookie(response)
    return response
