from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from typing import Optional
from .config import JWT_SECRET, SESSION_COOKIE
from .db import get_db
from .models import User
import jwt

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

def token_from_request(request: Request, bearer: Optional[str] = None) -> Optional[str]:
    if bearer:
        return bearer
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)

def user_from_token(db: Session, token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
        uid = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        return None
    user = db.get(User, uid)
    if not user or not user.is_active:
        return None
    return user

def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    user = user_from_token(db, token_from_request(request, token))
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user

def get_payments_client(request: Request):
    return request.app.state.payments
