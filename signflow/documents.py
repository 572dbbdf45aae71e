from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
import logging
from .db import get_db
from .deps import get_current_user
from .models import Document, User
from . import credits, usage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])

class DocumentIn(BaseModel):
    title: str

def _creation_denied(db: Session, user: User) -> HTTPException:
    limits = usage.check_limits(db, user.id)
    return HTTPException(
        status_code=403,
        detail=f"Monthly document limit reached ({limits.current_monthly_created}/{limits.monthly_creation_limit}) and no create credits left",
    )

def _publication_denied(db: Session, user: User) -> HTTPException:
    limits = usage.check_limits(db, user.id)
    return HTTPException(
        status_code=403,
        detail=f"Active document limit reached ({limits.current_active_documents}/{limits.active_document_limit}) and no publish credits left",
    )

def _owned(db: Session, document_id: int, user: User) -> Document:
    doc = db.get(Document, document_id)
    if doc is None or doc.user_id != user.id:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc

def _out(doc: Document):
    return {"id": doc.id, "title": doc.title, "status": doc.status}

@router.post("/document", status_code=201)
def create_document(payload: DocumentIn, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    allowed = usage.check_limits(db, user.id).can_create_new
    doc = Document(user_id=user.id, title=payload.title, status="draft")
    db.add(doc)
    db.flush()
    if allowed:
        usage.increment_documents_created(db, user.id)
    elif not credits.deduct_credit(db, user.id, credits.CREATE, doc.id):
        db.rollback()
        raise _creation_denied(db, user)
    db.commit()
    db.refresh(doc)
    return _out(doc)

@router.get("/document/{document_id}")
def get_document(document_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _out(_owned(db, document_id, user))

@router.post("/document/{document_id}/publish")
def publish_document(document_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    doc = _owned(db, document_id, user)
    if doc.status != "draft":
        raise HTTPException(status_code=409, detail="Document already published")
    if not usage.can_create_publication(db, user.id, 1) \
            and not credits.deduct_credit(db, user.id, credits.PUBLISH, doc.id):
        raise _publication_denied(db, user)
    doc.status = "published"
    usage.increment_published_completed(db, user.id)
    db.commit()
    return _out(doc)

@router.delete("/document/{document_id}")
def delete_document(document_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    doc = _owned(db, document_id, user)
    # credit-paid documents never touched the monthly counter
    if not credits.refund_credit(db, user.id, credits.CREATE, doc.id):
        usage.decrement_documents_created(db, user.id)
    credits.refund_credit(db, user.id, credits.PUBLISH, doc.id)
    db.delete(doc)
    db.commit()
    return {"ok": True}

@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    docs = db.query(Document).filter(Document.user_id == user.id).order_by(Document.id.desc()).all()
    return {
        "email": user.email,
        "plan": usage.get_current_plan(db, user.id).name,
        "limits": usage.check_limits(db, user.id).model_dump(by_alias=True),
        "credits": credits.get_balance(db, user.id).model_dump(by_alias=True),
        "documents": [_out(d) for d in docs],
    }
