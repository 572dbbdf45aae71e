import datetime as dt
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint

Base = declarative_base()

def utcnow():
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    auth_provider = Column(String, nullable=False, default="email")
    terms_accepted_at = Column(DateTime, nullable=True)
    terms_accepted_version = Column(String, nullable=True)
    privacy_accepted_at = Column(DateTime, nullable=True)
    privacy_accepted_version = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

class Customer(Base):
    """Provider customer id -> local email. Never rewritten once stored.

    The provider does not dedupe customers by email, so one email can own
    several customer ids.
    """
    __tablename__ = "customers"
    customer_id = Column(String, primary_key=True)
    email = Column(String, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    has_used_free_trial = Column(Boolean, default=False, nullable=False)
    first_trial_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_subscription_id = Column(String, unique=True, nullable=False, index=True)
    provider_customer_id = Column(String, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    plan_name = Column(String, nullable=False)
    price_id = Column(String, nullable=True)
    status = Column(String, nullable=False)
    billing_interval = Column(String, nullable=True)
    billing_frequency = Column(Integer, nullable=True)
    scheduled_action = Column(String, nullable=True)
    scheduled_effective_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    # provider's own ordering key (event creation time, unix seconds)
    source_event_created = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class MonthlyUsage(Base):
    __tablename__ = "monthly_usage"
    __table_args__ = (UniqueConstraint("user_id", "year_month", name="uq_monthly_usage_user_month"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    year_month = Column(String(7), nullable=False)
    documents_created = Column(Integer, nullable=False, default=0)
    published_completed_count = Column(Integer, nullable=False, default=0)

class Document(Base):
    __tablename__ = "documents"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft")
    created_at = Column(DateTime, default=utcnow)

class ProcessedEvent(Base):
    __tablename__ = "processed_events"
    event_id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    processed_at = Column(DateTime, default=utcnow)

class CreditBalance(Base):
    __tablename__ = "credit_balance"
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    create_credits = Column(Integer, nullable=False, default=0)
    publish_credits = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class CreditTransaction(Base):
    """Append-only credit history: purchase, use_create, use_publish, refund_create, refund_publish."""
    __tablename__ = "credit_transactions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False)
    create_credits = Column(Integer, nullable=False, default=0)
    publish_credits = Column(Integer, nullable=False, default=0)
    related_document_id = Column(Integer, nullable=True, index=True)
    # checkout session id for purchases; one grant per session
    provider_reference = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)
