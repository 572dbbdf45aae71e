from dotenv import load_dotenv
load_dotenv()

import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

SITE_URL = (os.getenv("SITE_URL") or "http://localhost:8000").rstrip("/")
TRIAL_PERIOD_DAYS = int(os.getenv("TRIAL_PERIOD_DAYS", "7"))

# Bump to force every consent-gated user through the consent page again.
CURRENT_LEGAL_VERSION = os.getenv("LEGAL_VERSION", "2025-01-01")
CONSENT_REQUIRED_PROVIDERS = {"kakao"}

SESSION_COOKIE = "access_token"

# one-off credit packs; each unit grants one create and one publish credit
STRIPE_CREDIT_PRICE_ID = os.getenv("STRIPE_CREDIT_PRICE_ID", "price_credit")
CREDIT_MAX_QUANTITY = int(os.getenv("CREDIT_MAX_QUANTITY", "100"))
