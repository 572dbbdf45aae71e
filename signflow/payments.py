"""Stripe-backed payments client and webhook envelope parsing.

The client is built once at startup and handed to whatever needs it, so tests
can swap in a fake with the same methods.
"""
import datetime as dt
import json
import logging
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel

from .errors import ConfigurationError, InvalidSignature, SubscriptionNotFound, UpstreamProviderError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
EFFECTIVE_IMMEDIATELY = "immediately"
EFFECTIVE_NEXT_BILLING_PERIOD = "next_billing_period"
EFFECTIVE_FROM_CHOICES = (EFFECTIVE_IMMEDIATELY, EFFECTIVE_NEXT_BILLING_PERIOD)

SUBSCRIPTION_STATUSES = {"active", "trialing", "past_due", "paused", "canceled"}
_STATUS_ALIASES = {
    "unpaid": "past_due",
    "incomplete": "past_due",
    "incomplete_expired": "canceled",
}


class WebhookEvent(BaseModel):
    event_id: str
    event_type: str
    created: int
    data: Dict[str, Any]


class SubscriptionSnapshot(BaseModel):
    id: str
    customer_id: str
    status: str
    price_id: Optional[str] = None
    billing_interval: Optional[str] = None
    billing_frequency: Optional[int] = None
    scheduled_action: Optional[str] = None
    scheduled_effective_at: Optional[dt.datetime] = None
    current_period_end: Optional[dt.datetime] = None
    started_at: Optional[dt.datetime] = None

    def scheduled_change(self) -> Optional[Dict[str, Any]]:
        if not self.scheduled_action:
            return None
        effective = self.scheduled_effective_at.isoformat() if self.scheduled_effective_at else None
        return {"action": self.scheduled_action, "effectiveAt": effective}


def from_timestamp(value) -> Optional[dt.datetime]:
    if not value:
        return None
    return dt.datetime.fromtimestamp(int(value), dt.timezone.utc).replace(tzinfo=None)

def map_status(provider_status: Optional[str]) -> str:
    status = _STATUS_ALIASES.get(provider_status, provider_status)
    if status not in SUBSCRIPTION_STATUSES:
        logger.warning("unknown subscription status=%s, treating as past_due", provider_status)
        return "past_due"
    return status

def snapshot_from_payload(obj: Dict[str, Any]) -> SubscriptionSnapshot:
    items = (obj.get("items") or {}).get("data") or []
    item = items[0] if items else {}
    price = item.get("price") or {}
    recurring = price.get("recurring") or {}
    # newer API versions moved the period onto the subscription item
    period_end = from_timestamp(obj.get("current_period_end") or item.get("current_period_end"))

    action, effective_at = None, None
    if obj.get("cancel_at_period_end") or obj.get("cancel_at"):
        action = "cancel"
        effective_at = from_timestamp(obj.get("cancel_at")) or period_end
    elif obj.get("pause_collection"):
        action = "pause"
        effective_at = period_end

    customer = obj.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    return SubscriptionSnapshot(
        id=obj["id"],
        customer_id=customer or "",
        status=map_status(obj.get("status")),
        price_id=price.get("id"),
        billing_interval=recurring.get("interval"),
        billing_frequency=recurring.get("interval_count"),
        scheduled_action=action,
        scheduled_effective_at=effective_at,
        current_period_end=period_end,
        started_at=from_timestamp(obj.get("start_date") or obj.get("created")),
    )

def parse_webhook(payload: bytes, signature: str, secret: Optional[str]) -> WebhookEvent:
    """Verify the provider signature over the raw body and return the typed envelope."""
    if not secret:
        raise ConfigurationError("webhook secret is not set")
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature(str(e)) from e
    except ValueError as e:
        raise InvalidSignature(f"malformed event payload: {e}") from e
    try:
        raw = _plain(event)
        return WebhookEvent(
            event_id=raw["id"],
            event_type=raw["type"],
            created=int(raw.get("created") or 0),
            data=raw["data"]["object"],
        )
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidSignature(f"malformed event payload: {e}") from e


def _plain(obj) -> Dict[str, Any]:
    # StripeObject renders itself as JSON; round-trip to drop the SDK wrapper types
    return json.loads(str(obj))


class PaymentsClient:
    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def _key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set")
        return self.api_key

    def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        api_key = self._key()
        try:
            sub = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise SubscriptionNotFound(subscription_id) from e
            raise UpstreamProviderError(str(e)) from e
        except stripe.StripeError as e:
            raise UpstreamProviderError(str(e)) from e
        return snapshot_from_payload(_plain(sub))

    def cancel_subscription(self, subscription_id: str, effective_from: str) -> SubscriptionSnapshot:
        api_key = self._key()
        try:
            if effective_from == EFFECTIVE_IMMEDIATELY:
                sub = stripe.Subscription.cancel(subscription_id, api_key=api_key)
            else:
                sub = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True, api_key=api_key)
        except stripe.StripeError as e:
            raise UpstreamProviderError(str(e)) from e
        return snapshot_from_payload(_plain(sub))

    def get_customer_email(self, customer_id: str) -> str:
        api_key = self._key()
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=api_key)
        except stripe.StripeError as e:
            raise UpstreamProviderError(str(e)) from e
        return (_plain(customer).get("email") or "").strip().lower()

    def create_checkout_session(self, *, price_id: str, email: str, user_id: int,
                                customer_id: str = "", trial_days: int = 0,
                                success_url: str, cancel_url: str,
                                mode: str = "subscription", quantity: int = 1,
                                metadata: Optional[Dict[str, str]] = None) -> str:
        api_key = self._key()
        params: Dict[str, Any] = {
            "mode": mode,
            "line_items": [{"price": price_id, "quantity": quantity}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": str(user_id),
            "metadata": {**(metadata or {}), "user_id": str(user_id)},
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = email
        if mode == "subscription" and trial_days > 0:
            params["subscription_data"] = {"trial_period_days": trial_days}
        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.StripeError as e:
            raise UpstreamProviderError(str(e)) from e
        return session.url
