"""Folds provider webhook events into the local subscription projection.

Writes are last-write-wins on the provider's event timestamp, never on local
receipt order. Database errors propagate so the webhook answers non-2xx and the
provider redelivers.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import credits, customers, usage
from .errors import UpstreamProviderError
from .models import Customer, Subscription, User, utcnow
from .payments import SubscriptionSnapshot, WebhookEvent, snapshot_from_payload
from .plans import get_plan, is_upgrade, plan_for_price_id

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
}
CUSTOMER_EVENTS = {"customer.created", "customer.updated"}
# delayed payment methods complete unpaid and succeed later
CHECKOUT_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
CREDIT_PURCHASE = "credit"


class SubscriptionProjector:
    def __init__(self, db: Session, payments):
        self.db = db
        self.payments = payments

    def process_event(self, event: WebhookEvent) -> None:
        logger.info("processing event_id=%s event_type=%s", event.event_id, event.event_type)
        if event.event_type in SUBSCRIPTION_EVENTS:
            self.apply_snapshot(snapshot_from_payload(event.data), event.created)
        elif event.event_type in CUSTOMER_EVENTS:
            self._update_customer(event)
        elif event.event_type in CHECKOUT_EVENTS:
            self._checkout_completed(event)
        else:
            logger.info("ignoring unhandled event_type=%s", event.event_type)

    def apply_snapshot(self, snap: SubscriptionSnapshot, occurred_at: Optional[int] = None) -> Optional[Subscription]:
        """Upsert the projection for ``snap``. Returns None when the write is stale.

        ``occurred_at`` is the provider event's ``created``. Snapshots fetched
        straight from the provider have none; they are applied without moving
        the stored ordering key.
        """
        sub = (
            self.db.query(Subscription)
            .filter(Subscription.provider_subscription_id == snap.id)
            .first()
        )
        if sub is not None and occurred_at is not None and sub.source_event_created > occurred_at:
            logger.info(
                "stale subscription write skipped subscription=%s stored=%s incoming=%s",
                snap.id, sub.source_event_created, occurred_at,
            )
            return None

        plan = plan_for_price_id(snap.price_id)
        status = snap.status
        ends_at = snap.current_period_end
        if snap.scheduled_action == "cancel":
            ends_at = snap.scheduled_effective_at or ends_at
            if ends_at and ends_at <= utcnow():
                status = "canceled"

        mapping_user_id = self._mapped_user_id(snap.customer_id)

        if sub is None:
            sub = Subscription(
                provider_subscription_id=snap.id,
                provider_customer_id=snap.customer_id,
                started_at=snap.started_at or utcnow(),
            )
            self.db.add(sub)
            previous_plan = None
        else:
            previous_plan = get_plan(sub.plan_name)

        user_id = sub.user_id or mapping_user_id
        if user_id is not None and previous_plan is None:
            previous_plan = usage.get_current_plan(self.db, user_id)

        sub.user_id = user_id
        sub.plan_name = plan.name
        sub.price_id = snap.price_id
        sub.status = status
        sub.billing_interval = snap.billing_interval
        sub.billing_frequency = snap.billing_frequency
        sub.scheduled_action = snap.scheduled_action
        sub.scheduled_effective_at = snap.scheduled_effective_at
        sub.ends_at = ends_at
        if occurred_at is not None:
            sub.source_event_created = int(occurred_at)
        elif sub.source_event_created is None:
            sub.source_event_created = 0
        self.db.flush()

        if user_id is not None and previous_plan is not None and previous_plan.name != plan.name \
                and is_upgrade(previous_plan, plan):
            logger.info("plan upgrade %s -> %s for user_id=%s, resetting monthly usage",
                        previous_plan.name, plan.name, user_id)
            usage.reset_current_month(self.db, user_id)

        if status == "trialing":
            customers.record_trial_usage(self.db, snap.customer_id)

        logger.info(
            "subscription=%s customer=%s user_id=%s plan=%s status=%s scheduled=%s",
            snap.id, snap.customer_id, user_id, plan.name, status, snap.scheduled_action,
        )
        return sub

    def _mapped_user_id(self, customer_id: str) -> Optional[int]:
        customer = self.db.get(Customer, customer_id) if customer_id else None
        return customer.user_id if customer else None

    def _update_customer(self, event: WebhookEvent) -> None:
        customer_id = event.data.get("id")
        email = (event.data.get("email") or "").strip().lower()
        if not customer_id or not email:
            logger.info("customer event_id=%s without id or email, skipping", event.event_id)
            return
        user = customers.find_user_by_email(self.db, email)
        customers.link_customer(self.db, customer_id, email, user.id if user else None)

    def _checkout_completed(self, event: WebhookEvent) -> None:
        session = event.data
        user = None
        ref = session.get("client_reference_id")
        if ref and str(ref).isdigit():
            user = self.db.get(User, int(ref))

        customer_id = session.get("customer")
        if customer_id:
            user = self._link_checkout_customer(session, customer_id, user)
        else:
            logger.info("checkout event_id=%s has no customer", event.event_id)

        if (session.get("metadata") or {}).get("type") == CREDIT_PURCHASE:
            self._grant_credits(session, user)

    def _link_checkout_customer(self, session, customer_id: str, user: Optional[User]) -> Optional[User]:
        details = session.get("customer_details") or {}
        payload_email = (details.get("email") or session.get("customer_email") or "").strip().lower()
        try:
            email = self.payments.get_customer_email(customer_id)
        except UpstreamProviderError:
            if not payload_email:
                raise
            logger.warning("customer lookup failed for customer=%s, using checkout email", customer_id)
            email = payload_email
        email = email or payload_email
        if not email:
            logger.warning("no email available for customer=%s, waiting for customer event", customer_id)
            return user

        if user is None:
            user = customers.find_user_by_email(self.db, email)
        if user is None:
            logger.warning("no registered user for customer=%s email=%s", customer_id, email)

        customers.link_customer(self.db, customer_id, email, user.id if user else None)
        return user

    def _grant_credits(self, session, user: Optional[User]) -> None:
        # nothing to retry for these, so they are logged and dropped
        if user is None:
            logger.error("credit checkout session=%s has no registered user, credits not granted", session.get("id"))
            return
        if session.get("payment_status") != "paid":
            logger.info("credit checkout session=%s not paid yet (payment_status=%s)",
                        session.get("id"), session.get("payment_status"))
            return
        quantity = str((session.get("metadata") or {}).get("quantity") or "")
        if not quantity.isdigit() or int(quantity) <= 0:
            logger.error("credit checkout session=%s has bad quantity=%r", session.get("id"), quantity)
            return
        credits.add_credits(self.db, user.id, int(quantity), session["id"])
