"""
Tests for subscription cancellation and its ownership check
"""
import time

import pytest

from signflow import usage
from signflow.models import Subscription
from signflow.projector import SubscriptionProjector
from signflow.payments import snapshot_from_payload
from signflow.subscriptions import cancel_subscription
from tests.conftest import auth_headers, subscription_payload


@pytest.fixture
def owned(db, payments, make_user, make_customer):
    """A user with a mapped customer and an active Pro subscription on both sides."""
    user = make_user("owner@example.com")
    make_customer("cus_owner", user)
    payload = payments.add_subscription(subscription_payload("sub_owner", "cus_owner"))
    SubscriptionProjector(db, payments).apply_snapshot(snapshot_from_payload(payload))
    db.commit()
    return user


def local(db, sub_id):
    db.expire_all()
    return db.query(Subscription).filter_by(provider_subscription_id=sub_id).one()


def test_cross_tenant_cancel_is_rejected(db, payments, owned, make_user, make_customer):
    attacker = make_user("attacker@example.com")
    make_customer("cus_attacker", attacker)

    result = cancel_subscription(db, payments, attacker, "sub_owner")

    assert result == {"ok": False, "error": "Unauthorized"}
    assert payments.cancel_calls == []
    sub = local(db, "sub_owner")
    assert sub.status == "active"
    assert sub.scheduled_action is None

def test_user_without_customer_mapping_is_rejected(db, payments, owned, make_user):
    stranger = make_user("stranger@example.com")

    result = cancel_subscription(db, payments, stranger, "sub_owner")

    assert result == {"ok": False, "error": "Unauthorized"}
    assert payments.cancel_calls == []

def test_unknown_subscription_is_rejected(db, payments, owned):
    result = cancel_subscription(db, payments, owned, "sub_missing")

    assert result == {"ok": False, "error": "Unauthorized"}
    assert payments.cancel_calls == []

def test_invalid_effective_from_is_rejected(db, payments, owned):
    result = cancel_subscription(db, payments, owned, "sub_owner", effective_from="tomorrow")

    assert result["ok"] is False
    assert payments.cancel_calls == []

def test_provider_outage_fails_without_cancelling(db, payments, owned):
    payments.fail_lookups = True

    result = cancel_subscription(db, payments, owned, "sub_owner")

    assert result == {"ok": False, "error": "Failed to cancel subscription"}
    assert payments.cancel_calls == []

def test_deferred_cancel_schedules_change(db, payments, owned):
    result = cancel_subscription(db, payments, owned, "sub_owner")

    assert result["ok"] is True
    assert result["status"] == "active"
    assert result["scheduledChange"]["action"] == "cancel"
    assert payments.cancel_calls == [("sub_owner", "next_billing_period")]
    sub = local(db, "sub_owner")
    assert sub.status == "active"
    assert sub.scheduled_action == "cancel"
    assert usage.get_current_plan(db, owned.id).name == "Pro"

def test_immediate_cancel_drops_entitlement(db, payments, owned):
    result = cancel_subscription(db, payments, owned, "sub_owner", effective_from="immediately")

    assert result["ok"] is True
    assert result["status"] == "canceled"
    assert result["scheduledChange"] is None
    assert local(db, "sub_owner").status == "canceled"
    assert usage.get_current_plan(db, owned.id).name == "Basic"

def test_cancel_route_maps_unauthorized_to_403(client, owned, payments, make_user, make_customer):
    attacker = make_user("attacker@example.com")
    make_customer("cus_attacker", attacker)

    response = client.post("/subscriptions/sub_owner/cancel", json={}, headers=auth_headers(attacker))

    assert response.status_code == 403
    assert payments.cancel_calls == []

def test_cancel_route_returns_scheduled_change(client, owned):
    response = client.post(
        "/subscriptions/sub_owner/cancel",
        json={"effectiveFrom": "next_billing_period"},
        headers=auth_headers(owned),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["scheduledChange"]["action"] == "cancel"

def test_current_subscription_endpoint(client, owned):
    response = client.get("/subscriptions/current", headers=auth_headers(owned))

    assert response.status_code == 200
    body = response.json()
    assert body["subscription"]["id"] == "sub_owner"
    assert body["subscription"]["billingCycle"] == {"interval": "month", "frequency": 1}
    assert body["plan"]["name"] == "Pro"

def test_cancel_leaves_event_ordering_key_alone(db, payments, owned):
    stored = int(time.time()) - 600
    sub = local(db, "sub_owner")
    sub.source_event_created = stored
    db.commit()

    cancel_subscription(db, payments, owned, "sub_owner")
    assert local(db, "sub_owner").source_event_created == stored

    # a provider event stamped before local "now" but after the stored key still lands
    later = subscription_payload("sub_owner", "cus_owner", status="past_due")
    SubscriptionProjector(db, payments).apply_snapshot(snapshot_from_payload(later), stored + 60)
    db.commit()
    sub = local(db, "sub_owner")
    assert sub.status == "past_due"
    assert sub.source_event_created == stored + 60

def test_owner_with_second_customer_id_can_cancel(db, payments, make_user, make_customer):
    user = make_user("owner@example.com")
    make_customer("cus_first", user)
    make_customer("cus_second", user)
    payload = payments.add_subscription(subscription_payload("sub_second", "cus_second"))
    SubscriptionProjector(db, payments).apply_snapshot(snapshot_from_payload(payload))
    db.commit()

    result = cancel_subscription(db, payments, user, "sub_second")

    assert result["ok"] is True
    assert payments.cancel_calls == [("sub_second", "next_billing_period")]
