from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest

from apps.waygo.database import USERS
from apps.waygo.settings import settings

SECRET = "whsec_test_secret"


def _sign(payload: str, secret: str = SECRET) -> str:
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def _event(event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


@pytest.fixture()
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(settings, "STRIPE_PROFESSIONAL_PRICE_ID", "price_pro")


def _post(client, payload: str, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return client.post("/stripeWebhook", content=payload, headers=headers)


def test_checkout_completed_activates_subscription(client, fake_db, webhook_secret):
    fake_db.seed(USERS, "u1", {"stripe_customer_id": "cus_1", "subscription_status": None})
    payload = _event("checkout.session.completed", {"id": "cs_1", "object": "checkout.session", "customer": "cus_1", "subscription": "sub_1"})

    res = _post(client, payload, _sign(payload))

    assert res.status_code == 200
    assert res.json() == {"received": True}
    user = fake_db.doc(USERS, "u1")
    assert user["subscription_id"] == "sub_1"
    assert user["subscription_status"] == "active"


def test_subscription_update_records_status_and_plan(client, fake_db, webhook_secret):
    fake_db.seed(USERS, "u1", {"stripe_customer_id": "cus_1"})
    sub = {
        "id": "sub_1",
        "object": "subscription",
        "customer": "cus_1",
        "status": "past_due",
        "items": {"object": "list", "data": [{"id": "si_1", "object": "subscription_item", "price": {"id": "price_pro", "object": "price"}}]},
    }
    payload = _event("customer.subscription.updated", sub)

    res = _post(client, payload, _sign(payload))

    assert res.status_code == 200
    user = fake_db.doc(USERS, "u1")
    assert user["subscription_status"] == "past_due"
    assert user["subscription_plan"] == "professional"


def test_invalid_signature_is_rejected_without_mutation(client, fake_db, webhook_secret):
    fake_db.seed(USERS, "u1", {"stripe_customer_id": "cus_1"})
    payload = _event("checkout.session.completed", {"customer": "cus_1", "subscription": "sub_1"})

    res = _post(client, payload, _sign(payload, secret="whsec_wrong"))

    assert res.status_code == 400
    assert res.text.startswith("Webhook Error")
    assert fake_db.doc(USERS, "u1") == {"stripe_customer_id": "cus_1"}
    assert fake_db.reads == 0


def test_tampered_body_is_rejected(client, fake_db, webhook_secret):
    fake_db.seed(USERS, "u1", {"stripe_customer_id": "cus_1"})
    payload = _event("checkout.session.completed", {"customer": "cus_1", "subscription": "sub_1"})
    signature = _sign(payload)

    res = _post(client, payload.replace("sub_1", "sub_2"), signature)

    assert res.status_code == 400
    assert "subscription_id" not in fake_db.doc(USERS, "u1")


def test_unknown_customer_is_not_found(client, fake_db, webhook_secret):
    fake_db.seed(USERS, "u1", {"stripe_customer_id": "cus_1"})
    payload = _event("checkout.session.completed", {"customer": "cus_unknown", "subscription": "sub_1"})

    res = _post(client, payload, _sign(payload))

    assert res.status_code == 404
    assert res.json()["error"]["status"] == "NOT_FOUND"
    assert fake_db.doc(USERS, "u1") == {"stripe_customer_id": "cus_1"}


def test_unhandled_event_is_acknowledged(client, fake_db, webhook_secret):
    payload = _event("invoice.paid", {"id": "in_1"})
    res = _post(client, payload, _sign(payload))
    assert res.status_code == 200
    assert res.json() == {"received": True}
    assert fake_db.reads == 0


def test_session_without_customer_is_webhook_error(client, webhook_secret):
    payload = _event("checkout.session.completed", {"id": "cs_1"})
    res = _post(client, payload, _sign(payload))
    assert res.status_code == 400
    assert "No customer found in session" in res.text


def test_missing_signature_header(client, webhook_secret):
    res = _post(client, "{}")
    assert res.status_code == 400
    assert res.text == "No Stripe signature found"


def test_missing_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    res = _post(client, "{}", "t=1,v1=abc")
    assert res.status_code == 500


def test_non_post_methods(client):
    assert client.get("/stripeWebhook").status_code == 405
    assert client.put("/stripeWebhook", content="{}").status_code == 405

    res = client.options("/stripeWebhook")
    assert res.status_code == 204
    assert res.headers["Access-Control-Allow-Methods"] == "POST"


def test_payment_session_keeps_existing_subscription(client, fake_db, webhook_secret):
    fake_db.seed(USERS, "u1", {"stripe_customer_id": "cus_1", "subscription_id": "sub_1"})
    payload = _event("checkout.session.completed", {"id": "cs_2", "object": "checkout.session", "customer": "cus_1", "subscription": None})

    res = _post(client, payload, _sign(payload))

    assert res.status_code == 200
    assert fake_db.doc(USERS, "u1")["subscription_id"] == "sub_1"


def test_browser_preflight_is_answered_by_cors_middleware(client, fake_db):
    res = client.options(
        "/stripeWebhook",
        headers={"Origin": "https://app.waygo.test", "Access-Control-Request-Method": "POST"},
    )
    assert res.status_code == 200
    assert "POST" in res.headers["access-control-allow-methods"]
    assert fake_db.reads == 0
