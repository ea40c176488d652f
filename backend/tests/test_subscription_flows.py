from __future__ import annotations

from datetime import timedelta

from sqlmodel import select

from app.core import security
from app.core.config import settings
from app.enums import CancellationPolicy, PlanName, SubscriptionStatus
from app.models import Notification, PaymentTransaction, UserSubscription, as_utc, utc_now
from conftest import auth_headers


def _subs(db, user_id: int) -> list[UserSubscription]:
    db.expire_all()
    return list(db.exec(select(UserSubscription).where(UserSubscription.user_id == user_id)).all())


def _active(db, user, plan, **kwargs) -> UserSubscription:
    now = utc_now()
    sub = UserSubscription(
        user_id=user.id,
        plan_id=plan.id,
        subscription_status=kwargs.pop("status", SubscriptionStatus.active),
        razorpay_subscription_id=kwargs.pop("external_id", "plink_seed"),
        razorpay_customer_id=kwargs.pop("customer_id", "cust_seed"),
        current_billing_cycle_start=now,
        current_billing_cycle_end=now + timedelta(days=30),
        **kwargs,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


def test_plans_listed_by_price(client, plans):
    r = client.get("/api/v1/subscription/plans")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    names = [p["plan_name"] for p in body["plans"]]
    assert names == ["Basic", "Pro", "VIP"]
    basic = body["plans"][0]
    assert basic["monthly_analyses_limit"] == 5
    assert float(basic["plan_price_usd"]) == 4.0


def test_create_subscription_writes_one_pending_row(client, db, gateway, plans, user, headers):
    basic = plans[PlanName.basic]
    r = client.post(
        "/api/v1/subscription/create",
        headers=headers,
        json={"plan_id": basic.id, "user_id": user.id},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["payment_link_id"] == "plink_test1"
    assert body["short_url"].endswith("plink_test1")

    rows = _subs(db, user.id)
    assert len(rows) == 1
    sub = rows[0]
    assert sub.id == body["subscription_id"]
    assert sub.subscription_status == SubscriptionStatus.pending
    assert sub.analyses_used_this_month == 0
    assert sub.auto_renewal_enabled is True
    assert sub.razorpay_subscription_id == "plink_test1"
    assert sub.razorpay_customer_id == "cust_alex"
    window = as_utc(sub.current_billing_cycle_end) - as_utc(sub.current_billing_cycle_start)
    assert window == timedelta(days=30)

    link = gateway.called("create_payment_link")[0]
    # $4 * 83 = 332 INR -> 33200 paise
    assert link["amount"] == 33200
    assert link["currency"] == "INR"
    assert link["notes"]["subscription_id"] == str(sub.id)
    assert link["notes"]["user_id"] == str(user.id)
    assert link["notes"]["plan_name"] == "Basic"
    assert link["reference_id"] == str(sub.id)
    assert link["callback_url"].endswith("/api/v1/subscription/payment-callback")


def test_create_subscription_conflict_when_active(client, db, gateway, plans, user, headers):
    _active(db, user, plans[PlanName.basic])

    for _ in range(2):
        r = client.post(
            "/api/v1/subscription/create",
            headers=headers,
            json={"plan_id": plans[PlanName.pro].id, "user_id": user.id},
        )
        assert r.status_code == 409
        body = r.json()
        assert body == {
            "success": False,
            "error": "User already has an active subscription",
            "code": "CONFLICT",
        }

    assert len(_subs(db, user.id)) == 1
    assert gateway.called("create_payment_link") == []


def test_create_subscription_invalid_plan(client, plans, user, headers):
    r = client.post(
        "/api/v1/subscription/create",
        headers=headers,
        json={"plan_id": 12345, "user_id": user.id},
    )
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_create_subscription_rejects_other_user_id(client, plans, user, other_user, headers):
    r = client.post(
        "/api/v1/subscription/create",
        headers=headers,
        json={"plan_id": plans[PlanName.basic].id, "user_id": other_user.id},
    )
    assert r.status_code == 403
    assert r.json()["code"] == "UNAUTHORIZED"


def test_create_subscription_gateway_failure_writes_nothing(client, db, gateway, plans, user, headers):
    gateway.fail["create_payment_link"] = "Failed to create payment link: amount exceeds maximum"
    r = client.post(
        "/api/v1/subscription/create",
        headers=headers,
        json={"plan_id": plans[PlanName.basic].id, "user_id": user.id},
    )
    assert r.status_code == 502
    body = r.json()
    assert body["code"] == "UPSTREAM_ERROR"
    assert "amount exceeds maximum" in body["error"]
    assert _subs(db, user.id) == []


def test_create_subscription_reuses_known_customer(client, db, gateway, plans, user, headers):
    _active(db, user, plans[PlanName.basic], status=SubscriptionStatus.expired, customer_id="cust_existing")
    r = client.post(
        "/api/v1/subscription/create",
        headers=headers,
        json={"plan_id": plans[PlanName.basic].id, "user_id": user.id},
    )
    assert r.status_code == 200
    assert gateway.called("get_or_create_customer") == []
    new_sub = [s for s in _subs(db, user.id) if s.subscription_status == SubscriptionStatus.pending][0]
    assert new_sub.razorpay_customer_id == "cust_existing"


def test_requests_without_token_are_unauthorized(client, plans):
    r = client.get("/api/v1/subscription/details")
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"

    r = client.get("/api/v1/subscription/details", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_request_validation_uses_error_envelope(client, user, headers):
    r = client.post("/api/v1/subscription/create", headers=headers, json={"user_id": user.id})
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION"
    assert "plan_id" in body["error"]


def test_cancel_grace_period_keeps_access(client, db, gateway, plans, user, headers):
    sub = _active(db, user, plans[PlanName.basic])
    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["subscription"]["status"] == "active"
    assert body["subscription"]["cancelled"] is True
    assert body["subscription"]["auto_renewal"] is False
    assert body["subscription"]["access_until"] is not None
    assert "You will have access until" in body["message"]

    db.expire_all()
    row = db.get(UserSubscription, sub.id)
    assert row.subscription_status == SubscriptionStatus.active
    assert row.cancelled_at is not None
    assert row.auto_renewal_enabled is False
    # payment link ids never reach the provider cancel endpoint
    assert gateway.called("cancel_subscription") == []

    notes = db.exec(select(Notification).where(Notification.user_id == user.id)).all()
    assert [n.notification_type.value for n in notes] == ["subscription_cancelled"]


def test_cancel_immediate_policy(client, db, plans, user, headers, monkeypatch):
    monkeypatch.setattr(settings, "CANCELLATION_POLICY", CancellationPolicy.immediate)
    sub = _active(db, user, plans[PlanName.basic])
    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id})
    assert r.status_code == 200
    assert r.json()["subscription"]["status"] == "cancelled"
    assert r.json()["message"] == "Subscription cancelled successfully."

    db.expire_all()
    assert db.get(UserSubscription, sub.id).subscription_status == SubscriptionStatus.cancelled


def test_cancel_recurring_subscription_calls_provider(client, db, gateway, plans, user, headers):
    sub = _active(db, user, plans[PlanName.pro], external_id="sub_ABC123")
    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id})
    assert r.status_code == 200
    assert gateway.called("cancel_subscription") == [{"id": "sub_ABC123", "at_cycle_end": True}]


def test_cancel_provider_failure_leaves_row_untouched(client, db, gateway, plans, user, headers):
    gateway.fail["cancel_subscription"] = "Failed to cancel Razorpay subscription: Subscription is not cancellable"
    sub = _active(db, user, plans[PlanName.pro], external_id="sub_ABC123")
    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id})
    assert r.status_code == 502
    assert r.json()["error"].endswith("Subscription is not cancellable")

    db.expire_all()
    row = db.get(UserSubscription, sub.id)
    assert row.cancelled_at is None
    assert row.auto_renewal_enabled is True


def test_cancel_twice_and_expired_rejected_without_changes(client, db, plans, user, headers):
    sub = _active(db, user, plans[PlanName.basic])
    assert client.post(
        "/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id}
    ).status_code == 200
    db.expire_all()
    first_cancelled_at = db.get(UserSubscription, sub.id).cancelled_at

    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id})
    assert r.status_code == 409
    assert r.json()["code"] == "CONFLICT"
    db.expire_all()
    assert db.get(UserSubscription, sub.id).cancelled_at == first_cancelled_at

    expired = _active(db, user, plans[PlanName.pro], status=SubscriptionStatus.expired)
    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": expired.id})
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE"
    db.expire_all()
    assert db.get(UserSubscription, expired.id).cancelled_at is None


def test_cancel_paused_names_status(client, db, plans, user, headers):
    sub = _active(db, user, plans[PlanName.basic], status=SubscriptionStatus.paused)
    r = client.post("/api/v1/subscription/cancel", headers=headers, json={"subscription_id": sub.id})
    assert r.status_code == 409
    assert r.json() == {
        "success": False,
        "error": "Cannot cancel subscription with status: paused",
        "code": "INVALID_STATE",
    }


def test_cancel_other_users_subscription_not_found(client, db, plans, user, other_user):
    sub = _active(db, other_user, plans[PlanName.basic])
    r = client.post(
        "/api/v1/subscription/cancel", headers=auth_headers(user.id), json={"subscription_id": sub.id}
    )
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_change_plan_requires_active_subscription(client, plans, user, headers):
    r = client.post(
        "/api/v1/subscription/change-plan",
        headers=headers,
        json={"new_plan_id": plans[PlanName.pro].id, "user_id": user.id},
    )
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE"
    assert r.json()["error"] == "No active subscription found. Please create a new subscription instead."


def test_change_plan_same_plan_is_no_op(client, db, plans, user, headers):
    _active(db, user, plans[PlanName.basic])
    r = client.post(
        "/api/v1/subscription/change-plan",
        headers=headers,
        json={"new_plan_id": plans[PlanName.basic].id, "user_id": user.id},
    )
    assert r.status_code == 409
    assert r.json()["code"] == "NO_OP"


def test_change_plan_cancels_old_and_creates_pending(client, db, gateway, plans, user, headers):
    old = _active(db, user, plans[PlanName.basic], customer_id="cust_known")
    r = client.post(
        "/api/v1/subscription/change-plan",
        headers=headers,
        json={"new_plan_id": plans[PlanName.vip].id, "user_id": user.id},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["old_subscription_id"] == old.id

    db.expire_all()
    old_row = db.get(UserSubscription, old.id)
    new_row = db.get(UserSubscription, body["subscription_id"])
    assert old_row.subscription_status == SubscriptionStatus.cancelled
    assert old_row.auto_renewal_enabled is False
    assert new_row.subscription_status == SubscriptionStatus.pending
    assert new_row.plan_id == plans[PlanName.vip].id
    assert new_row.razorpay_customer_id == "cust_known"
    assert new_row.meta["old_subscription_id"] == old.id

    notes = gateway.called("create_payment_link")[0]["notes"]
    assert notes["is_plan_change"] == "true"
    assert notes["old_subscription_id"] == str(old.id)


def test_verify_payment_activates_once(client, db, plans, user, headers):
    sub = _active(db, user, plans[PlanName.basic], status=SubscriptionStatus.pending, external_id="plink_verify")
    signature = security.compute_signature("pay_V1|plink_verify", settings.RAZORPAY_KEY_SECRET)
    payload = {
        "razorpay_payment_id": "pay_V1",
        "razorpay_subscription_id": "plink_verify",
        "razorpay_signature": signature,
        "user_id": user.id,
    }
    r = client.post("/api/v1/subscription/verify-payment", headers=headers, json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["verified"] is True
    assert body["subscription"] == {"id": sub.id, "plan_name": "Basic", "status": "active"}

    # client retries are harmless
    r = client.post("/api/v1/subscription/verify-payment", headers=headers, json=payload)
    assert r.status_code == 200

    db.expire_all()
    txs = db.exec(select(PaymentTransaction).where(PaymentTransaction.subscription_id == sub.id)).all()
    assert len(txs) == 1
    assert txs[0].razorpay_signature == signature


def test_verify_payment_bad_signature(client, db, plans, user, headers):
    sub = _active(db, user, plans[PlanName.basic], status=SubscriptionStatus.pending, external_id="plink_verify")
    r = client.post(
        "/api/v1/subscription/verify-payment",
        headers=headers,
        json={
            "razorpay_payment_id": "pay_V1",
            "razorpay_subscription_id": "plink_verify",
            "razorpay_signature": "deadbeef",
            "user_id": user.id,
        },
    )
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"
    db.expire_all()
    assert db.get(UserSubscription, sub.id).subscription_status == SubscriptionStatus.pending


def test_details_and_payments(client, db, plans, user, headers):
    r = client.get("/api/v1/subscription/details", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"success": True, "subscription": None}

    sub = _active(db, user, plans[PlanName.pro], analyses_used_this_month=3)
    r = client.get("/api/v1/subscription/details", headers=headers)
    details = r.json()["subscription"]
    assert details["subscription_id"] == sub.id
    assert details["plan_name"] == "Pro"
    assert details["analyses_used"] == 3
    assert details["analyses_limit"] == 20
    assert details["analyses_remaining"] == 17
    assert details["auto_renewal"] is True

    r = client.get("/api/v1/subscription/payments", headers=headers)
    assert r.status_code == 200
    assert r.json()["payments"] == []
    assert r.json()["count"] == 0
