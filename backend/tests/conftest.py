from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from app import crud
from app.api.deps import get_db, get_payment_gateway, get_streak_cache
from app.api.errors import upstream_error
from app.core import security
from app.core.config import settings
from app.core.db import init_db
from app.enums import CancellationPolicy, PlanName
from app.integrations.razorpay import RazorpayCustomer, RazorpayPaymentLink
from app.main import app
from app.models import (
    AnalysisRecord,
    Notification,
    PaymentTransaction,
    SubscriptionPlan,
    User,
    UserStreak,
    UserSubscription,
    WebhookEvent,
)

WEBHOOK_SECRET = "test_webhook_secret"
KEY_SECRET = "test_key_secret"


class FakeGateway:
    """内存版支付网关，记录调用并可按方法名注入失败"""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail: dict[str, str] = {}
        self.link_status: dict[str, str] = {}
        self._links = 0

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail:
            raise upstream_error(self.fail[name])

    def get_or_create_customer(self, *, name: str, email: str, contact: str | None = None) -> RazorpayCustomer:
        self.calls.append(("get_or_create_customer", {"name": name, "email": email}))
        self._maybe_fail("get_or_create_customer")
        return RazorpayCustomer(id=f"cust_{email.split('@')[0]}", email=email)

    def create_payment_link(self, **kwargs: Any) -> RazorpayPaymentLink:
        self.calls.append(("create_payment_link", kwargs))
        self._maybe_fail("create_payment_link")
        self._links += 1
        link_id = f"plink_test{self._links}"
        return RazorpayPaymentLink(
            id=link_id,
            short_url=f"https://rzp.io/i/{link_id}",
            status="created",
            amount=kwargs["amount"],
        )

    def fetch_payment_link(self, link_id: str) -> RazorpayPaymentLink:
        self.calls.append(("fetch_payment_link", {"link_id": link_id}))
        self._maybe_fail("fetch_payment_link")
        return RazorpayPaymentLink(
            id=link_id, short_url=None, status=self.link_status.get(link_id, "paid"), amount=33200
        )

    def cancel_subscription(self, subscription_id: str, *, at_cycle_end: bool = True) -> dict[str, Any]:
        self.calls.append(("cancel_subscription", {"id": subscription_id, "at_cycle_end": at_cycle_end}))
        self._maybe_fail("cancel_subscription")
        return {"id": subscription_id, "status": "cancelled"}

    def called(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]


class FakeCache:
    """内存版 RedisClient"""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    def get_json(self, key: str) -> Any | None:
        return self.data.get(key)

    def set_json(self, key: str, value: Any, ex: int | None = None) -> bool:
        self.data[key] = value
        return True

    def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def acquire_lock(self, lock_key: str, lock_value: str, expire_seconds: int = 60) -> bool:
        if lock_key in self.data:
            return False
        self.data[lock_key] = lock_value
        return True

    def release_lock(self, lock_key: str, lock_value: str) -> bool:
        if self.data.get(lock_key) != lock_value:
            return False
        del self.data[lock_key]
        return True


@pytest.fixture(autouse=True)
def _razorpay_settings(monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "rzp_test_key")
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", KEY_SECRET)
    monkeypatch.setattr(settings, "RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "RAZORPAY_MOCK", False)
    monkeypatch.setattr(settings, "CANCELLATION_POLICY", CancellationPolicy.grace_period)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(Notification))
        session.exec(delete(AnalysisRecord))
        session.exec(delete(UserStreak))
        session.exec(delete(PaymentTransaction))
        session.exec(delete(WebhookEvent))
        session.exec(delete(UserSubscription))
        session.exec(delete(SubscriptionPlan))
        session.exec(delete(User))
        session.commit()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture(scope="function")
def client(engine, gateway, cache) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_streak_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def plans(db) -> dict[PlanName, SubscriptionPlan]:
    init_db(db)
    return {plan.plan_name: plan for plan in crud.plan.list_active(session=db)}


@pytest.fixture()
def user(db) -> User:
    return crud.create_user(session=db, email="alex@example.com", full_name="Alex Fit")


@pytest.fixture()
def other_user(db) -> User:
    return crud.create_user(session=db, email="sam@example.com", full_name="Sam Lift")


def auth_headers(user_id: int) -> dict[str, str]:
    token = security.create_access_token(user_id, timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers(user) -> dict[str, str]:
    return auth_headers(user.id)
