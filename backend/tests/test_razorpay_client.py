from __future__ import annotations

import json

import httpx
import pytest

from app.api.errors import AppError, ErrorKind
from app.core import security
from app.core.config import settings
from app.integrations import razorpay
from app.integrations.razorpay import RazorpayClient
from conftest import KEY_SECRET, WEBHOOK_SECRET

_real_client = httpx.Client


class FakeRazorpayAPI:
    """按 (method, path 后缀) 返回预设响应，并记录所有请求"""

    def __init__(self) -> None:
        self.responses: dict[tuple[str, str], httpx.Response | Exception] = {}
        self.seen: list[httpx.Request] = []

    def add(self, method: str, suffix: str, response: httpx.Response | Exception) -> None:
        self.responses[(method, suffix)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.seen.append(request)
        for (method, suffix), response in self.responses.items():
            if request.method == method and request.url.path.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        return httpx.Response(404, json={"error": {"description": "no route"}})


@pytest.fixture()
def api(monkeypatch) -> FakeRazorpayAPI:
    fake = FakeRazorpayAPI()
    transport = httpx.MockTransport(fake.handler)
    monkeypatch.setattr(
        razorpay.httpx, "Client", lambda **kwargs: _real_client(transport=transport, **kwargs)
    )
    return fake


def test_create_customer_sends_basic_auth(api):
    api.add("POST", "/customers", httpx.Response(200, json={"id": "cust_1", "email": "a@b.co"}))

    customer = RazorpayClient().get_or_create_customer(name="Alex", email="a@b.co")

    assert customer.id == "cust_1"
    request = api.seen[0]
    assert request.headers["authorization"].startswith("Basic ")
    assert json.loads(request.content)["contact"] == ""


def test_existing_customer_is_fetched_by_email(api):
    api.add(
        "POST",
        "/customers",
        httpx.Response(
            400,
            json={"error": {"code": "BAD_REQUEST_ERROR", "description": "Customer already exists for the merchant"}},
        ),
    )
    api.add("GET", "/customers", httpx.Response(200, json={"items": [{"id": "cust_existing", "email": "a@b.co"}]}))

    customer = RazorpayClient().get_or_create_customer(name="Alex", email="a@b.co")

    assert customer.id == "cust_existing"
    assert api.seen[1].url.params["email"] == "a@b.co"


def test_other_customer_errors_are_not_swallowed(api):
    api.add("POST", "/customers", httpx.Response(400, json={"error": {"description": "Invalid email"}}))

    with pytest.raises(AppError) as exc:
        RazorpayClient().get_or_create_customer(name="Alex", email="bad")
    assert "Invalid email" in exc.value.message
    assert len(api.seen) == 1


def test_error_description_is_surfaced(api):
    api.add(
        "POST",
        "/payment_links",
        httpx.Response(400, json={"error": {"description": "The amount must be atleast INR 1.00"}}),
    )

    with pytest.raises(AppError) as exc:
        RazorpayClient().create_payment_link(
            amount=0,
            currency="INR",
            description="Basic",
            customer={"name": "Alex", "email": "a@b.co"},
            notes={"subscription_id": "1"},
            callback_url="http://localhost/cb",
        )
    assert exc.value.kind == ErrorKind.upstream_error
    assert "The amount must be atleast INR 1.00" in exc.value.message


def test_network_failure_is_upstream_error(api):
    api.add("GET", "/payment_links/plink_1", httpx.ConnectError("connection refused"))

    with pytest.raises(AppError) as exc:
        RazorpayClient().fetch_payment_link("plink_1")
    assert exc.value.kind == ErrorKind.upstream_error
    assert "payment gateway unavailable" in exc.value.message


def test_payment_link_payload(api):
    api.add(
        "POST",
        "/payment_links",
        httpx.Response(
            200, json={"id": "plink_9", "short_url": "https://rzp.io/i/x", "status": "created", "amount": 33200}
        ),
    )

    link = RazorpayClient().create_payment_link(
        amount=33200,
        currency="INR",
        description="Muscle AI Basic",
        customer={"name": "Alex", "email": "a@b.co"},
        notes={"subscription_id": "77"},
        callback_url="http://localhost/cb",
        reference_id="77",
    )

    assert link.id == "plink_9"
    assert link.short_url == "https://rzp.io/i/x"
    body = json.loads(api.seen[0].content)
    assert body["callback_method"] == "get"
    assert body["reference_id"] == "77"
    assert body["notes"] == {"subscription_id": "77"}


def test_cancel_subscription_at_cycle_end(api):
    api.add("POST", "/subscriptions/sub_1/cancel", httpx.Response(200, json={"id": "sub_1", "status": "active"}))

    RazorpayClient().cancel_subscription("sub_1", at_cycle_end=True)

    assert json.loads(api.seen[0].content) == {"cancel_at_cycle_end": 1}


def test_missing_keys_fail_without_request(api, monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", "")

    with pytest.raises(AppError) as exc:
        RazorpayClient().fetch_payment_link("plink_1")
    assert exc.value.message == "Payment gateway is not configured"
    assert api.seen == []


def test_mock_mode_makes_no_requests(api, monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_MOCK", True)
    client = RazorpayClient()

    customer = client.get_or_create_customer(name="Alex", email="alex@example.com")
    link = client.create_payment_link(
        amount=100,
        currency="INR",
        description="x",
        customer={},
        notes={},
        callback_url="http://localhost/cb",
        reference_id="5",
    )

    assert customer.id == "cust_mock_alex"
    assert link.id == "plink_mock_5"
    assert client.fetch_payment_link(link.id).status == "paid"
    assert api.seen == []


def test_signature_helpers():
    body = b'{"event":"payment.captured"}'
    good = security.compute_signature(body, WEBHOOK_SECRET)
    assert security.verify_webhook_signature(body, good)
    assert not security.verify_webhook_signature(body + b" ", good)
    assert not security.verify_webhook_signature(body, None)

    sig = security.compute_signature("pay_1|plink_1", KEY_SECRET)
    assert security.verify_payment_signature("pay_1", "plink_1", sig)
    assert not security.verify_payment_signature("pay_2", "plink_1", sig)

    sig = security.compute_signature("plink_1|42|paid|pay_1", KEY_SECRET)
    assert security.verify_callback_signature("plink_1", "42", "paid", "pay_1", sig)
    assert not security.verify_callback_signature("plink_1", "42", "failed", "pay_1", sig)


def test_signatures_fail_closed_without_secret(monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_WEBHOOK_SECRET", None)
    body = b"{}"
    assert not security.verify_webhook_signature(body, security.compute_signature(body, ""))
