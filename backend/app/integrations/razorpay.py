"""
Razorpay 支付网关 API 集成模块

封装 Razorpay 的 REST API，包括：
- 客户（customers）：创建、按邮箱查询
- 支付链接（payment_links）：创建、查询
- 订阅（subscriptions）：周期末取消

认证方式为 HTTP Basic（key_id:key_secret）。
金额单位为结算币种的最小单位（INR 为 paise）。

支持模拟模式（mock），用于本地开发时不需要真实 API 调用。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.api.errors import AppError, upstream_error
from app.core.config import settings

logger = logging.getLogger(__name__)

_CUSTOMERS_PATH = "/customers"
_PAYMENT_LINKS_PATH = "/payment_links"
_PAYMENT_LINK_PATH = "/payment_links/{link_id}"
_CANCEL_SUBSCRIPTION_PATH = "/subscriptions/{subscription_id}/cancel"


@dataclass(frozen=True)
class RazorpayCustomer:
    """Razorpay 客户"""
    id: str
    email: str | None = None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True)
class RazorpayPaymentLink:
    """
    Razorpay 支付链接

    status 取值：created / partially_paid / paid / expired / cancelled
    """
    id: str
    short_url: str | None
    status: str
    amount: int | None = None
    raw: dict[str, Any] | None = None


def _error_description(response: httpx.Response) -> str:
    """从 Razorpay 错误响应中提取可读的描述（{"error": {"description": ...}}）"""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("description"):
            return str(error["description"])
    return f"HTTP {response.status_code}"


class RazorpayClient:
    """
    Razorpay API 客户端

    所有方法在网络错误或非 2xx 响应时抛出 UPSTREAM_ERROR，
    错误信息优先使用 Razorpay 返回的 error.description。
    """

    def __init__(self) -> None:
        self._mock = settings.RAZORPAY_MOCK
        self._base_url = settings.RAZORPAY_BASE_URL.rstrip("/")
        self._key_id = settings.RAZORPAY_KEY_ID
        self._key_secret = settings.RAZORPAY_KEY_SECRET

    def _auth(self) -> tuple[str, str]:
        if not self._key_id or not self._key_secret:
            raise upstream_error("Payment gateway is not configured")
        return self._key_id, self._key_secret

    def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            with httpx.Client(timeout=20) as client:
                r = client.request(method, url, json=json, params=params, auth=self._auth())
                if r.status_code >= 400:
                    description = _error_description(r)
                    logger.warning("Razorpay %s failed: %s %s", action, r.status_code, description)
                    raise upstream_error(f"Failed to {action}: {description}")
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Razorpay %s error: %s", action, e)
            raise upstream_error(f"Failed to {action}: payment gateway unavailable")
        if not isinstance(data, dict):
            raise upstream_error(f"Failed to {action}: invalid response")
        return data

    # ========================================================================
    # 客户
    # ========================================================================

    def create_customer(self, *, name: str, email: str, contact: str | None = None) -> RazorpayCustomer:
        """
        创建客户

        Razorpay 对同一邮箱重复创建会返回 "Customer already exists" 错误，
        调用方应使用 get_or_create_customer 处理该情况。
        """
        if self._mock:
            return RazorpayCustomer(id=f"cust_mock_{email.split('@')[0]}", email=email, raw={"mock": True})

        data = self._request(
            "POST",
            _CUSTOMERS_PATH,
            action="create Razorpay customer",
            json={"name": name, "email": email, "contact": contact or ""},
        )
        if not data.get("id"):
            raise upstream_error("Failed to create Razorpay customer: invalid response")
        return RazorpayCustomer(id=str(data["id"]), email=data.get("email"), raw=data)

    def find_customer_by_email(self, email: str) -> RazorpayCustomer | None:
        """按邮箱查询已有客户，不存在时返回 None"""
        if self._mock:
            return RazorpayCustomer(id=f"cust_mock_{email.split('@')[0]}", email=email, raw={"mock": True})

        data = self._request(
            "GET",
            _CUSTOMERS_PATH,
            action="fetch existing customer",
            params={"email": email},
        )
        items = data.get("items") or []
        if not items:
            return None
        first = items[0]
        return RazorpayCustomer(id=str(first["id"]), email=first.get("email"), raw=first)

    def get_or_create_customer(
        self, *, name: str, email: str, contact: str | None = None
    ) -> RazorpayCustomer:
        """
        获取或创建客户

        创建失败且描述包含 "already exists" 时，改为按邮箱查询已有客户。
        """
        try:
            return self.create_customer(name=name, email=email, contact=contact)
        except AppError as e:
            if "already exists" not in e.message:
                raise
        logger.info("Razorpay customer already exists, fetching by email")
        customer = self.find_customer_by_email(email)
        if customer is None:
            raise upstream_error("Customer exists but could not be fetched")
        return customer

    # ========================================================================
    # 支付链接
    # ========================================================================

    def create_payment_link(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        customer: dict[str, str],
        notes: dict[str, str],
        callback_url: str,
        reference_id: str | None = None,
    ) -> RazorpayPaymentLink:
        """
        创建托管支付链接

        Args:
            amount: 金额（最小货币单位，如 paise）
            currency: 币种
            description: 描述（展示在支付页）
            customer: 客户信息 {name, email, contact}
            notes: 附加信息，会原样出现在 webhook 的实体中
            callback_url: 支付完成后浏览器回跳地址（GET）
            reference_id: 商户侧参考号（回跳签名的一部分）

        Returns:
            RazorpayPaymentLink: 支付链接
        """
        if self._mock:
            link_id = f"plink_mock_{reference_id or 'link'}"
            return RazorpayPaymentLink(
                id=link_id,
                short_url=f"https://rzp.io/i/{link_id}",
                status="created",
                amount=amount,
                raw={"mock": True},
            )

        payload: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "description": description,
            "customer": customer,
            "notify": {"sms": True, "email": True},
            "reminder_enable": True,
            "notes": notes,
            "callback_url": callback_url,
            "callback_method": "get",
        }
        if reference_id:
            payload["reference_id"] = reference_id

        data = self._request("POST", _PAYMENT_LINKS_PATH, action="create payment link", json=payload)
        if not data.get("id"):
            raise upstream_error("Failed to create payment link: invalid response")
        return RazorpayPaymentLink(
            id=str(data["id"]),
            short_url=data.get("short_url"),
            status=str(data.get("status") or "created"),
            amount=data.get("amount"),
            raw=data,
        )

    def fetch_payment_link(self, link_id: str) -> RazorpayPaymentLink:
        """查询支付链接当前状态（回跳时以此为准，不信任查询参数）"""
        if self._mock:
            return RazorpayPaymentLink(id=link_id, short_url=None, status="paid", raw={"mock": True})

        data = self._request(
            "GET",
            _PAYMENT_LINK_PATH.format(link_id=link_id),
            action="fetch payment link",
        )
        return RazorpayPaymentLink(
            id=str(data.get("id") or link_id),
            short_url=data.get("short_url"),
            status=str(data.get("status") or ""),
            amount=data.get("amount"),
            raw=data,
        )

    # ========================================================================
    # 订阅
    # ========================================================================

    def cancel_subscription(self, subscription_id: str, *, at_cycle_end: bool = True) -> dict[str, Any]:
        """取消 Razorpay 订阅（默认在当前周期结束时生效）"""
        if self._mock:
            return {"id": subscription_id, "status": "cancelled", "mock": True}

        return self._request(
            "POST",
            _CANCEL_SUBSCRIPTION_PATH.format(subscription_id=subscription_id),
            action="cancel Razorpay subscription",
            json={"cancel_at_cycle_end": 1 if at_cycle_end else 0},
        )
