"""
安全相关工具模块

- JWT：解析身份服务签发的 Bearer Token（HS256），测试和运维脚本可用 create_access_token 生成
- HMAC：校验 Razorpay 的三种签名（Webhook、前端支付校验、支付链接回跳）

所有签名比较都使用 hmac.compare_digest，避免时序攻击。
密钥未配置时一律视为校验失败。
"""
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def compute_signature(payload: bytes | str, secret: str) -> str:
    """
    计算 HMAC-SHA256 十六进制签名

    Args:
        payload: 待签名内容（str 按 UTF-8 编码）
        secret: 密钥

    Returns:
        小写十六进制签名
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _matches(payload: bytes | str, signature: str | None, secret: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(raw_body: bytes, signature: str | None) -> bool:
    """
    校验 Webhook 签名

    Razorpay 对原始请求体做 HMAC-SHA256（Webhook Secret），
    放在 X-Razorpay-Signature 请求头中。必须使用原始字节，不能先解析再序列化。
    """
    return _matches(raw_body, signature, settings.RAZORPAY_WEBHOOK_SECRET)


def verify_payment_signature(
    payment_id: str, subscription_id: str, signature: str | None
) -> bool:
    """校验前端 Checkout 回传的签名：HMAC(payment_id|subscription_id, key_secret)"""
    return _matches(f"{payment_id}|{subscription_id}", signature, settings.RAZORPAY_KEY_SECRET)


def verify_callback_signature(
    payment_link_id: str,
    reference_id: str,
    status: str,
    payment_id: str,
    signature: str | None,
) -> bool:
    """校验支付链接回跳签名：HMAC(link_id|reference_id|status|payment_id, key_secret)"""
    payload = f"{payment_link_id}|{reference_id}|{status}|{payment_id}"
    return _matches(payload, signature, settings.RAZORPAY_KEY_SECRET)
