"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。
数据库会话、支付网关、连续打卡缓存都通过 Depends 注入，
测试时用 app.dependency_overrides 替换成内存实现。
"""
from collections.abc import Generator  # 生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

import jwt  # JWT 解析库
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel import Session  # 数据库会话

from app.api.errors import not_found, unauthorized
from app.api.schemas import TokenPayload
from app.core import security
from app.core.config import settings
from app.core.db import engine
from app.core.redis_client import RedisClient, get_redis_client
from app.integrations.razorpay import RazorpayClient
from app.models import User

# 从请求头的 Authorization: Bearer <token> 中提取 token
# auto_error=False：缺少 token 时由 get_current_user 统一返回 401 错误格式
reusable_oauth2 = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


def get_payment_gateway() -> RazorpayClient:
    """支付网关客户端（依赖注入）"""
    return RazorpayClient()


def get_streak_cache() -> RedisClient:
    """连续打卡缓存（依赖注入）"""
    return get_redis_client()


async def get_raw_body(request: Request) -> bytes:
    """
    原始请求体

    Webhook 签名基于原始字节计算，必须在 JSON 解析之前读取。
    """
    return await request.body()


# 类型别名，简化依赖注入的写法
SessionDep = Annotated[Session, Depends(get_db)]  # 数据库会话依赖
GatewayDep = Annotated[RazorpayClient, Depends(get_payment_gateway)]  # 支付网关依赖
StreakCacheDep = Annotated[RedisClient, Depends(get_streak_cache)]  # 连续打卡缓存依赖
RawBodyDep = Annotated[bytes, Depends(get_raw_body)]  # 原始请求体依赖
TokenDep = Annotated[
    HTTPAuthorizationCredentials | None, Depends(reusable_oauth2)
]  # JWT token 依赖


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户（依赖注入）

    token 由身份服务签发（HS256，sub 为用户 ID）。
    token 缺失或无效时返回 401 UNAUTHORIZED；token 有效但用户不存在时返回 404 NOT_FOUND。

    Returns:
        User: 当前登录的用户对象
    """
    if token is None:
        raise unauthorized("Not authenticated")
    try:
        payload = jwt.decode(
            token.credentials,
            settings.SECRET_KEY,
            algorithms=[security.ALGORITHM],
            options={"verify_aud": False},
        )
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise unauthorized("Could not validate credentials")
    if not token_data.sub:
        raise unauthorized("Could not validate credentials")
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise unauthorized("Could not validate credentials")
    user = session.get(User, user_id)
    if not user:
        raise not_found("User not found")
    return user


# 类型别名，简化需要认证的路由写法
CurrentUser = Annotated[User, Depends(get_current_user)]


def ensure_same_user(body_user_id: int, current_user: User) -> None:
    """请求体中的 user_id 必须与登录用户一致，否则 403"""
    if body_user_id != current_user.id:
        raise unauthorized("User ID does not match the authenticated user", status_code=403)
