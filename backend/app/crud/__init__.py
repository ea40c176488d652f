"""CRUD 操作模块"""
from . import notification, plan, subscription
from .user import create as create_user
from .user import get_by_email as get_user_by_email

__all__ = [
    "notification",
    "plan",
    "subscription",
    "create_user",
    "get_user_by_email",
]
