"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（app/main.py）上。

路由模块说明：
- subscription: 订阅（创建、取消、更换套餐、webhook、支付回跳）
- usage: 分析额度（检查、累加、历史、统计）
- streak: 连续打卡
- notifications: 通知收件箱
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from app.api.routes import (
    notifications,  # 通知路由
    streak,  # 连续打卡路由
    subscription,  # 订阅路由
    usage,  # 分析额度路由
    utils,  # 工具路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(subscription.router)  # /subscription/*
api_router.include_router(usage.router)  # /usage/*
api_router.include_router(streak.router)  # /streak/*
api_router.include_router(notifications.router)  # /notifications/*
api_router.include_router(utils.router)  # /utils/*
