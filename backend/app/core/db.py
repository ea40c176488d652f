"""
数据库连接模块

管理数据库引擎和会话的创建。
使用 SQLModel 的 create_engine 创建数据库连接池。

重要提示：
- 数据库表结构通过 Alembic 迁移管理，不要在这里创建表
- 确保在使用前导入所有模型（app.models），否则关系可能无法正确初始化
"""
import logging

from sqlmodel import Session, create_engine

from app import crud
from app.core.config import settings
from app.services.config_service import get_default_plans

logger = logging.getLogger(__name__)

# pool_pre_ping：连接池中的连接可能被数据库端断开，使用前先检测
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


def init_db(session: Session) -> None:
    """
    写入种子数据

    按套餐名称写入/更新默认套餐目录（Basic/Pro/VIP），可重复执行。
    表结构由 Alembic 迁移创建。

    Args:
        session: 数据库会话
    """
    for data in get_default_plans():
        plan = crud.plan.upsert(session=session, data=data)
        logger.info(
            "Plan seeded: %s $%s / %s analyses",
            plan.plan_name.value,
            plan.plan_price_usd,
            plan.monthly_analyses_limit,
        )
