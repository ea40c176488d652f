"""
测试启动前检查脚本

CI 中运行集成测试前等待数据库容器就绪，逻辑与 backend_pre_start 相同。
"""
import logging

from app.backend_pre_start import wait_for_db
from app.core.db import engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main() -> None:
    logger.info("Waiting for test database")
    wait_for_db(engine)
    logger.info("Test database ready")


if __name__ == "__main__":  # pragma: no cover
    main()
