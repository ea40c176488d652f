"""
应用配置

所有配置项从环境变量和项目根目录的 .env 读取（环境变量优先）。
计费相关的常量（结算币种、汇率、计费周期、取消策略）也放在这里，
不同部署可以按需覆盖。
"""
import secrets
import warnings
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import AnyUrl, BeforeValidator, HttpUrl, PostgresDsn, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

from app.enums import CancellationPolicy


def parse_cors(v: Any) -> list[str] | str:
    """逗号分隔字符串转列表，JSON 列表字符串原样交给 pydantic 解析"""
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    if isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Muscle AI"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    # 身份服务签发 access token 使用的 HS256 密钥
    SECRET_KEY: str = secrets.token_urlsafe(32)
    SENTRY_DSN: HttpUrl | None = None
    SNOWFLAKE_NODE_ID: int = 0

    BACKEND_CORS_ORIGINS: Annotated[list[AnyUrl] | str, BeforeValidator(parse_cors)] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 缓存配置（连续打卡缓存、定时任务分布式锁）
    REDIS_HOST: str = "localhost"  # Redis 服务器地址
    REDIS_PORT: int = 6379  # Redis 端口
    REDIS_DB: int = 0  # Redis 数据库编号（0-15）
    REDIS_PASSWORD: str | None = None  # Redis 密码（可选）

    # Razorpay 支付网关配置
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"  # API 基础 URL
    RAZORPAY_KEY_ID: str | None = None  # API Key ID（Basic 认证用户名）
    RAZORPAY_KEY_SECRET: str | None = None  # API Key Secret（也用于支付签名校验）
    RAZORPAY_WEBHOOK_SECRET: str | None = None  # Webhook 签名密钥
    RAZORPAY_MOCK: bool = False  # 是否使用模拟模式（本地开发时）
    # 对外可访问的服务地址，用于拼接支付完成后的回调 URL
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # 计费配置
    SETTLEMENT_CURRENCY: str = "INR"  # Razorpay 结算币种
    # 固定汇率（1 USD = 83 INR），非实时汇率，金额需人工对账
    USD_TO_SETTLEMENT_RATE: Decimal = Decimal("83")
    BILLING_CYCLE_DAYS: int = 30  # 计费周期（天）
    CANCELLATION_POLICY: CancellationPolicy = CancellationPolicy.grace_period
    EXPIRY_REMINDER_DAYS: int = 3  # 到期前多少天发送提醒
    DEFAULT_CUSTOMER_CONTACT: str = "+919876543210"  # 用户未填写手机号时的占位联系方式

    # 连续打卡缓存有效期（秒），缓存只作为“最后一次已知正确值”使用
    STREAK_CACHE_TTL_SECONDS: int = 30 * 24 * 3600

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        """密钥仍为 "changethis" 时：本地环境只告警，其他环境拒绝启动"""
        for name in ("SECRET_KEY", "POSTGRES_PASSWORD", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET"):
            if getattr(self, name) != "changethis":
                continue
            message = f'The value of {name} is "changethis", please change it for deployments.'
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)
        return self


settings = Settings()  # type: ignore
