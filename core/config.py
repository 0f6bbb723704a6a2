"""
配置文件 - 项目配置管理

Flat upper-case fields carry the deployment variables (DB_*, PAYMENT_*,
SHIPPING_API_KEY, ENABLE_TRACKING_JOB, SKIP_GATEWAY_REFUND); nested groups
carry tuning knobs and are overridden with `GROUP__FIELD` env keys.
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class RedisSettings(BaseModel):
    url: Optional[str] = None


class PaymentTuning(BaseModel):
    # Gateway calls block at most this long
    timeout_seconds: float = 30.0
    retry_max: int = 2
    retry_base_backoff: float = 0.2
    # VA / QR validity when the gateway does not return an expiry
    charge_expiry_minutes: int = 24 * 60
    # Webhook may race the checkout commit
    webhook_lookup_attempts: int = 3
    webhook_lookup_delay_seconds: float = 0.5
    # Auto-resolve of pending payments
    stuck_after_minutes: int = 120
    recovery_max_attempts: int = 5
    recovery_base_backoff: float = 1.0


class ShippingTuning(BaseModel):
    base_url: str = "https://api.biteship.com"
    timeout_seconds: float = 30.0
    retry_max: int = 2
    fallback_cost: int = 15000
    fallback_etd: str = "2-3 days"
    origin_postal_code: str = "40115"
    origin_area_id: Optional[str] = None
    origin_contact_name: str = "ZAVERA Warehouse"
    origin_contact_phone: str = "081200000000"
    origin_address: str = "Jl. Braga No. 1, Bandung"
    couriers: str = "jne,jnt,sicepat,anteraja,pos"
    default_item_weight_grams: int = 500
    min_total_weight_grams: int = 1000


class JobSettings(BaseModel):
    batch_size: int = 100
    tick_budget_seconds: float = 300.0
    order_expiry_interval_seconds: float = 300.0
    order_expiry_hours: int = 24
    payment_expiry_interval_seconds: float = 60.0
    payment_recovery_interval_seconds: float = 900.0
    tracking_interval_seconds: float = 1800.0
    auto_complete_interval_seconds: float = 3600.0
    auto_complete_days: int = 7
    reconciliation_hour: int = 1
    stale_after_days: int = 3
    stuck_after_days: int = 7
    lost_after_days: int = 14
    investigation_timeout_days: int = 7
    max_pickup_attempts: int = 3
    max_reship_count: int = 3


class NotificationSettings(BaseModel):
    # Empty -> notifications are written to the structured log only
    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0
    poll_interval_seconds: float = 2.0
    batch_size: int = 50


class StoreSettings(BaseModel):
    order_code_prefix: str = "ZVR"
    currency: str = "IDR"


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="ZAVERA Order Engine")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")

    # 数据库配置：完整 URL 优先，否则由 DB_* 组合
    DATABASE_URL: Optional[str] = None
    DB_DRIVER: str = "postgresql+asyncpg"
    DB_HOST: Optional[str] = None
    DB_PORT: int = 5432
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_NAME: Optional[str] = None
    DB_ECHO: bool = False
    DB_STATEMENT_TIMEOUT_SECONDS: float = 10.0

    # 支付网关
    PAYMENT_SERVER_KEY: Optional[str] = None
    PAYMENT_CLIENT_KEY: Optional[str] = None
    PAYMENT_ENVIRONMENT: Literal["sandbox", "production"] = "sandbox"

    # 物流聚合
    SHIPPING_API_KEY: Optional[str] = None

    # 后台任务开关
    ENABLE_SWEEPERS: bool = True
    ENABLE_TRACKING_JOB: bool = False
    ENABLE_OUTBOX_PUBLISHER: bool = True

    # 仅开发环境：跳过网关退款
    SKIP_GATEWAY_REFUND: bool = False

    # 逗号分隔
    CORS_ORIGINS: str = "http://localhost:3000"

    # 请求体日志
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = False
    LOG_REQUEST_BODY_MAX_BYTES: int = 2048

    # 分组配置
    redis: RedisSettings = Field(default_factory=RedisSettings)
    payment: PaymentTuning = Field(default_factory=PaymentTuning)
    shipping: ShippingTuning = Field(default_factory=ShippingTuning)
    jobs: JobSettings = Field(default_factory=JobSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return URL.create(
            drivername=self.DB_DRIVER,
            username=self.DB_USER,
            password=self.DB_PASSWORD,
            host=self.DB_HOST,
            port=self.DB_PORT,
            database=self.DB_NAME,
        ).render_as_string(hide_password=False)

    @property
    def cors_origins(self) -> list[str]:
        return [item.strip() for item in self.CORS_ORIGINS.split(",") if item.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in {"production", "prod"}

    @model_validator(mode="after")
    def _validate_required(self):
        # 没有数据库或支付密钥时拒绝启动
        if not self.DATABASE_URL and not (self.DB_HOST and self.DB_NAME):
            raise ValueError(
                "Database is not configured. Set DATABASE_URL or DB_HOST/DB_NAME (plus DB_USER/DB_PASSWORD)"
            )
        if not self.PAYMENT_SERVER_KEY:
            raise ValueError("PAYMENT_SERVER_KEY is not configured")
        if self.SKIP_GATEWAY_REFUND and self.is_production:
            raise ValueError("SKIP_GATEWAY_REFUND must not be enabled in production")
        return self


settings = Settings()
