"""
POS 退货对账配置管理
遵循约束：环境变量前缀 POS__
"""
from decimal import Decimal
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="POS__",
        case_sensitive=False
    )

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="pos")
    db_user: str = Field(default="pos")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=5)
    db_echo: bool = Field(default=False)

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text")  # json or text

    # 业务规则
    business_timezone: str = Field(default="America/Guatemala")
    currency: str = Field(default="GTQ")
    completed_status_name: str = Field(default="Completada")
    money_tolerance: Decimal = Field(default=Decimal("0.01"))

    # 序列化冲突重试
    reconcile_max_retries: int = Field(default=3)
    retry_backoff_base: float = Field(default=0.2)

    # Analytics API（交叉核对时可选）
    analytics_base_url: Optional[str] = Field(default=None)
    analytics_timeout: float = Field(default=10.0)

    @validator("business_timezone")
    def validate_business_timezone(cls, v):
        """确保时区名称可被 zoneinfo 解析"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @validator("log_format")
    def validate_log_format(cls, v):
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    @validator("reconcile_max_retries")
    def validate_max_retries(cls, v):
        if v < 1:
            raise ValueError("reconcile_max_retries must be >= 1")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """构建同步数据库连接字符串（用于 Alembic）"""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
