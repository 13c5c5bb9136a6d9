from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 对应 .env 里的 ZAGFER_* 字段
    database_url: str = "sqlite:///./zagfer.db"
    secret_key: str = "dev_secret"
    access_token_expire_minutes: int = 720

    # 空库启动时写入初始刀具/用户
    use_initial_data: bool = False

    # 配置后启用本地 JSON 缓存兜底（服务器不可用时只读）
    cache_path: Optional[str] = None

    expiring_horizon_hours: int = 48
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="ZAGFER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
