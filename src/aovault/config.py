"""应用配置管理."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    database_url: str = "sqlite+aiosqlite:///./aovault.db"
    storage_dir: str = "./storage"
    default_owner_id: int = 1

    # AO3 源站配置
    ao3_base_url: str = "https://archiveofourown.org"
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )

    # 边缘代理配置（为空则禁用）
    proxy_url: str = ""

    # 限流与重试
    rate_limit_seconds: float = 1.5
    retry_after_ceiling_seconds: float = 45.0

    # 各传输策略超时（秒）
    direct_html_timeout_seconds: float = 8.0
    direct_epub_timeout_seconds: float = 15.0
    proxy_html_timeout_seconds: float = 15.0
    proxy_epub_timeout_seconds: float = 30.0

    # WIP 更新检查
    recheck_enabled: bool = True
    recheck_interval_minutes: int = 360
    recheck_batch_size: int = 10
    recheck_failure_threshold: int = 2


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
