"""
投资看板服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker 环境使用服务名 'mongodb'，本地使用 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


class DashboardSettings(BaseSettings):
    """投资看板服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── MongoDB 配置（支持服务发现） ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="investment_dashboard")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_ENABLED: bool = Field(default=True)
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── JWT / 认证配置 ─────────────────────────────────────
    JWT_SECRET: str = Field(default="change-me-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60 * 24)

    # ── 行情数据源配置 ─────────────────────────────────────
    ALPHA_VANTAGE_API_KEY: str = Field(default="")
    FINNHUB_API_KEY: str = Field(default="")
    NEWS_API_KEY: str = Field(default="")
    HTTP_TIMEOUT_SECONDS: float = Field(default=10.0)

    # ── LLM 配置（OpenAI 兼容接口） ─────────────────────────
    LLM_API_KEY: str = Field(default="")
    LLM_BASE_URL: str = Field(default="https://api.openai.com/v1")
    LLM_MODEL: str = Field(default="gpt-4.1-mini")
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0)

    # ── 缓存配置（秒） ─────────────────────────────────────
    QUOTE_CACHE_TTL: int = Field(default=60)
    SEARCH_CACHE_TTL: int = Field(default=300)
    MOVERS_CACHE_TTL: int = Field(default=300)
    CHART_CACHE_TTL: int = Field(default=300)
    NEWS_CACHE_TTL: int = Field(default=600)
    ANALYSIS_TTL: int = Field(default=3600)        # AI 分析记录有效期

    # ── 模拟交易配置 ──────────────────────────────────────
    PAPER_STARTING_CASH: float = Field(default=10000.0)
    PAPER_FEE_RATE: float = Field(default=0.001)     # 0.1% 手续费
    PAPER_MIN_FEE: float = Field(default=1.0)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> DashboardSettings:
    """获取全局配置（单例）"""
    return DashboardSettings()


settings = get_settings()
