"""
watchparty.core.config
~~~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from watchparty.schemas.party import FailoverPolicyName

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Watch Party Server", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 播放 ──────────────────────────────────────────────────────────
    DEFAULT_VIDEO_ID: str = Field(
        default="uzwgt8uGt90",
        description="新建房间时的默认视频 ID",
    )

    # ── 聊天 ──────────────────────────────────────────────────────────
    CHAT_HISTORY_LIMIT: int = Field(default=100, ge=1, description="每个房间保留的最大聊天条数")
    MAX_CHAT_MESSAGE_LENGTH: int = Field(default=500, ge=1, description="单条聊天消息最大长度")
    WS_CHAT_RATE_LIMIT_INTERVAL: float = Field(
        default=0.5,
        ge=0,
        description="同一连接两次聊天消息的最小间隔（秒）",
    )

    # ── 房间生命周期 ──────────────────────────────────────────────────
    NO_ADMIN_GRACE_SECONDS: float = Field(
        default=120.0,
        gt=0,
        description="房间失去全部管理员后的自动销毁宽限期（秒）",
    )
    EMPTY_ROOM_GRACE_SECONDS: float = Field(
        default=300.0,
        gt=0,
        description="房间无人后的删除宽限期（秒），期间可重连",
    )
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="过期房间巡检周期（秒）",
    )
    SHUTDOWN_DRAIN_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        gt=0,
        description="停机时等待 server_shutdown 通知写出的最长时间（秒）",
    )
    DEFAULT_FAILOVER_POLICY: FailoverPolicyName = Field(
        default="grace",
        description="显式创建的房间使用的管理员失联策略",
    )
    ADHOC_FAILOVER_POLICY: FailoverPolicyName = Field(
        default="promote",
        description="按 room_id 直接加入自动创建的房间使用的管理员失联策略",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3001, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")
    ROOM_LIST_RATE_LIMIT: str = Field(default="10/second", description="房间列表接口限流规则")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
