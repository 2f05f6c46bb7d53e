"""
counsel_relay.core.config
~~~~~~~~~~~~~~~~~~~~~~~~~

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
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")

PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Counsel Relay", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── API Keys ──────────────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(..., description="Google Gemini API Key")

    # ── 草稿生成 ──────────────────────────────────────────────────────
    GEMINI_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="生成咨询回复草稿所用的 Gemini 模型",
    )
    GENERATION_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="单次草稿生成的超时时间，超时按生成失败处理",
    )
    DRAFT_SUPERSEDE_STALE: bool = Field(
        default=True,
        description="同一房间出现更新的生成请求时，丢弃旧请求的结果",
    )
    POLICY_FILE: str = Field(
        default="data/policy.yaml",
        description="咨询策略（Prompt、提示语）YAML 文件，相对项目根目录；不存在时使用内置默认值",
    )

    # ── 房间 ──────────────────────────────────────────────────────────
    ROOM_CODE_BYTES: int = Field(
        default=9,
        ge=6,
        description="系统生成房间码时使用的随机字节数",
    )
    ROOM_HISTORY_LIMIT: int = Field(
        default=200,
        ge=1,
        description="每个房间在内存中保留的最大消息条数",
    )
    ROOM_IDLE_TTL_SECONDS: float = Field(
        default=3600.0,
        ge=0,
        description="无人在线的房间闲置多久后被回收，0 表示不回收",
    )
    ROOM_SWEEP_INTERVAL_SECONDS: float = Field(
        default=300.0,
        gt=0,
        description="闲置房间回收任务的执行间隔",
    )

    # ── 连接 ──────────────────────────────────────────────────────────
    OUTBOX_MAX_SIZE: int = Field(
        default=256,
        ge=1,
        description="每个连接待发送队列的最大长度，溢出的事件被丢弃",
    )
    LEGACY_JOIN_ENABLED: bool = Field(
        default=True,
        description="是否允许未携带会话的连接通过 join 事件直接声明身份",
    )
    SESSION_COOKIE_NAME: str = Field(
        default="counsel_session",
        description="保存会话令牌的 Cookie 名称",
    )

    # ── 限流 ──────────────────────────────────────────────────────────
    REFINE_RATE_LIMIT_INTERVAL: float = Field(
        default=2.0,
        ge=0,
        description="同一咨询师连接两次修改指令之间的最小间隔（秒），0 表示不限",
    )
    HTTP_RATE_LIMIT: str = Field(
        default="10/second",
        description="房间创建与入场接口的 IP 级限流规则",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

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

    @property
    def policy_path(self) -> Path:
        """咨询策略文件的绝对路径。"""
        path = Path(self.POLICY_FILE)
        return path if path.is_absolute() else PROJECT_ROOT / path


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
