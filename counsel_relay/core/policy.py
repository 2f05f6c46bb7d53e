"""
counsel_relay.core.policy
~~~~~~~~~~~~~~~~~~~~~~~~~

咨询策略（Policy）的解析与加载。

策略包含草稿 / 修改两套 Prompt、推送给咨询师的通用错误提示，
以及进出房间的系统通知模板。内置默认值见 ``counsel_relay.prompts.counseling``，
部署方可以通过 ``settings.POLICY_FILE`` 指向的 YAML 文件覆盖其中任意字段。
"""
from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from counsel_relay.core.logging import get_logger
from counsel_relay.prompts import counseling

logger = get_logger(__name__)


def _check_placeholders(template: str, **fields: str) -> str:
    """校验模板只使用允许的占位符。"""
    try:
        template.format(**fields)
    except (KeyError, IndexError, ValueError) as e:
        raise ValueError(f"模板占位符非法: {e!s}") from e
    return template


class PolicyConfig(BaseModel):
    draft_system_prompt: str = Field(
        default=counseling.DRAFT_SYSTEM_PROMPT,
        description="来访者消息触发草稿时的系统 Prompt",
    )
    draft_user_template: str = Field(
        default=counseling.DRAFT_USER_TEMPLATE,
        description="草稿的用户轮模板，占位符 {utterance}",
    )
    refine_system_prompt: str = Field(
        default=counseling.REFINE_SYSTEM_PROMPT,
        description="咨询师修改指令的系统 Prompt",
    )
    refine_user_template: str = Field(
        default=counseling.REFINE_USER_TEMPLATE,
        description="修改的用户轮模板，占位符 {utterance} / {instruction}",
    )
    draft_error_message: str = Field(default=counseling.DRAFT_ERROR_MESSAGE, min_length=1)
    refine_error_message: str = Field(default=counseling.REFINE_ERROR_MESSAGE, min_length=1)
    no_utterance_message: str = Field(default=counseling.NO_UTTERANCE_MESSAGE, min_length=1)
    rate_limited_message: str = Field(default=counseling.RATE_LIMITED_MESSAGE, min_length=1)
    join_notice_template: str = Field(
        default=counseling.JOIN_NOTICE_TEMPLATE,
        description="入场通知模板，占位符 {name} / {role_label}",
    )
    leave_notice_template: str = Field(
        default=counseling.LEAVE_NOTICE_TEMPLATE,
        description="离场通知模板，占位符 {name} / {role_label}",
    )
    role_labels: dict[str, str] = Field(default_factory=lambda: dict(counseling.ROLE_LABELS))

    @field_validator("draft_user_template")
    @classmethod
    def _check_draft_template(cls, value: str) -> str:
        return _check_placeholders(value, utterance="")

    @field_validator("refine_user_template")
    @classmethod
    def _check_refine_template(cls, value: str) -> str:
        return _check_placeholders(value, utterance="", instruction="")

    @field_validator("join_notice_template", "leave_notice_template")
    @classmethod
    def _check_notice_template(cls, value: str) -> str:
        return _check_placeholders(value, name="", role_label="")

    def role_label(self, role: str) -> str:
        return self.role_labels.get(role, role)

    def join_notice(self, name: str, role: str) -> str:
        return self.join_notice_template.format(name=name, role_label=self.role_label(role))

    def leave_notice(self, name: str, role: str) -> str:
        return self.leave_notice_template.format(name=name, role_label=self.role_label(role))


def load_policy(path: Path | None = None) -> PolicyConfig:
    """加载咨询策略。

    文件不存在时返回内置默认策略；文件存在但内容非法时直接抛出，
    让服务在启动阶段失败，而不是带着错误的 Prompt 运行。

    Args:
        path: YAML 文件路径，``None`` 表示只用默认值。

    Returns:
        合并后的 ``PolicyConfig``。
    """
    if path is None or not path.exists():
        logger.info("未找到策略文件，使用内置默认策略 | path=%s", path)
        return PolicyConfig()

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"策略文件格式错误，顶层必须是映射: {path}")

    policy = PolicyConfig(**data)
    logger.info("已加载咨询策略 | path=%s | 覆盖字段: %s", path, sorted(data.keys()))
    return policy
