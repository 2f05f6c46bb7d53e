"""
counsel_relay.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件协议与会话领域值对象。

每一帧都是 JSON 文本 ``{"event": <名称>, "data": <负载>}``。

入站（连接 → 服务端）:
  - ``join``                  —— ``{name, room, role}``，仅兼容旧客户端
  - ``client_message``        —— 文本，或 ``{text}``
  - ``counselor_send_final``  —— 文本，或 ``{text}``
  - ``counselor_refine``      —— ``{instruction}``，或文本

出站（服务端 → 连接）:
  - ``message``   —— ``{name, role, text, ts}``
  - ``system``    —— ``{text}``
  - ``ai_draft``  —— ``{text, ts, revisedBy?}``，仅咨询师
  - ``ai_error``  —— ``{message}``，仅咨询师
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """当前时间戳（毫秒）。"""
    return int(time.time() * 1000)


class Role(str, Enum):
    """会话参与方角色。"""

    CLIENT = "client"
    COUNSELOR = "counselor"


class Identity(BaseModel):
    """一个连接的身份，连接存续期间不可变。"""

    model_config = ConfigDict(frozen=True)

    name: str
    role: Role
    room: str


# ── 入站 ──────────────────────────────────────────────────────────────

InboundEventName = Literal["join", "client_message", "counselor_send_final", "counselor_refine"]


class InboundEvent(BaseModel):
    """入站事件信封。``event`` 为未知名称时由调用方丢弃。"""

    event: str
    data: Any = None

    def text_field(self, key: str = "text") -> str:
        """从 ``data`` 中取出文本负载，兼容纯字符串和 ``{key: ...}`` 两种写法。"""
        value = self.data
        if isinstance(value, dict):
            value = value.get(key)
        if not isinstance(value, str):
            return ""
        return value.strip()


# ── 出站 ──────────────────────────────────────────────────────────────

class ChatMessagePayload(BaseModel):
    name: str
    role: Role
    text: str
    ts: int = Field(default_factory=now_ms)


class SystemPayload(BaseModel):
    text: str


class DraftPayload(BaseModel):
    """AI 草稿。``ts`` 为生成完成时刻，前端据此与实时消息对齐顺序。"""

    model_config = ConfigDict(populate_by_name=True)

    text: str
    ts: int = Field(default_factory=now_ms)
    revised_by: str | None = Field(default=None, alias="revisedBy")


class ErrorPayload(BaseModel):
    message: str


OutboundEventName = Literal["message", "system", "ai_draft", "ai_error"]


class OutboundEvent(BaseModel):
    """出站事件信封。"""

    event: OutboundEventName
    data: ChatMessagePayload | SystemPayload | DraftPayload | ErrorPayload

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def message(cls, name: str, role: Role, text: str) -> OutboundEvent:
        return cls(event="message", data=ChatMessagePayload(name=name, role=role, text=text))

    @classmethod
    def system(cls, text: str) -> OutboundEvent:
        return cls(event="system", data=SystemPayload(text=text))

    @classmethod
    def draft(cls, draft: DraftPayload) -> OutboundEvent:
        return cls(event="ai_draft", data=draft)

    @classmethod
    def error(cls, message: str) -> OutboundEvent:
        return cls(event="ai_error", data=ErrorPayload(message=message))


# ── 房间内存历史 ──────────────────────────────────────────────────────

HistoryRole = Literal["client", "counselor", "ai"]


class HistoryEntry(BaseModel):
    """房间内存历史中的一条记录（进程退出即丢失）。"""

    role: HistoryRole
    name: str | None = None
    text: str
    ts: int = Field(default_factory=now_ms)
