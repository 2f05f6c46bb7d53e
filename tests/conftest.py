"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用假的文本生成器和假的 WebSocket 替代外部依赖，
使单元测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("GEMINI_API_KEY", "test-fake-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("HTTP_RATE_LIMIT", "1000/second")
os.environ.setdefault("POLICY_FILE", "tests/does-not-exist.yaml")

from counsel_relay.core.config import settings  # noqa: E402
from counsel_relay.core.policy import PolicyConfig  # noqa: E402
from counsel_relay.llm.base import PromptTurn  # noqa: E402
from counsel_relay.schemas.events import Role  # noqa: E402
from counsel_relay.services.connection import ConnectionSession  # noqa: E402
from counsel_relay.services.relay_server import RelayServer  # noqa: E402


class FakeGenerator:
    """可编排的 ``TextGenerator``。

    - ``replies``: 依次返回的结果，元素为 ``Exception`` 时抛出
    - ``gate``: 设置后，每次调用都会等待它被 set 才返回
    """

    def __init__(self, replies: list[Any] | None = None, default: str = "这听起来真的很难受。") -> None:
        self.replies: list[Any] = list(replies or [])
        self.default = default
        self.calls: list[list[PromptTurn]] = []
        self.gate: asyncio.Event | None = None

    async def generate(self, turns: list[PromptTurn]) -> str:
        self.calls.append(turns)
        reply = self.replies.pop(0) if self.replies else self.default
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def user_turn(self, index: int = -1) -> str:
        return next(t["content"] for t in self.calls[index] if t["role"] == "user")


def make_websocket() -> MagicMock:
    ws = MagicMock()
    ws.send_text = AsyncMock()
    return ws


def drain(session: ConnectionSession) -> list[dict[str, Any]]:
    """取出发件箱中已排队的全部事件。"""
    events: list[dict[str, Any]] = []
    while not session.outbox.empty():
        events.append(json.loads(session.outbox.get_nowait()))
    return events


def events_named(events: list[dict[str, Any]], name: str) -> list[dict[str, Any]]:
    return [e["data"] for e in events if e["event"] == name]


def frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data})


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def policy() -> PolicyConfig:
    return PolicyConfig()


@pytest.fixture()
def relay(generator: FakeGenerator, policy: PolicyConfig) -> RelayServer:
    config = settings.model_copy(update={"REFINE_RATE_LIMIT_INTERVAL": 0.0})
    return RelayServer(generator=generator, policy=policy, config=config)


def join_as(relay: RelayServer, name: str, role: Role, room: str) -> ConnectionSession:
    """以会话存储中的身份建立一条已入场连接。"""
    token = relay.sessions.issue({"name": name, "role": role.value, "room": room})
    return relay.connect(make_websocket(), token)



