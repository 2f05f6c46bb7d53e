"""
counsel_relay.llm.base
~~~~~~~~~~~~~~~~~~~~~~

文本生成能力的抽象边界。

草稿流水线只依赖 ``TextGenerator.generate(turns) -> str``，
不关心具体服务商的请求 / 响应结构，便于测试替换和切换模型。
"""
from __future__ import annotations

from typing import Literal, Protocol, TypedDict


class PromptTurn(TypedDict):
    """一轮 Prompt：``system`` 为行为指令，``user`` 为本次输入。"""

    role: Literal["system", "user"]
    content: str


class TextGenerator(Protocol):
    """外部文本生成服务。

    实现方必须在任何失败（网络、服务商错误、空输出）时抛出
    ``GenerationError``，而不是返回兜底文本。
    """

    async def generate(self, turns: list[PromptTurn]) -> str: ...
