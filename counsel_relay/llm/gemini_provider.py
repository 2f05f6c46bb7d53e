"""
counsel_relay.llm.gemini_provider
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

纯 LLM 客户端封装 —— 只负责与 Google Gemini API 的连接和调用。

不包含任何 Prompt 组装或投递逻辑（这些职责属于 ``DraftPipeline``）。
每次调用都是独立的一次性请求：修改草稿需要从同一条来访者消息重新推导，
因此这里不维护 chat session。
"""
from __future__ import annotations

from google import genai
from google.genai import types

from counsel_relay.core.config import settings
from counsel_relay.core.errors import GenerationError
from counsel_relay.core.logging import get_logger
from counsel_relay.llm.base import PromptTurn
from counsel_relay.llm.client import create_gemini_client

logger = get_logger(__name__)


class GeminiProvider:
    """基于 Gemini 的 ``TextGenerator`` 实现。

    Attributes:
        model_name: 使用的 Gemini 模型名称。
    """

    def __init__(
        self,
        model_name: str | None = None,
        client: genai.Client | None = None,
    ) -> None:
        """初始化生成器。

        Args:
            model_name: Gemini 模型名称，默认读取 ``settings.GEMINI_MODEL``。
            client: 可选的 ``genai.Client`` 实例（用于测试注入 mock）。
        """
        self.model_name: str = model_name or settings.GEMINI_MODEL
        self._client: genai.Client = client or create_gemini_client()
        logger.info("LLM 客户端已初始化 | model=%s", self.model_name)

    async def generate(self, turns: list[PromptTurn]) -> str:
        """发送一组 Prompt 轮次并返回完整回复文本（非流式）。

        ``system`` 轮合并为 ``system_instruction``，``user`` 轮按顺序作为对话内容。

        Raises:
            GenerationError: 服务商调用失败或返回空文本。
        """
        system_parts = [t["content"] for t in turns if t["role"] == "system"]
        contents = [
            types.Content(role="user", parts=[types.Part.from_text(text=t["content"])])
            for t in turns
            if t["role"] == "user"
        ]
        config = types.GenerateContentConfig(
            system_instruction="\n\n".join(system_parts) if system_parts else None,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=config,
            )
        except Exception as e:
            raise GenerationError("provider", f"{type(e).__name__}: {e!s}") from e

        text = (response.text or "").strip()
        if not text:
            raise GenerationError("empty", "Gemini 返回了空文本")
        return text
