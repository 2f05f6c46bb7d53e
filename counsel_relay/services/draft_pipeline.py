"""
counsel_relay.services.draft_pipeline
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

AI 草稿流水线 —— 把外部文本生成调用穿插进实时聊天而不阻塞它。

两种触发:
  - 来访者消息成功路由后 → ``draft_for_client``
  - 咨询师提交修改指令    → ``refine``

两者都在同步代码段里完成状态更新（``last_client_utterance``、请求序号），
随后把生成调用放进后台任务，处理函数立即返回，聊天继续流转。
生成结果只投递给一个咨询师连接（修改指令的发起者，或房间当前记录的咨询师），
投递目标在完成时重新查找。

草稿与实时消息之间不保证顺序：草稿可能晚于之后的聊天消息到达，
每份草稿都带有自己的 ``ts``，由前端对齐。
"""
from __future__ import annotations

import asyncio

from counsel_relay.core.errors import GenerationError
from counsel_relay.core.logging import get_logger
from counsel_relay.core.policy import PolicyConfig
from counsel_relay.llm.base import PromptTurn, TextGenerator
from counsel_relay.prompts.counseling import build_draft_turns, build_refine_turns
from counsel_relay.schemas.events import DraftPayload, HistoryEntry, OutboundEvent
from counsel_relay.services.connection import ConnectionSession
from counsel_relay.services.room_registry import Room, RoomRegistry
from counsel_relay.services.router import MessageRouter

logger = get_logger(__name__)


class DraftPipeline:
    """编排草稿生成调用并异步投递结果。

    Attributes:
        registry: 房间注册表。
        router: 用于向咨询师投递草稿 / 错误。
        generator: 外部文本生成服务。
        policy: 当前生效的咨询策略。
        timeout_seconds: 单次生成的超时时间。
        supersede_stale: 为 ``True`` 时，同一房间较旧请求的结果被丢弃。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        router: MessageRouter,
        generator: TextGenerator,
        policy: PolicyConfig,
        timeout_seconds: float = 30.0,
        supersede_stale: bool = True,
    ) -> None:
        self.registry = registry
        self.router = router
        self.generator = generator
        self.policy = policy
        self.timeout_seconds = timeout_seconds
        self.supersede_stale = supersede_stale
        self._tasks: set[asyncio.Task[None]] = set()

    # ── 触发 ──────────────────────────────────────────────────────────

    def draft_for_client(self, room_id: str, utterance: str) -> asyncio.Task[None] | None:
        """来访者消息触发草稿生成。

        先同步更新 ``last_client_utterance``，再发起生成调用，
        保证之后的修改请求总能看到最新的来访者消息。
        """
        utterance = utterance.strip()
        if not utterance:
            return None
        room = self.registry.ensure(room_id)
        room.last_client_utterance = utterance
        # 旧草稿对应的是上一条来访者消息
        room.current_draft = None
        turns = build_draft_turns(self.policy, utterance)
        return self._schedule(room, turns, revised_by=None, error_message=self.policy.draft_error_message)

    def refine(
        self,
        room_id: str,
        instruction: str,
        counselor_name: str,
        requester: ConnectionSession | None = None,
    ) -> asyncio.Task[None] | None:
        """咨询师修改指令触发草稿重新生成。

        每次都从房间当前保留的来访者消息 + 本次指令重新推导，丢弃之前的草稿。
        还没有来访者消息时不调用外部服务，直接告知咨询师。

        Args:
            room_id: 房间码。
            instruction: 修改指令，空白时丢弃。
            counselor_name: 咨询师名称，写入草稿的 ``revisedBy``。
            requester: 发起修改的连接。结果优先投递给它，它已离开时投递给房间记录的咨询师。
        """
        instruction = instruction.strip()
        if not instruction:
            return None
        room = self.registry.ensure(room_id)
        utterance = room.last_client_utterance
        if not utterance:
            logger.info("房间内还没有来访者消息，忽略修改指令 | room=%s", room_id)
            error = OutboundEvent.error(self.policy.no_utterance_message)
            if requester is not None:
                requester.send(error)
            else:
                self.router.to_counselor(room_id, error)
            return None
        turns = build_refine_turns(self.policy, utterance, instruction)
        return self._schedule(
            room,
            turns,
            revised_by=counselor_name,
            error_message=self.policy.refine_error_message,
            recipient=requester.connection_id if requester is not None else None,
        )

    def _schedule(
        self,
        room: Room,
        turns: list[PromptTurn],
        revised_by: str | None,
        error_message: str,
        recipient: str | None = None,
    ) -> asyncio.Task[None]:
        room.draft_seq += 1
        room.inflight += 1
        seq = room.draft_seq
        task = asyncio.create_task(
            self._run(room.room_id, seq, turns, revised_by, error_message, recipient),
            name=f"draft:{room.room_id}:{seq}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("草稿生成已排队 | room=%s | seq=%d | refine=%s", room.room_id, seq, revised_by is not None)
        return task

    # ── 执行与投递 ────────────────────────────────────────────────────

    async def _generate(self, turns: list[PromptTurn]) -> str:
        try:
            return await asyncio.wait_for(self.generator.generate(turns), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GenerationError("timeout", f"超过 {self.timeout_seconds}s 未返回") from e

    async def _run(
        self,
        room_id: str,
        seq: int,
        turns: list[PromptTurn],
        revised_by: str | None,
        error_message: str,
        recipient: str | None = None,
    ) -> None:
        try:
            text = await self._generate(turns)
        except GenerationError as e:
            logger.error(
                "草稿生成失败 | room=%s | seq=%d | reason=%s | %s",
                room_id, seq, e.reason, e.detail, exc_info=True,
            )
            self._deliver_error(room_id, seq, error_message, recipient)
        except Exception as e:
            logger.error("草稿生成异常 | room=%s | seq=%d | %s", room_id, seq, e, exc_info=True)
            self._deliver_error(room_id, seq, error_message, recipient)
        else:
            self._deliver_draft(room_id, seq, DraftPayload(text=text, revised_by=revised_by), recipient)
        finally:
            room = self.registry.get(room_id)
            if room is not None:
                room.inflight = max(0, room.inflight - 1)

    def _current_room(self, room_id: str, seq: int) -> Room | None:
        """重新取房间；房间已回收或结果已过期时返回 ``None``。"""
        room = self.registry.get(room_id)
        if room is None:
            return None
        if self.supersede_stale and seq < room.draft_seq:
            logger.info("丢弃过期的草稿结果 | room=%s | seq=%d | latest=%d", room_id, seq, room.draft_seq)
            return None
        return room

    def _deliver_draft(self, room_id: str, seq: int, draft: DraftPayload, recipient: str | None = None) -> None:
        room = self._current_room(room_id, seq)
        if room is None:
            return
        room.current_draft = draft
        room.history.append(HistoryEntry(role="ai", name=draft.revised_by, text=draft.text, ts=draft.ts))
        delivered = self.router.to_counselor(room_id, OutboundEvent.draft(draft), prefer=recipient)
        logger.info("草稿已生成 | room=%s | seq=%d | delivered=%s", room_id, seq, delivered)

    def _deliver_error(self, room_id: str, seq: int, message: str, recipient: str | None = None) -> None:
        if self._current_room(room_id, seq) is None:
            return
        self.router.to_counselor(room_id, OutboundEvent.error(message), prefer=recipient)

    # ── 生命周期 ──────────────────────────────────────────────────────

    @property
    def pending(self) -> int:
        """尚未完成的生成任务数。"""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """等待当前所有生成任务结束。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """取消所有未完成的生成任务。"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("已取消 %d 个未完成的草稿任务", len(tasks))
