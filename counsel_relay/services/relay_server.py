"""
counsel_relay.services.relay_server
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

中继服务 —— 组合房间注册表、身份解析、消息路由和草稿流水线，
负责连接的完整生命周期：入场、事件分发、离场。

在 FastAPI lifespan 中创建，挂载于 ``app.state.relay_server``。
"""
from __future__ import annotations

from collections.abc import Callable

from fastapi import WebSocket
from pydantic import ValidationError

from counsel_relay.core.config import Settings
from counsel_relay.core.logging import get_logger
from counsel_relay.core.policy import PolicyConfig
from counsel_relay.core.rate_limit import WebSocketRateLimiter
from counsel_relay.llm.base import TextGenerator
from counsel_relay.schemas.events import Identity, InboundEvent, OutboundEvent, Role
from counsel_relay.services.connection import ConnectionSession
from counsel_relay.services.draft_pipeline import DraftPipeline
from counsel_relay.services.identity import resolve_identity
from counsel_relay.services.room_registry import RoomRegistry
from counsel_relay.services.router import MessageRouter
from counsel_relay.services.session_store import SessionStore

logger = get_logger(__name__)


class RelayServer:
    """咨询中继服务。

    - ``open_session`` + ``admit``   → 创建连接会话，能解析出身份则入场（``connect`` 合并两步）
    - ``handle_event(session, raw)`` → 解析并分发一帧入站事件
    - ``disconnect(session)``       → 离场并通知房间

    Attributes:
        registry: 房间注册表。
        sessions: 会话存储（身份来源）。
        router: 消息路由。
        pipeline: 草稿流水线。
        policy: 咨询策略。
    """

    def __init__(
        self,
        generator: TextGenerator,
        policy: PolicyConfig,
        config: Settings,
        registry: RoomRegistry | None = None,
        sessions: SessionStore | None = None,
    ) -> None:
        self.config = config
        self.policy = policy
        self.registry = registry or RoomRegistry(
            history_limit=config.ROOM_HISTORY_LIMIT,
            code_bytes=config.ROOM_CODE_BYTES,
        )
        self.sessions = sessions or SessionStore()
        self.router = MessageRouter(self.registry)
        self.pipeline = DraftPipeline(
            registry=self.registry,
            router=self.router,
            generator=generator,
            policy=policy,
            timeout_seconds=config.GENERATION_TIMEOUT_SECONDS,
            supersede_stale=config.DRAFT_SUPERSEDE_STALE,
        )
        self.refine_limiter = WebSocketRateLimiter(interval_seconds=config.REFINE_RATE_LIMIT_INTERVAL)
        self._handlers: dict[str, Callable[[ConnectionSession, InboundEvent], None]] = {
            "join": self._on_join,
            "client_message": self._on_client_message,
            "counselor_send_final": self._on_counselor_send_final,
            "counselor_refine": self._on_counselor_refine,
        }

    # ── 生命周期 ──────────────────────────────────────────────────────

    def open_session(self, websocket: WebSocket, session_token: str | None = None) -> ConnectionSession:
        """为新连接创建会话，此时尚未入场。"""
        return ConnectionSession(
            websocket,
            session_token=session_token,
            outbox_size=self.config.OUTBOX_MAX_SIZE,
        )

    def admit(self, session: ConnectionSession) -> bool:
        """按会话令牌解析身份；解析成功则入场。"""
        identity = resolve_identity(self.sessions.get(session.session_token))
        if identity is None:
            logger.debug("连接未携带有效会话，保持未入场 | conn=%s", session.connection_id)
            return False
        return self.join(session, identity)

    def connect(self, websocket: WebSocket, session_token: str | None = None) -> ConnectionSession:
        """为新连接创建会话；会话存储中能解析出身份时立即入场。"""
        session = self.open_session(websocket, session_token)
        self.admit(session)
        return session

    def join(self, session: ConnectionSession, identity: Identity) -> bool:
        """让连接以给定身份加入房间并广播入场通知。

        同角色后到者覆盖房间记录的连接 ID。新入场的咨询师会收到
        房间当前的草稿（如果有）。
        """
        if not session.attach(identity):
            logger.debug("连接已入场，忽略重复入场 | conn=%s", session.connection_id)
            return False

        room = self.registry.ensure(identity.room)
        room.members[session.connection_id] = session
        previous = room.tracked_id(identity.role)
        room.set_tracked_id(identity.role, session.connection_id)
        room.touch()
        logger.info(
            "%s 进入咨询室 | room=%s | role=%s | conn=%s | replaced=%s | 在线: %d",
            identity.name, room.room_id, identity.role.value, session.connection_id,
            previous, room.online_count,
        )

        self.router.announce(room.room_id, self.policy.join_notice(identity.name, identity.role.value))
        if identity.role is Role.COUNSELOR and room.current_draft is not None:
            session.send(OutboundEvent.draft(room.current_draft))
        return True

    def disconnect(self, session: ConnectionSession) -> None:
        """连接断开：离开房间，仍是该角色的记录连接时移交或清除记录，并广播离场通知。"""
        session.close()
        self.refine_limiter.remove_client(session.connection_id)
        identity = session.identity
        if identity is None:
            return

        room = self.registry.get(identity.room)
        if room is None:
            return
        room.members.pop(session.connection_id, None)
        if room.tracked_id(identity.role) == session.connection_id:
            # 交给同角色中最近入场且仍在线的连接，没有则清空
            successor = room.latest_member_id(identity.role)
            room.set_tracked_id(identity.role, successor)
            if successor is not None:
                logger.info(
                    "%s 记录的连接改为 %s | room=%s", identity.role.value, successor, room.room_id,
                )
        room.touch()
        logger.info(
            "%s 离开咨询室 | room=%s | role=%s | 在线: %d",
            identity.name, room.room_id, identity.role.value, room.online_count,
        )
        self.router.announce(room.room_id, self.policy.leave_notice(identity.name, identity.role.value))

    async def aclose(self) -> None:
        await self.pipeline.aclose()

    def evict_idle_rooms(self, ttl_seconds: float) -> list[str]:
        """回收闲置房间，并作废指向这些房间的会话令牌。"""
        evicted = self.registry.evict_idle(ttl_seconds)
        revoked = sum(self.sessions.revoke_room(room_id) for room_id in evicted)
        if revoked:
            logger.info("作废已回收房间的会话 %d 个", revoked)
        return evicted

    # ── 事件分发 ──────────────────────────────────────────────────────

    def handle_event(self, session: ConnectionSession, raw: str) -> None:
        """解析一帧入站 JSON 并分发。格式错误或未知事件直接丢弃。"""
        try:
            event = InboundEvent.model_validate_json(raw)
        except ValidationError:
            logger.debug("无法解析的入站帧，丢弃 | conn=%s", session.connection_id)
            return

        handler = self._handlers.get(event.event)
        if handler is None:
            logger.debug("未知事件 %r，丢弃 | conn=%s", event.event, session.connection_id)
            return
        handler(session, event)

    def _on_join(self, session: ConnectionSession, event: InboundEvent) -> None:
        if session.joined:
            return
        if not self.config.LEGACY_JOIN_ENABLED:
            logger.debug("旧版 join 已关闭，丢弃 | conn=%s", session.connection_id)
            return
        identity = resolve_identity(event.data if isinstance(event.data, dict) else None)
        if identity is not None:
            self.join(session, identity)

    def _on_client_message(self, session: ConnectionSession, event: InboundEvent) -> None:
        text = event.text_field("text")
        if self.router.route_client_message(session, text):
            self.pipeline.draft_for_client(session.identity.room, text)

    def _on_counselor_send_final(self, session: ConnectionSession, event: InboundEvent) -> None:
        self.router.route_counselor_final(session, event.text_field("text"))

    def _on_counselor_refine(self, session: ConnectionSession, event: InboundEvent) -> None:
        identity = session.identity
        instruction = event.text_field("instruction")
        if identity is None or identity.role is not Role.COUNSELOR or not instruction:
            logger.debug("非法修改指令，丢弃 | conn=%s", session.connection_id)
            return
        if not self.refine_limiter.is_allowed(session.connection_id):
            session.send(OutboundEvent.error(self.policy.rate_limited_message))
            return
        self.pipeline.refine(identity.room, instruction, identity.name, requester=session)
