"""
counsel_relay.services.router
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息路由 —— 按事件类型决定房间内哪些连接收到它。

路由表:

=====================  ==========  ======================
事件                    发送方角色   接收方
=====================  ==========  ======================
来访者聊天消息          client      房间内所有连接
咨询师最终消息          counselor   房间内所有连接
系统通知（进 / 出）      —           房间内所有连接
AI 草稿 / AI 错误        —           仅当前咨询师连接
=====================  ==========  ======================

发送方角色不符、未入场或文本为空的事件一律静默丢弃，只记 DEBUG 日志。
"""
from __future__ import annotations

from counsel_relay.core.logging import get_logger
from counsel_relay.schemas.events import HistoryEntry, OutboundEvent, Role
from counsel_relay.services.connection import ConnectionSession
from counsel_relay.services.room_registry import RoomRegistry

logger = get_logger(__name__)


class MessageRouter:
    """基于房间成员和角色的广播规则。"""

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry

    # ── 投递原语 ──────────────────────────────────────────────────────

    def broadcast(self, room_id: str, event: OutboundEvent) -> int:
        """投递给房间内所有连接，返回接收方数量。"""
        room = self.registry.get(room_id)
        if room is None:
            return 0
        recipients = list(room.members.values())
        for member in recipients:
            member.send(event)
        return len(recipients)

    def to_counselor(self, room_id: str, event: OutboundEvent, prefer: str | None = None) -> bool:
        """只投递给一个咨询师连接。

        投递时重新查找房间和咨询师，不使用触发时捕获的连接。
        ``prefer`` 指定的连接仍以咨询师身份在房间内时投递给它（修改指令的发起者），
        否则投递给房间当前记录的咨询师；没有在线咨询师时丢弃并返回 ``False``。
        """
        room = self.registry.get(room_id)
        if room is None:
            return False
        counselor = room.counselor(prefer)
        if counselor is None:
            logger.debug("房间内没有咨询师，丢弃 %s | room=%s", event.event, room_id)
            return False
        counselor.send(event)
        return True

    # ── 聊天事件 ──────────────────────────────────────────────────────

    def _check_sender(self, sender: ConnectionSession, role: Role, text: str) -> bool:
        identity = sender.identity
        if identity is None:
            logger.debug("未入场连接发送消息，丢弃 | conn=%s", sender.connection_id)
            return False
        if identity.role is not role:
            logger.debug(
                "角色不符，丢弃 | conn=%s | role=%s | required=%s",
                sender.connection_id, identity.role.value, role.value,
            )
            return False
        if not text:
            logger.debug("空消息，丢弃 | conn=%s", sender.connection_id)
            return False
        return True

    def route_chat(self, sender: ConnectionSession, role: Role, text: str) -> bool:
        """路由一条聊天消息（来访者消息或咨询师最终消息）。

        Args:
            sender: 发送方连接。
            role: 该事件要求的发送方角色。
            text: 消息文本。

        Returns:
            是否完成广播。
        """
        text = text.strip()
        if not self._check_sender(sender, role, text):
            return False

        identity = sender.identity
        room = self.registry.ensure(identity.room)
        room.touch()
        self.broadcast(room.room_id, OutboundEvent.message(identity.name, role, text))
        room.history.append(HistoryEntry(role=role.value, name=identity.name, text=text))
        return True

    def route_client_message(self, sender: ConnectionSession, text: str) -> bool:
        return self.route_chat(sender, Role.CLIENT, text)

    def route_counselor_final(self, sender: ConnectionSession, text: str) -> bool:
        return self.route_chat(sender, Role.COUNSELOR, text)

    def announce(self, room_id: str, text: str) -> None:
        """广播一条系统通知。"""
        self.broadcast(room_id, OutboundEvent.system(text))
