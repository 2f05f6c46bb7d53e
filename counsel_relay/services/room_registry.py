"""
counsel_relay.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

咨询室领域模型与房间注册表。

``RoomRegistry`` 在应用 lifespan 中创建，并以引用方式交给路由、
草稿流水线和中继服务，不使用进程级全局字典。

所有修改都发生在事件循环上的同步代码段里（查找 / 创建房间、
更新成员和 ``last_client_utterance``），因此不需要加锁。
"""
from __future__ import annotations

import secrets
import time
from collections import deque
from typing import TYPE_CHECKING

from counsel_relay.core.logging import get_logger
from counsel_relay.schemas.events import DraftPayload, HistoryEntry, Role
from counsel_relay.schemas.rooms import RoomInfoData

if TYPE_CHECKING:
    from counsel_relay.services.connection import ConnectionSession

logger = get_logger(__name__)


class Room:
    """一个咨询室。

    Attributes:
        room_id: 房间码。
        members: 广播组，连接 ID → 已入场的连接（任意角色）。
        client_connection_id: 当前记录的来访者连接（后到者覆盖）。
        counselor_connection_id: 当前记录的咨询师连接（后到者覆盖），AI 事件只发给它。
        last_client_utterance: 最近一条来访者消息，修改草稿时以它为依据。
        current_draft: 最近一次投递的草稿。
        draft_seq: 生成请求序号，用于丢弃过期结果。
        inflight: 尚未完成的生成请求数。
        last_active: 最近一次活动的单调时钟时间。
    """

    def __init__(self, room_id: str, history_limit: int = 200) -> None:
        self.room_id = room_id
        self.members: dict[str, ConnectionSession] = {}
        self.client_connection_id: str | None = None
        self.counselor_connection_id: str | None = None
        self.last_client_utterance: str = ""
        self.history: deque[HistoryEntry] = deque(maxlen=history_limit)
        self.current_draft: DraftPayload | None = None
        self.draft_seq: int = 0
        self.inflight: int = 0
        self.last_active: float = time.monotonic()

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def tracked_id(self, role: Role) -> str | None:
        if role is Role.CLIENT:
            return self.client_connection_id
        return self.counselor_connection_id

    def set_tracked_id(self, role: Role, connection_id: str | None) -> None:
        if role is Role.CLIENT:
            self.client_connection_id = connection_id
        else:
            self.counselor_connection_id = connection_id

    def latest_member_id(self, role: Role) -> str | None:
        """仍在房间内、指定角色中最近入场的连接 ID。"""
        for connection_id, session in reversed(self.members.items()):
            if session.identity is not None and session.identity.role is role:
                return connection_id
        return None

    def _counselor_member(self, connection_id: str | None) -> ConnectionSession | None:
        if connection_id is None:
            return None
        session = self.members.get(connection_id)
        if session is None or session.identity is None or session.identity.role is not Role.COUNSELOR:
            return None
        return session

    def counselor(self, prefer: str | None = None) -> ConnectionSession | None:
        """AI 事件的接收方。

        ``prefer`` 指定的连接仍以咨询师身份在房间内时返回它，
        否则返回当前记录的咨询师连接；已离开或角色不符时返回 ``None``。
        """
        return self._counselor_member(prefer) or self._counselor_member(self.counselor_connection_id)

    @property
    def online_count(self) -> int:
        return len(self.members)

    @property
    def is_idle(self) -> bool:
        """无人在线且没有进行中的生成请求。"""
        return not self.members and self.inflight == 0

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room_id=self.room_id,
            online_count=self.online_count,
            has_client=self.client_connection_id is not None,
            has_counselor=self.counselor_connection_id is not None,
        )


class RoomRegistry:
    """内存中的房间表：房间码 → ``Room``。"""

    def __init__(self, history_limit: int = 200, code_bytes: int = 9) -> None:
        self._rooms: dict[str, Room] = {}
        self._history_limit = history_limit
        self._code_bytes = code_bytes

    def ensure(self, room_id: str) -> Room:
        """获取指定房间，不存在则创建一个空房间。"""
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id, history_limit=self._history_limit)
            self._rooms[room_id] = room
            logger.info("咨询室已创建 | room=%s", room_id)
        return room

    def get(self, room_id: str) -> Room | None:
        """只查找不创建。异步回调里必须用它重新取当前状态。"""
        return self._rooms.get(room_id)

    def create_room(self) -> Room:
        """生成一个不可猜测、且不与现存房间冲突的房间码并创建房间。"""
        while True:
            room_id = secrets.token_urlsafe(self._code_bytes)
            if room_id not in self._rooms:
                return self.ensure(room_id)

    def list_rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def evict_idle(self, ttl_seconds: float, now: float | None = None) -> list[str]:
        """回收闲置超过 ``ttl_seconds`` 的空房间。

        Returns:
            被回收的房间码列表。
        """
        current = time.monotonic() if now is None else now
        expired = [
            room_id
            for room_id, room in self._rooms.items()
            if room.is_idle and current - room.last_active >= ttl_seconds
        ]
        for room_id in expired:
            del self._rooms[room_id]
        if expired:
            logger.info("回收闲置咨询室 %d 个 | 剩余 %d", len(expired), len(self._rooms))
        return expired

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
