"""
counsel_relay.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接会话 —— 把一条 WebSocket 连接绑定到一个身份和一个房间。

出站事件先同步放入本连接的有序发件箱（``outbox``），再由 ``writer_loop``
逐条写入 socket。路由器因此可以在同步代码段里完成广播，
同一房间的实时事件按路由顺序到达每个接收方。
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import WebSocket

from counsel_relay.core.logging import get_logger
from counsel_relay.schemas.events import Identity, OutboundEvent

logger = get_logger(__name__)


class ConnectionSession:
    """单条连接的会话状态。

    Attributes:
        connection_id: 连接唯一标识。
        websocket: 底层 WebSocket 连接。
        identity: 入场后绑定的身份；未入场的连接为 ``None``，不参与任何路由。
        session_token: 连接时携带的会话令牌（可能为空）。
        outbox: 待发送的 JSON 帧队列。
    """

    def __init__(
        self,
        websocket: WebSocket,
        session_token: str | None = None,
        outbox_size: int = 256,
        connection_id: str | None = None,
    ) -> None:
        self.connection_id: str = connection_id or uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.session_token = session_token
        self.identity: Identity | None = None
        self.outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size)
        self.closed: bool = False

    @property
    def joined(self) -> bool:
        return self.identity is not None

    def attach(self, identity: Identity) -> bool:
        """绑定身份。身份一经绑定不可更换，重复绑定返回 ``False``。"""
        if self.identity is not None:
            return False
        self.identity = identity
        return True

    def send(self, event: OutboundEvent) -> None:
        """把事件放入发件箱（不等待写出）。

        尽力投递：连接已关闭或发件箱已满时直接丢弃该事件。
        """
        if self.closed:
            return
        try:
            self.outbox.put_nowait(event.to_json())
        except asyncio.QueueFull:
            logger.warning("发件箱已满，丢弃事件 | conn=%s | event=%s", self.connection_id, event.event)

    def close(self) -> None:
        self.closed = True

    async def writer_loop(self) -> None:
        """持续把发件箱中的帧写入 socket，写失败时结束。"""
        while True:
            frame = await self.outbox.get()
            try:
                await self.websocket.send_text(frame)
            except Exception as e:
                logger.warning("发送失败，停止写出 | conn=%s | %s", self.connection_id, e)
                self.close()
                return

    def __repr__(self) -> str:
        return f"ConnectionSession(id={self.connection_id!r}, identity={self.identity!r})"
