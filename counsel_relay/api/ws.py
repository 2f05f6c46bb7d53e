"""
counsel_relay.api.ws
~~~~~~~~~~~~~~~~~~~~

WebSocket 实时中继接口。

提供 ``/ws`` 端点。身份来自会话令牌（查询参数 ``token`` 或会话 Cookie），
解析成功即加入对应咨询室；否则连接保持未入场，
只有旧客户端的 ``join`` 事件能让它入场。

每条连接并发运行两个协程：
  - 接收循环：读取入站帧，交给 ``RelayServer.handle_event`` 同步处理
  - 写出循环：把发件箱中的出站帧按顺序写入 socket
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from counsel_relay.core.config import settings
from counsel_relay.core.logging import connection_id_ctx_var, get_logger
from counsel_relay.services.relay_server import RelayServer

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_relay_endpoint(websocket: WebSocket, token: str | None = None) -> None:
    """咨询室 WebSocket 端点。

    帧格式为 JSON ``{"event": ..., "data": ...}``，协议详见
    ``counsel_relay.schemas.events``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        token: 可选的会话令牌；缺省时读取会话 Cookie。
    """
    relay: RelayServer = websocket.app.state.relay_server
    session_token = token or websocket.cookies.get(settings.SESSION_COOKIE_NAME)

    await websocket.accept()
    session = relay.open_session(websocket, session_token)
    ctx_token = connection_id_ctx_var.set(session.connection_id)
    relay.admit(session)
    writer = asyncio.create_task(session.writer_loop())

    try:
        while True:
            raw: str = await websocket.receive_text()
            relay.handle_event(session, raw)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        relay.disconnect(session)
        writer.cancel()
        connection_id_ctx_var.reset(ctx_token)
