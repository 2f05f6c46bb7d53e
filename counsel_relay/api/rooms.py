"""
counsel_relay.api.rooms
~~~~~~~~~~~~~~~~~~~~~~~

咨询室 REST 接口 —— 房间码生成、入场、房间信息与内存历史。

端点:
  - ``POST /rooms``                    → 生成一个新的房间码
  - ``POST /enter``                    → 声明身份，写入会话存储并下发会话 Cookie
  - ``GET  /rooms/{room_id}``          → 房间摘要
  - ``GET  /rooms/{room_id}/history``  → 房间内存历史（仅本房间参与者）
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from counsel_relay.api.deps import get_relay_server, get_session_identity, get_session_token
from counsel_relay.core.config import settings
from counsel_relay.core.logging import get_logger
from counsel_relay.core.rate_limit import limiter
from counsel_relay.schemas.api_response import ApiResponse
from counsel_relay.schemas.events import Identity, Role
from counsel_relay.schemas.rooms import (
    EnterRequest,
    EnterResponseData,
    HistoryResponseData,
    RoomCreatedData,
    RoomInfoData,
)
from counsel_relay.services.identity import resolve_identity
from counsel_relay.services.relay_server import RelayServer

logger = get_logger(__name__)

router: APIRouter = APIRouter()


# ── 房间与入场 ────────────────────────────────────────────────────────

@router.post("/rooms", summary="生成新的房间码", response_model=ApiResponse[RoomCreatedData])
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def create_room(
    request: Request,
    relay: RelayServer = Depends(get_relay_server),
) -> ApiResponse[RoomCreatedData]:
    """生成一个不可猜测的房间码并创建空房间。"""
    room = relay.registry.create_room()
    return ApiResponse.ok(data=RoomCreatedData(room_id=room.room_id))


@router.post("/enter", summary="进入咨询室", response_model=ApiResponse[EnterResponseData])
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def enter(
    request: Request,
    response: Response,
    body: EnterRequest,
    relay: RelayServer = Depends(get_relay_server),
) -> ApiResponse[EnterResponseData]:
    """声明本次会话的身份（姓名、角色、房间码）。

    身份写入会话存储，令牌通过 Cookie 下发，同时在响应体中返回，
    供无法携带 Cookie 的客户端以 ``?token=`` 方式连接 WebSocket。
    请求已携带会话令牌时，旧令牌作废。
    """
    data = {"name": body.name, "role": body.role.value, "room": body.room}
    identity = resolve_identity(data)
    if identity is None:
        raise HTTPException(status_code=400, detail="缺少必填字段")

    # 重复入场时旧令牌作废
    relay.sessions.revoke(get_session_token(request))
    token = relay.sessions.issue(identity.model_dump(mode="json"))
    relay.registry.ensure(identity.room)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        httponly=True,
        samesite="lax",
        secure=settings.is_prod,
    )
    logger.info("会话已建立 | room=%s | role=%s", identity.room, identity.role.value)
    return ApiResponse.ok(
        data=EnterResponseData(
            token=token,
            name=identity.name,
            role=identity.role,
            room=identity.room,
        ),
    )


# ── 房间信息 ──────────────────────────────────────────────────────────

@router.get("/rooms/{room_id}", summary="获取房间摘要", response_model=ApiResponse[RoomInfoData])
async def room_info(
    room_id: str,
    relay: RelayServer = Depends(get_relay_server),
) -> ApiResponse[RoomInfoData]:
    """返回指定房间的在线情况。房间不存在时返回 404。"""
    room = relay.registry.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="房间不存在")
    return ApiResponse.ok(data=room.info())


@router.get(
    "/rooms/{room_id}/history",
    summary="获取房间内存历史",
    response_model=ApiResponse[HistoryResponseData],
)
async def get_history(
    room_id: str,
    limit: int = Query(100, ge=1, le=500, description="返回最近的条数"),
    relay: RelayServer = Depends(get_relay_server),
    identity: Identity | None = Depends(get_session_identity),
) -> ApiResponse[HistoryResponseData]:
    """返回房间最近的消息与草稿（时间正序）。

    只有会话身份属于该房间的参与者可以查看；AI 草稿只对咨询师可见。
    历史只保存在内存中，进程重启后清空。
    """
    if identity is None or identity.room != room_id:
        raise HTTPException(status_code=403, detail="无权查看该房间")
    room = relay.registry.get(room_id)
    entries = list(room.history) if room is not None else []
    if identity.role is not Role.COUNSELOR:
        entries = [entry for entry in entries if entry.role != "ai"]
    messages = entries[-limit:]
    return ApiResponse.ok(
        data=HistoryResponseData(room_id=room_id, messages=messages, total=len(messages)),
    )
