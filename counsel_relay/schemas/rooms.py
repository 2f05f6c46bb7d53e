"""
counsel_relay.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~~~~~~

咨询室相关的 REST 请求/响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field

from counsel_relay.schemas.events import HistoryEntry, Role


class EnterRequest(BaseModel):
    """入场请求体：声明本浏览器会话的身份。"""

    name: str = Field(..., min_length=1, max_length=50, description="显示名称")
    role: Role = Field(..., description="角色：client / counselor")
    room: str = Field(..., min_length=1, max_length=64, description="房间码")


class EnterResponseData(BaseModel):
    """入场响应数据。``token`` 同时写入会话 Cookie。"""

    token: str = Field(..., description="会话令牌，连接 WebSocket 时携带")
    name: str
    role: Role
    room: str


class RoomCreatedData(BaseModel):
    room_id: str = Field(..., description="新生成的房间码")


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间码")
    online_count: int = Field(..., description="当前在线连接数")
    has_client: bool = Field(..., description="是否有来访者在线")
    has_counselor: bool = Field(..., description="是否有咨询师在线")


class HistoryResponseData(BaseModel):
    """房间内存历史响应数据。"""

    room_id: str = Field(..., description="房间码")
    messages: list[HistoryEntry] = Field(..., description="消息列表（时间正序）")
    total: int = Field(..., description="本次返回条数")
