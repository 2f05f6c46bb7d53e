"""
counsel_relay.services.session_store
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

进程内会话存储：不透明令牌 → 入场时声明的身份字段。

HTTP 入场接口写入，WebSocket 连接时由 ``resolve_identity`` 读取。
重复入场时旧令牌作废；房间被回收时，指向它的令牌一并作废。
仅在进程生命周期内有效，持有令牌即视为持有该身份。
"""
from __future__ import annotations

import secrets
from collections.abc import Mapping


class SessionStore:
    """令牌到会话数据的内存映射。"""

    def __init__(self, token_bytes: int = 24) -> None:
        self._sessions: dict[str, dict[str, str]] = {}
        self._token_bytes = token_bytes

    def issue(self, data: Mapping[str, str]) -> str:
        """保存一份会话数据并返回新令牌。"""
        token = secrets.token_urlsafe(self._token_bytes)
        self._sessions[token] = dict(data)
        return token

    def get(self, token: str | None) -> dict[str, str] | None:
        if not token:
            return None
        data = self._sessions.get(token)
        return dict(data) if data is not None else None

    def revoke(self, token: str | None) -> bool:
        """作废一个令牌，返回它是否存在。"""
        if not token:
            return False
        return self._sessions.pop(token, None) is not None

    def revoke_room(self, room_id: str) -> int:
        """作废指向指定房间的全部令牌，返回作废数量。"""
        tokens = [token for token, data in self._sessions.items() if data.get("room") == room_id]
        for token in tokens:
            del self._sessions[token]
        return len(tokens)

    def __len__(self) -> int:
        return len(self._sessions)
