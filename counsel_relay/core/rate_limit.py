"""
counsel_relay.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口与 WebSocket 事件的限流配置。
"""
from __future__ import annotations

import time

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流，规则见 settings.HTTP_RATE_LIMIT
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的简单 WebSocket 事件限流器。

    记录每个连接上一次被放行的时间，间隔不足 ``interval_seconds`` 的请求被拒绝。
    用于保护外部生成服务，避免咨询师连续刷修改指令。
    """

    def __init__(self, interval_seconds: float = 2.0) -> None:
        self.interval_seconds = interval_seconds
        self._last_allowed: dict[str, float] = {}

    def is_allowed(self, client_id: str) -> bool:
        """检查连接是否允许发送。

        Args:
            client_id: 连接唯一标识。

        Returns:
            是否放行。放行时同时更新上次放行时间。
        """
        now = time.monotonic()
        last_time = self._last_allowed.get(client_id)

        if last_time is None or now - last_time >= self.interval_seconds:
            self._last_allowed[client_id] = now
            return True
        return False

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的记录。"""
        self._last_allowed.pop(client_id, None)
