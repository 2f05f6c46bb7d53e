"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

WebSocketRateLimiter 单元测试。
"""
from __future__ import annotations

from unittest.mock import patch

from counsel_relay.core.rate_limit import WebSocketRateLimiter


class TestWebSocketRateLimiter:
    """测试按连接的最小间隔限流。"""

    def test_first_request_is_allowed(self) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=60)

        assert limiter.is_allowed("conn-1") is True

    def test_second_request_within_interval_is_rejected(self) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=2.0)

        with patch("counsel_relay.core.rate_limit.time.monotonic", side_effect=[100.0, 101.0, 102.5]):
            assert limiter.is_allowed("conn-1") is True
            assert limiter.is_allowed("conn-1") is False
            assert limiter.is_allowed("conn-1") is True

    def test_connections_are_independent(self) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=60)

        assert limiter.is_allowed("conn-1") is True
        assert limiter.is_allowed("conn-2") is True

    def test_remove_client_resets(self) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=60)
        limiter.is_allowed("conn-1")

        limiter.remove_client("conn-1")
        limiter.remove_client("never-seen")

        assert limiter.is_allowed("conn-1") is True
