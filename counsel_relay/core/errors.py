"""
counsel_relay.core.errors
~~~~~~~~~~~~~~~~~~~~~~~~~

草稿生成链路的错误定义。

``GenerationError.detail`` 只用于服务端日志，绝不能原样发给任何连接；
推送给咨询师的永远是策略中配置的通用提示语。
"""
from __future__ import annotations

from typing import Literal

GenerationFailureReason = Literal["timeout", "provider", "empty"]


class GenerationError(Exception):
    """外部文本生成调用失败（网络 / 服务商错误、超时、空输出）。

    Attributes:
        reason: 失败类别。
        detail: 上游原始错误描述，仅记录日志。
    """

    def __init__(self, reason: GenerationFailureReason, detail: str = "") -> None:
        self.reason: GenerationFailureReason = reason
        self.detail = detail
        super().__init__(f"generation failed ({reason}): {detail}" if detail else f"generation failed ({reason})")
