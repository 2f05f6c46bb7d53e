"""
counsel_relay.services.identity
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

身份解析：从外部会话数据中得到 ``Identity``。

解析失败只意味着"不加入任何房间"，不会向连接方报错。
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from counsel_relay.core.logging import get_logger
from counsel_relay.schemas.events import Identity, Role

logger = get_logger(__name__)

_VALID_ROLES: dict[str, Role] = {role.value: role for role in Role}


def resolve_identity(session: Mapping[str, Any] | None) -> Identity | None:
    """从会话数据解析身份。

    ``name`` / ``role`` / ``room`` 任一缺失或为空白，或 ``role`` 不是
    ``client`` / ``counselor`` 之一时，返回 ``None``。

    Args:
        session: 会话存储中的数据（或旧客户端 ``join`` 事件的负载）。

    Returns:
        解析出的 ``Identity``，失败时为 ``None``。
    """
    if not isinstance(session, Mapping):
        return None

    fields: dict[str, str] = {}
    for key in ("name", "role", "room"):
        value = session.get(key)
        if not isinstance(value, str) or not value.strip():
            logger.debug("身份解析失败：缺少字段 %s", key)
            return None
        fields[key] = value.strip()

    role = _VALID_ROLES.get(fields["role"])
    if role is None:
        logger.debug("身份解析失败：未知角色 %r", fields["role"])
        return None

    return Identity(name=fields["name"], role=role, room=fields["room"])
