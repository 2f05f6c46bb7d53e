from fastapi import Request

from counsel_relay.core.config import settings
from counsel_relay.schemas.events import Identity
from counsel_relay.services.identity import resolve_identity
from counsel_relay.services.relay_server import RelayServer


def get_relay_server(request: Request) -> RelayServer:
    return request.app.state.relay_server


def get_session_token(request: Request) -> str | None:
    return request.query_params.get("token") or request.cookies.get(settings.SESSION_COOKIE_NAME)


def get_session_identity(request: Request) -> Identity | None:
    relay = get_relay_server(request)
    return resolve_identity(relay.sessions.get(get_session_token(request)))
