"""
Socket.IO service for real-time chat, presence and call signaling.
"""
from typing import Optional
from urllib.parse import parse_qs

import socketio

from app.config import get_settings
from app.constants import Event
from app.security import InvalidToken, user_id_from_token
from app.services.call_relay import CallSignalingRelay
from app.services.chat_store import ChatStore
from app.services.connection_registry import ConnectionRegistry
from app.services.emitter import emit_to_connections
from app.services.message_router import MessageRouter
from app.services.presence_service import PresenceBroadcaster
from app.utils.logger import get_logger

settings = get_settings()
logger = get_logger("socket")

sio = socketio.AsyncServer(
    cors_allowed_origins=settings.cors_origins or "*",
    async_mode='asgi',
    # connect() emits presence events, which must follow the CONNECT packet
    always_connect=True,
    logger=False,
    engineio_logger=False,
)

registry = ConnectionRegistry()
presence = PresenceBroadcaster(sio, registry)
router = MessageRouter(ChatStore(), registry, sio)
relay = CallSignalingRelay(registry, sio)


def resolve_user_id(environ: Optional[dict], auth: Optional[dict]) -> Optional[str]:
    """Identity of a connecting socket: token subject if given, else the `userId` query parameter."""
    token = None
    if isinstance(auth, dict):
        token = auth.get('token')
    if not token and environ:
        auth_header = environ.get('HTTP_AUTHORIZATION', '')
        if auth_header.startswith('Bearer '):
            token = auth_header
    if token:
        return user_id_from_token(token)
    if settings.SOCKET_AUTH_REQUIRED:
        return None

    query = parse_qs((environ or {}).get('QUERY_STRING', ''))
    values = query.get('userId') or []
    user_id = values[0].strip() if values else ''
    return user_id or None


@sio.on('connect')
async def connect(sid: str, environ: dict, auth: dict = None):
    """Register the socket under its user and announce presence."""
    try:
        user_id = resolve_user_id(environ, auth)
    except InvalidToken as exc:
        logger.warning(f"Connection rejected for {sid}: {exc}")
        return False
    if not user_id:
        logger.warning(f"Connection rejected for {sid}: no user id")
        return False

    await presence.connect(user_id, sid)
    return True


@sio.on('disconnect')
async def disconnect(sid: str, *args):
    await presence.disconnect(sid)


@sio.on(Event.MESSAGE)
async def on_message(sid: str, data):
    await router.handle_message(sid, data)


@sio.on(Event.TYPING)
async def on_typing(sid: str, data):
    await router.handle_typing(sid, data)


@sio.on(Event.MARK_AS_READ)
async def on_mark_as_read(sid: str, data):
    await router.handle_mark_as_read(sid, data)


@sio.on(Event.CALL_OFFER)
async def on_call_offer(sid: str, data):
    await relay.handle_offer(sid, data)


@sio.on(Event.CALL_ANSWER)
async def on_call_answer(sid: str, data):
    await relay.handle_answer(sid, data)


@sio.on(Event.ICE_CANDIDATE)
async def on_ice_candidate(sid: str, data):
    await relay.handle_ice_candidate(sid, data)


@sio.on(Event.CALL_END)
async def on_call_end(sid: str, data):
    await relay.handle_end(sid, data)


async def notify_chat_updated(user_ids) -> None:
    """Hint every connection of the given users to re-fetch their chat list."""
    for user_id in user_ids:
        await emit_to_connections(sio, Event.REFRESH_CHATS, {}, registry.get_connections(user_id))


def get_socket_app(other_asgi_app=None):
    """Get Socket.IO ASGI app, optionally wrapping the HTTP app."""
    return socketio.ASGIApp(sio, other_asgi_app=other_asgi_app, socketio_path='socket.io')
