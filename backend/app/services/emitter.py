"""
Helpers for pushing events to live sockets.

The emitter is anything with the ``AsyncServer.emit(event, data, to=...)``
signature; in production that is the Socket.IO server itself.
"""
from typing import Any, Iterable, Optional, Protocol

from app.constants import ErrorCode, Event
from app.utils.logger import get_logger

logger = get_logger("emitter")


class Emitter(Protocol):
    async def emit(self, event: str, data: Any = None, to: Optional[str] = None, **kwargs) -> None:
        ...


async def emit_to_connections(emitter: Emitter, event: str, data: Any, connection_ids: Iterable[str]) -> int:
    """Best-effort fan-out. Returns how many sockets accepted the event."""
    sent = 0
    for sid in sorted(connection_ids):
        try:
            await emitter.emit(event, data, to=sid)
            sent += 1
        except Exception as exc:
            logger.warning(f"Failed to emit '{event}' to {sid}: {exc}")
    return sent


async def emit_error(
    emitter: Emitter,
    sid: str,
    message: str,
    code: str = ErrorCode.BAD_REQUEST,
    *,
    event: Optional[str] = None,
    client_id: Optional[str] = None,
) -> None:
    """Typed error event for the originating socket only."""
    payload = {"message": message, "code": code}
    if event:
        payload["event"] = event
    if client_id:
        payload["clientId"] = client_id
    await emit_to_connections(emitter, Event.ERROR, payload, [sid])
