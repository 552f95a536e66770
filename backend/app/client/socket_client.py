"""
Python client for the realtime chat/call channel.

Outgoing messages carry a generated ``clientId``; the server echoes the
persisted message with the same id, which is how pending copies are
reconciled.
"""
import uuid
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import socketio
from socketio.exceptions import SocketIOError

from app.client.call_state import (
    CallBackend,
    CallPhase,
    CallStateError,
    CallStateMachine,
    RING_TIMEOUT_SECONDS,
)
from app.client.presence import PresenceMap
from app.client.typing_indicator import (
    RECEIVE_TTL_SECONDS,
    SEND_IDLE_SECONDS,
    TypingNotifier,
    TypingTracker,
)
from app.constants import CallType, Event, MessageType
from app.utils.logger import get_logger

logger = get_logger("chat_client")


class ChatClient:
    def __init__(
        self,
        server_url: str,
        user_id: str,
        *,
        token: Optional[str] = None,
        call_backend: Optional[CallBackend] = None,
        auto_accept_calls: bool = True,
        ring_timeout: Optional[float] = RING_TIMEOUT_SECONDS,
        typing_idle_seconds: float = SEND_IDLE_SECONDS,
        typing_ttl_seconds: float = RECEIVE_TTL_SECONDS,
        sio: Optional[socketio.AsyncClient] = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.user_id = user_id
        self.token = token
        self.call_backend = call_backend
        self.auto_accept_calls = auto_accept_calls
        self.ring_timeout = ring_timeout

        self.sio = sio or socketio.AsyncClient(reconnection=True)
        self.presence = PresenceMap()
        self.typing = TypingTracker(typing_ttl_seconds)
        self.typing_notifier = TypingNotifier(self._send_typing, typing_idle_seconds)
        # clientId -> outbound payload awaiting the server echo
        self.pending: Dict[str, dict] = {}
        self.failed: Dict[str, dict] = {}
        self.calls: Dict[str, CallStateMachine] = {}
        self._handlers: Dict[str, List[Callable[[Any], Any]]] = {}

        for event, handler in (
            (Event.MESSAGE, self._on_message),
            (Event.TYPING, self._on_typing),
            (Event.MESSAGES_READ, self._on_messages_read),
            (Event.PRESENCE_UPDATE, self._on_presence_update),
            (Event.PRESENCE_SNAPSHOT, self._on_presence_snapshot),
            (Event.REFRESH_CHATS, self._on_refresh_chats),
            (Event.CALL_OFFER, self._on_call_offer),
            (Event.CALL_ANSWER, self._on_call_answer),
            (Event.ICE_CANDIDATE, self._on_ice_candidate),
            (Event.CALL_END, self._on_call_end),
            (Event.CALL_FAILED, self._on_call_failed),
            (Event.ERROR, self._on_error),
        ):
            self.sio.on(event, handler)
        self.sio.on("disconnect", self._on_disconnect)

    # ------------------------------------------------------------ plumbing

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        """Subscribe application code to an event after internal bookkeeping ran."""
        self._handlers.setdefault(event, []).append(handler)

    async def _dispatch(self, event: str, data: Any = None) -> None:
        for handler in self._handlers.get(event, []):
            result = handler(data)
            if hasattr(result, "__await__"):
                await result

    async def connect(self) -> None:
        url = f"{self.server_url}?{urlencode({'userId': self.user_id})}"
        auth = {"token": self.token} if self.token else None
        await self.sio.connect(url, auth=auth, transports=["websocket"])

    async def disconnect(self) -> None:
        for machine in self.calls.values():
            await machine.end_call()
        self.typing_notifier.cancel_all()
        self.typing.clear()
        await self.sio.disconnect()

    async def emit(self, event: str, data: dict) -> None:
        await self.sio.emit(event, data)

    # ------------------------------------------------------------ chat

    async def send_message(
        self,
        receiver_id: str,
        content: str = "",
        *,
        chat_id: Optional[str] = None,
        message_type: MessageType = MessageType.TEXT,
        file_url: Optional[str] = None,
        file_name: Optional[str] = None,
        file_mime_type: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> str:
        """Emit a message and keep it pending until the persisted echo arrives."""
        client_id = uuid.uuid4().hex
        payload = {
            "clientId": client_id,
            "senderId": self.user_id,
            "receiverId": receiver_id,
            "chatId": chat_id,
            "content": content,
            "messageType": MessageType(message_type).value,
        }
        for key, value in (
            ("fileUrl", file_url),
            ("fileName", file_name),
            ("fileMimeType", file_mime_type),
            ("fileSize", file_size),
        ):
            if value is not None:
                payload[key] = value
        self.pending[client_id] = payload
        try:
            await self.typing_notifier.stop(chat_id, receiver_id)
            await self.emit(Event.MESSAGE, payload)
        except SocketIOError:
            self.failed[client_id] = self.pending.pop(client_id)
            raise
        return client_id

    async def mark_as_read(self, chat_id: str, sender_id: Optional[str] = None) -> None:
        await self.emit(Event.MARK_AS_READ, {
            "chatId": chat_id, "senderId": sender_id, "receiverId": self.user_id,
        })

    async def keystroke(self, chat_id: Optional[str], receiver_id: str) -> None:
        await self.typing_notifier.keystroke(chat_id, receiver_id)

    async def _send_typing(self, chat_id: Optional[str], receiver_id: str, is_typing: bool) -> None:
        await self.emit(Event.TYPING, {
            "chatId": chat_id, "senderId": self.user_id, "receiverId": receiver_id, "isTyping": is_typing,
        })

    async def _on_message(self, data: dict) -> None:
        client_id = data.get("clientId")
        if data.get("senderId") == self.user_id and client_id:
            self.pending.pop(client_id, None)
        await self._dispatch(Event.MESSAGE, data)

    async def _on_typing(self, data: dict) -> None:
        self.typing.update(data.get("chatId"), data.get("senderId"), bool(data.get("isTyping")), self.user_id)
        await self._dispatch(Event.TYPING, data)

    async def _on_messages_read(self, data: dict) -> None:
        await self._dispatch(Event.MESSAGES_READ, data)

    async def _on_presence_update(self, data: dict) -> None:
        self.presence.apply_update(data.get("userId"), bool(data.get("isOnline")))
        await self._dispatch(Event.PRESENCE_UPDATE, data)

    async def _on_presence_snapshot(self, data: dict) -> None:
        self.presence.apply_snapshot(data.get("onlineUserIds") or [])
        await self._dispatch(Event.PRESENCE_SNAPSHOT, data)

    async def _on_refresh_chats(self, data: Any = None) -> None:
        await self._dispatch(Event.REFRESH_CHATS, data)

    async def _on_error(self, data: Any) -> None:
        client_id = data.get("clientId") if isinstance(data, dict) else None
        if client_id and client_id in self.pending:
            self.failed[client_id] = self.pending.pop(client_id)
        logger.warning(f"Server error: {data}")
        await self._dispatch(Event.ERROR, data)

    async def _on_disconnect(self, *args) -> None:
        # No echo can arrive for these any more; they are retried from `failed`.
        if self.pending:
            logger.warning(f"Disconnected with {len(self.pending)} unconfirmed message(s)")
            self.failed.update(self.pending)
            self.pending.clear()
        self.presence.clear()
        self.typing.clear()

    # ------------------------------------------------------------ calls

    def call_for(self, peer_id: str) -> CallStateMachine:
        machine = self.calls.get(peer_id)
        if machine is None:
            if self.call_backend is None:
                raise CallStateError("No call backend configured")
            machine = CallStateMachine(
                self.user_id,
                peer_id,
                self.call_backend,
                self.emit,
                auto_accept=self.auto_accept_calls,
                ring_timeout=self.ring_timeout,
            )
            self.calls[peer_id] = machine
        return machine

    def active_call(self) -> Optional[CallStateMachine]:
        for machine in self.calls.values():
            if machine.in_progress:
                return machine
        return None

    async def start_call(self, peer_id: str, call_type: CallType = CallType.AUDIO) -> CallStateMachine:
        current = self.active_call()
        if current is not None and current.peer_id != peer_id:
            raise CallStateError(f"Already in a call with {current.peer_id}")
        machine = self.call_for(peer_id)
        await machine.initiate_call(call_type)
        return machine

    async def _on_call_offer(self, data: dict) -> None:
        caller = data.get("from")
        if not caller:
            return
        if self.call_backend is None:
            logger.info(f"Incoming call from {caller} ignored: no call backend")
            return
        current = self.active_call()
        if current is not None and current.peer_id != caller:
            logger.info(f"Busy with {current.peer_id}: ignoring call from {caller}")
            return
        await self._dispatch(Event.CALL_OFFER, data)
        await self.call_for(caller).handle_offer(data)

    async def _on_call_answer(self, data: dict) -> None:
        machine = self.calls.get(data.get("from"))
        if machine:
            await machine.handle_answer(data)

    async def _on_ice_candidate(self, data: dict) -> None:
        peer = data.get("from")
        if not peer or (peer not in self.calls and self.call_backend is None):
            return
        await self.call_for(peer).handle_ice_candidate(data)

    async def _on_call_end(self, data: dict) -> None:
        machine = self.calls.get(data.get("from"))
        if machine is None:
            call_id = data.get("callId")
            machine = next(
                (m for m in self.calls.values() if m.session and m.session.call_id == call_id), None
            )
        if machine:
            await machine.handle_call_end(data)
        await self._dispatch(Event.CALL_END, data)

    async def _on_call_failed(self, data: dict) -> None:
        call_id = data.get("callId")
        for machine in self.calls.values():
            if machine.phase in (CallPhase.INITIATING, CallPhase.RINGING) and (
                not call_id or (machine.session and machine.session.call_id == call_id)
            ):
                await machine.handle_call_failed(data)
        await self._dispatch(Event.CALL_FAILED, data)
