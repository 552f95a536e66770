"""
Routes chat events coming from a live socket.

Write-before-broadcast: a message is only emitted after the store accepted
it. Every store call is an await, so connection sets are read again right
before emitting.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.constants import ErrorCode, Event
from app.schemas import MarkReadIn, MessageIn, TypingIn
from app.services.chat_store import ChatNotFound, ChatStore, ChatStoreError, InvalidParticipants
from app.services.connection_registry import ConnectionRegistry
from app.services.emitter import Emitter, emit_error, emit_to_connections
from app.utils.chat_helpers import message_payload, pair_key
from app.utils.logger import get_logger

logger = get_logger("message_router")


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts) or "Invalid payload"


class MessageRouter:
    def __init__(self, store: ChatStore, registry: ConnectionRegistry, emitter: Emitter) -> None:
        self.store = store
        self.registry = registry
        self.emitter = emitter
        # pair key -> [lock, holders + waiters]
        self._chat_locks: Dict[str, List] = {}

    def _caller(self, sid: str) -> Optional[str]:
        return self.registry.user_for(sid)

    @asynccontextmanager
    async def _chat_lock(self, key: str):
        """Serialize persist + fan-out per chat so receivers see messages in stored order."""
        entry = self._chat_locks.get(key)
        if entry is None:
            entry = self._chat_locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._chat_locks.pop(key, None)

    async def handle_message(self, sid: str, data) -> Optional[dict]:
        """Persist an outbound chat message and fan it out. Returns the emitted payload."""
        client_id = data.get("clientId") if isinstance(data, dict) else None
        user_id = self._caller(sid)
        if user_id is None:
            await emit_error(self.emitter, sid, "Unauthorized", ErrorCode.UNAUTHORIZED,
                             event=Event.MESSAGE, client_id=client_id)
            return None

        try:
            msg = MessageIn.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as exc:
            await emit_error(self.emitter, sid, describe_validation_error(exc), ErrorCode.BAD_REQUEST,
                             event=Event.MESSAGE, client_id=client_id)
            return None

        if msg.sender_id != user_id:
            await emit_error(self.emitter, sid, "senderId does not match this connection", ErrorCode.FORBIDDEN,
                             event=Event.MESSAGE, client_id=client_id)
            return None

        async with self._chat_lock(pair_key(msg.sender_id, msg.receiver_id)):
            return await self._deliver(sid, user_id, msg, client_id)

    async def _deliver(self, sid: str, user_id: str, msg: MessageIn, client_id: Optional[str]) -> Optional[dict]:
        try:
            if msg.chat_id:
                chat = await self.store.get_chat(msg.chat_id)
            else:
                chat = await self.store.get_or_create_chat(msg.sender_id, msg.receiver_id)
            message = await self.store.save_message(
                chat_id=chat.id,
                sender_id=msg.sender_id,
                receiver_id=msg.receiver_id,
                content=msg.content,
                message_type=msg.message_type,
                file_url=msg.file_url,
                file_name=msg.file_name,
                file_mime_type=msg.file_mime_type,
                file_size=msg.file_size,
                client_id=msg.client_id,
            )
        except ChatNotFound:
            await emit_error(self.emitter, sid, "Chat not found", ErrorCode.NOT_FOUND,
                             event=Event.MESSAGE, client_id=client_id)
            return None
        except InvalidParticipants:
            await emit_error(self.emitter, sid, "Sender and receiver are not the participants of this chat",
                             ErrorCode.FORBIDDEN, event=Event.MESSAGE, client_id=client_id)
            return None
        except ChatStoreError as exc:
            logger.error(f"Message from {user_id} not persisted: {exc}")
            await emit_error(self.emitter, sid, "Failed to send message.", ErrorCode.SERVER_ERROR,
                             event=Event.MESSAGE, client_id=client_id)
            return None

        payload = message_payload(message)

        # Fresh reads: sockets may have come and gone during the awaits above.
        sender_sids = self.registry.get_connections(msg.sender_id)
        receiver_sids = self.registry.get_connections(msg.receiver_id)
        await emit_to_connections(self.emitter, Event.MESSAGE, payload, sender_sids)
        delivered = await emit_to_connections(self.emitter, Event.MESSAGE, payload, receiver_sids)
        await emit_to_connections(self.emitter, Event.REFRESH_CHATS, {}, receiver_sids)

        logger.info(
            f"Message {message.id} - Chat: {message.chat_id}, Sender: {msg.sender_id}, "
            f"Receiver: {msg.receiver_id} ({delivered} live connection(s))"
        )

        if delivered:
            try:
                await self.store.mark_delivered(message.id)
            except ChatStoreError as exc:
                logger.warning(f"Could not flag message {message.id} delivered: {exc}")
        return payload

    async def handle_typing(self, sid: str, data) -> None:
        user_id = self._caller(sid)
        if user_id is None:
            await emit_error(self.emitter, sid, "Unauthorized", ErrorCode.UNAUTHORIZED, event=Event.TYPING)
            return
        try:
            typing = TypingIn.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as exc:
            await emit_error(self.emitter, sid, describe_validation_error(exc), ErrorCode.BAD_REQUEST,
                             event=Event.TYPING)
            return
        if typing.sender_id != user_id:
            await emit_error(self.emitter, sid, "senderId does not match this connection", ErrorCode.FORBIDDEN,
                             event=Event.TYPING)
            return

        await emit_to_connections(
            self.emitter,
            Event.TYPING,
            {"chatId": typing.chat_id, "senderId": typing.sender_id, "isTyping": typing.is_typing},
            self.registry.get_connections(typing.receiver_id),
        )

    async def handle_mark_as_read(self, sid: str, data) -> int:
        """Mark the caller's unread messages in a chat as read and tell the other side."""
        user_id = self._caller(sid)
        if user_id is None:
            await emit_error(self.emitter, sid, "Unauthorized", ErrorCode.UNAUTHORIZED, event=Event.MARK_AS_READ)
            return 0
        try:
            req = MarkReadIn.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as exc:
            await emit_error(self.emitter, sid, describe_validation_error(exc), ErrorCode.BAD_REQUEST,
                             event=Event.MARK_AS_READ)
            return 0
        if req.receiver_id != user_id:
            await emit_error(self.emitter, sid, "Only the receiver can mark messages as read", ErrorCode.FORBIDDEN,
                             event=Event.MARK_AS_READ)
            return 0

        try:
            chat = await self.store.get_chat(req.chat_id)
            if req.receiver_id not in chat.participants:
                await emit_error(self.emitter, sid, "Not a participant of this chat", ErrorCode.FORBIDDEN,
                                 event=Event.MARK_AS_READ)
                return 0
            updated = await self.store.mark_read(chat.id, req.receiver_id)
        except ChatNotFound:
            await emit_error(self.emitter, sid, "Chat not found", ErrorCode.NOT_FOUND, event=Event.MARK_AS_READ)
            return 0
        except ChatStoreError as exc:
            logger.error(f"Mark as read failed for chat {req.chat_id}: {exc}")
            await emit_error(self.emitter, sid, "Failed to mark messages as read.", ErrorCode.SERVER_ERROR,
                             event=Event.MARK_AS_READ)
            return 0

        other = chat.other_participant(req.receiver_id)
        await emit_to_connections(
            self.emitter,
            Event.MESSAGES_READ,
            {"chatId": str(chat.id), "readerId": req.receiver_id},
            self.registry.get_connections(other) if other else (),
        )
        logger.debug(f"{req.receiver_id} read {updated} message(s) in chat {chat.id}")
        return updated
