"""
Durable chat and message storage (Beanie / MongoDB).

A chat is identified by its normalized participant pair. The unique index on
``Chat.pair_key`` is what keeps two concurrent "start chat" requests from
creating two documents; the loser of that race re-reads the winner's row.
"""
from dataclasses import dataclass
from typing import List, Optional

from beanie import PydanticObjectId as OID
from beanie.operators import LT, Or, Set as UpdateSet
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.config import get_settings
from app.constants import MessageType
from app.models import Chat, Message
from app.utils.chat_helpers import normalize_pair, pair_key
from app.utils.logger import get_logger

logger = get_logger("chat_store")
settings = get_settings()


class ChatStoreError(Exception):
    """The datastore failed or rejected a write."""


class ChatNotFound(ChatStoreError):
    def __init__(self, chat_id):
        super().__init__(f"Chat {chat_id} not found")
        self.chat_id = chat_id


class InvalidParticipants(ChatStoreError):
    """Sender/receiver are not the two distinct members of the chat."""


@dataclass
class ChatSummary:
    chat: Chat
    other_participant: Optional[str]
    last_message: Optional[Message]
    unread_count: int


def _to_oid(value) -> OID:
    if isinstance(value, OID):
        return value
    try:
        return OID(str(value))
    except (InvalidId, TypeError):
        raise ChatNotFound(value)


class ChatStore:
    """Chat/Message repository used by the socket router and the REST API."""

    async def _find_by_pair(self, key: str) -> Optional[Chat]:
        return await Chat.find_one(Chat.pair_key == key)

    async def get_or_create_chat(self, user_a_id: str, user_b_id: str) -> Chat:
        if not user_a_id or not user_b_id or str(user_a_id) == str(user_b_id):
            raise InvalidParticipants("A chat needs two distinct participants")

        key = pair_key(user_a_id, user_b_id)
        try:
            chat = await self._find_by_pair(key)
            if chat:
                return chat

            chat = Chat(participants=list(normalize_pair(user_a_id, user_b_id)), pair_key=key)
            try:
                await chat.insert()
            except DuplicateKeyError:
                # Someone else created it between our read and our insert.
                existing = await self._find_by_pair(key)
                if existing is None:
                    raise ChatStoreError(f"Chat for {key} vanished after a duplicate insert")
                logger.debug(f"Chat create race for {key}, reusing {existing.id}")
                return existing
        except PyMongoError as exc:
            logger.error(f"Failed to get or create chat {key}: {exc}", exc_info=True)
            raise ChatStoreError(str(exc)) from exc

        logger.info(f"Created chat {chat.id} for {key}")
        return chat

    async def get_chat(self, chat_id) -> Chat:
        oid = _to_oid(chat_id)
        try:
            chat = await Chat.get(oid)
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc
        if not chat:
            raise ChatNotFound(chat_id)
        return chat

    async def save_message(
        self,
        *,
        chat_id,
        sender_id: str,
        receiver_id: str,
        content: str = "",
        message_type: MessageType = MessageType.TEXT,
        file_url: Optional[str] = None,
        file_name: Optional[str] = None,
        file_mime_type: Optional[str] = None,
        file_size: Optional[int] = None,
        client_id: Optional[str] = None,
    ) -> Message:
        """Insert a message and bump its chat. Id and timestamp are assigned here."""
        chat = await self.get_chat(chat_id)
        if sender_id == receiver_id or {sender_id, receiver_id} != set(chat.participants):
            raise InvalidParticipants(f"{sender_id} -> {receiver_id} is not a member pair of chat {chat.id}")

        message = Message(
            chat_id=chat.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content or "",
            message_type=message_type,
            file_url=file_url,
            file_name=file_name,
            file_mime_type=file_mime_type,
            file_size=file_size,
            client_id=client_id,
        )
        try:
            await message.insert()
        except PyMongoError as exc:
            logger.error(f"Failed to persist message in chat {chat.id}: {exc}", exc_info=True)
            raise ChatStoreError(str(exc)) from exc

        await self._bump_chat(chat.id, message)
        return message

    async def _bump_chat(self, chat_id: OID, message: Message) -> None:
        """Point the chat at `message` unless a newer message already got there."""
        # Message ids are issued in insert order, so a late bump for an older
        # message matches nothing.
        try:
            await Chat.find_one(
                Chat.id == chat_id,
                Or(Chat.last_message_id == None, LT(Chat.last_message_id, message.id)),  # noqa: E711
            ).update(UpdateSet({Chat.last_message_id: message.id, Chat.updated_at: message.created_at}))
        except PyMongoError as exc:
            # The message is stored; only the chat list ordering is stale.
            logger.error(f"Failed to bump chat {chat_id} after message {message.id}: {exc}", exc_info=True)

    async def list_messages(self, chat_id, page: int = 1, page_size: int | None = None) -> List[Message]:
        """Messages of a chat, oldest first, offset-paginated."""
        chat = await self.get_chat(chat_id)
        page = max(int(page or 1), 1)
        page_size = page_size or settings.CHAT_PAGE_SIZE
        page_size = max(1, min(int(page_size), settings.CHAT_MAX_PAGE_SIZE))
        try:
            return await (
                Message.find(Message.chat_id == chat.id)
                .sort("+created_at", "+_id")
                .skip((page - 1) * page_size)
                .limit(page_size)
                .to_list()
            )
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc

    async def mark_read(self, chat_id, receiver_id: str) -> int:
        """Flip every unread message addressed to receiver_id. Returns how many changed."""
        chat = await self.get_chat(chat_id)
        try:
            result = await Message.find(
                Message.chat_id == chat.id,
                Message.receiver_id == receiver_id,
                Message.read == False,  # noqa: E712
            ).update(UpdateSet({Message.read: True, Message.delivered: True}))
        except PyMongoError as exc:
            logger.error(f"Failed to mark chat {chat.id} read for {receiver_id}: {exc}", exc_info=True)
            raise ChatStoreError(str(exc)) from exc
        return getattr(result, "modified_count", 0) or 0

    async def mark_delivered(self, message_id) -> None:
        oid = _to_oid(message_id)
        try:
            await Message.find_one(Message.id == oid).update(UpdateSet({Message.delivered: True}))
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc

    async def unread_count(self, chat_id, user_id: str) -> int:
        oid = _to_oid(chat_id)
        try:
            return await Message.find(
                Message.chat_id == oid,
                Message.receiver_id == user_id,
                Message.read == False,  # noqa: E712
            ).count()
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc

    async def summarize(self, chat: Chat, user_id: str) -> ChatSummary:
        last_message = None
        try:
            if chat.last_message_id:
                last_message = await Message.get(chat.last_message_id)
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc
        return ChatSummary(
            chat=chat,
            other_participant=chat.other_participant(user_id),
            last_message=last_message,
            unread_count=await self.unread_count(chat.id, user_id),
        )

    async def list_chats_for_user(self, user_id: str) -> List[ChatSummary]:
        """One summary per chat of user_id, most recently active first."""
        try:
            chats = await Chat.find({"participants": user_id}).sort("-updated_at").to_list()
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc
        return [await self.summarize(chat, user_id) for chat in chats]

    async def delete_chat(self, chat_id) -> None:
        """Remove a chat together with all of its messages."""
        chat = await self.get_chat(chat_id)
        try:
            await Message.find(Message.chat_id == chat.id).delete()
            await chat.delete()
        except PyMongoError as exc:
            raise ChatStoreError(str(exc)) from exc
        logger.info(f"Deleted chat {chat.id}")
