import json
from datetime import datetime, timezone
from typing import Optional, Tuple

from app.constants import MessageType
from app.models import Chat, Message
from app.schemas import ChatListItemOut, MessageOut

REPORT_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.oasis.opendocument.text",
    "application/rtf",
    "text/plain",
}


def normalize_pair(user_a_id: str, user_b_id: str) -> Tuple[str, str]:
    """Order-independent identity of a two-party chat."""
    a, b = sorted((str(user_a_id), str(user_b_id)))
    return a, b


def pair_key(user_a_id: str, user_b_id: str) -> str:
    """Unique key of a pair; JSON-encoded so ids containing any separator cannot collide."""
    return json.dumps(list(normalize_pair(user_a_id, user_b_id)), separators=(",", ":"))


def message_type_for_mime(mime_type: Optional[str]) -> MessageType:
    """Map an uploaded file's MIME type to the message type it is sent as."""
    mt = (mime_type or "").lower().split(";")[0].strip()
    if mt.startswith("image/"):
        return MessageType.IMAGE
    if mt.startswith("audio/"):
        return MessageType.VOICE
    if mt in REPORT_MIME_TYPES:
        return MessageType.REPORT
    return MessageType.FILE


def _iso(dt: datetime) -> str:
    # Mongo hands datetimes back naive; they are stored as UTC.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def message_out(message: Message) -> MessageOut:
    return MessageOut(
        id=str(message.id),
        chat_id=str(message.chat_id),
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        message_type=message.message_type,
        file_url=message.file_url,
        file_name=message.file_name,
        file_mime_type=message.file_mime_type,
        file_size=message.file_size,
        read=message.read,
        delivered=message.delivered,
        client_id=message.client_id,
        created_at=_iso(message.created_at),
    )


def message_payload(message: Message) -> dict:
    """Socket payload for a persisted message."""
    return message_out(message).model_dump(by_alias=True, mode="json")


def chat_list_item(
    chat: Chat,
    *,
    user_id: str,
    last_message: Optional[Message] = None,
    unread_count: int = 0,
) -> ChatListItemOut:
    return ChatListItemOut(
        id=str(chat.id),
        participants=list(chat.participants),
        other_participant=chat.other_participant(user_id),
        last_message=message_out(last_message) if last_message else None,
        unread_count=unread_count,
        created_at=_iso(chat.created_at),
        updated_at=_iso(chat.updated_at),
    )
