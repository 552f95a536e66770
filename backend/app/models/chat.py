from beanie import Document, Indexed
from beanie import PydanticObjectId as OID
from pydantic import Field
from datetime import datetime, timezone
from typing import List, Optional

from app.constants import MessageType


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Chat(Document):
    """Two-party conversation. One document per unordered participant pair."""
    # Sorted user ids; pair_key is the same pair JSON-encoded, unique at the storage layer.
    participants: List[str]
    pair_key: Indexed(str, unique=True)
    last_message_id: OID | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: Indexed(datetime) = Field(default_factory=_now)

    class Settings:
        name = "chats"

    def other_participant(self, user_id: str) -> str | None:
        if user_id not in self.participants:
            return None
        others = [p for p in self.participants if p != user_id]
        return others[0] if others else None


class Message(Document):
    """Persisted chat message."""
    chat_id: Indexed(OID)
    sender_id: Indexed(str)
    receiver_id: Indexed(str)
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_mime_type: Optional[str] = None
    file_size: Optional[int] = None
    read: bool = False
    delivered: bool = False
    # Correlation id chosen by the sending client, echoed back untouched.
    client_id: Optional[str] = None
    created_at: Indexed(datetime) = Field(default_factory=_now)

    class Settings:
        name = "messages"
