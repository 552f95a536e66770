from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.constants import CallType, MessageType


class WireModel(BaseModel):
    """Base for payloads exchanged with clients (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _require_id(value: Any) -> str:
    if value is None:
        raise ValueError("field required")
    value = str(value).strip()
    if not value:
        raise ValueError("must not be empty")
    return value


# -------------------- Socket event payloads (client -> server) --------------------


class MessageIn(WireModel):
    sender_id: str
    receiver_id: str
    chat_id: Optional[str] = None
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_mime_type: Optional[str] = None
    file_size: Optional[int] = None
    client_id: Optional[str] = None

    check_ids = field_validator("sender_id", "receiver_id", mode="before")(_require_id)

    @field_validator("chat_id", mode="before")
    @classmethod
    def _blank_chat_is_none(cls, v):
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    @model_validator(mode="after")
    def _check_body(self):
        self.content = self.content.strip()
        if not self.content and not self.file_url:
            raise ValueError("message must contain text or a file")
        if self.message_type != MessageType.TEXT and not self.file_url:
            raise ValueError(f"{self.message_type.value} message requires fileUrl")
        if self.sender_id == self.receiver_id:
            raise ValueError("sender and receiver must differ")
        return self


class TypingIn(WireModel):
    chat_id: Optional[str] = None
    sender_id: str
    receiver_id: str
    is_typing: bool

    check_ids = field_validator("sender_id", "receiver_id", mode="before")(_require_id)


class MarkReadIn(WireModel):
    chat_id: str
    receiver_id: str
    # Other participant; derived from the chat when omitted.
    sender_id: Optional[str] = None

    check_ids = field_validator("chat_id", "receiver_id", mode="before")(_require_id)


class CallSignalIn(WireModel):
    to: str
    from_user: Optional[str] = Field(None, alias="from")

    check_ids = field_validator("to", mode="before")(_require_id)


class CallOfferIn(CallSignalIn):
    call_id: str
    offer: Any
    call_type: CallType = CallType.AUDIO


class CallAnswerIn(CallSignalIn):
    call_id: str
    answer: Any


class IceCandidateIn(CallSignalIn):
    call_id: str
    candidate: Any = None


class CallEndIn(CallSignalIn):
    call_id: str = ""

    @field_validator("call_id", mode="before")
    @classmethod
    def _optional_call_id(cls, v):
        return "" if v is None else str(v)


# -------------------- REST --------------------


class MessageOut(WireModel):
    id: str
    chat_id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: MessageType
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_mime_type: Optional[str] = None
    file_size: Optional[int] = None
    read: bool
    delivered: bool
    client_id: Optional[str] = None
    created_at: str


class ChatListItemOut(WireModel):
    id: str
    participants: List[str]
    other_participant: Optional[str] = None
    last_message: Optional[MessageOut] = None
    unread_count: int = 0
    created_at: str
    updated_at: str


class ChatCreateIn(WireModel):
    user_a_id: str
    user_b_id: str

    check_ids = field_validator("user_a_id", "user_b_id", mode="before")(_require_id)


class UploadOut(WireModel):
    file_url: str
    file_name: str
    file_mime_type: str
    file_size: int
    message_type: MessageType
