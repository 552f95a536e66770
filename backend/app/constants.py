from enum import Enum


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    REPORT = "report"
    VOICE = "voice"


class CallType(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class Event:
    """Socket.IO event names shared by the server and the client."""
    MESSAGE = "message"
    TYPING = "typing"
    MARK_AS_READ = "mark_as_read"
    MESSAGES_READ = "messages_read"
    PRESENCE_UPDATE = "presence_update"
    PRESENCE_SNAPSHOT = "presence_snapshot"
    REFRESH_CHATS = "refresh_chats"
    CALL_OFFER = "call_offer"
    CALL_ANSWER = "call_answer"
    ICE_CANDIDATE = "ice_candidate"
    CALL_END = "call_end"
    CALL_FAILED = "call_failed"
    ERROR = "error"


class ErrorCode:
    BAD_REQUEST = "E400"
    UNAUTHORIZED = "E401"
    FORBIDDEN = "E403"
    NOT_FOUND = "E404"
    SERVER_ERROR = "E500"
