from fastapi import APIRouter, HTTPException, Query, status

from app.config import get_settings
from app.schemas import ChatCreateIn, ChatListItemOut, MessageOut
from app.services.chat_store import ChatNotFound, ChatStore, ChatStoreError, InvalidParticipants
from app.utils.chat_helpers import chat_list_item, message_out
from app.utils.logger import get_logger

logger = get_logger("chat_router")
settings = get_settings()

router = APIRouter(prefix="/chats", tags=["chat"])
store = ChatStore()


@router.get("/{user_id}", response_model=list[ChatListItemOut])
async def get_chat_list(user_id: str):
    """Chats of a user with last message and unread count, most recent first."""
    try:
        summaries = await store.list_chats_for_user(user_id)
    except ChatStoreError as exc:
        logger.error(f"Failed to fetch chats for {user_id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to fetch chats.")
    return [
        chat_list_item(s.chat, user_id=user_id, last_message=s.last_message, unread_count=s.unread_count)
        for s in summaries
    ]


@router.post("", response_model=ChatListItemOut, status_code=status.HTTP_201_CREATED)
async def start_chat(body: ChatCreateIn):
    """Get or create the chat between two users, shaped for userAId."""
    try:
        chat = await store.get_or_create_chat(body.user_a_id, body.user_b_id)
        summary = await store.summarize(chat, body.user_a_id)
    except InvalidParticipants as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChatStoreError as exc:
        logger.error(f"Failed to create chat {body.user_a_id}/{body.user_b_id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to create chat.")

    from app.services.socket_service import notify_chat_updated
    await notify_chat_updated(chat.participants)

    return chat_list_item(
        chat, user_id=body.user_a_id, last_message=summary.last_message, unread_count=summary.unread_count
    )


@router.get("/{chat_id}/messages", response_model=list[MessageOut])
async def get_messages(
    chat_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
):
    """Message history, oldest first, offset-paginated."""
    limit = min(limit or settings.CHAT_PAGE_SIZE, settings.CHAT_MAX_PAGE_SIZE)
    try:
        messages = await store.list_messages(chat_id, page=page, page_size=limit)
    except ChatNotFound:
        raise HTTPException(status_code=404, detail="Chat not found")
    except ChatStoreError as exc:
        logger.error(f"Failed to fetch messages for chat {chat_id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to fetch messages.")
    return [message_out(m) for m in messages]
