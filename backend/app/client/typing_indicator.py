"""
Typing indicators, debounced on both ends.

The sender stops announcing after a short idle window; the receiver clears
the indicator on its own after a slightly longer TTL in case the "stopped
typing" event never arrives.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from app.utils.logger import get_logger

logger = get_logger("typing")

SEND_IDLE_SECONDS = 3.0
RECEIVE_TTL_SECONDS = 4.0


@dataclass
class TypingState:
    chat_id: Optional[str]
    from_user_id: str
    to_user_id: Optional[str]
    is_typing: bool
    expires_at: datetime


SendTyping = Callable[[Optional[str], str, bool], Awaitable[None]]


class TypingNotifier:
    """Sender side: one `True` on the first keystroke, one `False` after going idle."""

    def __init__(self, send: SendTyping, idle_seconds: float = SEND_IDLE_SECONDS) -> None:
        self._send = send
        self.idle_seconds = idle_seconds
        self._timers: Dict[Tuple[Optional[str], str], asyncio.Task] = {}

    def is_active(self, chat_id: Optional[str], receiver_id: str) -> bool:
        return (chat_id, receiver_id) in self._timers

    async def keystroke(self, chat_id: Optional[str], receiver_id: str) -> None:
        key = (chat_id, receiver_id)
        timer = self._timers.pop(key, None)
        if timer is None:
            await self._send(chat_id, receiver_id, True)
        else:
            timer.cancel()
        self._timers[key] = asyncio.create_task(self._expire(key))

    async def _expire(self, key) -> None:
        await asyncio.sleep(self.idle_seconds)
        if self._timers.get(key) is asyncio.current_task():
            self._timers.pop(key, None)
            await self._safe_send(key, False)

    async def stop(self, chat_id: Optional[str], receiver_id: str) -> None:
        """Explicit stop, e.g. when the message is sent."""
        key = (chat_id, receiver_id)
        timer = self._timers.pop(key, None)
        if timer is None:
            return
        timer.cancel()
        await self._safe_send(key, False)

    async def _safe_send(self, key, is_typing: bool) -> None:
        try:
            await self._send(key[0], key[1], is_typing)
        except Exception as exc:
            logger.debug(f"Typing signal for {key} not sent: {exc}")

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


class TypingTracker:
    """Receiver side: who is typing to us, with self-expiring entries."""

    def __init__(
        self,
        ttl_seconds: float = RECEIVE_TTL_SECONDS,
        on_change: Optional[Callable[[TypingState], None]] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.on_change = on_change
        self._states: Dict[Tuple[Optional[str], str], TypingState] = {}
        self._handles: Dict[Tuple[Optional[str], str], asyncio.TimerHandle] = {}

    def update(self, chat_id: Optional[str], sender_id: str, is_typing: bool, to_user_id: Optional[str] = None) -> None:
        key = (chat_id, sender_id)
        handle = self._handles.pop(key, None)
        if handle:
            handle.cancel()

        if not is_typing:
            state = self._states.pop(key, None)
            if state:
                state.is_typing = False
                self._notify(state)
            return

        state = TypingState(
            chat_id=chat_id,
            from_user_id=sender_id,
            to_user_id=to_user_id,
            is_typing=True,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds),
        )
        self._states[key] = state
        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(self.ttl_seconds, self.update, chat_id, sender_id, False)
        self._notify(state)

    def _notify(self, state: TypingState) -> None:
        if self.on_change:
            self.on_change(state)

    def is_typing(self, sender_id: str, chat_id: Optional[str] = None) -> bool:
        if chat_id is not None:
            return (chat_id, sender_id) in self._states
        return any(uid == sender_id for _, uid in self._states)

    def typing_users(self, chat_id: Optional[str]) -> List[str]:
        return sorted(uid for cid, uid in self._states if cid == chat_id)

    def clear(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._states.clear()
