"""
Client-side call lifecycle for one conversation.

Caller:  IDLE -> INITIATING -> RINGING -> ACTIVE -> ENDED
Callee:  IDLE -> RECEIVING_OFFER -> ACTIVE -> ENDED

ENDED is reachable from every phase. Media capture and the peer connection
come from an injected CallBackend; signaling goes out through `signal`, which
is normally the socket client's emit.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Tuple

from app.constants import CallType, Event
from app.utils.logger import get_logger

logger = get_logger("call_state")

RING_TIMEOUT_SECONDS = 45.0
FAILED_PEER_STATES = ("failed", "disconnected")


class CallPhase(str, Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    RINGING = "ringing"
    RECEIVING_OFFER = "receiving_offer"
    ACTIVE = "active"
    ENDED = "ended"


class CallDirection(str, Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"


class EndReason(str, Enum):
    HANGUP = "hangup"
    REMOTE_HANGUP = "remote_hangup"
    REJECTED = "rejected"
    NO_ANSWER = "no_answer"
    MEDIA_UNAVAILABLE = "media_unavailable"
    USER_UNAVAILABLE = "user_unavailable"
    CONNECTION_LOST = "connection_lost"
    NEGOTIATION_FAILED = "negotiation_failed"


END_MESSAGES = {
    EndReason.MEDIA_UNAVAILABLE: "Could not access camera or microphone.",
    EndReason.USER_UNAVAILABLE: "User is unavailable.",
    EndReason.CONNECTION_LOST: "Call connection was lost.",
    EndReason.NEGOTIATION_FAILED: "Could not establish the call.",
    EndReason.NO_ANSWER: "No answer.",
}


class CallStateError(Exception):
    """Operation not allowed in the current phase."""


class MediaError(Exception):
    """Local capture failed (permission denied, no device)."""


class MediaTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None:
        ...


class PeerConnection(Protocol):
    async def create_offer(self) -> Any:
        ...

    async def create_answer(self) -> Any:
        ...

    async def set_local_description(self, description: Any) -> None:
        ...

    async def set_remote_description(self, description: Any) -> None:
        ...

    async def add_ice_candidate(self, candidate: Any) -> None:
        ...

    def add_track(self, track: MediaTrack) -> None:
        ...

    async def close(self) -> None:
        ...


class CallBackend(Protocol):
    async def acquire_media(self, call_type: CallType) -> List[MediaTrack]:
        ...

    def create_peer(
        self,
        on_ice_candidate: Callable[[Any], Awaitable[None]],
        on_state_change: Callable[[str], Awaitable[None]],
    ) -> PeerConnection:
        ...


Signal = Callable[[str, dict], Awaitable[None]]


@dataclass
class CallSession:
    call_id: str
    peer_id: str
    call_type: CallType
    direction: CallDirection
    phase: CallPhase = CallPhase.IDLE
    muted: bool = False
    video_off: bool = False
    end_reason: Optional[EndReason] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class CallStateMachine:
    def __init__(
        self,
        user_id: str,
        peer_id: str,
        backend: CallBackend,
        signal: Signal,
        *,
        auto_accept: bool = True,
        ring_timeout: Optional[float] = RING_TIMEOUT_SECONDS,
        on_change: Optional[Callable[[CallSession], None]] = None,
    ) -> None:
        self.user_id = user_id
        self.peer_id = peer_id
        self.backend = backend
        self.signal = signal
        # Incoming offers are answered without asking unless this is turned off.
        self.auto_accept = auto_accept
        self.ring_timeout = ring_timeout
        self._listeners: List[Callable[[CallSession], None]] = [on_change] if on_change else []

        self.phase = CallPhase.IDLE
        self.session: Optional[CallSession] = None
        self._peer: Optional[PeerConnection] = None
        self._tracks: List[MediaTrack] = []
        self._remote_offer: Any = None
        self._remote_set = False
        self._pending_ice: List[Tuple[Optional[str], Any]] = []
        self._ring_timer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ state

    def add_listener(self, callback: Callable[[CallSession], None]) -> None:
        self._listeners.append(callback)

    @property
    def in_progress(self) -> bool:
        return self.phase not in (CallPhase.IDLE, CallPhase.ENDED)

    def _transition(self, phase: CallPhase) -> None:
        logger.debug(f"[{self.user_id}<->{self.peer_id}] {self.phase.value} -> {phase.value}")
        self.phase = phase
        if self.session:
            self.session.phase = phase
            if phase == CallPhase.ACTIVE:
                self.session.started_at = datetime.now(timezone.utc)
            elif phase == CallPhase.ENDED:
                self.session.ended_at = datetime.now(timezone.utc)
        for listener in list(self._listeners):
            listener(self.session)

    def _is_current(self, call_id: Optional[str], *phases: CallPhase) -> bool:
        return (
            self.session is not None
            and self.session.call_id == call_id
            and (not phases or self.phase in phases)
        )

    def _matches(self, payload: dict) -> bool:
        """An event without a callId is taken to be about the current call."""
        call_id = payload.get("callId")
        return self.session is not None and (not call_id or call_id == self.session.call_id)

    def reset(self) -> None:
        """Back to IDLE once the UI has shown the ended call."""
        if self.in_progress:
            raise CallStateError("Cannot reset an ongoing call")
        self.session = None
        self._transition(CallPhase.IDLE)

    # ---------------------------------------------------------------- helpers

    async def _prepare_local(self, call_id: str) -> bool:
        """Capture media and build the peer connection. False when the call was torn down."""
        try:
            tracks = await self.backend.acquire_media(self.session.call_type)
        except MediaError as exc:
            logger.warning(f"Media unavailable for call {call_id}: {exc}")
            if self._is_current(call_id):
                await self.end_call(notify=self.session.direction == CallDirection.INCOMING,
                                     reason=EndReason.MEDIA_UNAVAILABLE, error=str(exc))
            return False

        if not self._is_current(call_id, CallPhase.INITIATING, CallPhase.RECEIVING_OFFER):
            for track in tracks:
                track.stop()
            return False

        self._tracks = list(tracks)
        self._peer = self.backend.create_peer(
            lambda candidate: self._on_local_candidate(call_id, candidate),
            lambda state: self._on_peer_state(call_id, state),
        )
        for track in self._tracks:
            self._peer.add_track(track)
        return True

    async def _on_local_candidate(self, call_id: str, candidate: Any) -> None:
        if candidate is None or not self._is_current(call_id) or self.phase == CallPhase.ENDED:
            return
        await self._send(Event.ICE_CANDIDATE, {
            "to": self.peer_id, "from": self.user_id, "candidate": candidate, "callId": call_id,
        })

    async def _on_peer_state(self, call_id: str, state: str) -> None:
        if state in FAILED_PEER_STATES and self._is_current(call_id) and self.in_progress:
            await self.end_call(reason=EndReason.CONNECTION_LOST)

    async def _send(self, event: str, payload: dict) -> bool:
        try:
            await self.signal(event, payload)
            return True
        except Exception as exc:
            logger.warning(f"Failed to send {event}: {exc}")
            return False

    async def _apply_remote(self, description: Any) -> None:
        await self._peer.set_remote_description(description)
        self._remote_set = True
        await self._flush_ice()

    async def _flush_ice(self) -> None:
        call_id = self.session.call_id if self.session else None
        pending, self._pending_ice = self._pending_ice, []
        for cid, candidate in pending:
            if cid and cid != call_id:
                continue
            await self._add_candidate(candidate)

    async def _add_candidate(self, candidate: Any) -> None:
        try:
            await self._peer.add_ice_candidate(candidate)
        except Exception as exc:
            logger.warning(f"Error adding received ICE candidate: {exc}")

    def _start_ring_timer(self, call_id: str) -> None:
        if not self.ring_timeout:
            return
        self._ring_timer = asyncio.create_task(self._ring_expired(call_id))

    async def _ring_expired(self, call_id: str) -> None:
        await asyncio.sleep(self.ring_timeout)
        if self._is_current(call_id, CallPhase.RINGING):
            await self.end_call(reason=EndReason.NO_ANSWER)

    def _cancel_ring_timer(self) -> None:
        timer, self._ring_timer = self._ring_timer, None
        if timer and timer is not asyncio.current_task():
            timer.cancel()

    async def _fail(self, call_id: str, reason: EndReason, exc: Exception) -> None:
        logger.error(f"Call {call_id} failed ({reason.value}): {exc}", exc_info=True)
        if self._is_current(call_id) and self.in_progress:
            await self.end_call(reason=reason, error=str(exc))

    # --------------------------------------------------------------- outgoing

    async def initiate_call(self, call_type: CallType = CallType.AUDIO) -> bool:
        """Start an outgoing call. True once the offer went out and we are ringing."""
        if self.in_progress:
            raise CallStateError(f"Call already {self.phase.value}")

        call_id = uuid.uuid4().hex
        self._pending_ice = []
        self._remote_set = False
        self.session = CallSession(
            call_id=call_id,
            peer_id=self.peer_id,
            call_type=CallType(call_type),
            direction=CallDirection.OUTGOING,
        )
        self._transition(CallPhase.INITIATING)

        if not await self._prepare_local(call_id):
            return False
        try:
            offer = await self._peer.create_offer()
            await self._peer.set_local_description(offer)
        except Exception as exc:
            await self._fail(call_id, EndReason.NEGOTIATION_FAILED, exc)
            return False
        if not self._is_current(call_id, CallPhase.INITIATING):
            return False

        await self._send(Event.CALL_OFFER, {
            "to": self.peer_id,
            "from": self.user_id,
            "offer": offer,
            "callId": call_id,
            "callType": self.session.call_type.value,
        })
        if not self._is_current(call_id, CallPhase.INITIATING):
            return False
        self._transition(CallPhase.RINGING)
        self._start_ring_timer(call_id)
        return True

    async def handle_answer(self, payload: dict) -> bool:
        if self.phase != CallPhase.RINGING or not self._matches(payload):
            logger.debug(f"Ignoring call_answer in phase {self.phase.value}")
            return False
        call_id = self.session.call_id
        self._cancel_ring_timer()
        try:
            await self._apply_remote(payload.get("answer"))
        except Exception as exc:
            await self._fail(call_id, EndReason.NEGOTIATION_FAILED, exc)
            return False
        if not self._is_current(call_id, CallPhase.RINGING):
            return False
        self._transition(CallPhase.ACTIVE)
        return True

    async def handle_call_failed(self, payload: dict) -> None:
        if self.phase in (CallPhase.INITIATING, CallPhase.RINGING) and self._matches(payload):
            await self.end_call(
                notify=False,
                reason=EndReason.USER_UNAVAILABLE,
                error=payload.get("message") or END_MESSAGES[EndReason.USER_UNAVAILABLE],
            )

    # --------------------------------------------------------------- incoming

    async def handle_offer(self, payload: dict) -> bool:
        """Incoming offer. Ignored (False) while another call is in progress."""
        if self.in_progress:
            logger.info(f"Busy: ignoring offer {payload.get('callId')} from {payload.get('from')}")
            return False

        self._remote_set = False
        self._remote_offer = payload.get("offer")
        self.session = CallSession(
            call_id=str(payload.get("callId") or uuid.uuid4().hex),
            peer_id=payload.get("from") or self.peer_id,
            call_type=CallType(payload.get("callType") or CallType.AUDIO),
            direction=CallDirection.INCOMING,
        )
        self._transition(CallPhase.RECEIVING_OFFER)
        if self.auto_accept:
            await self.accept()
        return True

    async def accept(self) -> bool:
        if self.phase != CallPhase.RECEIVING_OFFER:
            raise CallStateError(f"No incoming call to accept (phase {self.phase.value})")
        call_id = self.session.call_id

        if not await self._prepare_local(call_id):
            return False
        try:
            await self._apply_remote(self._remote_offer)
            answer = await self._peer.create_answer()
            await self._peer.set_local_description(answer)
        except Exception as exc:
            await self._fail(call_id, EndReason.NEGOTIATION_FAILED, exc)
            return False
        if not self._is_current(call_id, CallPhase.RECEIVING_OFFER):
            return False

        await self._send(Event.CALL_ANSWER, {
            "to": self.session.peer_id,
            "from": self.user_id,
            "answer": answer,
            "callId": call_id,
        })
        if not self._is_current(call_id, CallPhase.RECEIVING_OFFER):
            return False
        self._transition(CallPhase.ACTIVE)
        return True

    async def reject(self) -> None:
        if self.phase != CallPhase.RECEIVING_OFFER:
            raise CallStateError(f"No incoming call to reject (phase {self.phase.value})")
        await self.end_call(reason=EndReason.REJECTED)

    # ------------------------------------------------------------------- both

    async def handle_ice_candidate(self, payload: dict) -> None:
        """Apply a remote candidate, or hold it until a remote description exists."""
        candidate = payload.get("candidate")
        if candidate is None:
            return
        call_id = payload.get("callId")
        if self.session and call_id and call_id != self.session.call_id and self.in_progress:
            logger.debug(f"Dropping ICE candidate for stale call {call_id}")
            return
        if self._peer is not None and self._remote_set and self.in_progress:
            await self._add_candidate(candidate)
        else:
            self._pending_ice.append((call_id, candidate))

    async def handle_call_end(self, payload: dict) -> None:
        if self.in_progress and self._matches(payload):
            await self.end_call(notify=False, reason=EndReason.REMOTE_HANGUP)

    def toggle_mute(self) -> bool:
        """Flip outgoing audio. Returns True when now muted. Nothing is signaled."""
        audio = [t for t in self._tracks if t.kind == "audio"]
        if not audio:
            return False
        muted = audio[0].enabled
        for track in audio:
            track.enabled = not muted
        if self.session:
            self.session.muted = muted
        return muted

    def toggle_video(self) -> bool:
        """Flip outgoing video. Returns True when video is now off."""
        video = [t for t in self._tracks if t.kind == "video"]
        if not video:
            return False
        off = video[0].enabled
        for track in video:
            track.enabled = not off
        if self.session:
            self.session.video_off = off
        return off

    async def end_call(
        self,
        notify: bool = True,
        reason: EndReason = EndReason.HANGUP,
        error: Optional[str] = None,
    ) -> None:
        """Tear everything down. Safe from any phase and safe to call twice."""
        if self.phase in (CallPhase.IDLE, CallPhase.ENDED) and self._peer is None and not self._tracks:
            return

        session = self.session
        if session:
            session.end_reason = reason
            session.error = error or END_MESSAGES.get(reason)
            session.muted = False
            session.video_off = False
        self._cancel_ring_timer()
        self._transition(CallPhase.ENDED)

        peer, self._peer = self._peer, None
        tracks, self._tracks = self._tracks, []
        self._pending_ice = []
        self._remote_offer = None
        self._remote_set = False

        for track in tracks:
            try:
                track.stop()
            except Exception as exc:
                logger.debug(f"Track stop failed: {exc}")
        if peer is not None:
            try:
                await peer.close()
            except Exception as exc:
                logger.debug(f"Peer close failed: {exc}")

        if notify and session:
            await self._send(Event.CALL_END, {
                "to": session.peer_id, "from": self.user_id, "callId": session.call_id,
            })
        logger.info(f"Call {session.call_id if session else '?'} ended ({reason.value})")
