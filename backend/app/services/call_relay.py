"""
WebRTC signaling relay.

The server keeps no call state: each event is forwarded, payload untouched,
to every live socket of the `to` user. Only an offer to an offline user is
answered (with `call_failed`); everything else to an offline user is dropped.
"""
from typing import Optional, Type

from pydantic import ValidationError

from app.constants import ErrorCode, Event
from app.schemas import CallAnswerIn, CallEndIn, CallOfferIn, CallSignalIn, IceCandidateIn
from app.services.connection_registry import ConnectionRegistry
from app.services.emitter import Emitter, emit_error, emit_to_connections
from app.services.message_router import describe_validation_error
from app.utils.logger import get_logger

logger = get_logger("call_relay")

RECEIVER_OFFLINE = "Receiver is offline."


class CallSignalingRelay:
    def __init__(self, registry: ConnectionRegistry, emitter: Emitter) -> None:
        self.registry = registry
        self.emitter = emitter

    async def _parse(self, sid: str, event: str, model: Type[CallSignalIn], data) -> Optional[CallSignalIn]:
        user_id = self.registry.user_for(sid)
        if user_id is None:
            await emit_error(self.emitter, sid, "Unauthorized", ErrorCode.UNAUTHORIZED, event=event)
            return None
        try:
            signal = model.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as exc:
            await emit_error(self.emitter, sid, describe_validation_error(exc), ErrorCode.BAD_REQUEST, event=event)
            return None
        if signal.from_user is None:
            signal.from_user = user_id
        elif signal.from_user != user_id:
            await emit_error(self.emitter, sid, "'from' does not match this connection", ErrorCode.FORBIDDEN,
                             event=event)
            return None
        return signal

    async def _forward(self, event: str, to: str, payload: dict) -> int:
        targets = self.registry.get_connections(to)
        if not targets:
            logger.debug(f"Dropping '{event}' for offline user {to}")
            return 0
        return await emit_to_connections(self.emitter, event, payload, targets)

    async def handle_offer(self, sid: str, data) -> int:
        offer = await self._parse(sid, Event.CALL_OFFER, CallOfferIn, data)
        if offer is None:
            return 0
        if not self.registry.is_online(offer.to):
            logger.info(f"Call {offer.call_id} from {offer.from_user} failed: {offer.to} offline")
            await emit_to_connections(
                self.emitter,
                Event.CALL_FAILED,
                {"message": RECEIVER_OFFLINE, "callId": offer.call_id, "to": offer.to},
                [sid],
            )
            return 0
        logger.info(f"Call {offer.call_id} ({offer.call_type.value}) {offer.from_user} -> {offer.to}")
        return await self._forward(Event.CALL_OFFER, offer.to, {
            "from": offer.from_user,
            "offer": offer.offer,
            "callId": offer.call_id,
            "callType": offer.call_type.value,
        })

    async def handle_answer(self, sid: str, data) -> int:
        answer = await self._parse(sid, Event.CALL_ANSWER, CallAnswerIn, data)
        if answer is None:
            return 0
        return await self._forward(Event.CALL_ANSWER, answer.to, {
            "from": answer.from_user,
            "answer": answer.answer,
            "callId": answer.call_id,
        })

    async def handle_ice_candidate(self, sid: str, data) -> int:
        ice = await self._parse(sid, Event.ICE_CANDIDATE, IceCandidateIn, data)
        if ice is None:
            return 0
        return await self._forward(Event.ICE_CANDIDATE, ice.to, {
            "from": ice.from_user,
            "candidate": ice.candidate,
            "callId": ice.call_id,
        })

    async def handle_end(self, sid: str, data) -> int:
        end = await self._parse(sid, Event.CALL_END, CallEndIn, data)
        if end is None:
            return 0
        logger.info(f"Call {end.call_id or '?'} ended by {end.from_user}")
        return await self._forward(Event.CALL_END, end.to, {"from": end.from_user, "callId": end.call_id})
