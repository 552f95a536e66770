from app.constants import Event
from app.services.connection_registry import ConnectionRegistry
from app.services.emitter import Emitter, emit_to_connections
from app.utils.logger import get_logger

logger = get_logger("presence")


class PresenceBroadcaster:
    """Owns registry mutations on connect/disconnect and announces reachability flips."""

    def __init__(self, emitter: Emitter, registry: ConnectionRegistry) -> None:
        self.emitter = emitter
        self.registry = registry

    async def connect(self, user_id: str, connection_id: str) -> bool:
        came_online = self.registry.register(user_id, connection_id)
        logger.info(
            f"User connected: {user_id} - Socket: {connection_id} "
            f"(connections: {len(self.registry.get_connections(user_id))})"
        )
        await self.send_snapshot(connection_id)
        if came_online:
            await self._broadcast(user_id, True)
        return came_online

    async def disconnect(self, connection_id: str) -> bool:
        user_id, went_offline = self.registry.unregister(connection_id)
        if user_id is None:
            logger.debug(f"Unknown socket disconnected: {connection_id}")
            return False
        logger.info(
            f"User disconnected: {user_id} - Socket: {connection_id} "
            f"(remaining: {len(self.registry.get_connections(user_id))})"
        )
        if went_offline:
            await self._broadcast(user_id, False)
        return went_offline

    async def send_snapshot(self, connection_id: str) -> None:
        """Tell a fresh connection who is already online."""
        await emit_to_connections(
            self.emitter,
            Event.PRESENCE_SNAPSHOT,
            {"onlineUserIds": sorted(self.registry.online_users())},
            [connection_id],
        )

    async def _broadcast(self, user_id: str, is_online: bool) -> None:
        try:
            # No `to`: every connected client gets it.
            await self.emitter.emit(Event.PRESENCE_UPDATE, {"userId": user_id, "isOnline": is_online})
        except Exception as exc:
            logger.warning(f"Failed to broadcast presence for {user_id}: {exc}")
