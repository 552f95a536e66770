from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple


@dataclass(frozen=True)
class ConnectionRecord:
    user_id: str
    connection_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionRegistry:
    """In-memory map of user id -> live socket ids.

    All methods are synchronous so a mutation never interleaves with another
    one on the event loop. Nothing here is persisted; a restart starts empty.
    """

    def __init__(self) -> None:
        self._by_user: Dict[str, Dict[str, ConnectionRecord]] = {}
        self._by_connection: Dict[str, ConnectionRecord] = {}

    def register(self, user_id: str, connection_id: str) -> bool:
        """Track a connection. Returns True when the user just came online."""
        existing = self._by_connection.get(connection_id)
        if existing is not None:
            if existing.user_id == user_id:
                return False
            # Same socket id re-identified as another user.
            self.unregister(connection_id)

        connections = self._by_user.setdefault(user_id, {})
        came_online = not connections
        record = ConnectionRecord(user_id=user_id, connection_id=connection_id)
        connections[connection_id] = record
        self._by_connection[connection_id] = record
        return came_online

    def unregister(self, connection_id: str) -> Tuple[Optional[str], bool]:
        """Forget a connection. Returns (owning user id, whether they went offline)."""
        record = self._by_connection.pop(connection_id, None)
        if record is None:
            return None, False

        connections = self._by_user.get(record.user_id, {})
        connections.pop(connection_id, None)
        if connections:
            return record.user_id, False
        self._by_user.pop(record.user_id, None)
        return record.user_id, True

    def get_connections(self, user_id: str) -> Set[str]:
        return set(self._by_user.get(user_id, ()))

    def user_for(self, connection_id: str) -> Optional[str]:
        record = self._by_connection.get(connection_id)
        return record.user_id if record else None

    def is_online(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    def online_users(self) -> List[str]:
        return list(self._by_user)

    def records(self, user_id: str) -> List[ConnectionRecord]:
        return list(self._by_user.get(user_id, {}).values())

    def __len__(self) -> int:
        return len(self._by_connection)
