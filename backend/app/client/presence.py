from typing import Dict, Iterable, List


class PresenceMap:
    """Client view of who is online. Unknown users count as offline."""

    def __init__(self) -> None:
        self._online: Dict[str, bool] = {}

    def apply_update(self, user_id: str, is_online: bool) -> None:
        if is_online:
            self._online[user_id] = True
        else:
            self._online.pop(user_id, None)

    def apply_snapshot(self, user_ids: Iterable[str]) -> None:
        self._online = {uid: True for uid in user_ids}

    def is_online(self, user_id: str) -> bool:
        return self._online.get(user_id, False)

    def online_users(self) -> List[str]:
        return sorted(self._online)

    def clear(self) -> None:
        self._online.clear()
