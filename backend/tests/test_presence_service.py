from app.constants import Event
from app.services.presence_service import PresenceBroadcaster


async def test_online_broadcast_only_on_first_connection(registry, emitter):
    presence = PresenceBroadcaster(emitter, registry)

    assert await presence.connect("u1", "s1") is True
    assert await presence.connect("u1", "s2") is False

    updates = emitter.named(Event.PRESENCE_UPDATE)
    assert updates == [({"userId": "u1", "isOnline": True}, None)]


async def test_offline_broadcast_only_when_last_connection_closes(registry, emitter):
    presence = PresenceBroadcaster(emitter, registry)
    await presence.connect("u1", "s1")
    await presence.connect("u1", "s2")
    emitter.clear()

    assert await presence.disconnect("s1") is False
    assert emitter.named(Event.PRESENCE_UPDATE) == []

    assert await presence.disconnect("s2") is True
    assert emitter.named(Event.PRESENCE_UPDATE) == [({"userId": "u1", "isOnline": False}, None)]


async def test_new_connection_gets_snapshot_of_online_users(registry, emitter):
    presence = PresenceBroadcaster(emitter, registry)
    await presence.connect("u1", "s1")
    await presence.connect("u2", "s2")

    snapshot = emitter.sent_to("s2", Event.PRESENCE_SNAPSHOT)
    assert snapshot == [{"onlineUserIds": ["u1", "u2"]}]


async def test_unknown_disconnect_is_quiet(registry, emitter):
    presence = PresenceBroadcaster(emitter, registry)
    assert await presence.disconnect("nope") is False
    assert emitter.events == []
