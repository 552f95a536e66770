from app.services.connection_registry import ConnectionRegistry


def test_first_connection_brings_user_online():
    reg = ConnectionRegistry()
    assert reg.register("u1", "s1") is True
    assert reg.register("u1", "s2") is False
    assert reg.get_connections("u1") == {"s1", "s2"}
    assert reg.is_online("u1")


def test_register_is_idempotent_per_connection():
    reg = ConnectionRegistry()
    reg.register("u1", "s1")
    assert reg.register("u1", "s1") is False
    assert len(reg) == 1


def test_unregister_reports_offline_only_on_last_connection():
    reg = ConnectionRegistry()
    reg.register("u1", "s1")
    reg.register("u1", "s2")

    assert reg.unregister("s1") == ("u1", False)
    assert reg.is_online("u1")
    assert reg.unregister("s2") == ("u1", True)
    assert not reg.is_online("u1")
    assert reg.online_users() == []


def test_unknown_lookups_never_fail():
    reg = ConnectionRegistry()
    assert reg.get_connections("nobody") == set()
    assert reg.unregister("ghost") == (None, False)
    assert reg.user_for("ghost") is None


def test_get_connections_returns_a_copy():
    reg = ConnectionRegistry()
    reg.register("u1", "s1")
    reg.get_connections("u1").add("bogus")
    assert reg.get_connections("u1") == {"s1"}


def test_connection_reused_by_another_user_moves():
    reg = ConnectionRegistry()
    reg.register("u1", "s1")
    assert reg.register("u2", "s1") is True
    assert not reg.is_online("u1")
    assert reg.user_for("s1") == "u2"
    assert [r.connection_id for r in reg.records("u2")] == ["s1"]
