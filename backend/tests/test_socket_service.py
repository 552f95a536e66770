from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from app.config import get_settings
from app.constants import Event
from app.security import InvalidToken
from app.services import socket_service
from app.services.socket_service import resolve_user_id

settings = get_settings()


def make_token(sub="doctor-1", token_type="access", minutes=5):
    return jwt.encode(
        {"sub": sub, "type": token_type, "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def test_user_id_from_query_string():
    assert resolve_user_id({"QUERY_STRING": "EIO=4&transport=websocket&userId=patient-1"}, None) == "patient-1"
    assert resolve_user_id({"QUERY_STRING": "userId=%20"}, None) is None
    assert resolve_user_id({}, None) is None


def test_token_wins_over_query_string():
    environ = {"QUERY_STRING": "userId=patient-1"}
    assert resolve_user_id(environ, {"token": make_token()}) == "doctor-1"


def test_bearer_header_is_accepted():
    environ = {"HTTP_AUTHORIZATION": f"Bearer {make_token('patient-9')}"}
    assert resolve_user_id(environ, None) == "patient-9"


@pytest.mark.parametrize("token", [
    "not-a-jwt",
    make_token(token_type="refresh"),
    make_token(minutes=-5),
])
def test_unusable_tokens_are_rejected(token):
    with pytest.raises(InvalidToken):
        resolve_user_id({}, {"token": token})


def test_query_string_ignored_when_auth_required(monkeypatch):
    monkeypatch.setattr(settings, "SOCKET_AUTH_REQUIRED", True)
    assert resolve_user_id({"QUERY_STRING": "userId=patient-1"}, None) is None
    assert resolve_user_id({}, {"token": make_token()}) == "doctor-1"


async def test_connect_and_disconnect_drive_presence(monkeypatch, emitter):
    monkeypatch.setattr(socket_service.presence, "emitter", emitter)

    accepted = await socket_service.connect("sid-1", {"QUERY_STRING": "userId=patient-1"})
    assert accepted is True
    assert socket_service.registry.get_connections("patient-1") == {"sid-1"}

    await socket_service.disconnect("sid-1", "client disconnect")
    assert not socket_service.registry.is_online("patient-1")

    assert emitter.named(Event.PRESENCE_UPDATE) == [
        ({"userId": "patient-1", "isOnline": True}, None),
        ({"userId": "patient-1", "isOnline": False}, None),
    ]


async def test_connect_without_identity_is_refused():
    assert await socket_service.connect("sid-2", {"QUERY_STRING": ""}) is False
    assert await socket_service.connect("sid-3", {}, {"token": "garbage"}) is False
    assert socket_service.registry.user_for("sid-2") is None


def test_server_acknowledges_connect_before_handler_emits():
    assert socket_service.sio.always_connect is True
