import pytest

from app.constants import ErrorCode, MessageType
from app.database import database_name
from app.errors import error_code_for
from app.utils.chat_helpers import message_type_for_mime, pair_key
from app.utils.file_storage import sanitize_file_name, storage_key
from app.utils.logger import get_logger


@pytest.mark.parametrize("uri, expected", [
    ("mongodb://localhost:27017/clinic_chat", "clinic_chat"),
    ("mongodb+srv://u:p@cluster.example.net/chat_prod?retryWrites=true", "chat_prod"),
    ("mongodb://localhost:27017/", "clinic_chat"),
    ("mongodb://localhost:27017", "clinic_chat"),
])
def test_database_name(uri, expected):
    assert database_name(uri) == expected


@pytest.mark.parametrize("status_code, code", [
    (400, ErrorCode.BAD_REQUEST),
    (404, ErrorCode.NOT_FOUND),
    (422, ErrorCode.BAD_REQUEST),
    (503, ErrorCode.SERVER_ERROR),
])
def test_http_status_maps_to_error_code(status_code, code):
    assert error_code_for(status_code) == code


@pytest.mark.parametrize("mime, message_type", [
    ("image/jpeg", MessageType.IMAGE),
    ("audio/ogg; codecs=opus", MessageType.VOICE),
    ("application/pdf", MessageType.REPORT),
    ("application/zip", MessageType.FILE),
    (None, MessageType.FILE),
])
def test_message_type_for_mime(mime, message_type):
    assert message_type_for_mime(mime) == message_type


def test_pair_key_ignores_order():
    assert pair_key("doctor-1", "patient-1") == pair_key("patient-1", "doctor-1") == '["doctor-1","patient-1"]'


def test_pair_key_survives_separators_in_ids():
    assert pair_key("a:b", "c") != pair_key("a", "b:c")
    assert pair_key("a\",\"b", "c") != pair_key("a", "b\",\"c")


def test_file_names_are_sanitized():
    assert sanitize_file_name("../../etc/passwd") == "passwd"
    assert sanitize_file_name("my report (final).pdf") == "my_report__final_.pdf"
    assert sanitize_file_name(None) == "file"


def test_storage_keys_are_unique_and_keep_extension():
    a = storage_key("scan.PNG", "image/png")
    b = storage_key("scan.PNG", "image/png")
    assert a != b
    assert a.startswith("chat_files/")
    assert a.endswith(".png")


def test_child_loggers_share_the_service_root():
    assert get_logger("chat_store").name == "clinic_chat.chat_store"
    assert get_logger().name == "clinic_chat"
