import asyncio

import pytest

from app.constants import MessageType
from app.models import Chat, Message
from app.services.chat_store import ChatNotFound, InvalidParticipants

from conftest import DOCTOR, PATIENT


async def test_get_or_create_is_order_independent(store):
    first = await store.get_or_create_chat(PATIENT, DOCTOR)
    second = await store.get_or_create_chat(DOCTOR, PATIENT)

    assert first.id == second.id
    assert first.participants == sorted([PATIENT, DOCTOR])
    assert await Chat.find_all().count() == 1


async def test_concurrent_creation_yields_one_chat(store):
    calls = [store.get_or_create_chat("a", "b") for _ in range(5)]
    calls += [store.get_or_create_chat("b", "a") for _ in range(5)]
    chats = await asyncio.gather(*calls)

    assert len({c.id for c in chats}) == 1
    assert await Chat.find_all().count() == 1


async def test_losing_a_create_race_rereads_the_winner(store, monkeypatch):
    winner = await store.get_or_create_chat(PATIENT, DOCTOR)

    real_find = store._find_by_pair
    calls = {"n": 0}

    async def stale_then_real(key):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_find(key)

    monkeypatch.setattr(store, "_find_by_pair", stale_then_real)
    loser = await store.get_or_create_chat(DOCTOR, PATIENT)

    assert loser.id == winner.id
    assert calls["n"] == 2
    assert await Chat.find_all().count() == 1


async def test_ids_containing_separators_get_their_own_chats(store):
    first = await store.get_or_create_chat("a:b", "c")
    second = await store.get_or_create_chat("a", "b:c")

    assert first.id != second.id
    assert second.participants == ["a", "b:c"]
    assert (await store.get_or_create_chat("b:c", "a")).id == second.id
    assert await Chat.find_all().count() == 2


async def test_same_user_cannot_chat_with_themselves(store):
    with pytest.raises(InvalidParticipants):
        await store.get_or_create_chat(PATIENT, PATIENT)


async def test_save_message_assigns_id_and_bumps_chat(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    msg = await store.save_message(
        chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="Hello", client_id="tmp-1"
    )

    assert msg.id is not None
    assert msg.read is False
    assert msg.client_id == "tmp-1"
    refreshed = await store.get_chat(chat.id)
    assert refreshed.last_message_id == msg.id


async def test_late_bump_for_an_older_message_is_ignored(store, monkeypatch):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    real_bump = store._bump_chat
    held = []

    async def hold_first(chat_id, message):
        if not held:
            held.append((chat_id, message))
            return
        await real_bump(chat_id, message)

    monkeypatch.setattr(store, "_bump_chat", hold_first)
    older = await store.save_message(chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="m1")
    newer = await store.save_message(chat_id=chat.id, sender_id=DOCTOR, receiver_id=PATIENT, content="m2")
    await real_bump(*held[0])

    refreshed = await store.get_chat(chat.id)
    assert older.id < newer.id
    assert refreshed.last_message_id == newer.id


async def test_save_message_rejects_outsiders(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    with pytest.raises(InvalidParticipants):
        await store.save_message(chat_id=chat.id, sender_id="intruder", receiver_id=DOCTOR, content="hi")


async def test_unknown_or_malformed_chat_id(store):
    with pytest.raises(ChatNotFound):
        await store.get_chat("not-an-object-id")
    with pytest.raises(ChatNotFound):
        await store.list_messages("65f000000000000000000000")


async def test_messages_come_back_in_persisted_order(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    sent = []
    for i in range(6):
        sender, receiver = (PATIENT, DOCTOR) if i % 2 == 0 else (DOCTOR, PATIENT)
        m = await store.save_message(chat_id=chat.id, sender_id=sender, receiver_id=receiver, content=f"m{i}")
        sent.append(m.id)

    listed = await store.list_messages(chat.id)
    assert [m.id for m in listed] == sent

    page2 = await store.list_messages(chat.id, page=2, page_size=4)
    assert [m.content for m in page2] == ["m4", "m5"]
    assert await store.list_messages(chat.id, page=3, page_size=4) == []


async def test_empty_chat_lists_no_messages(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    assert await store.list_messages(chat.id) == []


async def test_mark_read_is_monotonic_and_idempotent(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    await store.save_message(chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="one")
    await store.save_message(chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="two")
    mine = await store.save_message(chat_id=chat.id, sender_id=DOCTOR, receiver_id=PATIENT, content="reply")

    assert await store.mark_read(chat.id, DOCTOR) == 2
    assert await store.mark_read(chat.id, DOCTOR) == 0

    messages = await store.list_messages(chat.id)
    assert [m.read for m in messages] == [True, True, False]
    assert all(m.delivered for m in messages if m.receiver_id == DOCTOR)
    assert (await Message.get(mine.id)).read is False


async def test_unread_count_tracks_receiver_only(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    await store.save_message(chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="hi")

    assert await store.unread_count(chat.id, DOCTOR) == 1
    assert await store.unread_count(chat.id, PATIENT) == 0

    await store.save_message(chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="again")
    assert await store.unread_count(chat.id, DOCTOR) == 2
    assert await store.unread_count(chat.id, PATIENT) == 0


async def test_list_chats_for_user_sorted_by_activity(store):
    old = await store.get_or_create_chat(DOCTOR, "patient-2")
    await store.save_message(chat_id=old.id, sender_id="patient-2", receiver_id=DOCTOR, content="first")
    await asyncio.sleep(0.01)
    recent = await store.get_or_create_chat(DOCTOR, PATIENT)
    last = await store.save_message(chat_id=recent.id, sender_id=PATIENT, receiver_id=DOCTOR, content="latest")

    summaries = await store.list_chats_for_user(DOCTOR)
    assert [s.chat.id for s in summaries] == [recent.id, old.id]
    assert summaries[0].other_participant == PATIENT
    assert summaries[0].last_message.id == last.id
    assert [s.unread_count for s in summaries] == [1, 1]

    assert [s.chat.id for s in await store.list_chats_for_user(PATIENT)] == [recent.id]
    assert await store.list_chats_for_user("stranger") == []


async def test_delete_chat_removes_its_messages(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    await store.save_message(chat_id=chat.id, sender_id=PATIENT, receiver_id=DOCTOR, content="bye")

    await store.delete_chat(chat.id)

    assert await Chat.find_all().count() == 0
    assert await Message.find_all().count() == 0


async def test_file_message_metadata_is_kept(store):
    chat = await store.get_or_create_chat(PATIENT, DOCTOR)
    msg = await store.save_message(
        chat_id=chat.id,
        sender_id=PATIENT,
        receiver_id=DOCTOR,
        message_type=MessageType.REPORT,
        file_url="/media/chat_files/x.pdf",
        file_name="labs.pdf",
        file_mime_type="application/pdf",
        file_size=1024,
    )
    stored = await Message.get(msg.id)
    assert stored.message_type == MessageType.REPORT
    assert stored.file_name == "labs.pdf"
    assert stored.file_size == 1024
