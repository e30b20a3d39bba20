from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import NotFound, StorageUnavailable, ValidationError
from app.Chat import message_log, room_directory
from app.Chat.message import Message
from app.Chat.message_log import build_draft, format_size_label

from conftest import ALICE, BOB


def _room(db):
    return room_directory.create_room(db, kind="direct", participants=["1", "2"])


def _send(db, room_id, text, who=ALICE):
    return message_log.append(db, room_id=room_id, draft=build_draft(kind="text", text=text), sender=who)


def test_append_assigns_ids_and_updates_room(db):
    room = _room(db)
    m1 = _send(db, room.id, "hi")
    m2 = _send(db, room.id, "there", who=BOB)

    assert (m1.seq, m2.seq) == (1, 2)
    assert m2.id > m1.id
    assert m2.sent_at >= m1.sent_at
    assert m2.sender_name == "Bob" and m2.sender_role == "teacher"

    db.expire_all()
    fresh = room_directory.get_room(db, room_id=room.id)
    assert fresh.last_message["id"] == m2.id
    assert fresh.last_activity_at == m2.sent_at
    assert message_log.latest(db, room_id=room.id).id == m2.id


def test_list_since_is_ordered_and_cursor_exclusive(db):
    room = _room(db)
    for i in range(5):
        _send(db, room.id, f"m{i}")

    everything = message_log.list_since(db, room_id=room.id)
    assert [m.text for m in everything] == ["m0", "m1", "m2", "m3", "m4"]

    after_two = message_log.list_since(db, room_id=room.id, cursor=everything[1].seq)
    assert [m.text for m in after_two] == ["m2", "m3", "m4"]

    page = message_log.list_since(db, room_id=room.id, cursor=everything[1].seq, limit=2)
    assert [m.text for m in page] == ["m2", "m3"]
    assert message_log.list_since(db, room_id=room.id, cursor=everything[-1].seq) == []


def test_sent_at_never_goes_backwards(db, monkeypatch):
    room = _room(db)
    first = _send(db, room.id, "first")
    monkeypatch.setattr(message_log, "utcnow", lambda: first.sent_at - timedelta(minutes=5))
    second = _send(db, room.id, "second")
    assert second.sent_at == first.sent_at
    assert [m.text for m in message_log.list_since(db, room_id=room.id)] == ["first", "second"]


def test_append_to_missing_room(db):
    with pytest.raises(NotFound):
        _send(db, 4242, "hello?")


def test_failed_append_writes_nothing(db, monkeypatch):
    room = _room(db)
    kept = _send(db, room.id, "kept")

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk gone"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(StorageUnavailable):
        _send(db, room.id, "lost")
    monkeypatch.undo()

    db.expire_all()
    assert db.query(Message).count() == 1
    assert room_directory.get_room(db, room_id=room.id).last_message["id"] == kept.id


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"kind": "text"}, "EMPTY_MESSAGE"),
        ({"kind": "text", "text": "   "}, "EMPTY_MESSAGE"),
        ({"kind": "sticker", "text": "x"}, "INVALID_KIND"),
        ({"kind": "image", "text": "look"}, "INVALID_ATTACHMENT"),
        ({"kind": "file", "attachment": {"fileName": "a.pdf"}}, "INVALID_ATTACHMENT"),
        ({"kind": "text", "text": "x" * 4001}, "TEXT_TOO_LONG"),
        ({"kind": "text", "text": 5}, "INVALID_REQUEST"),
        ({"kind": 3, "text": "x"}, "INVALID_REQUEST"),
        ({"kind": "file", "attachment": {"url": 7}}, "INVALID_REQUEST"),
        ({"kind": "file", "attachment": {"url": "u", "fileName": ["a"]}}, "INVALID_REQUEST"),
        ({"kind": "file", "attachment": {"url": "u", "size": "big"}}, "INVALID_REQUEST"),
        ({"kind": "file", "attachment": {"url": "u", "size": True}}, "INVALID_REQUEST"),
    ],
)
def test_build_draft_rejects(kwargs, code):
    with pytest.raises(ValidationError) as err:
        build_draft(**kwargs)
    assert err.value.code == code


def test_build_draft_with_attachment_derives_size_label():
    draft = build_draft(
        kind="image",
        attachment={"url": "https://blobs.local/a.png", "fileName": "a.png", "size": 1536},
    )
    assert draft.text is None
    assert draft.attachment.size_label == "1.5 KB"


def test_format_size_label():
    assert format_size_label(0) == "0 Bytes"
    assert format_size_label(512) == "512 Bytes"
    assert format_size_label(2 * 1024 * 1024) == "2 MB"
    assert format_size_label(1234567) == "1.18 MB"
