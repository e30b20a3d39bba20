import threading

import pytest

from app.core.errors import NotFound, StorageUnavailable, Unauthorized, ValidationError
from app.Chat import message_log

from conftest import ALICE, BOB, CAROL


def test_direct_chat_scenario(gateway, clock):
    room = gateway.create_or_find_direct_room(ALICE, "2", "Bob")
    assert room["name"] == "Alice & Bob"
    assert gateway.create_or_find_direct_room(BOB, "1")["id"] == room["id"]

    bob_view = []
    gateway.subscribe_room(BOB, room["id"], bob_view.append)
    assert bob_view == [[]]

    msg = gateway.send_message(ALICE, room["id"], kind="text", text="hi")
    assert msg["deliveryState"] == "sent"
    latest = bob_view[-1]
    assert [(m["id"], m["text"], m["senderId"], m["sentAt"]) for m in latest] == [
        (msg["id"], "hi", "1", msg["sentAt"])
    ]

    alice_typing = []
    gateway.subscribe_typing(ALICE, room["id"], alice_typing.append)
    gateway.set_typing(BOB, room["id"], True)
    assert [(t["userId"], t["name"]) for t in alice_typing[-1]] == [("2", "Bob")]

    clock.advance(3100)
    assert gateway.list_typing(ALICE, room["id"]) == []


def test_room_reflects_last_message(gateway):
    room = gateway.create_group_room(ALICE, ["2", "3"], "Physics")
    msg = gateway.send_message(CAROL, room["id"], text="lab at 3?")
    again = gateway.get_room(BOB, room["id"])
    assert again["lastMessage"]["id"] == msg["id"]
    assert again["lastActivityAt"] == msg["sentAt"]
    assert [r["id"] for r in gateway.list_my_rooms(ALICE)] == [room["id"]]


def test_outsiders_are_rejected(gateway):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    with pytest.raises(Unauthorized):
        gateway.send_message(CAROL, room["id"], text="let me in")
    with pytest.raises(Unauthorized):
        gateway.subscribe_room(CAROL, room["id"], lambda s: None)
    with pytest.raises(Unauthorized):
        gateway.set_typing(CAROL, room["id"], True)
    with pytest.raises(NotFound):
        gateway.list_messages(ALICE, room["id"] + 1)
    with pytest.raises(ValidationError):
        gateway.create_or_find_direct_room(ALICE, "1")
    assert gateway.fanout.subscriber_count() == 0


def test_sending_clears_own_typing_mark(gateway):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    gateway.set_typing(ALICE, room["id"], True)
    assert len(gateway.list_typing(BOB, room["id"])) == 1
    gateway.send_message(ALICE, room["id"], text="done typing")
    assert gateway.list_typing(BOB, room["id"]) == []


def test_typing_failure_never_blocks_send(gateway, monkeypatch):
    room = gateway.create_or_find_direct_room(ALICE, "2")

    def unavailable(*args, **kwargs):
        raise ConnectionError("presence store down")

    monkeypatch.setattr(gateway.typing, "set_typing", unavailable)
    monkeypatch.setattr(gateway.typing, "list_typing", unavailable)
    gateway.set_typing(ALICE, room["id"], True)
    assert gateway.list_typing(BOB, room["id"]) == []
    assert gateway.send_message(ALICE, room["id"], text="still works")["text"] == "still works"


def test_failed_send_is_not_fanned_out(gateway, monkeypatch):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    seen = []
    gateway.subscribe_room(BOB, room["id"], seen.append)

    def storage_down(*args, **kwargs):
        raise StorageUnavailable("message was not stored")

    monkeypatch.setattr(message_log, "append", storage_down)
    with pytest.raises(StorageUnavailable):
        gateway.send_message(ALICE, room["id"], text="lost")
    assert seen == [[]]
    monkeypatch.undo()
    assert gateway.list_messages(BOB, room["id"]) == []


def test_cancelled_subscription_gets_nothing(gateway):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    seen = []
    handle = gateway.subscribe_room(BOB, room["id"], seen.append)
    handle()
    gateway.send_message(ALICE, room["id"], text="anyone?")
    assert seen == [[]]
    assert gateway.fanout.subscriber_count(room["id"]) == 0


def test_concurrent_senders_are_seen_in_one_order(gateway):
    room = gateway.create_group_room(ALICE, ["2", "3"], "Busy")
    views = {who.user_id: [] for who in (ALICE, BOB, CAROL)}
    for who in (ALICE, BOB, CAROL):
        gateway.subscribe_room(who, room["id"], views[who.user_id].append)

    def spam(who):
        for i in range(10):
            gateway.send_message(who, room["id"], text=f"{who.name}-{i}")

    threads = [threading.Thread(target=spam, args=(who,)) for who in (ALICE, BOB, CAROL)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    final = [m["id"] for m in gateway.list_messages(ALICE, room["id"])]
    assert len(final) == 30
    assert [m["seq"] for m in gateway.list_messages(ALICE, room["id"])] == list(range(1, 31))
    for snapshots in views.values():
        assert [m["id"] for m in snapshots[-1]] == final
        # every snapshot extends the one before it
        for before, after in zip(snapshots, snapshots[1:]):
            assert [m["id"] for m in after][: len(before)] == [m["id"] for m in before]


def _watch_typing(gateway, room_id):
    seen = []
    gateway.subscribe_typing(ALICE, room_id, seen.append)
    gateway.set_typing(BOB, room_id, True)
    assert [t["userId"] for t in seen[-1]] == ["2"]
    return seen


def test_sweep_pushes_expiry_to_typing_subscribers(gateway, clock):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    seen = _watch_typing(gateway, room["id"])

    clock.advance(1000)
    assert gateway.sweep_typing() == []
    clock.advance(2500)
    assert gateway.sweep_typing() == [room["id"]]
    assert seen[-1] == []


def test_sending_after_a_long_pause_clears_typing_for_watchers(gateway, clock):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    seen = _watch_typing(gateway, room["id"])

    clock.advance(3500)
    gateway.send_message(BOB, room["id"], text="sorry, got distracted")
    assert seen[-1] == []
    clock.advance(60000)
    gateway.sweep_typing()
    assert seen[-1] == []


def test_reading_typing_does_not_hide_expiry_from_watchers(gateway, clock):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    seen = _watch_typing(gateway, room["id"])

    clock.advance(3500)
    assert gateway.list_typing(ALICE, room["id"]) == []
    # a late joiner reads the marks too
    gateway.subscribe_typing(BOB, room["id"], lambda s: None)
    assert gateway.sweep_typing() == [room["id"]]
    assert seen[-1] == []


def test_outsider_with_bad_payload_is_rejected_as_outsider(gateway):
    room = gateway.create_or_find_direct_room(ALICE, "2")
    with pytest.raises(Unauthorized):
        gateway.send_message(CAROL, room["id"], kind="text")


def test_shared_gateway_is_built_once(monkeypatch):
    from app.Chat import chat_gateway

    monkeypatch.setattr(chat_gateway, "_gateway", None)
    built = []
    barrier = threading.Barrier(8)

    def grab():
        barrier.wait()
        built.append(chat_gateway.get_gateway())

    threads = [threading.Thread(target=grab) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(built) == 8
    assert len({id(g) for g in built}) == 1
