import random

import pytest

from roomrelay.membership import MembershipManager


def consistent(manager):
    """Every room's member set matches the connections pointing at it"""
    for room in manager.rooms:
        pointing = {c.identity for c in manager.connections if c.room_id == room.id}
        assert set(room.members) == pointing
    for conn in manager.connections:
        if conn.room_id is not None:
            assert conn.identity in manager.rooms.get_room(conn.room_id).members


def test_connect_pushes_current_room_list(manager, connect):
    alice = connect("alice")
    assert alice.of("rooms-update") == [[]]


def test_create_join_and_full_room(manager, connect):
    alice, bob, carol = connect("alice"), connect("bob"), connect("carol")

    created = manager.create_and_join("alice", "Alice", "Spanish Practice", limit=2)
    assert created.ok
    room_id = created.data["roomId"]
    assert created.to_dict() == {"ok": True, "roomId": room_id, "topic": "Spanish Practice"}

    joined = manager.join("bob", room_id, "Bob", avatar="bob.png")
    assert joined.ok
    assert joined.data["topic"] == "Spanish Practice"
    assert joined.data["otherMembers"] == [{"id": "alice", "name": "Alice", "avatarRef": None}]
    assert alice.of("member-joined") == [{"id": "bob", "name": "Bob", "avatarRef": "bob.png"}]
    assert bob.of("member-joined") == []

    full = manager.join("carol", room_id, "Carol")
    assert full.to_dict() == {"ok": False, "error": "Room is full"}
    assert set(manager.rooms.get_room(room_id).members) == {"alice", "bob"}
    assert manager.connections.get("carol").room_id is None
    consistent(manager)

    # Every connection, joined or not, saw the room list change
    assert carol.of("rooms-update")[-1][0]["participantCount"] == 2


def test_join_unknown_room_never_creates_it(manager, connect):
    connect("bob")
    result = manager.join("bob", "NOPE123", "Bob")

    assert result.to_dict() == {"ok": False, "error": "Room not found"}
    assert len(manager.rooms) == 0
    assert manager.connections.get("bob").room_id is None


@pytest.mark.parametrize("name,topic", [("", "Topic"), ("Alice", ""), ("  ", "Topic"), (None, None)])
def test_create_requires_topic_and_name(manager, connect, name, topic):
    alice = connect("alice")
    alice.clear()
    result = manager.create_and_join("alice", name, topic)

    assert result.to_dict() == {"ok": False, "error": "Topic and name are required"}
    assert len(manager.rooms) == 0
    assert alice.events == []


def test_join_requires_name(manager, connect):
    connect("alice"), connect("bob")
    room_id = manager.create_and_join("alice", "Alice", "Topic").data["roomId"]

    assert manager.join("bob", room_id, " ").error == "Room ID and name are required"
    assert len(manager.rooms.get_room(room_id).members) == 1


def test_cannot_join_a_second_room_without_leaving(manager, connect):
    connect("alice"), connect("bob")
    first = manager.create_and_join("alice", "Alice", "One").data["roomId"]
    second = manager.create_and_join("bob", "Bob", "Two").data["roomId"]

    assert manager.join("alice", second, "Alice").error == "Already in a room"
    assert manager.create_and_join("alice", "Alice", "Three").error == "Already in a room"
    assert manager.connections.get("alice").room_id == first

    manager.leave("alice")
    assert manager.join("alice", second, "Alice").ok
    consistent(manager)


def test_non_finite_limit_is_rejected(manager, connect):
    connect("alice")
    result = manager.create_and_join("alice", "Alice", "Topic", limit=float("inf"))

    assert result.to_dict() == {"ok": False, "error": "Invalid participant limit"}
    assert len(manager.rooms) == 0
    assert manager.connections.get("alice").room_id is None


def test_disconnect_unregisters_even_if_cleanup_cannot_be_scheduled():
    def no_loop(delay, callback, *args):
        raise RuntimeError("no running event loop")

    manager = MembershipManager(scheduler=no_loop)
    manager.connect("alice", [].append)
    manager.create_and_join("alice", "Alice", "Topic")

    with pytest.raises(RuntimeError):
        manager.disconnect("alice")
    assert manager.connections.get("alice") is None


def test_unknown_connection_is_rejected(manager):
    assert manager.create_and_join("ghost", "Ghost", "Topic").error == "Unknown connection"
    assert len(manager.rooms) == 0


def test_leave_notifies_remaining_members(manager, connect):
    alice, bob = connect("alice"), connect("bob")
    room_id = manager.create_and_join("alice", "Alice", "Topic").data["roomId"]
    manager.join("bob", room_id, "Bob")

    assert manager.leave("bob")
    assert alice.of("member-left") == [{"id": "bob", "name": "Bob"}]
    assert bob.of("member-left") == []
    assert manager.connections.get("bob").room_id is None
    assert alice.of("rooms-update")[-1][0]["participantCount"] == 1
    consistent(manager)


def test_leave_is_idempotent(manager, connect, scheduler):
    connect("alice")
    assert not manager.leave("alice")
    assert not manager.leave("nobody")
    assert scheduler.handles == []


def test_emptied_room_is_removed_after_grace_delay(manager, connect, scheduler):
    alice, watcher = connect("alice"), connect("watcher")
    room_id = manager.create_and_join("alice", "Alice", "Topic").data["roomId"]

    manager.disconnect("alice")
    assert watcher.of("rooms-update")[-1] == []
    assert room_id in manager.rooms

    [handle] = scheduler.pending
    assert handle.delay == 5.0
    scheduler.fire(handle)

    assert room_id not in manager.rooms
    connect("late")
    assert manager.join("late", room_id, "Late").error == "Room not found"


def test_rejoin_during_grace_keeps_room(manager, connect, scheduler):
    connect("alice")
    room_id = manager.create_and_join("alice", "Alice", "Topic").data["roomId"]
    manager.leave("alice")

    assert manager.join("alice", room_id, "Alice").ok
    scheduler.fire_all()

    assert room_id in manager.rooms
    assert [r["id"] for r in manager.list_rooms()] == [room_id]


def test_overlapping_cleanups_delete_once(manager, connect, scheduler):
    connect("alice")
    room_id = manager.create_and_join("alice", "Alice", "Topic").data["roomId"]
    manager.leave("alice")
    first = scheduler.pending[0]
    manager.join("alice", room_id, "Alice")
    manager.leave("alice")

    assert first.cancelled
    assert len(scheduler.pending) == 1

    # A stale callback that fires anyway is harmless
    assert manager.expire_room(room_id)
    assert not manager.expire_room(room_id)
    assert room_id not in manager.rooms


def test_recreated_topic_is_a_fresh_room(manager, connect, scheduler):
    connect("alice")
    old = manager.create_and_join("alice", "Alice", "Spanish Practice").data["roomId"]
    manager.leave("alice")
    scheduler.fire_all()

    new = manager.create_and_join("alice", "Alice", "Spanish Practice").data["roomId"]
    assert new != old


def test_shutdown_cancels_pending_cleanups(manager, connect, scheduler):
    connect("alice")
    manager.create_and_join("alice", "Alice", "Topic")
    manager.leave("alice")

    manager.shutdown()
    assert scheduler.pending == []


def test_random_sequences_keep_registry_and_store_consistent(manager, connect, scheduler):
    rng = random.Random(7)
    identities = [f"c{i}" for i in range(8)]
    for identity in identities:
        connect(identity)

    for _ in range(400):
        identity = rng.choice(identities)
        action = rng.random()
        if action < 0.25:
            manager.create_and_join(identity, identity, "topic", limit=rng.randint(1, 3))
        elif action < 0.6:
            rooms = [r.id for r in manager.rooms] or ["MISSING"]
            manager.join(identity, rng.choice(rooms), identity)
        elif action < 0.85:
            manager.leave(identity)
        elif action < 0.95:
            manager.disconnect(identity)
            connect(identity)
        else:
            scheduler.fire_all()

        consistent(manager)
        for room in manager.rooms:
            assert len(room.members) <= room.limit
        assert all(r["participantCount"] > 0 for r in manager.list_rooms())
