from agilevibe.backend.codec import encode_deck, encode_task
from agilevibe.backend.models import Participant, Role, Task
from agilevibe.backend.reconciler import Reconciler
from agilevibe.backend.state import SessionState, build_initial_state
from agilevibe.backend.store import InMemoryReplicatedStore

NOW = 1_000.0


def _reconciler(window: float = 30.0) -> Reconciler:
    return Reconciler(SessionState(room_id="room"), liveness_window=window, clock=lambda: NOW)


def _record(name: str, last_seen: float = NOW, vote: str | None = None, role: str = "voter") -> dict:
    record = {"name": name, "role": role, "lastSeen": last_seen, "joinedAt": last_seen}
    if vote is not None:
        record["currentVote"] = vote
    return record


def test_field_changes_overwrite_independently() -> None:
    reconciler = _reconciler()

    reconciler.on_remote_field_change("currentTask", encode_task(Task(id="t1", title="A", description="")))
    reconciler.on_remote_field_change("revealed", True)
    reconciler.on_remote_field_change("deck", encode_deck(["8", "3"]))
    reconciler.on_remote_field_change("activeScope", "React")

    state = reconciler.state
    assert state.current_task == Task(id="t1", title="A", description="")
    assert state.revealed is True
    assert state.deck == ["3", "8"]
    assert state.active_scope == "React"


def test_malformed_payload_keeps_previous_value() -> None:
    reconciler = _reconciler()
    reconciler.on_remote_field_change("currentTask", encode_task(Task(id="t1", title="A", description="")))

    applied_task = reconciler.on_remote_field_change("currentTask", "{broken")
    applied_deck = reconciler.on_remote_field_change("deck", 42)

    assert applied_task is False
    assert applied_deck is False
    assert reconciler.state.current_task is not None
    assert reconciler.state.current_task.id == "t1"
    assert reconciler.state.deck == build_initial_state("room").deck


def test_participant_upsert_and_tombstone() -> None:
    reconciler = _reconciler()

    reconciler.on_participant_change("p1", _record("Ana", vote="5"))
    reconciler.on_participant_change("p1", _record("Ana", vote="8"))
    assert reconciler.state.participants["p1"].current_vote == "8"

    reconciler.on_participant_change("p1", None)
    assert "p1" not in reconciler.state.participants


def test_stale_record_is_treated_as_tombstone() -> None:
    reconciler = _reconciler(window=30.0)
    reconciler.on_participant_change("p1", _record("Ana"))

    reconciler.on_participant_change("p1", _record("Ana", last_seen=NOW - 35, vote="5"))

    assert "p1" not in reconciler.state.participants
    assert reconciler.live_participants() == []


def test_record_at_exact_window_is_still_live() -> None:
    reconciler = _reconciler(window=30.0)

    reconciler.on_participant_change("p1", _record("Ana", last_seen=NOW - 30))

    assert [participant.id for participant in reconciler.live_participants()] == ["p1"]


def test_malformed_participant_record_is_dropped() -> None:
    reconciler = _reconciler()
    reconciler.on_participant_change("p1", _record("Ana", vote="3"))

    applied = reconciler.on_participant_change("p1", {"lastSeen": NOW})

    assert applied is False
    assert reconciler.state.participants["p1"].current_vote == "3"


def test_snapshot_without_local_participant_keeps_self() -> None:
    reconciler = _reconciler()
    me = Participant(id="me", name="Me", role=Role.VOTER, team=None, current_vote="5", last_seen=NOW, joined_at=NOW)
    reconciler.bind_local(me)
    reconciler.on_participant_change("gone", _record("Gone"))

    reconciler.apply_snapshot({"peer": _record("Peer")})

    assert set(reconciler.state.participants) == {"me", "peer"}
    assert reconciler.state.participants["me"].current_vote == "5"


def test_snapshot_tombstone_for_self_removes_self() -> None:
    reconciler = _reconciler()
    me = Participant(id="me", name="Me", role=Role.VOTER, team=None, current_vote=None, last_seen=NOW, joined_at=NOW)
    reconciler.bind_local(me)

    reconciler.apply_snapshot({"me": None, "peer": _record("Peer")})

    assert set(reconciler.state.participants) == {"peer"}


def test_local_participant_is_never_pruned_locally() -> None:
    reconciler = _reconciler()
    me = Participant(id="me", name="Me", role=Role.VOTER, team=None, current_vote=None, last_seen=0, joined_at=0)
    reconciler.bind_local(me)
    reconciler.state.participants["old"] = Participant(
        id="old", name="Old", role=Role.VOTER, team=None, current_vote="1", last_seen=NOW - 100, joined_at=0
    )

    pruned = reconciler.prune()

    assert pruned == ["old"]
    assert set(reconciler.state.participants) == {"me"}


def test_out_of_order_field_application_converges() -> None:
    task = encode_task(Task(id="t2", title="Next", description=""))
    in_order = _reconciler()
    reversed_order = _reconciler()
    for reconciler in (in_order, reversed_order):
        reconciler.on_remote_field_change("revealed", True)

    in_order.on_remote_field_change("revealed", False)
    in_order.on_remote_field_change("currentTask", task)
    reversed_order.on_remote_field_change("currentTask", task)
    reversed_order.on_remote_field_change("revealed", False)

    assert in_order.state == reversed_order.state


def test_attach_replays_store_and_follows_it() -> None:
    store = InMemoryReplicatedStore()
    store.put(("room", "state", "revealed"), True)
    store.put(("room", "participants", "p1"), _record("Ana", vote="5"))
    reconciler = _reconciler()
    changes: list[SessionState] = []
    reconciler.add_listener(changes.append)

    detach = reconciler.attach(store)
    store.put(("room", "participants", "p1", "currentVote"), "13")
    detach()
    store.put(("room", "state", "revealed"), False)

    assert reconciler.state.revealed is True
    assert reconciler.state.participants["p1"].current_vote == "13"
    assert changes
