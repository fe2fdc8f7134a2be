from agilevibe.backend import aggregator
from agilevibe.backend.models import Participant, Role
from agilevibe.backend.reconciler import Reconciler
from agilevibe.backend.state import SessionState

NOW = 500.0


def _participant(
    participant_id: str,
    vote: str | None,
    *,
    role: Role = Role.VOTER,
    team: str | None = None,
    last_seen: float = NOW,
    joined_at: float = 0.0,
) -> Participant:
    return Participant(
        id=participant_id,
        name=participant_id.upper(),
        role=role,
        team=team,
        current_vote=vote,
        last_seen=last_seen,
        joined_at=joined_at,
    )


def _reconciler(*participants: Participant, revealed: bool = False, scope: str | None = None) -> Reconciler:
    state = SessionState(room_id="room", revealed=revealed, active_scope=scope)
    state.participants = {participant.id: participant for participant in participants}
    return Reconciler(state, liveness_window=30.0, clock=lambda: NOW)


def test_average_uses_numeric_votes_only() -> None:
    assert aggregator.average(["3", "5", "8", "?"]) == "5.3"


def test_average_without_numeric_votes_is_zero() -> None:
    assert aggregator.average([]) == "0"
    assert aggregator.average(["?", "coffee"]) == "0"


def test_histogram_orders_like_the_deck() -> None:
    assert list(aggregator.histogram(["13", "5", "?", "5", "8"]).items()) == [
        ("5", 2),
        ("8", 1),
        ("13", 1),
        ("?", 1),
    ]


def test_vote_list_skips_stale_observers_and_blank_votes() -> None:
    reconciler = _reconciler(
        _participant("a", "3"),
        _participant("b", None),
        _participant("c", "8", last_seen=NOW - 35),
        _participant("d", "5", role=Role.OBSERVER),
        _participant("e", "13", role=Role.ADMIN),
    )

    assert sorted(aggregator.vote_list(reconciler)) == ["13", "3"]


def test_vote_list_respects_active_scope() -> None:
    reconciler = _reconciler(
        _participant("a", "3", team="React"),
        _participant("b", "5", team="Backend"),
        _participant("c", "8", role=Role.ADMIN),
        scope="React",
    )

    assert aggregator.vote_list(reconciler) == ["3"]


def test_all_scope_disables_gate() -> None:
    reconciler = _reconciler(
        _participant("a", "3", team="React"),
        _participant("b", "5", team="Backend"),
        scope="All",
    )

    assert sorted(aggregator.vote_list(reconciler)) == ["3", "5"]


def test_my_vote_ignores_reveal_flag() -> None:
    reconciler = _reconciler(_participant("me", "8"), revealed=False)

    assert aggregator.my_vote(reconciler, "me") == "8"
    assert aggregator.my_vote(reconciler, "missing") is None


def test_participant_views_mask_other_votes_until_reveal() -> None:
    hidden = _reconciler(_participant("me", "8", joined_at=2), _participant("peer", "3", joined_at=1))

    views = aggregator.participant_views(hidden, viewer_id="me")

    assert [view["id"] for view in views] == ["peer", "me"]
    assert views[0]["vote"] is None
    assert views[0]["hasVoted"] is True
    assert views[1]["vote"] == "8"
    assert views[1]["isSelf"] is True

    hidden.state.revealed = True
    assert aggregator.participant_views(hidden, viewer_id="me")[0]["vote"] == "3"
