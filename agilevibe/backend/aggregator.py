"""Derived views over a session mirror: vote list, average, histogram."""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable

from .deck import card_sort_key, parse_number
from .models import Participant, Permission, is_vote_eligible
from .reconciler import Reconciler

NO_AVERAGE = "0"


def vote_list(reconciler: Reconciler, now: float | None = None) -> list[str]:
    """Non-null votes of live participants who may vote under the active scope."""
    scope = reconciler.state.active_scope
    return [
        participant.current_vote
        for participant in reconciler.live_participants(now)
        if participant.current_vote is not None and is_vote_eligible(participant, scope)
    ]


def average(votes: Iterable[str]) -> str:
    numbers = [number for number in (parse_number(vote) for vote in votes) if number is not None]
    if not numbers:
        return NO_AVERAGE
    return format(sum(numbers) / len(numbers), ".1f")


def histogram(votes: Iterable[str]) -> dict[str, int]:
    counts = Counter(votes)
    return {value: counts[value] for value in sorted(counts, key=card_sort_key)}


def my_vote(reconciler: Reconciler, participant_id: str | None) -> str | None:
    participant = reconciler.state.participant(participant_id)
    if participant is None:
        return None
    return participant.current_vote


def visible_vote(reconciler: Reconciler, viewer_id: str | None, participant: Participant) -> str | None:
    """A viewer always sees their own vote; other votes only once revealed."""
    if participant.id == viewer_id or reconciler.state.revealed:
        return participant.current_vote
    return None


def participant_views(
    reconciler: Reconciler,
    viewer_id: str | None,
    now: float | None = None,
) -> list[dict[str, Any]]:
    participants = sorted(reconciler.live_participants(now), key=lambda item: (item.joined_at, item.id))
    return [
        {
            "id": participant.id,
            "name": participant.name,
            "role": participant.role.value,
            "team": participant.team,
            "isSelf": participant.id == viewer_id,
            "canVote": participant.can(Permission.VOTE),
            "hasVoted": participant.current_vote is not None,
            "vote": visible_vote(reconciler, viewer_id, participant),
        }
        for participant in participants
    ]
