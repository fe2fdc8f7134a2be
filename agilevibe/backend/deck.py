"""Deck ordering helpers shared by deck edits and vote histograms."""

from __future__ import annotations

import math
from functools import cmp_to_key
from typing import Iterable


DEFAULT_DECK: tuple[str, ...] = tuple(str(value) for value in range(1, 21))


def parse_number(value: str) -> float | None:
    """Return the finite float value of a card, or ``None`` for special cards."""
    if isinstance(value, str) and "_" in value:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def compare_cards(left: str, right: str) -> int:
    """Numeric comparison when both cards parse, plain string comparison otherwise."""
    left_number = parse_number(left)
    right_number = parse_number(right)
    if left_number is not None and right_number is not None:
        return (left_number > right_number) - (left_number < right_number)
    return (left > right) - (left < right)


card_sort_key = cmp_to_key(compare_cards)


def sort_deck(cards: Iterable[str]) -> list[str]:
    unique: list[str] = []
    for card in cards:
        if card not in unique:
            unique.append(card)
    return sorted(unique, key=card_sort_key)


def add_card(deck: Iterable[str], value: str) -> list[str] | None:
    """Return the re-sorted deck with ``value`` added, or ``None`` when it is empty or present."""
    cards = list(deck)
    card = value.strip()
    if card == "" or card in cards:
        return None
    cards.append(card)
    return sort_deck(cards)


def remove_card(deck: Iterable[str], value: str) -> list[str] | None:
    cards = list(deck)
    if value not in cards:
        return None
    return sort_deck(card for card in cards if card != value)
