from agilevibe.backend.deck import DEFAULT_DECK, add_card, compare_cards, parse_number, remove_card, sort_deck


def test_sort_deck_orders_numbers_then_special_cards() -> None:
    assert sort_deck(["5", "13", "8", "?"]) == ["5", "8", "13", "?"]


def test_add_and_remove_keep_deck_sorted() -> None:
    deck = ["5", "13", "8", "?"]

    added = add_card(deck, "0.5")
    removed = remove_card(added, "8")

    assert added == ["0.5", "5", "8", "13", "?"]
    assert removed == ["0.5", "5", "13", "?"]


def test_add_card_rejects_duplicates_and_blank_values() -> None:
    deck = list(DEFAULT_DECK)

    assert add_card(deck, "5") is None
    assert add_card(deck, "   ") is None
    assert remove_card(deck, "coffee") is None


def test_compare_cards_mixes_numeric_and_string_rules() -> None:
    assert compare_cards("2", "10") < 0
    assert compare_cards("10", "2") > 0
    assert compare_cards("1.0", "1") == 0
    # A non-numeric side falls back to plain string order.
    assert compare_cards("10", "?") < 0
    assert compare_cards("?", "XL") < 0
    assert compare_cards("L", "M") < 0


def test_parse_number_ignores_special_and_non_finite_cards() -> None:
    assert parse_number("3") == 3.0
    assert parse_number("0.5") == 0.5
    assert parse_number("?") is None
    assert parse_number("nan") is None
    assert parse_number("inf") is None


def test_sort_deck_drops_duplicates() -> None:
    assert sort_deck(["3", "1", "3", "?", "?"]) == ["1", "3", "?"]


def test_cards_with_digit_separators_are_not_numeric() -> None:
    assert parse_number("1_0") is None
    assert compare_cards("1_0", "9") < 0
