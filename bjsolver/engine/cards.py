"""
Card value buckets and the soft-ace total transform.

Value-bucket encoding (index 0–9):
    bucket_index = value - 2  ->  0=2, 1=3, ..., 7=9, 8=10 (10/J/Q/K), 9=Ace

The solvers only care about point values, so the four ten-valued ranks share
one bucket with 4x the per-deck frequency of every other bucket. The simulator
deals physical ranks (1=A, 2..10, 11=J, 12=Q, 13=K) and maps them to values
through RANK_VALUE.
"""

from __future__ import annotations

CARD_VALUES: tuple[int, ...] = (2, 3, 4, 5, 6, 7, 8, 9, 10, 11)
"""Draw outcomes in bucket order. Ace is 11 for totals."""

NUM_VALUES: int = 10

TEN_INDEX: int = 8
ACE_INDEX: int = 9
ACE_VALUE: int = 11

INFINITE_DECK_PROBS: tuple[float, ...] = (
    1 / 13, 1 / 13, 1 / 13, 1 / 13, 1 / 13, 1 / 13, 1 / 13, 1 / 13, 4 / 13, 1 / 13,
)
"""Per-bucket draw probability for an infinite shoe."""

CARDS_PER_DECK: tuple[int, ...] = (4, 4, 4, 4, 4, 4, 4, 4, 16, 4)

# Rank lookup for the simulator: index 0 unused, 1=A ... 13=K.
RANK_VALUE: tuple[int, ...] = (0, 11, 2, 3, 4, 5, 6, 7, 8, 9, 10, 10, 10, 10)

VALUE_NAMES: dict[int, str] = {
    2: '2', 3: '3', 4: '4', 5: '5', 6: '6', 7: '7', 8: '8', 9: '9', 10: 'T', 11: 'A',
}


def value_index(value: int) -> int:
    """Return the bucket index (0–9) of a card value (2–11).

    Examples:
        >>> value_index(2)
        0
        >>> value_index(11)
        9
    """
    return value - 2


def add_card(total: int, is_soft: bool, card_value: int) -> tuple[int, bool]:
    """Add one card to a hand, demoting soft aces while the total is bust.

    A soft hand carries exactly one ace counted as 11 (two would already be
    22). Adding an ace adds another soft ace; each soft ace can be demoted to
    1 once, which subtracts 10.

    Args:
        total:      Current hand total.
        is_soft:    True if an ace is currently counted as 11.
        card_value: Value of the drawn card (2–11, ace = 11).

    Returns:
        (new_total, new_is_soft)

    Examples:
        >>> add_card(16, False, 10)
        (26, False)
        >>> add_card(16, True, 10)     # A,5 + T = 16 hard
        (16, False)
        >>> add_card(11, True, 11)     # A + A = soft 12
        (12, True)
        >>> add_card(20, False, 11)    # 20 + A = 21 hard
        (21, False)
    """
    soft_aces = 1 if is_soft else 0
    new_total = total + card_value
    if card_value == ACE_VALUE:
        soft_aces += 1
    while new_total > 21 and soft_aces > 0:
        new_total -= 10
        soft_aces -= 1
    return new_total, soft_aces > 0


def starting_hand(first: int, second: int) -> tuple[int, bool]:
    """Return (total, is_soft) of a two-card hand given card values.

    Examples:
        >>> starting_hand(11, 11)
        (12, True)
        >>> starting_hand(10, 6)
        (16, False)
    """
    return add_card(first, first == ACE_VALUE, second)


def hand_value(values: tuple[int, ...] | list[int]) -> tuple[int, bool]:
    """Return (total, is_soft) for a sequence of card values.

    Examples:
        >>> hand_value([11, 7])
        (18, True)
        >>> hand_value([11, 7, 8])
        (16, False)
        >>> hand_value([])
        (0, False)
    """
    total, soft = 0, False
    for v in values:
        total, soft = add_card(total, soft, v)
    return total, soft


def value_name(value: int) -> str:
    """Short label for a card value ('T' for ten, 'A' for ace)."""
    return VALUE_NAMES[value]
