"""Tests for bjsolver/engine/cards.py — value buckets and the soft-ace transform."""

from __future__ import annotations

import pytest

from bjsolver.engine.cards import (
    ACE_INDEX,
    CARD_VALUES,
    CARDS_PER_DECK,
    INFINITE_DECK_PROBS,
    RANK_VALUE,
    TEN_INDEX,
    add_card,
    hand_value,
    starting_hand,
    value_index,
    value_name,
)

# ─── Constants ────────────────────────────────────────────────────────────────


class TestConstants:
    def test_card_values_order(self):
        assert CARD_VALUES == (2, 3, 4, 5, 6, 7, 8, 9, 10, 11)

    def test_infinite_probs_sum_to_one(self):
        assert sum(INFINITE_DECK_PROBS) == pytest.approx(1.0, abs=1e-12)

    def test_ten_bucket_is_four_times_the_others(self):
        assert INFINITE_DECK_PROBS[TEN_INDEX] == pytest.approx(4 * INFINITE_DECK_PROBS[0])
        assert CARDS_PER_DECK[TEN_INDEX] == 16

    def test_one_deck_has_52_cards(self):
        assert sum(CARDS_PER_DECK) == 52

    def test_rank_values(self):
        assert RANK_VALUE[1] == 11
        for rank in (10, 11, 12, 13):
            assert RANK_VALUE[rank] == 10
        assert RANK_VALUE[2:10] == (2, 3, 4, 5, 6, 7, 8, 9)

    def test_value_index(self):
        assert value_index(2) == 0
        assert value_index(10) == TEN_INDEX
        assert value_index(11) == ACE_INDEX

    def test_value_names(self):
        assert value_name(10) == 'T'
        assert value_name(11) == 'A'
        assert value_name(7) == '7'


# ─── add_card ─────────────────────────────────────────────────────────────────


class TestAddCard:
    @pytest.mark.parametrize(
        "total,soft,card,expected",
        [
            (10, False, 5, (15, False)),
            (16, False, 10, (26, False)),       # bust stays bust
            (11, True, 5, (16, True)),          # A + 5 = soft 16
            (16, True, 10, (16, False)),        # soft 16 + T demotes the ace
            (11, True, 11, (12, True)),         # A + A = soft 12
            (20, False, 11, (21, False)),       # ace counted as 1
            (10, False, 11, (21, True)),        # ace counted as 11
            (12, True, 11, (13, True)),         # soft 12 + A = soft 13
            (21, True, 10, (21, False)),
        ],
    )
    def test_transitions(self, total, soft, card, expected):
        assert add_card(total, soft, card) == expected

    def test_soft_flag_never_survives_bust(self):
        for total in range(12, 22):
            for card in CARD_VALUES:
                new_total, new_soft = add_card(total, True, card)
                assert new_total <= 21
                if new_soft:
                    assert new_total >= 12


class TestHandValue:
    def test_starting_hands(self):
        assert starting_hand(11, 10) == (21, True)
        assert starting_hand(11, 11) == (12, True)
        assert starting_hand(9, 7) == (16, False)

    def test_multi_card(self):
        assert hand_value([11, 7]) == (18, True)
        assert hand_value([11, 7, 8]) == (16, False)
        assert hand_value([11, 11, 11, 11]) == (14, True)

    def test_empty(self):
        assert hand_value([]) == (0, False)
