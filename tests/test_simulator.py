"""
Tests for bjsolver/analysis/simulator.py

Covers:
    - SimHand incremental totals and natural detection
    - SimShoe penetration reserve, continuous shuffle, exhaustion
    - Decision-table flattening and structural fallbacks
    - Round settlement on scripted card sequences
    - Aggregate invariants, reproducibility, progress reporting
    - Agreement with the exact infinite-deck EV
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from bjsolver.analysis.simulator import (
    DEALER_DIM,
    DOUBLE,
    HIT,
    SPLIT,
    STAND,
    SURRENDER,
    InfiniteSimShoe,
    MonteCarloSimulator,
    ShoeExhaustedError,
    SimHand,
    SimShoe,
    SimulationConfig,
    SimulationResult,
    build_decision_tables,
    make_sim_shoe,
    simulate_house_edge,
)
from bjsolver.engine.rules import RuleSet
from bjsolver.solvers.ev_calculator import calculate_infinite_deck_ev
from bjsolver.solvers.strategy_table import generate_strategy_table
from tests.conftest import INFINITE_S17

LATE = RuleSet(decks=math.inf, hit_soft_17=False, surrender="late")
EARLY = RuleSet(decks=math.inf, hit_soft_17=False, surrender="early")
ENHC = RuleSet(decks=math.inf, hit_soft_17=False, no_hole_card=True)


class ScriptedShoe:
    """Deals a fixed sequence of card values."""

    def __init__(self, values):
        self.values = list(values)

    def needs_shuffle(self) -> bool:
        return False

    def shuffle(self) -> None:
        pass

    def draw(self) -> int:
        return self.values.pop(0)


def make_hand(*values: int) -> SimHand:
    hand = SimHand()
    for v in values:
        hand.add(v)
    return hand


@pytest.fixture(scope="module")
def infinite_tables(infinite_table):
    return build_decision_tables(infinite_table)


@pytest.fixture(scope="module")
def late_tables():
    return build_decision_tables(generate_strategy_table(LATE))


def scripted(rules, tables, values):
    sim = MonteCarloSimulator(rules, tables, rng=np.random.default_rng(0))
    sim.shoe = ScriptedShoe(values)
    return sim


# ─── SimHand ──────────────────────────────────────────────────────────────────


class TestSimHand:
    def test_soft_ace_demotion(self):
        hand = make_hand(11, 11)
        assert hand.total == 12
        assert hand.soft_aces == 1
        hand.add(10)
        assert hand.total == 12
        assert hand.soft_aces == 0

    def test_blackjack(self):
        assert make_hand(11, 10).is_blackjack
        assert not make_hand(5, 6, 10).is_blackjack

    def test_split_hand_is_not_blackjack(self):
        hand = make_hand(11, 10)
        hand.is_split = True
        assert not hand.is_blackjack

    def test_pairs_are_value_based(self):
        assert make_hand(10, 10).is_pair
        assert not make_hand(10, 9).is_pair
        assert not make_hand(5, 5, 2).is_pair

    def test_reset(self):
        hand = make_hand(10, 6)
        hand.bet = 2.0
        hand.surrendered = True
        hand.reset()
        assert (hand.card_count, hand.total, hand.bet, hand.surrendered) == (0, 0, 1.0, False)


# ─── Shoes ────────────────────────────────────────────────────────────────────


class TestSimShoe:
    def test_composition(self):
        shoe = SimShoe(1, np.random.default_rng(1), SimulationConfig())
        values = [shoe.draw() for _ in range(52)]
        assert values.count(10) == 16
        assert values.count(11) == 4
        assert sum(values) == 4 * (2 + 3 + 4 + 5 + 6 + 7 + 8 + 9 + 11) + 16 * 10

    def test_reserve_has_floor(self):
        shoe = SimShoe(1, np.random.default_rng(1), SimulationConfig(penetration=0.75))
        assert shoe.reserve == 26
        assert not shoe.needs_shuffle()
        for _ in range(27):
            shoe.draw()
        assert shoe.needs_shuffle()

    def test_reserve_from_penetration(self):
        shoe = SimShoe(8, np.random.default_rng(1), SimulationConfig(penetration=0.5))
        assert shoe.reserve == 208

    def test_shuffle_resets_position(self):
        shoe = SimShoe(2, np.random.default_rng(1), SimulationConfig())
        for _ in range(80):
            shoe.draw()
        shoe.shuffle()
        assert shoe.remaining == 104

    def test_continuous_shuffle(self):
        shoe = SimShoe(6, np.random.default_rng(1), SimulationConfig(continuous_shuffle=True))
        assert shoe.needs_shuffle()

    def test_exhaustion_raises(self):
        shoe = SimShoe(1, np.random.default_rng(1), SimulationConfig())
        for _ in range(52):
            shoe.draw()
        with pytest.raises(ShoeExhaustedError):
            shoe.draw()

    def test_infinite_shoe_values(self):
        shoe = InfiniteSimShoe(np.random.default_rng(3))
        values = [shoe.draw() for _ in range(10_000)]
        assert set(values) == set(range(2, 12))
        assert not shoe.needs_shuffle()
        assert values.count(10) / len(values) == pytest.approx(4 / 13, abs=0.02)

    def test_make_sim_shoe(self):
        rng = np.random.default_rng(0)
        assert isinstance(make_sim_shoe(RuleSet(decks=6), rng, SimulationConfig()), SimShoe)
        assert isinstance(make_sim_shoe(RuleSet(decks=math.inf), rng, SimulationConfig()), InfiniteSimShoe)
        assert isinstance(make_sim_shoe(RuleSet(decks=2.5), rng, SimulationConfig()), InfiniteSimShoe)

    def test_large_whole_deck_count_builds_physical_shoe(self):
        shoe = make_sim_shoe(RuleSet(decks=10), np.random.default_rng(0), SimulationConfig())
        assert isinstance(shoe, SimShoe)
        assert shoe.size == 520


class TestSimulationConfig:
    @pytest.mark.parametrize("penetration", [0.0, -0.1, 1.5])
    def test_invalid_penetration(self, penetration):
        with pytest.raises(ValueError):
            SimulationConfig(penetration=penetration)

    def test_full_penetration_allowed(self):
        assert SimulationConfig(penetration=1.0).penetration == 1.0


# ─── Decisions ────────────────────────────────────────────────────────────────


class TestDecisionTables:
    def test_cells(self, infinite_tables):
        assert infinite_tables.pairs[8 * DEALER_DIM + 10] == SPLIT
        assert infinite_tables.pairs[11 * DEALER_DIM + 6] == SPLIT
        assert infinite_tables.pairs[10 * DEALER_DIM + 6] == STAND
        assert infinite_tables.pairs[5 * DEALER_DIM + 6] == DOUBLE
        assert infinite_tables.hard_can_double[11 * DEALER_DIM + 6] == DOUBLE
        assert infinite_tables.hard_no_double[11 * DEALER_DIM + 6] == HIT
        assert infinite_tables.hard_no_double[17 * DEALER_DIM + 10] == STAND

    def test_uncovered_cells_hit(self, infinite_tables):
        assert infinite_tables.hard_no_double[4 * DEALER_DIM + 6] == HIT
        assert infinite_tables.soft_no_double[12 * DEALER_DIM + 6] == HIT

    def test_surrender_flags(self, infinite_tables, late_tables):
        assert late_tables.hard_surrender[16 * DEALER_DIM + 10] == 1
        assert late_tables.hard_surrender[12 * DEALER_DIM + 6] == 0
        assert not any(infinite_tables.hard_surrender)


class TestDecide:
    def test_split_until_limit(self, infinite_tables):
        sim = MonteCarloSimulator(INFINITE_S17, infinite_tables, rng=np.random.default_rng(0))
        hand = make_hand(8, 8)
        assert sim.decide(hand, 6, 1) == SPLIT
        # At the hand limit the pair plays as hard 16.
        assert sim.decide(hand, 6, INFINITE_S17.max_split_hands) == STAND

    def test_no_double_after_split(self, infinite_tables):
        rules = RuleSet(decks=math.inf, hit_soft_17=False, double_after_split=False)
        sim = MonteCarloSimulator(rules, infinite_tables, rng=np.random.default_rng(0))
        hand = make_hand(6, 5)
        assert sim.decide(hand, 6, 1) == DOUBLE
        hand.is_split = True
        assert sim.decide(hand, 6, 2) == HIT

    def test_pair_double_falls_back(self, infinite_tables):
        rules = RuleSet(decks=math.inf, hit_soft_17=False, double_after_split=False)
        sim = MonteCarloSimulator(rules, infinite_tables, rng=np.random.default_rng(0))
        hand = make_hand(5, 5)
        hand.is_split = True
        assert sim.decide(hand, 6, 2) == HIT

    def test_blocked_soft_double_stands_instead_of_hitting(self, infinite_tables):
        sim = MonteCarloSimulator(INFINITE_S17, infinite_tables, rng=np.random.default_rng(0))
        assert sim.decide(make_hand(11, 7), 6, 1) == DOUBLE
        assert sim.decide(make_hand(11, 5, 2), 6, 1) == STAND

    def test_nines_at_split_limit_stand(self, infinite_tables):
        sim = MonteCarloSimulator(INFINITE_S17, infinite_tables, rng=np.random.default_rng(0))
        assert sim.decide(make_hand(9, 9), 6, 1) == SPLIT
        assert sim.decide(make_hand(9, 9), 6, INFINITE_S17.max_split_hands) == STAND

    def test_three_card_hand_cannot_double(self, infinite_tables):
        sim = MonteCarloSimulator(INFINITE_S17, infinite_tables, rng=np.random.default_rng(0))
        assert sim.decide(make_hand(2, 4, 5), 6, 1) == HIT

    def test_surrender_only_where_offered(self, late_tables):
        sim = MonteCarloSimulator(LATE, late_tables, rng=np.random.default_rng(0))
        assert sim.decide(make_hand(10, 6), 10, 1) == SURRENDER
        assert sim.decide(make_hand(10, 4, 2), 10, 1) != SURRENDER
        no_surrender = MonteCarloSimulator(INFINITE_S17, late_tables, rng=np.random.default_rng(0))
        assert no_surrender.decide(make_hand(10, 6), 10, 1) != SURRENDER


# ─── Round settlement ─────────────────────────────────────────────────────────


class TestRounds:
    def test_peek_dealer_blackjack(self, infinite_tables):
        sim = scripted(INFINITE_S17, infinite_tables, [10, 11, 8, 10])
        assert sim.play_round() == (1.0, 0.0)
        assert sim.shoe.values == []

    def test_player_blackjack_paid(self, infinite_tables):
        sim = scripted(INFINITE_S17, infinite_tables, [11, 6, 10, 10])
        assert sim.play_round() == (1.0, 2.5)
        assert sim.blackjacks == 1

    def test_six_to_five_payout(self, infinite_tables):
        rules = RuleSet(decks=math.inf, hit_soft_17=False, blackjack_pays="6:5")
        sim = scripted(rules, infinite_tables, [11, 6, 10, 10])
        assert sim.play_round() == (1.0, pytest.approx(2.2))

    def test_no_hole_card_dealer_blackjack_after_play(self):
        tables = build_decision_tables(generate_strategy_table(ENHC))
        sim = scripted(ENHC, tables, [10, 11, 8, 10])
        assert sim.play_round() == (1.0, 0.0)
        assert sim.shoe.values == []

    def test_no_hole_card_blackjack_push(self):
        tables = build_decision_tables(generate_strategy_table(ENHC))
        sim = scripted(ENHC, tables, [11, 10, 10, 11])
        assert sim.play_round() == (1.0, 1.0)
        assert sim.blackjacks == 0

    def test_early_surrender_against_blackjack(self):
        tables = build_decision_tables(generate_strategy_table(EARLY))
        sim = scripted(EARLY, tables, [10, 11, 6, 10])
        assert sim.play_round() == (1.0, 0.5)
        assert sim.surrenders == 1

    def test_late_surrender(self, late_tables):
        sim = scripted(LATE, late_tables, [10, 10, 6, 7])
        assert sim.play_round() == (1.0, 0.5)
        assert sim.surrenders == 1
        assert sim.shoe.values == []

    def test_double_win(self, infinite_tables):
        sim = scripted(INFINITE_S17, infinite_tables, [6, 6, 5, 10, 10, 10])
        assert sim.play_round() == (2.0, 4.0)

    def test_split_both_lose(self, infinite_tables):
        sim = scripted(INFINITE_S17, infinite_tables, [8, 6, 8, 10, 10, 10, 5])
        assert sim.play_round() == (2.0, 0.0)
        assert sim.shoe.values == []

    def test_player_bust_dealer_does_not_draw(self, infinite_tables):
        sim = scripted(INFINITE_S17, infinite_tables, [10, 2, 2, 10, 10])
        assert sim.play_round() == (1.0, 0.0)
        assert sim.shoe.values == []


# ─── Runs ─────────────────────────────────────────────────────────────────────


class TestRuns:
    def test_invariants(self, infinite_table):
        result = simulate_house_edge(3000, INFINITE_S17, seed=7, strategy_table=infinite_table)
        assert isinstance(result, SimulationResult)
        assert result.hands_played == 3000
        assert result.wins + result.losses + result.pushes == 3000
        assert result.total_bet >= 3000
        assert result.house_edge == pytest.approx(
            (result.total_bet - result.total_returned) / result.total_bet * 100
        )
        assert result.std_error > 0
        assert result.ci_95_low < result.house_edge < result.ci_95_high

    def test_seed_reproducible(self, infinite_table):
        a = simulate_house_edge(2000, INFINITE_S17, seed=11, strategy_table=infinite_table)
        b = simulate_house_edge(2000, INFINITE_S17, seed=11, strategy_table=infinite_table)
        assert a.to_dict() == b.to_dict()

    def test_finite_shoe_run(self, six_deck_table):
        result = simulate_house_edge(
            2000, six_deck_table.rules, seed=3, strategy_table=six_deck_table,
            config=SimulationConfig(penetration=0.9),
        )
        assert result.hands_played == 2000

    def test_progress_callback(self, infinite_table):
        calls = []
        simulate_house_edge(
            3000, INFINITE_S17, lambda done, total: calls.append((done, total)),
            seed=1, strategy_table=infinite_table,
        )
        assert calls == [(0, 3000), (1024, 3000), (2048, 3000), (3000, 3000)]

    def test_invalid_hand_count(self):
        with pytest.raises(ValueError):
            simulate_house_edge(0, INFINITE_S17)

    def test_worse_payout_same_seed(self, infinite_table):
        three_two = simulate_house_edge(5000, INFINITE_S17, seed=5, strategy_table=infinite_table)
        six_five = simulate_house_edge(
            5000, RuleSet(decks=math.inf, hit_soft_17=False, blackjack_pays="6:5"),
            seed=5, strategy_table=infinite_table,
        )
        assert three_two.blackjacks > 0
        assert six_five.total_returned == pytest.approx(three_two.total_returned - 0.3 * three_two.blackjacks)
        assert six_five.house_edge > three_two.house_edge

    def test_to_dict_keys(self):
        result = SimulationResult(10, 10.0, 9.0, 10.0, 3, 6, 1, 0, 0)
        assert set(result.to_dict()) == {
            "handsPlayed", "totalBet", "totalReturned", "houseEdge", "wins", "losses",
            "pushes", "blackjacks", "surrenders", "stdError", "ci95Low", "ci95High",
        }

    def test_agrees_with_exact_ev(self, infinite_table):
        exact = calculate_infinite_deck_ev(INFINITE_S17).house_edge_percent
        result = simulate_house_edge(100_000, INFINITE_S17, seed=2024, strategy_table=infinite_table)
        assert abs(result.house_edge - exact) < 4 * result.std_error + 0.1

    @pytest.mark.slow
    def test_ten_million_hands_agree_with_exact_ev(self, six_deck_table):
        from bjsolver.solvers.ev_calculator import calculate_ev

        rules = six_deck_table.rules
        exact = calculate_ev(rules).house_edge_percent
        result = simulate_house_edge(10_000_000, rules, seed=31, strategy_table=six_deck_table)
        assert abs(result.house_edge - exact) < 0.1
