"""
Exact player EV for a whole round under optimal basic strategy.

Three accuracy modes enumerate every (upcard, first card, second card) deal:

    infinite    fixed 1/13 draw probabilities, 10×10×10 deals
    finite      3-card removal: the deal is removed from the shoe and the
                remaining probabilities are frozen for all further draws
    cd          composition dependent: every draw by player and dealer
                removes a card; the dealer memo is shared across deals via
                the shoe key, the player memo is fresh per deal

``calculate_ev`` dispatches to the composition-dependent mode for integer deck
counts 1–8 and to the infinite deck otherwise.

Deal resolution:
    player blackjack   → (1 − bj) × payout (a dealer blackjack pushes)
    peek game          → −bj + (1 − bj) × play, where play is the best of
                         optimal play (late surrender inside) and splitting;
                         early surrender takes max(−0.5, that)
    no-hole-card game  → play, with the dealer blackjack mass already inside
                         the dealer outcome and surrender valued at −0.5

Because p(c1)·p(c2 | c1) is symmetric in c1, c2, each unordered pair of
player cards is evaluated once with its weight doubled.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from bjsolver.engine.cards import CARD_VALUES, NUM_VALUES, starting_hand
from bjsolver.engine.rules import RuleSet
from bjsolver.engine.shoe import (
    FixedProbabilitySource,
    InfiniteDeckSource,
    ShoeComposition,
    probability_source_for,
)
from bjsolver.solvers.dealer import (
    NORMALIZE_EPSILON,
    DealerDistributionEngine,
    dealer_outcome_for_upcard,
)
from bjsolver.solvers.player import SURRENDER_EV, PlayerValuationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EVResult:
    """Round EV for one rule set.

    Attributes:
        player_ev:          Expected return per unit initial bet.
        house_edge:         -player_ev.
        house_edge_percent: house_edge × 100.
    """

    player_ev: float
    house_edge: float
    house_edge_percent: float

    @classmethod
    def from_player_ev(cls, player_ev: float) -> "EVResult":
        return cls(player_ev=player_ev, house_edge=-player_ev, house_edge_percent=-player_ev * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "playerEV": self.player_ev,
            "houseEdge": self.house_edge,
            "houseEdgePercent": self.house_edge_percent,
        }

    def __str__(self) -> str:
        return f"Player EV {self.player_ev:+.6f}  House edge {self.house_edge_percent:.4f}%"


# ─── Deal resolution ──────────────────────────────────────────────────────────


def deal_ev(
    rules: RuleSet,
    player: PlayerValuationEngine,
    first: int,
    second: int,
    upcard: int,
    bj_prob: float,
) -> float:
    """EV of one dealt starting position, settled at the round level.

    Args:
        rules:   House rules.
        player:  Engine valued against this upcard's dealer outcome, with the
                 plain -0.5 surrender value.
        first:   First player card value.
        second:  Second player card value.
        upcard:  Dealer upcard value.
        bj_prob: Dealer blackjack probability for this deal.
    """
    total, soft = starting_hand(first, second)
    if total == 21:
        return (1.0 - bj_prob) * rules.blackjack_multiplier

    surrender_ok = rules.surrender_allowed_against(upcard)

    if rules.no_hole_card:
        play = player.optimal_ev(total, soft, True, surrender_ok)
        if first == second:
            split = player.split_ev(first)
            if split > play:
                play = split
        return play

    play = player.optimal_ev(total, soft, True, surrender_ok and rules.is_late_surrender)
    if first == second:
        split = player.split_ev(first)
        if split > play:
            play = split
    hand = -bj_prob + (1.0 - bj_prob) * play
    if surrender_ok and rules.is_early_surrender and SURRENDER_EV > hand:
        hand = SURRENDER_EV
    return hand


def _pair_weight(i: int, j: int) -> float:
    return 1.0 if i == j else 2.0


def _finish(mode: str, rules: RuleSet, total_ev: float, total_weight: float, t0: float) -> EVResult:
    if total_weight > NORMALIZE_EPSILON:
        total_ev /= total_weight
    logger.debug("%s EV for %s: %+.6f (%.2fs)", mode, rules, total_ev, time.time() - t0)
    return EVResult.from_player_ev(total_ev)


# ─── Modes ────────────────────────────────────────────────────────────────────


def calculate_infinite_deck_ev(rules: RuleSet) -> EVResult:
    """Round EV with infinite-deck probabilities."""
    t0 = time.time()
    source = InfiniteDeckSource()
    dealer_engine = DealerDistributionEngine(rules, source)

    total_ev = 0.0
    total_weight = 0.0
    for u, upcard in enumerate(CARD_VALUES):
        p_up = source.probability(u)
        dealer, bj_prob = dealer_outcome_for_upcard(dealer_engine, upcard, rules.no_hole_card)
        player = PlayerValuationEngine(rules, source, dealer)
        for i in range(NUM_VALUES):
            for j in range(i, NUM_VALUES):
                w = p_up * source.probability(i) * source.probability(j) * _pair_weight(i, j)
                total_ev += w * deal_ev(rules, player, CARD_VALUES[i], CARD_VALUES[j], upcard, bj_prob)
                total_weight += w

    return _finish("infinite", rules, total_ev, total_weight, t0)


def calculate_finite_deck_ev(rules: RuleSet) -> EVResult:
    """Round EV with 3-card removal: deal-aware, then frozen probabilities."""
    t0 = time.time()
    shoe = ShoeComposition.for_decks(int(rules.decks))

    total_ev = 0.0
    total_weight = 0.0
    for u, upcard in enumerate(CARD_VALUES):
        p_up = shoe.probability(u)
        shoe.remove(u)
        for i in range(NUM_VALUES):
            p1 = shoe.probability(i)
            if p1 <= 0.0:
                continue
            shoe.remove(i)
            for j in range(i, NUM_VALUES):
                p2 = shoe.probability(j)
                if p2 <= 0.0:
                    continue
                shoe.remove(j)
                source = FixedProbabilitySource.from_shoe(shoe)
                dealer_engine = DealerDistributionEngine(rules, source)
                dealer, bj_prob = dealer_outcome_for_upcard(dealer_engine, upcard, rules.no_hole_card)
                player = PlayerValuationEngine(rules, source, dealer)
                w = p_up * p1 * p2 * _pair_weight(i, j)
                total_ev += w * deal_ev(rules, player, CARD_VALUES[i], CARD_VALUES[j], upcard, bj_prob)
                total_weight += w
                shoe.restore(j)
            shoe.restore(i)
        shoe.restore(u)

    return _finish("finite", rules, total_ev, total_weight, t0)


def calculate_cd_ev(rules: RuleSet, shoe: ShoeComposition | None = None) -> EVResult:
    """Round EV with full composition dependence for player and dealer draws.

    ``shoe`` is the full starting shoe; it defaults to a fresh one for
    ``rules.decks``.
    """
    t0 = time.time()
    if shoe is None:
        shoe = ShoeComposition.for_decks(int(rules.decks))
    dealer_engine = DealerDistributionEngine(rules, shoe)

    total_ev = 0.0
    total_weight = 0.0
    for u, upcard in enumerate(CARD_VALUES):
        p_up = shoe.probability(u)
        shoe.remove(u)
        for i in range(NUM_VALUES):
            p1 = shoe.probability(i)
            if p1 <= 0.0:
                continue
            shoe.remove(i)
            for j in range(i, NUM_VALUES):
                p2 = shoe.probability(j)
                if p2 <= 0.0:
                    continue
                shoe.remove(j)
                dealer, bj_prob = dealer_outcome_for_upcard(dealer_engine, upcard, rules.no_hole_card)
                player = PlayerValuationEngine(rules, shoe, dealer)
                w = p_up * p1 * p2 * _pair_weight(i, j)
                total_ev += w * deal_ev(rules, player, CARD_VALUES[i], CARD_VALUES[j], upcard, bj_prob)
                total_weight += w
                shoe.restore(j)
            shoe.restore(i)
        shoe.restore(u)

    logger.debug("cd dealer memo: %d states", len(dealer_engine.memo))
    return _finish("cd", rules, total_ev, total_weight, t0)


def calculate_ev(rules: RuleSet) -> EVResult:
    """Authoritative round EV: composition dependent for 1–8 decks, else infinite.

    Examples:
        >>> import math
        >>> result = calculate_ev(RuleSet(decks=math.inf, hit_soft_17=False))
        >>> 0.0 < result.house_edge_percent < 1.0
        True
    """
    source = probability_source_for(rules)
    if isinstance(source, ShoeComposition):
        return calculate_cd_ev(rules, source)
    return calculate_infinite_deck_ev(rules)


# ─── __main__ ─────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import math

    for label, rules in [
        ("Infinite deck, S17 DAS", RuleSet(decks=math.inf, hit_soft_17=False)),
        ("6D S17 DAS LS (3-card removal)", RuleSet(decks=6, hit_soft_17=False, surrender="late")),
    ]:
        t0 = time.time()
        if rules.uses_composition:
            result = calculate_finite_deck_ev(rules)
        else:
            result = calculate_infinite_deck_ev(rules)
        print(f"{label:<34} {result}  ({time.time() - t0:.2f}s)")
