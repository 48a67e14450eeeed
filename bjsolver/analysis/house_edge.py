"""
Closed-form house edge approximation.

An additive model: a 0.43% base (8 decks, S17, DAS, late surrender, 3:2) plus
one delta per rule. It is a quick estimate for interactive feedback and a
third cross-check beside the exact calculator and the simulator; it is not
exact and does not capture interactions between rules.
"""

from __future__ import annotations

import math

from bjsolver.engine.rules import BlackjackPayout, DoubleRestriction, RuleSet, SurrenderPolicy

BASE_EDGE: float = 0.43

DECK_ADJUSTMENTS: dict[int, float] = {
    1: -0.48,
    2: -0.19,
    3: -0.13,
    4: -0.06,
    5: -0.03,
    6: -0.02,
    7: -0.01,
    8: 0.0,
}

H17_DELTA: float = 0.22
PAYOUT_DELTAS: dict[BlackjackPayout, float] = {
    BlackjackPayout.THREE_TO_TWO: 0.0,
    BlackjackPayout.SIX_TO_FIVE: 1.39,
    BlackjackPayout.EVEN_MONEY: 2.27,
}
NO_DAS_DELTA: float = 0.14
DOUBLE_RESTRICTION_DELTAS: dict[DoubleRestriction, float] = {
    DoubleRestriction.ANY: 0.0,
    DoubleRestriction.NINE_TO_ELEVEN: 0.09,
    DoubleRestriction.TEN_TO_ELEVEN: 0.18,
}
NO_SURRENDER_DELTA: float = 0.07
EARLY_SURRENDER_DELTA: float = -0.63
RSA_DELTA: float = -0.08
NO_HOLE_CARD_DELTA: float = 0.11
MAX_SPLIT_DELTAS: dict[int, float] = {2: 0.02, 3: 0.01, 4: 0.0}

# Finite counts above 8 add 0.01 per deck without limit; the infinite deck uses this value.
INFINITE_DECK_ADJUSTMENT: float = 0.05


def deck_adjustment(decks: float) -> float:
    """Edge delta for the deck count relative to 8 decks.

    Examples:
        >>> deck_adjustment(6)
        -0.02
        >>> round(deck_adjustment(10), 2)
        0.02
        >>> round(deck_adjustment(20), 2)
        0.12
        >>> deck_adjustment(math.inf)
        0.05
        >>> deck_adjustment(2.5)
        0.0
    """
    if float(decks).is_integer() and int(decks) in DECK_ADJUSTMENTS:
        return DECK_ADJUSTMENTS[int(decks)]
    if math.isinf(decks):
        return INFINITE_DECK_ADJUSTMENT
    if decks > 8:
        return 0.01 * (decks - 8)
    return 0.0


def calculate_house_edge(rules: RuleSet) -> float:
    """Approximate house edge in percent.

    Examples:
        >>> calculate_house_edge(RuleSet(decks=8, hit_soft_17=False, surrender="late", resplit_aces=False))
        0.43
    """
    edge = BASE_EDGE + deck_adjustment(rules.decks)
    if rules.hit_soft_17:
        edge += H17_DELTA
    edge += PAYOUT_DELTAS[rules.blackjack_pays]
    if not rules.double_after_split:
        edge += NO_DAS_DELTA
    edge += DOUBLE_RESTRICTION_DELTAS[rules.double_restriction]
    if rules.surrender is SurrenderPolicy.NONE:
        edge += NO_SURRENDER_DELTA
    elif rules.surrender is SurrenderPolicy.EARLY:
        edge += EARLY_SURRENDER_DELTA
    if rules.resplit_aces:
        edge += RSA_DELTA
    if rules.no_hole_card:
        edge += NO_HOLE_CARD_DELTA
    edge += MAX_SPLIT_DELTAS[rules.max_split_hands]
    return round(edge, 10)


def format_house_edge(edge: float) -> str:
    """Format a house edge percentage with two decimals.

    Examples:
        >>> format_house_edge(0.4321)
        '0.43%'
    """
    return f"{edge:.2f}%"
