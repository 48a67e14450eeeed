"""
Shared pytest fixtures for the blackjack solver tests.

Strategy tables are generated once per session per rule set; tests that need
the infinite deck use ``math.inf`` decks so the exact engines stay fast.
"""

from __future__ import annotations

import math

import pytest

from bjsolver.engine.rules import RuleSet
from bjsolver.solvers.strategy_table import StrategyTable, generate_strategy_table

# 6 decks, S17, DAS, late surrender, 3:2 — the canonical published chart.
SIX_DECK_S17_LS = RuleSet(decks=6, hit_soft_17=False, surrender="late", double_after_split=True)
INFINITE_S17 = RuleSet(decks=math.inf, hit_soft_17=False)
SIX_DECK_ENHC = RuleSet(decks=6, hit_soft_17=False, no_hole_card=True, surrender="enhcNoAce")
SIX_DECK_EARLY = RuleSet(decks=6, hit_soft_17=False, surrender="early")


def card_values(*names: str) -> list[int]:
    """Convert chart names to card values.

    Examples:
        >>> card_values('A', 'T', '7')
        [11, 10, 7]
    """
    lookup = {'A': 11, 'T': 10, 'J': 10, 'Q': 10, 'K': 10}
    return [lookup[n] if n in lookup else int(n) for n in names]


@pytest.fixture(scope="session")
def six_deck_table() -> StrategyTable:
    return generate_strategy_table(SIX_DECK_S17_LS)


@pytest.fixture(scope="session")
def infinite_table() -> StrategyTable:
    return generate_strategy_table(INFINITE_S17)


@pytest.fixture(scope="session")
def enhc_table() -> StrategyTable:
    return generate_strategy_table(SIX_DECK_ENHC)


@pytest.fixture(scope="session")
def early_table() -> StrategyTable:
    return generate_strategy_table(SIX_DECK_EARLY)
