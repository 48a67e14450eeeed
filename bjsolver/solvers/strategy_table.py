"""
Basic-strategy table generation.

For each dealer upcard (2–11) the builder computes the peek-conditioned dealer
outcome, creates a fresh PlayerValuationEngine and evaluates every two-card
starting situation:

    hard 5–21     soft 13–21     pairs 2,2 … A,A

Finite deck counts use 1-card removal (the upcard is taken out of a full shoe
and the remaining probabilities are frozen); other deck counts use the
infinite deck.

Decision scan for a hand: stand vs hit (stand wins ties), then double if
strictly greater, then surrender if strictly greater. A surrender entry is
labelled Rh or Rs after the better of hit and stand, the action to take where
surrender is not offered. Pairs are split when the split EV is strictly
greater than the best non-split EV.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bjsolver.engine.cards import CARD_VALUES, starting_hand, value_index, value_name
from bjsolver.engine.rules import RuleSet
from bjsolver.engine.shoe import (
    FixedProbabilitySource,
    InfiniteDeckSource,
    ProbabilitySource,
    ShoeComposition,
    probability_source_for,
)
from bjsolver.solvers.dealer import (
    NORMALIZE_EPSILON,
    DealerDistributionEngine,
    DealerOutcome,
    dealer_outcome_for_upcard,
)
from bjsolver.solvers.player import SURRENDER_EV, PlayerValuationEngine

# ─── Constants ────────────────────────────────────────────────────────────────

UPCARDS: tuple[int, ...] = CARD_VALUES
HARD_TOTALS: range = range(5, 22)
SOFT_TOTALS: range = range(13, 22)
PAIR_VALUES: tuple[int, ...] = CARD_VALUES


# ─── Action ───────────────────────────────────────────────────────────────────


class Action(str, Enum):
    """Chart action codes."""

    HIT = "H"
    STAND = "S"
    DOUBLE = "D"
    SPLIT = "P"
    SURRENDER_HIT = "Rh"
    SURRENDER_STAND = "Rs"

    @property
    def is_surrender(self) -> bool:
        return self in (Action.SURRENDER_HIT, Action.SURRENDER_STAND)


# ─── Table types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ActionBreakdown:
    """EV of each action considered for one entry (None = not offered)."""

    stand: float
    hit: float
    double: float | None = None
    split: float | None = None
    surrender: float | None = None

    def best_without_surrender(self) -> float:
        """Best EV among stand, hit and (if offered) double."""
        best = max(self.stand, self.hit)
        if self.double is not None and self.double > best:
            best = self.double
        return best


@dataclass(frozen=True)
class StrategyEntry:
    action: Action
    ev: float
    evs: ActionBreakdown


@dataclass
class StrategyTable:
    """Optimal action per (hand, upcard).

    Attributes:
        rules: Rules the table was generated for.
        hard:  ``hard[total][upcard]`` for totals 5–21.
        soft:  ``soft[total][upcard]`` for totals 13–21.
        pairs: ``pairs[card_value][upcard]`` for pair values 2–11.
    """

    rules: RuleSet
    hard: dict[int, dict[int, StrategyEntry]] = field(default_factory=dict)
    soft: dict[int, dict[int, StrategyEntry]] = field(default_factory=dict)
    pairs: dict[int, dict[int, StrategyEntry]] = field(default_factory=dict)

    def lookup(self, first: int, second: int, upcard: int) -> StrategyEntry:
        """Return the entry for a two-card hand given its card values."""
        if first == second:
            return self.pairs[first][upcard]
        total, soft = starting_hand(first, second)
        if soft:
            return self.soft[total][upcard]
        return self.hard[total][upcard]


# ─── Per-upcard context ───────────────────────────────────────────────────────


@dataclass
class UpcardContext:
    """Everything needed to evaluate two-card hands against one upcard."""

    upcard: int
    dealer: DealerOutcome
    blackjack_probability: float
    can_surrender: bool
    player: PlayerValuationEngine


def _upcard_source(rules: RuleSet, upcard: int) -> ProbabilitySource:
    source = probability_source_for(rules)
    if not isinstance(source, ShoeComposition):
        return source
    source.remove(value_index(upcard))
    return FixedProbabilitySource.from_shoe(source)


def surrender_value_for(rules: RuleSet, bj_prob: float) -> float:
    """Value of surrendering in the frame the player's hands are valued in.

    In a peek game with early surrender the -0.5 applies before the peek, so
    it is restated conditional on the dealer not holding blackjack.

    Examples:
        >>> surrender_value_for(RuleSet(surrender="late"), 0.3)
        -0.5
        >>> round(surrender_value_for(RuleSet(surrender="early"), 0.5), 6)
        0.0
    """
    if rules.no_hole_card or not rules.is_early_surrender or bj_prob <= 0.0:
        return SURRENDER_EV
    remaining = 1.0 - bj_prob
    if remaining <= NORMALIZE_EPSILON:
        return SURRENDER_EV
    return (SURRENDER_EV + bj_prob) / remaining


def build_upcard_context(
    rules: RuleSet,
    upcard: int,
    dealer_engine: DealerDistributionEngine | None = None,
) -> UpcardContext:
    """Build the dealer outcome and a fresh player engine for one upcard.

    Args:
        rules:         House rules.
        upcard:        Dealer upcard value (2–11).
        dealer_engine: Optional engine to reuse. Only valid across upcards for
                       the infinite deck, whose probabilities never change.
    """
    if dealer_engine is None:
        dealer_engine = DealerDistributionEngine(rules, _upcard_source(rules, upcard))
    source = dealer_engine.source
    dealer, bj_prob = dealer_outcome_for_upcard(dealer_engine, upcard, rules.no_hole_card)
    player = PlayerValuationEngine(rules, source, dealer, surrender_value_for(rules, bj_prob))
    return UpcardContext(
        upcard=upcard,
        dealer=dealer,
        blackjack_probability=bj_prob,
        can_surrender=rules.surrender_allowed_against(upcard),
        player=player,
    )


# ─── Builder ──────────────────────────────────────────────────────────────────


def _scan(ctx: UpcardContext, total: int, is_soft: bool, split: float | None = None) -> StrategyEntry:
    """Pick the best action for a two-card hand from its per-action EVs."""
    player = ctx.player
    rules = player.rules

    stand = player.stand_ev(total)
    hit = player.hit_ev(total, is_soft)
    if stand >= hit:
        action, best = Action.STAND, stand
    else:
        action, best = Action.HIT, hit

    double = None
    if rules.double_allowed(total):
        double = player.double_ev(total, is_soft)
        if double > best:
            action, best = Action.DOUBLE, double

    surrender = None
    if ctx.can_surrender:
        surrender = player.surrender_value
        if surrender > best:
            best = surrender
            action = Action.SURRENDER_STAND if stand >= hit else Action.SURRENDER_HIT

    if split is not None and split > best:
        action, best = Action.SPLIT, split

    return StrategyEntry(action, best, ActionBreakdown(stand, hit, double, split, surrender))


def generate_strategy_table(rules: RuleSet) -> StrategyTable:
    """Generate the full basic-strategy table for a rule set.

    Args:
        rules: House rules.

    Returns:
        StrategyTable with hard, soft and pair sections for every upcard.

    Examples:
        >>> import math
        >>> table = generate_strategy_table(RuleSet(decks=math.inf))
        >>> table.hard[11][6].action
        <Action.DOUBLE: 'D'>
    """
    table = StrategyTable(rules=rules)
    shared_engine = None
    if not rules.uses_composition:
        shared_engine = DealerDistributionEngine(rules, InfiniteDeckSource())

    for total in HARD_TOTALS:
        table.hard[total] = {}
    for total in SOFT_TOTALS:
        table.soft[total] = {}
    for card in PAIR_VALUES:
        table.pairs[card] = {}

    for upcard in UPCARDS:
        ctx = build_upcard_context(rules, upcard, shared_engine)
        for total in HARD_TOTALS:
            table.hard[total][upcard] = _scan(ctx, total, False)
        for total in SOFT_TOTALS:
            table.soft[total][upcard] = _scan(ctx, total, True)
        for card in PAIR_VALUES:
            total, soft = starting_hand(card, card)
            table.pairs[card][upcard] = _scan(ctx, total, soft, split=ctx.player.split_ev(card))

    return table


class StrategyTableCache:
    """Caller-side cache of generated tables keyed by RuleSet."""

    def __init__(self) -> None:
        self._tables: dict[RuleSet, StrategyTable] = {}

    def get(self, rules: RuleSet) -> StrategyTable:
        table = self._tables.get(rules)
        if table is None:
            table = generate_strategy_table(rules)
            self._tables[rules] = table
        return table

    def clear(self) -> None:
        self._tables.clear()

    def __len__(self) -> int:
        return len(self._tables)


# ─── Chart display ────────────────────────────────────────────────────────────


def print_strategy_chart(table: StrategyTable, label: str = "") -> None:
    """Print the strategy table as a terminal grid.

    Rows: hard 5–21, soft 13–21 (A,2 … A,T), pairs. Cols: dealer upcard 2–A.
    Cells are the chart codes H, S, D, P, Rh, Rs.
    """
    col_w = 4
    header = "".join(f"{value_name(up):>{col_w}}" for up in UPCARDS)
    divider = "─" * (8 + col_w * len(UPCARDS))

    print(f"\nStrategy Chart: {label or table.rules}")
    for section, rows in [("Hard", table.hard), ("Soft", table.soft), ("Pair", table.pairs)]:
        print(f"{section:8}{header}")
        print(divider)
        for key, row in rows.items():
            if section == "Soft":
                name = f"A,{value_name(key - 11)}"
            elif section == "Pair":
                name = f"{value_name(key)},{value_name(key)}"
            else:
                name = str(key)
            cells = "".join(f"{row[up].action.value:>{col_w}}" for up in UPCARDS)
            print(f"{name:<8}{cells}")
        print()


# ─── __main__ ─────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import time

    rules = RuleSet(decks=6, hit_soft_17=False, surrender="late")
    t0 = time.time()
    strategy = generate_strategy_table(rules)
    print(f"Generated in {time.time() - t0:.2f}s")
    print_strategy_chart(strategy, "6D S17 DAS LS")
