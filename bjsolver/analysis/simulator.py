"""
Fast Monte Carlo blackjack simulator for cross-validating the exact EV.

Plays single-seat rounds at unit stake under a RuleSet, following the basic
strategy generated for those rules, and reports the empirical house edge

    house_edge = (total_bet − total_returned) / total_bet × 100

with a 95% confidence interval from the per-round variance.

Hot-path layout:
    - Decisions are flat ``bytes`` tables indexed ``total * 12 + upcard``
      (pairs by ``card_value * 12 + upcard``), built once per run from the
      StrategyTable: hard and soft each in can-double and no-double variants,
      a pair table, and surrender flags.
    - Hands are reusable SimHand slots with an incremental total and soft-ace
      count; at most 8 slots are needed per round.
    - The shoe is a flat array of ranks 1–13 shuffled in place by numpy and
      reshuffled once fewer cards than the penetration reserve remain (or
      before every round with ``continuous_shuffle``). Every whole deck count
      gets a physical shoe, including counts above 8 that the exact
      calculator values with infinite-deck probabilities. Infinite and
      fractional counts draw i.i.d. ranks.

Decision fallbacks: an unavailable double plays the no-double decision for
the same total, a split at the hand limit plays the hand as a total, and
surrender where it is not offered plays the entry's fallback action.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from scipy import stats

from bjsolver.engine.cards import ACE_VALUE, RANK_VALUE
from bjsolver.engine.rules import DEFAULT_RULES, RuleSet
from bjsolver.solvers.strategy_table import StrategyEntry, StrategyTable, generate_strategy_table

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# ─── Constants ────────────────────────────────────────────────────────────────

HIT: int = 0
STAND: int = 1
DOUBLE: int = 2
SPLIT: int = 3
SURRENDER: int = 4

DEALER_DIM: int = 12
TOTAL_DIM: int = 22
HAND_POOL_SIZE: int = 8
PROGRESS_INTERVAL: int = 1024
MIN_RESERVE_CARDS: int = 26
INFINITE_DRAW_BLOCK: int = 4096

_RANK_VALUES = np.array(RANK_VALUE, dtype=np.int64)


class ShoeExhaustedError(RuntimeError):
    """Raised when a round needs more cards than the shoe holds."""


# ─── Configuration & result ───────────────────────────────────────────────────


@dataclass(frozen=True)
class SimulationConfig:
    """Shoe handling for a simulation run.

    Attributes:
        penetration:        Fraction of the shoe dealt before reshuffling.
        continuous_shuffle: Reshuffle the full shoe before every round.
        seed:               Default seed when ``simulate_house_edge`` gets none.
    """

    penetration: float = 0.75
    continuous_shuffle: bool = False
    seed: int | None = None

    def __post_init__(self) -> None:
        if not 0.0 < self.penetration <= 1.0:
            raise ValueError(f"penetration must be in (0, 1], got {self.penetration!r}")


@dataclass
class SimulationResult:
    """Aggregate statistics from a simulation run.

    Attributes:
        hands_played:   Rounds simulated.
        total_bet:      Units wagered, including doubles and split hands.
        total_returned: Units returned to the player (stake plus winnings).
        house_edge:     (total_bet − total_returned) / total_bet × 100.
        wins:           Rounds with a positive net result.
        losses:         Rounds with a negative net result.
        pushes:         Rounds with a zero net result.
        blackjacks:     Player naturals that were paid.
        surrenders:     Hands surrendered.
        std_error:      Standard error of house_edge, in percentage points.
        ci_95_low:      Lower bound of the 95% confidence interval on house_edge.
        ci_95_high:     Upper bound of the 95% confidence interval on house_edge.
    """

    hands_played: int
    total_bet: float
    total_returned: float
    house_edge: float
    wins: int
    losses: int
    pushes: int
    blackjacks: int
    surrenders: int
    std_error: float = 0.0
    ci_95_low: float = 0.0
    ci_95_high: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "handsPlayed": self.hands_played,
            "totalBet": self.total_bet,
            "totalReturned": self.total_returned,
            "houseEdge": self.house_edge,
            "wins": self.wins,
            "losses": self.losses,
            "pushes": self.pushes,
            "blackjacks": self.blackjacks,
            "surrenders": self.surrenders,
            "stdError": self.std_error,
            "ci95Low": self.ci_95_low,
            "ci95High": self.ci_95_high,
        }

    def __str__(self) -> str:
        return (
            f"Hands: {self.hands_played:,} | "
            f"House edge: {self.house_edge:.3f}% | "
            f"95% CI: [{self.ci_95_low:.3f}, {self.ci_95_high:.3f}] | "
            f"W/L/P: {self.wins:,}/{self.losses:,}/{self.pushes:,}"
        )


# ─── Decision tables ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DecisionTables:
    """Flattened action codes (HIT/STAND/DOUBLE/SPLIT) and surrender flags."""

    hard_no_double: bytes
    hard_can_double: bytes
    soft_no_double: bytes
    soft_can_double: bytes
    pairs: bytes
    hard_surrender: bytes
    soft_surrender: bytes
    pair_surrender: bytes


def _entry_codes(entry: StrategyEntry) -> tuple[int, int]:
    """(no-double code, can-double code) for one entry."""
    evs = entry.evs
    no_double = STAND if evs.stand >= evs.hit else HIT
    can_double = no_double
    if evs.double is not None and evs.double > max(evs.stand, evs.hit):
        can_double = DOUBLE
    return no_double, can_double


def build_decision_tables(table: StrategyTable) -> DecisionTables:
    """Flatten a StrategyTable into byte tables for the play loop.

    Cells the table does not cover (hard 4, soft 12) default to HIT.
    """
    size = TOTAL_DIM * DEALER_DIM
    arrays = {
        name: np.full(size, HIT, dtype=np.uint8)
        for name in ("hard_no_double", "hard_can_double", "soft_no_double", "soft_can_double", "pairs")
    }
    flags = {name: np.zeros(size, dtype=np.uint8) for name in ("hard", "soft", "pairs")}

    for name, section in (("hard", table.hard), ("soft", table.soft)):
        for total, row in section.items():
            for upcard, entry in row.items():
                idx = total * DEALER_DIM + upcard
                no_double, can_double = _entry_codes(entry)
                arrays[f"{name}_no_double"][idx] = no_double
                arrays[f"{name}_can_double"][idx] = can_double
                flags[name][idx] = entry.action.is_surrender

    for card, row in table.pairs.items():
        for upcard, entry in row.items():
            idx = card * DEALER_DIM + upcard
            _, code = _entry_codes(entry)
            split = entry.evs.split
            if split is not None and split > entry.evs.best_without_surrender():
                code = SPLIT
            arrays["pairs"][idx] = code
            flags["pairs"][idx] = entry.action.is_surrender

    return DecisionTables(
        hard_no_double=arrays["hard_no_double"].tobytes(),
        hard_can_double=arrays["hard_can_double"].tobytes(),
        soft_no_double=arrays["soft_no_double"].tobytes(),
        soft_can_double=arrays["soft_can_double"].tobytes(),
        pairs=arrays["pairs"].tobytes(),
        hard_surrender=flags["hard"].tobytes(),
        soft_surrender=flags["soft"].tobytes(),
        pair_surrender=flags["pairs"].tobytes(),
    )


# ─── Hands ────────────────────────────────────────────────────────────────────


class SimHand:
    """Reusable hand slot with an incremental total."""

    __slots__ = (
        "card_count", "total", "soft_aces", "first", "second",
        "bet", "is_split", "split_aces", "surrendered",
    )

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.card_count = 0
        self.total = 0
        self.soft_aces = 0
        self.first = 0
        self.second = 0
        self.bet = 1.0
        self.is_split = False
        self.split_aces = False
        self.surrendered = False

    def add(self, value: int) -> None:
        if self.card_count == 0:
            self.first = value
        elif self.card_count == 1:
            self.second = value
        self.card_count += 1
        total = self.total + value
        soft = self.soft_aces + (value == ACE_VALUE)
        while total > 21 and soft:
            total -= 10
            soft -= 1
        self.total = total
        self.soft_aces = soft

    @property
    def is_blackjack(self) -> bool:
        return self.card_count == 2 and self.total == 21 and not self.is_split

    @property
    def is_pair(self) -> bool:
        return self.card_count == 2 and self.first == self.second


# ─── Shoes ────────────────────────────────────────────────────────────────────


class SimShoe:
    """Finite shoe of physical ranks, dealt as card values."""

    def __init__(self, decks: int, rng: np.random.Generator, config: SimulationConfig):
        self.rng = rng
        self.continuous_shuffle = config.continuous_shuffle
        self.ranks = np.tile(np.arange(1, 14, dtype=np.int64), 4 * int(decks))
        self.size = len(self.ranks)
        self.reserve = min(max(int(self.size * (1.0 - config.penetration)), MIN_RESERVE_CARDS), self.size)
        self.position = 0
        self._values: list[int] = []
        self.shuffle()

    def shuffle(self) -> None:
        self.rng.shuffle(self.ranks)
        self._values = _RANK_VALUES[self.ranks].tolist()
        self.position = 0

    @property
    def remaining(self) -> int:
        return self.size - self.position

    def needs_shuffle(self) -> bool:
        return self.continuous_shuffle or self.remaining < self.reserve

    def draw(self) -> int:
        if self.position >= self.size:
            raise ShoeExhaustedError(f"shoe of {self.size} cards exhausted mid-round")
        value = self._values[self.position]
        self.position += 1
        return value


class InfiniteSimShoe:
    """Independent draws with infinite-deck rank probabilities."""

    def __init__(self, rng: np.random.Generator):
        self.rng = rng
        self._values: list[int] = []
        self.position = 0

    def needs_shuffle(self) -> bool:
        return False

    def shuffle(self) -> None:
        pass

    def draw(self) -> int:
        if self.position >= len(self._values):
            ranks = self.rng.integers(1, 14, size=INFINITE_DRAW_BLOCK)
            self._values = _RANK_VALUES[ranks].tolist()
            self.position = 0
        value = self._values[self.position]
        self.position += 1
        return value


def make_sim_shoe(rules: RuleSet, rng: np.random.Generator, config: SimulationConfig) -> SimShoe | InfiniteSimShoe:
    """Physical shoe for any whole deck count, i.i.d. draws otherwise."""
    if math.isfinite(rules.decks) and float(rules.decks).is_integer():
        return SimShoe(int(rules.decks), rng, config)
    return InfiniteSimShoe(rng)


# ─── Simulator ────────────────────────────────────────────────────────────────


class MonteCarloSimulator:
    """Plays rounds for one RuleSet and accumulates results.

    Args:
        rules:          House rules.
        tables:         Decision tables; built from ``generate_strategy_table``
                        when omitted.
        config:         Shoe handling.
        rng:            numpy Generator driving all shuffles and draws.
    """

    def __init__(
        self,
        rules: RuleSet,
        tables: DecisionTables | None = None,
        config: SimulationConfig | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.rules = rules
        self.config = config or SimulationConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.tables = tables or build_decision_tables(generate_strategy_table(rules))
        self.shoe = make_sim_shoe(rules, self.rng, self.config)
        self.hands = [SimHand() for _ in range(HAND_POOL_SIZE)]
        self.dealer = SimHand()

        self.payout = 1.0 + rules.blackjack_multiplier
        self.peek_early_surrender = not rules.no_hole_card and rules.is_early_surrender

        self.hands_played = 0
        self.total_bet = 0.0
        self.total_returned = 0.0
        self.wins = 0
        self.losses = 0
        self.pushes = 0
        self.blackjacks = 0
        self.surrenders = 0
        self._sum_net_sq = 0.0
        self._sum_bet_sq = 0.0
        self._sum_net_bet = 0.0

    # ── Decisions ────────────────────────────────────────────────────────────

    def _wants_surrender(self, hand: SimHand, upcard: int) -> bool:
        if hand.card_count != 2 or hand.is_split:
            return False
        if not self.rules.surrender_allowed_against(upcard):
            return False
        tables = self.tables
        if hand.is_pair:
            return bool(tables.pair_surrender[hand.first * DEALER_DIM + upcard])
        idx = hand.total * DEALER_DIM + upcard
        if hand.soft_aces:
            return bool(tables.soft_surrender[idx])
        return bool(tables.hard_surrender[idx])

    def decide(self, hand: SimHand, upcard: int, num_hands: int) -> int:
        """Action code for a live hand, with structural fallbacks applied."""
        rules = self.rules
        tables = self.tables
        two_cards = hand.card_count == 2

        if self._wants_surrender(hand, upcard):
            return SURRENDER

        can_double = (
            two_cards
            and (not hand.is_split or rules.double_after_split)
            and rules.double_allowed(hand.total)
        )

        if hand.is_pair:
            code = tables.pairs[hand.first * DEALER_DIM + upcard]
            if code == SPLIT:
                if num_hands < rules.max_split_hands:
                    return SPLIT
            elif code != DOUBLE or can_double:
                return code

        # Blocked double or capped split: play the no-double entry for the total, not a blind hit.
        idx = hand.total * DEALER_DIM + upcard
        if hand.soft_aces:
            return (tables.soft_can_double if can_double else tables.soft_no_double)[idx]
        return (tables.hard_can_double if can_double else tables.hard_no_double)[idx]

    # ── Round ────────────────────────────────────────────────────────────────

    def _settle_natural(self, player: SimHand, dealer: SimHand, upcard: int) -> float:
        """Resolve a round where a natural is possible; return the amount returned."""
        draw = self.shoe.draw
        if player.is_blackjack and dealer.card_count == 1 and upcard >= 10:
            dealer.add(draw())

        if player.is_blackjack and not dealer.is_blackjack:
            self.blackjacks += 1
            return self.payout
        if player.is_blackjack:
            return 1.0
        if self.peek_early_surrender and self._wants_surrender(player, upcard):
            self.surrenders += 1
            return 0.5
        return 0.0

    def play_round(self) -> tuple[float, float]:
        """Play one round; return (total bet, total returned)."""
        rules = self.rules
        shoe = self.shoe
        if shoe.needs_shuffle():
            shoe.shuffle()
        draw = shoe.draw

        hands = self.hands
        dealer = self.dealer
        first = hands[0]
        first.reset()
        dealer.reset()

        first.add(draw())
        dealer.add(draw())
        first.add(draw())
        if not rules.no_hole_card:
            dealer.add(draw())
        upcard = dealer.first

        if first.is_blackjack or dealer.is_blackjack:
            return 1.0, self._settle_natural(first, dealer, upcard)

        # Player hands
        num_hands = 1
        h = 0
        while h < num_hands:
            hand = hands[h]
            if hand.split_aces:
                if (
                    hand.second == ACE_VALUE
                    and rules.resplit_aces
                    and num_hands < rules.max_split_hands
                ):
                    num_hands = self._split(hand, hands[num_hands], num_hands)
                    continue
                h += 1
                continue

            while hand.total < 21:
                action = self.decide(hand, upcard, num_hands)
                if action == STAND:
                    break
                if action == HIT:
                    hand.add(draw())
                elif action == DOUBLE:
                    hand.bet = 2.0
                    hand.add(draw())
                    break
                elif action == SURRENDER:
                    hand.surrendered = True
                    break
                else:
                    num_hands = self._split(hand, hands[num_hands], num_hands)
                    if hand.split_aces:
                        break
            if not hand.split_aces:
                h += 1

        # Dealer
        live = any(not hands[i].surrendered and hands[i].total <= 21 for i in range(num_hands))
        if live:
            if dealer.card_count == 1:
                dealer.add(draw())
            h17 = rules.hit_soft_17
            while dealer.total < 17 or (dealer.total == 17 and dealer.soft_aces and h17):
                dealer.add(draw())

        # Settlement
        dealer_total = dealer.total
        dealer_bj = dealer.is_blackjack
        bet = 0.0
        returned = 0.0
        for i in range(num_hands):
            hand = hands[i]
            bet += hand.bet
            if hand.surrendered:
                self.surrenders += 1
                returned += 0.5 * hand.bet
                continue
            if hand.total > 21 or dealer_bj:
                continue
            if dealer_total > 21 or hand.total > dealer_total:
                returned += 2.0 * hand.bet
            elif hand.total == dealer_total:
                returned += hand.bet
        return bet, returned

    def _split(self, hand: SimHand, new_hand: SimHand, num_hands: int) -> int:
        value = hand.first
        aces = value == ACE_VALUE
        draw = self.shoe.draw
        for slot in (hand, new_hand):
            slot.reset()
            slot.is_split = True
            slot.split_aces = aces
            slot.add(value)
            slot.add(draw())
        return num_hands + 1

    def record(self, bet: float, returned: float) -> None:
        net = returned - bet
        self.hands_played += 1
        self.total_bet += bet
        self.total_returned += returned
        self._sum_net_sq += net * net
        self._sum_bet_sq += bet * bet
        self._sum_net_bet += net * bet
        if net > 0:
            self.wins += 1
        elif net < 0:
            self.losses += 1
        else:
            self.pushes += 1

    def run(self, num_hands: int, on_progress: ProgressCallback | None = None) -> SimulationResult:
        if num_hands <= 0:
            raise ValueError(f"num_hands must be positive, got {num_hands!r}")
        play_round = self.play_round
        record = self.record
        for i in range(num_hands):
            if on_progress is not None and i % PROGRESS_INTERVAL == 0:
                on_progress(i, num_hands)
            bet, returned = play_round()
            record(bet, returned)
        if on_progress is not None:
            on_progress(num_hands, num_hands)
        return self.result()

    def result(self) -> SimulationResult:
        n = self.hands_played
        total_bet = self.total_bet
        house_edge = (total_bet - self.total_returned) / total_bet * 100 if total_bet > 0 else 0.0

        # Ratio estimator: edge = -Σnet / Σbet.
        std_error = 0.0
        if n > 1 and total_bet > 0:
            ratio = (self.total_returned - total_bet) / total_bet
            resid = (
                self._sum_net_sq - 2 * ratio * self._sum_net_bet + ratio * ratio * self._sum_bet_sq
            ) / n
            mean_bet = total_bet / n
            std_error = math.sqrt(max(resid, 0.0) / (n - 1)) / mean_bet * 100
        margin = float(stats.norm.ppf(0.975)) * std_error

        return SimulationResult(
            hands_played=n,
            total_bet=total_bet,
            total_returned=self.total_returned,
            house_edge=house_edge,
            wins=self.wins,
            losses=self.losses,
            pushes=self.pushes,
            blackjacks=self.blackjacks,
            surrenders=self.surrenders,
            std_error=std_error,
            ci_95_low=house_edge - margin,
            ci_95_high=house_edge + margin,
        )


def simulate_house_edge(
    num_hands: int = 10_000,
    rules: RuleSet = DEFAULT_RULES,
    on_progress: ProgressCallback | None = None,
    *,
    seed: int | None = None,
    config: SimulationConfig | None = None,
    strategy_table: StrategyTable | None = None,
) -> SimulationResult:
    """Simulate ``num_hands`` rounds of basic strategy and measure the house edge.

    Args:
        num_hands:      Rounds to play.
        rules:          House rules.
        on_progress:    Optional ``(done, total)`` callback, invoked every
                        1024 rounds and once on completion.
        seed:           Seed for numpy's Generator; overrides ``config.seed``.
        config:         Shoe handling; defaults to SimulationConfig().
        strategy_table: Pre-generated table for ``rules`` (skips generation).

    Returns:
        SimulationResult for the run.

    Raises:
        ValueError:          num_hands is not positive.
        ShoeExhaustedError:  A round ran past the end of the shoe.
    """
    if num_hands <= 0:
        raise ValueError(f"num_hands must be positive, got {num_hands!r}")
    config = config or SimulationConfig()
    rng = np.random.default_rng(seed if seed is not None else config.seed)

    t0 = time.time()
    table = strategy_table or generate_strategy_table(rules)
    simulator = MonteCarloSimulator(rules, build_decision_tables(table), config, rng)
    result = simulator.run(num_hands, on_progress)
    logger.debug("simulated %d hands for %s in %.2fs: %s", num_hands, rules, time.time() - t0, result)
    return result


# ─── __main__ ─────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    rules = RuleSet(decks=6, hit_soft_17=False, surrender="late")
    print("Blackjack Monte Carlo — 6D S17 DAS LS, 200,000 hands\n")
    t0 = time.time()
    result = simulate_house_edge(200_000, rules, seed=42)
    print(result)
    print(f"Elapsed: {time.time() - t0:.2f}s")
