"""
Dealer final-outcome distributions.

The dealer's play is fixed by the rules (hit below 17, hit soft 17 under H17),
so the probability of each final outcome depends only on the current
(total, is_soft) state and the draw probabilities. Distributions are 6-tuples:
P(17), P(18), P(19), P(20), P(21), P(bust).

The engine is parametrised over a ProbabilitySource. With a fixed source the
memo key is just the hand state; with a ShoeComposition every draw removes the
card from the shoe for the recursive call and restores it afterwards, and the
packed shoe key becomes part of the memo key.

Peek conditioning (``condition_on_no_blackjack``): with a 10 or Ace upcard in
a hole-card game the dealer checks for blackjack before the player acts, so
the player's decisions are made knowing the dealer does not have one. The
blackjack mass is removed from the 21 bucket and the rest rescaled to 1.
Without a hole card the player acts first; the blackjack mass is kept apart in
``DealerOutcome.blackjack`` and settles as a loss against every player hand.
"""

from __future__ import annotations

from dataclasses import dataclass

from bjsolver.engine.cards import ACE_INDEX, ACE_VALUE, CARD_VALUES, TEN_INDEX, add_card
from bjsolver.engine.rules import RuleSet
from bjsolver.engine.shoe import ProbabilitySource

# ─── Constants ────────────────────────────────────────────────────────────────

DIST_SIZE: int = 6
D21: int = 4
DBUST: int = 5

NORMALIZE_EPSILON: float = 1e-10
"""Remaining mass below which rescaling is skipped instead of dividing."""

_BUST_DIST: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0, 1.0)
_STAND_DISTS: dict[int, tuple[float, ...]] = {
    total: tuple(1.0 if j == total - 17 else 0.0 for j in range(DIST_SIZE))
    for total in range(17, 22)
}


# ─── DealerOutcome ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DealerOutcome:
    """Dealer distribution as seen by the player for one upcard.

    Attributes:
        probs:     P(17), P(18), P(19), P(20), P(21), P(bust). Excludes the
                   dealer-blackjack mass in both peek and no-hole-card games.
        blackjack: Unconditional dealer-blackjack probability in a
                   no-hole-card game (0.0 in peek games, where it has been
                   conditioned away).
    """

    probs: tuple[float, ...]
    blackjack: float = 0.0

    @property
    def bust(self) -> float:
        return self.probs[DBUST]

    @property
    def total_mass(self) -> float:
        """Sum of all outcome probabilities; 1.0 for a well-formed outcome."""
        return sum(self.probs) + self.blackjack

    def probability(self, outcome: int | str) -> float:
        """Return P(final total == outcome) for 17–21, or P(bust) for 'bust'."""
        if outcome == "bust":
            return self.probs[DBUST]
        return self.probs[int(outcome) - 17]


# ─── Engine ───────────────────────────────────────────────────────────────────


class DealerDistributionEngine:
    """Memoised recursive dealer distribution for one RuleSet and one source.

    The memo lives on the instance, so separate engines (and separate rule
    sets) never share cached results.
    """

    def __init__(self, rules: RuleSet, source: ProbabilitySource):
        self.hit_soft_17 = rules.hit_soft_17
        self.source = source
        self.memo: dict[int, tuple[float, ...]] = {}

    def clear(self) -> None:
        self.memo.clear()

    def distribution(self, total: int, is_soft: bool) -> tuple[float, ...]:
        """Return the final-outcome distribution from the given dealer state.

        Args:
            total:   Dealer's current total.
            is_soft: True if an ace is counted as 11.

        Returns:
            6-tuple of probabilities summing to 1.
        """
        if total > 21:
            return _BUST_DIST
        if total > 17 or (total == 17 and not (is_soft and self.hit_soft_17)):
            return _STAND_DISTS[total]

        source = self.source
        key = (source.key << 6) | (total << 1) | is_soft
        cached = self.memo.get(key)
        if cached is not None:
            return cached

        acc = [0.0] * DIST_SIZE
        for i, p in source.weights():
            new_total, new_soft = add_card(total, is_soft, CARD_VALUES[i])
            source.remove(i)
            sub = self.distribution(new_total, new_soft)
            source.restore(i)
            for j in range(DIST_SIZE):
                acc[j] += p * sub[j]

        result = tuple(acc)
        self.memo[key] = result
        return result

    def upcard_distribution(self, upcard: int) -> tuple[float, ...]:
        """Aggregate distribution for an upcard, enumerating every hole card.

        The result still contains the dealer-blackjack paths inside the 21
        bucket; see ``condition_on_no_blackjack``.
        """
        source = self.source
        acc = [0.0] * DIST_SIZE
        for i, p in source.weights():
            total, soft = add_card(upcard, upcard == ACE_VALUE, CARD_VALUES[i])
            source.remove(i)
            sub = self.distribution(total, soft)
            source.restore(i)
            for j in range(DIST_SIZE):
                acc[j] += p * sub[j]
        return tuple(acc)


# ─── Peek conditioning ────────────────────────────────────────────────────────


def blackjack_probability(upcard: int, source: ProbabilitySource) -> float:
    """Probability that the hole card completes a dealer blackjack.

    Examples:
        >>> from bjsolver.engine.shoe import InfiniteDeckSource
        >>> round(blackjack_probability(11, InfiniteDeckSource()), 6)
        0.307692
        >>> blackjack_probability(9, InfiniteDeckSource())
        0.0
    """
    if upcard == ACE_VALUE:
        return source.probability(TEN_INDEX)
    if upcard == 10:
        return source.probability(ACE_INDEX)
    return 0.0


def condition_on_no_blackjack(
    raw: tuple[float, ...],
    bj_prob: float,
    no_hole_card: bool,
) -> DealerOutcome:
    """Split the dealer-blackjack mass out of an upcard distribution.

    Args:
        raw:          Aggregate distribution from ``upcard_distribution``.
        bj_prob:      Probability of a dealer blackjack for this upcard.
        no_hole_card: True for ENHC games (no peek).

    Returns:
        Peek game: distribution conditioned on no dealer blackjack (sums to 1).
        No-hole-card game: unnormalised distribution plus ``blackjack`` mass.
        If no non-blackjack mass remains, rescaling is skipped.
    """
    if bj_prob <= 0.0:
        return DealerOutcome(tuple(raw))

    probs = list(raw)
    probs[D21] = max(0.0, probs[D21] - bj_prob)

    if no_hole_card:
        return DealerOutcome(tuple(probs), blackjack=bj_prob)

    remaining = 1.0 - bj_prob
    if remaining > NORMALIZE_EPSILON:
        scale = 1.0 / remaining
        probs = [p * scale for p in probs]
    return DealerOutcome(tuple(probs))


def dealer_outcome_for_upcard(
    engine: DealerDistributionEngine,
    upcard: int,
    no_hole_card: bool,
) -> tuple[DealerOutcome, float]:
    """Return (player-facing DealerOutcome, dealer blackjack probability)."""
    raw = engine.upcard_distribution(upcard)
    bj_prob = blackjack_probability(upcard, engine.source)
    return condition_on_no_blackjack(raw, bj_prob, no_hole_card), bj_prob
