"""
Player decision values against a fixed dealer outcome.

PlayerValuationEngine evaluates stand, hit, double, surrender and split for a
hand state ``(total, is_soft, can_double, can_surrender)`` against one
DealerOutcome. Hitting draws from the engine's ProbabilitySource with the same
remove/recurse/restore discipline as the dealer engine, so the same code serves
the infinite deck, a frozen 1- or 3-card-removal shoe, and full composition
dependence.

EVs are in units of the initial bet and are expressed in the frame of the
supplied DealerOutcome: conditioned on no dealer blackjack in a peek game,
unconditional (blackjack mass inside the outcome) in a no-hole-card game.
"""

from __future__ import annotations

from bjsolver.engine.cards import ACE_VALUE, CARD_VALUES, add_card
from bjsolver.engine.rules import RuleSet
from bjsolver.engine.shoe import ProbabilitySource
from bjsolver.solvers.dealer import DBUST, DealerOutcome

SURRENDER_EV: float = -0.5


def _stand_values(dealer: DealerOutcome) -> tuple[float, ...]:
    """Stand EV for every player total 0–21 against one dealer outcome."""
    probs = dealer.probs
    values = []
    for total in range(22):
        ev = probs[DBUST] - dealer.blackjack
        for k, dealer_total in enumerate(range(17, 22)):
            if total > dealer_total:
                ev += probs[k]
            elif total < dealer_total:
                ev -= probs[k]
        values.append(ev)
    return tuple(values)


class PlayerValuationEngine:
    """Memoised player EVs for one RuleSet, one source and one dealer outcome.

    Args:
        rules:           House rules (double restriction, DAS, RSA, split limit).
        source:          Draw probabilities for the player's cards.
        dealer:          Dealer outcome the player's hands are settled against.
        surrender_value: EV credited for surrendering, in the dealer outcome's
                         frame. -0.5 unless early surrender is being folded into
                         a peek-conditioned frame.

    Examples:
        >>> from bjsolver.engine.shoe import InfiniteDeckSource
        >>> from bjsolver.solvers.dealer import DealerOutcome
        >>> always_bust = DealerOutcome((0.0, 0.0, 0.0, 0.0, 0.0, 1.0))
        >>> engine = PlayerValuationEngine(RuleSet(), InfiniteDeckSource(), always_bust)
        >>> engine.stand_ev(12)
        1.0
    """

    def __init__(
        self,
        rules: RuleSet,
        source: ProbabilitySource,
        dealer: DealerOutcome,
        surrender_value: float = SURRENDER_EV,
    ):
        self.rules = rules
        self.source = source
        self.dealer = dealer
        self.surrender_value = surrender_value
        self._stand = _stand_values(dealer)
        self.memo: dict[int, float] = {}

    # ── Single actions ───────────────────────────────────────────────────────

    def stand_ev(self, total: int) -> float:
        """EV of standing on ``total``; -1 for a busted hand."""
        if total > 21:
            return -1.0
        return self._stand[total]

    def hit_ev(self, total: int, is_soft: bool) -> float:
        """EV of taking one card and then continuing optimally (no double/surrender)."""
        source = self.source
        ev = 0.0
        for i, p in source.weights():
            new_total, new_soft = add_card(total, is_soft, CARD_VALUES[i])
            if new_total > 21:
                ev -= p
                continue
            source.remove(i)
            ev += p * self.optimal_ev(new_total, new_soft, False, False)
            source.restore(i)
        return ev

    def double_ev(self, total: int, is_soft: bool) -> float:
        """EV of doubling: exactly one more card at twice the stake."""
        ev = 0.0
        for i, p in self.source.weights():
            new_total, _ = add_card(total, is_soft, CARD_VALUES[i])
            ev += p * self.stand_ev(new_total)
        return 2.0 * ev

    # ── Optimal play ─────────────────────────────────────────────────────────

    def optimal_ev(self, total: int, is_soft: bool, can_double: bool, can_surrender: bool) -> float:
        """Best EV over the permitted actions from this hand state.

        Evaluation order is stand, hit, double, surrender; an action replaces
        the current best only when its EV is strictly greater.
        """
        if total > 21:
            return -1.0

        key = (
            (self.source.key << 8) | (total << 3) | (is_soft << 2)
            | (can_double << 1) | can_surrender
        )
        cached = self.memo.get(key)
        if cached is not None:
            return cached

        best = self.stand_ev(total)
        hit = self.hit_ev(total, is_soft)
        if hit > best:
            best = hit
        if can_double and self.rules.double_allowed(total):
            double = self.double_ev(total, is_soft)
            if double > best:
                best = double
        if can_surrender and self.surrender_value > best:
            best = self.surrender_value

        self.memo[key] = best
        return best

    # ── Splitting ────────────────────────────────────────────────────────────

    def split_ev(self, card_value: int) -> float:
        """EV of splitting a pair of ``card_value``, summed over both hands."""
        resplits_left = self.rules.max_split_hands - 2
        return 2.0 * self.split_hand_ev(card_value, resplits_left)

    def split_hand_ev(self, split_card: int, resplits_left: int) -> float:
        """EV of one hand started from ``split_card`` after a split.

        The hand receives one card. If it pairs again, budget remains and
        (for aces) resplitting aces is allowed, the better of playing on and
        resplitting into two hands is taken. Split aces that are not resplit
        stand on their two cards.
        """
        rules = self.rules
        source = self.source
        is_aces = split_card == ACE_VALUE
        can_double = rules.double_after_split and not is_aces
        ev = 0.0
        for i, p in source.weights():
            second = CARD_VALUES[i]
            total, soft = add_card(split_card, is_aces, second)
            can_resplit = (
                second == split_card
                and resplits_left > 0
                and (not is_aces or rules.resplit_aces)
            )
            source.remove(i)
            if can_resplit:
                play = self.stand_ev(total) if is_aces else self.optimal_ev(total, soft, can_double, False)
                resplit = 2.0 * self.split_hand_ev(split_card, resplits_left - 1)
                value = max(play, resplit)
            elif is_aces:
                value = self.stand_ev(total)
            else:
                value = self.optimal_ev(total, soft, can_double, False)
            source.restore(i)
            ev += p * value
        return ev
