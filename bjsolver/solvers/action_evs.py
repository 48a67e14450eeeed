"""
Per-decision action EVs and the cost of a playing mistake.

Given the player's cards and the dealer upcard, ``compute_action_evs`` values
every action (stand, hit, double, split, surrender) for that exact spot and
marks which ones the rules make available. ``compute_ev_cost`` compares a
chosen action against the best available one.

With composition-dependent rules the known cards (player cards and upcard)
are removed from the shoe first. In a peek game with a 10 or Ace upcard the
dealer is known not to hold blackjack, so the EVs are averaged over the legal
hole cards, each removed from the shoe in turn. Otherwise the player is valued
against the conditioned aggregate dealer outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from bjsolver.engine.cards import ACE_INDEX, ACE_VALUE, CARD_VALUES, TEN_INDEX, add_card, hand_value, value_index
from bjsolver.engine.rules import RuleSet
from bjsolver.engine.shoe import ShoeComposition, probability_source_for
from bjsolver.solvers.dealer import DealerDistributionEngine, DealerOutcome, dealer_outcome_for_upcard
from bjsolver.solvers.player import SURRENDER_EV, PlayerValuationEngine
from bjsolver.solvers.strategy_table import StrategyTable

EV_LOSS_EPSILON: float = 1e-5


class PlayerAction(str, Enum):
    STAND = "stand"
    HIT = "hit"
    DOUBLE = "double"
    SPLIT = "split"
    SURRENDER = "surrender"


@dataclass(frozen=True)
class ActionEV:
    action: PlayerAction
    ev: float
    is_available: bool


@dataclass(frozen=True)
class EVCostInfo:
    """Comparison between the chosen action and the best available one."""

    optimal_action: PlayerAction
    optimal_ev: float
    chosen_action: PlayerAction
    chosen_ev: float
    ev_loss: float
    ev_loss_percent: str


# ─── Formatting ───────────────────────────────────────────────────────────────


def format_ev(ev: float) -> str:
    """Signed percentage of the initial bet.

    Examples:
        >>> format_ev(0.1234)
        '+12.34%'
        >>> format_ev(-0.5)
        '-50.00%'
    """
    sign = "+" if ev >= 0 else ""
    return f"{sign}{ev * 100:.2f}%"


def format_ev_loss(loss: float) -> str:
    """EV lost by a choice, shown as a negative percentage ('0%' for none).

    Examples:
        >>> format_ev_loss(0.0213)
        '-2.13%'
        >>> format_ev_loss(0.0)
        '0%'
    """
    if abs(loss) <= EV_LOSS_EPSILON:
        return "0%"
    sign = "-" if loss >= 0 else "+"
    return f"{sign}{abs(loss) * 100:.2f}%"


# ─── Action EVs ───────────────────────────────────────────────────────────────


def _is_pair(values: Sequence[int]) -> bool:
    return len(values) == 2 and values[0] == values[1]


def _evs_against(
    player: PlayerValuationEngine,
    total: int,
    soft: bool,
    pair_value: int | None,
) -> tuple[float, float, float, float]:
    """(stand, hit, double, split) for one hand against one dealer outcome."""
    stand = player.stand_ev(total)
    hit = player.hit_ev(total, soft) if total <= 21 else -1.0
    double = player.double_ev(total, soft) if total <= 21 else -2.0
    split = player.split_ev(pair_value) if pair_value is not None else 0.0
    return stand, hit, double, split


def _composition_evs(
    rules: RuleSet,
    shoe: ShoeComposition,
    values: Sequence[int],
    upcard: int,
    total: int,
    soft: bool,
    pair_value: int | None,
) -> tuple[float, float, float, float]:
    for v in [*values, upcard]:
        i = value_index(v)
        if shoe.counts[i] > 0:
            shoe.remove(i)

    dealer_engine = DealerDistributionEngine(rules, shoe)

    forbidden = None
    if upcard == ACE_VALUE:
        forbidden = TEN_INDEX
    elif upcard == 10:
        forbidden = ACE_INDEX

    if rules.no_hole_card or forbidden is None:
        dealer, _ = dealer_outcome_for_upcard(dealer_engine, upcard, rules.no_hole_card)
        return _evs_against(PlayerValuationEngine(rules, shoe, dealer), total, soft, pair_value)

    legal_mass = shoe.total - shoe.counts[forbidden]
    if legal_mass <= 0:
        return 0.0, 0.0, 0.0, 0.0

    acc = [0.0, 0.0, 0.0, 0.0]
    for i, count in enumerate(list(shoe.counts)):
        if i == forbidden or count == 0:
            continue
        p = count / legal_mass
        shoe.remove(i)
        hole_total, hole_soft = add_card(upcard, upcard == ACE_VALUE, CARD_VALUES[i])
        dealer = DealerOutcome(dealer_engine.distribution(hole_total, hole_soft))
        evs = _evs_against(PlayerValuationEngine(rules, shoe, dealer), total, soft, pair_value)
        shoe.restore(i)
        for k in range(4):
            acc[k] += p * evs[k]
    return acc[0], acc[1], acc[2], acc[3]


def compute_action_evs(
    player_values: Sequence[int],
    upcard: int,
    rules: RuleSet,
    is_split: bool = False,
) -> list[ActionEV]:
    """EV and availability of every action for the player's current hand.

    Args:
        player_values: Card values of the player's hand (2–11, ace = 11).
        upcard:        Dealer upcard value.
        rules:         House rules.
        is_split:      True if the hand came from a split.

    Returns:
        ActionEVs in the order stand, hit, double, split, surrender.
    """
    total, soft = hand_value(player_values)
    two_cards = len(player_values) == 2
    pair_value = player_values[0] if _is_pair(player_values) else None

    source = probability_source_for(rules)
    if isinstance(source, ShoeComposition):
        stand, hit, double, split = _composition_evs(rules, source, player_values, upcard, total, soft, pair_value)
    else:
        dealer, _ = dealer_outcome_for_upcard(
            DealerDistributionEngine(rules, source), upcard, rules.no_hole_card
        )
        stand, hit, double, split = _evs_against(
            PlayerValuationEngine(rules, source, dealer), total, soft, pair_value
        )

    can_double = (
        two_cards
        and rules.double_allowed(total)
        and (not is_split or rules.double_after_split)
    )
    can_split = pair_value is not None and not is_split
    can_surrender = two_cards and not is_split and rules.surrender_allowed_against(upcard)

    return [
        ActionEV(PlayerAction.STAND, stand, True),
        ActionEV(PlayerAction.HIT, hit, total <= 21),
        ActionEV(PlayerAction.DOUBLE, double, can_double),
        ActionEV(PlayerAction.SPLIT, split, can_split),
        ActionEV(PlayerAction.SURRENDER, SURRENDER_EV, can_surrender),
    ]


def compute_available_action_evs(
    player_values: Sequence[int],
    upcard: int,
    rules: RuleSet,
    strategy_table: StrategyTable | None = None,
    is_split: bool = False,
) -> list[ActionEV]:
    """Available actions only; pair EVs come from ``strategy_table`` when given."""
    available = [a for a in compute_action_evs(player_values, upcard, rules, is_split) if a.is_available]
    if strategy_table is None or not _is_pair(player_values):
        return available

    evs = strategy_table.pairs[player_values[0]][upcard].evs
    table_values = {
        PlayerAction.STAND: evs.stand,
        PlayerAction.HIT: evs.hit,
        PlayerAction.DOUBLE: evs.double,
        PlayerAction.SPLIT: evs.split,
        PlayerAction.SURRENDER: evs.surrender,
    }
    return [
        ActionEV(a.action, table_values[a.action], True) if table_values[a.action] is not None else a
        for a in available
    ]


def compute_ev_cost(
    player_values: Sequence[int],
    upcard: int,
    chosen: PlayerAction | str,
    rules: RuleSet,
    strategy_table: StrategyTable | None = None,
    is_split: bool = False,
) -> EVCostInfo | None:
    """Cost of ``chosen`` relative to the best available action.

    Returns:
        EVCostInfo, or None if ``chosen`` is not available in this spot.
    """
    chosen = PlayerAction(chosen)
    available = compute_available_action_evs(player_values, upcard, rules, strategy_table, is_split)
    chosen_ev = next((a for a in available if a.action is chosen), None)
    if chosen_ev is None:
        return None

    best = available[0]
    for candidate in available[1:]:
        if candidate.ev > best.ev:
            best = candidate

    loss = best.ev - chosen_ev.ev
    return EVCostInfo(
        optimal_action=best.action,
        optimal_ev=best.ev,
        chosen_action=chosen,
        chosen_ev=chosen_ev.ev,
        ev_loss=loss,
        ev_loss_percent=format_ev_loss(loss),
    )
