"""
House rules: the immutable RuleSet and the field-by-field merge used at
external boundaries.

Every engine takes a RuleSet and never mutates it. Derived predicates
(payout multiplier, surrender timing, double eligibility, model dispatch)
live here so all engines read the rules the same way.

String values of the enums match the wire format used by callers
(``"3:2"``, ``"9-11"``, ``"enhcNoAce"``), so a JSON rules object maps
directly onto a RuleSet.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class SurrenderPolicy(str, Enum):
    """When (and against which upcards) the player may surrender."""

    NONE = "none"
    EARLY = "early"
    LATE = "late"
    ENHC_ALL = "enhcAll"        # no-hole-card, surrender against any upcard
    ENHC_NO_ACE = "enhcNoAce"   # no-hole-card, not against an Ace


class DoubleRestriction(str, Enum):
    ANY = "any"
    NINE_TO_ELEVEN = "9-11"
    TEN_TO_ELEVEN = "10-11"


class BlackjackPayout(str, Enum):
    THREE_TO_TWO = "3:2"
    SIX_TO_FIVE = "6:5"
    EVEN_MONEY = "1:1"


_PAYOUT_MULTIPLIERS: dict[BlackjackPayout, float] = {
    BlackjackPayout.THREE_TO_TWO: 1.5,
    BlackjackPayout.SIX_TO_FIVE: 1.2,
    BlackjackPayout.EVEN_MONEY: 1.0,
}


@dataclass(frozen=True)
class RuleSet:
    """A complete, immutable description of the house rules.

    Attributes:
        hit_soft_17:        Dealer hits soft 17 (H17) when True, stands (S17) otherwise.
        surrender:          Surrender policy.
        double_after_split: Doubling allowed on split hands (DAS).
        double_restriction: Two-card totals on which doubling is allowed.
        resplit_aces:       Split aces may be split again (RSA).
        blackjack_pays:     Natural payout.
        decks:              Deck count. An integer in [1, 8] selects the
                            composition-dependent model; any other value
                            (fractional, 0, > 8, inf) selects the infinite deck.
        no_hole_card:       European / ENHC: the dealer takes no hole card
                            until the player has acted, so there is no peek.
        max_split_hands:    Maximum simultaneous hands reachable by splitting (2–4).
    """

    hit_soft_17: bool = True
    surrender: SurrenderPolicy = SurrenderPolicy.NONE
    double_after_split: bool = True
    double_restriction: DoubleRestriction = DoubleRestriction.ANY
    resplit_aces: bool = True
    blackjack_pays: BlackjackPayout = BlackjackPayout.THREE_TO_TWO
    decks: float = 2
    no_hole_card: bool = False
    max_split_hands: int = 4

    def __post_init__(self) -> None:
        # Accept plain strings for the enum fields.
        object.__setattr__(self, "surrender", SurrenderPolicy(self.surrender))
        object.__setattr__(self, "double_restriction", DoubleRestriction(self.double_restriction))
        object.__setattr__(self, "blackjack_pays", BlackjackPayout(self.blackjack_pays))
        if self.max_split_hands not in (2, 3, 4):
            raise ValueError(f"max_split_hands must be 2, 3 or 4, got {self.max_split_hands!r}")
        if not self.decks > 0:
            raise ValueError(f"decks must be positive, got {self.decks!r}")

    # ── Derived rule predicates ──────────────────────────────────────────────

    @property
    def blackjack_multiplier(self) -> float:
        """Profit per unit on a natural (1.5, 1.2 or 1.0)."""
        return _PAYOUT_MULTIPLIERS[self.blackjack_pays]

    @property
    def uses_composition(self) -> bool:
        """True when the deck count selects the composition-dependent model."""
        return is_finite_deck_count(self.decks)

    @property
    def is_early_surrender(self) -> bool:
        return self.surrender in (SurrenderPolicy.EARLY, SurrenderPolicy.ENHC_ALL)

    @property
    def is_late_surrender(self) -> bool:
        return self.surrender in (SurrenderPolicy.LATE, SurrenderPolicy.ENHC_NO_ACE)

    def surrender_allowed_against(self, upcard: int) -> bool:
        """Return True if surrender is offered against this dealer upcard (2–11)."""
        if self.surrender is SurrenderPolicy.NONE:
            return False
        if self.surrender is SurrenderPolicy.ENHC_NO_ACE:
            return upcard != 11
        return True

    def double_allowed(self, total: int) -> bool:
        """Return True if the double restriction permits doubling on this total."""
        if self.double_restriction is DoubleRestriction.NINE_TO_ELEVEN:
            return 9 <= total <= 11
        if self.double_restriction is DoubleRestriction.TEN_TO_ELEVEN:
            return 10 <= total <= 11
        return True

    def to_dict(self) -> dict[str, Any]:
        """Return the rules in the camelCase wire format."""
        return {
            "hitSoft17": self.hit_soft_17,
            "surrenderAllowed": self.surrender.value,
            "doubleAfterSplit": self.double_after_split,
            "doubleRestriction": self.double_restriction.value,
            "resplitAces": self.resplit_aces,
            "blackjackPays": self.blackjack_pays.value,
            "decks": self.decks,
            "noHoleCard": self.no_hole_card,
            "maxSplitHands": self.max_split_hands,
        }


DEFAULT_RULES = RuleSet()


def is_finite_deck_count(decks: float) -> bool:
    """Dispatch rule: integer deck counts in [1, 8] use composition tracking.

    Examples:
        >>> is_finite_deck_count(6)
        True
        >>> is_finite_deck_count(6.5)
        False
        >>> is_finite_deck_count(math.inf)
        False
    """
    if isinstance(decks, bool) or not math.isfinite(decks):
        return False
    return float(decks).is_integer() and 1 <= decks <= 8


# ─── External input merge ─────────────────────────────────────────────────────

# Wire (camelCase) key → RuleSet field. snake_case field names are accepted too.
_WIRE_KEYS: dict[str, str] = {
    "hitSoft17": "hit_soft_17",
    "surrenderAllowed": "surrender",
    "doubleAfterSplit": "double_after_split",
    "doubleRestriction": "double_restriction",
    "resplitAces": "resplit_aces",
    "blackjackPays": "blackjack_pays",
    "decks": "decks",
    "noHoleCard": "no_hole_card",
    "maxSplitHands": "max_split_hands",
}


def _coerce_field(name: str, value: Any) -> Any:
    """Convert one raw input value to the RuleSet field type, or raise ValueError."""
    if name in ("hit_soft_17", "double_after_split", "resplit_aces", "no_hole_card"):
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be a boolean")
        return value
    if name == "surrender":
        return SurrenderPolicy(value)
    if name == "double_restriction":
        return DoubleRestriction(value)
    if name == "blackjack_pays":
        return BlackjackPayout(value)
    if name == "decks":
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not value > 0:
            raise ValueError("decks must be a positive number")
        return value
    if name == "max_split_hands":
        if isinstance(value, bool) or value not in (2, 3, 4):
            raise ValueError("max_split_hands must be 2, 3 or 4")
        return int(value)
    raise ValueError(f"unknown rule field {name}")


def rules_from_mapping(
    data: Mapping[str, Any] | None,
    defaults: RuleSet = DEFAULT_RULES,
) -> RuleSet:
    """Merge a partial rules mapping over the defaults, field by field.

    Missing fields keep their default. Unknown keys are ignored. A field whose
    value cannot be interpreted falls back to the default and is logged; the
    input as a whole is never rejected.

    Args:
        data:     Caller-supplied rules (camelCase wire keys or snake_case
                  field names), or None.
        defaults: RuleSet supplying values for absent or invalid fields.

    Returns:
        A fully populated RuleSet.

    Examples:
        >>> rules_from_mapping({"decks": 6, "hitSoft17": False}).decks
        6
        >>> rules_from_mapping({"blackjackPays": "7:5"}).blackjack_pays.value
        '3:2'
    """
    if not data:
        return defaults

    field_names = {f.name for f in dataclasses.fields(RuleSet)}
    updates: dict[str, Any] = {}
    for key, value in data.items():
        name = _WIRE_KEYS.get(key, key)
        if name not in field_names:
            continue
        try:
            updates[name] = _coerce_field(name, value)
        except (ValueError, TypeError):
            logger.warning("Ignoring invalid rule %s=%r; using default %r", key, value,
                           getattr(defaults, name))
    return dataclasses.replace(defaults, **updates)
