"""
Probability sources for the recursive engines.

Three interchangeable sources expose the same small interface:

    weights()    -> list of (bucket_index, probability) for drawable buckets
    remove(i)    -> take one card of bucket i out (no-op for fixed sources)
    restore(i)   -> put it back
    key          -> int identifying the current composition, used in memo keys

InfiniteDeckSource and FixedProbabilitySource never change, so their key is
constant. ShoeComposition is the composition-dependent source: the engines
remove a card, recurse, and restore it on the way back, so one shoe instance
serves an entire enumeration. Its key packs the 10 counts into one integer
(8 bits per bucket) and is updated incrementally on every remove/restore.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from .cards import CARDS_PER_DECK, INFINITE_DECK_PROBS, NUM_VALUES
from .rules import RuleSet

_KEY_BITS: int = 8
_KEY_STRIDES: tuple[int, ...] = tuple(1 << (_KEY_BITS * i) for i in range(NUM_VALUES))


class ProbabilitySource(Protocol):
    key: int

    def weights(self) -> list[tuple[int, float]]: ...

    def probability(self, index: int) -> float: ...

    def remove(self, index: int) -> None: ...

    def restore(self, index: int) -> None: ...


# ─── Fixed sources ────────────────────────────────────────────────────────────


class FixedProbabilitySource:
    """Constant per-bucket probabilities; draws do not change them."""

    key: int = 0

    def __init__(self, probs: Sequence[float]):
        if len(probs) != NUM_VALUES:
            raise ValueError(f"expected {NUM_VALUES} probabilities, got {len(probs)}")
        self.probs: tuple[float, ...] = tuple(float(p) for p in probs)
        self._weights = [(i, p) for i, p in enumerate(self.probs) if p > 0.0]

    @classmethod
    def from_shoe(cls, shoe: "ShoeComposition") -> "FixedProbabilitySource":
        """Freeze the current draw probabilities of a shoe."""
        return cls([c / shoe.total for c in shoe.counts])

    def weights(self) -> list[tuple[int, float]]:
        return self._weights

    def probability(self, index: int) -> float:
        return self.probs[index]

    def remove(self, index: int) -> None:
        pass

    def restore(self, index: int) -> None:
        pass


class InfiniteDeckSource(FixedProbabilitySource):
    """1/13 per bucket, 4/13 for the ten bucket, independent of history."""

    def __init__(self) -> None:
        super().__init__(INFINITE_DECK_PROBS)


# ─── Composition-dependent source ─────────────────────────────────────────────


class ShoeComposition:
    """Mutable per-bucket card counts with strict remove/restore backtracking.

    Invariant: ``sum(counts) == total`` and no count is ever negative.

    Examples:
        >>> shoe = ShoeComposition.for_decks(1)
        >>> shoe.total
        52
        >>> shoe.remove(8); shoe.counts[8], shoe.total
        (15, 51)
        >>> shoe.restore(8); shoe.counts[8], shoe.total
        (16, 52)
    """

    def __init__(self, counts: Sequence[int]):
        if len(counts) != NUM_VALUES:
            raise ValueError(f"expected {NUM_VALUES} counts, got {len(counts)}")
        if any(c < 0 for c in counts):
            raise ValueError("shoe counts must be non-negative")
        if any(c >= 1 << _KEY_BITS for c in counts):
            raise ValueError("shoe counts must fit the packed composition key")
        self.counts: list[int] = [int(c) for c in counts]
        self.total: int = sum(self.counts)
        self.key: int = sum(c * s for c, s in zip(self.counts, _KEY_STRIDES))

    @classmethod
    def for_decks(cls, decks: int) -> "ShoeComposition":
        """Return a full shoe of ``decks`` standard 52-card decks."""
        return cls([n * int(decks) for n in CARDS_PER_DECK])

    def weights(self) -> list[tuple[int, float]]:
        total = self.total
        if total <= 0:
            return []
        return [(i, c / total) for i, c in enumerate(self.counts) if c > 0]

    def probability(self, index: int) -> float:
        if self.total <= 0:
            return 0.0
        return self.counts[index] / self.total

    def remove(self, index: int) -> None:
        if self.counts[index] <= 0:
            raise ValueError(f"no cards left in bucket {index}")
        self.counts[index] -= 1
        self.total -= 1
        self.key -= _KEY_STRIDES[index]

    def restore(self, index: int) -> None:
        self.counts[index] += 1
        self.total += 1
        self.key += _KEY_STRIDES[index]

    def __repr__(self) -> str:
        return f"ShoeComposition(counts={self.counts}, total={self.total})"


def probability_source_for(rules: RuleSet) -> ProbabilitySource:
    """Return a fresh full shoe for finite deck counts, else the infinite deck."""
    if rules.uses_composition:
        return ShoeComposition.for_decks(int(rules.decks))
    return InfiniteDeckSource()
