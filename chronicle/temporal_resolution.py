"""
Temporal history resolution.

A history is the sequence of facts recorded for one property of one entity.
Ordering of the sequence matters only as a tie-breaker: when two facts share
the same valid_from, the one supplied later wins (later layers override
earlier ones). Both resolvers are pure functions of (history, as_of).
"""
from datetime import date
from typing import List, Optional, Sequence

from chronicle.logger import get_logger
from chronicle.validity import Fact

logger = get_logger(__name__)

History = Sequence[Fact]


def is_eligible(fact: Fact, as_of: Optional[date]) -> bool:
    """Undated facts are always eligible; dated ones once valid_from <= as_of."""
    if as_of is None or fact.valid_from is None:
        return True
    return fact.valid_from <= as_of


def is_current(fact: Fact, as_of: Optional[date]) -> bool:
    """Eligible and not yet expired (valid_to is exclusive)."""
    if not is_eligible(fact, as_of):
        return False
    if as_of is None or fact.valid_to is None:
        return True
    return fact.valid_to > as_of


def _recency_key(indexed: tuple[int, Fact]) -> tuple:
    position, fact = indexed
    # Undated sorts below every dated fact, position breaks ties
    if fact.valid_from is None:
        return (0, date.min, position)
    return (1, fact.valid_from, position)


def last_active(history: History, as_of: Optional[date] = None) -> Optional[Fact]:
    """
    Return the last-dated eligible fact.

    Among facts with valid_from <= as_of (or undated), the latest valid_from
    wins; undated facts rank lowest; equal keys resolve to the later position.
    Returns None for an empty history or when nothing is eligible.
    """
    eligible = [(i, fact) for i, fact in enumerate(history) if is_eligible(fact, as_of)]
    if not eligible:
        return None
    _, winner = max(eligible, key=_recency_key)
    return winner


def all_active(history: History, as_of: Optional[date] = None) -> List[Fact]:
    """
    Return every fact whose interval contains as_of, in input order.

    Undated facts are always included. Values are not deduplicated.
    """
    return [fact for fact in history if is_current(fact, as_of)]


def last_active_value(history: History, as_of: Optional[date] = None) -> Optional[str]:
    fact = last_active(history, as_of)
    return fact.value if fact is not None else None


def all_active_values(history: History, as_of: Optional[date] = None) -> List[str]:
    return [fact.value for fact in all_active(history, as_of)]
