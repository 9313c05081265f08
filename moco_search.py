"""Fuzzy lookup of catalog entries (projects, tasks) by free-text terms."""

from __future__ import annotations

from dataclasses import dataclass
import difflib
import re
from typing import Any, Callable, Generic, List, Mapping, Optional, Sequence, TypeVar

from moco_common import DEFAULT_FUZZY_THRESHOLD, debug, warn

T = TypeVar("T")

Similarity = Callable[[str, str], float]

_SEPARATOR_RUN = re.compile(r"[\W_]+")


@dataclass(frozen=True)
class Ranked(Generic[T]):
    thing: T
    rating: float


def normalize(text: str) -> str:
    return _SEPARATOR_RUN.sub(" ", text.casefold()).strip()


def _is_subsequence(needle: str, haystack: str) -> bool:
    remaining = iter(haystack)
    return all(char in remaining for char in needle)


def similarity(first: str, second: str) -> float:
    """Score two strings between 0.0 (unrelated) and 1.0 (same text).

    Case, punctuation and whitespace runs are ignored; the score is the
    share of matching characters, so small typos still score high.
    """

    a = normalize(first)
    b = normalize(second)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return difflib.SequenceMatcher(None, a, b, autojunk=False).ratio()


def ordered_similarity(first: str, second: str) -> float:
    """Like :func:`similarity`, but 0.0 unless one side appears in order inside the other."""

    a = normalize(first)
    b = normalize(second)
    if not (_is_subsequence(a, b) or _is_subsequence(b, a)):
        return 0.0
    return similarity(a, b)


def _field_value(thing: Any, key: str) -> str:
    if isinstance(thing, Mapping):
        value = thing.get(key, "")
    else:
        value = getattr(thing, key, "")
    return "" if value is None else str(value)


def fuzzy_rank(
    things: Sequence[T],
    search_terms: Sequence[str],
    keys: Sequence[str],
    scorer: Similarity = ordered_similarity,
) -> List[Ranked[T]]:
    """Rank ``things`` by the summed similarity of every (key, term) pair.

    Terms that only share scattered letters with a field add nothing.
    The sort is stable, so equally rated things keep their input order.
    """

    if not things:
        warn(f"No items to rank for terms: {', '.join(search_terms)}")
        return []

    ranked = []
    for thing in things:
        rating = sum(
            scorer(term, _field_value(thing, key))
            for key in keys
            for term in search_terms
        )
        ranked.append(Ranked(thing, rating))

    ranked.sort(key=lambda item: item.rating, reverse=True)
    return ranked


def fuzzy_find(
    things: Sequence[T],
    search_term: str,
    keys: Sequence[str],
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    scorer: Similarity = similarity,
) -> Optional[T]:
    """Return the best match for ``search_term`` if it scores at least ``threshold``."""

    if not things:
        warn(f'No items to search through for term: "{search_term}"')
        return None

    best: Optional[T] = None
    best_score = -1.0
    for thing in things:
        score = max(
            (scorer(search_term, _field_value(thing, key)) for key in keys),
            default=0.0,
        )
        if score > best_score:
            best, best_score = thing, score

    if best is None or best_score < threshold:
        warn(f'No matches found for search term: "{search_term}"')
        return None

    debug(f"'{search_term}' matched with score {best_score:.2f}")
    return best
