"""
Interactive resource selection.

Generic over any item type: callers pass `display` to turn an item into the
text shown and matched. A query that matches exactly one candidate selects
it without prompting; otherwise a fuzzy prompt opens, pre-filled with the
query, over the matching candidates.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, TypeVar

from InquirerPy import inquirer
from InquirerPy.base.control import Choice

from common.errors import NothingSelectedError

T = TypeVar("T")

PROMPT_HEIGHT = "20%"


def fuzzy_matches(query: str, candidate: str) -> bool:
    """Subsequence match; case-insensitive unless the query has uppercase."""
    if not query:
        return True
    if query.islower():
        candidate = candidate.lower()
    it = iter(candidate)
    return all(ch in it for ch in query)


def filter_candidates(
    candidates: Sequence[T], query: Optional[str], *, display: Callable[[T], str] = str
) -> List[T]:
    if not query:
        return list(candidates)
    return [c for c in candidates if fuzzy_matches(query, display(c))]


async def _prompt(
    pool: List[T],
    query: Optional[str],
    *,
    display: Callable[[T], str],
    message: str,
    multiselect: bool,
):
    prompt = inquirer.fuzzy(
        message=message,
        choices=[Choice(value=item, name=display(item)) for item in pool],
        default=query or "",
        multiselect=multiselect,
        height=PROMPT_HEIGHT,
        mandatory=False,
    )
    try:
        return await prompt.execute_async()
    except KeyboardInterrupt as e:
        raise NothingSelectedError("Selection aborted") from e


async def choose_one(
    candidates: Sequence[T],
    query: Optional[str] = None,
    *,
    display: Callable[[T], str] = str,
    message: str = "Select:",
) -> T:
    pool = filter_candidates(candidates, query, display=display)
    if not pool:
        raise NothingSelectedError()
    if query and len(pool) == 1:
        return pool[0]

    selected = await _prompt(
        pool, query, display=display, message=message, multiselect=False
    )
    if selected is None:
        raise NothingSelectedError()
    return selected


async def choose_many(
    candidates: Sequence[T],
    query: Optional[str] = None,
    *,
    display: Callable[[T], str] = str,
    message: str = "Select (tab to mark several):",
) -> List[T]:
    pool = filter_candidates(candidates, query, display=display)
    if not pool:
        raise NothingSelectedError("No items selected")
    if query and len(pool) == 1:
        return pool

    selected = await _prompt(
        pool, query, display=display, message=message, multiselect=True
    )
    if not selected:
        raise NothingSelectedError("No items selected")
    return list(selected)
