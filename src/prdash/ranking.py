"""Ranking helpers shared by the statistics engines.

This module provides utilities for:
- De-duplicating login lists without regard to case.
- Ordering reviewer aggregates by total and recency.
- Cutting top-N leaderboards from count maps.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, TypeVar

from .models import ReviewerStat
from .windows import parse_timestamp

T = TypeVar("T")


def dedupe_logins(logins: Iterable[str]) -> List[str]:
    """De-duplicate logins case-insensitively, keeping the first-seen casing.

    Blank entries are dropped and surrounding whitespace is stripped.
    """
    seen = set()
    result: List[str] = []
    for login in logins:
        cleaned = (login or "").strip()
        if not cleaned:
            continue
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


def sort_reviewer_stats(stats: List[ReviewerStat]) -> List[ReviewerStat]:
    """Sort by ``total`` descending, then ``lastReviewAt`` descending.

    Entries without ``lastReviewAt`` sort after those with one. Python's sort
    is stable, so two passes give the compound ordering.
    """

    def _recency(stat: ReviewerStat) -> float:
        parsed = parse_timestamp(stat.lastReviewAt)
        return parsed.timestamp() if parsed is not None else float("-inf")

    by_recency = sorted(stats, key=_recency, reverse=True)
    return sorted(by_recency, key=lambda stat: stat.total, reverse=True)


def top_entries(entries: Iterable[T], n: int, count: Optional[Callable[[T], int]] = None) -> List[T]:
    """Return the ``n`` entries with the highest positive count.

    Entries with a count of zero or less are never eligible. Ties keep the
    iteration order of ``entries``.

    Args:
        entries: Candidate leaderboard entries.
        n: Maximum number of entries to return.
        count: Extracts the count; defaults to the ``count`` attribute.
    """
    if n <= 0:
        return []

    get_count = count or (lambda entry: getattr(entry, "count"))
    eligible = [entry for entry in entries if get_count(entry) > 0]
    eligible.sort(key=get_count, reverse=True)
    return eligible[:n]
