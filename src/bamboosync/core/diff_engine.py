"""
Diff engine for BambooSync.

Generic set deltas over principal names and permission tokens. No domain
logic lives here: the reconciler decides what a delta means.
"""
from __future__ import annotations

from typing import Iterable, List, Tuple


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def delta(previous: Iterable[str], current: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Compute ``(added, removed)`` between two name lists.

    ``added`` holds elements of ``current`` missing from ``previous`` and
    ``removed`` holds elements of ``previous`` missing from ``current``.
    Duplicates collapse; each output keeps the first-seen order of its source
    list so the result is stable for a given input.
    """
    prev = _unique(previous)
    cur = _unique(current)
    prev_set, cur_set = set(prev), set(cur)

    added = [x for x in cur if x not in prev_set]
    removed = [x for x in prev if x not in cur_set]
    return added, removed


def equals_ignore_order(a: Iterable[str] | None, b: Iterable[str] | None) -> bool:
    """Order-insensitive equality of two permission lists (``None`` is empty)."""
    return set(a or ()) == set(b or ())
